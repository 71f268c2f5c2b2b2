"""Developer CLI for inspecting and exercising the call scheduler."""
