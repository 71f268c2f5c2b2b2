"""Retry classification at the transport boundary.

The scheduler only ever asks one question of a failure: is it retryable?
This module supplies the default answer (an explicit ``retryable`` tag on
the error) plus helpers for transports built on httpx:

- status_code_classifier: predicate that also trusts HTTP status codes
- error_from_response / raise_for_backend_status: map responses to
  ThrottlingError or TerminalError
- retry_after_seconds: server-requested wait carried by a failure
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

import httpx

from .exceptions import BackendCallError, TerminalError, ThrottlingError

RetryClassifier = Callable[[BaseException], bool]

THROTTLING_STATUSES: frozenset[int] = frozenset({429})


def is_throttling_error(error: BaseException) -> bool:
    """Default classifier: trust the error's ``retryable`` tag.

    Errors without a tag are terminal.
    """
    return getattr(error, "retryable", None) is True


def status_code_classifier(*statuses: int) -> RetryClassifier:
    """Build a classifier that also retries on the given HTTP status codes.

    An explicit ``retryable`` tag always wins over the status code.

    Args:
        statuses: Status codes that mean "throttled" (default: 429)

    Returns:
        Predicate suitable for RequestScheduler(is_retryable=...)
    """
    codes = frozenset(statuses) if statuses else THROTTLING_STATUSES

    def classify(error: BaseException) -> bool:
        tag = getattr(error, "retryable", None)
        if isinstance(tag, bool):
            return tag
        return _status_code_of(error) in codes

    return classify


def _status_code_of(error: BaseException) -> int | None:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status = getattr(error, "status_code", None)
    return status if isinstance(status, int) else None


def _parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given as delta-seconds or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - datetime.now(UTC)).total_seconds())


def _seconds_until_epoch(value: str | None) -> float | None:
    if not value:
        return None
    try:
        reset_ts = int(value)
    except ValueError:
        return None
    return max(0.0, reset_ts - datetime.now(UTC).timestamp())


def retry_after_seconds(error: BaseException) -> float | None:
    """Return how long the server asked us to wait, if it said so."""
    retry_after = getattr(error, "retry_after", None)
    if isinstance(retry_after, int | float):
        return float(retry_after)
    if isinstance(error, httpx.HTTPStatusError):
        return _parse_retry_after(error.response.headers.get("retry-after"))
    return None


def error_from_response(
    response: httpx.Response,
    *,
    throttling_statuses: Iterable[int] = THROTTLING_STATUSES,
) -> BackendCallError | None:
    """Convert a failed HTTP response into a tagged backend error.

    Mapping:
        - status in throttling_statuses -> ThrottlingError (Retry-After honored)
        - 403 with x-ratelimit-remaining: 0 -> ThrottlingError until x-ratelimit-reset
        - any other 4xx/5xx -> TerminalError
        - success -> None

    Args:
        response: Response returned by the transport
        throttling_statuses: Status codes treated as throttling

    Returns:
        The error to raise, or None for a successful response
    """
    status = response.status_code
    if status < 400:
        return None

    headers = response.headers
    if status in frozenset(throttling_statuses):
        return ThrottlingError(
            f"Backend throttled request ({status} {response.reason_phrase})",
            status_code=status,
            retry_after=_parse_retry_after(headers.get("retry-after")),
        )

    if status == 403 and headers.get("x-ratelimit-remaining") == "0":
        return ThrottlingError(
            "Backend rate limit exceeded",
            status_code=status,
            retry_after=_seconds_until_epoch(headers.get("x-ratelimit-reset")),
        )

    return TerminalError(
        f"Backend error ({status} {response.reason_phrase})",
        status_code=status,
    )


def raise_for_backend_status(
    response: httpx.Response,
    *,
    throttling_statuses: Iterable[int] = THROTTLING_STATUSES,
) -> httpx.Response:
    """Raise the tagged error for a failed response, else return it unchanged."""
    error = error_from_response(response, throttling_statuses=throttling_statuses)
    if error is not None:
        raise error
    return response
