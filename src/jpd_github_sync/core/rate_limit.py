"""Retry with exponential backoff for rate-limited and flaky API calls.

Both Atlassian and GitHub throttle aggressively.  ``with_retry`` wraps a
zero-argument callable and retries it when the failure looks transient:

* rate limits: HTTP 429, HTTP 403 with an exhausted GitHub quota, or a
  message mentioning "rate limit" / "too many requests";
* server and network trouble: HTTP 5xx, timeouts, dropped connections.

Anything else (401, 404, 422, programming errors) propagates immediately.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, TypeVar

import requests

from ..errors import RateLimitExhaustedError

T = TypeVar("T")
logger = logging.getLogger(__name__)

RetryCallback = Callable[[int, float, BaseException], None]

_RATE_LIMIT_PHRASES = ("rate limit", "too many requests")
_TRANSIENT_PHRASES = ("timeout", "timed out", "connection reset", "econnreset")


def status_code_of(error: BaseException) -> int | None:
    """HTTP status carried by *error*, if any."""
    response = getattr(error, "response", None)
    if response is not None and getattr(response, "status_code", None):
        return int(response.status_code)
    status = getattr(error, "status_code", None) or getattr(error, "status", None)
    return int(status) if isinstance(status, int) else None


def _error_text(error: BaseException) -> str:
    text = str(error)
    response = getattr(error, "response", None)
    if response is not None:
        text += " " + (getattr(response, "text", "") or "")
    return text.lower()


def is_rate_limit_error(error: BaseException) -> bool:
    """Whether *error* signals API throttling."""
    status = status_code_of(error)
    if status == 429:
        return True
    if status == 403:
        response = getattr(error, "response", None)
        headers = getattr(response, "headers", None) or {}
        if headers.get("X-RateLimit-Remaining") == "0":
            return True
    text = _error_text(error)
    return any(phrase in text for phrase in _RATE_LIMIT_PHRASES)


def is_transient_error(error: BaseException) -> bool:
    """Whether *error* is a server or network failure worth retrying."""
    if isinstance(error, (requests.Timeout, requests.ConnectionError)):
        return True
    status = status_code_of(error)
    if status is not None and 500 <= status < 600:
        return True
    text = str(error).lower()
    return any(phrase in text for phrase in _TRANSIENT_PHRASES)


def retry_after_seconds(error: BaseException) -> float | None:
    """Parse a ``Retry-After`` header (seconds or HTTP date) from *error*."""
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None) or getattr(error, "headers", None)
    if not headers:
        return None
    raw = headers.get("Retry-After")
    if not raw:
        return None

    try:
        return max(0.0, float(raw))
    except ValueError:
        pass

    try:
        when = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        logger.debug("Unparsable Retry-After header %r", raw)
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def backoff_delay(
    attempt: int,
    initial_delay: float,
    backoff_multiplier: float,
    max_delay: float,
) -> float:
    """Delay before retry number *attempt* (0-based), capped at *max_delay*."""
    return min(initial_delay * (backoff_multiplier**attempt), max_delay)


def with_retry(
    operation: Callable[[], T],
    *,
    max_retries: int = 3,
    initial_delay: float = 2.0,
    backoff_multiplier: float = 2.0,
    max_delay: float = 30.0,
    on_retry: RetryCallback | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call *operation*, retrying transient failures with backoff.

    Args:
        operation: Zero-argument callable performing one API call.
        max_retries: Retries after the first attempt.
        initial_delay: Seconds before the first retry.
        backoff_multiplier: Growth factor between retries.
        max_delay: Upper bound for any single wait, including one
            requested through ``Retry-After``.
        on_retry: Called as ``on_retry(attempt, delay, error)`` before
            each wait; ``attempt`` is 1-based.
        sleep: Wait function, replaceable in tests.

    Raises:
        RateLimitExhaustedError: The last failure was a rate limit and no
            retries remain.  The original error is chained.
        Exception: The original error for exhausted transient failures and
            for anything not retryable.
    """
    attempt = 0
    while True:
        try:
            return operation()
        except Exception as exc:
            rate_limited = is_rate_limit_error(exc)
            if not (rate_limited or is_transient_error(exc)):
                raise

            if attempt >= max_retries:
                if rate_limited:
                    raise RateLimitExhaustedError(exc, attempt + 1) from exc
                raise

            delay = backoff_delay(
                attempt, initial_delay, backoff_multiplier, max_delay
            )
            requested = retry_after_seconds(exc)
            if requested is not None:
                delay = min(max(delay, requested), max_delay)

            attempt += 1
            if on_retry is not None:
                on_retry(attempt, delay, exc)
            else:
                logger.warning(
                    "%s, retrying in %.1fs (attempt %d/%d)",
                    "Rate limit hit" if rate_limited else f"Transient error: {exc}",
                    delay,
                    attempt,
                    max_retries,
                )
            sleep(delay)
