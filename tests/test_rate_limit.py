"""Tests for retry/backoff classification in core.rate_limit."""

from __future__ import annotations

from email.utils import format_datetime
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import requests
from conftest import http_error

from jpd_github_sync.core.rate_limit import (
    backoff_delay,
    is_rate_limit_error,
    is_transient_error,
    retry_after_seconds,
    with_retry,
)
from jpd_github_sync.errors import RateLimitExhaustedError


class _Flaky:
    """Callable failing with *errors* in turn, then returning "ok"."""

    def __init__(self, *errors: BaseException) -> None:
        self.errors = list(errors)
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class TestClassification:
    def test_429_is_rate_limit(self):
        assert is_rate_limit_error(http_error(429))

    def test_github_403_with_exhausted_quota(self):
        error = http_error(403, headers={"X-RateLimit-Remaining": "0"})
        assert is_rate_limit_error(error)

    def test_github_secondary_rate_limit_body(self):
        error = http_error(403, text="You have exceeded a secondary rate limit")
        assert is_rate_limit_error(error)

    def test_plain_403_is_not_retryable(self):
        error = http_error(403, text="Resource not accessible")
        assert not is_rate_limit_error(error)
        assert not is_transient_error(error)

    def test_message_only(self):
        assert is_rate_limit_error(RuntimeError("Too Many Requests"))

    def test_transient(self):
        assert is_transient_error(http_error(502))
        assert is_transient_error(requests.ConnectionError("reset"))
        assert is_transient_error(requests.Timeout())
        assert is_transient_error(OSError("Connection reset by peer"))
        assert not is_transient_error(http_error(404))

    def test_retry_after_seconds(self):
        assert retry_after_seconds(http_error(429, headers={"Retry-After": "7"})) == 7
        assert retry_after_seconds(http_error(429)) is None

    def test_retry_after_http_date(self):
        when = datetime.now(timezone.utc) + timedelta(seconds=60)
        error = http_error(429, headers={"Retry-After": format_datetime(when, usegmt=True)})
        assert 50 <= retry_after_seconds(error) <= 60

    def test_backoff_delay(self):
        assert backoff_delay(0, 2.0, 2.0, 30.0) == 2.0
        assert backoff_delay(2, 2.0, 2.0, 30.0) == 8.0
        assert backoff_delay(10, 2.0, 2.0, 30.0) == 30.0


# ---------------------------------------------------------------------------
# with_retry
# ---------------------------------------------------------------------------


class TestWithRetry:
    def test_success_first_try(self):
        sleep = MagicMock()
        assert with_retry(lambda: 42, sleep=sleep) == 42
        sleep.assert_not_called()

    def test_retries_rate_limit_with_exponential_backoff(self):
        operation = _Flaky(http_error(429), http_error(429))
        on_retry = MagicMock()
        sleep = MagicMock()

        result = with_retry(
            operation,
            initial_delay=1.0,
            backoff_multiplier=3.0,
            on_retry=on_retry,
            sleep=sleep,
        )

        assert result == "ok"
        assert operation.calls == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 3.0]
        assert [c.args[:2] for c in on_retry.call_args_list] == [(1, 1.0), (2, 3.0)]

    def test_honours_retry_after_within_cap(self):
        operation = _Flaky(http_error(429, headers={"Retry-After": "12"}))
        sleep = MagicMock()

        with_retry(operation, initial_delay=1.0, max_delay=10.0, sleep=sleep)

        sleep.assert_called_once_with(10.0)

    def test_exhausted_rate_limit_is_annotated(self):
        original = http_error(429)
        operation = _Flaky(*[original] * 4)

        with pytest.raises(RateLimitExhaustedError) as excinfo:
            with_retry(operation, max_retries=3, sleep=MagicMock())

        assert excinfo.value.original is original
        assert excinfo.value.attempts == 4
        assert excinfo.value.__cause__ is original
        assert operation.calls == 4

    def test_exhausted_transient_reraises_original(self):
        error = http_error(503)
        operation = _Flaky(error, error)

        with pytest.raises(requests.HTTPError) as excinfo:
            with_retry(operation, max_retries=1, sleep=MagicMock())

        assert excinfo.value is error

    def test_non_retryable_propagates_immediately(self):
        operation = _Flaky(http_error(404))
        sleep = MagicMock()

        with pytest.raises(requests.HTTPError):
            with_retry(operation, sleep=sleep)

        assert operation.calls == 1
        sleep.assert_not_called()

    def test_programming_errors_are_not_retried(self):
        operation = _Flaky(KeyError("number"))
        with pytest.raises(KeyError):
            with_retry(operation, sleep=MagicMock())
        assert operation.calls == 1

    def test_logs_when_no_callback(self, caplog):
        operation = _Flaky(http_error(429))
        with_retry(operation, sleep=MagicMock())
        assert "Rate limit hit" in caplog.text
