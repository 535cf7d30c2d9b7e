"""Tests for RetryPolicy."""

from __future__ import annotations

from unittest import mock

import pytest

from md2docx.retry import NO_RETRY, RetryPolicy


class TestRetryPolicy:
    """Tests for RetryPolicy.call and wrap."""

    def test_retries_until_success(self) -> None:
        fn = mock.Mock(side_effect=[ConnectionError("reset"), ConnectionError("reset"), 'ok'])
        policy = RetryPolicy(max_attempts=3, base_delay=0, max_delay=0)
        assert policy.call(fn) == 'ok'
        assert fn.call_count == 3

    def test_reraises_last_error(self) -> None:
        fn = mock.Mock(side_effect=ConnectionError("down"))
        policy = RetryPolicy(max_attempts=2, base_delay=0, max_delay=0)
        with pytest.raises(ConnectionError):
            policy.call(fn)
        assert fn.call_count == 2

    def test_only_listed_errors_retried(self) -> None:
        fn = mock.Mock(side_effect=ValueError("bad input"))
        policy = RetryPolicy(max_attempts=5, base_delay=0, retry_on=(ConnectionError,))
        with pytest.raises(ValueError):
            policy.call(fn)
        assert fn.call_count == 1

    def test_decorator_keeps_name(self) -> None:
        @RetryPolicy(max_attempts=2, base_delay=0)
        def fetch(x):
            return x * 2

        assert fetch(21) == 42
        assert fetch.__name__ == 'fetch'

    def test_no_retry(self) -> None:
        fn = mock.Mock(side_effect=ConnectionError("down"))
        with pytest.raises(ConnectionError):
            NO_RETRY.call(fn)
        assert fn.call_count == 1

    def test_invalid_attempts(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
