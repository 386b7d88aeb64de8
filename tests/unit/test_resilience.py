"""
Unit tests for retry decorators and the circuit breaker.
"""

from unittest.mock import patch

import pytest

from mediaflow.common.errors import PermanentError, RetryableError
from mediaflow.common.resilience import (
    CircuitBreaker, CircuitBreakerError, CircuitState,
    get_circuit_breaker, retry_storage_operation, retry_submission,
)


def fail():
    raise ValueError("down")


class TestCircuitBreaker:

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker("test-open", failure_threshold=2, expected_exception=ValueError)

        for _ in range(2):
            with pytest.raises(ValueError):
                breaker.call(fail)

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitBreakerError):
            breaker.call(lambda: "never called")

    def test_unexpected_exceptions_do_not_count(self):
        breaker = CircuitBreaker("test-unexpected", failure_threshold=1,
                                 expected_exception=ValueError)

        with pytest.raises(KeyError):
            breaker.call(lambda: {}["missing"])

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    def test_half_open_success_closes(self):
        breaker = CircuitBreaker("test-recover", failure_threshold=1, recovery_timeout=30.0,
                                 expected_exception=ValueError)
        with patch("mediaflow.common.resilience.time.monotonic", return_value=1000.0):
            with pytest.raises(ValueError):
                breaker.call(fail)
        assert breaker.state == CircuitState.OPEN

        with patch("mediaflow.common.resilience.time.monotonic", return_value=1031.0):
            assert breaker.call(lambda: "ok") == "ok"

        assert breaker.state == CircuitState.CLOSED

    def test_reset(self):
        breaker = CircuitBreaker("test-reset", failure_threshold=1, expected_exception=ValueError)
        with pytest.raises(ValueError):
            breaker.call(fail)

        breaker.reset()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.call(lambda: 1) == 1

    def test_registry_returns_same_breaker(self):
        assert get_circuit_breaker("test-registry") is get_circuit_breaker("test-registry")


class TestRetryDecorators:

    def test_submission_retries_transient_errors(self):
        calls = []

        @retry_submission
        def submit():
            calls.append(1)
            if len(calls) == 1:
                raise RetryableError("throttled")
            return "job-1"

        assert submit() == "job-1"
        assert len(calls) == 2

    def test_submission_does_not_retry_permanent_errors(self):
        calls = []

        @retry_submission
        def submit():
            calls.append(1)
            raise PermanentError("rejected")

        with pytest.raises(PermanentError):
            submit()
        assert len(calls) == 1

    def test_storage_does_not_retry_lookups(self):
        calls = []

        class Missing(RetryableError, LookupError):
            pass

        @retry_storage_operation
        def read():
            calls.append(1)
            raise Missing("gone")

        with pytest.raises(Missing):
            read()
        assert len(calls) == 1
