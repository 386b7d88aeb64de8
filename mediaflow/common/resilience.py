"""
Resilience utilities: retry strategies and circuit breakers.

Retries here are for calls whose loss would leak state (external job
submission, ledger writes, object store I/O). Everything else relies on
queue redelivery.
"""

import logging
import threading
import time
from enum import Enum
from functools import wraps
from typing import Callable, Dict, Optional, Type, TypeVar

from tenacity import (
    after_log,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from mediaflow.common.errors import RetryableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"        # calls pass through
    OPEN = "open"            # calls fail fast
    HALF_OPEN = "half_open"  # one trial call decides


class CircuitBreakerError(Exception):
    """Raised instead of calling a provider whose circuit is open."""
    pass


class CircuitBreaker:
    """
    Fail fast while a provider keeps failing.

    ``failure_threshold`` consecutive failures of ``expected_exception``
    open the circuit. After ``recovery_timeout`` seconds the next call is
    let through as a trial: success closes the circuit, failure reopens it
    for another full timeout. Other exception types pass through without
    being counted.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        expected_exception: Type[Exception] = Exception,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at: Optional[float] = None
        self._lock = threading.Lock()

    def _admit(self) -> None:
        with self._lock:
            if self.state != CircuitState.OPEN:
                return
            waited = time.monotonic() - (self.opened_at or 0.0)
            if waited < self.recovery_timeout:
                raise CircuitBreakerError(
                    f"Circuit '{self.name}' is open; retry in "
                    f"{self.recovery_timeout - waited:.0f}s")
            self.state = CircuitState.HALF_OPEN
            logger.info(f"Circuit '{self.name}' half-open, sending a trial call")

    def _record(self, failed: bool) -> None:
        with self._lock:
            if not failed:
                if self.state == CircuitState.HALF_OPEN:
                    logger.info(f"Circuit '{self.name}' closed again")
                self.state = CircuitState.CLOSED
                self.failure_count = 0
                return

            self.failure_count += 1
            trip = (self.state == CircuitState.HALF_OPEN
                    or self.failure_count >= self.failure_threshold)
            if trip:
                if self.state != CircuitState.OPEN:
                    logger.warning(
                        f"Circuit '{self.name}' opened after {self.failure_count} failures")
                self.state = CircuitState.OPEN
                self.opened_at = time.monotonic()

    def call(self, func: Callable[..., T], *args, **kwargs) -> T:
        """
        Run ``func`` through the breaker.

        Raises:
            CircuitBreakerError: the circuit is open
        """
        self._admit()
        try:
            result = func(*args, **kwargs)
        except self.expected_exception:
            self._record(failed=True)
            raise
        self._record(failed=False)
        return result

    def reset(self) -> None:
        with self._lock:
            self.state = CircuitState.CLOSED
            self.failure_count = 0
            self.opened_at = None
        logger.info(f"Circuit '{self.name}' reset")


_circuit_breakers: Dict[str, CircuitBreaker] = {}
_registry_lock = threading.Lock()


def get_circuit_breaker(
    name: str,
    failure_threshold: int = 5,
    recovery_timeout: float = 60.0,
    expected_exception: Type[Exception] = Exception,
) -> CircuitBreaker:
    """Process-wide breaker for ``name``; settings apply on first creation only."""
    with _registry_lock:
        breaker = _circuit_breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(name, failure_threshold, recovery_timeout,
                                     expected_exception)
            _circuit_breakers[name] = breaker
        return breaker


def _retrying(attempts: int, multiplier: float, min_wait: float, max_wait: float,
              retry_on) -> Callable[[Callable], Callable]:
    """Build a tenacity decorator that logs each backoff and re-raises the last error."""
    def decorator(func: Callable) -> Callable:
        @retry(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=multiplier, min=min_wait, max=max_wait),
            retry=retry_on,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            after=after_log(logger, logging.DEBUG),
            reraise=True,
        )
        @wraps(func)
        def wrapper(*args, **kwargs):
            return func(*args, **kwargs)
        return wrapper
    return decorator


# External job submission: 4 attempts, 1s to 15s apart.
retry_submission = _retrying(
    4, 1, 1, 15,
    retry_if_exception_type((RetryableError, ConnectionError, TimeoutError)),
)

# Only connection-level failures; logical errors surface at once.
retry_ledger_operation = _retrying(
    3, 0.5, 0.5, 5,
    retry_if_exception_type((ConnectionError, TimeoutError)),
)

# Missing keys are not retried here; redelivery covers late-arriving objects.
retry_storage_operation = _retrying(
    3, 1, 1, 10,
    retry_if_exception_type((RetryableError, IOError, ConnectionError, TimeoutError))
    & retry_if_not_exception_type(LookupError),
)
