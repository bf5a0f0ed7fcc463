"""Circuit breaker guarding the queue backend.

Purpose: when the backend is down, fail board syncs fast instead of stacking
up stalled requests behind every drag.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Backend failing, requests fail immediately
- HALF_OPEN: Cooldown elapsed, one trial request decides
"""
import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpen(Exception):
    """Raised when circuit breaker is open (fail fast)."""

    def __init__(self, retry_after: float):
        super().__init__(f"Circuit breaker is OPEN. Retry after {retry_after:.1f}s")
        self.retry_after = retry_after


class CircuitBreaker:
    """
    Circuit breaker for backend calls.

    Thread-safe: sync calls run in worker threads, so state changes are
    serialized with a lock. The wrapped call itself runs outside the lock.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            failure_threshold: Consecutive failures before opening
            timeout: Seconds to stay open before a half-open trial
            clock: Monotonic time source (injectable for tests)
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._lock = threading.Lock()

    @property
    def state(self) -> str:
        """Current state as string."""
        return self._state.value

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute func under breaker protection.

        Raises:
            CircuitBreakerOpen: If the circuit is open
            Exception: Whatever func raises (counted as a failure)
        """
        self._before_call()
        try:
            result = func(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def reset(self) -> None:
        """Force the circuit closed (e.g. after a manual reconnect)."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self.failure_count = 0
            self.last_failure_time = None

    def _before_call(self) -> None:
        with self._lock:
            if self._state != CircuitState.OPEN:
                return
            remaining = self._time_until_retry()
            if remaining > 0:
                raise CircuitBreakerOpen(remaining)
            self._state = CircuitState.HALF_OPEN
            logger.info("Circuit breaker transitioning to HALF_OPEN")

    def _time_until_retry(self) -> float:
        if self.last_failure_time is None:
            return 0
        elapsed = self._clock() - self.last_failure_time
        return max(0.0, self.timeout - elapsed)

    def _on_success(self) -> None:
        with self._lock:
            self.failure_count = 0
            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.CLOSED
                logger.info("Circuit breaker closed after successful half-open attempt")

    def _on_failure(self) -> None:
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                logger.warning("Circuit breaker opened after failed half-open attempt")
            elif self.failure_count >= self.failure_threshold:
                self._state = CircuitState.OPEN
                logger.error(
                    f"Circuit breaker opened after {self.failure_count} failures. "
                    f"Timeout: {self.timeout}s"
                )
