"""
Resilience service for document store calls: a circuit breaker that fails
fast while the store is down, and an opt-in retry helper with exponential
backoff for callers that want to try again.
"""

import random
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Type

from infrastructure.config.settings import get_config
from infrastructure.storage.errors import TransportError, StoreUnavailableError
from infrastructure.monitoring.logging_service import get_logger

logger = get_logger(__name__)

# Store failures worth another attempt
RETRIABLE_ERRORS: Tuple[Type[Exception], ...] = (TransportError,)

# The breaker is open: retrying before the recovery timeout only burns attempts
NON_RETRIABLE_ERRORS: Tuple[Type[Exception], ...] = (StoreUnavailableError,)


def exponential_backoff_delay(attempt: int, base_delay: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Delay before the next attempt: doubles per attempt, capped, plus up to 10% jitter

    Args:
        attempt: Zero-based number of the attempt that just failed
        base_delay: Delay after the first failure, in seconds
        max_delay: Upper bound before jitter, in seconds
    """
    capped = min(base_delay * (2 ** attempt), max_delay)
    return capped + random.uniform(0, capped * 0.1)


class CircuitBreakerState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Trips after ``failure_threshold`` consecutive store failures.

    While OPEN every call raises StoreUnavailableError without reaching the
    store. Once ``recovery_timeout`` seconds have passed the breaker lets a
    trial call through (HALF_OPEN): success closes it, failure reopens it.
    Only exceptions in ``tracked_errors`` count as failures.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60,
        tracked_errors: Tuple[Type[Exception], ...] = RETRIABLE_ERRORS,
        name: str = "CircuitBreaker",
        clock: Callable[[], float] = time.monotonic
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.tracked_errors = tracked_errors
        self.name = name
        self._clock = clock

        self.state = CircuitBreakerState.CLOSED
        self.failure_count = 0
        self.opened_at: Optional[float] = None
        self._lock = threading.Lock()

        logger.info(f"CircuitBreaker '{name}' ready (threshold={failure_threshold}, timeout={recovery_timeout}s)")

    def _move_to(self, state: CircuitBreakerState):
        if state is not self.state:
            logger.warning(f"CircuitBreaker '{self.name}': {self.state.value} -> {state.value}")
            self.state = state

    def _seconds_until_retry(self) -> float:
        if self.opened_at is None:
            return 0.0
        return max(0.0, self.recovery_timeout - (self._clock() - self.opened_at))

    def _admit(self):
        with self._lock:
            if self.state is CircuitBreakerState.OPEN:
                wait = self._seconds_until_retry()
                if wait > 0:
                    raise StoreUnavailableError(
                        f"Circuit breaker '{self.name}' is open, store considered down for another {wait:.0f}s"
                    )
                self._move_to(CircuitBreakerState.HALF_OPEN)

    def _on_success(self):
        with self._lock:
            self.failure_count = 0
            self.opened_at = None
            self._move_to(CircuitBreakerState.CLOSED)

    def _on_failure(self):
        with self._lock:
            self.failure_count += 1
            if self.state is CircuitBreakerState.HALF_OPEN or self.failure_count >= self.failure_threshold:
                self.opened_at = self._clock()
                self._move_to(CircuitBreakerState.OPEN)

    def execute(self, func: Callable[[], Any]) -> Any:
        """
        Run ``func`` under the breaker

        Raises:
            StoreUnavailableError: The breaker is open; ``func`` was not called
        """
        self._admit()
        try:
            result = func()
        except self.tracked_errors:
            self._on_failure()
            raise
        self._on_success()
        return result

    def snapshot(self) -> Dict[str, Any]:
        """Current breaker state for monitoring"""
        with self._lock:
            return {
                "name": self.name,
                "state": self.state.value,
                "failure_count": self.failure_count,
                "failure_threshold": self.failure_threshold,
                "retry_in_seconds": self._seconds_until_retry() if self.state is CircuitBreakerState.OPEN else 0.0
            }

    def reset(self):
        with self._lock:
            self.failure_count = 0
            self.opened_at = None
            self._move_to(CircuitBreakerState.CLOSED)


class RetryService:
    """
    Owns the named circuit breakers and the retry helper.

    The messaging core never retries on its own; a caller opts in with
    ``retry_with_backoff``, typically behind a "try again" action, and pairs
    it with an idempotency key so a retried append cannot duplicate.
    """

    def __init__(self, sleep: Callable[[float], None] = time.sleep):
        self.logger = get_logger(__name__)
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._breakers_lock = threading.Lock()
        self._sleep = sleep

    def get_circuit_breaker(self, name: str) -> Optional[CircuitBreaker]:
        return self._breakers.get(name)

    def get_store_circuit_breaker(self) -> CircuitBreaker:
        """The breaker shared by every store wrapper in the process"""
        with self._breakers_lock:
            if "store" not in self._breakers:
                settings = get_config().resilience
                self._breakers["store"] = CircuitBreaker(
                    failure_threshold=settings.failure_threshold,
                    recovery_timeout=settings.recovery_timeout,
                    name="DocumentStore"
                )
            return self._breakers["store"]

    def retry_with_backoff(
        self,
        func: Callable[[], Any],
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        on_retry: Optional[Callable[[int, Exception, float], None]] = None
    ) -> Any:
        """
        Call ``func`` until it succeeds, retrying store failures with backoff

        Limits default to the resilience configuration. An open circuit and
        any non-store error propagate at once.

        Args:
            func: Operation to run
            max_retries: Attempts after the first one
            base_delay: First backoff delay in seconds
            max_delay: Backoff cap in seconds
            on_retry: Called as (retry_number, error, delay) before each wait

        Returns:
            Whatever ``func`` returns

        Raises:
            The last TransportError once retries are exhausted
        """
        settings = get_config().resilience
        max_retries = settings.max_retries if max_retries is None else max_retries
        base_delay = settings.base_delay if base_delay is None else base_delay
        max_delay = settings.max_delay if max_delay is None else max_delay

        attempt = 0
        while True:
            try:
                result = func()
            except NON_RETRIABLE_ERRORS:
                raise
            except RETRIABLE_ERRORS as e:
                if attempt >= max_retries:
                    self.logger.error(f"Giving up after {attempt + 1} attempts: {e}")
                    raise

                delay = exponential_backoff_delay(attempt, base_delay, max_delay)
                attempt += 1
                self.logger.warning(f"Store call failed ({type(e).__name__}), retry {attempt}/{max_retries} in {delay:.2f}s")
                if on_retry:
                    on_retry(attempt, e, delay)
                self._sleep(delay)
                continue

            if attempt:
                self.logger.info(f"Store call succeeded on retry {attempt}")
            return result


# Global retry service instance
_retry_service: Optional[RetryService] = None


def get_retry_service() -> RetryService:
    global _retry_service
    if _retry_service is None:
        _retry_service = RetryService()
    return _retry_service


def get_store_circuit_breaker() -> CircuitBreaker:
    """Shortcut to the process-wide document store breaker"""
    return get_retry_service().get_store_circuit_breaker()
