"""
Circuit breaker pattern implementation for resilient service calls.
"""

import threading
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from shared.errors import ServiceUnavailableError
from shared.logging import get_logger


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, requests blocked
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreakerOpenException(ServiceUnavailableError):
    """Exception raised when circuit breaker is open."""

    def __init__(self, name: str):
        super().__init__(
            "Service temporarily unavailable",
            details={"reason": "circuit_open", "circuit": name},
        )


class CircuitBreaker:
    """Circuit breaker for a single upstream.

    Closed lets every call through. ``failure_threshold`` consecutive failures
    open the circuit; while open, calls are rejected without touching the
    network. Once ``recovery_timeout`` seconds have passed since the last
    failure, exactly one trial call is admitted (half-open). The trial's
    outcome closes the circuit again or re-opens it with a fresh timer.
    """

    def __init__(self,
                 failure_threshold: int = 5,
                 recovery_timeout: float = 30.0,
                 name: str = "default",
                 clock: Callable[[], float] = time.monotonic):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.name = name
        self.logger = get_logger(f"circuit_breaker.{name}")
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitBreakerState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def _can_attempt_reset(self) -> bool:
        """Check if enough time has passed to attempt a reset."""
        if self._last_failure_time is None:
            return True
        return (self._clock() - self._last_failure_time) >= self.recovery_timeout

    def allow_request(self) -> bool:
        """Decide whether a call may go out, moving Open to HalfOpen when due."""
        with self._lock:
            if self._state == CircuitBreakerState.CLOSED:
                return True

            if self._state == CircuitBreakerState.OPEN:
                if not self._can_attempt_reset():
                    return False
                self._state = CircuitBreakerState.HALF_OPEN
                self._trial_in_flight = True
                self.logger.info("Circuit breaker transitioning to half-open")
                return True

            # HALF_OPEN: only one trial at a time
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
            return True

    def record_success(self) -> None:
        """Record a successful call."""
        with self._lock:
            if self._state != CircuitBreakerState.CLOSED:
                self.logger.info("Circuit breaker reset to CLOSED after successful call")
            self._state = CircuitBreakerState.CLOSED
            self._failure_count = 0
            self._trial_in_flight = False

    def record_failure(self) -> None:
        """Record a failure and update state."""
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = self._clock()
            self._trial_in_flight = False

            if self._state == CircuitBreakerState.HALF_OPEN:
                self._state = CircuitBreakerState.OPEN
                self.logger.warning("Circuit breaker trial failed, re-opening")
            elif self._state == CircuitBreakerState.CLOSED and self._failure_count >= self.failure_threshold:
                self._state = CircuitBreakerState.OPEN
                self.logger.warning(
                    "Circuit breaker opened due to failures",
                    failure_count=self._failure_count,
                    threshold=self.failure_threshold
                )

    def release_trial(self) -> None:
        """Give back a half-open trial slot whose call never completed."""
        with self._lock:
            self._trial_in_flight = False

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Execute function with circuit breaker protection."""
        if not self.allow_request():
            raise CircuitBreakerOpenException(self.name)

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        except BaseException:
            # Cancellation is not a verdict on the upstream
            self.release_trial()
            raise

        self.record_success()
        return result

    def get_state(self) -> Dict[str, Any]:
        """Get current circuit breaker state."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "last_failure_time": self._last_failure_time,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout
        }


class CircuitBreakerRegistry:
    """Owns one circuit breaker per upstream for the lifetime of a service."""

    def __init__(self,
                 failure_threshold: int = 5,
                 recovery_timeout: float = 30.0,
                 clock: Callable[[], float] = time.monotonic):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self.circuit_breakers: Dict[str, CircuitBreaker] = {}
        self.logger = get_logger("circuit_breaker_registry")

    def get(self, name: str) -> CircuitBreaker:
        """Get or create the breaker for ``name``."""
        with self._lock:
            breaker = self.circuit_breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(
                    failure_threshold=self.failure_threshold,
                    recovery_timeout=self.recovery_timeout,
                    name=name,
                    clock=self._clock,
                )
                self.circuit_breakers[name] = breaker
                self.logger.info("Created circuit breaker", name=name)
            return breaker

    def get_all_states(self) -> Dict[str, Dict[str, Any]]:
        """Get states of all circuit breakers."""
        with self._lock:
            breakers = list(self.circuit_breakers.items())
        return {name: cb.get_state() for name, cb in breakers}
