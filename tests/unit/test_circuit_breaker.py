"""
Unit tests for the circuit breaker.
"""

import asyncio

import pytest

from shared.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerOpenException,
    CircuitBreakerRegistry,
    CircuitBreakerState,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestCircuitBreaker:
    """Test cases for CircuitBreaker state transitions."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def breaker(self, clock):
        return CircuitBreaker(failure_threshold=3, recovery_timeout=30.0, name="orders", clock=clock)

    def test_opens_after_threshold(self, breaker):
        for _ in range(2):
            breaker.record_failure()
        assert breaker.state is CircuitBreakerState.CLOSED

        breaker.record_failure()

        assert breaker.state is CircuitBreakerState.OPEN
        assert breaker.allow_request() is False

    def test_success_resets_failure_count(self, breaker):
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()

        assert breaker.state is CircuitBreakerState.CLOSED
        assert breaker.failure_count == 1

    def test_single_trial_after_cooldown(self, breaker, clock):
        """Only one call is admitted while half-open."""
        for _ in range(3):
            breaker.record_failure()

        clock.now = 29.9
        assert breaker.allow_request() is False

        clock.now = 30.0
        assert breaker.allow_request() is True
        assert breaker.state is CircuitBreakerState.HALF_OPEN
        assert breaker.allow_request() is False

    def test_trial_success_closes(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()
        clock.now = 30.0
        breaker.allow_request()

        breaker.record_success()

        assert breaker.state is CircuitBreakerState.CLOSED
        assert breaker.failure_count == 0

    def test_trial_failure_reopens_with_fresh_timer(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()
        clock.now = 30.0
        breaker.allow_request()

        breaker.record_failure()

        assert breaker.state is CircuitBreakerState.OPEN
        clock.now = 59.0
        assert breaker.allow_request() is False
        clock.now = 60.0
        assert breaker.allow_request() is True

    def test_released_trial_can_be_retaken(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()
        clock.now = 30.0
        assert breaker.allow_request() is True

        breaker.release_trial()

        assert breaker.state is CircuitBreakerState.HALF_OPEN
        assert breaker.allow_request() is True

    @pytest.mark.asyncio
    async def test_call_wraps_outcomes(self, breaker):
        async def ok():
            return "fine"

        async def boom():
            raise RuntimeError("down")

        assert await breaker.call(ok) == "fine"
        for _ in range(3):
            with pytest.raises(RuntimeError):
                await breaker.call(boom)

        with pytest.raises(CircuitBreakerOpenException) as exc_info:
            await breaker.call(ok)
        assert exc_info.value.status_code == 503
        assert exc_info.value.details == {"reason": "circuit_open", "circuit": "orders"}

    @pytest.mark.asyncio
    async def test_cancellation_is_not_a_failure(self, breaker):
        async def cancelled():
            raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await breaker.call(cancelled)

        assert breaker.failure_count == 0

    def test_get_state(self, breaker):
        breaker.record_failure()

        state = breaker.get_state()

        assert state["name"] == "orders"
        assert state["state"] == "closed"
        assert state["failure_count"] == 1
        assert state["failure_threshold"] == 3


class TestCircuitBreakerRegistry:
    """Test cases for CircuitBreakerRegistry."""

    def test_one_breaker_per_name(self):
        registry = CircuitBreakerRegistry(failure_threshold=2, recovery_timeout=5.0)

        first = registry.get("http://auth:3001")

        assert registry.get("http://auth:3001") is first
        assert registry.get("http://orders:3004") is not first
        assert first.failure_threshold == 2

    def test_breakers_are_independent(self):
        registry = CircuitBreakerRegistry(failure_threshold=1)

        registry.get("a").record_failure()

        states = registry.get_all_states()
        assert states["a"]["state"] == "open"
        assert registry.get("b").state is CircuitBreakerState.CLOSED
