"""Tests for the circuit breaker module."""

import pytest

from hookline.core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitOpenError,
    CircuitState,
)


class TestCircuitBreaker:
    """Tests for CircuitBreaker."""

    def test_initial_state(self, clock):
        """Test initial state is closed and calls are allowed."""
        breaker = CircuitBreaker("test", clock=clock)

        assert breaker.is_closed
        assert breaker.state == CircuitState.CLOSED
        assert breaker.opened_at is None
        assert breaker.can_execute().allowed is True

    def test_stays_closed_below_threshold(self, clock):
        """Test fewer failures than the threshold keep the circuit closed."""
        breaker = CircuitBreaker("test", clock=clock)

        for _ in range(4):
            breaker.record_failure(RuntimeError("boom"))

        assert breaker.is_closed
        assert breaker.can_execute().allowed is True

    def test_opens_at_threshold(self, clock):
        """Test the circuit opens after exactly failure_threshold failures."""
        breaker = CircuitBreaker("test", clock=clock)

        for _ in range(5):
            breaker.record_failure()

        decision = breaker.can_execute()
        assert breaker.is_open
        assert breaker.opened_at == clock.now
        assert decision.allowed is False
        assert decision.reason == "Circuit breaker is open. Retry in 30 seconds"

    def test_remaining_seconds_rounded_up(self, clock):
        """Test the rejection message rounds remaining time up."""
        config = CircuitBreakerConfig(failure_threshold=1, reset_timeout_seconds=30)
        breaker = CircuitBreaker("test", config, clock=clock)
        breaker.record_failure()

        clock.advance(10.2)
        decision = breaker.can_execute()

        assert decision.allowed is False
        assert decision.reason == "Circuit breaker is open. Retry in 20 seconds"

    def test_half_open_after_reset_timeout(self, clock):
        """Test the circuit admits a probe once the cooldown has elapsed."""
        config = CircuitBreakerConfig(failure_threshold=1, reset_timeout_seconds=30)
        breaker = CircuitBreaker("test", config, clock=clock)
        breaker.record_failure()

        clock.advance(29)
        assert breaker.can_execute().allowed is False

        clock.advance(1)
        assert breaker.can_execute().allowed is True
        assert breaker.is_half_open

    def test_half_open_admits_concurrent_probes(self, clock):
        """Test every caller passes while half-open."""
        config = CircuitBreakerConfig(failure_threshold=1, reset_timeout_seconds=5)
        breaker = CircuitBreaker("test", config, clock=clock)
        breaker.record_failure()
        clock.advance(5)

        assert all(breaker.can_execute().allowed for _ in range(3))

    def test_success_in_half_open_closes_and_clears_history(self, clock):
        """Test a successful probe closes the circuit and forgets failures."""
        config = CircuitBreakerConfig(failure_threshold=2, reset_timeout_seconds=5)
        breaker = CircuitBreaker("test", config, clock=clock)
        breaker.record_failure()
        breaker.record_failure()
        clock.advance(5)
        breaker.can_execute()

        breaker.record_success()

        assert breaker.is_closed
        assert breaker.opened_at is None
        assert breaker.failure_timestamps == []

        # One new failure is not enough to reopen
        breaker.record_failure()
        assert breaker.is_closed
        assert breaker.can_execute().allowed is True

    def test_failure_in_half_open_reopens_with_fresh_cooldown(self, clock):
        """Test a failed probe reopens the circuit and restarts the timer."""
        config = CircuitBreakerConfig(failure_threshold=1, reset_timeout_seconds=30)
        breaker = CircuitBreaker("test", config, clock=clock)
        breaker.record_failure()
        first_opened = breaker.opened_at

        clock.advance(31)
        breaker.can_execute()
        breaker.record_failure(RuntimeError("still down"))

        assert breaker.is_open
        assert breaker.opened_at == first_opened + 31
        decision = breaker.can_execute()
        assert decision.allowed is False
        assert decision.reason == "Circuit breaker is open. Retry in 30 seconds"

    def test_success_while_closed_keeps_failures(self, clock):
        """Test success in the closed state does not reset the failure count."""
        config = CircuitBreakerConfig(failure_threshold=3)
        breaker = CircuitBreaker("test", config, clock=clock)

        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()

        assert breaker.is_open

    def test_old_failures_fall_out_of_window(self, clock):
        """Test failures older than the window do not count."""
        config = CircuitBreakerConfig(failure_threshold=3, failure_window_seconds=60)
        breaker = CircuitBreaker("test", config, clock=clock)

        breaker.record_failure()
        breaker.record_failure()
        clock.advance(61)
        breaker.record_failure()

        assert breaker.is_closed
        assert breaker.status().failure_count == 1

    def test_manual_reset(self, clock):
        """Test manual reset to closed."""
        config = CircuitBreakerConfig(failure_threshold=1)
        breaker = CircuitBreaker("test", config, clock=clock)
        breaker.record_failure("refused")

        breaker.reset()

        assert breaker.is_closed
        assert breaker.status().failure_count == 0
        assert breaker.status().last_error is None


class TestCircuitBreakerRegistry:
    """Tests for CircuitBreakerRegistry."""

    def test_get_or_create(self, clock):
        """Test the same key returns the same breaker."""
        registry = CircuitBreakerRegistry(clock=clock)

        assert registry.get_or_create("a") is registry.get_or_create("a")
        assert registry.get_or_create("a") is not registry.get_or_create("b")

    def test_keys_are_independent(self, clock):
        """Test failures on one key do not affect another."""
        registry = CircuitBreakerRegistry(
            default_config=CircuitBreakerConfig(failure_threshold=1),
            clock=clock,
        )

        registry.record_failure("a", RuntimeError("down"))

        assert registry.can_execute("a").allowed is False
        assert registry.can_execute("b").allowed is True

    def test_per_key_config(self, clock):
        """Test configure() overrides the default for one key."""
        registry = CircuitBreakerRegistry(clock=clock)
        registry.configure("fragile", CircuitBreakerConfig(failure_threshold=1))

        registry.record_failure("fragile")
        registry.record_failure("sturdy")

        assert registry.get_status("fragile").state == CircuitState.OPEN
        assert registry.get_status("sturdy").state == CircuitState.CLOSED

    def test_separate_registries_share_nothing(self, clock):
        """Test two registries keep separate state for the same key."""
        config = CircuitBreakerConfig(failure_threshold=1)
        first = CircuitBreakerRegistry(config, clock=clock)
        second = CircuitBreakerRegistry(config, clock=clock)

        first.record_failure("shared")

        assert first.can_execute("shared").allowed is False
        assert second.can_execute("shared").allowed is True

    def test_list_all_statuses_and_reset_all(self, clock):
        """Test listing statuses and resetting every breaker."""
        registry = CircuitBreakerRegistry(
            default_config=CircuitBreakerConfig(failure_threshold=1),
            clock=clock,
        )
        for key in ["a", "b", "c"]:
            registry.record_failure(key)

        statuses = registry.list_all_statuses()
        assert {s.key for s in statuses} == {"a", "b", "c"}
        assert len(registry.get_open_circuits()) == 3

        registry.reset_all()

        assert registry.get_open_circuits() == []

    def test_reset_single_key(self, clock):
        registry = CircuitBreakerRegistry(
            default_config=CircuitBreakerConfig(failure_threshold=1),
            clock=clock,
        )
        registry.record_failure("a")
        registry.record_failure("b")

        registry.reset("a")

        assert registry.can_execute("a").allowed is True
        assert registry.can_execute("b").allowed is False

    def test_status_to_dict(self, clock):
        registry = CircuitBreakerRegistry(clock=clock)
        registry.record_failure("a", ValueError("bad gateway"))

        data = registry.get_status("a").to_dict()

        assert data["state"] == "closed"
        assert data["failure_count"] == 1
        assert data["last_error"] == "bad gateway"


class TestWithBreaker:
    """Tests for CircuitBreakerRegistry.with_breaker."""

    @pytest.mark.asyncio
    async def test_success_returns_result(self, clock):
        """Test the wrapped call's result is returned."""
        registry = CircuitBreakerRegistry(clock=clock)

        async def call():
            return 42

        assert await registry.with_breaker("svc", call) == 42

    @pytest.mark.asyncio
    async def test_failure_is_recorded_and_reraised(self, clock):
        """Test the original error propagates and counts as a failure."""
        registry = CircuitBreakerRegistry(
            default_config=CircuitBreakerConfig(failure_threshold=1),
            clock=clock,
        )

        async def call():
            raise ConnectionError("refused")

        with pytest.raises(ConnectionError):
            await registry.with_breaker("svc", call)

        assert registry.get_status("svc").state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_open_circuit_skips_call(self, clock):
        """Test an open circuit raises CircuitOpenError without calling fn."""
        registry = CircuitBreakerRegistry(
            default_config=CircuitBreakerConfig(failure_threshold=1, reset_timeout_seconds=30),
            clock=clock,
        )
        registry.record_failure("svc")
        calls = []

        async def call():
            calls.append(1)

        with pytest.raises(CircuitOpenError) as exc_info:
            await registry.with_breaker("svc", call)

        assert calls == []
        assert exc_info.value.key == "svc"
        assert exc_info.value.kind == "circuit_open"
        assert str(exc_info.value) == "Circuit breaker is open. Retry in 30 seconds"

    @pytest.mark.asyncio
    async def test_successful_probe_closes_circuit(self, clock):
        """Test a successful half-open probe through with_breaker closes it."""
        registry = CircuitBreakerRegistry(
            default_config=CircuitBreakerConfig(failure_threshold=1, reset_timeout_seconds=30),
            clock=clock,
        )
        registry.record_failure("svc")
        clock.advance(30)

        async def call():
            return "ok"

        assert await registry.with_breaker("svc", call) == "ok"
        assert registry.get_status("svc").state == CircuitState.CLOSED
