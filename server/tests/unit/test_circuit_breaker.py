"""
Unit Tests for the per-provider Circuit Breaker

Covers the CLOSED -> OPEN -> HALF_OPEN -> CLOSED cycle with a fake clock,
timeout accounting and the registry.
"""

import asyncio

import pytest

from websearch.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from websearch.errors import CircuitOpenError, NetworkError


async def _fail():
    raise NetworkError("boom", "test")


async def _ok():
    return "ok"


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def breaker(clock):
    """Breaker with threshold 3, 30s reset, 2 probe successes."""
    return CircuitBreaker(
        "test",
        CircuitBreakerConfig(failure_threshold=3, reset_timeout=30.0, success_threshold=2),
        clock=clock,
    )


async def _trip(breaker, times=3):
    for _ in range(times):
        with pytest.raises(NetworkError):
            await breaker.call(_fail)


# =============================================================================
# STATE MACHINE TESTS
# =============================================================================

class TestCircuitBreakerStates:
    """Tests for state transitions."""

    @pytest.mark.asyncio
    async def test_starts_closed(self, breaker):
        """A new breaker is closed and admits requests."""
        assert breaker.state == CircuitState.CLOSED
        assert breaker.allows_request()

    @pytest.mark.asyncio
    async def test_opens_after_exactly_threshold_failures(self, breaker):
        """Two failures keep it closed, the third opens it."""
        await _trip(breaker, times=2)
        assert breaker.state == CircuitState.CLOSED

        await _trip(breaker, times=1)
        assert breaker.state == CircuitState.OPEN
        assert breaker.failure_count == 3

    @pytest.mark.asyncio
    async def test_success_resets_consecutive_failures(self, breaker):
        """Failures must be consecutive to trip the circuit."""
        await _trip(breaker, times=2)
        await breaker.call(_ok)
        await _trip(breaker, times=2)
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_open_rejects_without_calling(self, breaker):
        """An open breaker fails fast with retry_after."""
        await _trip(breaker)
        called = False

        async def probe():
            nonlocal called
            called = True

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.call(probe)
        assert not called
        assert exc_info.value.retry_after == pytest.approx(30.0)

    @pytest.mark.asyncio
    async def test_half_open_only_after_full_timeout(self, breaker, clock):
        """Just before the timeout it stays open; at the timeout it probes."""
        await _trip(breaker)

        clock.advance(29.999)
        assert not breaker.allows_request()
        with pytest.raises(CircuitOpenError):
            await breaker.call(_ok)

        clock.advance(0.001)
        assert breaker.allows_request()
        assert breaker.state == CircuitState.OPEN  # allows_request does not mutate

        await breaker.call(_ok)
        assert breaker.state == CircuitState.HALF_OPEN

    @pytest.mark.asyncio
    async def test_half_open_closes_after_success_threshold(self, breaker, clock):
        """Two probe successes close the circuit."""
        await _trip(breaker)
        clock.advance(30)

        await breaker.call(_ok)
        await breaker.call(_ok)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self, breaker, clock):
        """Any failure while half-open reopens the circuit."""
        await _trip(breaker)
        clock.advance(30)
        await breaker.call(_ok)

        await _trip(breaker, times=1)
        assert breaker.state == CircuitState.OPEN


# =============================================================================
# TIMEOUT TESTS
# =============================================================================

class TestCircuitBreakerTimeouts:
    """Tests for timeout handling."""

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self, breaker):
        """A call exceeding its timeout raises and is recorded as a failure."""
        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(asyncio.TimeoutError):
            await breaker.call(slow, timeout=0.01)
        assert breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_passes_arguments(self, breaker):
        """Positional and keyword arguments reach the function."""
        async def add(a, b=0):
            return a + b

        assert await breaker.call(add, 2, b=3) == 5


# =============================================================================
# MAINTENANCE TESTS
# =============================================================================

class TestCircuitBreakerMaintenance:
    """Tests for reset and status reporting."""

    @pytest.mark.asyncio
    async def test_manual_reset(self, breaker):
        """reset() closes an open circuit."""
        await _trip(breaker)
        await breaker.reset()
        assert breaker.is_closed
        assert breaker.allows_request()

    @pytest.mark.asyncio
    async def test_status_dict(self, breaker):
        """Status reports state, counters and config."""
        await _trip(breaker, times=1)
        status = breaker.get_status()
        assert status["name"] == "test"
        assert status["state"] == "closed"
        assert status["failure_count"] == 1
        assert status["total_calls"] == 1
        assert status["config"]["failure_threshold"] == 3

    def test_config_from_settings(self, mock_settings):
        """Breaker config reads the breaker_* settings."""
        config = CircuitBreakerConfig.from_settings(mock_settings)
        assert config.failure_threshold == 3
        assert config.reset_timeout == 30.0
        assert config.success_threshold == 2


# =============================================================================
# REGISTRY TESTS
# =============================================================================

class TestCircuitBreakerRegistry:
    """Tests for the per-provider registry."""

    @pytest.mark.asyncio
    async def test_breakers_are_independent(self, clock):
        """Tripping one provider's breaker leaves the others closed."""
        registry = CircuitBreakerRegistry(clock=clock)
        ddg = registry.register("duckduckgo", CircuitBreakerConfig(failure_threshold=1))
        bing = registry.register("bing", CircuitBreakerConfig(failure_threshold=1))

        with pytest.raises(NetworkError):
            await ddg.call(_fail)

        assert ddg.is_open
        assert bing.is_closed
        summary = registry.get_health_summary()
        assert summary["open"] == 1
        assert summary["closed"] == 1
        assert summary["unhealthy_circuits"] == ["duckduckgo"]

    def test_register_returns_existing(self, clock):
        """Registering a name twice returns the same breaker."""
        registry = CircuitBreakerRegistry(clock=clock)
        first = registry.register("ddg")
        assert registry.register("ddg") is first
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_reset_all(self, clock):
        """reset_all closes every breaker."""
        registry = CircuitBreakerRegistry(clock=clock)
        breaker = registry.register("ddg", CircuitBreakerConfig(failure_threshold=1))
        with pytest.raises(NetworkError):
            await breaker.call(_fail)

        await registry.reset_all()
        assert all(b.is_closed for b in registry)
