"""
Circuit Breaker for search providers.

Isolates a degraded provider so repeated failures fail fast instead of
burning the caller's time budget. One breaker per provider name; breakers
never share state or locks.

Three States:
- CLOSED: Normal operation, calls pass through
- OPEN: Circuit tripped, calls rejected immediately with CircuitOpenError
- HALF_OPEN: Reset timeout elapsed since the last failure, probe calls allowed

Transitions:
- CLOSED -> OPEN after `failure_threshold` consecutive failures
- OPEN -> HALF_OPEN once `reset_timeout` seconds passed since the last failure
- HALF_OPEN -> CLOSED after `success_threshold` consecutive successes
- HALF_OPEN -> OPEN on any failure

Usage:
    from websearch.circuit_breaker import CircuitBreaker, CircuitBreakerConfig

    cb = CircuitBreaker("duckduckgo", CircuitBreakerConfig(failure_threshold=3))
    results = await cb.call(provider.search, query, timeout=10.0)
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

from .errors import CircuitOpenError

logger = logging.getLogger("websearch.circuit_breaker")


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing fast, rejecting requests
    HALF_OPEN = "half_open"  # Testing recovery


@dataclass
class CircuitBreakerConfig:
    """Configuration for a circuit breaker."""
    failure_threshold: int = 5       # Consecutive failures to trip circuit
    reset_timeout: float = 30.0      # Seconds after last failure before probing
    success_threshold: int = 2       # Half-open successes needed to close

    @classmethod
    def from_settings(cls, settings) -> "CircuitBreakerConfig":
        return cls(
            failure_threshold=settings.breaker_failure_threshold,
            reset_timeout=settings.breaker_reset_timeout,
            success_threshold=settings.breaker_success_threshold,
        )


# Defaults used by the strategy manager when registering a provider
PROVIDER_CIRCUIT_CONFIG = CircuitBreakerConfig(
    failure_threshold=3,
    reset_timeout=30.0,
    success_threshold=2,
)


class CircuitBreaker:
    """
    Three-state failure isolation for a single provider.

    Every call routed through `call()` records exactly one success or
    failure. Timeouts and cancellation count as failures.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize circuit breaker.

        Args:
            name: Unique identifier for this circuit (the provider name)
            config: Configuration options
            clock: Monotonic time source in seconds
        """
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._total_calls = 0
        self._rejected_calls = 0
        self._last_failure_time: Optional[float] = None
        self._last_activity_time: Optional[float] = None
        self._last_state_change_time = self._clock()
        self._lock = asyncio.Lock()

        logger.debug(f"CircuitBreaker '{name}' initialized: threshold={self.config.failure_threshold}")

    @property
    def state(self) -> CircuitState:
        """Current circuit state."""
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def success_count(self) -> int:
        return self._success_count

    @property
    def is_closed(self) -> bool:
        return self._state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    def _timeout_elapsed(self) -> bool:
        if self._last_failure_time is None:
            return True
        return self._clock() - self._last_failure_time >= self.config.reset_timeout

    def _retry_after(self) -> float:
        if self._last_failure_time is None:
            return 0.0
        return max(0.0, self.config.reset_timeout - (self._clock() - self._last_failure_time))

    def allows_request(self) -> bool:
        """Non-mutating check used for provider eligibility."""
        if self._state == CircuitState.OPEN:
            return self._timeout_elapsed()
        return True

    def seconds_since_activity(self) -> float:
        """Seconds since the last recorded call outcome (or state change)."""
        reference = self._last_activity_time or self._last_state_change_time
        return self._clock() - reference

    def _transition_to(self, new_state: CircuitState) -> None:
        """Transition to a new state with logging."""
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        self._last_state_change_time = self._clock()

        if new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._success_count = 0
        elif new_state == CircuitState.HALF_OPEN:
            self._success_count = 0

        message = (
            f"CircuitBreaker '{self.name}': {old_state.value} -> {new_state.value} "
            f"(failures={self._failure_count})"
        )
        if new_state == CircuitState.OPEN:
            logger.warning(message)
        else:
            logger.info(message)

    async def _before_call(self) -> None:
        async with self._lock:
            if self._state == CircuitState.OPEN:
                if self._timeout_elapsed():
                    self._transition_to(CircuitState.HALF_OPEN)
                else:
                    self._rejected_calls += 1
                    raise CircuitOpenError(self.name, self._retry_after())

    async def record_success(self) -> None:
        """Record a successful call."""
        async with self._lock:
            self._total_calls += 1
            self._last_activity_time = self._clock()
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.config.success_threshold:
                    self._transition_to(CircuitState.CLOSED)
            else:
                self._failure_count = 0
                self._success_count = 0

    async def record_failure(self, error: Optional[BaseException] = None) -> None:
        """Record a failed call."""
        async with self._lock:
            self._total_calls += 1
            now = self._clock()
            self._last_failure_time = now
            self._last_activity_time = now
            self._failure_count += 1
            self._success_count = 0

            if error is not None:
                logger.debug(f"CircuitBreaker '{self.name}': failure {self._failure_count} ({type(error).__name__})")

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
            elif self._state == CircuitState.CLOSED:
                if self._failure_count >= self.config.failure_threshold:
                    self._transition_to(CircuitState.OPEN)

    async def call(
        self,
        func: Callable[..., Any],
        *args,
        timeout: Optional[float] = None,
        **kwargs
    ) -> Any:
        """
        Execute a coroutine function with circuit breaker protection.

        Args:
            func: Async function to call
            *args: Positional arguments for func
            timeout: Optional timeout in seconds
            **kwargs: Keyword arguments for func

        Returns:
            Result from func

        Raises:
            CircuitOpenError: If circuit is open
            asyncio.TimeoutError: If call times out (counted as failure)
            Exception: Any exception from func (counted as failure)
        """
        await self._before_call()

        try:
            if timeout is not None:
                result = await asyncio.wait_for(func(*args, **kwargs), timeout=timeout)
            else:
                result = await func(*args, **kwargs)
        except asyncio.CancelledError as e:
            await self.record_failure(e)
            raise
        except Exception as e:
            await self.record_failure(e)
            raise

        await self.record_success()
        return result

    def get_status(self) -> Dict[str, Any]:
        """Get current status as dict."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "total_calls": self._total_calls,
            "rejected_calls": self._rejected_calls,
            "seconds_since_last_failure": (
                self._clock() - self._last_failure_time if self._last_failure_time is not None else None
            ),
            "seconds_in_state": self._clock() - self._last_state_change_time,
            "config": {
                "failure_threshold": self.config.failure_threshold,
                "reset_timeout": self.config.reset_timeout,
                "success_threshold": self.config.success_threshold,
            },
            "checked_at": datetime.now(timezone.utc).isoformat(),
        }

    async def reset(self) -> None:
        """Manually reset circuit to closed state."""
        async with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._success_count = 0
            self._last_failure_time = None
            self._last_state_change_time = self._clock()
            logger.info(f"CircuitBreaker '{self.name}': Manually reset to CLOSED")


class CircuitBreakerRegistry:
    """
    Per-provider circuit breakers keyed by name.

    Each breaker keeps its own lock, so one provider's degradation never
    blocks admission checks for another.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._clock = clock

    def register(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None
    ) -> CircuitBreaker:
        """Register a new circuit breaker (returns the existing one if present)."""
        if name in self._breakers:
            return self._breakers[name]

        breaker = CircuitBreaker(name, config, clock=self._clock)
        self._breakers[name] = breaker
        return breaker

    def get(self, name: str) -> Optional[CircuitBreaker]:
        return self._breakers.get(name)

    def remove(self, name: str) -> None:
        self._breakers.pop(name, None)

    def __iter__(self):
        return iter(self._breakers.values())

    def __len__(self) -> int:
        return len(self._breakers)

    async def reset_all(self) -> None:
        for breaker in self._breakers.values():
            await breaker.reset()

    def get_all_status(self) -> Dict[str, Any]:
        return {
            name: breaker.get_status()
            for name, breaker in self._breakers.items()
        }

    def get_health_summary(self) -> Dict[str, Any]:
        """Get aggregate health summary."""
        total = len(self._breakers)
        closed = sum(1 for b in self._breakers.values() if b.state == CircuitState.CLOSED)
        open_circuits = sum(1 for b in self._breakers.values() if b.state == CircuitState.OPEN)
        half_open = sum(1 for b in self._breakers.values() if b.state == CircuitState.HALF_OPEN)

        return {
            "total_circuits": total,
            "closed": closed,
            "open": open_circuits,
            "half_open": half_open,
            "health_percentage": (closed / total * 100) if total > 0 else 100,
            "unhealthy_circuits": [
                name for name, b in self._breakers.items()
                if b.state != CircuitState.CLOSED
            ]
        }
