"""
Search Strategy Manager - provider selection with fallback

Owns the registered providers together with one CircuitBreaker and one
RateLimiter each. A search walks the eligible providers in score order,
strictly one at a time, until one succeeds or the attempt budget is spent.

Provider score:
    (0.7 * success_rate + 0.3 * speed) * priority / 10
    speed = max(0, (10000 - avg_ms) / 10000), 0 while no timing exists

Eligibility: available, can handle the query, success rate at or above the
floor once it has history, and its breaker admits a request (a breaker whose
reset timeout elapsed admits a half-open probe).

Usage:
    manager = SearchStrategyManager()
    manager.register(DuckDuckGoProvider())
    results = await manager.search(SearchQuery(query="python asyncio"))
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from .circuit_breaker import (
    PROVIDER_CIRCUIT_CONFIG,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
)
from .errors import CircuitOpenError, NetworkError, NoProviderAvailableError, RateLimitedError
from .models import SearchQuery, SearchResult
from .providers.base import SearchProvider
from .providers.semantic import SemanticSearchProvider
from .rate_limiter import RateLimiter, RateLimiterConfig
from .smart_cache import CacheConfig, SmartCache

logger = logging.getLogger("websearch.search_manager")


@dataclass
class ManagerConfig:
    """Fallback and caching behavior of the manager."""
    max_timeout_seconds: float = 30.0
    max_fallback_attempts: int = 3
    enable_cache: bool = True
    cache_ttl_minutes: float = 60.0
    min_success_rate: float = 0.3
    results_per_cache_entry: int = 5
    stale_breaker_reset_minutes: float = 10.0

    @classmethod
    def from_settings(cls, settings) -> "ManagerConfig":
        return cls(
            max_timeout_seconds=settings.max_timeout_seconds,
            max_fallback_attempts=settings.max_fallback_attempts,
            enable_cache=settings.enable_result_cache,
            cache_ttl_minutes=settings.cache_default_ttl_minutes,
            min_success_rate=settings.min_success_rate,
        )


@dataclass
class ProviderSlot:
    """A registered provider and its private admission controls."""
    provider: SearchProvider
    breaker: CircuitBreaker
    limiter: RateLimiter

    @property
    def name(self) -> str:
        return self.provider.name


@dataclass
class ManagerResult:
    """What a manager search produced and how."""
    results: List[SearchResult]
    provider: Optional[str]
    elapsed_ms: float
    from_cache: bool = False
    attempted: List[str] = field(default_factory=list)


def provider_score(provider: SearchProvider) -> float:
    metrics = provider.metrics
    success_score = metrics.success_rate * 0.7
    avg = metrics.average_response_ms
    speed_score = max(0.0, (10000 - avg) / 10000) * 0.3 if avg > 0 else 0.0
    return (success_score + speed_score) * (provider.priority / 10.0)


class SearchStrategyManager:
    """
    Selects providers, enforces per-provider rate limits and circuit
    breakers, and falls back through providers on failure.
    """

    def __init__(
        self,
        config: Optional[ManagerConfig] = None,
        cache: Optional[SmartCache] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or ManagerConfig()
        self._clock = clock
        self._slots: Dict[str, ProviderSlot] = {}
        self._breakers = CircuitBreakerRegistry(clock=clock)
        self.cache = cache or SmartCache(
            CacheConfig(default_ttl_minutes=self.config.cache_ttl_minutes),
            name="search_outcomes",
            clock=clock,
        )

    # ------------------------------------------------------------------
    # registration
    # ------------------------------------------------------------------

    def register(
        self,
        provider: SearchProvider,
        breaker_config: Optional[CircuitBreakerConfig] = None,
        limiter_config: Optional[RateLimiterConfig] = None,
    ) -> ProviderSlot:
        """Register a provider with its own breaker and rate limiter."""
        if provider.name in self._slots:
            raise ValueError(f"Provider '{provider.name}' already registered")

        breaker = self._breakers.register(provider.name, breaker_config or PROVIDER_CIRCUIT_CONFIG)
        limiter = RateLimiter(provider.name, limiter_config, clock=self._clock)
        slot = ProviderSlot(provider=provider, breaker=breaker, limiter=limiter)
        self._slots[provider.name] = slot
        if isinstance(provider, SemanticSearchProvider):
            provider.route_through(self.run_upstream, self.admits_upstream)
        logger.info(f"Registered provider {provider.name} (priority {provider.priority})")
        return slot

    def unregister(self, name: str) -> None:
        if self._slots.pop(name, None) is not None:
            self._breakers.remove(name)
            logger.info(f"Unregistered provider {name}")

    @property
    def providers(self) -> List[SearchProvider]:
        return [slot.provider for slot in self._slots.values()]

    def get_slot(self, name: str) -> Optional[ProviderSlot]:
        return self._slots.get(name)

    # ------------------------------------------------------------------
    # selection
    # ------------------------------------------------------------------

    def _is_eligible(self, slot: ProviderSlot, query: SearchQuery) -> bool:
        provider = slot.provider
        metrics = provider.metrics
        meets_success_rate = (
            metrics.total_searches == 0
            or metrics.success_rate >= self.config.min_success_rate
        )
        return (
            provider.is_available
            and provider.can_handle(query)
            and meets_success_rate
            and slot.breaker.allows_request()
        )

    def _ordered(self, slots: List[ProviderSlot]) -> List[ProviderSlot]:
        # Ties (e.g. no history yet) fall back to priority, then registration order
        return sorted(
            slots,
            key=lambda s: (provider_score(s.provider), s.provider.priority),
            reverse=True,
        )

    def eligible_providers(self, query: SearchQuery) -> List[SearchProvider]:
        slots = [s for s in self._slots.values() if self._is_eligible(s, query)]
        return [s.provider for s in self._ordered(slots)]

    def get_rankings(self) -> List[Dict[str, Any]]:
        """All providers, best score first."""
        return [
            {
                "name": slot.name,
                "score": round(provider_score(slot.provider), 4),
                "priority": slot.provider.priority,
                "success_rate": slot.provider.metrics.success_rate,
                "circuit_state": slot.breaker.state.value,
            }
            for slot in self._ordered(list(self._slots.values()))
        ]

    # ------------------------------------------------------------------
    # outcome cache
    # ------------------------------------------------------------------

    @staticmethod
    def cache_key(query: SearchQuery) -> str:
        return f"{query.formatted.lower()}_{query.search_type.value}_{query.max_results}"

    async def _cached_outcome(self, query: SearchQuery) -> Optional[Dict[str, Any]]:
        if not self.config.enable_cache:
            return None
        outcomes = await self.cache.get_search_results(self.cache_key(query))
        if outcomes:
            return outcomes[-1]
        return None

    async def _store_outcome(self, query: SearchQuery, provider: str, results: List[SearchResult]) -> None:
        if not self.config.enable_cache:
            return
        key = self.cache_key(query)
        outcomes = list(await self.cache.get_search_results(key) or [])
        outcomes.append({"provider": provider, "results": list(results)})
        outcomes = outcomes[-self.config.results_per_cache_entry:]
        await self.cache.set_search_results(
            key, outcomes, ttl=timedelta(minutes=self.config.cache_ttl_minutes)
        )

    # ------------------------------------------------------------------
    # search
    # ------------------------------------------------------------------

    async def search(self, query: SearchQuery) -> List[SearchResult]:
        """
        Search with automatic fallback.

        Raises:
            NoProviderAvailableError: Nothing registered, nothing eligible,
                or every eligible provider was rate limited
            WebSearchError: The last provider error once attempts ran out
        """
        outcome = await self.search_with_details(query)
        return outcome.results

    async def search_with_details(self, query: SearchQuery) -> ManagerResult:
        start = time.perf_counter()

        cached = await self._cached_outcome(query)
        if cached is not None:
            logger.debug(f"Outcome cache hit for '{query.formatted}'")
            return ManagerResult(
                results=[r.model_copy(deep=True) for r in cached["results"]],
                provider=cached["provider"],
                elapsed_ms=(time.perf_counter() - start) * 1000,
                from_cache=True,
            )

        if not self._slots:
            raise NoProviderAvailableError("No search provider registered")

        candidates = self._ordered([s for s in self._slots.values() if self._is_eligible(s, query)])
        if not candidates:
            raise NoProviderAvailableError(f"No provider can serve '{query.formatted}'")

        attempted: List[str] = []
        last_error: Optional[Exception] = None

        for slot in candidates:
            if len(attempted) >= self.config.max_fallback_attempts:
                break

            if not await slot.limiter.try_acquire():
                logger.info(f"Provider {slot.name} rate limited, skipping")
                continue

            attempted.append(slot.name)
            timeout = min(slot.provider.timeout_seconds, self.config.max_timeout_seconds)

            try:
                results = await slot.breaker.call(slot.provider.search, query, timeout=timeout)
            except CircuitOpenError as e:
                last_error = e
                logger.info(f"Provider {slot.name} circuit open: {e}")
                continue
            except asyncio.TimeoutError:
                last_error = NetworkError(f"{slot.name} timed out after {timeout:.1f}s", slot.name)
                logger.warning(
                    f"Provider {slot.name} failed (attempt {len(attempted)}): timeout after {timeout:.1f}s"
                )
                continue
            except Exception as e:
                last_error = e
                logger.warning(f"Provider {slot.name} failed (attempt {len(attempted)}): {type(e).__name__}: {e}")
                continue

            await self._store_outcome(query, slot.name, results)
            elapsed_ms = (time.perf_counter() - start) * 1000
            logger.info(f"Provider {slot.name} returned {len(results)} results in {elapsed_ms:.0f}ms")
            return ManagerResult(
                results=results,
                provider=slot.name,
                elapsed_ms=elapsed_ms,
                attempted=attempted,
            )

        if last_error is None:
            raise NoProviderAvailableError("All eligible providers are rate limited", tried=attempted)
        logger.error(f"All providers failed for '{query.formatted}' (tried {attempted})")
        raise last_error

    # ------------------------------------------------------------------
    # sub-requests from wrapping providers
    # ------------------------------------------------------------------

    def _slot_of(self, provider: SearchProvider) -> Optional[ProviderSlot]:
        slot = self._slots.get(provider.name)
        if slot is None or slot.provider is not provider:
            return None
        return slot

    def admits_upstream(self, provider: SearchProvider) -> bool:
        """False while the provider's breaker rejects requests. Unregistered providers are admitted."""
        slot = self._slot_of(provider)
        return slot is None or slot.breaker.allows_request()

    async def run_upstream(self, provider: SearchProvider, query: SearchQuery) -> List[SearchResult]:
        """
        One sub-request on behalf of a wrapping provider, admitted and
        timed by the upstream's own breaker and rate limiter.

        Raises:
            CircuitOpenError: The upstream's breaker rejected the call
            RateLimitedError: The upstream's rate limiter denied admission
            NetworkError: The call timed out
        """
        slot = self._slot_of(provider)
        if slot is None:
            return await provider.search(query)

        if not await slot.limiter.try_acquire():
            raise RateLimitedError(slot.name)

        timeout = min(provider.timeout_seconds, self.config.max_timeout_seconds)
        try:
            return await slot.breaker.call(provider.search, query, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise NetworkError(f"{slot.name} timed out after {timeout:.1f}s", slot.name) from e

    # ------------------------------------------------------------------
    # maintenance
    # ------------------------------------------------------------------

    async def reset_all_circuit_breakers(self) -> None:
        await self._breakers.reset_all()

    async def run_health_check(self) -> List[str]:
        """Reset breakers that stayed open with no activity. Returns reset names."""
        stale_after = self.config.stale_breaker_reset_minutes * 60
        reset = []
        for slot in self._slots.values():
            m = slot.provider.metrics
            logger.debug(
                f"Provider {slot.name}: success rate {m.success_rate * 100:.1f}%, "
                f"circuit {slot.breaker.state.value}, available {slot.provider.is_available}"
            )
            if slot.breaker.is_open and slot.breaker.seconds_since_activity() >= stale_after:
                logger.info(f"Resetting circuit breaker for inactive provider: {slot.name}")
                await slot.breaker.reset()
                reset.append(slot.name)
        return reset

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "providers": {
                slot.name: {
                    "priority": slot.provider.priority,
                    "available": slot.provider.is_available,
                    "score": round(provider_score(slot.provider), 4),
                    "metrics": slot.provider.metrics.to_dict(),
                    "circuit_breaker": slot.breaker.get_status(),
                    "rate_limiter": slot.limiter.get_statistics(),
                }
                for slot in self._slots.values()
            },
            "circuit_health": self._breakers.get_health_summary(),
            "cache": self.cache.get_stats(),
            "config": {
                "max_timeout_seconds": self.config.max_timeout_seconds,
                "max_fallback_attempts": self.config.max_fallback_attempts,
                "enable_cache": self.config.enable_cache,
                "min_success_rate": self.config.min_success_rate,
            },
        }

    async def start(self) -> None:
        if self.config.enable_cache:
            await self.cache.start_cleanup_loop()

    async def close(self) -> None:
        await self.cache.stop_cleanup_loop()
        for slot in self._slots.values():
            try:
                await slot.provider.close()
            except Exception as e:
                logger.warning(f"Error closing provider {slot.name}: {e}")
