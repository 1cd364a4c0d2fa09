"""
Search provider interface and per-provider metrics.

Shared provider behavior is composed rather than inherited: metrics come from
a ProviderMetricsRecorder, HTTP (headers, retry, block detection) from a
ProviderHttpClient. SearchProvider itself only fixes the contract.
"""

import logging
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from ..models import SearchQuery, SearchResult

logger = logging.getLogger("websearch.providers")


@dataclass
class ProviderMetrics:
    """Running counters for one provider."""
    total_searches: int = 0
    successful_searches: int = 0
    average_response_ms: float = 0.0
    last_updated: Optional[datetime] = None

    @property
    def failed_searches(self) -> int:
        return self.total_searches - self.successful_searches

    @property
    def success_rate(self) -> float:
        if self.total_searches == 0:
            return 0.0
        return self.successful_searches / self.total_searches

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_searches": self.total_searches,
            "successful_searches": self.successful_searches,
            "failed_searches": self.failed_searches,
            "success_rate": round(self.success_rate, 3),
            "average_response_ms": round(self.average_response_ms, 1),
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }


class ProviderMetricsRecorder:
    """
    Records exactly one outcome per provider round-trip.

    Usage:
        with self._recorder.track():
            return await self._do_search(query)
    """

    def __init__(self, name: str):
        self.name = name
        self._metrics = ProviderMetrics()

    @property
    def metrics(self) -> ProviderMetrics:
        """Snapshot; mutating it does not affect the recorder."""
        return replace(self._metrics)

    def record(self, success: bool, elapsed_ms: float) -> None:
        m = self._metrics
        m.total_searches += 1
        if success:
            m.successful_searches += 1
        m.average_response_ms += (elapsed_ms - m.average_response_ms) / m.total_searches
        m.last_updated = datetime.now(timezone.utc)

    @contextmanager
    def track(self) -> Iterator[None]:
        """Time the enclosed call. Exceptions (cancellation included) count as failures."""
        start = time.perf_counter()
        try:
            yield
        except BaseException as e:
            self.record(False, (time.perf_counter() - start) * 1000)
            logger.debug(f"{self.name}: search failed ({type(e).__name__})")
            raise
        self.record(True, (time.perf_counter() - start) * 1000)

    def reset(self) -> None:
        self._metrics = ProviderMetrics()


class SearchProvider(ABC):
    """Base class for search providers"""

    name: str = "provider"
    priority: int = 5             # 1..10, higher is preferred
    timeout_seconds: float = 15.0

    def __init__(self):
        self._recorder = ProviderMetricsRecorder(self.name)

    @property
    def is_available(self) -> bool:
        return True

    def can_handle(self, query: SearchQuery) -> bool:
        return True

    @property
    def metrics(self) -> ProviderMetrics:
        return self._recorder.metrics

    def reset_metrics(self) -> None:
        self._recorder.reset()

    async def search(self, query: SearchQuery) -> List[SearchResult]:
        """Run one search, recording exactly one metrics outcome."""
        with self._recorder.track():
            results = await self._search(query)
        logger.info(f"{self.name} returned {len(results)} results for '{query.query}'")
        return results

    @abstractmethod
    async def _search(self, query: SearchQuery) -> List[SearchResult]:
        """Provider-specific fetch and parse."""
        pass

    async def close(self) -> None:
        """Release resources held by the provider."""
        pass

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r} priority={self.priority}>"
