"""
Shared pytest fixtures for websearch tests.

This module provides common fixtures used across the unit tests:
a controllable clock, scripted providers, a result factory and an
offline embedding client.
"""

import asyncio
import sys
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union
from unittest.mock import MagicMock

import httpx
import pytest

# Add server directory to path
SERVER_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(SERVER_DIR))

from websearch.embeddings import EmbeddingClient  # noqa: E402
from websearch.http_fetcher import ProviderHttpClient  # noqa: E402
from websearch.models import RelevanceScore, SearchQuery, SearchResult  # noqa: E402
from websearch.providers.base import SearchProvider  # noqa: E402
from websearch.retry_strategy import RetryConfig, RetryPolicy  # noqa: E402


# ============================================
# Clock
# ============================================

class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """A fake monotonic clock."""
    return FakeClock()


# ============================================
# Results
# ============================================

def make_result(
    title: str = "Python asyncio tutorial",
    url: str = "https://docs.python.org/3/library/asyncio.html",
    snippet: str = "asyncio is a library to write concurrent code using the async/await syntax.",
    content: Optional[str] = None,
    overall: Optional[float] = None,
    authority: float = 0.8,
) -> SearchResult:
    """Build a result, optionally with an attached relevance score."""
    relevance = None
    if overall is not None:
        relevance = RelevanceScore(
            overall=overall,
            semantic=overall,
            keyword=overall,
            quality=overall,
            authority=authority,
        )
    return SearchResult(title=title, url=url, snippet=snippet, content=content, relevance=relevance)


@pytest.fixture
def result_factory() -> Callable[..., SearchResult]:
    """Factory for search results."""
    return make_result


# ============================================
# Providers
# ============================================

Step = Union[List[SearchResult], BaseException]


class FakeProvider(SearchProvider):
    """
    Provider that replays scripted outcomes.

    Each call pops the next step; the last step repeats forever. A step is
    either a list of results or an exception to raise.
    """

    def __init__(
        self,
        name: str,
        steps: Sequence[Step] = (),
        priority: int = 5,
        timeout_seconds: float = 5.0,
        delay: float = 0.0,
        available: bool = True,
    ):
        self.name = name
        self.priority = priority
        self.timeout_seconds = timeout_seconds
        super().__init__()
        self.steps = list(steps) or [[]]
        self.delay = delay
        self.available = available
        self.calls: List[SearchQuery] = []
        self.closed = False

    @property
    def is_available(self) -> bool:
        return self.available

    async def _search(self, query: SearchQuery) -> List[SearchResult]:
        self.calls.append(query)
        step = self.steps.pop(0) if len(self.steps) > 1 else self.steps[0]
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(step, BaseException):
            raise step
        return list(step)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_provider_cls():
    """The scripted provider class."""
    return FakeProvider


@pytest.fixture
def offline_embeddings():
    """Embedding client whose endpoint is down, so hashing is used."""
    http = ProviderHttpClient(
        "embeddings",
        retry_policy=RetryPolicy(RetryConfig(max_retries=0, base_delay=0.0, jitter_factor=0.0)),
        transport=httpx.MockTransport(lambda r: httpx.Response(503)),
    )
    return EmbeddingClient(http=http)


# ============================================
# Configuration Fixtures
# ============================================

@pytest.fixture
def mock_settings():
    """Mock settings with the defaults the factories read."""
    mock = MagicMock()
    mock.max_retries = 1
    mock.retry_base_delay = 0.01
    mock.retry_max_delay = 0.05
    mock.retry_jitter_factor = 0.0
    mock.rate_limit_max_requests = 50
    mock.rate_limit_window_seconds = 60.0
    mock.rate_limit_initial_tokens = 5
    mock.rate_limit_refill_rate = 1.0
    mock.breaker_failure_threshold = 3
    mock.breaker_reset_timeout = 30.0
    mock.breaker_success_threshold = 2
    mock.cache_max_size_mb = 10
    mock.cache_default_ttl_minutes = 60
    mock.cache_cleanup_interval_minutes = 15
    mock.max_fallback_attempts = 3
    mock.max_timeout_seconds = 30.0
    mock.min_success_rate = 0.3
    mock.enable_result_cache = True
    mock.decision_strategy = "balanced"
    mock.min_confidence_threshold = 0.6
    mock.max_search_attempts = 3
    mock.max_results_per_attempt = 10
    mock.preferred_domains = []
    mock.blocked_domains = []
    mock.searxng_url = None
    mock.enable_bing = True
    mock.enable_semantic_provider = False
    mock.embedding_url = "http://localhost:11434"
    mock.embedding_model = "nomic-embed-text"
    mock.embedding_timeout = 5.0
    mock.fetch_content_for_top = 0
    mock.max_content_chars = 5000
    mock.http_timeout = 5.0
    return mock
