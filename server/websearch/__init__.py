"""
websearch - resilient multi-provider web search with an answer/decline gate

Pipeline:
- SearchStrategyManager: provider ranking, per-provider rate limiter and
  circuit breaker, sequential fallback, outcome cache
- RelevanceAnalyzer: deterministic multi-factor scoring
- QualityClassifier: per-query-type quality profiles
- ResponseDecisionEngine: conservative / balanced / aggressive / adaptive
- WebSearchService: search, fetch_page_content, search_intelligently

Providers: DuckDuckGo (API + HTML), Bing (HTML), SearXNG (JSON), and a
semantic re-ranker on top of the others.
"""

from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from .decision_engine import (
    DecisionStrategy,
    QueryContext,
    ResponseDecision,
    ResponseDecisionEngine,
)
from .errors import (
    BlockDetectedError,
    CircuitOpenError,
    NetworkError,
    NoProviderAvailableError,
    ParseError,
    RateLimitedError,
    WebSearchError,
)
from .models import QueryType, RelevanceScore, SearchQuery, SearchResult, SearchType
from .quality_classifier import QualityAssessment, QualityClassifier, QualityProfile
from .rate_limiter import RateLimiter, RateLimiterConfig
from .relevance import RelevanceAnalyzer, RelevanceTables
from .search_manager import ManagerConfig, SearchStrategyManager
from .service import (
    IntelligentSearchConfig,
    IntelligentSearchResult,
    SearchOutcome,
    WebSearchService,
    build_manager,
)
from .smart_cache import CacheConfig, SmartCache

__all__ = [
    # Models
    "SearchQuery",
    "SearchResult",
    "RelevanceScore",
    "SearchType",
    "QueryType",
    # Errors
    "WebSearchError",
    "NetworkError",
    "BlockDetectedError",
    "ParseError",
    "CircuitOpenError",
    "RateLimitedError",
    "NoProviderAvailableError",
    # Resilience
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    "RateLimiter",
    "RateLimiterConfig",
    "SmartCache",
    "CacheConfig",
    # Ranking and decisions
    "RelevanceAnalyzer",
    "RelevanceTables",
    "QualityClassifier",
    "QualityProfile",
    "QualityAssessment",
    "ResponseDecisionEngine",
    "ResponseDecision",
    "DecisionStrategy",
    "QueryContext",
    # Orchestration
    "SearchStrategyManager",
    "ManagerConfig",
    "WebSearchService",
    "IntelligentSearchConfig",
    "IntelligentSearchResult",
    "SearchOutcome",
    "build_manager",
]
