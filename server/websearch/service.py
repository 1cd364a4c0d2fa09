"""
WebSearchService - the public entry point

Three operations:
- search(): manager fallback search, blocked-domain filtering, dedup,
  relevance ranking, preferred-domain boost, optional page enrichment
- fetch_page_content(): one page, main text only
- search_intelligently(): iterative search that only answers when the
  quality gate and the decision engine agree the evidence is good enough

A declined answer is returned as SearchOutcome.DECLINED, never raised.
Errors are raised only when no attempt could search at all.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, replace
from enum import Enum
from functools import partial
from typing import Any, Deque, Dict, List, Optional, Sequence, Tuple, Union

import aiometer

from .circuit_breaker import CircuitBreakerConfig
from .decision_engine import (
    DecisionStrategy,
    QueryContext,
    ResponseDecision,
    ResponseDecisionEngine,
    is_expert,
)
from .embeddings import EmbeddingClient
from .errors import NetworkError, WebSearchError
from .http_fetcher import DEFAULT_MAX_CONTENT_CHARS, ProviderHttpClient, extract_page_text
from .models import QueryType, SearchQuery, SearchResult, deduplicate_results
from .providers import (
    BingProvider,
    DuckDuckGoProvider,
    SearchProvider,
    SearXNGProvider,
    SemanticSearchProvider,
)
from .quality_classifier import QualityAssessment, QualityClassifier, QualityIssue
from .rate_limiter import RateLimiterConfig
from .relevance import RelevanceAnalyzer
from .retry_strategy import RetryConfig, RetryPolicy
from .search_manager import ManagerConfig, SearchStrategyManager
from .smart_cache import CacheConfig, SmartCache

logger = logging.getLogger("websearch.service")

DECISION_CACHE_LIMIT = 100
HISTORY_LIMIT = 500
MAX_CONCURRENT_PAGE_FETCHES = 3

# Query rewrites per main quality issue
AUTHORITY_SUFFIX = "site:edu OR site:gov OR documentation"
DEPTH_SUFFIX = "tutorial OR guide OR detailed OR comprehensive"

# First matching key wins; one expansion per rewrite
SYNONYMS: Tuple[Tuple[str, str], ...] = (
    ("como", "how tutorial guide"),
    ("what", "definition concept meaning"),
    ("why", "reason cause explanation"),
    ("erro", "error bug problema issue"),
    ("error", "bug issue problem fix"),
    ("instalar", "install setup configurar"),
    ("install", "setup configure installation"),
)

SIMPLIFY_STOPWORDS = frozenset({
    "o", "a", "de", "da", "do", "em", "para", "com", "por",
    "the", "an", "in", "on", "at", "to", "for", "of", "is", "are",
})
SIMPLIFIED_MAX_TERMS = 5


class SearchOutcome(str, Enum):
    ANSWERED = "answered"
    DECLINED = "declined"


@dataclass
class IntelligentSearchConfig:
    """Knobs of the iterative answer-or-decline loop."""
    max_search_attempts: int = 3
    max_results_per_attempt: int = 10
    timeout_per_attempt: float = 30.0
    decision_strategy: DecisionStrategy = DecisionStrategy.BALANCED
    min_confidence_threshold: float = 0.6
    enable_caching: bool = True
    preferred_domains: Tuple[str, ...] = ()
    blocked_domains: Tuple[str, ...] = ()
    fetch_content_for_top: int = 0
    max_content_chars: int = DEFAULT_MAX_CONTENT_CHARS

    @classmethod
    def from_settings(cls, settings) -> "IntelligentSearchConfig":
        return cls(
            max_search_attempts=settings.max_search_attempts,
            max_results_per_attempt=settings.max_results_per_attempt,
            timeout_per_attempt=settings.max_timeout_seconds,
            decision_strategy=DecisionStrategy(settings.decision_strategy),
            min_confidence_threshold=settings.min_confidence_threshold,
            enable_caching=settings.enable_result_cache,
            preferred_domains=tuple(d.lower() for d in settings.preferred_domains),
            blocked_domains=tuple(d.lower() for d in settings.blocked_domains),
            fetch_content_for_top=settings.fetch_content_for_top,
            max_content_chars=settings.max_content_chars,
        )


@dataclass(frozen=True)
class IntelligentSearchResult:
    can_answer: bool
    confidence: float
    reasoning: str
    selected_results: Tuple[SearchResult, ...]
    decision: ResponseDecision
    assessment: QualityAssessment
    metrics: Dict[str, Any]
    attempts_used: int
    total_time_ms: float
    outcome: SearchOutcome

    @property
    def is_high_quality(self) -> bool:
        return self.can_answer and self.confidence >= 0.8

    @property
    def is_qualified_answer(self) -> bool:
        """Answerable, but with caveats"""
        return self.can_answer and 0.6 <= self.confidence < 0.8

    @property
    def suggest_additional_search(self) -> bool:
        return not self.can_answer or self.confidence < 0.7

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "can_answer": self.can_answer,
            "confidence": round(self.confidence, 4),
            "reasoning": self.reasoning,
            "selected_results": [r.model_dump(mode="json") for r in self.selected_results],
            "decision": self.decision.to_dict(),
            "metrics": self.metrics,
            "attempts_used": self.attempts_used,
            "total_time_ms": round(self.total_time_ms, 1),
        }


def normalize_query_key(text: str) -> str:
    return " ".join(text.lower().split())


def decision_cache_key(text: str, context: QueryContext) -> str:
    """Normalized text plus the context fields that move the decision threshold."""
    return (
        f"{normalize_query_key(text)}|{context.query_type.value}"
        f"|urgent={int(context.is_urgent)}|expert={int(is_expert(context))}"
    )


def expand_with_synonyms(text: str) -> str:
    lowered = text.lower()
    for term, expansion in SYNONYMS:
        if term in lowered.split():
            return f"{text} {expansion}"
    return text


def simplify_query(text: str) -> str:
    """Keep at most five non-stopword terms; short queries pass through."""
    words = text.split()
    if len(words) <= 3:
        return text
    important = [w for w in words if w.lower() not in SIMPLIFY_STOPWORDS]
    return " ".join(important[:SIMPLIFIED_MAX_TERMS])


def adjust_query(text: str, attempt: int, previous: Optional[QualityAssessment]) -> str:
    """Rewrite the query for a retry based on what the last best attempt lacked."""
    if attempt == 1:
        return text

    main_issue = previous.main_issue if previous is not None else None
    if main_issue == QualityIssue.AUTHORITY:
        return f"{text} {AUTHORITY_SUFFIX}"
    if main_issue == QualityIssue.COVERAGE:
        return expand_with_synonyms(text)
    if main_issue == QualityIssue.DEPTH:
        return f"{text} {DEPTH_SUFFIX}"

    if attempt == 2:
        return expand_with_synonyms(text)
    if attempt == 3:
        return simplify_query(text)
    return text


def is_better(current: ResponseDecision, best: Optional[ResponseDecision]) -> bool:
    """Responding beats declining, then higher confidence wins."""
    if best is None:
        return True
    if current.should_respond != best.should_respond:
        return current.should_respond
    return current.confidence > best.confidence


def _domain_matches(domain: str, patterns: Sequence[str]) -> bool:
    return any(p and p in domain for p in patterns)


def build_manager(settings) -> SearchStrategyManager:
    """Manager with every provider the settings enable."""
    retry_policy = RetryPolicy(RetryConfig.from_settings(settings))
    breaker_config = CircuitBreakerConfig.from_settings(settings)
    limiter_config = RateLimiterConfig.from_settings(settings)

    providers: List[SearchProvider] = [DuckDuckGoProvider()]
    if settings.enable_bing:
        providers.append(BingProvider())
    if settings.searxng_url:
        providers.append(SearXNGProvider(base_url=settings.searxng_url))
    for provider in providers:
        provider.http.retry_policy = retry_policy

    if settings.enable_semantic_provider:
        embeddings = EmbeddingClient(
            base_url=settings.embedding_url,
            model=settings.embedding_model,
            timeout=settings.embedding_timeout,
        )
        providers.append(SemanticSearchProvider(list(providers), embeddings=embeddings))

    manager = SearchStrategyManager(
        ManagerConfig.from_settings(settings),
        cache=SmartCache(CacheConfig.from_settings(settings), name="search_outcomes"),
    )
    for provider in providers:
        manager.register(provider, breaker_config=breaker_config, limiter_config=limiter_config)
    return manager


class WebSearchService:
    """
    Facade over manager, analyzer, classifier and decision engine.

    Args:
        manager: Provider manager (see build_manager)
        config: Loop and filtering configuration
        analyzer: Relevance analyzer
        classifier: Quality classifier, shared with the engine when the
            engine is built here
        engine: Decision engine
        page_fetcher: HTTP client for page content
        decision_cache: Cache for whole intelligent-search results
    """

    def __init__(
        self,
        manager: SearchStrategyManager,
        config: Optional[IntelligentSearchConfig] = None,
        analyzer: Optional[RelevanceAnalyzer] = None,
        classifier: Optional[QualityClassifier] = None,
        engine: Optional[ResponseDecisionEngine] = None,
        page_fetcher: Optional[ProviderHttpClient] = None,
        decision_cache: Optional[SmartCache] = None,
    ):
        self.manager = manager
        self.config = config or IntelligentSearchConfig()
        self.analyzer = analyzer or RelevanceAnalyzer()
        self.classifier = classifier or QualityClassifier()
        self.engine = engine or ResponseDecisionEngine(self.config.decision_strategy, self.classifier)
        self.page_fetcher = page_fetcher or ProviderHttpClient("page_fetcher")
        self.decision_cache = decision_cache or SmartCache(
            CacheConfig(max_size_mb=10), name="decisions"
        )
        self._decision_keys: Deque[str] = deque()
        self._history: Deque[IntelligentSearchResult] = deque(maxlen=HISTORY_LIMIT)

    @classmethod
    def from_settings(cls, settings=None) -> "WebSearchService":
        if settings is None:
            from config.settings import get_settings
            settings = get_settings()
        return cls(
            build_manager(settings),
            config=IntelligentSearchConfig.from_settings(settings),
            page_fetcher=ProviderHttpClient(
                "page_fetcher",
                timeout=settings.http_timeout,
                retry_policy=RetryPolicy(RetryConfig.from_settings(settings)),
            ),
        )

    async def start(self) -> None:
        await self.manager.start()

    async def close(self) -> None:
        await self.manager.close()
        await self.page_fetcher.close()
        await self.decision_cache.stop_cleanup_loop()

    async def __aenter__(self) -> "WebSearchService":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # search
    # ------------------------------------------------------------------

    def _filter_blocked(self, results: List[SearchResult]) -> List[SearchResult]:
        blocked = self.config.blocked_domains
        if not blocked:
            return results
        kept = [r for r in results if r.source_domain and not _domain_matches(r.source_domain, blocked)]
        if len(kept) != len(results):
            logger.debug(f"Dropped {len(results) - len(kept)} results from blocked domains")
        return kept

    def _boost_preferred(self, results: List[SearchResult]) -> List[SearchResult]:
        preferred = self.config.preferred_domains
        if not preferred:
            return results
        first = [r for r in results if _domain_matches(r.source_domain, preferred)]
        rest = [r for r in results if not _domain_matches(r.source_domain, preferred)]
        return first + rest

    def _rank(self, text: str, results: List[SearchResult]) -> List[SearchResult]:
        scored = self.analyzer.score_results(text, results)
        return self._boost_preferred(self.analyzer.rank_results(scored))

    async def search(self, query: Union[SearchQuery, str]) -> List[SearchResult]:
        """
        Ranked, deduplicated results with relevance attached.

        Raises:
            NoProviderAvailableError: No provider could take the query
            WebSearchError: Every attempted provider failed
        """
        if isinstance(query, str):
            query = SearchQuery.parse(query)

        results = await self.manager.search(query)
        results = deduplicate_results(self._filter_blocked(results))
        ranked = self._rank(query.query, results)

        if self.config.fetch_content_for_top > 0 and ranked:
            ranked = await self._enrich(query.query, ranked)
        return ranked

    async def _enrich(self, text: str, ranked: List[SearchResult]) -> List[SearchResult]:
        top = ranked[:self.config.fetch_content_for_top]
        contents = await aiometer.run_all(
            [partial(self._content_or_none, r.url) for r in top],
            max_at_once=MAX_CONCURRENT_PAGE_FETCHES,
        )
        enriched = [
            r.model_copy(update={"content": content}) if content else r
            for r, content in zip(top, contents)
        ]
        return self._rank(text, enriched + ranked[len(top):])

    async def _content_or_none(self, url: str) -> Optional[str]:
        try:
            return await self.fetch_page_content(url)
        except WebSearchError as e:
            logger.info(f"Content enrichment skipped for {url}: {e}")
            return None

    async def fetch_page_content(self, url: str) -> str:
        """
        Main text of one page, truncated at a sentence boundary.

        Raises:
            BlockDetectedError: An error status whose body is an anti-bot wall
            NetworkError: Transport failure or HTTP error status
        """
        html = await self.page_fetcher.get_text(url, check_block=False)
        return extract_page_text(html, self.config.max_content_chars)

    # ------------------------------------------------------------------
    # intelligent search
    # ------------------------------------------------------------------

    async def _cached_decision(self, key: str) -> Optional[IntelligentSearchResult]:
        if not self.config.enable_caching:
            return None
        return await self.decision_cache.get(key)

    async def _cache_decision(self, key: str, result: IntelligentSearchResult) -> None:
        if not self.config.enable_caching:
            return
        if key not in self._decision_keys:
            self._decision_keys.append(key)
        await self.decision_cache.set(key, result)
        while len(self._decision_keys) > DECISION_CACHE_LIMIT:
            await self.decision_cache.remove(self._decision_keys.popleft())

    async def search_intelligently(
        self,
        text: str,
        context: Optional[QueryContext] = None,
        force_search: bool = False,
    ) -> IntelligentSearchResult:
        """
        Search until the evidence justifies an answer or attempts run out.

        Raises:
            WebSearchError: Only when every attempt failed to search at all
        """
        start = time.perf_counter()
        query_type = context.query_type if context else self.classifier.identify_query_type(text)
        if context is None:
            context = QueryContext(original_query=text, query_type=query_type)
        key = decision_cache_key(text, context)

        if not force_search:
            cached = await self._cached_decision(key)
            if cached is not None:
                logger.debug(f"Decision cache hit for '{text}'")
                return replace(cached, metrics={**cached.metrics, "cache_hit": True})

        metrics: Dict[str, Any] = {}
        best_decision: Optional[ResponseDecision] = None
        best_assessment: Optional[QualityAssessment] = None
        last_error: Optional[Exception] = None
        used_queries: List[str] = []
        searched = False
        attempts = 0

        for attempt in range(1, self.config.max_search_attempts + 1):
            attempts = attempt
            adjusted = adjust_query(text, attempt, best_assessment)
            attempt_metrics: Dict[str, Any] = {"query": adjusted}
            metrics[f"attempt_{attempt}"] = attempt_metrics

            try:
                results = await asyncio.wait_for(
                    self.search(SearchQuery(
                        query=adjusted,
                        query_type=query_type,
                        max_results=self.config.max_results_per_attempt,
                    )),
                    timeout=self.config.timeout_per_attempt,
                )
            except asyncio.TimeoutError:
                last_error = NetworkError(f"Search attempt {attempt} timed out")
                attempt_metrics["error"] = str(last_error)
                logger.warning(f"Attempt {attempt} for '{text}' timed out")
                continue
            except Exception as e:
                last_error = e
                attempt_metrics["error"] = f"{type(e).__name__}: {e}"
                logger.warning(f"Attempt {attempt} for '{text}' failed: {type(e).__name__}: {e}")
                continue

            searched = True
            if not results:
                attempt_metrics["no_results"] = True
                continue

            attempt_context = replace(
                context,
                attempt_number=attempt,
                previous_queries=list(context.previous_queries) + used_queries,
            )
            used_queries.append(adjusted)
            decision = self.engine.make_decision(adjusted, results, context=attempt_context)
            attempt_metrics.update({
                "results_count": len(results),
                "quality_score": decision.assessment.confidence,
                "decision": decision.should_respond,
                "confidence": decision.confidence,
            })

            if is_better(decision, best_decision):
                best_decision = decision
                best_assessment = decision.assessment

            if decision.should_respond and decision.confidence >= self.config.min_confidence_threshold:
                metrics["early_termination"] = {"attempt": attempt, "reason": "satisfactory_quality"}
                break
            if context.is_urgent and attempt >= 2 and decision.should_respond:
                metrics["early_termination"] = {"attempt": attempt, "reason": "urgent_context"}
                break

        if not searched and last_error is not None:
            logger.error(f"Every search attempt for '{text}' failed")
            raise last_error

        if best_decision is None:
            best_decision = self._no_results_decision(text, query_type, attempts)

        metrics.update({
            "query_type": query_type.value,
            "decision_strategy": self.engine.strategy.value,
        })
        result = IntelligentSearchResult(
            can_answer=best_decision.should_respond,
            confidence=best_decision.confidence,
            reasoning=best_decision.reasoning,
            selected_results=best_decision.selected_results,
            decision=best_decision,
            assessment=best_decision.assessment,
            metrics=metrics,
            attempts_used=attempts,
            total_time_ms=(time.perf_counter() - start) * 1000,
            outcome=SearchOutcome.ANSWERED if best_decision.should_respond else SearchOutcome.DECLINED,
        )

        await self._cache_decision(key, result)
        self._history.append(result)
        logger.info(
            f"Intelligent search '{text}': {result.outcome.value} "
            f"(confidence {result.confidence:.3f}, {attempts} attempts, {result.total_time_ms:.0f}ms)"
        )
        return result

    def _no_results_decision(self, text: str, query_type: QueryType, attempts: int) -> ResponseDecision:
        assessment = self.classifier.classify_quality(text, [], [], query_type)
        return ResponseDecision(
            should_respond=False,
            confidence=0.0,
            reasoning=f"No satisfactory result found after {attempts} attempts",
            recommendations=("Refine the query", "Try different terms"),
            selected_results=(),
            assessment=assessment,
            metadata={"max_attempts_reached": True},
        )

    # ------------------------------------------------------------------
    # introspection
    # ------------------------------------------------------------------

    def get_performance_metrics(self) -> Dict[str, Any]:
        total = len(self._history)
        if total == 0:
            return {
                "total_queries": 0,
                "successful_queries": 0,
                "rejected_queries": 0,
                "success_rate": 0.0,
                "rejection_rate": 0.0,
                "average_confidence": 0.0,
                "average_search_time_ms": 0.0,
                "query_type_distribution": {},
                "strategy_performance": {},
            }

        successful = sum(1 for r in self._history if r.can_answer)
        avg_confidence = sum(r.confidence for r in self._history) / total
        distribution: Dict[str, int] = {}
        for r in self._history:
            query_type = r.metrics.get("query_type")
            if query_type:
                distribution[query_type] = distribution.get(query_type, 0) + 1

        return {
            "total_queries": total,
            "successful_queries": successful,
            "rejected_queries": total - successful,
            "success_rate": successful / total,
            "rejection_rate": (total - successful) / total,
            "average_confidence": avg_confidence,
            "average_search_time_ms": sum(r.total_time_ms for r in self._history) / total,
            "query_type_distribution": distribution,
            "strategy_performance": {self.engine.strategy.value: avg_confidence},
        }

    async def clear_cache_and_history(self) -> None:
        await self.decision_cache.clear()
        self._decision_keys.clear()
        self._history.clear()
        self.classifier.clear_cache()
        self.engine.reset_adaptive_learning()
