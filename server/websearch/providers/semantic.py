"""
Semantic search provider.

Wraps other providers: expands short technical queries, fans the query out
to its upstream providers (at most 3 sub-requests in flight, via aiometer),
merges what comes back and re-ranks it by embedding similarity.

Score per result:
    0.4 * cosine(query, title) + 0.3 * cosine(query, snippet)
    + 0.2 * contextual domain relevance + 0.1 * quality heuristic
"""

import logging
from functools import partial
from types import MappingProxyType
from typing import Awaitable, Callable, List, Mapping, Optional, Sequence, Tuple, Union

import aiometer

from ..embeddings import EmbeddingClient, cosine_similarity
from ..errors import NoProviderAvailableError
from ..models import SearchQuery, SearchResult
from .base import SearchProvider
from .duckduckgo import dedupe_by_url_and_title

logger = logging.getLogger("websearch.providers.semantic")

MAX_CONCURRENT_SUBREQUESTS = 3

# Queries with at most this many words get technical context appended
SHORT_QUERY_WORDS = 2

DEFAULT_TECH_CONTEXT: Mapping[str, str] = MappingProxyType({
    "flutter": "flutter dart mobile app development",
    "dart": "dart programming language flutter",
    "api": "api rest web service integration",
    "database": "database sql nosql storage",
    "auth": "authentication authorization security",
    "ui": "user interface design components",
    "performance": "optimization speed memory efficiency",
    "testing": "unit test integration test automation",
    "deployment": "deployment production CI CD",
    "debug": "debugging error handling troubleshooting",
})

TECH_DOMAINS: Tuple[str, ...] = (
    "stackoverflow.com",
    "github.com",
    "pub.dev",
    "flutter.dev",
    "dart.dev",
    "api.flutter.dev",
    "medium.com",
    "dev.to",
)

TECH_TITLE_TERMS: Tuple[str, ...] = ("flutter", "dart", "api", "development", "programming")

UpstreamRunner = Callable[[SearchProvider, SearchQuery], Awaitable[List[SearchResult]]]
UpstreamAdmission = Callable[[SearchProvider], bool]


def contextual_relevance(result: SearchResult) -> float:
    """Boost for technical sites and technical vocabulary in the title."""
    score = 0.5
    domain = result.source_domain
    if any(domain == d or domain.endswith("." + d) for d in TECH_DOMAINS):
        score += 0.3
    title = result.title.lower()
    matching = sum(1 for term in TECH_TITLE_TERMS if term in title)
    score += (matching / len(TECH_TITLE_TERMS)) * 0.2
    return min(1.0, score)


def quality_heuristic(result: SearchResult) -> float:
    score = 0.5
    if 10 < len(result.title) < 100:
        score += 0.2
    if 50 < len(result.snippet) < 300:
        score += 0.2
    if result.url.startswith("https://"):
        score += 0.1
    return min(1.0, score)


class SemanticSearchProvider(SearchProvider):
    """
    Embedding re-ranking over upstream providers.

    Args:
        upstream: Providers queried for raw results
        embeddings: Embedding client (hash fallback when the endpoint is down)
        tech_context: Term -> expansion map for short queries

    Once routed through a manager (see route_through), sub-requests pass
    the upstream's own circuit breaker and rate limiter, and upstreams
    whose breaker rejects requests are skipped.
    """

    name = "semantic"
    priority = 9
    timeout_seconds = 45.0

    def __init__(
        self,
        upstream: Sequence[SearchProvider],
        embeddings: Optional[EmbeddingClient] = None,
        tech_context: Mapping[str, str] = DEFAULT_TECH_CONTEXT,
    ):
        super().__init__()
        self.upstream = tuple(upstream)
        self.embeddings = embeddings or EmbeddingClient()
        self.tech_context = MappingProxyType(dict(tech_context))
        self._runner: Optional[UpstreamRunner] = None
        self._admits: Optional[UpstreamAdmission] = None

    def route_through(self, runner: UpstreamRunner, admits: UpstreamAdmission) -> None:
        """Send sub-requests through `runner` and skip upstreams `admits` rejects."""
        self._runner = runner
        self._admits = admits

    @property
    def is_available(self) -> bool:
        return any(p.is_available for p in self.upstream)

    def _targets(self, query: SearchQuery) -> List[SearchProvider]:
        return [
            p for p in self.upstream
            if p.is_available
            and p.can_handle(query)
            and (self._admits is None or self._admits(p))
        ]

    def can_handle(self, query: SearchQuery) -> bool:
        return bool(query.query.strip()) and bool(self._targets(query))

    async def close(self) -> None:
        await self.embeddings.close()

    def enhance_query(self, text: str) -> str:
        """Append technical context to short queries (first matching term only)."""
        words = text.lower().split()
        if len(words) > SHORT_QUERY_WORDS:
            return text
        for term, expansion in self.tech_context.items():
            if term in words:
                extra = [w for w in expansion.split() if w.lower() not in words]
                return " ".join([text] + extra)
        return text

    async def _search(self, query: SearchQuery) -> List[SearchResult]:
        enhanced = self.enhance_query(query.query)
        sub_query = query.model_copy(update={"query": enhanced})
        logger.debug(f"Semantic query: {sub_query.formatted}")

        results = await self._fan_out(sub_query)
        merged = dedupe_by_url_and_title(results)
        ranked = await self.rerank(enhanced, merged)
        return ranked[:query.max_results]

    async def _fan_out(self, query: SearchQuery) -> List[SearchResult]:
        targets = self._targets(query)
        if not targets:
            raise NoProviderAvailableError("No upstream provider for semantic search")

        async def run_one(provider: SearchProvider) -> Union[List[SearchResult], Exception]:
            try:
                if self._runner is not None:
                    return await self._runner(provider, query)
                return await provider.search(query)
            except Exception as e:
                logger.warning(f"Semantic sub-request to {provider.name} failed: {e}")
                return e

        outcomes = await aiometer.run_all(
            [partial(run_one, p) for p in targets],
            max_at_once=MAX_CONCURRENT_SUBREQUESTS,
        )

        results: List[SearchResult] = []
        errors: List[Exception] = []
        for outcome in outcomes:
            if isinstance(outcome, Exception):
                errors.append(outcome)
            else:
                results.extend(outcome)

        if errors and len(errors) == len(outcomes):
            raise errors[-1]
        return results

    async def rerank(self, query_text: str, results: List[SearchResult]) -> List[SearchResult]:
        """Score, annotate and sort results (stable for equal scores)."""
        query_vector = await self.embeddings.embed(query_text)
        scored = []
        for result in results:
            score = await self._score(query_vector, result)
            annotated = result.model_copy(update={
                "metadata": {**result.metadata, "semantic_score": score},
            })
            scored.append((score, annotated))
        scored.sort(key=lambda item: item[0], reverse=True)
        return [r for _, r in scored]

    async def _score(self, query_vector: List[float], result: SearchResult) -> float:
        score = 0.4 * cosine_similarity(query_vector, await self.embeddings.embed(result.title))
        if result.snippet:
            score += 0.3 * cosine_similarity(query_vector, await self.embeddings.embed(result.snippet))
        score += 0.2 * contextual_relevance(result)
        score += 0.1 * quality_heuristic(result)
        return max(0.0, min(1.0, score))
