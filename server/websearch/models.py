"""
Pydantic models for the websearch engine

Defines the query, result and relevance structures shared by providers,
the strategy manager, the quality classifier and the decision engine.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field


class SearchType(str, Enum):
    """Kind of search requested from providers"""
    GENERAL = "general"
    NEWS = "news"
    ACADEMIC = "academic"
    IMAGES = "images"


class QueryType(str, Enum):
    """Classification of the user's question, drives quality thresholds"""
    FACTUAL = "factual"           # Precise facts
    TECHNICAL = "technical"       # Code, APIs, configuration
    EXPLANATORY = "explanatory"   # Why / how does it work
    PROCEDURAL = "procedural"     # How to / tutorials
    COMPARATIVE = "comparative"   # X vs Y
    GENERAL = "general"


_TITLE_NOISE = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


class SearchQuery(BaseModel):
    """Immutable search query with optional search-engine filters"""
    model_config = ConfigDict(frozen=True)

    query: str = Field(..., description="Free-text query")
    search_type: SearchType = SearchType.GENERAL
    query_type: Optional[QueryType] = None
    max_results: int = Field(default=5, ge=1, le=100)
    content_type: Optional[str] = None
    language: Optional[str] = None
    time_range: Optional[str] = None
    domains: Tuple[str, ...] = ()
    exclude_terms: Tuple[str, ...] = ()
    synonyms: Tuple[str, ...] = ()

    @property
    def formatted(self) -> str:
        """Query with filter operators appended for engines that understand them"""
        parts = [self.query]
        if self.domains:
            parts.append("site:" + " OR site:".join(self.domains))
        parts.extend(f"-{term}" for term in self.exclude_terms)
        if self.synonyms:
            parts.append("(" + " OR ".join(self.synonyms) + ")")
        if self.language:
            parts.append(f"lang:{self.language}")
        if self.time_range:
            parts.append(f"when:{self.time_range}")
        return " ".join(parts)

    def with_synonyms(self, synonyms: List[str]) -> "SearchQuery":
        return self.model_copy(update={"synonyms": self.synonyms + tuple(synonyms)})

    def with_domains(self, domains: List[str]) -> "SearchQuery":
        return self.model_copy(update={"domains": self.domains + tuple(domains)})

    def with_exclude_terms(self, terms: List[str]) -> "SearchQuery":
        return self.model_copy(update={"exclude_terms": self.exclude_terms + tuple(terms)})

    @classmethod
    def parse(cls, text: str, **kwargs: Any) -> "SearchQuery":
        """Build a query from operator syntax (type:, lang:, when:, site:, -term)"""
        words: List[str] = []
        domains: List[str] = []
        excludes: List[str] = []
        content_type = language = time_range = None

        for part in text.split():
            if part.startswith("type:"):
                content_type = part[5:]
            elif part.startswith("lang:"):
                language = part[5:]
            elif part.startswith("when:"):
                time_range = part[5:]
            elif part.startswith("site:"):
                domains.append(part[5:])
            elif part.startswith("-") and len(part) > 1:
                excludes.append(part[1:])
            elif part != "OR":
                words.append(part)

        return cls(
            query=" ".join(words),
            content_type=content_type,
            language=language,
            time_range=time_range,
            domains=tuple(domains),
            exclude_terms=tuple(excludes),
            **kwargs,
        )

    def __str__(self) -> str:
        return self.formatted


class RelevanceScore(BaseModel):
    """Multi-factor relevance of one result against one query"""
    model_config = ConfigDict(frozen=True)

    overall: float = Field(..., ge=0, le=1)
    semantic: float = Field(..., ge=0, le=1)
    keyword: float = Field(..., ge=0, le=1)
    quality: float = Field(..., ge=0, le=1)
    authority: float = Field(..., ge=0, le=1)
    factors: Dict[str, float] = Field(default_factory=dict)

    @property
    def is_relevant(self) -> bool:
        return self.overall >= 0.6

    @property
    def is_highly_relevant(self) -> bool:
        return self.overall >= 0.8


class SearchResult(BaseModel):
    """A single web search result"""
    title: str
    url: str
    snippet: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    content: Optional[str] = None
    relevance: Optional[RelevanceScore] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def source_domain(self) -> str:
        """Lowercase hostname, or "" when the URL has none or cannot be parsed."""
        try:
            return (urlparse(self.url).hostname or "").lower()
        except ValueError:
            return ""

    @property
    def overall_relevance(self) -> float:
        return self.relevance.overall if self.relevance else 0.0

    @property
    def is_relevant(self) -> bool:
        return bool(self.relevance and self.relevance.is_relevant)

    @property
    def is_highly_relevant(self) -> bool:
        return bool(self.relevance and self.relevance.is_highly_relevant)

    def normalized_title(self) -> str:
        cleaned = _TITLE_NOISE.sub(" ", self.title.lower())
        return _WHITESPACE.sub(" ", cleaned).strip()

    def is_duplicate_of(self, other: "SearchResult") -> bool:
        """Same URL or same normalized title"""
        if self.url == other.url:
            return True
        title = self.normalized_title()
        return bool(title) and title == other.normalized_title()


def deduplicate_results(results: List[SearchResult]) -> List[SearchResult]:
    """Drop duplicate-equivalent results, keeping the first occurrence"""
    seen_urls = set()
    seen_titles = set()
    unique: List[SearchResult] = []
    for result in results:
        title = result.normalized_title()
        if result.url in seen_urls or (title and title in seen_titles):
            continue
        seen_urls.add(result.url)
        if title:
            seen_titles.add(title)
        unique.append(result)
    return unique
