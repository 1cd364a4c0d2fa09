"""
Quality Classifier - is the collected evidence good enough to answer?

Judges a result set against the quality profile of the query's type:

| Type        | relevance | coverage | authority | domains | depth | multiple |
|-------------|-----------|----------|-----------|---------|-------|----------|
| factual     | 0.80      | 0.75     | 0.70      | 2       | 0.40  | yes      |
| technical   | 0.85      | 0.80     | 0.80      | 2       | 0.90  | yes      |
| explanatory | 0.70      | 0.75     | 0.60      | 2       | 0.85  | no       |
| procedural  | 0.75      | 0.80     | 0.65      | 1       | 0.80  | no       |
| comparative | 0.70      | 0.80     | 0.60      | 3       | 0.75  | yes      |
| general     | 0.60      | 0.65     | 0.50      | 1       | 0.60  | no       |

confidence = 0.30 coverage + 0.25 authority + 0.20 depth
           + 0.15 min(1, domains / min_domains) + 0.10 high_relevance_share
"""

import hashlib
import logging
import re
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .models import QueryType, RelevanceScore, SearchResult
from .relevance import normalize_text

logger = logging.getLogger("websearch.quality_classifier")

ASSESSMENT_CACHE_SIZE = 256

# Result relevance needed before its text counts toward coverage / authority
COVERAGE_MIN_RELEVANCE = 0.5
AUTHORITY_MIN_RELEVANCE = 0.3


@dataclass(frozen=True)
class QualityProfile:
    """Minimum evidence required for one query type."""
    min_relevance: float
    min_coverage: float
    min_authority: float
    min_diversity: int
    min_depth: float
    require_multiple_sources: bool


DEFAULT_QUALITY_PROFILES: Mapping[QueryType, QualityProfile] = MappingProxyType({
    QueryType.FACTUAL: QualityProfile(0.80, 0.75, 0.70, 2, 0.40, True),
    QueryType.TECHNICAL: QualityProfile(0.85, 0.80, 0.80, 2, 0.90, True),
    QueryType.EXPLANATORY: QualityProfile(0.70, 0.75, 0.60, 2, 0.85, False),
    QueryType.PROCEDURAL: QualityProfile(0.75, 0.80, 0.65, 1, 0.80, False),
    QueryType.COMPARATIVE: QualityProfile(0.70, 0.80, 0.60, 3, 0.75, True),
    QueryType.GENERAL: QualityProfile(0.60, 0.65, 0.50, 1, 0.60, False),
})


class QualityIssue(str, Enum):
    """Machine-readable counterpart of each issue message."""
    COVERAGE = "coverage"
    AUTHORITY = "authority"
    DEPTH = "depth"
    DIVERSITY = "diversity"
    RELEVANCE = "relevance"
    MULTIPLE_SOURCES = "multiple_sources"


# Cues that decide the type outright, checked in order
PRIORITY_CUES: Tuple[Tuple[QueryType, Tuple[str, ...]], ...] = (
    (QueryType.EXPLANATORY, ("why", "explain", "por que", "explique")),
    (QueryType.COMPARATIVE, ("vs", "versus", "compare", "comparar")),
    (QueryType.PROCEDURAL, ("how to", "tutorial", "passo a passo", "step by step")),
)

# Scored patterns; dict order is the tie-break order
TYPE_PATTERNS: Mapping[QueryType, Tuple[str, ...]] = MappingProxyType({
    QueryType.FACTUAL: (
        "o que é", "what is", "quem é", "who is", "quando", "when",
        "onde", "where", "quantos", "how many", "qual", "which",
    ),
    QueryType.TECHNICAL: (
        "como implementar", "how to implement", "código", "code",
        "programação", "programming", "api", "framework", "biblioteca",
        "error", "erro", "debug", "configurar", "configure",
    ),
    QueryType.EXPLANATORY: (
        "por que", "why", "como funciona", "how does", "explique",
        "explain", "diferença", "difference", "motivo", "reason",
    ),
    QueryType.PROCEDURAL: (
        "como fazer", "how to", "passo a passo", "step by step", "tutorial",
        "guia", "guide", "instalar", "install",
    ),
    QueryType.COMPARATIVE: (
        "vs", "versus", "comparar", "compare", "melhor", "better",
        "diferença entre", "difference between", "qual escolher",
        "qual é melhor", "ou",
    ),
})

RECOMMENDATION_BY_TYPE: Mapping[QueryType, str] = MappingProxyType({
    QueryType.FACTUAL: "Look for more authoritative sources for factual information.",
    QueryType.TECHNICAL: "Official documentation or specialized technical sources are needed.",
    QueryType.EXPLANATORY: "Look for more detailed, explanatory content.",
    QueryType.PROCEDURAL: "Find more complete tutorials or step-by-step guides.",
    QueryType.COMPARATIVE: "Look for more sources for a balanced comparison.",
    QueryType.GENERAL: "Broaden the search to find more relevant information.",
})


def _phrase_pattern(phrase: str) -> "re.Pattern[str]":
    return re.compile(r"(?<!\w)" + re.escape(phrase) + r"(?!\w)")


_CUE_REGEXES = tuple(
    (query_type, tuple(_phrase_pattern(p) for p in phrases))
    for query_type, phrases in PRIORITY_CUES
)
_TYPE_REGEXES = {
    query_type: tuple((_phrase_pattern(p), len(p.split())) for p in phrases)
    for query_type, phrases in TYPE_PATTERNS.items()
}


@dataclass(frozen=True)
class QualityAssessment:
    """Verdict on one result set."""
    is_satisfactory: bool
    confidence: float
    coverage: float
    authority: float
    content_depth: float
    source_diversity: int
    issues: Tuple[str, ...]
    strengths: Tuple[str, ...]
    recommendation: str
    query_type: QueryType
    high_relevance_count: int = 0
    issue_kinds: Tuple[QualityIssue, ...] = field(default=())

    @property
    def main_issue(self) -> Optional[QualityIssue]:
        return self.issue_kinds[0] if self.issue_kinds else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_satisfactory": self.is_satisfactory,
            "confidence": round(self.confidence, 4),
            "coverage": round(self.coverage, 4),
            "authority": round(self.authority, 4),
            "content_depth": round(self.content_depth, 4),
            "source_diversity": self.source_diversity,
            "high_relevance_count": self.high_relevance_count,
            "issues": list(self.issues),
            "strengths": list(self.strengths),
            "recommendation": self.recommendation,
            "query_type": self.query_type.value,
        }


def identify_query_type(text: str) -> QueryType:
    """
    Classify a question by wording.

    A lone short word is general. Otherwise the priority cues decide; failing
    those, each type scores the word count of every pattern it matches and
    the best score wins (ties resolved in declaration order).
    """
    lowered = text.lower().strip()
    if not lowered:
        return QueryType.GENERAL
    if len(lowered) <= 15 and " " not in lowered:
        return QueryType.GENERAL

    for query_type, regexes in _CUE_REGEXES:
        if any(rx.search(lowered) for rx in regexes):
            return query_type

    best_type = QueryType.GENERAL
    best_score = 0
    for query_type, patterns in _TYPE_REGEXES.items():
        score = sum(words for rx, words in patterns if rx.search(lowered))
        if score > best_score:
            best_type, best_score = query_type, score
    return best_type


def _content_depth(result: SearchResult) -> float:
    content = result.content or ""
    length = len(content) + len(result.snippet) + len(result.title)

    if length >= 2000:
        score = 1.0
    elif length >= 1000:
        score = 0.8
    elif length >= 500:
        score = 0.6
    elif length >= 200:
        score = 0.4
    else:
        score = 0.2

    if "\n\n" in content or "<p>" in content:
        score += 0.1
    if "```" in content or "<code>" in content:
        score += 0.1
    return min(1.0, score)


class QualityClassifier:
    """
    Assesses result sets per query type.

    Assessments are memoized (FIFO, 256 entries) on a hash of the query, the
    type and every result's URL and title.
    """

    def __init__(self, profiles: Mapping[QueryType, QualityProfile] = DEFAULT_QUALITY_PROFILES):
        self.profiles = MappingProxyType(dict(profiles))
        self._cache: "OrderedDict[str, QualityAssessment]" = OrderedDict()
        self._lock = threading.Lock()

    def identify_query_type(self, text: str) -> QueryType:
        return identify_query_type(text)

    def profile_for(self, query_type: QueryType) -> QualityProfile:
        return self.profiles.get(query_type, self.profiles[QueryType.GENERAL])

    @staticmethod
    def _cache_key(
        query: str,
        query_type: QueryType,
        results: Sequence[SearchResult],
        scores: Sequence[Optional[RelevanceScore]],
    ) -> str:
        # Everything _assess reads per result: its text and its full score
        digest = hashlib.sha256()
        digest.update(query.encode("utf-8"))
        digest.update(b"\x00" + query_type.value.encode("utf-8"))
        for r, s in zip(results, scores):
            digest.update(b"\x00" + r.url.encode("utf-8") + b"\x01" + r.title.encode("utf-8"))
            digest.update(b"\x01" + r.snippet.encode("utf-8") + b"\x01" + (r.content or "").encode("utf-8") + b"\x01")
            digest.update(s.model_dump_json().encode("utf-8") if s is not None else b"-")
        return digest.hexdigest()

    def classify_quality(
        self,
        query: str,
        results: Sequence[SearchResult],
        scores: Optional[Sequence[RelevanceScore]] = None,
        query_type: Optional[QueryType] = None,
    ) -> QualityAssessment:
        """
        Assess `results` for `query`.

        Args:
            scores: Relevance per result; defaults to each result's attached
                relevance
            query_type: Defaults to identify_query_type(query)
        """
        if scores is None:
            scores = [r.relevance for r in results]
        elif len(scores) != len(results):
            raise ValueError("results and scores must have the same length")
        query_type = query_type or identify_query_type(query)

        key = self._cache_key(query, query_type, results, scores)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        assessment = self._assess(query, list(results), list(scores), query_type)

        with self._lock:
            self._cache[key] = assessment
            while len(self._cache) > ASSESSMENT_CACHE_SIZE:
                self._cache.popitem(last=False)
        return assessment

    def _assess(
        self,
        query: str,
        results: List[SearchResult],
        scores: List[Optional[RelevanceScore]],
        query_type: QueryType,
    ) -> QualityAssessment:
        profile = self.profile_for(query_type)
        issues: List[str] = []
        kinds: List[QualityIssue] = []
        strengths: List[str] = []

        coverage = self._coverage(query, results, scores)
        if coverage < profile.min_coverage:
            issues.append(f"Insufficient query coverage ({coverage * 100:.1f}%)")
            kinds.append(QualityIssue.COVERAGE)
        else:
            strengths.append("Good query coverage")

        authority = self._authority(scores)
        if authority < profile.min_authority:
            issues.append("Low source authority")
            kinds.append(QualityIssue.AUTHORITY)
        else:
            strengths.append("Reliable, authoritative sources")

        depth = sum(_content_depth(r) for r in results) / len(results) if results else 0.0
        if depth < profile.min_depth:
            issues.append("Shallow or insufficient content")
            kinds.append(QualityIssue.DEPTH)
        else:
            strengths.append("Detailed, in-depth content")

        diversity = len({r.source_domain for r in results if r.source_domain})
        if diversity < profile.min_diversity:
            issues.append(
                f"Insufficient source diversity ({diversity} of {profile.min_diversity} distinct domains)"
            )
            kinds.append(QualityIssue.DIVERSITY)
        else:
            strengths.append("Good source diversity")

        high = sum(1 for s in scores if s is not None and s.overall >= profile.min_relevance)
        if high == 0:
            issues.append("No result with sufficient relevance")
            kinds.append(QualityIssue.RELEVANCE)
        if profile.require_multiple_sources and high < 2:
            issues.append("Multiple sources required for this query type")
            kinds.append(QualityIssue.MULTIPLE_SOURCES)

        diversity_ratio = min(1.0, diversity / profile.min_diversity) if profile.min_diversity > 0 else 1.0
        confidence = (
            coverage * 0.3
            + authority * 0.25
            + depth * 0.2
            + diversity_ratio * 0.15
            + (high / max(1, len(results))) * 0.1
        )
        confidence = max(0.0, min(1.0, confidence))

        satisfactory = (
            coverage >= profile.min_coverage
            and authority >= profile.min_authority
            and depth >= profile.min_depth
            and diversity >= profile.min_diversity
            and high > 0
            and (not profile.require_multiple_sources or high >= 2)
        )

        assessment = QualityAssessment(
            is_satisfactory=satisfactory,
            confidence=confidence,
            coverage=coverage,
            authority=authority,
            content_depth=depth,
            source_diversity=diversity,
            issues=tuple(issues),
            strengths=tuple(strengths),
            recommendation=self._recommendation(satisfactory, issues, query_type, confidence),
            query_type=query_type,
            high_relevance_count=high,
            issue_kinds=tuple(kinds),
        )
        logger.debug(
            f"Quality [{query_type.value}] satisfactory={satisfactory} "
            f"confidence={confidence:.3f} issues={len(issues)}"
        )
        return assessment

    def _coverage(
        self,
        query: str,
        results: List[SearchResult],
        scores: List[Optional[RelevanceScore]],
    ) -> float:
        terms = [t for t in normalize_text(query).split() if len(t) > 2]
        if not terms or not results:
            return 0.0

        covered = set()
        for result, score in zip(results, scores):
            if score is not None and score.overall < COVERAGE_MIN_RELEVANCE:
                continue
            text = f"{result.title} {result.snippet} {result.content or ''}".lower()
            covered.update(t for t in terms if t in text)
        return len(covered) / len(set(terms))

    def _authority(self, scores: List[Optional[RelevanceScore]]) -> float:
        valid = [s.authority for s in scores if s is not None and s.overall >= AUTHORITY_MIN_RELEVANCE]
        return sum(valid) / len(valid) if valid else 0.0

    def _recommendation(
        self,
        satisfactory: bool,
        issues: List[str],
        query_type: QueryType,
        confidence: float,
    ) -> str:
        if satisfactory and confidence >= 0.8:
            return "High quality information found. Safe to answer with confidence."
        if satisfactory and confidence >= 0.6:
            return "Satisfactory information found. Answer recommended with some caveats."
        if issues:
            return f"{RECOMMENDATION_BY_TYPE[query_type]} {issues[0]}"
        return "Insufficient quality. Refine the search or wait for better results."

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def get_cache_stats(self) -> Dict[str, int]:
        return {"cache_size": len(self._cache), "max_size": ASSESSMENT_CACHE_SIZE}
