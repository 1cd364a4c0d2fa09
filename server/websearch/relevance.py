"""
Relevance Analyzer - multi-factor scoring of search results

Scores one (query, result) pair from six deterministic signals:

| Signal    | Weight | Meaning                                             |
|-----------|--------|-----------------------------------------------------|
| semantic  | 0.35   | character-bigram similarity to title/snippet/content|
| keyword   | 0.25   | query keywords present in title/snippet/content     |
| quality   | 0.20   | title/snippet/content shape heuristics              |
| authority | 0.10   | known-domain table, else URL heuristics             |
| position  | 0.05   | keywords leading the title/snippet                  |
| spam      | -0.05  | click-bait phrases, shouting, symbol-heavy titles   |

The domain-authority table and stopword set are immutable and injected via
RelevanceTables, so analyzers never share mutable state.
"""

import html
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import FrozenSet, List, Mapping, Optional, Sequence
from urllib.parse import urlparse

from .models import RelevanceScore, SearchResult

logger = logging.getLogger("websearch.relevance")

# Default minimum overall score kept by filter_and_rank
DEFAULT_MIN_RELEVANCE = 0.4

# Fragments shorter than this are ignored for content similarity
MIN_FRAGMENT_CHARS = 20
MAX_FRAGMENTS = 5

AUTHORITY_DOMAINS: Mapping[str, float] = MappingProxyType({
    "wikipedia.org": 0.9,
    "github.com": 0.8,
    "stackoverflow.com": 0.85,
    "docs.flutter.dev": 0.9,
    ".edu": 0.85,
    ".gov": 0.9,
    "medium.com": 0.7,
    "dev.to": 0.7,
})

STOPWORDS: FrozenSet[str] = frozenset({
    # Portuguese
    "o", "e", "da", "em", "uma", "para", "com", "por",
    "na", "ao", "dos", "das", "como", "mais", "mas", "foi", "ele", "ela",
    "seu", "sua", "ou", "ser", "ter", "que", "não", "são", "este", "esta",
    "isso", "essa", "esse", "pelo", "pela", "pelos", "pelas",
    # English
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "up", "about", "into", "through", "during",
    "before", "after", "above", "below", "out", "off", "over", "under",
    "again", "further", "then", "once", "here", "there", "when", "where",
    "why", "how", "all", "any", "both", "each", "few", "most",
    "other", "some", "such", "nor", "not", "only", "own", "same",
    "so", "than", "too", "very", "can", "will", "shall", "should", "would",
    "could", "may", "might", "must", "ought", "is", "are", "was", "were",
    "be", "been", "being", "have", "has", "had", "do", "does", "did",
})

CLICK_PHRASES = ("click here", "clique aqui")
BUY_PHRASES = ("buy now", "compre agora")

_TAG = re.compile(r"<[^>]+>")
_URL = re.compile(r"https?://\S+|www\.\S+", re.IGNORECASE)
_EMAIL = re.compile(r"\b[\w.+-]+@[\w-]+\.[\w.-]+\b")
_WHITESPACE = re.compile(r"\s+")
_NON_WORD = re.compile(r"[^\w\s]")
_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_SPECIAL_CHAR = re.compile(r"[a-zA-Z0-9\s]")
_NOT_UPPER = re.compile(r"[^A-Z]")


@dataclass(frozen=True)
class RelevanceTables:
    """Lookup tables for the analyzer."""
    authority_domains: Mapping[str, float] = field(default_factory=lambda: AUTHORITY_DOMAINS)
    stopwords: FrozenSet[str] = field(default_factory=lambda: STOPWORDS)

    def __post_init__(self):
        # Freeze whatever the caller passed in
        object.__setattr__(self, "authority_domains", MappingProxyType(dict(self.authority_domains)))
        object.__setattr__(self, "stopwords", frozenset(self.stopwords))


DEFAULT_RELEVANCE_TABLES = RelevanceTables()


def normalize_text(text: str) -> str:
    """Unescape entities, strip tags, mask URLs/emails, collapse and lowercase."""
    if not text:
        return ""
    processed = html.unescape(text)
    processed = _TAG.sub(" ", processed)
    processed = _URL.sub(" [url] ", processed)
    processed = _EMAIL.sub(" [email] ", processed)
    processed = _WHITESPACE.sub(" ", processed)
    return processed.strip().lower()


def _bigrams(text: str) -> Counter:
    return Counter(text[i:i + 2] for i in range(len(text) - 1))


def dice_coefficient(a: str, b: str) -> float:
    """Sørensen-Dice similarity over character bigrams, whitespace ignored."""
    a = _WHITESPACE.sub("", a)
    b = _WHITESPACE.sub("", b)
    if a == b:
        return 1.0
    if len(a) < 2 or len(b) < 2:
        return 0.0
    first = _bigrams(a)
    second = _bigrams(b)
    overlap = sum((first & second).values())
    return (2.0 * overlap) / (len(a) - 1 + len(b) - 1)


class RelevanceAnalyzer:
    """
    Deterministic relevance scoring.

    Args:
        tables: Authority table and stopwords (immutable, shared safely)
    """

    def __init__(self, tables: RelevanceTables = DEFAULT_RELEVANCE_TABLES):
        self.tables = tables

    def extract_keywords(self, text: str) -> List[str]:
        """Lowercased words longer than 2 chars that are not stopwords."""
        cleaned = _NON_WORD.sub(" ", text.lower())
        return [w for w in cleaned.split() if len(w) > 2 and w not in self.tables.stopwords]

    def analyze(
        self,
        query: str,
        title: str,
        snippet: str,
        url: str,
        content: Optional[str] = None,
    ) -> RelevanceScore:
        """Score one result. Same input always yields the same score."""
        content = content or ""
        q = normalize_text(query)
        t = normalize_text(title)
        s = normalize_text(snippet)
        c = normalize_text(content)

        semantic = self.semantic_similarity(q, t, s, c)
        keyword = self.keyword_score(q, t, s, c)
        quality = self.content_quality(title, snippet, content)
        authority = self.authority_score(url)
        position = self.position_bonus(q, t, s)
        spam = self.spam_penalty(title, snippet, content)

        overall = (
            semantic * 0.35
            + keyword * 0.25
            + quality * 0.20
            + authority * 0.10
            + position * 0.05
            - spam * 0.05
        )

        return RelevanceScore(
            overall=max(0.0, min(1.0, overall)),
            semantic=min(1.0, semantic),
            keyword=min(1.0, keyword),
            quality=quality,
            authority=authority,
            factors={
                "semantic_similarity": semantic,
                "keyword_density": keyword,
                "content_quality": quality,
                "source_authority": authority,
                "position_bonus": position,
                "spam_penalty": spam,
            },
        )

    def analyze_result(self, query: str, result: SearchResult) -> RelevanceScore:
        return self.analyze(query, result.title, result.snippet, result.url, result.content)

    def score_results(self, query: str, results: Sequence[SearchResult]) -> List[SearchResult]:
        """Copies of `results` with relevance attached, original order kept."""
        return [
            r.model_copy(update={"relevance": self.analyze_result(query, r)})
            for r in results
        ]

    # ------------------------------------------------------------------
    # signals
    # ------------------------------------------------------------------

    def semantic_similarity(self, query: str, title: str, snippet: str, content: str) -> float:
        if not query:
            return 0.0
        title_sim = dice_coefficient(query, title)
        snippet_sim = dice_coefficient(query, snippet)
        content_sim = 0.0
        if content:
            fragments = self.relevant_fragments(content, query)
            if fragments:
                content_sim = max(dice_coefficient(query, f) for f in fragments)
        return title_sim * 0.5 + snippet_sim * 0.3 + content_sim * 0.2

    def relevant_fragments(self, content: str, query: str) -> List[str]:
        """Content sentences sharing at least one keyword with the query."""
        query_words = self.extract_keywords(query)
        fragments = []
        for sentence in _SENTENCE_SPLIT.split(content):
            sentence = sentence.strip()
            if len(sentence) < MIN_FRAGMENT_CHARS:
                continue
            sentence_words = self.extract_keywords(sentence)
            if any(
                q in w or w in q
                for q in query_words
                for w in sentence_words
            ):
                fragments.append(sentence)
                if len(fragments) >= MAX_FRAGMENTS:
                    break
        return fragments

    def keyword_score(self, query: str, title: str, snippet: str, content: str) -> float:
        keywords = self.extract_keywords(query)
        if not keywords:
            return 0.0

        title_words = set(self.extract_keywords(title))
        snippet_words = set(self.extract_keywords(snippet))
        content_words = set(self.extract_keywords(content)) if content else set()
        title_lower = title.lower()

        score = 0.0
        for keyword in keywords:
            if keyword in title_words:
                score += 0.4
            if keyword in snippet_words:
                score += 0.3
            if keyword in content_words:
                score += 0.2
            if keyword in title_lower:
                score += 0.1
        return score / len(keywords)

    def content_quality(self, title: str, snippet: str, content: str) -> float:
        score = 0.0

        if 10 <= len(title) <= 100:
            score += 0.2
        if len(title.split()) >= 3:
            score += 0.1
        if "..." not in title:
            score += 0.1

        if 50 <= len(snippet) <= 300:
            score += 0.2
        if len(snippet.split()) >= 10:
            score += 0.1

        if content:
            word_count = len(content.split())
            if word_count >= 100:
                score += 0.1
            if word_count >= 500:
                score += 0.1
            if "\n\n" in content or "<p>" in content:
                score += 0.1

        return min(1.0, score)

    def authority_score(self, url: str) -> float:
        try:
            parsed = urlparse(url)
        except ValueError:
            return 0.0
        domain = (parsed.hostname or "").lower()
        if not domain:
            return 0.0

        for known, score in self.tables.authority_domains.items():
            if known in domain:
                return score

        score = 0.5
        if parsed.scheme == "https":
            score += 0.1
        if len(domain.split(".")) == 2:
            score += 0.1
        if "blog" in domain or "news" in domain:
            score += 0.05
        if "spam" in domain or "ads" in domain:
            score -= 0.3
        return max(0.0, min(1.0, score))

    def position_bonus(self, query: str, title: str, snippet: str) -> float:
        keywords = self.extract_keywords(query)
        bonus = 0.0
        for keyword in keywords:
            if title.startswith(keyword):
                bonus += 0.3
            if snippet.startswith(keyword):
                bonus += 0.2
        return min(0.5, bonus)

    def spam_penalty(self, title: str, snippet: str, content: str) -> float:
        penalty = 0.0
        all_text = f"{title} {snippet} {content}".lower()

        if any(phrase in all_text for phrase in CLICK_PHRASES):
            penalty += 0.2
        if any(phrase in all_text for phrase in BUY_PHRASES):
            penalty += 0.3

        special = len(_SPECIAL_CHAR.sub("", title))
        if special > len(title) * 0.2:
            penalty += 0.2
        upper = len(_NOT_UPPER.sub("", title))
        if upper > len(title) * 0.5:
            penalty += 0.3

        return min(1.0, penalty)

    # ------------------------------------------------------------------
    # ranking
    # ------------------------------------------------------------------

    def filter_and_rank(
        self,
        results: Sequence,
        scores: Sequence[RelevanceScore],
        min_relevance: float = DEFAULT_MIN_RELEVANCE,
    ) -> List:
        """
        Items whose score reaches `min_relevance`, best first.

        Ties keep their input order.

        Raises:
            ValueError: If results and scores differ in length
        """
        if len(results) != len(scores):
            raise ValueError("results and scores must have the same length")
        kept = [
            (score.overall, item)
            for item, score in zip(results, scores)
            if score.overall >= min_relevance
        ]
        kept.sort(key=lambda pair: pair[0], reverse=True)
        return [item for _, item in kept]

    def rank_results(self, results: Sequence[SearchResult], min_relevance: float = 0.0) -> List[SearchResult]:
        """Rank already-scored results by their attached relevance."""
        scored = [r for r in results if r.relevance is not None]
        return self.filter_and_rank(scored, [r.relevance for r in scored], min_relevance)

