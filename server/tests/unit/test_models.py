"""
Unit Tests for websearch models

Query formatting and parsing, result helpers and deduplication.
"""

import pytest
from pydantic import ValidationError

from websearch.models import SearchQuery, SearchResult, SearchType, deduplicate_results


# =============================================================================
# QUERY TESTS
# =============================================================================

class TestSearchQuery:
    """Tests for SearchQuery."""

    def test_formatted_operators(self):
        """Filters are appended in a fixed order."""
        query = SearchQuery(
            query="asyncio",
            domains=("python.org", "realpython.com"),
            exclude_terms=("java",),
            synonyms=("coroutines",),
            language="en",
            time_range="month",
        )
        assert query.formatted == (
            "asyncio site:python.org OR site:realpython.com -java (coroutines) lang:en when:month"
        )
        assert str(query) == query.formatted

    def test_parse_operator_syntax(self):
        """Operators are pulled out of free text."""
        query = SearchQuery.parse("asyncio tutorial site:python.org -java lang:en when:week type:pdf",
                                  search_type=SearchType.ACADEMIC)
        assert query.query == "asyncio tutorial"
        assert query.domains == ("python.org",)
        assert query.exclude_terms == ("java",)
        assert query.language == "en"
        assert query.time_range == "week"
        assert query.content_type == "pdf"
        assert query.search_type == SearchType.ACADEMIC

    def test_immutable_builders(self):
        """with_* helpers return new queries."""
        base = SearchQuery(query="x")
        extended = base.with_domains(["a.com"]).with_exclude_terms(["b"]).with_synonyms(["c"])
        assert base.domains == ()
        assert extended.formatted == "x site:a.com -b (c)"
        with pytest.raises(ValidationError):
            base.query = "y"

    def test_max_results_bounds(self):
        """max_results must be between 1 and 100."""
        with pytest.raises(ValidationError):
            SearchQuery(query="x", max_results=0)


# =============================================================================
# RESULT TESTS
# =============================================================================

class TestSearchResult:
    """Tests for SearchResult helpers."""

    def test_source_domain(self, result_factory):
        """Domain is the lowercase hostname."""
        assert result_factory(url="https://Docs.Python.org/3/").source_domain == "docs.python.org"
        assert result_factory(url="not a url").source_domain == ""

    def test_source_domain_malformed_url(self, result_factory):
        """Unparseable URLs have no domain instead of raising."""
        assert result_factory(url="http://[broken/path").source_domain == ""

    def test_relevance_flags(self, result_factory):
        """Flags follow the 0.6 and 0.8 cutoffs."""
        assert not result_factory().is_relevant
        assert result_factory(overall=0.6).is_relevant
        assert not result_factory(overall=0.79).is_highly_relevant
        assert result_factory(overall=0.8).is_highly_relevant

    def test_deduplicate_by_url_and_title(self, result_factory):
        """Same URL or same normalized title is a duplicate; first wins."""
        results = [
            result_factory(title="Python: Asyncio!", url="https://a.example.com"),
            result_factory(title="python asyncio", url="https://b.example.com"),
            result_factory(title="Other", url="https://a.example.com"),
            result_factory(title="Different", url="https://c.example.com"),
        ]
        unique = deduplicate_results(results)
        assert [r.url for r in unique] == ["https://a.example.com", "https://c.example.com"]
        assert results[0].is_duplicate_of(results[1])

    def test_defaults(self):
        """Snippet defaults to empty and a timestamp is set."""
        result = SearchResult(title="t", url="https://x.example.com")
        assert result.snippet == ""
        assert result.timestamp.tzinfo is not None
