"""
DuckDuckGo search provider.

No API key required. The Instant Answer JSON API is tried first; it only
knows encyclopedic topics, so when it yields fewer than 3 results the HTML
endpoint is scraped with a selector cascade.
"""

import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urljoin, urlparse

from bs4 import BeautifulSoup

from ..errors import ParseError, WebSearchError
from ..http_fetcher import ProviderHttpClient
from ..models import SearchQuery, SearchResult
from .base import SearchProvider

logger = logging.getLogger("websearch.providers.duckduckgo")

API_URL = "https://api.duckduckgo.com/"
HTML_URL = "https://html.duckduckgo.com/html/"

# Fewer API results than this triggers HTML scraping
MIN_API_RESULTS = 3

_WHITESPACE = re.compile(r"\s+")


def clean_text(text: str) -> str:
    return _WHITESPACE.sub(" ", text.replace("...", "")).strip()


def unwrap_redirect(href: str) -> str:
    """Resolve DuckDuckGo's /l/?uddg= redirect links to the target URL."""
    if not href:
        return ""
    try:
        absolute = urljoin("https://duckduckgo.com/", href)
        parsed = urlparse(absolute)
    except ValueError:
        return ""
    if "uddg" in parsed.query:
        target = parse_qs(parsed.query).get("uddg")
        if target:
            return target[0]
    return absolute


def dedupe_by_url_and_title(results: List[SearchResult]) -> List[SearchResult]:
    seen = set()
    unique = []
    for result in results:
        key = f"{result.url}|{result.title}"
        if key not in seen:
            seen.add(key)
            unique.append(result)
    return unique


class DuckDuckGoProvider(SearchProvider):
    """DuckDuckGo Instant Answer API with HTML scraping fallback"""

    name = "duckduckgo"
    priority = 7
    timeout_seconds = 10.0

    def __init__(self, http: Optional[ProviderHttpClient] = None):
        super().__init__()
        self.http = http or ProviderHttpClient(self.name, timeout=self.timeout_seconds)

    async def close(self) -> None:
        await self.http.close()

    async def _search(self, query: SearchQuery) -> List[SearchResult]:
        results: List[SearchResult] = []

        try:
            data = await self.http.get_json(API_URL, params={
                "q": query.formatted,
                "format": "json",
                "no_html": "1",
                "skip_disambig": "1",
            })
            results = self.parse_api_results(data, query.max_results)
        except WebSearchError as e:
            logger.debug(f"DuckDuckGo API unavailable, scraping instead: {e}")

        if len(results) < MIN_API_RESULTS:
            try:
                html = await self.http.get_text(HTML_URL, params={"q": query.formatted}, check_block=False)
                results.extend(self.http.parse_results_page(
                    html, HTML_URL, lambda page: self.parse_html_results(page, query.max_results),
                ))
            except WebSearchError as e:
                if not results:
                    raise
                logger.warning(f"DuckDuckGo scraping failed, keeping {len(results)} API results: {e}")

        return dedupe_by_url_and_title(results)[:query.max_results]

    # ------------------------------------------------------------------
    # JSON API
    # ------------------------------------------------------------------

    def parse_api_results(self, data: Any, max_results: int) -> List[SearchResult]:
        if not isinstance(data, dict):
            return []

        results: List[SearchResult] = []

        abstract = data.get("AbstractText") or data.get("Abstract")
        abstract_url = data.get("AbstractURL")
        if abstract and abstract_url:
            results.append(SearchResult(
                title=clean_text(data.get("Heading") or "DuckDuckGo Result"),
                url=abstract_url,
                snippet=clean_text(abstract),
                metadata={"provider": self.name, "source": "abstract"},
            ))

        for topic in self._flatten_topics(data.get("RelatedTopics") or []):
            if len(results) >= max_results:
                break
            result = self._topic_to_result(topic)
            if result is not None:
                results.append(result)

        return results

    def _flatten_topics(self, topics: List[Any]) -> List[Dict[str, Any]]:
        """Related topics may be grouped under a nested "Topics" list."""
        flat = []
        for topic in topics:
            if not isinstance(topic, dict):
                continue
            if isinstance(topic.get("Topics"), list):
                flat.extend(t for t in topic["Topics"] if isinstance(t, dict))
            else:
                flat.append(topic)
        return flat

    def _topic_to_result(self, topic: Dict[str, Any]) -> Optional[SearchResult]:
        text = topic.get("Text") or ""
        url = topic.get("FirstURL") or ""
        if not text or not url:
            return None

        # "Title - description" by convention
        parts = text.split(" - ")
        title = parts[0]
        snippet = " - ".join(parts[1:]) if len(parts) > 1 else text
        return SearchResult(
            title=clean_text(title),
            url=url,
            snippet=clean_text(snippet),
            metadata={"provider": self.name, "source": "related_topic"},
        )

    # ------------------------------------------------------------------
    # HTML scraping
    # ------------------------------------------------------------------

    def parse_html_results(self, html: str, max_results: int) -> List[SearchResult]:
        """
        Parse the HTML results page.

        Selector cascade: result blocks, then bare result anchors, then any
        anchor carrying a uddg redirect.

        Raises:
            ParseError: The page has content but no stage found results and
                it is not a "No results" page
        """
        if not html or not html.strip():
            return []

        soup = BeautifulSoup(html, "html.parser")
        stages = (self._parse_blocks, self._parse_anchors, self._parse_redirect_links)

        for stage in stages:
            results = stage(soup, max_results)
            if results:
                logger.debug(f"DuckDuckGo HTML parsed by {stage.__name__}: {len(results)} results")
                return results

        if "no results" in soup.get_text(" ").lower():
            return []
        raise ParseError("DuckDuckGo HTML layout not recognized", self.name)

    def _parse_blocks(self, soup: BeautifulSoup, max_results: int) -> List[SearchResult]:
        results = []
        for block in soup.select(".result, .web-result"):
            if len(results) >= max_results:
                break
            anchor = block.select_one(".result__title a, .result__a")
            if anchor is None:
                continue
            snippet_el = block.select_one(".result__snippet") or block.select_one(".result__body")
            snippet = snippet_el.get_text(" ") if snippet_el is not None else ""
            result = self._make_result(anchor, snippet)
            if result is not None:
                results.append(result)
        return results

    def _parse_anchors(self, soup: BeautifulSoup, max_results: int) -> List[SearchResult]:
        results = []
        for anchor in soup.select("a.result__a"):
            if len(results) >= max_results:
                break
            result = self._make_result(anchor, "")
            if result is not None:
                results.append(result)
        return results

    def _parse_redirect_links(self, soup: BeautifulSoup, max_results: int) -> List[SearchResult]:
        results = []
        for anchor in soup.select('a[href*="uddg="]'):
            if len(results) >= max_results:
                break
            result = self._make_result(anchor, "")
            if result is not None:
                results.append(result)
        return results

    def _make_result(self, anchor, snippet: str) -> Optional[SearchResult]:
        url = unwrap_redirect(anchor.get("href", ""))
        title = clean_text(anchor.get_text(" "))
        if not title or not url.startswith("http"):
            return None
        return SearchResult(
            title=title,
            url=url,
            snippet=clean_text(snippet),
            metadata={"provider": self.name, "source": "html"},
        )
