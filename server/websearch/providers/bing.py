"""
Bing HTML search provider.

Handles general and news searches. Result markup changes often, so parsing
walks a selector cascade and only gives up when every stage comes back empty.
"""

import logging
from typing import List, Optional

from bs4 import BeautifulSoup

from ..errors import ParseError
from ..http_fetcher import ProviderHttpClient
from ..models import SearchQuery, SearchResult, SearchType
from ..retry_strategy import RetryPolicy
from ..user_agent_config import HeaderRotator
from .base import SearchProvider
from .duckduckgo import clean_text, dedupe_by_url_and_title

logger = logging.getLogger("websearch.providers.bing")

SEARCH_URL = "https://www.bing.com/search"

SNIPPET_SELECTORS = (".b_caption p", ".b_snippet", ".b_descript")


class BingProvider(SearchProvider):
    """Bing web search via HTML scraping"""

    name = "bing"
    priority = 8
    timeout_seconds = 12.0

    def __init__(self, http: Optional[ProviderHttpClient] = None):
        super().__init__()
        self.http = http or ProviderHttpClient(
            self.name,
            timeout=self.timeout_seconds,
            retry_policy=RetryPolicy(),
            header_rotator=HeaderRotator(extra_headers={"Referer": "https://www.bing.com/"}),
        )

    def can_handle(self, query: SearchQuery) -> bool:
        return bool(query.query.strip()) and query.search_type in (SearchType.GENERAL, SearchType.NEWS)

    async def close(self) -> None:
        await self.http.close()

    async def _search(self, query: SearchQuery) -> List[SearchResult]:
        html = await self.http.get_text(SEARCH_URL, params={
            "q": query.formatted,
            "count": query.max_results,
        }, check_block=False)
        results = self.http.parse_results_page(
            html, SEARCH_URL, lambda page: self.parse_results(page, query.max_results),
        )
        return dedupe_by_url_and_title(results)[:query.max_results]

    def parse_results(self, html: str, max_results: int) -> List[SearchResult]:
        """
        Raises:
            ParseError: Non-empty page where no selector stage matched
        """
        if not html or not html.strip():
            return []

        soup = BeautifulSoup(html, "html.parser")

        results = self._parse_algo_blocks(soup, max_results)
        if not results:
            results = self._parse_title_blocks(soup, max_results)
        if not results:
            results = self._parse_heading_links(soup, max_results)

        if not results and "no results" not in soup.get_text(" ").lower():
            raise ParseError("Bing HTML layout not recognized", self.name)
        return results

    def _snippet_for(self, element) -> str:
        for selector in SNIPPET_SELECTORS:
            found = element.select_one(selector)
            if found is not None:
                return found.get_text(" ")
        return ""

    def _parse_algo_blocks(self, soup: BeautifulSoup, max_results: int) -> List[SearchResult]:
        results = []
        for block in soup.select("li.b_algo, .b_algo"):
            if len(results) >= max_results:
                break
            anchor = block.select_one("h2 a, .b_title a")
            result = self._make_result(anchor, self._snippet_for(block))
            if result is not None:
                results.append(result)
        return results

    def _parse_title_blocks(self, soup: BeautifulSoup, max_results: int) -> List[SearchResult]:
        results = []
        for title_el in soup.select(".b_title, .b_topTitle"):
            if len(results) >= max_results:
                break
            anchor = title_el if title_el.name == "a" else title_el.select_one("a")
            container = title_el.parent if title_el.parent is not None else title_el
            result = self._make_result(anchor, self._snippet_for(container))
            if result is not None:
                results.append(result)
        return results

    def _parse_heading_links(self, soup: BeautifulSoup, max_results: int) -> List[SearchResult]:
        results = []
        for anchor in soup.select('h2 a[href^="http"]'):
            if len(results) >= max_results:
                break
            result = self._make_result(anchor, "")
            if result is not None:
                results.append(result)
        return results

    def _make_result(self, anchor, snippet: str) -> Optional[SearchResult]:
        if anchor is None:
            return None
        url = anchor.get("href", "")
        title = clean_text(anchor.get_text(" "))
        if not title or not url.startswith("http"):
            return None
        return SearchResult(
            title=title,
            url=url,
            snippet=clean_text(snippet),
            metadata={"provider": self.name},
        )
