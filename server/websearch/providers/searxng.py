"""
SearXNG metasearch provider.

Queries a self-hosted SearXNG instance through its JSON API. Only available
when a base URL is configured. Every result field is optional upstream, so
items without a URL or title are skipped rather than failing the search.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..http_fetcher import ProviderHttpClient
from ..models import SearchQuery, SearchResult, SearchType
from ..user_agent_config import ACCEPT_LANGUAGE_EN, HeaderRotator
from .base import SearchProvider

logger = logging.getLogger("websearch.providers.searxng")

# SearXNG category per search type
CATEGORY_BY_SEARCH_TYPE = {
    SearchType.GENERAL: "general",
    SearchType.NEWS: "news",
    SearchType.ACADEMIC: "science",
    SearchType.IMAGES: "images",
}

# Results per SearXNG page; at most this many pages are requested
PAGE_SIZE = 10
MAX_PAGES = 3


def _parse_published(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class SearXNGProvider(SearchProvider):
    """
    SearXNG provider (self-hosted metasearch).

    Args:
        base_url: Instance URL, e.g. http://localhost:8888. None disables it.
    """

    name = "searxng"
    priority = 6
    timeout_seconds = 15.0

    def __init__(self, base_url: Optional[str] = None, http: Optional[ProviderHttpClient] = None):
        super().__init__()
        self.base_url = base_url.rstrip("/") if base_url else None
        self.http = http or ProviderHttpClient(
            self.name,
            timeout=self.timeout_seconds,
            header_rotator=HeaderRotator(accept_language=ACCEPT_LANGUAGE_EN),
        )

    @property
    def is_available(self) -> bool:
        return bool(self.base_url)

    async def close(self) -> None:
        await self.http.close()

    async def _search(self, query: SearchQuery) -> List[SearchResult]:
        results: List[SearchResult] = []
        seen_urls = set()
        pages_needed = min(MAX_PAGES, (query.max_results + PAGE_SIZE - 1) // PAGE_SIZE)

        for page in range(1, pages_needed + 1):
            data = await self.http.get_json(f"{self.base_url}/search", params=self._params(query, page))
            page_items = data.get("results", []) if isinstance(data, dict) else []

            unresponsive = data.get("unresponsive_engines") if isinstance(data, dict) else None
            if unresponsive:
                logger.info(f"SearXNG unresponsive engines: {unresponsive}")

            for item in page_items:
                result = self._item_to_result(item)
                if result is None or result.url in seen_urls:
                    continue
                seen_urls.add(result.url)
                results.append(result)
                if len(results) >= query.max_results:
                    return results

            if not page_items:
                break

        return results

    def _params(self, query: SearchQuery, page: int) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "q": query.formatted,
            "format": "json",
            "categories": CATEGORY_BY_SEARCH_TYPE.get(query.search_type, "general"),
            "pageno": page,
        }
        if query.language:
            params["language"] = query.language
        if query.time_range:
            params["time_range"] = query.time_range
        return params

    def _item_to_result(self, item: Any) -> Optional[SearchResult]:
        if not isinstance(item, dict):
            return None
        url = item.get("url") or ""
        title = (item.get("title") or "").strip()
        if not url or not title:
            return None

        metadata: Dict[str, Any] = {"provider": self.name}
        if item.get("engine"):
            metadata["engine"] = item["engine"]
        if item.get("engines"):
            metadata["engines"] = list(item["engines"])
        if isinstance(item.get("score"), (int, float)):
            metadata["score"] = float(item["score"])

        result = SearchResult(
            title=title,
            url=url,
            snippet=(item.get("content") or "").strip(),
            metadata=metadata,
        )
        published = _parse_published(item.get("publishedDate"))
        if published is not None:
            result.metadata["published_date"] = published.isoformat()
        return result
