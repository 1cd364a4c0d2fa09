"""
HTTP fetching shared by search providers and the page fetcher.

ProviderHttpClient composes three independent helpers around one pooled
httpx.AsyncClient:
- HeaderRotator: fresh browser identity per request
- BlockDetector: CAPTCHA / anti-bot pages raise BlockDetectedError
- RetryPolicy: transient network failures retried with backoff

Transport failures and HTTP error statuses are translated to NetworkError so
callers never handle raw httpx exceptions.
"""

import logging
import re
from typing import Any, Callable, Dict, List, Optional

import httpx
from bs4 import BeautifulSoup

from .errors import BlockDetectedError, NetworkError, ParseError
from .models import SearchResult
from .retry_strategy import RetryPolicy
from .user_agent_config import BlockDetector, HeaderRotator

logger = logging.getLogger("websearch.http_fetcher")

# Page regions that never carry article text
STRIP_SELECTORS = (
    "script", "style", "nav", "header", "footer", "aside",
    ".ads", ".advertisement", ".sidebar", ".menu", ".navigation",
    ".comments", ".social", ".share",
)

# Main-content containers, most specific first
CONTENT_SELECTORS = (
    "main", "article", ".content", ".post", ".entry",
    ".article-body", '[role="main"]', ".main-content",
)

DEFAULT_MAX_CONTENT_CHARS = 5000

_INLINE_WHITESPACE = re.compile(r"[ \t\r\f\v]+")
_SENTENCE_END = re.compile(r"[.!?](?=\s)")


class ProviderHttpClient:
    """Pooled async HTTP client with identity rotation, block detection and retry."""

    def __init__(
        self,
        provider_name: str,
        timeout: float = 15.0,
        retry_policy: Optional[RetryPolicy] = None,
        header_rotator: Optional[HeaderRotator] = None,
        block_detector: Optional[BlockDetector] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.provider_name = provider_name
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.header_rotator = header_rotator or HeaderRotator()
        self.block_detector = block_detector or BlockDetector()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
                limits=httpx.Limits(max_connections=50, max_keepalive_connections=10),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _send(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        check_block: bool = True,
    ) -> httpx.Response:
        """One round-trip, no retry."""
        client = await self._get_client()
        try:
            response = await client.request(
                method,
                url,
                params=params,
                json=json,
                headers=self.header_rotator.next_headers(),
            )
        except httpx.TimeoutException as e:
            raise NetworkError(f"Timeout fetching {url}: {e}", self.provider_name) from e
        except httpx.HTTPError as e:
            raise NetworkError(f"HTTP error fetching {url}: {e}", self.provider_name) from e
        except httpx.InvalidURL as e:
            raise NetworkError(f"Invalid URL {url!r}: {e}", self.provider_name) from e

        # Error statuses are always checked, an anti-bot wall often comes back as 403
        if check_block or response.status_code >= 400:
            self.raise_if_blocked(response.text, url)

        if response.status_code >= 400:
            raise NetworkError(
                f"HTTP {response.status_code} from {url}",
                self.provider_name,
                status_code=response.status_code,
            )
        return response

    def raise_if_blocked(self, body: str, url: str) -> None:
        """
        Raises:
            BlockDetectedError: `body` carries an anti-bot signature
        """
        signature = self.block_detector.detect(body)
        if signature:
            logger.warning(f"{self.provider_name}: block page detected ({signature!r}) at {url}")
            raise BlockDetectedError(
                f"Anti-bot page detected at {url}",
                self.provider_name,
                signature=signature,
            )

    def parse_results_page(
        self,
        body: str,
        url: str,
        parse: Callable[[str], List[SearchResult]],
    ) -> List[SearchResult]:
        """
        Parse a results page fetched with check_block=False.

        Only a page that yields no results is checked for block signatures,
        so result pages about CAPTCHAs (or echoing such a query) still parse.
        """
        try:
            results = parse(body)
        except ParseError:
            self.raise_if_blocked(body, url)
            raise
        if not results:
            self.raise_if_blocked(body, url)
        return results

    async def get_text(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        check_block: bool = True,
    ) -> str:
        """GET a page body. With check_block the body is scanned for anti-bot signatures."""
        response = await self.retry_policy.run(
            lambda: self._send("GET", url, params=params, check_block=check_block),
            label=self.provider_name,
        )
        return response.text

    async def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET a JSON document. Result text inside JSON is not block-checked."""
        response = await self.retry_policy.run(
            lambda: self._send("GET", url, params=params, check_block=False),
            label=self.provider_name,
        )
        return self._decode_json(response, url)

    async def post_json(self, url: str, payload: Any) -> Any:
        response = await self.retry_policy.run(
            lambda: self._send("POST", url, json=payload, check_block=False),
            label=self.provider_name,
        )
        return self._decode_json(response, url)

    def _decode_json(self, response: httpx.Response, url: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            self.raise_if_blocked(response.text, url)
            raise ParseError(f"Invalid JSON from {url}", self.provider_name) from e


def truncate_at_sentence(text: str, max_chars: int) -> str:
    """Cut `text` to at most `max_chars`, preferring a sentence boundary."""
    if len(text) <= max_chars:
        return text

    window = text[:max_chars]
    boundary = -1
    for match in _SENTENCE_END.finditer(window):
        boundary = match.end()
    paragraph = window.rfind("\n\n")
    boundary = max(boundary, paragraph)

    # Only honor boundaries in the second half, otherwise too much is lost
    if boundary > max_chars // 2:
        return window[:boundary].rstrip()
    return window[:max(0, max_chars - 3)].rstrip() + "..."


def extract_page_text(html: str, max_chars: int = DEFAULT_MAX_CONTENT_CHARS) -> str:
    """
    Readable text of an HTML page.

    Boilerplate regions are removed, the main content container is preferred
    over the whole body, whitespace is collapsed while paragraph breaks are
    kept, and the result is truncated at a sentence boundary.
    """
    if not html:
        return ""

    soup = BeautifulSoup(html, "html.parser")
    for element in soup.select(", ".join(STRIP_SELECTORS)):
        element.decompose()

    container = None
    for selector in CONTENT_SELECTORS:
        candidate = soup.select_one(selector)
        if candidate is not None and candidate.get_text(strip=True):
            container = candidate
            break
    if container is None:
        container = soup.body or soup

    lines = (
        _INLINE_WHITESPACE.sub(" ", line).strip()
        for line in container.get_text("\n").splitlines()
    )
    text = "\n\n".join(line for line in lines if line)
    return truncate_at_sentence(text, max_chars)
