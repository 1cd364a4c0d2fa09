"""
Centralized User-Agent and Request Identity Configuration

Search engines answer scripted clients with CAPTCHA or "unusual traffic"
pages. Providers therefore present a browser-like identity that rotates on
every request. A body is checked for anti-bot signatures only when it
cannot be used as an answer.

Both pieces are plain objects composed into ProviderHttpClient, so any
provider (or the page fetcher) gets the same behavior without inheritance.
"""

import itertools
import random
import threading
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple

# Browser identities used in rotation
DEFAULT_USER_AGENTS: Tuple[str, ...] = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1.2 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (X11; Ubuntu; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Edge/120.0.0.0 Safari/537.36",
)

ACCEPT_LANGUAGE_PT = "pt-BR,pt;q=0.9,en;q=0.8"
ACCEPT_LANGUAGE_EN = "en-US,en;q=0.9"

# Sent with every request, User-Agent is added per call
BASE_HEADERS: Dict[str, str] = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Encoding": "gzip, deflate",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "DNT": "1",
}

# Lowercase markers of CAPTCHA / anti-bot interstitials
BLOCK_SIGNATURES: Tuple[str, ...] = (
    "captcha",
    "detected unusual traffic",
    "automated access",
    "are you a robot",
    "unusual activity",
    "access denied",
    "anomaly-modal",
)


class HeaderRotator:
    """
    Produces request headers with a rotating User-Agent.

    Rotation is round-robin from a random starting point so concurrent
    providers don't all open with the same identity.
    """

    def __init__(
        self,
        user_agents: Sequence[str] = DEFAULT_USER_AGENTS,
        accept_language: str = ACCEPT_LANGUAGE_PT,
        extra_headers: Optional[Mapping[str, str]] = None,
    ):
        if not user_agents:
            raise ValueError("HeaderRotator needs at least one user agent")
        self.user_agents = tuple(user_agents)
        self.accept_language = accept_language
        self.extra_headers = dict(extra_headers or {})
        start = random.randrange(len(self.user_agents))
        self._cycle = itertools.islice(itertools.cycle(self.user_agents), start, None)
        self._lock = threading.Lock()

    def next_user_agent(self) -> str:
        with self._lock:
            return next(self._cycle)

    def next_headers(self) -> Dict[str, str]:
        """Headers for one request."""
        headers = dict(BASE_HEADERS)
        headers["User-Agent"] = self.next_user_agent()
        headers["Accept-Language"] = self.accept_language
        headers.update(self.extra_headers)
        return headers


class BlockDetector:
    """Finds anti-bot signatures in a response body."""

    def __init__(self, signatures: Iterable[str] = BLOCK_SIGNATURES):
        self.signatures = tuple(s.lower() for s in signatures)

    def detect(self, body: str) -> Optional[str]:
        """Return the first matching signature, or None for a clean page."""
        if not body:
            return None
        lowered = body.lower()
        for signature in self.signatures:
            if signature in lowered:
                return signature
        return None
