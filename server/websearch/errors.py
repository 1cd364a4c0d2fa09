"""
Error taxonomy for the websearch engine.

Network and parse failures are recovered by the strategy manager's fallback
loop. Breaker-open and rate-limited errors mark a provider as ineligible for
the current attempt. A quality-gate decline is not an error at all: it is a
normal return value of WebSearchService.search_intelligently.
"""

from typing import List, Optional


class WebSearchError(Exception):
    """Base exception for websearch errors."""

    def __init__(self, message: str, provider: Optional[str] = None):
        self.provider = provider
        super().__init__(message)


class NetworkError(WebSearchError):
    """Connection failure, timeout or HTTP error status."""

    def __init__(self, message: str, provider: Optional[str] = None, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message, provider)


class BlockDetectedError(WebSearchError):
    """The upstream answered with a CAPTCHA or anti-bot page."""

    def __init__(self, message: str, provider: Optional[str] = None, signature: str = ""):
        self.signature = signature
        super().__init__(message, provider)


class ParseError(WebSearchError):
    """Every selector strategy failed to extract results."""
    pass


class CircuitOpenError(WebSearchError):
    """Raised when a circuit is open and the call is rejected."""

    def __init__(self, name: str, retry_after: float):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit '{name}' is OPEN. Retry after {retry_after:.1f}s", name)


class RateLimitedError(WebSearchError):
    """Admission denied by a provider's rate limiter."""

    def __init__(self, name: str, retry_after: float = 0.0):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Rate limit reached for '{name}'. Retry after {retry_after:.2f}s", name)


class NoProviderAvailableError(WebSearchError):
    """No eligible provider could serve the query."""

    def __init__(self, message: str = "No search provider available", tried: Optional[List[str]] = None):
        self.tried = tried or []
        super().__init__(message)
