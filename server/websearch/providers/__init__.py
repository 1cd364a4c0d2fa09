"""Search providers"""

from .base import ProviderMetrics, ProviderMetricsRecorder, SearchProvider
from .bing import BingProvider
from .duckduckgo import DuckDuckGoProvider
from .searxng import SearXNGProvider
from .semantic import SemanticSearchProvider

__all__ = [
    "SearchProvider",
    "ProviderMetrics",
    "ProviderMetricsRecorder",
    "DuckDuckGoProvider",
    "BingProvider",
    "SearXNGProvider",
    "SemanticSearchProvider",
]
