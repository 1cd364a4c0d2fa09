"""
websearch Configuration Module
Manages settings and logging for the search orchestration engine
"""

from .settings import settings, get_settings, WebSearchSettings
from .logging_config import setup_logging

__all__ = ["settings", "get_settings", "WebSearchSettings", "setup_logging"]
