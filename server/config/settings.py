"""
websearch Settings Configuration
Environment-driven configuration for the search orchestration engine
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class WebSearchSettings(BaseSettings):
    """Configuration settings for the websearch engine"""

    # Logging
    log_level: str = "INFO"
    log_path: str = "./logs"
    log_to_file: bool = False
    structured_logging: bool = False

    # HTTP / retry
    http_timeout: float = 15.0
    max_retries: int = 2
    retry_base_delay: float = 0.5
    retry_max_delay: float = 8.0
    retry_jitter_factor: float = 0.25

    # Rate limiting (per provider)
    rate_limit_max_requests: int = 100
    rate_limit_window_seconds: float = 60.0
    rate_limit_initial_tokens: int = 10
    rate_limit_refill_rate: float = 1.0

    # Circuit breakers (per provider)
    breaker_failure_threshold: int = 3
    breaker_reset_timeout: float = 30.0
    breaker_success_threshold: int = 2

    # Smart cache
    cache_max_size_mb: float = 50.0
    cache_default_ttl_minutes: float = 60.0
    cache_cleanup_interval_minutes: float = 15.0

    # Strategy manager
    max_fallback_attempts: int = 3
    max_timeout_seconds: float = 30.0
    min_success_rate: float = 0.3
    enable_result_cache: bool = True

    # Decision gating
    decision_strategy: str = "balanced"
    min_confidence_threshold: float = 0.6
    max_search_attempts: int = 3
    max_results_per_attempt: int = 10
    preferred_domains: List[str] = []
    blocked_domains: List[str] = []

    # Providers
    searxng_url: Optional[str] = None
    enable_bing: bool = True
    enable_semantic_provider: bool = False
    embedding_url: str = "http://localhost:11434"
    embedding_model: str = "nomic-embed-text"
    embedding_timeout: float = 30.0

    # Page content
    fetch_content_for_top: int = 0
    max_content_chars: int = 5000

    @field_validator("decision_strategy")
    @classmethod
    def validate_strategy(cls, v: str) -> str:
        """Only the four known strategies are accepted"""
        allowed = {"conservative", "balanced", "aggressive", "adaptive"}
        v = v.lower()
        if v not in allowed:
            raise ValueError(f"decision_strategy must be one of {sorted(allowed)}")
        return v

    @field_validator("min_confidence_threshold", "min_success_rate")
    @classmethod
    def validate_unit_interval(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("value must be within [0, 1]")
        return v

    model_config = {
        "env_file": ".env",
        "env_prefix": "WEBSEARCH_",
        "case_sensitive": False,
        "extra": "ignore",
    }


settings = WebSearchSettings()


@lru_cache()
def get_settings() -> WebSearchSettings:
    """Get application settings"""
    return settings
