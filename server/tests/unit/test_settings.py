"""
Unit Tests for settings and logging configuration
"""

import pytest
from pydantic import ValidationError

from config.logging_config import build_logging_config
from config.settings import WebSearchSettings


class TestSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self):
        """Defaults match the documented engine behavior."""
        s = WebSearchSettings(_env_file=None)
        assert s.decision_strategy == "balanced"
        assert s.breaker_failure_threshold == 3
        assert s.searxng_url is None

    def test_unknown_variables_ignored(self, monkeypatch):
        """Variables with no matching setting are ignored rather than kept."""
        monkeypatch.setenv("WEBSEARCH_ENVIRONMENT", "production")
        s = WebSearchSettings(_env_file=None)
        assert "environment" not in WebSearchSettings.model_fields
        assert not hasattr(s, "environment")

    def test_env_prefix(self, monkeypatch):
        """WEBSEARCH_* variables override defaults."""
        monkeypatch.setenv("WEBSEARCH_DECISION_STRATEGY", "Adaptive")
        monkeypatch.setenv("WEBSEARCH_MAX_SEARCH_ATTEMPTS", "5")
        monkeypatch.setenv("WEBSEARCH_BLOCKED_DOMAINS", '["pinterest.com"]')
        s = WebSearchSettings(_env_file=None)
        assert s.decision_strategy == "adaptive"
        assert s.max_search_attempts == 5
        assert s.blocked_domains == ["pinterest.com"]

    @pytest.mark.parametrize("field,value", [
        ("decision_strategy", "reckless"),
        ("min_confidence_threshold", 1.5),
        ("min_success_rate", -0.1),
    ])
    def test_validation(self, field, value):
        """Unknown strategies and out-of-range ratios are rejected."""
        with pytest.raises(ValidationError):
            WebSearchSettings(_env_file=None, **{field: value})


class TestLoggingConfig:
    """Tests for the dictConfig builder."""

    def test_console_only_by_default(self):
        """Without file logging only the console handler is used."""
        config = build_logging_config(WebSearchSettings(_env_file=None))
        assert config["loggers"]["websearch"]["handlers"] == ["console"]
        assert config["handlers"]["console"]["formatter"] == "standard"

    def test_structured_file_logging(self, tmp_path):
        """File logging adds rotating handlers and JSON records when structured."""
        settings = WebSearchSettings(
            _env_file=None,
            log_to_file=True,
            structured_logging=True,
            log_path=str(tmp_path / "logs"),
        )
        config = build_logging_config(settings)
        assert config["loggers"]["websearch"]["handlers"] == ["console", "file", "error_file"]
        assert config["handlers"]["file"]["formatter"] == "json"
        assert config["handlers"]["console"]["formatter"] == "json"
        assert (tmp_path / "logs").is_dir()
