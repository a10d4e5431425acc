"""
Tests for configuration management in `handoff_patterns/config.py`.

Covers:
- Environment parsing and debug defaults
- Logging level coercion to the expected Literal
- Allowed origins and database URL parsing
- Missing credentials surfacing as ConfigurationError
- get_extraction_model_config mapping
- get_config cache behavior
- AppConfig validation (debug only allowed in development)
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from handoff_patterns.config import (
    AIProviderConfig,
    AppConfig,
    AuthConfig,
    CorrelationConfig,
    get_config,
    get_extraction_model_config,
    load_config_from_env,
)
from handoff_patterns.errors import ConfigurationError

JWT_SECRET = "x" * 32
SERVICE_TOKEN = "s" * 24


@pytest.fixture(autouse=True)
def clear_config_cache() -> Iterator[None]:
    """Ensure get_config cache is cleared before and after each test."""
    get_config.cache_clear()
    yield
    get_config.cache_clear()


def _set_minimal_valid_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set the minimal environment required for config to validate."""
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-openai")
    monkeypatch.setenv("AUTH_JWT_SECRET", JWT_SECRET)
    monkeypatch.setenv("AUTH_SERVICE_TOKEN", SERVICE_TOKEN)


def test_load_config_dev_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    _set_minimal_valid_env(monkeypatch)
    monkeypatch.setenv("ENVIRONMENT", "development")
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.delenv("PATTERN_RANGE_DAYS", raising=False)

    config = load_config_from_env()

    assert config.environment == "development"
    assert config.debug is True
    assert config.logging.format == "console"
    assert config.detection.default_range_days == 30
    assert config.detection.detect_absence is True
    assert config.ai_provider.timeout_seconds == 30.0
    assert config.ai_provider.max_retries == 3


def test_production_uses_json_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    _set_minimal_valid_env(monkeypatch)
    monkeypatch.setenv("ENVIRONMENT", "prod")

    config = load_config_from_env()

    assert config.environment == "production"
    assert config.debug is False
    assert config.logging.format == "json"


def test_allowed_origins_parsing(monkeypatch: pytest.MonkeyPatch) -> None:
    _set_minimal_valid_env(monkeypatch)
    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.setenv("API_ALLOWED_ORIGINS", "http://a.example,http://b.example")

    config = load_config_from_env()

    assert config.api.allowed_origins == ["http://a.example", "http://b.example"]


def test_postgres_url_is_normalized(monkeypatch: pytest.MonkeyPatch) -> None:
    _set_minimal_valid_env(monkeypatch)
    monkeypatch.setenv("DATABASE_URL", "postgres://user:pw@db/app")

    config = load_config_from_env()

    assert config.database.url == "postgresql://user:pw@db/app"


def test_logging_level_literal_coercion(monkeypatch: pytest.MonkeyPatch) -> None:
    _set_minimal_valid_env(monkeypatch)
    monkeypatch.setenv("ENVIRONMENT", "staging")

    # Unknown level should coerce to INFO
    monkeypatch.setenv("LOG_LEVEL", "unknown")
    config = load_config_from_env()
    assert config.logging.level == "INFO"

    # Known level should pass through
    monkeypatch.setenv("LOG_LEVEL", "error")
    config = load_config_from_env()
    assert config.logging.level == "ERROR"


def test_absence_toggle_parsing(monkeypatch: pytest.MonkeyPatch) -> None:
    _set_minimal_valid_env(monkeypatch)
    monkeypatch.setenv("PATTERN_DETECT_ABSENCE", "off")

    config = load_config_from_env()

    assert config.detection.detect_absence is False


@pytest.mark.parametrize("missing", ["OPENAI_API_KEY", "AUTH_JWT_SECRET", "AUTH_SERVICE_TOKEN"])
def test_missing_credentials_raise_configuration_error(
    monkeypatch: pytest.MonkeyPatch, missing: str
) -> None:
    _set_minimal_valid_env(monkeypatch)
    monkeypatch.setenv(missing, "")

    with pytest.raises(ConfigurationError) as exc_info:
        load_config_from_env()

    assert exc_info.value.status_code == 500
    # Values must never leak into the message
    assert SERVICE_TOKEN not in exc_info.value.message
    assert JWT_SECRET not in exc_info.value.message


def test_placeholder_api_key_rejected() -> None:
    with pytest.raises(ValueError, match="OPENAI_API_KEY"):
        AIProviderConfig(openai_api_key="your-openai-api-key-here")


def test_strong_threshold_must_fit_window() -> None:
    with pytest.raises(ValueError, match="strong_threshold_days"):
        CorrelationConfig(window_days=3, strong_threshold_days=5)


def test_get_extraction_model_config_maps_values(monkeypatch: pytest.MonkeyPatch) -> None:
    _set_minimal_valid_env(monkeypatch)
    monkeypatch.setenv("LLM_EXTRACTION_MODEL", "openai:gpt-4o")
    monkeypatch.setenv("LLM_TIMEOUT_SECONDS", "12.5")

    cfg = load_config_from_env()
    mapped = get_extraction_model_config(cfg)

    assert mapped["model_name"] == "openai:gpt-4o"
    assert mapped["timeout_seconds"] == 12.5
    assert mapped["max_attempts"] == cfg.ai_provider.max_retries
    assert mapped["max_tokens"] == cfg.ai_provider.max_tokens
    assert mapped["api_key"] == cfg.ai_provider.openai_api_key
    assert mapped["temperature"] == cfg.ai_provider.temperature


def test_get_config_cache(monkeypatch: pytest.MonkeyPatch) -> None:
    _set_minimal_valid_env(monkeypatch)
    monkeypatch.setenv("ENVIRONMENT", "development")

    # First call populates cache
    c1 = get_config()
    c2 = get_config()
    assert c1 is c2  # same object due to lru_cache


def test_app_config_debug_only_in_dev_validation() -> None:
    ai = AIProviderConfig(openai_api_key="sk-test-openai")
    auth = AuthConfig(jwt_secret=JWT_SECRET, service_token=SERVICE_TOKEN)

    with pytest.raises(ValueError, match="debug mode is only allowed"):
        AppConfig(environment="production", debug=True, ai_provider=ai, auth=auth)
