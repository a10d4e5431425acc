"""
Configuration management with environment variable support and validation.

Design principles:
- Validation at load time (fail fast, surfaced as ConfigurationError)
- Type safety with Pydantic
- Secure defaults (no API keys or secrets in code)
"""

import os
from functools import lru_cache
from typing import Any, Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from handoff_patterns.errors import ConfigurationError

# Load environment variables from .env file
load_dotenv()


class AIProviderConfig(BaseModel):
    """Extraction model configuration with secure defaults."""

    openai_api_key: str = Field(..., description="OpenAI API key")

    extraction_model: str = Field(
        default="openai:gpt-4o-mini", description="Model used for concern extraction"
    )
    temperature: float = Field(default=0.1, ge=0.0, le=1.0)
    max_tokens: int = Field(default=2000, gt=0)
    timeout_seconds: float = Field(
        default=30.0, gt=0.0, description="Per-call timeout, independent of any request timeout"
    )
    max_retries: int = Field(default=3, ge=1, description="Total attempts per note")

    @field_validator("openai_api_key")
    def validate_api_key(cls, v):
        if not v or v == "your-openai-api-key-here":
            raise ValueError("OPENAI_API_KEY must be set in environment or .env file")
        return v


class DetectionConfig(BaseModel):
    """Pattern detector thresholds."""

    default_range_days: int = Field(default=30, gt=0, le=365)
    frequency_threshold: int = Field(default=3, gt=0)
    trend_change_threshold: float = Field(default=0.30, gt=0.0)
    new_pattern_days: int = Field(default=7, gt=0)
    absence_threshold_days: int = Field(default=14, gt=0)
    absence_min_previous: int = Field(default=5, gt=0)
    detect_absence: bool = Field(
        default=True, description="Split each category by recency and look for ABSENCE"
    )


class CorrelationConfig(BaseModel):
    window_days: int = Field(default=7, gt=0)
    strong_threshold_days: int = Field(default=3, ge=0)

    @model_validator(mode="after")
    def strong_within_window(self) -> "CorrelationConfig":
        if self.strong_threshold_days > self.window_days:
            raise ValueError("strong_threshold_days cannot exceed window_days")
        return self


class DatabaseConfig(BaseModel):
    url: str = Field(default="sqlite:///./handoff_patterns.db", description="Database URL")
    echo: bool = Field(default=False, description="Log SQL statements")
    mention_batch_size: int = Field(default=100, gt=0, le=100)


class AuthConfig(BaseModel):
    """Bearer credential verification."""

    jwt_secret: str = Field(..., description="HS256 secret for end-user tokens")
    service_token: str = Field(..., description="Shared token used by the scheduled trigger")

    @field_validator("jwt_secret")
    def validate_jwt_secret(cls, v):
        if len(v) < 32:
            raise ValueError("AUTH_JWT_SECRET must be at least 32 characters")
        return v

    @field_validator("service_token")
    def validate_service_token(cls, v):
        if len(v) < 24:
            raise ValueError("AUTH_SERVICE_TOKEN must be at least 24 characters")
        return v


class APIConfig(BaseModel):
    """API server configuration."""

    host: str = Field(default="0.0.0.0", description="API server host")
    port: int = Field(default=8000, gt=0, lt=65536, description="API server port")

    allowed_origins: list[str] = Field(
        default_factory=lambda: ["*"], description="Allowed origins for CORS"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    ai_provider: AIProviderConfig
    detection: DetectionConfig = Field(default_factory=DetectionConfig)
    correlation: CorrelationConfig = Field(default_factory=CorrelationConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    auth: AuthConfig
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
    v = val.strip().lower()
    if v in {"dev", "development"}:
        return "development"
    if v in {"stage", "staging"}:
        return "staging"
    return "production"


def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
    v = val.strip().upper()
    return cast(
        Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
    )


def _parse_bool(val: str | None, default: bool) -> bool:
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation.

    Raises ConfigurationError when a required credential is missing or invalid.
    """
    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    database_url = os.getenv("DATABASE_URL", "sqlite:///./handoff_patterns.db")
    # Render/Heroku style URLs are not accepted by SQLAlchemy 2.0
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    try:
        return AppConfig(
            environment=environment,
            debug=debug,
            ai_provider=AIProviderConfig(
                openai_api_key=os.getenv("OPENAI_API_KEY", ""),
                extraction_model=os.getenv("LLM_EXTRACTION_MODEL", "openai:gpt-4o-mini"),
                timeout_seconds=float(os.getenv("LLM_TIMEOUT_SECONDS", "30.0")),
            ),
            detection=DetectionConfig(
                default_range_days=int(os.getenv("PATTERN_RANGE_DAYS", "30")),
                detect_absence=_parse_bool(os.getenv("PATTERN_DETECT_ABSENCE"), True),
            ),
            database=DatabaseConfig(
                url=database_url,
                echo=_parse_bool(os.getenv("DATABASE_ECHO"), False),
            ),
            auth=AuthConfig(
                jwt_secret=os.getenv("AUTH_JWT_SECRET", ""),
                service_token=os.getenv("AUTH_SERVICE_TOKEN", ""),
            ),
            api=APIConfig(
                host=os.getenv("API_HOST", "0.0.0.0"),
                port=int(os.getenv("API_PORT", "8000")),
                allowed_origins=os.getenv("API_ALLOWED_ORIGINS", "*").split(","),
            ),
            logging=LoggingConfig(
                level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
                format="console" if debug else "json",
            ),
        )
    except (ValidationError, ValueError) as e:
        # Only field locations are surfaced; values may be secrets
        fields = sorted(
            {".".join(str(p) for p in err["loc"]) for err in e.errors()}
            if isinstance(e, ValidationError)
            else set()
        )
        detail = f" ({', '.join(fields)})" if fields else ""
        raise ConfigurationError(f"Missing or invalid configuration{detail}") from e


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def get_extraction_model_config(config: AppConfig | None = None) -> dict[str, Any]:
    """Keyword arguments for building a ConcernExtractor from app config."""
    config = config or get_config()
    return {
        "model_name": config.ai_provider.extraction_model,
        "api_key": config.ai_provider.openai_api_key,
        "max_tokens": config.ai_provider.max_tokens,
        "temperature": config.ai_provider.temperature,
        "timeout_seconds": config.ai_provider.timeout_seconds,
        "max_attempts": config.ai_provider.max_retries,
    }
