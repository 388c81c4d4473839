"""
Configuration management for the Corrector system.

Uses Pydantic Settings for type-safe configuration loading from environment variables.
All configuration is validated at startup to fail fast on misconfiguration.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from corrector.models import Role


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings are validated at startup. Missing required fields
    will raise clear validation errors.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Grading Oracle Configuration
    # ==========================================================================
    oracle_api_key: str = Field(
        ...,
        description="API key for the OpenAI-compatible grading endpoint",
        min_length=10,
    )

    oracle_base_url: str = Field(
        default="https://zenmux.ai/api/v1",
        description="Base URL for the grading endpoint",
    )

    oracle_model: str = Field(
        default="google/gemini-2.5-flash",
        description="Vision-capable model used for grading",
    )

    grading_temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Temperature for grading and re-evaluation calls",
    )

    summary_temperature: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Temperature for summary regeneration calls",
    )

    oracle_max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries on rate limits, connection errors and 5xx responses",
    )

    oracle_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Per-request timeout enforced by the HTTP client",
    )

    feedback_language: str = Field(
        default="Brazilian Portuguese",
        description="Language used for feedback and summaries",
    )

    # ==========================================================================
    # Session Engine Configuration
    # ==========================================================================
    summary_debounce_ms: int = Field(
        default=2000,
        ge=0,
        description="Quiet period after the last qualifying edit before the summary refreshes",
    )

    strict_edits: bool = Field(
        default=True,
        description="Raise on invalid item indexes and unknown fields instead of ignoring them",
    )

    # ==========================================================================
    # Exam File Configuration
    # ==========================================================================
    max_file_size_mb: float = Field(
        default=10.0,
        ge=0.1,
        le=100.0,
        description="Maximum allowed exam file size in megabytes",
    )

    supported_extensions: tuple[str, ...] = Field(
        default=(".png", ".jpg", ".jpeg", ".webp", ".gif", ".pdf"),
        description="Supported exam file extensions",
    )

    # ==========================================================================
    # Principal Configuration (CLI)
    # ==========================================================================
    principal_id: str = Field(default="local-user")
    principal_name: str = Field(default="Local User")
    principal_role: Role = Field(default=Role.STANDARD)
    initial_quota: int = Field(default=5, ge=0)

    # ==========================================================================
    # Output Configuration
    # ==========================================================================
    output_directory: Path = Field(
        default=Path("./output"),
        description="Directory for exported reports",
    )

    log_level: str = Field(default="INFO")

    @field_validator("oracle_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Ensure base URL doesn't have trailing slash."""
        return v.rstrip("/")

    @field_validator("supported_extensions")
    @classmethod
    def normalize_extensions(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in v)

    @field_validator("output_directory")
    @classmethod
    def validate_output_directory(cls, v: Path) -> Path:
        """Ensure output directory exists or can be created."""
        v.mkdir(parents=True, exist_ok=True)
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def summary_debounce_seconds(self) -> float:
        return self.summary_debounce_ms / 1000


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to ensure settings are only loaded once.
    """
    return Settings()
