"""Configuration management for the spreadsheet workflow service.

This module provides centralized configuration using pydantic-settings.
All configuration options can be set via environment variables with the
SWF_ prefix, or via a .env file in the project root.

Environment Variables:
    SWF_OPENAI_API_KEY: OpenAI API key (required for LLM features)
    SWF_OPENAI_MODEL: Default completion model (default: gpt-4o-mini)
    SWF_AGGREGATION_MODEL: Model used for sheet aggregation (default: gpt-4o)
    SWF_OPENAI_TEMPERATURE: LLM temperature setting (default: 0.0)
    SWF_OPENAI_MAX_TOKENS: Maximum tokens for LLM responses (default: 2048)
    SWF_CACHE_DIR: Directory for cached completions (default: .cache)
    SWF_STORAGE_DIR: Directory for the persisted spreadsheet state
    SWF_STORAGE_KEY: Key of the persisted spreadsheet blob
    SWF_SHEET_WINDOW_SIZE: Visible sub-sheets in a 3D stack (default: 3)
    SWF_RUN_ALL_SETTLE_SECONDS: Pause between steps in run-all (default: 0)
    SWF_COLLABORATOR_BASE_URL: Base URL used by the HTTP collaborator client
    SWF_COLLABORATOR_TIMEOUT_SECONDS: HTTP collaborator timeout (default: 60)
    SWF_LOG_LEVEL: Logging level (default: INFO)
    SWF_DEBUG: Enable debug mode (default: false)
    SWF_CORS_ORIGINS: Comma-separated CORS origins (default: *)
    SWF_SERVER_HOST: Server bind host (default: 0.0.0.0)
    SWF_SERVER_PORT: Server bind port (default: 8000)
"""

import logging
from typing import Any

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Example .env file:
        SWF_OPENAI_API_KEY=sk-...
        SWF_LOG_LEVEL=DEBUG
        SWF_SHEET_WINDOW_SIZE=5
    """

    model_config = SettingsConfigDict(
        env_prefix="SWF_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # =========================================================================
    # OpenAI / LLM Settings
    # =========================================================================

    openai_api_key: SecretStr = SecretStr("")
    """OpenAI API key. Required for every LLM-backed collaborator."""

    openai_model: str = "gpt-4o-mini"
    """Default model for find, run-cells and LLM-pipe completions."""

    aggregation_model: str = "gpt-4o"
    """Model used to aggregate a sub-sheet into one row."""

    openai_temperature: float = 0.0
    """Temperature for LLM sampling."""

    openai_max_tokens: int = 2048
    """Maximum tokens for LLM response generation."""

    cache_dir: str = ".cache"
    """Directory holding one JSON file per cached completion."""

    # =========================================================================
    # Storage Settings
    # =========================================================================

    storage_dir: str = ".storage"
    """Directory for the JSON-file state store."""

    storage_key: str = "spreadsheet_state"
    """Fixed key under which the spreadsheet blob is persisted."""

    # =========================================================================
    # Workflow Settings
    # =========================================================================

    sheet_window_size: int = 3
    """Number of sub-sheets visible at once in a 3D stack."""

    run_all_settle_seconds: float = 0.0
    """Optional pause between steps when running the whole workflow."""

    collaborator_base_url: str = "http://localhost:8000"
    """Base URL of the API used by the HTTP collaborator client."""

    collaborator_timeout_seconds: float = 60.0
    """Timeout for one HTTP collaborator request."""

    # =========================================================================
    # Logging Settings
    # =========================================================================

    log_level: str = "INFO"
    """Logging level: DEBUG, INFO, WARNING, ERROR, or CRITICAL."""

    debug: bool = False
    """Enable debug mode with additional error details."""

    # =========================================================================
    # Server Settings
    # =========================================================================

    cors_origins: str = "*"
    """Comma-separated list of allowed CORS origins, or * for all."""

    server_host: str = "0.0.0.0"
    """Host address for the server to bind to."""

    server_port: int = 8000
    """Port for the server to listen on."""

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid Python logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(valid_levels)}"
            )
        return upper_v

    @field_validator("sheet_window_size")
    @classmethod
    def validate_window_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"sheet_window_size must be at least 1, got {v}")
        return v

    @field_validator("run_all_settle_seconds", "collaborator_timeout_seconds")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"Duration must not be negative, got {v}")
        return v

    @field_validator("openai_temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        if not 0.0 <= v <= 2.0:
            raise ValueError(f"openai_temperature must be between 0.0 and 2.0, got {v}")
        return v

    @field_validator("server_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError(f"server_port must be between 1 and 65535, got {v}")
        return v

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def log_level_int(self) -> int:
        """Get log level as integer for logging module."""
        level: int = getattr(logging, self.log_level)
        return level

    def get_openai_api_key(self) -> str:
        """Get the OpenAI API key value, or "" when unset.

        Direct access to ``openai_api_key`` returns a SecretStr which keeps
        the key out of logs.
        """
        return self.openai_api_key.get_secret_value()

    def to_safe_dict(self) -> dict[str, Any]:
        """Convert settings to a dictionary with the API key masked."""
        return {
            "openai_api_key": "***" if self.get_openai_api_key() else "(not set)",
            "openai_model": self.openai_model,
            "aggregation_model": self.aggregation_model,
            "openai_temperature": self.openai_temperature,
            "openai_max_tokens": self.openai_max_tokens,
            "cache_dir": self.cache_dir,
            "storage_dir": self.storage_dir,
            "storage_key": self.storage_key,
            "sheet_window_size": self.sheet_window_size,
            "run_all_settle_seconds": self.run_all_settle_seconds,
            "collaborator_base_url": self.collaborator_base_url,
            "collaborator_timeout_seconds": self.collaborator_timeout_seconds,
            "log_level": self.log_level,
            "debug": self.debug,
            "cors_origins": self.cors_origins,
            "server_host": self.server_host,
            "server_port": self.server_port,
        }


def validate_settings_on_startup(s: Settings) -> None:
    """Log configuration warnings and a summary on application startup.

    Args:
        s: Settings instance to validate.
    """
    logger = logging.getLogger(__name__)

    if not s.get_openai_api_key():
        logger.warning(
            "OPENAI_API_KEY is not configured. LLM-backed collaborators will fail. "
            "Set SWF_OPENAI_API_KEY environment variable."
        )

    if s.cors_origins == "*" and not s.debug:
        logger.warning(
            "CORS is configured to allow all origins (*). "
            "Consider restricting this in production."
        )

    logger.info(
        f"Configuration loaded: log_level={s.log_level}, debug={s.debug}, "
        f"model={s.openai_model}, cache_dir={s.cache_dir}"
    )


settings = Settings()
