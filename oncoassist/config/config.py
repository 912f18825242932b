"""
Application configuration with environment-based settings.
All configuration is explicit, validated, and logged at startup.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for development except the LLM
    credential, which must always be supplied explicitly.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
    )

    # Application
    app_name: str = Field(default="Oncology Assist", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")

    # CORS
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins"
    )

    # LLM Provider (any OpenAI-compatible endpoint)
    llm_api_key: str = Field(default="", description="Bearer credential for the inference endpoint")
    llm_base_url: str | None = Field(
        default=None,
        description="Inference endpoint base URL (None uses the SDK default)"
    )
    llm_model: str = Field(default="gpt-4o-mini", description="Model used for structured generation")
    llm_max_tokens: int = Field(default=1024, ge=1, description="Max output tokens per generation")
    llm_temperature: float = Field(default=0.2, ge=0.0, le=2.0, description="Generation temperature")
    llm_timeout_seconds: float = Field(default=60.0, gt=0, description="Per-call inference timeout")

    # Conversational assistant
    chat_model: str | None = Field(
        default=None,
        description="Model for the chat assistant (falls back to llm_model)"
    )
    chat_temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="Chat temperature")
    chat_max_sessions: int = Field(default=1000, ge=1, description="Chat sessions kept in memory")

    # Persistence
    database_url: str = Field(
        default="sqlite:///./oncoassist.db",
        description="SQLAlchemy database URL"
    )
    database_echo: bool = Field(default=False, description="Echo SQL statements")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "console"] = Field(
        default="console",
        description="Log output format"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def llm_configured(self) -> bool:
        """Whether an inference credential has been supplied."""
        return bool(self.llm_api_key)

    def get_safe_config_dict(self) -> dict:
        """Return configuration dict with secrets redacted for logging."""
        config = self.model_dump()
        if config.get("llm_api_key"):
            config["llm_api_key"] = "***REDACTED***"
        return config


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once and cached for the application lifetime.
    Use dependency injection in FastAPI routes for testability.
    """
    return Settings()
