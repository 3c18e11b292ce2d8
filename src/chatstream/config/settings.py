"""Settings and configuration management."""

import logging
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_DEFAULT_DATABASE_URL = "sqlite:///chatstream.db"


class Settings(BaseSettings):
    """Application settings.

    Values come from ``CHATSTREAM_*`` environment variables or a ``.env``
    file. Provider secrets are never configured here; they travel with each
    request as part of the selected credential.
    """

    model_config = SettingsConfigDict(
        env_prefix="CHATSTREAM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application Settings
    app_name: str = Field("chatstream", description="Application name")
    debug: bool = Field(False, description="Debug mode")
    log_level: str = Field("INFO", description="Logging level")
    log_format: str = Field("text", description="Log format: 'text' or 'json'")
    sanitize_logs: bool = Field(True, description="Sanitize API keys from logs")

    # Persistent store
    database_url: str = Field(
        default=_DEFAULT_DATABASE_URL,
        description="Store URL (sqlite:///path.db or sqlite:///:memory:)",
    )

    # Provider dispatch
    openai_model: str = Field("gpt-3.5-turbo", description="OpenAI chat model")
    anthropic_model: str = Field(
        "claude-3-5-sonnet-latest", description="Anthropic chat model"
    )
    max_tokens: int = Field(4096, ge=1, description="Completion token limit")
    request_timeout: float = Field(
        30.0, gt=0, description="Upstream request timeout in seconds"
    )
    provider_max_retries: int = Field(
        0,
        ge=0,
        description="Retries the provider SDKs may perform (0 = single pass-through)",
    )

    # Dispatcher server
    host: str = Field("127.0.0.1", description="Dispatcher bind address")
    port: int = Field(8000, ge=1, le=65535, description="Dispatcher port")
    cors_origins: list[str] = Field(
        default_factory=lambda: ["*"], description="Allowed browser origins"
    )
    dispatcher_url: Optional[str] = Field(
        None,
        description="Remote dispatcher base URL for the CLI (None = in-process)",
    )

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("text", "json"):
            raise ValueError("log_format must be 'text' or 'json'")
        return value

    @property
    def uses_default_database(self) -> bool:
        """Check if the store URL is still the relative default."""
        return self.database_url == _DEFAULT_DATABASE_URL


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
