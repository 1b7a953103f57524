"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    dify_api_key: SecretStr = Field(
        ...,
        validation_alias=AliasChoices("DIFY_API_KEY", "API_KEY", "dify_api_key"),
    )
    dify_api_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://api.dify.ai/v1"),
        validation_alias=AliasChoices("DIFY_API_URL", "dify_api_url"),
    )
    # Workflow apps return a dict of outputs; pick one key instead of the whole dict
    output_variable: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("OUTPUT_VARIABLE", "output_variable"),
    )
    dify_user: str = Field(
        default="apiuser",
        min_length=1,
        validation_alias=AliasChoices("DIFY_USER", "dify_user"),
    )
    default_model: str = Field(
        default="dify",
        validation_alias=AliasChoices("DEFAULT_MODEL", "default_model"),
    )
    request_timeout: float = Field(
        default=120.0,
        validation_alias=AliasChoices("DIFY_TIMEOUT", "request_timeout"),
        ge=1,
    )
    host: str = Field(
        default="0.0.0.0",
        validation_alias=AliasChoices("HOST", "host"),
    )
    port: int = Field(
        default=3099,
        ge=1,
        le=65535,
        validation_alias=AliasChoices("PORT", "port"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["Settings", "get_settings"]
