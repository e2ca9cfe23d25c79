"""
Application Settings using Pydantic Settings
"""

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Editor core settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PAGESTUDIO_",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    APP_NAME: str = Field(default="PageStudio")
    APP_VERSION: str = Field(default="0.1.0")
    DEBUG: bool = Field(default=False)
    ENVIRONMENT: str = Field(default="production")

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")

    # Identifiers
    ID_RANDOM_BYTES: int = Field(default=8, ge=4, le=32)
    ID_DEFAULT_PREFIX: str = Field(default="comp")

    # Undo / redo history
    HISTORY_LIMIT: int = Field(default=50, ge=1)
    HISTORY_COALESCE_WINDOW_MS: int = Field(default=500, ge=0)

    # Document
    VALIDATE_INVARIANTS: bool = Field(default=True)
    DEFAULT_BREAKPOINT: str = Field(default="desktop")

    # Plugin modules
    MODULE_IMPORT_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)
    MODULE_PACKAGE_PREFIX: str = Field(default="pagestudio_modules")
    MODULE_DISCOVERY_PATHS: List[str] = Field(default_factory=list)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
