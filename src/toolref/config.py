"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files.
Validates size limits and cleanup intervals and provides typed access to settings.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Size and storage limits:
        CONTENT_SIZE_THRESHOLD_BYTES: Content larger than this is stored as a reference
        MAX_REFERENCES: Maximum number of stored references before eviction
        MAX_TOTAL_STORAGE_BYTES: Maximum bytes held by the store before cleanup

    Lifetimes:
        CONTENT_MAX_AGE_SECONDS: Default lifetime of stored content
        RECENT_MAX_AGE_SECONDS: Lifetime of content produced by MCP tools
        USER_CONTENT_MAX_AGE_SECONDS: Lifetime of user uploads
        AGENT_GENERATED_MAX_AGE_SECONDS: Lifetime of agent-generated content
        CONTEXT_MAX_AGE_SECONDS: Idle age after which conversation references are dropped

    Background cleanup:
        ENABLE_AUTO_CLEANUP: Run the recurring cleanup task
        CLEANUP_INTERVAL_SECONDS: Seconds between cleanup passes

    Logging:
        LOG_LEVEL: Logging level
        LOG_FILE: Optional JSON-lines log file
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Size and storage limits
    CONTENT_SIZE_THRESHOLD_BYTES: int = Field(
        default=10 * 1024,
        description="Content above this many bytes is replaced by a reference",
    )
    MAX_REFERENCES: int = Field(
        default=100, ge=1, description="Maximum number of stored references"
    )
    MAX_TOTAL_STORAGE_BYTES: int = Field(
        default=100 * 1024 * 1024,
        ge=1,
        description="Maximum total bytes held by the content store",
    )
    PREVIEW_MAX_LENGTH: int = Field(
        default=200, ge=10, le=2000, description="Maximum length of reference previews"
    )

    # Lifetimes
    CONTENT_MAX_AGE_SECONDS: float = Field(
        default=3600.0, gt=0.0, description="Default lifetime of stored content"
    )
    RECENT_MAX_AGE_SECONDS: float = Field(
        default=1800.0, gt=0.0, description="Lifetime of MCP tool content"
    )
    USER_CONTENT_MAX_AGE_SECONDS: float = Field(
        default=7200.0, gt=0.0, description="Lifetime of user uploaded content"
    )
    AGENT_GENERATED_MAX_AGE_SECONDS: float = Field(
        default=3600.0, gt=0.0, description="Lifetime of agent generated content"
    )
    CONTEXT_MAX_AGE_SECONDS: float = Field(
        default=1800.0,
        gt=0.0,
        description="Idle age after which conversation references are cleaned up",
    )

    # Background cleanup
    ENABLE_AUTO_CLEANUP: bool = Field(
        default=False, description="Run the recurring background cleanup task"
    )
    CLEANUP_INTERVAL_SECONDS: float = Field(
        default=300.0, description="Seconds between background cleanup passes"
    )

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    LOG_FILE: Path | None = Field(default=None, description="Optional JSON log file")

    @property
    def size_threshold_bytes(self) -> int:
        """Get size threshold (lowercase alias)."""
        return self.CONTENT_SIZE_THRESHOLD_BYTES

    @property
    def context_max_age_ms(self) -> int:
        """Get the conversation reference idle age in milliseconds."""
        return int(self.CONTEXT_MAX_AGE_SECONDS * 1000)

    @field_validator("CONTENT_SIZE_THRESHOLD_BYTES")
    @classmethod
    def validate_size_threshold(cls, v: int) -> int:
        """Validate that the size threshold is positive."""
        if v <= 0:
            raise ValueError("CONTENT_SIZE_THRESHOLD_BYTES must be greater than 0")
        return v

    @field_validator("CLEANUP_INTERVAL_SECONDS")
    @classmethod
    def validate_cleanup_interval(cls, v: float) -> float:
        """Validate that the cleanup interval is positive."""
        if v <= 0:
            raise ValueError("CLEANUP_INTERVAL_SECONDS must be greater than 0")
        return v

    @model_validator(mode="after")
    def validate_storage_limit_fits_threshold(self) -> Settings:
        """Ensure the store can hold at least one item above the threshold."""
        if self.MAX_TOTAL_STORAGE_BYTES < self.CONTENT_SIZE_THRESHOLD_BYTES:
            raise ValueError(
                "MAX_TOTAL_STORAGE_BYTES must be at least CONTENT_SIZE_THRESHOLD_BYTES"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
