"""
Base classes for content reference storage.

This module provides:
- CleanupPolicy: Lifetime and eviction priority for one content source
- ReferenceStoreConfig: Runtime configuration for a content store
- ContentStoreProtocol: Abstract interface for content store implementations

Store backends support:
- Size-gated storage returning lightweight references
- TTL-based expiration per content source
- Validity checks and resolution by reference id
- Statistics and explicit disposal
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from toolref.exceptions import ConfigurationError
from toolref.types import (
    CleanupResult,
    ContentReference,
    ContentSource,
    ContentType,
    ResolutionResult,
    StoreStats,
)

if TYPE_CHECKING:
    from toolref.config import Settings


@dataclass(frozen=True)
class CleanupPolicy:
    """Lifetime for one content source.

    Lower priority numbers are kept longest when cleanup has to choose.
    """

    max_age_seconds: float
    priority: int


@dataclass(frozen=True)
class ReferenceStoreConfig:
    """Runtime configuration for a ContentStore."""

    size_threshold_bytes: int = 10 * 1024
    max_references: int = 100
    max_total_storage_bytes: int = 100 * 1024 * 1024
    preview_max_length: int = 200
    enable_auto_cleanup: bool = False
    cleanup_interval_seconds: float = 300.0
    policies: dict[ContentSource, CleanupPolicy] = field(
        default_factory=lambda: {
            ContentSource.MCP_TOOL: CleanupPolicy(max_age_seconds=30 * 60, priority=1),
            ContentSource.USER_UPLOAD: CleanupPolicy(max_age_seconds=2 * 60 * 60, priority=2),
            ContentSource.AGENT_GENERATED: CleanupPolicy(max_age_seconds=60 * 60, priority=3),
        }
    )
    default_policy: CleanupPolicy = CleanupPolicy(max_age_seconds=60 * 60, priority=4)

    def __post_init__(self) -> None:
        if self.size_threshold_bytes <= 0:
            raise ConfigurationError(
                "size_threshold_bytes must be greater than 0",
                context={"size_threshold_bytes": self.size_threshold_bytes},
            )
        if self.cleanup_interval_seconds <= 0:
            raise ConfigurationError(
                "cleanup_interval_seconds must be greater than 0",
                context={"cleanup_interval_seconds": self.cleanup_interval_seconds},
            )
        if self.max_total_storage_bytes < self.size_threshold_bytes:
            raise ConfigurationError(
                "max_total_storage_bytes must be at least size_threshold_bytes",
                context={
                    "max_total_storage_bytes": self.max_total_storage_bytes,
                    "size_threshold_bytes": self.size_threshold_bytes,
                },
            )

    def policy_for(self, source: ContentSource) -> CleanupPolicy:
        """Get the cleanup policy that applies to a content source."""
        return self.policies.get(source, self.default_policy)

    def with_changes(self, **changes: Any) -> ReferenceStoreConfig:
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    @classmethod
    def from_settings(cls, settings: Settings) -> ReferenceStoreConfig:
        """Build store configuration from application settings."""
        return cls(
            size_threshold_bytes=settings.CONTENT_SIZE_THRESHOLD_BYTES,
            max_references=settings.MAX_REFERENCES,
            max_total_storage_bytes=settings.MAX_TOTAL_STORAGE_BYTES,
            preview_max_length=settings.PREVIEW_MAX_LENGTH,
            enable_auto_cleanup=settings.ENABLE_AUTO_CLEANUP,
            cleanup_interval_seconds=settings.CLEANUP_INTERVAL_SECONDS,
            policies={
                ContentSource.MCP_TOOL: CleanupPolicy(settings.RECENT_MAX_AGE_SECONDS, 1),
                ContentSource.USER_UPLOAD: CleanupPolicy(
                    settings.USER_CONTENT_MAX_AGE_SECONDS, 2
                ),
                ContentSource.AGENT_GENERATED: CleanupPolicy(
                    settings.AGENT_GENERATED_MAX_AGE_SECONDS, 3
                ),
            },
            default_policy=CleanupPolicy(settings.CONTENT_MAX_AGE_SECONDS, 4),
        )


class ContentStoreProtocol(ABC):
    """Abstract interface for content store implementations."""

    @abstractmethod
    def should_use_reference(self, content: bytes | str) -> bool:
        """Check whether content is large enough to store out of band."""
        ...

    @abstractmethod
    async def store_content_if_large(
        self,
        content: bytes | str,
        *,
        source: ContentSource,
        content_type: ContentType | None = None,
        mime_type: str | None = None,
        mcp_tool_name: str | None = None,
        file_name: str | None = None,
        tags: list[str] | tuple[str, ...] | None = None,
        custom_metadata: dict[str, Any] | None = None,
    ) -> ContentReference | None:
        """Store content if it exceeds the size threshold."""
        ...

    @abstractmethod
    async def resolve_reference(self, reference_id: str) -> ResolutionResult:
        """Resolve a reference to its content."""
        ...

    @abstractmethod
    async def has_reference(self, reference_id: str) -> bool:
        """Check if a reference exists and is still valid."""
        ...

    @abstractmethod
    async def cleanup_reference(self, reference_id: str) -> bool:
        """Remove a single reference."""
        ...

    @abstractmethod
    async def perform_cleanup(self) -> CleanupResult:
        """Remove expired and excess references."""
        ...

    @abstractmethod
    async def get_stats(self) -> StoreStats:
        """Get a snapshot of store statistics."""
        ...

    @abstractmethod
    async def dispose(self) -> None:
        """Release all stored content and background tasks."""
        ...
