"""
Core types for the tool content reference system.

This module defines the data structures shared by the store, the response
processor and the conversation context manager:
- Enums for reference state, content type, content source and resolution errors
- Frozen dataclasses for immutable records (ReferenceMetadata, DisplayResult, ...)
- Mutable dataclasses for tracked state (ContentReference, StoredContent,
  ConversationContextEntry)
- Helper functions for ID generation and timestamps
"""

from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Literal

from uuid6 import uuid7

Clock = Callable[[], datetime]

REFERENCE_FORMAT = "ref://{id}"

_CONTEXT_SUFFIX_ALPHABET = string.ascii_letters + string.digits


def generate_id(prefix: str = "") -> str:
    """Generate a time-ordered unique ID using UUID7.

    Args:
        prefix: Optional prefix for the ID (e.g., "sess")

    Returns:
        A unique ID string, optionally prefixed.
    """
    uid = str(uuid7())
    return f"{prefix}_{uid}" if prefix else uid


def generate_context_id(now: datetime | None = None) -> str:
    """Generate a conversation context ID.

    Format is ``ctx_<epoch-millis>_<8 random alphanumerics>``.
    """
    millis = int(now.timestamp() * 1000) if now else int(time.time() * 1000)
    suffix = "".join(random.choices(_CONTEXT_SUFFIX_ALPHABET, k=8))
    return f"ctx_{millis}_{suffix}"


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


class ReferenceState(str, Enum):
    """Lifecycle state of a content reference."""

    ACTIVE = "active"
    EXPIRED = "expired"
    CLEANUP_PENDING = "cleanup_pending"
    INVALID = "invalid"


class ContentType(str, Enum):
    """Coarse content classification derived from MIME type."""

    TEXT = "text"
    JSON = "json"
    HTML = "html"
    MARKDOWN = "markdown"
    BINARY = "binary"
    UNKNOWN = "unknown"

    @classmethod
    def from_mime_type(cls, mime_type: str | None) -> ContentType:
        """Map a MIME type onto a content type."""
        if not mime_type:
            return cls.TEXT
        if mime_type == "application/json":
            return cls.JSON
        if mime_type == "text/html":
            return cls.HTML
        if mime_type == "text/markdown":
            return cls.MARKDOWN
        if mime_type.startswith("text/"):
            return cls.TEXT
        return cls.BINARY


class ContentSource(str, Enum):
    """Origin of stored content; selects the cleanup policy."""

    MCP_TOOL = "mcp_tool"
    USER_UPLOAD = "user_upload"
    AGENT_GENERATED = "agent_generated"
    SYSTEM = "system"


class ResolutionErrorType(str, Enum):
    """Why a reference could not be resolved."""

    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    CORRUPTED = "corrupted"
    ACCESS_DENIED = "access_denied"
    SYSTEM_ERROR = "system_error"


@dataclass
class ContentMetadata:
    """Full metadata kept alongside stored content."""

    content_type: ContentType
    size_bytes: int
    source: ContentSource
    created_at: datetime
    last_accessed_at: datetime
    mime_type: str | None = None
    mcp_tool_name: str | None = None
    file_name: str | None = None
    access_count: int = 0
    tags: tuple[str, ...] = ()
    custom_metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ReferenceMetadata:
    """The subset of metadata carried on a reference through agent context."""

    content_type: ContentType
    size_bytes: int
    source: ContentSource
    file_name: str | None = None
    mime_type: str | None = None
    tags: tuple[str, ...] = ()

    @classmethod
    def from_content_metadata(cls, metadata: ContentMetadata) -> ReferenceMetadata:
        """Project full stored metadata down to reference metadata."""
        return cls(
            content_type=metadata.content_type,
            size_bytes=metadata.size_bytes,
            source=metadata.source,
            file_name=metadata.file_name,
            mime_type=metadata.mime_type,
            tags=metadata.tags,
        )


@dataclass
class ContentReference:
    """Lightweight token standing in for content too large to inline.

    Only ``state`` changes after creation (active -> expired).
    """

    reference_id: str
    preview: str
    metadata: ReferenceMetadata
    created_at: datetime
    state: ReferenceState = ReferenceState.ACTIVE
    format: str = REFERENCE_FORMAT

    def mark_expired(self) -> None:
        """Transition the reference to the expired state."""
        self.state = ReferenceState.EXPIRED

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "referenceId": self.reference_id,
            "state": self.state.value,
            "preview": self.preview,
            "metadata": {
                "contentType": self.metadata.content_type.value,
                "sizeBytes": self.metadata.size_bytes,
                "source": self.metadata.source.value,
                "fileName": self.metadata.file_name,
                "mimeType": self.metadata.mime_type,
                "tags": list(self.metadata.tags),
            },
            "createdAt": self.created_at.isoformat(),
            "format": self.format,
        }


@dataclass
class StoredContent:
    """Raw payload plus metadata and expiration deadline, owned by the store."""

    content: bytes
    metadata: ContentMetadata
    state: ReferenceState = ReferenceState.ACTIVE
    expires_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        """Check whether the deadline has passed."""
        return self.expires_at is not None and self.expires_at < now


@dataclass
class ConversationContextEntry:
    """A reference tracked within one conversation session."""

    context_id: str
    reference: ContentReference
    added_at_turn: int
    added_at: datetime
    last_accessed_at: datetime
    sequence: int  # insertion order; breaks timestamp ties

    def touch(self, now: datetime) -> None:
        """Refresh the last access time."""
        self.last_accessed_at = now


@dataclass(frozen=True)
class ResolutionResult:
    """Result of resolving a reference to its content."""

    success: bool
    content: bytes | None = None
    metadata: ContentMetadata | None = None
    error: str | None = None
    error_type: ResolutionErrorType | None = None
    suggested_actions: tuple[str, ...] = ()


@dataclass(frozen=True)
class CleanupResult:
    """Outcome of a store cleanup pass."""

    cleaned_up: int
    errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class StoreStats:
    """Snapshot of content store usage."""

    active_references: int
    total_storage_bytes: int
    recently_cleaned_up: int
    total_resolutions: int
    failed_resolutions: int
    average_content_size: float
    storage_utilization: float
    most_accessed_reference_id: str | None
    average_creation_time_ms: float
    average_resolution_time_ms: float
    average_cleanup_time_ms: float


ItemType = Literal["text", "image", "resource"]


@dataclass(frozen=True)
class ContentItemAnalysis:
    """Classification of one content item in a tool response.

    ``payload`` is the string that would be stored; ``path`` is the sequence
    of keys and indexes locating the item inside the response.
    """

    type: ItemType
    mime_type: str
    size_bytes: int
    payload: str = field(repr=False)
    path: tuple[str | int, ...] = ()
    file_name: str | None = None


@dataclass(frozen=True)
class ContentAnalysisResult:
    """Classification of a whole tool response."""

    should_process: bool
    contents: tuple[ContentItemAnalysis, ...]
    total_size: int
    largest_content_size: int
    errors: tuple[str, ...] = ()


@dataclass
class ProcessingResult:
    """Outcome of running a tool response through the processor."""

    content: Any
    was_processed: bool
    reference_created: bool | None = None
    references: list[ContentReference] = field(default_factory=list)
    original_size: int | None = None
    errors: list[str] | None = None

    @property
    def reference_ids(self) -> list[str]:
        """Ids of the references created while processing."""
        return [ref.reference_id for ref in self.references]


DisplayFormat = Literal["card", "inline", "compact"]


@dataclass(frozen=True)
class DisplayOptions:
    """Rendering options for a reference display."""

    format: DisplayFormat = "card"
    max_preview_length: int = 150
    show_metadata: bool = True
    show_size: bool = True
    include_actions: bool = True

    def with_changes(self, **changes: Any) -> DisplayOptions:
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)


@dataclass(frozen=True)
class DisplayResult:
    """Rendered reference plus validity and follow-up hints."""

    display_text: str
    has_valid_reference: bool
    context_id: str | None = None
    suggested_actions: tuple[str, ...] = ()


@dataclass(frozen=True)
class ValidationReport:
    """Outcome of validating tracked references against the store."""

    valid: int
    invalid: int
    removed: tuple[str, ...] = ()


@dataclass(frozen=True)
class ContextStats:
    """Snapshot of conversation reference tracking.

    ``oldest_reference`` and ``most_recent_reference`` are the times the
    first- and last-inserted tracked references were added; None when
    nothing is tracked.
    """

    active_references: int
    conversation_turn: int
    oldest_reference: datetime | None
    most_recent_reference: datetime | None
