"""
Custom exception hierarchy for the tool content reference system.

All exceptions inherit from ToolRefError, which provides optional context
for structured error handling and logging.
"""

from __future__ import annotations

from typing import Any


class ToolRefError(Exception):
    """Base exception for all content reference errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(ToolRefError):
    """Raised when configuration is invalid or missing.

    Examples:
        - Cleanup interval of zero
        - Storage limit smaller than the size threshold
    """

    pass


class ContentStorageError(ToolRefError):
    """Raised when writing content to the store fails.

    Context should include:
        - size_bytes: Size of the content that failed to store
        - source: The content source (e.g., "mcp_tool")
        - suggested_actions: Recovery hints for the caller
    """

    @property
    def suggested_actions(self) -> list[str]:
        """Recovery hints attached to the error."""
        return list(self.context.get("suggested_actions", []))


class ContentReferenceError(ToolRefError):
    """Base class for errors about a specific reference.

    Context should include:
        - reference_id: The reference that could not be used
        - suggested_actions: Recovery hints for the caller
    """

    @property
    def reference_id(self) -> str | None:
        """The reference id the error is about."""
        return self.context.get("reference_id")

    @property
    def suggested_actions(self) -> list[str]:
        """Recovery hints attached to the error."""
        return list(self.context.get("suggested_actions", []))


class ReferenceNotFoundError(ContentReferenceError):
    """Raised when a reference id is unknown or malformed."""

    pass


class ReferenceExpiredError(ContentReferenceError):
    """Raised when a reference exists but is past its TTL deadline."""

    pass


class StoreDisposedError(ToolRefError):
    """Raised when a disposed content store is used for writes."""

    pass
