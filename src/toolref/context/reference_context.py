"""
Conversation-scoped tracking of content references.

One ReferenceContextManager exists per conversation session. It records each
reference the conversation has seen, renders references for display, and
drops references that the store no longer holds or that have gone unused.
Tracking state is owned by a single task; sessions never share a manager.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from toolref.cache.base import ContentStoreProtocol
from toolref.context.formatting import format_bytes, truncate_text
from toolref.logging import get_logger
from toolref.types import (
    Clock,
    ContentReference,
    ContentType,
    ContextStats,
    ConversationContextEntry,
    DisplayOptions,
    DisplayResult,
    ValidationReport,
    generate_context_id,
    utc_now,
)

logger = get_logger(__name__)

DEFAULT_MAX_AGE_MS = 30 * 60 * 1000

EXPIRED_ACTIONS = ("Request fresh content", "Use alternative content source")
ERROR_ACTIONS = ("Check reference validity", "Try again", "Contact administrator")


class ReferenceContextManager:
    """Tracks content references within one agent conversation."""

    def __init__(
        self,
        store: ContentStoreProtocol,
        clock: Clock = utc_now,
        default_max_age_ms: int = DEFAULT_MAX_AGE_MS,
    ) -> None:
        """Initialize the manager.

        Args:
            store: Store used to check that references are still valid.
            clock: Source of the current time (injectable for tests).
            default_max_age_ms: Idle age used by cleanup_old_references().
        """
        self._store = store
        self._clock = clock
        self._default_max_age_ms = default_max_age_ms
        self._entries: dict[str, ConversationContextEntry] = {}
        self._by_context_id: dict[str, str] = {}
        self._conversation_turn = 0
        self._sequence = 0

    @property
    def store(self) -> ContentStoreProtocol:
        """The store references are validated against."""
        return self._store

    @property
    def conversation_turn(self) -> int:
        """Number of references accepted since the last clear()."""
        return self._conversation_turn

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, reference_id: object) -> bool:
        return reference_id in self._entries

    def add_reference(self, reference: ContentReference) -> str:
        """Track a reference in the conversation.

        Re-adding a tracked reference replaces its entry.

        Returns:
            The new context ID.
        """
        now = self._clock()
        self._conversation_turn += 1
        self._sequence += 1

        context_id = generate_context_id(now)
        while context_id in self._by_context_id:
            context_id = generate_context_id(now)

        previous = self._entries.pop(reference.reference_id, None)
        if previous is not None:
            self._by_context_id.pop(previous.context_id, None)

        self._entries[reference.reference_id] = ConversationContextEntry(
            context_id=context_id,
            reference=reference,
            added_at_turn=self._conversation_turn,
            added_at=now,
            last_accessed_at=now,
            sequence=self._sequence,
        )
        self._by_context_id[context_id] = reference.reference_id

        logger.debug(
            "Added reference to conversation context",
            reference_id=reference.reference_id[:12],
            context_id=context_id,
            turn=self._conversation_turn,
        )
        return context_id

    def get_most_recent_reference(self) -> ContentReference | None:
        """Get the most recently added reference, refreshing its access time."""
        if not self._entries:
            return None

        entry = max(self._entries.values(), key=lambda e: e.sequence)
        entry.touch(self._clock())
        return entry.reference

    def get_reference_by_context_id(self, context_id: str) -> ContentReference | None:
        """Look up a reference by context ID, refreshing its access time."""
        reference_id = self._by_context_id.get(context_id)
        if reference_id is None:
            return None

        entry = self._entries[reference_id]
        entry.touch(self._clock())
        return entry.reference

    async def display_reference(
        self,
        reference: ContentReference,
        options: DisplayOptions | None = None,
        **overrides: Any,
    ) -> DisplayResult:
        """Render a reference for the conversation.

        Valid references are (re)registered and get a fresh context ID. Expired
        references and lookup errors produce distinct results with suggested
        actions; nothing is raised.

        Args:
            reference: Reference to render.
            options: Display options; keyword overrides are applied on top.
        """
        options = options or DisplayOptions()
        if overrides:
            options = options.with_changes(**overrides)

        try:
            is_valid = await self._store.has_reference(reference.reference_id)
            if not is_valid:
                reference.mark_expired()
                self._remove(reference.reference_id)
                logger.debug("Reference no longer stored", reference_id=reference.reference_id[:12])
                return DisplayResult(
                    display_text=self._format_expired(reference, options.include_actions),
                    has_valid_reference=False,
                    suggested_actions=EXPIRED_ACTIONS,
                )

            context_id = self.add_reference(reference)

            if options.format == "inline":
                text = self._format_inline(reference, options.max_preview_length, context_id)
            elif options.format == "compact":
                text = self._format_compact(reference, options.show_size, context_id)
            else:
                text = self._format_card(reference, options, context_id)

            return DisplayResult(
                display_text=text,
                has_valid_reference=True,
                context_id=context_id,
            )
        except Exception as e:
            logger.error(
                "Error displaying reference",
                reference_id=reference.reference_id[:12],
                error=str(e),
            )
            return DisplayResult(
                display_text=self._format_error(reference, e),
                has_valid_reference=False,
                suggested_actions=ERROR_ACTIONS,
            )

    async def validate_references(self) -> ValidationReport:
        """Check every tracked reference against the store and drop invalid ones."""
        valid = 0
        invalid = 0
        removed: list[str] = []

        for reference_id in list(self._entries):
            try:
                ok = await self._store.has_reference(reference_id)
            except Exception as e:
                logger.warning(
                    "Error validating reference",
                    reference_id=reference_id[:12],
                    error=str(e),
                )
                ok = False

            if ok:
                valid += 1
                continue

            invalid += 1
            removed.append(reference_id)
            self._remove(reference_id)
            logger.debug("Removed invalid reference from context", reference_id=reference_id[:12])

        return ValidationReport(valid=valid, invalid=invalid, removed=tuple(removed))

    def cleanup_old_references(self, max_age_ms: int | None = None) -> int:
        """Drop references not accessed within max_age_ms.

        Returns:
            Number of references removed.
        """
        if max_age_ms is None:
            max_age_ms = self._default_max_age_ms
        cutoff = self._clock() - timedelta(milliseconds=max_age_ms)

        stale = [rid for rid, entry in self._entries.items() if entry.last_accessed_at < cutoff]
        for reference_id in stale:
            self._remove(reference_id)

        if stale:
            logger.debug("Cleaned up old references from context", count=len(stale))
        return len(stale)

    def get_context_stats(self) -> ContextStats:
        """Get a snapshot of tracking state."""
        if not self._entries:
            return ContextStats(
                active_references=0,
                conversation_turn=self._conversation_turn,
                oldest_reference=None,
                most_recent_reference=None,
            )

        entries = self._entries.values()
        oldest = min(entries, key=lambda e: e.sequence)
        newest = max(entries, key=lambda e: e.sequence)
        return ContextStats(
            active_references=len(self._entries),
            conversation_turn=self._conversation_turn,
            oldest_reference=oldest.added_at,
            most_recent_reference=newest.added_at,
        )

    def clear(self) -> None:
        """Drop all tracked references and reset the turn counter."""
        self._entries.clear()
        self._by_context_id.clear()
        self._conversation_turn = 0
        logger.debug("Cleared all references from context")

    def _remove(self, reference_id: str) -> None:
        entry = self._entries.pop(reference_id, None)
        if entry is not None:
            self._by_context_id.pop(entry.context_id, None)

    def _format_card(
        self,
        reference: ContentReference,
        options: DisplayOptions,
        context_id: str,
    ) -> str:
        metadata = reference.metadata
        lines = [
            "**Large Content Reference**",
            f"**Preview:** {truncate_text(reference.preview, options.max_preview_length)}",
        ]

        if options.show_size:
            size_line = f"**Size:** {format_bytes(metadata.size_bytes)}"
            if metadata.content_type != ContentType.BINARY:
                size_line += f" ({metadata.content_type.value})"
            lines.append(size_line)

        if options.show_metadata:
            if metadata.file_name:
                lines.append(f"**File:** {metadata.file_name}")
            lines.append(f"**Source:** {metadata.source.value}")

        if options.include_actions:
            lines.append("")
            lines.append('Refer to this content as "it" or by its context ID to use the full content.')

        lines.append("")
        lines.append(f"*Reference ID: {reference.reference_id[:12]}...*")
        lines.append(f"*Context: {context_id}*")
        return "\n".join(lines)

    def _format_inline(
        self, reference: ContentReference, max_preview_length: int, context_id: str
    ) -> str:
        metadata = reference.metadata
        label = f"{format_bytes(metadata.size_bytes)} {metadata.content_type.value}"
        if metadata.file_name:
            label += f" {metadata.file_name}"
        preview = truncate_text(reference.preview, max_preview_length)
        return f"[{label}] {preview} ({context_id})"

    def _format_compact(
        self, reference: ContentReference, show_size: bool, context_id: str
    ) -> str:
        size_text = f" ({format_bytes(reference.metadata.size_bytes)})" if show_size else ""
        name = reference.metadata.file_name or "large content"
        return f"Referenced content{size_text}: {name} [{context_id}]"

    def _format_expired(self, reference: ContentReference, include_actions: bool) -> str:
        lines = [
            "**Content Reference Expired**",
            "The referenced content is no longer available.",
            f"**Original:** {truncate_text(reference.preview, 100)}",
        ]
        if include_actions:
            lines.append("")
            lines.append("Please request fresh content from the original source.")
        return "\n".join(lines)

    def _format_error(self, reference: ContentReference, error: Exception) -> str:
        return "\n".join(
            [
                "**Reference Error**",
                f"Error accessing referenced content: {str(error) or 'Unknown error'}",
                f"**Reference:** {truncate_text(reference.preview, 100)}",
            ]
        )
