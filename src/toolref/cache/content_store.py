"""
In-memory content store for oversized tool output.

Content above the size threshold is kept here under a content-derived
reference id with a per-source TTL deadline. Callers hold only the
lightweight ContentReference; the bytes stay in the store until they expire,
are cleaned up, or the store is disposed.
"""

from __future__ import annotations

import asyncio
import contextlib
import re
import time
from collections import deque
from datetime import timedelta
from typing import Any

import orjson

from toolref.cache.base import ContentStoreProtocol, ReferenceStoreConfig
from toolref.cache.reference_ids import generate_reference_id, is_valid_reference_id
from toolref.exceptions import (
    ContentStorageError,
    ReferenceExpiredError,
    ReferenceNotFoundError,
    StoreDisposedError,
)
from toolref.logging import get_logger
from toolref.types import (
    CleanupResult,
    Clock,
    ContentMetadata,
    ContentReference,
    ContentSource,
    ContentType,
    ReferenceMetadata,
    ReferenceState,
    ResolutionErrorType,
    ResolutionResult,
    StoredContent,
    StoreStats,
    utc_now,
)
from toolref.utils.mime import byte_length, sniff_content_type

logger = get_logger(__name__)

_MAX_TIMING_SAMPLES = 100
_HTML_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")


class ContentStore(ContentStoreProtocol):
    """Content-addressable store with TTL expiry and optional background cleanup.

    Usage:
        async with ContentStore(config) as store:
            ref = await store.store_content_if_large(payload, source=ContentSource.MCP_TOOL)

    ``init()`` starts the background cleanup task when enabled; ``dispose()``
    cancels it and drops every entry.
    """

    def __init__(
        self,
        config: ReferenceStoreConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize the content store.

        Args:
            config: Store configuration. Defaults to ReferenceStoreConfig().
            clock: Source of the current time (injectable for tests).
        """
        self._config = config or ReferenceStoreConfig()
        self._clock = clock
        self._entries: dict[str, StoredContent] = {}
        self._total_bytes = 0
        self._recently_cleaned_up = 0
        self._total_resolutions = 0
        self._failed_resolutions = 0
        self._creation_times: deque[float] = deque(maxlen=_MAX_TIMING_SAMPLES)
        self._resolution_times: deque[float] = deque(maxlen=_MAX_TIMING_SAMPLES)
        self._cleanup_times: deque[float] = deque(maxlen=_MAX_TIMING_SAMPLES)
        self._cleanup_task: asyncio.Task[None] | None = None
        self._disposed = False

    @property
    def config(self) -> ReferenceStoreConfig:
        """Current store configuration."""
        return self._config

    @property
    def auto_cleanup_running(self) -> bool:
        """Whether the background cleanup task is alive."""
        return self._cleanup_task is not None and not self._cleanup_task.done()

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Start background cleanup if enabled. Safe to call multiple times."""
        if self._disposed:
            raise StoreDisposedError("ContentStore has been disposed")
        if self._config.enable_auto_cleanup and not self.auto_cleanup_running:
            self._start_auto_cleanup()

    async def dispose(self) -> None:
        """Cancel background cleanup and release all stored content."""
        await self._stop_auto_cleanup()

        released = len(self._entries)
        self._entries.clear()
        self._total_bytes = 0
        self._disposed = True

        logger.info("Content store disposed", released=released)

    async def __aenter__(self) -> ContentStore:
        await self.init()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.dispose()

    def _start_auto_cleanup(self) -> None:
        loop = asyncio.get_running_loop()
        self._cleanup_task = loop.create_task(
            self._auto_cleanup_loop(), name="toolref-content-cleanup"
        )
        logger.debug(
            "Started background cleanup",
            interval_seconds=self._config.cleanup_interval_seconds,
        )

    async def _stop_auto_cleanup(self) -> None:
        task = self._cleanup_task
        self._cleanup_task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.debug("Stopped background cleanup")

    async def _auto_cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.cleanup_interval_seconds)
            try:
                result = await self.perform_cleanup()
            except Exception:
                logger.exception("Background cleanup pass failed")
                continue
            if result.cleaned_up:
                logger.info("Background cleanup removed references", count=result.cleaned_up)

    async def update_config(self, **changes: Any) -> None:
        """Replace configuration fields and restart background cleanup to match."""
        self._config = self._config.with_changes(**changes)

        await self._stop_auto_cleanup()
        if self._config.enable_auto_cleanup and not self._disposed:
            self._start_auto_cleanup()

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def should_use_reference(self, content: bytes | str) -> bool:
        """Check whether content exceeds the size threshold."""
        return byte_length(content) > self._config.size_threshold_bytes

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
        """Store content and return a reference if it exceeds the size threshold.

        Returns:
            The new reference, or None when the content should be used inline.

        Raises:
            ContentStorageError: If the content could not be stored.
        """
        data = content.encode("utf-8") if isinstance(content, str) else bytes(content)

        if not self.should_use_reference(data):
            return None

        return await self.store_content(
            data,
            source=source,
            content_type=content_type,
            mime_type=mime_type,
            mcp_tool_name=mcp_tool_name,
            file_name=file_name,
            tags=tags,
            custom_metadata=custom_metadata,
        )

    async def store_content(
        self,
        content: bytes,
        *,
        source: ContentSource,
        content_type: ContentType | None = None,
        mime_type: str | None = None,
        mcp_tool_name: str | None = None,
        file_name: str | None = None,
        tags: list[str] | tuple[str, ...] | None = None,
        custom_metadata: dict[str, Any] | None = None,
    ) -> ContentReference:
        """Store content unconditionally and return its reference.

        Storing identical bytes again refreshes the existing entry.

        Raises:
            StoreDisposedError: If the store has been disposed.
            ContentStorageError: If the content could not be stored.
        """
        if self._disposed:
            raise StoreDisposedError("ContentStore has been disposed")

        source = ContentSource(source)
        started = time.perf_counter()
        try:
            now = self._clock()
            reference_id = generate_reference_id(content)
            metadata = ContentMetadata(
                content_type=content_type or sniff_content_type(content, mime_type),
                size_bytes=len(content),
                source=source,
                created_at=now,
                last_accessed_at=now,
                mime_type=mime_type,
                mcp_tool_name=mcp_tool_name,
                file_name=file_name,
                tags=tuple(dict.fromkeys(tags or ())),
                custom_metadata=dict(custom_metadata or {}),
            )

            previous = self._entries.pop(reference_id, None)
            if previous is not None:
                self._total_bytes -= previous.metadata.size_bytes
                metadata.access_count = previous.metadata.access_count

            policy = self._config.policy_for(source)
            self._entries[reference_id] = StoredContent(
                content=content,
                metadata=metadata,
                expires_at=now + timedelta(seconds=policy.max_age_seconds),
            )
            self._total_bytes += len(content)

            await self._enforce_storage_limits(keep=reference_id)

            reference = ContentReference(
                reference_id=reference_id,
                preview=create_preview(
                    content, metadata.content_type, self._config.preview_max_length
                ),
                metadata=ReferenceMetadata.from_content_metadata(metadata),
                created_at=now,
            )
        except Exception as e:
            raise ContentStorageError(
                f"Failed to store content: {e}",
                context={
                    "size_bytes": len(content),
                    "source": source.value,
                    "suggested_actions": [
                        "Try again",
                        "Check storage limits",
                        "Contact administrator",
                    ],
                },
            ) from e
        finally:
            self._creation_times.append((time.perf_counter() - started) * 1000)

        logger.debug(
            "Stored content reference",
            reference_id=reference_id[:12],
            size=len(content),
            source=source.value,
            refreshed=previous is not None,
        )
        return reference

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def has_reference(self, reference_id: str) -> bool:
        """Check if a reference exists and has not expired."""
        if not is_valid_reference_id(reference_id):
            return False

        stored = self._entries.get(reference_id)
        if stored is None:
            logger.debug("Reference miss", reference_id=reference_id[:12])
            return False

        if stored.is_expired(self._clock()):
            stored.state = ReferenceState.EXPIRED
            logger.debug("Reference expired", reference_id=reference_id[:12])
            return False

        return stored.state == ReferenceState.ACTIVE

    async def resolve_reference(self, reference_id: str) -> ResolutionResult:
        """Resolve a reference to its content and full metadata.

        Never raises; failures are reported in the result.
        """
        started = time.perf_counter()
        try:
            result = self._resolve(reference_id)
        except Exception as e:
            logger.error("Error resolving reference", reference_id=str(reference_id)[:12], error=str(e))
            result = ResolutionResult(
                success=False,
                error=f"System error resolving reference: {e}",
                error_type=ResolutionErrorType.SYSTEM_ERROR,
                suggested_actions=("Try again", "Contact administrator"),
            )
        finally:
            self._resolution_times.append((time.perf_counter() - started) * 1000)

        if result.success:
            self._total_resolutions += 1
        else:
            self._failed_resolutions += 1
        return result

    def _resolve(self, reference_id: str) -> ResolutionResult:
        if not is_valid_reference_id(reference_id):
            return ResolutionResult(
                success=False,
                error="Invalid reference ID format",
                error_type=ResolutionErrorType.NOT_FOUND,
                suggested_actions=(
                    "Check the reference ID format",
                    "Ensure the reference ID is complete",
                ),
            )

        stored = self._entries.get(reference_id)
        if stored is None:
            return ResolutionResult(
                success=False,
                error="Reference not found",
                error_type=ResolutionErrorType.NOT_FOUND,
                suggested_actions=(
                    "Verify the reference ID",
                    "Check if the content has expired",
                    "Request fresh content",
                ),
            )

        now = self._clock()
        if stored.is_expired(now):
            stored.state = ReferenceState.EXPIRED
            return ResolutionResult(
                success=False,
                error="Reference has expired",
                error_type=ResolutionErrorType.EXPIRED,
                suggested_actions=("Request fresh content", "Use alternative content source"),
            )

        if stored.state != ReferenceState.ACTIVE:
            return ResolutionResult(
                success=False,
                error=f"Reference is {stored.state.value}",
                error_type=(
                    ResolutionErrorType.EXPIRED
                    if stored.state == ReferenceState.EXPIRED
                    else ResolutionErrorType.CORRUPTED
                ),
                suggested_actions=("Request fresh content", "Check reference validity"),
            )

        stored.metadata.last_accessed_at = now
        stored.metadata.access_count += 1
        return ResolutionResult(success=True, content=stored.content, metadata=stored.metadata)

    async def get_content(self, reference_id: str) -> bytes:
        """Get stored bytes for a reference.

        Raises:
            ReferenceExpiredError: If the reference is past its deadline.
            ReferenceNotFoundError: If the reference is unknown or unusable.
        """
        result = await self.resolve_reference(reference_id)
        if result.success and result.content is not None:
            return result.content

        context = {
            "reference_id": reference_id,
            "suggested_actions": list(result.suggested_actions),
        }
        if result.error_type == ResolutionErrorType.EXPIRED:
            raise ReferenceExpiredError(result.error or "Reference has expired", context=context)
        raise ReferenceNotFoundError(result.error or "Reference not found", context=context)

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def cleanup_reference(self, reference_id: str) -> bool:
        """Remove a single reference. Returns False if it was not stored."""
        stored = self._entries.pop(reference_id, None)
        if stored is None:
            return False

        self._total_bytes -= stored.metadata.size_bytes
        self._recently_cleaned_up += 1
        return True

    async def perform_cleanup(self) -> CleanupResult:
        """Remove expired, over-age and pending references, then trim to max_references."""
        return await self._cleanup()

    async def _cleanup(self, keep: str | None = None) -> CleanupResult:
        started = time.perf_counter()
        errors: list[str] = []
        cleaned_up = 0
        now = self._clock()

        candidates: list[str] = []
        for reference_id, stored in self._entries.items():
            policy = self._config.policy_for(stored.metadata.source)
            age_seconds = (now - stored.metadata.created_at).total_seconds()

            if stored.is_expired(now):
                stored.state = ReferenceState.EXPIRED
            if (
                stored.state in (ReferenceState.EXPIRED, ReferenceState.CLEANUP_PENDING)
                or age_seconds > policy.max_age_seconds
            ):
                candidates.append(reference_id)

        # Least-protected sources go first.
        candidates.sort(
            key=lambda rid: self._config.policy_for(self._entries[rid].metadata.source).priority,
            reverse=True,
        )
        for reference_id in candidates:
            try:
                if await self.cleanup_reference(reference_id):
                    cleaned_up += 1
            except Exception as e:
                errors.append(f"Failed to cleanup {reference_id}: {e}")

        excess = len(self._entries) - self._config.max_references
        if excess > 0:
            by_last_access = sorted(
                (rid for rid in self._entries if rid != keep),
                key=lambda rid: self._entries[rid].metadata.last_accessed_at,
            )
            for reference_id in by_last_access[:excess]:
                try:
                    if await self.cleanup_reference(reference_id):
                        cleaned_up += 1
                except Exception as e:
                    errors.append(f"Failed to cleanup excess reference {reference_id}: {e}")

        self._cleanup_times.append((time.perf_counter() - started) * 1000)

        if cleaned_up:
            logger.debug("Cleaned up references", count=cleaned_up, remaining=len(self._entries))
        for error in errors:
            logger.warning("Cleanup error", error=error)

        return CleanupResult(cleaned_up=cleaned_up, errors=tuple(errors))

    async def _enforce_storage_limits(self, keep: str) -> None:
        if (
            len(self._entries) >= self._config.max_references
            or self._total_bytes >= self._config.max_total_storage_bytes
        ):
            await self._cleanup(keep=keep)

        if self._total_bytes > self._config.max_total_storage_bytes:
            by_last_access = sorted(
                (rid for rid in self._entries if rid != keep),
                key=lambda rid: self._entries[rid].metadata.last_accessed_at,
            )
            for reference_id in by_last_access:
                if self._total_bytes <= self._config.max_total_storage_bytes:
                    break
                await self.cleanup_reference(reference_id)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def get_stats(self) -> StoreStats:
        """Get a snapshot of store statistics."""
        active = len(self._entries)

        most_accessed: str | None = None
        max_access = 0
        for reference_id, stored in self._entries.items():
            if stored.metadata.access_count > max_access:
                max_access = stored.metadata.access_count
                most_accessed = reference_id

        return StoreStats(
            active_references=active,
            total_storage_bytes=self._total_bytes,
            recently_cleaned_up=self._recently_cleaned_up,
            total_resolutions=self._total_resolutions,
            failed_resolutions=self._failed_resolutions,
            average_content_size=self._total_bytes / active if active else 0.0,
            storage_utilization=self._total_bytes / self._config.max_total_storage_bytes * 100,
            most_accessed_reference_id=most_accessed,
            average_creation_time_ms=_average(self._creation_times),
            average_resolution_time_ms=_average(self._resolution_times),
            average_cleanup_time_ms=_average(self._cleanup_times),
        )


def create_preview(content: bytes, content_type: ContentType, max_length: int = 200) -> str:
    """Build a short text preview of stored content."""
    preview = content[: max_length * 2].decode("utf-8", errors="ignore")

    if content_type == ContentType.HTML:
        preview = _WHITESPACE_RE.sub(" ", _HTML_TAG_RE.sub("", preview))
    elif content_type == ContentType.JSON:
        with contextlib.suppress(orjson.JSONDecodeError):
            preview = orjson.dumps(orjson.loads(preview)).decode("utf-8")

    preview = preview.strip()
    if len(preview) > max_length:
        preview = preview[:max_length] + "..."

    return preview or "[Binary content]"


def _average(samples: deque[float]) -> float:
    return sum(samples) / len(samples) if samples else 0.0
