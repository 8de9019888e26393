"""
Tests for the in-memory content store.
"""

from __future__ import annotations

import asyncio

import pytest

from fakes import FakeClock
from toolref.cache.base import ReferenceStoreConfig
from toolref.cache.content_store import ContentStore, create_preview
from toolref.cache.reference_ids import generate_reference_id
from toolref.exceptions import (
    ConfigurationError,
    ContentStorageError,
    ReferenceExpiredError,
    ReferenceNotFoundError,
    StoreDisposedError,
)
from toolref.types import ContentSource, ContentType, ReferenceState, ResolutionErrorType


class TestContentStoreBasics:
    """Test size gating, storage and resolution."""

    @pytest.mark.asyncio
    async def test_small_content_is_not_stored(self, store: ContentStore) -> None:
        """Test that content at the threshold stays inline."""
        reference = await store.store_content_if_large("x" * 1000, source=ContentSource.MCP_TOOL)

        assert reference is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_large_content_round_trip(self, store: ContentStore) -> None:
        """Test that oversized content resolves to the exact stored bytes."""
        payload = "line of tool output\n" * 100
        reference = await store.store_content_if_large(
            payload,
            source=ContentSource.MCP_TOOL,
            mime_type="text/plain",
            mcp_tool_name="files::read_file",
            file_name="notes.txt",
            tags=["mcp_response", "files", "mcp_response"],
        )

        assert reference is not None
        assert reference.reference_id == generate_reference_id(payload.encode("utf-8"))
        assert reference.state == ReferenceState.ACTIVE
        assert reference.metadata.size_bytes == len(payload)
        assert reference.metadata.file_name == "notes.txt"
        assert reference.metadata.tags == ("mcp_response", "files")
        assert reference.preview.startswith("line of tool output")

        assert await store.has_reference(reference.reference_id)
        result = await store.resolve_reference(reference.reference_id)
        assert result.success
        assert result.content == payload.encode("utf-8")
        assert result.metadata is not None
        assert result.metadata.access_count == 1
        assert result.metadata.mcp_tool_name == "files::read_file"

    @pytest.mark.asyncio
    async def test_identical_content_shares_reference(self, store: ContentStore) -> None:
        """Test that storing the same bytes twice keeps one entry."""
        payload = b"z" * 1500
        first = await store.store_content(payload, source=ContentSource.MCP_TOOL)
        await store.resolve_reference(first.reference_id)
        second = await store.store_content(payload, source=ContentSource.MCP_TOOL)

        assert first.reference_id == second.reference_id
        assert len(store) == 1
        stats = await store.get_stats()
        assert stats.total_storage_bytes == 1500

        result = await store.resolve_reference(first.reference_id)
        assert result.metadata is not None
        assert result.metadata.access_count == 2

    @pytest.mark.asyncio
    async def test_content_type_sniffed_from_bytes(self, store: ContentStore) -> None:
        """Test content type detection when no MIME type is declared."""
        payload = '{"rows": [' + ",".join(['{"id": 1}'] * 200) + "]}"
        reference = await store.store_content_if_large(payload, source=ContentSource.SYSTEM)

        assert reference is not None
        assert reference.metadata.content_type == ContentType.JSON

    @pytest.mark.asyncio
    async def test_resolve_unknown_reference(self, store: ContentStore) -> None:
        """Test resolving a well-formed id that was never stored."""
        result = await store.resolve_reference("b" * 64)

        assert not result.success
        assert result.error_type == ResolutionErrorType.NOT_FOUND
        assert "Request fresh content" in result.suggested_actions

    @pytest.mark.asyncio
    async def test_resolve_malformed_reference(self, store: ContentStore) -> None:
        """Test resolving a malformed id."""
        result = await store.resolve_reference("not-a-reference")

        assert not result.success
        assert result.error == "Invalid reference ID format"
        assert not await store.has_reference("not-a-reference")

    @pytest.mark.asyncio
    async def test_get_content_not_found_raises(self, store: ContentStore) -> None:
        """Test that get_content raises for unknown references."""
        with pytest.raises(ReferenceNotFoundError) as exc_info:
            await store.get_content("c" * 64)

        assert exc_info.value.reference_id == "c" * 64
        assert exc_info.value.suggested_actions

    @pytest.mark.asyncio
    async def test_storage_failure_is_wrapped(self, store: ContentStore) -> None:
        """Test that storage failures surface as ContentStorageError."""
        with pytest.raises(ContentStorageError) as exc_info:
            await store.store_content(
                b"q" * 2000,
                source=ContentSource.MCP_TOOL,
                tags=[["unhashable"]],  # type: ignore[list-item]
            )

        assert exc_info.value.context["size_bytes"] == 2000
        assert "Try again" in exc_info.value.suggested_actions
        assert len(store) == 0


class TestContentStoreExpiry:
    """Test TTL expiry and cleanup."""

    @pytest.mark.asyncio
    async def test_reference_expires_after_policy_age(
        self, store: ContentStore, clock: FakeClock
    ) -> None:
        """Test that MCP tool content expires after 30 minutes."""
        reference = await store.store_content(b"a" * 2000, source=ContentSource.MCP_TOOL)

        clock.advance(minutes=29)
        assert await store.has_reference(reference.reference_id)

        clock.advance(minutes=2)
        assert not await store.has_reference(reference.reference_id)

        result = await store.resolve_reference(reference.reference_id)
        assert not result.success
        assert result.error_type == ResolutionErrorType.EXPIRED

        with pytest.raises(ReferenceExpiredError):
            await store.get_content(reference.reference_id)

    @pytest.mark.asyncio
    async def test_perform_cleanup_removes_expired(
        self, store: ContentStore, clock: FakeClock
    ) -> None:
        """Test that cleanup removes expired entries and keeps live ones."""
        tool_ref = await store.store_content(b"t" * 2000, source=ContentSource.MCP_TOOL)
        upload_ref = await store.store_content(b"u" * 2000, source=ContentSource.USER_UPLOAD)

        clock.advance(minutes=45)
        result = await store.perform_cleanup()

        assert result.cleaned_up == 1
        assert result.errors == ()
        assert not await store.has_reference(tool_ref.reference_id)
        assert await store.has_reference(upload_ref.reference_id)

        stats = await store.get_stats()
        assert stats.active_references == 1
        assert stats.recently_cleaned_up == 1

    @pytest.mark.asyncio
    async def test_cleanup_reference(self, store: ContentStore) -> None:
        """Test removing a single reference."""
        reference = await store.store_content(b"r" * 2000, source=ContentSource.MCP_TOOL)

        assert await store.cleanup_reference(reference.reference_id)
        assert not await store.cleanup_reference(reference.reference_id)
        assert not await store.has_reference(reference.reference_id)


class TestContentStoreLimits:
    """Test reference count and byte limits."""

    @pytest.mark.asyncio
    async def test_max_references_evicts_least_recently_used(self, clock: FakeClock) -> None:
        """Test that exceeding max_references evicts the least recently accessed entry."""
        config = ReferenceStoreConfig(size_threshold_bytes=100, max_references=3)
        async with ContentStore(config, clock=clock) as store:
            refs = []
            for fill in (b"1", b"2", b"3"):
                refs.append(await store.store_content(fill * 500, source=ContentSource.MCP_TOOL))
                clock.advance(seconds=1)

            # Touch the oldest so the second becomes least recently used.
            await store.resolve_reference(refs[0].reference_id)
            clock.advance(seconds=1)

            newest = await store.store_content(b"4" * 500, source=ContentSource.MCP_TOOL)

            assert len(store) == 3
            assert await store.has_reference(refs[0].reference_id)
            assert not await store.has_reference(refs[1].reference_id)
            assert await store.has_reference(refs[2].reference_id)
            assert await store.has_reference(newest.reference_id)

    @pytest.mark.asyncio
    async def test_total_bytes_limit_evicts_oldest(self, clock: FakeClock) -> None:
        """Test that exceeding the byte budget evicts until it fits."""
        config = ReferenceStoreConfig(size_threshold_bytes=1000, max_total_storage_bytes=3000)
        async with ContentStore(config, clock=clock) as store:
            first = await store.store_content(b"a" * 1200, source=ContentSource.MCP_TOOL)
            clock.advance(seconds=1)
            await store.store_content(b"b" * 1200, source=ContentSource.MCP_TOOL)
            clock.advance(seconds=1)
            third = await store.store_content(b"c" * 1200, source=ContentSource.MCP_TOOL)

            stats = await store.get_stats()
            assert stats.total_storage_bytes == 2400
            assert not await store.has_reference(first.reference_id)
            assert await store.has_reference(third.reference_id)

    def test_invalid_config_rejected(self) -> None:
        """Test that impossible store configuration raises ConfigurationError."""
        with pytest.raises(ConfigurationError):
            ReferenceStoreConfig(size_threshold_bytes=0)

        with pytest.raises(ConfigurationError) as exc_info:
            ReferenceStoreConfig(size_threshold_bytes=4096, max_total_storage_bytes=1024)
        assert exc_info.value.context["max_total_storage_bytes"] == 1024


class TestContentStoreLifecycle:
    """Test init, dispose and background cleanup."""

    @pytest.mark.asyncio
    async def test_dispose_releases_content(self, clock: FakeClock) -> None:
        """Test that dispose drops every entry and blocks further writes."""
        store = ContentStore(ReferenceStoreConfig(size_threshold_bytes=100), clock=clock)
        await store.init()
        reference = await store.store_content(b"d" * 500, source=ContentSource.MCP_TOOL)

        await store.dispose()

        assert len(store) == 0
        assert not await store.has_reference(reference.reference_id)
        with pytest.raises(StoreDisposedError):
            await store.store_content(b"e" * 500, source=ContentSource.MCP_TOOL)
        with pytest.raises(StoreDisposedError):
            await store.init()

    @pytest.mark.asyncio
    async def test_auto_cleanup_runs_and_stops(self, clock: FakeClock) -> None:
        """Test that the background task cleans up and is cancelled on dispose."""
        config = ReferenceStoreConfig(
            size_threshold_bytes=100,
            enable_auto_cleanup=True,
            cleanup_interval_seconds=0.01,
        )
        store = ContentStore(config, clock=clock)
        await store.init()
        assert store.auto_cleanup_running

        await store.store_content(b"f" * 500, source=ContentSource.MCP_TOOL)
        clock.advance(minutes=31)
        await asyncio.sleep(0.05)

        assert len(store) == 0

        await store.dispose()
        assert not store.auto_cleanup_running

    @pytest.mark.asyncio
    async def test_auto_cleanup_disabled_by_default(self, store: ContentStore) -> None:
        """Test that no background task runs unless enabled."""
        assert not store.auto_cleanup_running

    @pytest.mark.asyncio
    async def test_update_config_starts_cleanup(self, store: ContentStore) -> None:
        """Test that enabling auto cleanup at runtime starts the task."""
        await store.update_config(enable_auto_cleanup=True, cleanup_interval_seconds=60)

        assert store.config.enable_auto_cleanup
        assert store.auto_cleanup_running

        await store.update_config(enable_auto_cleanup=False)
        assert not store.auto_cleanup_running


class TestContentStoreStats:
    """Test statistics reporting."""

    @pytest.mark.asyncio
    async def test_stats_track_resolutions(self, store: ContentStore) -> None:
        """Test resolution counters and most accessed reference."""
        popular = await store.store_content(b"p" * 2000, source=ContentSource.MCP_TOOL)
        await store.store_content(b"o" * 1000, source=ContentSource.MCP_TOOL)

        await store.resolve_reference(popular.reference_id)
        await store.resolve_reference(popular.reference_id)
        await store.resolve_reference("d" * 64)

        stats = await store.get_stats()
        assert stats.active_references == 2
        assert stats.total_storage_bytes == 3000
        assert stats.average_content_size == 1500
        assert stats.total_resolutions == 2
        assert stats.failed_resolutions == 1
        assert stats.most_accessed_reference_id == popular.reference_id
        assert stats.storage_utilization > 0

    @pytest.mark.asyncio
    async def test_empty_stats(self, store: ContentStore) -> None:
        """Test statistics of an empty store."""
        stats = await store.get_stats()

        assert stats.active_references == 0
        assert stats.average_content_size == 0.0
        assert stats.most_accessed_reference_id is None


class TestCreatePreview:
    """Test preview generation."""

    def test_html_tags_stripped(self) -> None:
        """Test that HTML previews contain text only."""
        preview = create_preview(b"<html><body><p>Hello   world</p></body></html>", ContentType.HTML)
        assert preview == "Hello world"

    def test_json_compacted(self) -> None:
        """Test that JSON previews are compacted."""
        preview = create_preview(b'{\n  "a": 1,\n  "b": [1, 2]\n}', ContentType.JSON)
        assert preview == '{"a":1,"b":[1,2]}'

    def test_long_text_truncated(self) -> None:
        """Test that long previews end with an ellipsis."""
        preview = create_preview(b"x" * 500, ContentType.TEXT, max_length=50)
        assert preview == "x" * 50 + "..."

    def test_empty_preview_falls_back(self) -> None:
        """Test the placeholder for content with no printable text."""
        assert create_preview(b"\xff\xfe", ContentType.BINARY) == "[Binary content]"
