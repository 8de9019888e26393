"""
Tests for reference rendering in agent responses.
"""

from __future__ import annotations

import orjson
import pytest

from fakes import FakeClock
from toolref.cache.content_store import ContentStore
from toolref.context.reference_context import ReferenceContextManager
from toolref.context.reference_detector import (
    ReferenceResponseProcessor,
    ResponseProcessingOptions,
)
from toolref.processing.response_processor import ResponseProcessor


@pytest.fixture
def detector(manager: ReferenceContextManager) -> ReferenceResponseProcessor:
    """Provide a detector bound to the test context manager."""
    return ReferenceResponseProcessor(manager)


async def _placeholder_json(processor: ResponseProcessor, text: str) -> tuple[str, str]:
    result = await processor.process_response(
        {"content": [{"type": "text", "text": text}]}, "files", "read_file"
    )
    placeholder = result.content["content"][0]
    return orjson.dumps(placeholder).decode("utf-8"), placeholder["referenceId"]


class TestDetection:
    """Test finding references in agent text."""

    @pytest.mark.asyncio
    async def test_plain_text_unchanged(self, detector: ReferenceResponseProcessor) -> None:
        """Test that text without references passes through."""
        result = await detector.process_response("The build passed.")

        assert not result.has_references
        assert result.reference_count == 0
        assert result.content == "The build passed."

    @pytest.mark.asyncio
    async def test_placeholder_rendered_as_card(
        self, detector: ReferenceResponseProcessor, processor: ResponseProcessor
    ) -> None:
        """Test that an echoed placeholder becomes a card."""
        placeholder, reference_id = await _placeholder_json(processor, "log line " * 200)

        result = await detector.process_response(f"Here is the log:\n{placeholder}\nDone.")

        assert result.has_references
        assert result.reference_count == 1
        assert len(result.context_ids) == 1
        assert result.content.startswith("Here is the log:\n**Large Content Reference**")
        assert "content_reference" not in result.content
        assert f"*Reference ID: {reference_id[:12]}...*" in result.content
        assert "\nDone.\n\n" in result.content
        assert result.content.endswith('refer to it as "it" or by its context ID.')

    @pytest.mark.asyncio
    async def test_nested_placeholder_rendered_whole(
        self, detector: ReferenceResponseProcessor, processor: ResponseProcessor
    ) -> None:
        """Test that a placeholder inside an outer object is replaced in full."""
        placeholder, reference_id = await _placeholder_json(processor, "entry " * 300)
        assert '"ref://{id}"' in placeholder

        result = await detector.process_response(
            f'{{"result": {placeholder}}}',
            ResponseProcessingOptions(include_reference_instructions=False),
        )

        assert result.reference_count == 1
        assert result.content.startswith('{"result": **Large Content Reference**')
        assert result.content.endswith("}")
        assert "content_reference" not in result.content
        assert "ref://{id}" not in result.content
        assert f"ref://{reference_id}" not in result.content

    @pytest.mark.asyncio
    async def test_plain_uri_resolved(
        self,
        detector: ReferenceResponseProcessor,
        processor: ResponseProcessor,
        manager: ReferenceContextManager,
    ) -> None:
        """Test that a bare ref:// URI is resolved through the store."""
        _, reference_id = await _placeholder_json(processor, "row,value\n" * 150)

        result = await detector.process_response(
            f"See ref://{reference_id} for details.",
            ResponseProcessingOptions(include_reference_instructions=False),
        )

        assert result.reference_count == 1
        assert result.content.startswith("See **Large Content Reference**")
        assert result.content.endswith("for details.")
        assert reference_id in manager

    @pytest.mark.asyncio
    async def test_unknown_uri_reported(self, detector: ReferenceResponseProcessor) -> None:
        """Test that an unresolvable URI is replaced with a notice."""
        missing = "b" * 64

        result = await detector.process_response(
            f"Old output: ref://{missing}",
            ResponseProcessingOptions(include_reference_instructions=False),
        )

        assert result.content == f"Old output: Reference unavailable: {missing[:12]}..."
        assert result.context_ids == ()
        assert result.suggested_actions == ("Request fresh content",)

    @pytest.mark.asyncio
    async def test_expired_placeholder(
        self,
        detector: ReferenceResponseProcessor,
        processor: ResponseProcessor,
        clock: FakeClock,
    ) -> None:
        """Test that a placeholder for expired content renders as expired."""
        placeholder, _ = await _placeholder_json(processor, "stale " * 300)
        clock.advance(minutes=31)

        result = await detector.process_response(placeholder)

        assert result.has_references
        assert result.content.startswith("**Content Reference Expired**")
        assert "Request fresh content" in result.suggested_actions
        assert result.context_ids == ()

    @pytest.mark.asyncio
    async def test_multiple_references_instructions(
        self, detector: ReferenceResponseProcessor, processor: ResponseProcessor
    ) -> None:
        """Test the footer for several displayed references."""
        first, _ = await _placeholder_json(processor, "alpha " * 300)
        second, _ = await _placeholder_json(processor, "beta " * 300)

        result = await detector.process_response(
            f"{first}\n{second}",
            ResponseProcessingOptions(
                display_options=ResponseProcessingOptions().display_options.with_changes(
                    format="compact"
                )
            ),
        )

        assert result.reference_count == 2
        assert len(result.context_ids) == 2
        assert result.content.count("Referenced content (") == 2
        assert result.content.endswith('say "it" for the most recent one or specify its context ID.')

    @pytest.mark.asyncio
    async def test_auto_display_disabled(
        self, detector: ReferenceResponseProcessor, processor: ResponseProcessor
    ) -> None:
        """Test detection without rendering."""
        placeholder, _ = await _placeholder_json(processor, "gamma " * 300)
        text = f"Result: {placeholder}"

        result = await detector.process_response(
            text, ResponseProcessingOptions(auto_display_references=False)
        )

        assert result.has_references
        assert result.content == (
            text + "\n\nReferenced content can be retrieved by its reference ID."
        )

    @pytest.mark.asyncio
    async def test_malformed_placeholder_ignored(
        self, detector: ReferenceResponseProcessor
    ) -> None:
        """Test that placeholders without a valid id are left alone."""
        text = '{"type": "content_reference", "referenceId": "nope"}'

        result = await detector.process_response(text)

        assert not result.has_references
        assert result.content == text


class TestPassthroughs:
    """Test context operations exposed on the detector."""

    @pytest.mark.asyncio
    async def test_stats_validate_and_cleanup(
        self,
        detector: ReferenceResponseProcessor,
        processor: ResponseProcessor,
        store: ContentStore,
        clock: FakeClock,
    ) -> None:
        """Test stats, validation and cleanup through the detector."""
        placeholder, reference_id = await _placeholder_json(processor, "delta " * 300)
        await detector.process_response(placeholder)

        assert detector.get_context_stats().active_references == 1
        report = await detector.validate_all_references()
        assert report.valid == 1

        clock.advance(minutes=45)
        assert detector.cleanup_old_references(30 * 60 * 1000) == 1
        assert detector.get_context_stats().active_references == 0
        assert not await store.has_reference(reference_id)
