"""
Reference detection in agent responses.

Agents sometimes echo reference placeholders or ``ref://`` URIs back in their
replies. ReferenceResponseProcessor finds them and swaps in rendered displays
from the ReferenceContextManager, so the user sees a readable card instead of
raw JSON or a hash.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

import orjson

from toolref.cache.content_store import create_preview
from toolref.cache.reference_ids import is_valid_reference_id
from toolref.context.reference_context import ReferenceContextManager
from toolref.logging import get_logger
from toolref.types import (
    ContentReference,
    ContentSource,
    ContentType,
    ContextStats,
    DisplayOptions,
    ReferenceMetadata,
    ValidationReport,
    utc_now,
)

logger = get_logger(__name__)

_PLACEHOLDER_TYPE_RE = re.compile(r'"type"\s*:\s*"content_reference"')
_REF_URI_RE = re.compile(r"ref://([a-f0-9]{64})")


def _object_end(text: str, start: int) -> int | None:
    """Find the end of the brace-balanced object opening at ``start``.

    Braces inside JSON strings (such as ``"ref://{id}"``) do not count.

    Returns:
        Index one past the closing brace, or None if the object never closes.
    """
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index + 1
    return None


@dataclass(frozen=True)
class ResponseProcessingOptions:
    """Options for rendering references found in an agent response."""

    auto_display_references: bool = True
    display_options: DisplayOptions = field(default_factory=DisplayOptions)
    include_reference_instructions: bool = True
    contextualize_references: bool = True


@dataclass(frozen=True)
class ReferenceProcessingResult:
    """Agent response text after reference rendering."""

    content: str
    has_references: bool
    reference_count: int
    context_ids: tuple[str, ...] = ()
    suggested_actions: tuple[str, ...] = ()


@dataclass(frozen=True)
class _Match:
    start: int
    end: int
    reference: ContentReference | None = None
    reference_id: str | None = None


class ReferenceResponseProcessor:
    """Renders content references embedded in agent response text."""

    def __init__(self, context_manager: ReferenceContextManager) -> None:
        self.context_manager = context_manager

    async def process_response(
        self,
        response_content: str,
        options: ResponseProcessingOptions | None = None,
    ) -> ReferenceProcessingResult:
        """Replace embedded references with rendered displays.

        Never raises; on failure the input is returned unchanged.
        """
        options = options or ResponseProcessingOptions()
        try:
            matches = self._detect_references(response_content)
            if not matches:
                return ReferenceProcessingResult(
                    content=response_content,
                    has_references=False,
                    reference_count=0,
                )

            context_ids: list[str] = []
            suggested_actions: list[str] = []
            content = response_content

            if options.auto_display_references:
                content = await self._render(
                    response_content, matches, options.display_options, context_ids, suggested_actions
                )

            if options.include_reference_instructions:
                content += "\n\n" + self._instructions(
                    len(context_ids), options.contextualize_references
                )

            return ReferenceProcessingResult(
                content=content,
                has_references=True,
                reference_count=len(matches),
                context_ids=tuple(context_ids),
                suggested_actions=tuple(dict.fromkeys(suggested_actions)),
            )
        except Exception as e:
            logger.error("Error processing response references", error=str(e))
            return ReferenceProcessingResult(
                content=response_content,
                has_references=False,
                reference_count=0,
                suggested_actions=("Check reference system", "Try again"),
            )

    def get_context_stats(self) -> ContextStats:
        return self.context_manager.get_context_stats()

    async def validate_all_references(self) -> ValidationReport:
        return await self.context_manager.validate_references()

    def cleanup_old_references(self, max_age_ms: int | None = None) -> int:
        return self.context_manager.cleanup_old_references(max_age_ms)

    def _detect_references(self, content: str) -> list[_Match]:
        matches: list[_Match] = []
        covered: list[tuple[int, int]] = []

        start = content.find("{")
        while start != -1:
            end = _object_end(content, start)
            if end is not None and _PLACEHOLDER_TYPE_RE.search(content, start, end):
                reference = self._parse_placeholder(content[start:end])
                if reference is not None:
                    matches.append(_Match(start=start, end=end, reference=reference))
                    covered.append((start, end))
                    start = content.find("{", end)
                    continue
            # Not a placeholder; a nested object may still be one.
            start = content.find("{", start + 1)

        for m in _REF_URI_RE.finditer(content):
            if any(start <= m.start() < end for start, end in covered):
                continue
            matches.append(_Match(start=m.start(), end=m.end(), reference_id=m.group(1)))

        matches.sort(key=lambda match: match.start)
        return matches

    def _parse_placeholder(self, text: str) -> ContentReference | None:
        try:
            data: dict[str, Any] = orjson.loads(text)
        except orjson.JSONDecodeError as e:
            logger.warning("Failed to parse content reference", error=str(e))
            return None

        if not isinstance(data, dict) or data.get("type") != "content_reference":
            return None

        reference_id = data.get("referenceId")
        if not is_valid_reference_id(reference_id):
            return None

        try:
            content_type = ContentType(data.get("contentType") or ContentType.UNKNOWN)
        except ValueError:
            content_type = ContentType.UNKNOWN

        return ContentReference(
            reference_id=reference_id,
            preview=data.get("preview") or "",
            metadata=ReferenceMetadata(
                content_type=content_type,
                size_bytes=int(data.get("size") or 0),
                source=ContentSource.MCP_TOOL,
                mime_type=data.get("mimeType"),
            ),
            created_at=utc_now(),
        )

    async def _render(
        self,
        content: str,
        matches: list[_Match],
        display_options: DisplayOptions,
        context_ids: list[str],
        suggested_actions: list[str],
    ) -> str:
        parts: list[str] = []
        cursor = 0

        for match in matches:
            parts.append(content[cursor : match.start])
            cursor = match.end

            if match.reference is not None:
                display = await self.context_manager.display_reference(
                    match.reference, display_options
                )
                parts.append(display.display_text)
                if display.context_id:
                    context_ids.append(display.context_id)
                suggested_actions.extend(display.suggested_actions)
                continue

            parts.append(
                await self._render_plain(
                    match.reference_id or "", display_options, context_ids, suggested_actions
                )
            )

        parts.append(content[cursor:])
        return "".join(parts)

    async def _render_plain(
        self,
        reference_id: str,
        display_options: DisplayOptions,
        context_ids: list[str],
        suggested_actions: list[str],
    ) -> str:
        store = self.context_manager.store
        try:
            resolution = await store.resolve_reference(reference_id)
        except Exception as e:
            logger.warning("Failed to resolve plain reference", reference_id=reference_id[:12], error=str(e))
            return f"Reference error: {reference_id[:12]}..."

        if not resolution.success or resolution.metadata is None or resolution.content is None:
            suggested_actions.append("Request fresh content")
            return f"Reference unavailable: {reference_id[:12]}..."

        metadata = resolution.metadata
        reference = ContentReference(
            reference_id=reference_id,
            preview=create_preview(resolution.content, metadata.content_type),
            metadata=ReferenceMetadata.from_content_metadata(metadata),
            created_at=metadata.created_at,
        )
        display = await self.context_manager.display_reference(reference, display_options)
        if display.context_id:
            context_ids.append(display.context_id)
        suggested_actions.extend(display.suggested_actions)
        return display.display_text

    def _instructions(self, displayed: int, contextualize: bool) -> str:
        if contextualize and displayed == 1:
            return 'To use this content, refer to it as "it" or by its context ID.'
        if contextualize and displayed > 1:
            return (
                'To use any of this content, say "it" for the most recent one '
                "or specify its context ID."
            )
        return "Referenced content can be retrieved by its reference ID."
