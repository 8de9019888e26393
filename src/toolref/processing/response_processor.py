"""
Tool response processor.

Sits in the critical path of every tool call: walks the response, classifies
each content item by size and MIME type, and swaps oversized items for
reference placeholders backed by the ContentStore. Work is in-memory and
linear in payload size.
"""

from __future__ import annotations

import copy
import posixpath
import time
from typing import Any

import orjson

from toolref.cache.content_store import ContentStore
from toolref.cache.reference_ids import format_reference
from toolref.logging import get_logger, log_context
from toolref.types import (
    ContentAnalysisResult,
    ContentItemAnalysis,
    ContentReference,
    ContentSource,
    ContentType,
    ProcessingResult,
)
from toolref.utils.mime import byte_length, detect_mime_type, estimate_base64_size

logger = get_logger(__name__)

# Bare strings outside content items are only considered past this length.
BARE_STRING_MIN_LENGTH = 1000

MCP_RESPONSE_TAG = "mcp_response"


def build_reference_placeholder(reference: ContentReference) -> dict[str, Any]:
    """Build the placeholder that replaces an oversized item in a response."""
    return {
        "type": "content_reference",
        "referenceId": reference.reference_id,
        "preview": reference.preview,
        "size": reference.metadata.size_bytes,
        "contentType": reference.metadata.content_type.value,
        "mimeType": reference.metadata.mime_type,
        "format": reference.format,
        "uri": format_reference(reference.reference_id),
        "isReference": True,
    }


class ResponseProcessor:
    """Externalizes oversized tool response content into a ContentStore."""

    def __init__(self, store: ContentStore) -> None:
        """Initialize the processor.

        Args:
            store: Store that receives oversized content.
        """
        self.store = store

    @property
    def size_threshold_bytes(self) -> int:
        """Size threshold shared with the store."""
        return self.store.config.size_threshold_bytes

    def analyze_response(self, response: Any) -> ContentAnalysisResult:
        """Classify every content item in a tool response.

        Args:
            response: Raw tool response (dicts, lists and strings).

        Returns:
            Per-item analysis plus whether anything needs externalizing. Items
            that cannot be classified are skipped and reported in ``errors``.
        """
        items: list[ContentItemAnalysis] = []
        errors: list[str] = []
        self._extract(response, (), items, errors)

        total_size = sum(item.size_bytes for item in items)
        largest = max((item.size_bytes for item in items), default=0)
        threshold = self.size_threshold_bytes

        return ContentAnalysisResult(
            should_process=largest > threshold or total_size > threshold,
            contents=tuple(items),
            total_size=total_size,
            largest_content_size=largest,
            errors=tuple(errors),
        )

    async def process_response(
        self,
        response: Any,
        server_name: str,
        tool_name: str,
    ) -> ProcessingResult:
        """Replace oversized items in a tool response with references.

        Each oversized item is stored independently; a failure on one item
        leaves that item untouched and is recorded in ``errors``.

        Args:
            response: Raw tool response.
            server_name: MCP server that produced the response.
            tool_name: Tool that produced the response.

        Returns:
            ProcessingResult with the (possibly) transformed response.
        """
        started = time.perf_counter()
        with log_context(server=server_name, tool=tool_name):
            try:
                analysis = self.analyze_response(response)
            except Exception as e:
                logger.error("Error analyzing tool response", error=str(e))
                return ProcessingResult(
                    content=response,
                    was_processed=False,
                    errors=[f"Failed to analyze response: {e}"],
                )

            if not analysis.should_process:
                return ProcessingResult(
                    content=response,
                    was_processed=False,
                    errors=list(analysis.errors) or None,
                )

            result = await self._create_referenced_response(
                response, analysis, server_name, tool_name
            )

            logger.debug(
                "Processed tool response",
                items=len(analysis.contents),
                references=len(result.references),
                errors=len(result.errors or []),
                elapsed_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            return result

    async def _create_referenced_response(
        self,
        response: Any,
        analysis: ContentAnalysisResult,
        server_name: str,
        tool_name: str,
    ) -> ProcessingResult:
        processed = copy.deepcopy(response)
        references: list[ContentReference] = []
        errors: list[str] = list(analysis.errors)
        stored_bytes = 0

        for index, item in enumerate(analysis.contents):
            if item.size_bytes <= self.size_threshold_bytes:
                continue

            try:
                reference = await self.store.store_content_if_large(
                    item.payload,
                    source=ContentSource.MCP_TOOL,
                    content_type=ContentType.from_mime_type(item.mime_type),
                    mime_type=item.mime_type,
                    mcp_tool_name=f"{server_name}::{tool_name}",
                    file_name=item.file_name,
                    tags=[MCP_RESPONSE_TAG, server_name, tool_name],
                )
            except Exception as e:
                logger.warning(
                    "Failed to create reference",
                    item=index,
                    item_type=item.type,
                    error=str(e),
                )
                errors.append(f"Failed to create reference for {item.type} item {index}: {e}")
                continue

            if reference is None:
                continue

            processed = _replace_at(processed, item.path, build_reference_placeholder(reference))
            references.append(reference)
            stored_bytes += byte_length(item.payload)

        if references:
            logger.info(
                "Replaced oversized tool output with references",
                count=len(references),
                stored_bytes=stored_bytes,
            )

        return ProcessingResult(
            content=processed if references else response,
            was_processed=True,
            reference_created=bool(references),
            references=references,
            original_size=stored_bytes,
            errors=errors or None,
        )

    def _extract(
        self,
        obj: Any,
        path: tuple[str | int, ...],
        items: list[ContentItemAnalysis],
        errors: list[str],
    ) -> None:
        if obj is None:
            return

        if isinstance(obj, (list, tuple)):
            for i, value in enumerate(obj):
                self._extract(value, path + (i,), items, errors)
            return

        if isinstance(obj, dict):
            try:
                item = self._classify_item(obj, path)
            except Exception as e:
                self._record_analysis_error(
                    obj.get("type"), len(items) + len(errors), e, errors
                )
                return
            if item is not None:
                items.append(item)
                return
            for key, value in obj.items():
                self._extract(value, path + (key,), items, errors)
            return

        if isinstance(obj, str) and len(obj) > BARE_STRING_MIN_LENGTH:
            try:
                item = ContentItemAnalysis(
                    type="text",
                    mime_type=detect_mime_type(obj),
                    size_bytes=byte_length(obj),
                    payload=obj,
                    path=path,
                )
            except Exception as e:
                self._record_analysis_error(
                    "text", len(items) + len(errors), e, errors
                )
                return
            items.append(item)

    def _record_analysis_error(
        self, item_type: Any, index: int, error: Exception, errors: list[str]
    ) -> None:
        logger.warning(
            "Failed to analyze content item",
            item=index,
            item_type=str(item_type),
            error=str(error),
        )
        errors.append(f"Failed to analyze {item_type} item {index}: {error}")

    def _classify_item(
        self, record: dict[str, Any], path: tuple[str | int, ...]
    ) -> ContentItemAnalysis | None:
        item_type = record.get("type")

        if item_type == "text" and isinstance(record.get("text"), str):
            text = record["text"]
            return ContentItemAnalysis(
                type="text",
                mime_type=detect_mime_type(text),
                size_bytes=byte_length(text),
                payload=text,
                path=path,
                file_name=record.get("fileName"),
            )

        if item_type == "image" and isinstance(record.get("data"), str):
            data = record["data"]
            return ContentItemAnalysis(
                type="image",
                mime_type=record.get("mimeType") or "image/jpeg",
                size_bytes=estimate_base64_size(data),
                payload=data,
                path=path,
                file_name=record.get("fileName"),
            )

        if item_type == "resource" and record.get("resource"):
            resource = record["resource"]
            payload = orjson.dumps(resource, default=str).decode("utf-8")
            mime_type = None
            file_name = None
            if isinstance(resource, dict):
                mime_type = resource.get("mimeType")
                uri = resource.get("uri")
                if isinstance(uri, str) and uri.rstrip("/"):
                    file_name = posixpath.basename(uri.rstrip("/")) or None
            return ContentItemAnalysis(
                type="resource",
                mime_type=mime_type or "application/json",
                size_bytes=byte_length(payload),
                payload=payload,
                path=path,
                file_name=file_name,
            )

        return None


def _replace_at(root: Any, path: tuple[str | int, ...], value: Any) -> Any:
    """Replace the node at ``path`` inside ``root``, returning the new root."""
    if not path:
        return value

    parent = root
    for key in path[:-1]:
        parent = parent[key]

    last = path[-1]
    if isinstance(parent, tuple):
        # Tuples are immutable; rebuild the chain up to the root.
        rebuilt = parent[:last] + (value,) + parent[last + 1 :]
        return _replace_at(root, path[:-1], rebuilt)

    parent[last] = value
    return root
