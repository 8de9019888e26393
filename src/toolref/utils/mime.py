"""MIME type and size helpers for tool output classification.

Classification is purely syntactic; no content is interpreted beyond
the markers checked here.
"""

from __future__ import annotations

import math
import re

import orjson

from toolref.types import ContentType

_MARKDOWN_HEADING_RE = re.compile(r"^#{1,6}[ \t]+\S", re.MULTILINE)
_HTML_MARKERS = ("<!doctype html", "<html")


def byte_length(content: bytes | str) -> int:
    """Get the size of content in bytes, measuring strings as UTF-8."""
    if isinstance(content, (bytes, bytearray)):
        return len(content)
    return len(content.encode("utf-8", errors="surrogatepass"))


def estimate_base64_size(data: str) -> int:
    """Estimate decoded size of a base64 payload."""
    return math.ceil(len(data) * 0.75)


def _is_json(text: str) -> bool:
    try:
        orjson.loads(text)
    except orjson.JSONDecodeError:
        return False
    return True


def detect_mime_type(text: str) -> str:
    """Infer the MIME type of tool output text.

    Precedence: JSON, then HTML document, then Markdown headings, then plain text.
    """
    stripped = text.strip()
    if stripped and _is_json(stripped):
        return "application/json"
    if stripped.lower().startswith(_HTML_MARKERS):
        return "text/html"
    if _MARKDOWN_HEADING_RE.search(text):
        return "text/markdown"
    return "text/plain"


def sniff_content_type(content: bytes, mime_type: str | None = None) -> ContentType:
    """Classify stored bytes, preferring a declared MIME type."""
    if mime_type:
        return ContentType.from_mime_type(mime_type)

    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError:
        return ContentType.BINARY

    return ContentType.from_mime_type(detect_mime_type(text))
