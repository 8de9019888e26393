"""Utility modules for the tool content reference system."""

from toolref.utils.mime import (
    byte_length,
    detect_mime_type,
    estimate_base64_size,
    sniff_content_type,
)

__all__ = [
    "byte_length",
    "detect_mime_type",
    "estimate_base64_size",
    "sniff_content_type",
]
