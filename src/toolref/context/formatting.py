"""Text helpers for rendering references in conversation."""

from __future__ import annotations

_KB = 1024
_MB = 1024 * 1024


def format_bytes(size_bytes: int) -> str:
    """Render a byte count as KB below one MiB and MB from one MiB up.

    Examples:
        512 -> "0.5KB", 1536 -> "1.5KB", 1048575 -> "1024.0KB", 1048576 -> "1.0MB"
    """
    if size_bytes < _MB:
        return f"{size_bytes / _KB:.1f}KB"
    return f"{size_bytes / _MB:.1f}MB"


def truncate_text(text: str, max_length: int) -> str:
    """Truncate text to max_length characters, ending with an ellipsis when cut."""
    if len(text) <= max_length:
        return text
    return text[: max(0, max_length - 3)] + "..."
