"""
Content-derived reference identifiers.

Reference ids are the hex SHA-256 digest of the stored bytes, so the same
content always maps to the same id within a store.
"""

from __future__ import annotations

import hashlib
import re

from toolref.types import REFERENCE_FORMAT

_REFERENCE_ID_RE = re.compile(r"^[a-f0-9]{64}$")
_REF_URI_RE = re.compile(r"^ref://([a-f0-9]{64})$")


def generate_reference_id(content: bytes) -> str:
    """Generate a reference id from content bytes."""
    return hashlib.sha256(content).hexdigest()


def is_valid_reference_id(reference_id: object) -> bool:
    """Check that a value is a well-formed reference id."""
    return isinstance(reference_id, str) and bool(_REFERENCE_ID_RE.match(reference_id))


def extract_reference_id(value: str | None) -> str | None:
    """Extract a reference id from a bare id or a ``ref://`` URI.

    Returns:
        The reference id, or None if the input holds no valid id.
    """
    if not value or not isinstance(value, str):
        return None

    match = _REF_URI_RE.match(value)
    if match:
        return match.group(1)

    return value if is_valid_reference_id(value) else None


def format_reference(reference_id: str) -> str:
    """Format a reference id as a ``ref://`` URI."""
    return REFERENCE_FORMAT.format(id=reference_id)
