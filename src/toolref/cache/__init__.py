"""
Cache package for oversized tool output.

This package provides:
- Store configuration and the abstract store interface (base.py)
- Content-derived reference ids (reference_ids.py)
- The in-memory TTL content store (content_store.py)
"""

from toolref.cache.base import CleanupPolicy, ContentStoreProtocol, ReferenceStoreConfig
from toolref.cache.content_store import ContentStore, create_preview
from toolref.cache.reference_ids import (
    extract_reference_id,
    format_reference,
    generate_reference_id,
    is_valid_reference_id,
)

__all__ = [
    "CleanupPolicy",
    "ContentStore",
    "ContentStoreProtocol",
    "create_preview",
    "ReferenceStoreConfig",
    "extract_reference_id",
    "format_reference",
    "generate_reference_id",
    "is_valid_reference_id",
]
