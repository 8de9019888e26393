"""
Conversation context package.

This package tracks content references across a conversation:
- ReferenceContextManager: per-session tracking, display, validation and cleanup
- ReferenceResponseProcessor: renders references embedded in agent replies
- format_bytes / truncate_text: display helpers
"""

from toolref.context.formatting import format_bytes, truncate_text
from toolref.context.reference_context import ReferenceContextManager
from toolref.context.reference_detector import (
    ReferenceProcessingResult,
    ReferenceResponseProcessor,
    ResponseProcessingOptions,
)

__all__ = [
    "ReferenceContextManager",
    "ReferenceProcessingResult",
    "ReferenceResponseProcessor",
    "ResponseProcessingOptions",
    "format_bytes",
    "truncate_text",
]
