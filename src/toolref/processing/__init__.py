"""
Tool response processing.

This package provides:
- ResponseProcessor: classifies tool response items and externalizes oversized ones
- build_reference_placeholder: the placeholder dict substituted into responses
"""

from toolref.processing.response_processor import (
    ResponseProcessor,
    build_reference_placeholder,
)

__all__ = ["ResponseProcessor", "build_reference_placeholder"]
