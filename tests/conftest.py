"""
Pytest configuration and fixtures for content reference tests.
"""

from __future__ import annotations

import os
from typing import AsyncGenerator, Callable, Generator
from unittest.mock import patch

import pytest

from fakes import FakeClock
from toolref.cache.base import ReferenceStoreConfig
from toolref.cache.content_store import ContentStore
from toolref.config import Settings, clear_settings_cache
from toolref.context.reference_context import ReferenceContextManager
from toolref.processing.response_processor import ResponseProcessor
from toolref.types import (
    ContentReference,
    ContentSource,
    ContentType,
    ReferenceMetadata,
)

TEST_THRESHOLD_BYTES = 1000


@pytest.fixture
def clock() -> FakeClock:
    """Provide a controllable clock."""
    return FakeClock()


@pytest.fixture
def store_config() -> ReferenceStoreConfig:
    """Store configuration with a small threshold."""
    return ReferenceStoreConfig(size_threshold_bytes=TEST_THRESHOLD_BYTES)


@pytest.fixture
async def store(
    store_config: ReferenceStoreConfig, clock: FakeClock
) -> AsyncGenerator[ContentStore, None]:
    """Create an initialized content store for testing."""
    content_store = ContentStore(store_config, clock=clock)
    await content_store.init()
    yield content_store
    await content_store.dispose()


@pytest.fixture
def manager(store: ContentStore, clock: FakeClock) -> ReferenceContextManager:
    """Provide a context manager backed by the test store."""
    return ReferenceContextManager(store, clock=clock)


@pytest.fixture
def processor(store: ContentStore) -> ResponseProcessor:
    """Provide a response processor backed by the test store."""
    return ResponseProcessor(store)


@pytest.fixture
def make_reference(clock: FakeClock) -> Callable[..., ContentReference]:
    """Factory for references that are not backed by the store."""

    def _make(
        reference_id: str = "a" * 64,
        preview: str = "Quarterly report preview",
        size_bytes: int = 2048,
        file_name: str | None = None,
        content_type: ContentType = ContentType.TEXT,
    ) -> ContentReference:
        return ContentReference(
            reference_id=reference_id,
            preview=preview,
            metadata=ReferenceMetadata(
                content_type=content_type,
                size_bytes=size_bytes,
                source=ContentSource.MCP_TOOL,
                file_name=file_name,
            ),
            created_at=clock(),
        )

    return _make


@pytest.fixture
def mock_env_vars() -> Generator[dict[str, str], None, None]:
    """Provide mock environment variables for testing."""
    env_vars = {
        "CONTENT_SIZE_THRESHOLD_BYTES": "2048",
        "MAX_REFERENCES": "25",
        "ENABLE_AUTO_CLEANUP": "true",
        "CLEANUP_INTERVAL_SECONDS": "60",
        "RECENT_MAX_AGE_SECONDS": "600",
        "CONTEXT_MAX_AGE_SECONDS": "900",
        "LOG_LEVEL": "DEBUG",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def test_settings() -> Settings:
    """Settings with a small threshold and no .env file."""
    return Settings(_env_file=None, CONTENT_SIZE_THRESHOLD_BYTES=TEST_THRESHOLD_BYTES)


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
