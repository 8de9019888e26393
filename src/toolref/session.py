"""
Session wiring for one agent conversation.

reference_session() builds the store, processor and context manager for a
conversation and guarantees the store is disposed on every exit path:

    async with reference_session() as session:
        result = await session.process_tool_response(response, "files", "read_file")
        ...
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator

from toolref.cache.base import ReferenceStoreConfig
from toolref.cache.content_store import ContentStore
from toolref.config import Settings, get_settings
from toolref.context.reference_context import ReferenceContextManager
from toolref.context.reference_detector import ReferenceResponseProcessor
from toolref.logging import get_logger, log_context, setup_logging
from toolref.processing.response_processor import ResponseProcessor
from toolref.types import Clock, ProcessingResult, ValidationReport, generate_id, utc_now

logger = get_logger(__name__)


@dataclass
class ReferenceSession:
    """Components serving one conversation."""

    session_id: str
    settings: Settings
    store: ContentStore
    processor: ResponseProcessor
    context: ReferenceContextManager
    detector: ReferenceResponseProcessor

    async def process_tool_response(
        self, response: Any, server_name: str, tool_name: str
    ) -> ProcessingResult:
        """Process a tool response and track any references it produced."""
        result = await self.processor.process_response(response, server_name, tool_name)
        for reference in result.references:
            self.context.add_reference(reference)
        return result

    async def refresh_context(self) -> tuple[ValidationReport, int]:
        """Drop references the store lost, then references idle past the configured age.

        Returns:
            The validation report and the number of idle references removed.
        """
        report = await self.context.validate_references()
        removed = self.context.cleanup_old_references(self.settings.context_max_age_ms)
        if report.invalid or removed:
            logger.info(
                "Refreshed conversation references",
                invalid=report.invalid,
                idle_removed=removed,
            )
        return report, removed


@asynccontextmanager
async def reference_session(
    settings: Settings | None = None,
    clock: Clock = utc_now,
) -> AsyncIterator[ReferenceSession]:
    """Open a reference session for one conversation.

    Args:
        settings: Settings to use. Defaults to get_settings(). Logging is
            configured from its LOG_LEVEL and LOG_FILE.
        clock: Source of the current time shared by store and manager.

    Yields:
        ReferenceSession whose store is disposed when the block exits.
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL, settings.LOG_FILE)
    session_id = generate_id("sess")

    with log_context(session_id=session_id):
        store = ContentStore(ReferenceStoreConfig.from_settings(settings), clock=clock)
        await store.init()
        try:
            context = ReferenceContextManager(
                store, clock=clock, default_max_age_ms=settings.context_max_age_ms
            )
            logger.debug("Opened reference session")
            yield ReferenceSession(
                session_id=session_id,
                settings=settings,
                store=store,
                processor=ResponseProcessor(store),
                context=context,
                detector=ReferenceResponseProcessor(context),
            )
        finally:
            await store.dispose()
            logger.debug("Closed reference session")
