"""
Structured logging for the tool content reference system.

Provides:
- Context variables for session_id, server, tool (using contextvars)
- JSONFormatter for machine-readable logs to file
- ContextRichHandler for pretty console output
- ContextLogger wrapper that attaches context and keyword fields to log calls
- setup_logging() that configures both file and console handlers
- log_context() for scoped context
- get_logger() factory
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator

import orjson
from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

_ROOT_LOGGER = "toolref"

_session_id_var: ContextVar[str | None] = ContextVar("session_id", default=None)
_server_var: ContextVar[str | None] = ContextVar("server", default=None)
_tool_var: ContextVar[str | None] = ContextVar("tool", default=None)


def get_session_id() -> str | None:
    """Get the current conversation session ID from context."""
    return _session_id_var.get()


def get_server() -> str | None:
    """Get the current MCP server name from context."""
    return _server_var.get()


def get_tool() -> str | None:
    """Get the current tool name from context."""
    return _tool_var.get()


def _current_context() -> dict[str, str]:
    context: dict[str, str] = {}
    session_id = get_session_id()
    server = get_server()
    tool = get_tool()
    if session_id:
        context["session_id"] = session_id
    if server:
        context["server"] = server
    if tool:
        context["tool"] = tool
    return context


@contextmanager
def log_context(
    session_id: str | None = None,
    server: str | None = None,
    tool: str | None = None,
) -> Generator[None, None, None]:
    """Context manager for scoped logging context.

    Args:
        session_id: Conversation session ID to set in context.
        server: MCP server name to set in context.
        tool: Tool name to set in context.

    Yields:
        None. Context variables are set for the duration of the context.
    """
    tokens = []
    try:
        if session_id is not None:
            tokens.append((_session_id_var, _session_id_var.set(session_id)))
        if server is not None:
            tokens.append((_server_var, _server_var.set(server)))
        if tool is not None:
            tokens.append((_tool_var, _tool_var.set(tool)))
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


class JSONFormatter(logging.Formatter):
    """JSON formatter for machine-readable log files.

    Produces JSON Lines format with structured context.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON."""
        log_obj: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_obj.update(_current_context())

        if hasattr(record, "extra"):
            log_obj["extra"] = record.extra

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return orjson.dumps(log_obj, default=str).decode("utf-8")


class ContextRichHandler(RichHandler):
    """Rich handler that includes context in console output."""

    def get_level_text(self, record: logging.LogRecord) -> Text:
        """Override to add context prefix."""
        level_text = super().get_level_text(record)

        parts: list[str] = []
        session_id = get_session_id()
        server = get_server()
        tool = get_tool()

        if session_id:
            short_id = session_id.split("_")[-1][:8] if "_" in session_id else session_id[:8]
            parts.append(f"[dim]{short_id}[/dim]")
        if server:
            parts.append(f"[cyan]{server}[/cyan]")
        if tool:
            parts.append(f"[magenta]{tool}[/magenta]")

        if parts:
            level_text.append(" ")
            level_text.append_text(Text.from_markup(" ".join(parts)))

        return level_text


class ContextLogger:
    """Logger wrapper that automatically attaches context to log calls.

    Keyword arguments other than the standard logging ones are collected into
    a structured ``extra`` dict, e.g. ``logger.info("Stored", reference_id=rid)``.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @property
    def name(self) -> str:
        """Get the logger name."""
        return self._logger.name

    def isEnabledFor(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)

    def _log(
        self,
        level: int,
        msg: str,
        *args: Any,
        exc_info: bool = False,
        **kwargs: Any,
    ) -> None:
        extra = kwargs.pop("extra", {})
        extra.update(_current_context())

        for key in list(kwargs.keys()):
            if key not in ("stack_info", "stacklevel"):
                extra[key] = kwargs.pop(key)

        self._logger.log(level, msg, *args, exc_info=exc_info, extra={"extra": extra})

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log debug message."""
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log info message."""
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log warning message."""
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, exc_info: bool = False, **kwargs: Any) -> None:
        """Log error message."""
        self._log(logging.ERROR, msg, *args, exc_info=exc_info, **kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log exception with traceback."""
        self._log(logging.ERROR, msg, *args, exc_info=True, **kwargs)


_console: Console | None = None
_setup_done: bool = False


def get_console() -> Console:
    """Get the global rich console."""
    global _console
    if _console is None:
        _console = Console(stderr=True)
    return _console


def setup_logging(
    log_level: str = "INFO",
    log_file: Path | None = None,
    console_output: bool = True,
) -> None:
    """Set up logging with JSON file handler and rich console handler.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Path to log file. If None, only console logging is enabled.
        console_output: Whether to enable console output.
    """
    global _setup_done

    root_logger = logging.getLogger(_ROOT_LOGGER)
    root_logger.setLevel(getattr(logging, log_level.upper()))
    root_logger.handlers.clear()

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        file_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(file_handler)

    if console_output:
        rich_handler = ContextRichHandler(
            console=get_console(),
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
            tracebacks_show_locals=False,
            markup=True,
        )
        rich_handler.setLevel(getattr(logging, log_level.upper()))
        root_logger.addHandler(rich_handler)

    # Records still propagate so host applications (and pytest's caplog) see them.
    root_logger.propagate = True

    logging.getLogger("asyncio").setLevel(logging.WARNING)

    _setup_done = True


def get_logger(name: str) -> ContextLogger:
    """Get a context-aware logger.

    Args:
        name: Logger name (usually __name__).

    Returns:
        ContextLogger wrapper around the standard logger.
    """
    if not _setup_done:
        setup_logging()

    if not name.startswith(_ROOT_LOGGER):
        name = f"{_ROOT_LOGGER}.{name}"

    return ContextLogger(logging.getLogger(name))
