"""
Structured logging for the access-control engine.

This module configures structlog over the standard library with:
- Pretty console output with rich tracebacks for development
- JSON output for every other environment
- An optional rotating file handler
- Control-character sanitisation of event values

Node titles and descriptions are caller supplied, so every string value
passing through the processor chain is escaped before rendering.

Examples
--------
>>> from nestedrbac.monitoring import get_logger
>>> logger = get_logger("nestedrbac.repositories.tree")
>>> logger.info("Node inserted", table="roles", node_id=4)
"""

from logging import INFO, StreamHandler, root
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from structlog import configure
from structlog import get_logger as struct_logger
from structlog.contextvars import bind_contextvars, clear_contextvars, merge_contextvars
from structlog.dev import ConsoleRenderer, RichTracebackFormatter
from structlog.processors import (
    JSONRenderer,
    StackInfoRenderer,
    UnicodeDecoder,
    add_log_level,
    format_exc_info,
)
from structlog.processors import (
    json as struct_json,
)
from structlog.stdlib import (
    BoundLogger,
    ExtraAdder,
    LoggerFactory,
    PositionalArgumentsFormatter,
    ProcessorFormatter,
    add_logger_name,
    filter_by_level,
)
from structlog.types import EventDict, Processor, WrappedLogger

from nestedrbac.configs.settings import Settings, settings
from nestedrbac.utils.helpers import today_str

# Characters to sanitize to prevent log injection
CONTROL_CHARS = str.maketrans({"\n": "\\n", "\r": "\\r", "\t": "\\t", "\x00": ""})


def sanitize_log_message(message: str) -> str:
    r"""
    Remove control characters and sanitize log messages.

    Args:
        message: Raw log message that might contain injection attempts.

    Returns:
        Sanitized message with control characters escaped or removed.

    Examples:
    --------
    >>> sanitize_log_message("Hello\nWorld")
    'Hello\\nWorld'
    """
    return message.translate(CONTROL_CHARS)


def add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """
    Add a local timestamp to the log entry.

    Args:
        logger: The wrapped logger instance.
        method_name: The name of the logging method being called.
        event_dict: The event dictionary being built.

    Returns:
        Updated event dictionary with timestamp.
    """
    event_dict["timestamp"] = today_str()
    return event_dict


def sanitize_event_dict(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """
    Escape control characters in every string value of the event.

    Args:
        logger: The wrapped logger instance.
        method_name: The name of the logging method being called.
        event_dict: The event dictionary being built.

    Returns:
        Sanitized event dictionary.
    """
    for key, value in event_dict.items():
        if isinstance(value, str):
            event_dict[key] = sanitize_log_message(value)
    return event_dict


def get_processors(config: Settings | None = None, *, colors: bool = True) -> list[Processor]:
    """
    Get the list of structlog processors based on environment.

    Args:
        config: Settings to read the environment from.
        colors: Whether to enable colors in ConsoleRenderer.

    Returns:
        List of processors, the renderer last.
    """
    config = config or settings
    processors: list[Processor] = [
        filter_by_level,
        merge_contextvars,
        add_log_level,
        add_timestamp,
        sanitize_event_dict,
        ExtraAdder(),
    ]

    if config.ENVIRONMENT == "development":
        processors.append(
            ConsoleRenderer(
                colors=colors,
                pad_level=False,
                exception_formatter=RichTracebackFormatter(),
            ),
        )
    else:
        processors.append(JSONRenderer(serializer=struct_json.dumps))

    return processors


def _formatter(config: Settings, *, colors: bool) -> ProcessorFormatter:
    return ProcessorFormatter(
        processors=[
            ProcessorFormatter.remove_processors_meta,
            sanitize_event_dict,
            get_processors(config, colors=colors)[-1],
        ],
        foreign_pre_chain=[
            add_log_level,
            add_timestamp,
        ],
    )


def configure_logging(config: Settings | None = None) -> None:
    """Configure structured logging for the engine."""
    config = config or settings
    # Clear any existing root handlers to prevent duplicates
    root.handlers.clear()
    root.setLevel(config.LOG_LEVEL.upper())

    configure(
        processors=[
            filter_by_level,
            merge_contextvars,
            add_logger_name,
            add_log_level,
            add_timestamp,
            PositionalArgumentsFormatter(),
            StackInfoRenderer(),
            format_exc_info,
            UnicodeDecoder(),
            ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=BoundLogger,
        cache_logger_on_first_use=True,
    )

    console_handler = StreamHandler()
    console_handler.setFormatter(_formatter(config, colors=True))
    root.addHandler(console_handler)
    configure_file_logging(config)


def configure_file_logging(config: Settings | None = None) -> RotatingFileHandler | None:
    """Attach a rotating file handler when ``LOG_TO_FILE`` is enabled."""
    config = config or settings
    if not config.LOG_TO_FILE:
        return None

    log_file = Path(config.LOG_FILE)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=5 * 1024 * 1024,
        backupCount=5,
    )
    file_handler.setLevel(INFO)
    # File formatter (colors disabled for clean text log)
    file_handler.setFormatter(_formatter(config, colors=False))
    root.addHandler(file_handler)
    return file_handler


def get_logger(name: str) -> BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: The name of the logger (typically __name__).

    Returns:
        Configured structlog BoundLogger instance.

    Examples:
    --------
    >>> logger = get_logger("nestedrbac.rbac.checker")
    >>> logger.info("Access denied", user_id=7)
    """
    return struct_logger(name)


def bind_context(**values: Any) -> None:
    """
    Bind values to the current logging context.

    Examples:
    --------
    >>> bind_context(operation="seed")
    >>> logger.info("Seeding roles")  # Will include operation
    """
    bind_contextvars(**values)


def clear_context() -> None:
    """Clear all bound context variables."""
    clear_contextvars()
