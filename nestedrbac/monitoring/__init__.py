"""Logging setup for the nested-set RBAC engine."""

from nestedrbac.monitoring.logging import (
    bind_context,
    clear_context,
    configure_file_logging,
    configure_logging,
    get_logger,
    get_processors,
    sanitize_event_dict,
    sanitize_log_message,
)

__all__ = [
    "bind_context",
    "clear_context",
    "configure_file_logging",
    "configure_logging",
    "get_logger",
    "get_processors",
    "sanitize_event_dict",
    "sanitize_log_message",
]
