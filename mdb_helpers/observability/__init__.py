"""
Observability components.

Structured logging with context bound per task (correlation ID,
operation, database).
"""

from .logging import (
    ContextualLoggerAdapter,
    bind_log_context,
    clear_correlation_id,
    get_bound_context,
    get_correlation_id,
    get_logger,
    get_logging_context,
    log_operation,
    set_correlation_id,
)

__all__ = [
    "bind_log_context",
    "get_bound_context",
    "get_correlation_id",
    "set_correlation_id",
    "clear_correlation_id",
    "get_logging_context",
    "ContextualLoggerAdapter",
    "get_logger",
    "log_operation",
]
