"""
Structured logging for MDB_HELPERS.

Log records emitted through get_logger() carry a timestamp plus whatever
fields are bound in the current context (a correlation ID, the reset
operation being run, the database name). Binding is scoped with
bind_log_context() and follows asyncio tasks through contextvars.

Usage:
    logger = get_logger(__name__)

    with bind_log_context(operation="reset_all_data", db_name="app_test"):
        logger.warning("retrying")   # record.operation == "reset_all_data"
"""

import contextvars
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Mapping

CORRELATION_ID_KEY = "correlation_id"

_bound_context: contextvars.ContextVar[Mapping[str, Any]] = contextvars.ContextVar(
    "mdb_helpers_log_context", default={}
)


def get_bound_context() -> dict[str, Any]:
    """Fields bound to the current context."""
    return dict(_bound_context.get())


@contextmanager
def bind_log_context(**fields: Any) -> Iterator[dict[str, Any]]:
    """
    Bind fields to every record logged within the block.

    Nested blocks add to (and may shadow) the outer fields; the outer
    binding is restored on exit.

    Yields:
        The full set of fields bound inside the block
    """
    merged = {**_bound_context.get(), **fields}
    token = _bound_context.set(merged)
    try:
        yield dict(merged)
    finally:
        _bound_context.reset(token)


def get_correlation_id() -> str | None:
    return _bound_context.get().get(CORRELATION_ID_KEY)


def set_correlation_id(correlation_id: str | None = None) -> str:
    """
    Bind a correlation ID to the current context until cleared.

    Args:
        correlation_id: ID to bind (a new UUID4 when None)

    Returns:
        The bound correlation ID
    """
    correlation_id = correlation_id or str(uuid.uuid4())
    _bound_context.set({**_bound_context.get(), CORRELATION_ID_KEY: correlation_id})
    return correlation_id


def clear_correlation_id() -> None:
    fields = dict(_bound_context.get())
    fields.pop(CORRELATION_ID_KEY, None)
    _bound_context.set(fields)


def get_logging_context() -> dict[str, Any]:
    """
    Fields added to every contextual record.

    Returns:
        A timestamp plus the fields bound to the current context
    """
    return {"timestamp": datetime.now().isoformat(), **_bound_context.get()}


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter adding the bound context to each record's extra fields."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**get_logging_context(), **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_logger(name: str) -> ContextualLoggerAdapter:
    return ContextualLoggerAdapter(logging.getLogger(name), {})


def log_operation(
    logger: logging.Logger | logging.LoggerAdapter,
    operation: str,
    level: int = logging.INFO,
    success: bool = True,
    duration_ms: float | None = None,
    **fields: Any,
) -> None:
    """
    Log the outcome of a connection or reset operation.

    Args:
        logger: Logger or adapter to emit on
        operation: Dotted operation name, e.g. "reset.reset_all_data"
        level: Log level
        success: Whether the operation succeeded
        duration_ms: Wall time of the operation
        **fields: Extra structured fields (attempts, collections, ...)
    """
    extra = {**get_logging_context(), "operation": operation, "success": success, **fields}
    outcome = "completed" if success else "failed"
    message = f"{operation} {outcome}"
    if duration_ms is not None:
        extra["duration_ms"] = round(duration_ms, 2)
        message += f" in {duration_ms:.2f}ms"
    logger.log(level, message, extra=extra)
