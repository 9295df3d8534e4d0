"""
Database layer.

Connection lifecycle, collection enumeration and the bounded-retry reset
used to restore a shared database between test runs.
"""

from .collections import is_system_collection, list_resettable_collections
from .connection import (
    ConnectionManager,
    ConnectionState,
    LifecycleListener,
    db_shutdown,
    get_connection,
    get_default_manager,
    init_connection,
    init_connection_from_config,
    is_connection_refused,
    reset_default_manager,
)
from .reset import (
    ResetEngine,
    RetryPolicy,
    clear_collections,
    clear_indexes,
    delete_all_documents,
    drop_all_indexes,
    terminate_process,
)

__all__ = [
    # Connection
    "ConnectionManager",
    "ConnectionState",
    "LifecycleListener",
    "is_connection_refused",
    "init_connection",
    "init_connection_from_config",
    "get_connection",
    "db_shutdown",
    "get_default_manager",
    "reset_default_manager",
    # Enumeration
    "is_system_collection",
    "list_resettable_collections",
    # Reset
    "ResetEngine",
    "RetryPolicy",
    "delete_all_documents",
    "drop_all_indexes",
    "terminate_process",
    "clear_collections",
    "clear_indexes",
]
