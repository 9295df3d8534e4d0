"""
Constants for MDB_HELPERS.

This module contains all shared constants used across the codebase to avoid
magic numbers and improve maintainability.
"""

import sys
from typing import Final

# ============================================================================
# CONNECTION CONSTANTS
# ============================================================================

DEFAULT_KEEP_ALIVE_MS: Final[int] = 2000
"""Default interval between server heartbeats (milliseconds)."""

DEFAULT_CONNECT_TIMEOUT_MS: Final[int] = 30000  # 30 seconds
"""Default connection timeout in milliseconds."""

DEFAULT_RECONNECT_TRIES: Final[int] = sys.maxsize
"""Default number of times an unsuccessful open is retried."""

DEFAULT_RECONNECT_INTERVAL_MS: Final[int] = 1000
"""Default wait between two open attempts (milliseconds)."""

DEFAULT_SERVER_SELECTION_TIMEOUT_MS: Final[int] = 5000
"""Default server selection timeout in milliseconds."""

DEFAULT_SHUTDOWN_TIMEOUT_MS: Final[int] = 5000
"""Default time budget for closing the connection (milliseconds)."""

DEFAULT_DB_NAME: Final[str] = "test"
"""Database used when neither the URI nor the config names one."""

INVALID_DB_NAME_CHARACTERS: Final[str] = '/\\. "$\x00'
"""Characters the server rejects in database names."""

APP_NAME: Final[str] = "MDB_HELPERS"
"""Application name reported to the server."""

CONNECTION_REFUSED_MARKER: Final[str] = "connection refused"
"""Lower-cased fragment identifying a transport-level refusal."""

# ============================================================================
# RESET CONSTANTS
# ============================================================================

SYSTEM_COLLECTION_PREFIX: Final[str] = "system."
"""Collections whose name starts with this prefix are never reset."""

DEFAULT_RESET_MAX_ATTEMPTS: Final[int] = 10
"""Total number of attempts for one reset batch."""

DEFAULT_RESET_BACKOFF_FACTOR: Final[float] = 2
"""Exponential growth factor between two reset attempts."""

DEFAULT_RESET_MIN_DELAY_MS: Final[int] = 10
"""Delay before the first retry (milliseconds)."""

DEFAULT_RESET_MAX_DELAY_MS: Final[int] = 1000
"""Upper bound of the delay between two attempts (milliseconds)."""

RESET_WRITE_CONCERN_W: Final[int] = 1
"""Write acknowledgement level requested by delete-all operations."""

NAMESPACE_NOT_FOUND_CODE: Final[int] = 26
"""Server error code returned for operations on a missing collection."""

# ============================================================================
# SCHEMA CONSTANTS
# ============================================================================

HOOKED_QUERY_METHODS: Final[tuple[str, ...]] = (
    "find",
    "find_one",
    "update_one",
    "update_many",
    "find_one_and_update",
    "count_documents",
)
"""Query methods receiving the hooks registered with hook_all_methods()."""

# ============================================================================
# ENVIRONMENT VARIABLES
# ============================================================================

ENV_CONNECTION_STRING: Final[str] = "MONGO_CONNECTION_STRING"
ENV_TEST_CONNECTION_STRING: Final[str] = "MONGO_CONNECTION_STRING_TEST"
ENV_MODE: Final[str] = "MDB_HELPERS_ENV"
TEST_MODE: Final[str] = "test"
