"""
Connection management for MDB_HELPERS.

This module holds a single shared, lazily resolved handle to an open MongoDB
connection. The handle resolves at most once; every consumer awaiting it
observes the same database instance.

Usage:
    from mdb_helpers.database import ConnectionManager

    manager = ConnectionManager()
    manager.init_connection("mongodb://localhost:27017/app_test")
    db = await manager.get_connection()
    ...
    await manager.shutdown()

A process-default manager backs the module-level helpers (init_connection,
get_connection, db_shutdown) used by test harness entry points.
"""

import asyncio
import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Mapping

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import monitoring
from pymongo.errors import ConfigurationError, PyMongoError

from ..config import ConnectionOptions, HelpersConfig, merge_connection_options
from ..constants import CONNECTION_REFUSED_MARKER, DEFAULT_DB_NAME
from ..exceptions import (
    DatabaseConnectionRefusedError,
    InitializationError,
    InvalidConfigurationError,
    ShutdownError,
)
from ..observability import get_logger as get_contextual_logger
from ..observability import log_operation

logger = logging.getLogger(__name__)
contextual_logger = get_contextual_logger(__name__)


class ConnectionState(str, Enum):
    """Lifecycle states of a ConnectionManager."""

    UNRESOLVED = "unresolved"
    RESOLVING = "resolving"
    OPEN = "open"
    CLOSED = "closed"
    ERRORED = "errored"


def is_connection_refused(error: BaseException) -> bool:
    """
    Check whether an error is a transport-level connection refusal.

    Args:
        error: Exception raised by the driver

    Returns:
        True if the error message reports a refused connection
    """
    return CONNECTION_REFUSED_MARKER in str(error).lower()


class LifecycleListener(monitoring.ServerHeartbeatListener, monitoring.TopologyListener):
    """
    Driver event listener emitting lifecycle log lines.

    Driver events are published from background monitor threads, so errors
    seen here are only logged. Refusals are raised from the open path instead.
    """

    def started(self, event: Any) -> None:
        pass

    def succeeded(self, event: Any) -> None:
        pass

    def failed(self, event: Any) -> None:
        reply = getattr(event, "reply", event)
        contextual_logger.error(
            str(reply),
            extra={"event": "error", "server": str(getattr(event, "connection_id", ""))},
        )

    def opened(self, event: Any) -> None:
        logger.debug(f"Topology opened: {getattr(event, 'topology_id', '')}")

    def description_changed(self, event: Any) -> None:
        pass

    def closed(self, event: Any) -> None:
        contextual_logger.info(
            "mongodb connection successfully disconnected.",
            extra={"event": "disconnected"},
        )


class ConnectionManager:
    """
    Manages the lifecycle of one shared MongoDB connection.

    States move UNRESOLVED -> RESOLVING -> OPEN -> CLOSED, or to ERRORED
    when the open fails for good. Only init_connection() moves the handle
    out of UNRESOLVED; everything else treats it as read-only.
    """

    def __init__(
        self,
        client_factory: Callable[..., AsyncIOMotorClient] = AsyncIOMotorClient,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ) -> None:
        """
        Initialize the connection manager.

        Args:
            client_factory: Callable building the driver client
            sleep: Coroutine function used to wait between open attempts
        """
        self._client_factory = client_factory
        self._sleep = sleep

        # Connection state
        self._state: ConnectionState = ConnectionState.UNRESOLVED
        self._initialized: bool = False
        self._mongo_uri: str | None = None
        self._options: ConnectionOptions = ConnectionOptions()
        self._mongo_client: AsyncIOMotorClient | None = None
        self._mongo_db: AsyncIOMotorDatabase | None = None
        self._opened: asyncio.Future | None = None
        self._open_task: asyncio.Task | None = None

    def init_connection(
        self,
        mongo_uri: str | None,
        options: Mapping[str, Any] | ConnectionOptions | None = None,
    ) -> None:
        """
        Create the driver client and start opening the connection.

        Only the first successful call has an effect; later calls are no-ops
        even when given different arguments.

        Args:
            mongo_uri: MongoDB connection URI
            options: Overrides merged onto the default connection options

        Raises:
            InvalidConfigurationError: If mongo_uri is empty or the options are invalid
        """
        if not mongo_uri:
            raise InvalidConfigurationError(
                f"mongodb_uri '{mongo_uri}' is invalid",
                config_key="mongo_uri",
            )
        if self._initialized:
            logger.debug("Connection already initialized. Ignoring init_connection().")
            return

        connection_options = merge_connection_options(ConnectionOptions(), options)

        self._initialized = True
        self._mongo_uri = mongo_uri
        self._options = connection_options
        self._mongo_client = self._client_factory(
            mongo_uri,
            event_listeners=[LifecycleListener()],
            **connection_options.to_client_kwargs(),
        )
        self._state = ConnectionState.RESOLVING

        contextual_logger.info(
            "Initializing MongoDB connection",
            extra={
                "db_name": connection_options.db_name,
                "connect_timeout_ms": connection_options.connect_timeout_ms,
                "keep_alive_ms": connection_options.keep_alive_ms,
            },
        )

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet: opening starts with the first get_connection()
            return
        self._ensure_open_task()

    async def get_connection(self) -> AsyncIOMotorDatabase:
        """
        Wait for the connection to open and return its database.

        Callers arriving before the open event wait for it (including callers
        arriving before init_connection()); callers arriving after it get the
        resolved database immediately.

        Returns:
            The shared AsyncIOMotorDatabase instance

        Raises:
            DatabaseConnectionRefusedError: If the server refused the connection
            InitializationError: If the connection could not be opened or is closed
        """
        if self._state is ConnectionState.OPEN:
            return self._mongo_db
        if self._state is ConnectionState.CLOSED:
            raise InitializationError("MongoDB connection is closed", mongo_uri=self._mongo_uri)

        opened = self._ensure_opened_future()
        if self._state is ConnectionState.RESOLVING:
            self._ensure_open_task()
        return await asyncio.shield(opened)

    def _ensure_opened_future(self) -> asyncio.Future:
        if self._opened is None:
            self._opened = asyncio.get_running_loop().create_future()
        return self._opened

    def _ensure_open_task(self) -> None:
        self._ensure_opened_future()
        if self._open_task is None:
            self._open_task = asyncio.ensure_future(self._open())

    async def _open(self) -> None:
        """Ping the server until it answers, then resolve the connection."""
        try:
            await self._open_until_answered()
        except Exception as e:
            self._fail(
                InitializationError(
                    f"Failed to open MongoDB connection: {e}",
                    mongo_uri=self._mongo_uri,
                    context={"error_type": type(e).__name__},
                ),
                cause=e,
            )

    async def _open_until_answered(self) -> None:
        start_time = time.time()
        failures = 0

        while True:
            try:
                await self._mongo_client.admin.command("ping")
                break
            except (PyMongoError, OSError) as e:
                if is_connection_refused(e):
                    self._fail(
                        DatabaseConnectionRefusedError(
                            f"MongoDB refused the connection: {e}",
                            mongo_uri=self._mongo_uri,
                            context={"error_type": type(e).__name__},
                        ),
                        cause=e,
                    )
                    return

                contextual_logger.error(str(e), extra={"event": "error"})
                failures += 1
                if failures > self._options.reconnect_tries:
                    self._fail(
                        InitializationError(
                            f"Failed to connect to MongoDB: {e}",
                            mongo_uri=self._mongo_uri,
                            context={"error_type": type(e).__name__, "attempts": failures},
                        ),
                        cause=e,
                    )
                    return
                await self._sleep(self._options.reconnect_interval_ms / 1000)

        self._mongo_db = self._resolve_database()
        self._state = ConnectionState.OPEN
        if not self._opened.done():
            self._opened.set_result(self._mongo_db)

        duration_ms = (time.time() - start_time) * 1000
        log_operation(
            contextual_logger,
            "connection.open",
            duration_ms=duration_ms,
            db_name=self._mongo_db.name,
        )

    def _fail(self, error: InitializationError, cause: BaseException) -> None:
        error.__cause__ = cause
        self._state = ConnectionState.ERRORED
        contextual_logger.critical(
            "MongoDB connection failed",
            extra={"error_type": type(cause).__name__, "error": str(cause)},
        )
        if not self._opened.done():
            self._opened.set_exception(error)

    def _resolve_database(self) -> AsyncIOMotorDatabase:
        if self._options.db_name:
            return self._mongo_client[self._options.db_name]
        try:
            return self._mongo_client.get_default_database()
        except ConfigurationError:
            return self._mongo_client[DEFAULT_DB_NAME]

    async def shutdown(self, timeout: float | None = None) -> None:
        """
        Close the connection, best effort.

        This may be a sudden termination that does not wait for in-flight
        writes. Failures and timeouts are logged and never raised.

        Args:
            timeout: Time budget in seconds (defaults to the configured
                     shutdown timeout)
        """
        if self._mongo_client is None:
            return

        if timeout is None:
            timeout = self._options.shutdown_timeout_ms / 1000

        contextual_logger.info("shutting down db connection", extra={"event": "disconnecting"})
        start_time = time.time()

        if self._open_task is not None and not self._open_task.done():
            self._open_task.cancel()
        if self._opened is not None and not self._opened.done():
            self._opened.set_exception(
                InitializationError(
                    "MongoDB connection closed before it opened", mongo_uri=self._mongo_uri
                )
            )

        client = self._mongo_client
        try:
            loop = asyncio.get_running_loop()
            await asyncio.wait_for(loop.run_in_executor(None, client.close), timeout=timeout)
        except Exception as e:
            error = ShutdownError(
                f"Error closing MongoDB connection: {e}",
                context={"error_type": type(e).__name__},
            )
            contextual_logger.error(str(error), extra={"event": "error"})
            log_operation(
                contextual_logger,
                "connection.shutdown",
                level=logging.ERROR,
                success=False,
                duration_ms=(time.time() - start_time) * 1000,
            )
        else:
            log_operation(
                contextual_logger,
                "connection.shutdown",
                duration_ms=(time.time() - start_time) * 1000,
            )
        finally:
            self._state = ConnectionState.CLOSED
            self._mongo_client = None
            self._mongo_db = None

    @property
    def state(self) -> ConnectionState:
        """Current lifecycle state."""
        return self._state

    @property
    def initialized(self) -> bool:
        """Check if init_connection() has been accepted."""
        return self._initialized

    @property
    def options(self) -> ConnectionOptions:
        """Connection options in effect."""
        return self._options

    @property
    def mongo_client(self) -> AsyncIOMotorClient:
        """
        Get the MongoDB client.

        Raises:
            RuntimeError: If connection is not initialized or already closed
        """
        if self._mongo_client is None:
            raise RuntimeError(
                "ConnectionManager not initialized. Call init_connection() first.",
            )
        return self._mongo_client

    @property
    def mongo_db(self) -> AsyncIOMotorDatabase:
        """
        Get the MongoDB database of an open connection.

        Raises:
            RuntimeError: If the connection is not open
        """
        if self._state is not ConnectionState.OPEN:
            raise RuntimeError(
                f"MongoDB connection is not open (state={self._state.value}). "
                f"Await get_connection() first.",
            )
        return self._mongo_db


# Process-default manager used by the module-level helpers
_default_manager: ConnectionManager | None = None
_default_lock = threading.Lock()


def get_default_manager() -> ConnectionManager:
    """
    Get or create the process-default ConnectionManager.

    Returns:
        Shared ConnectionManager instance
    """
    global _default_manager

    if _default_manager is not None:
        return _default_manager

    with _default_lock:
        if _default_manager is None:
            _default_manager = ConnectionManager()
    return _default_manager


def reset_default_manager() -> None:
    """Forget the process-default manager. Intended for tests."""
    global _default_manager

    with _default_lock:
        _default_manager = None


def init_connection(
    mongo_uri: str | None,
    options: Mapping[str, Any] | ConnectionOptions | None = None,
) -> None:
    """Initialize the process-default connection. See ConnectionManager.init_connection()."""
    get_default_manager().init_connection(mongo_uri, options)


def init_connection_from_config(config: HelpersConfig | None = None) -> None:
    """
    Initialize the process-default connection from environment configuration.

    Args:
        config: Configuration to use (defaults to HelpersConfig())

    Raises:
        InvalidConfigurationError: If the connection URI is missing or invalid
    """
    config = config or HelpersConfig()
    config.validate()
    init_connection(config.mongo_uri, config.connection_options())


async def get_connection() -> AsyncIOMotorDatabase:
    """Wait for the process-default connection. See ConnectionManager.get_connection()."""
    return await get_default_manager().get_connection()


async def db_shutdown() -> None:
    """Close the process-default connection. See ConnectionManager.shutdown()."""
    await get_default_manager().shutdown()
