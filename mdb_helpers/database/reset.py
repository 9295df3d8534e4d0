"""
Bounded-retry reset of a shared test database.

A reset runs one bulk mutation (delete all documents, or drop all secondary
indexes) on every user collection concurrently, and treats the whole batch
as a single unit of work: when any collection fails, the batch is
re-enumerated and re-run after an exponential backoff delay. Both mutations
are idempotent, so re-running a partially applied batch reaches the same end
state.

Usage:
    from mdb_helpers.database import ResetEngine

    engine = ResetEngine(manager)
    await engine.reset_all_data()
    await engine.reset_all_indexes()

Test harness entry points (clear_collections, clear_indexes) additionally
terminate the process when the attempts are exhausted, since a test suite
must not run against a dirty database.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pydantic import BaseModel, ConfigDict, Field
from pymongo import WriteConcern
from pymongo.errors import OperationFailure, PyMongoError
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..constants import (
    DEFAULT_RESET_BACKOFF_FACTOR,
    DEFAULT_RESET_MAX_ATTEMPTS,
    DEFAULT_RESET_MAX_DELAY_MS,
    DEFAULT_RESET_MIN_DELAY_MS,
    NAMESPACE_NOT_FOUND_CODE,
    RESET_WRITE_CONCERN_W,
)
from ..exceptions import (
    DatabaseConnectionRefusedError,
    RetryExhaustedError,
    TransientOperationError,
)
from ..observability import get_logger as get_contextual_logger
from ..observability import bind_log_context, log_operation
from .collections import list_resettable_collections
from .connection import ConnectionManager, get_default_manager, is_connection_refused

logger = logging.getLogger(__name__)
contextual_logger = get_contextual_logger(__name__)

CollectionOperation = Callable[[AsyncIOMotorCollection], Awaitable[Any]]
ExhaustionHook = Callable[[RetryExhaustedError], None]


class RetryPolicy(BaseModel):
    """
    Backoff configuration for reset batches.

    The delay after the n-th failed attempt is
    min(max_delay_ms, min_delay_ms * backoff_factor ** (n - 1)),
    i.e. 10, 20, 40, ... ms capped at 1000 ms with the defaults.
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(DEFAULT_RESET_MAX_ATTEMPTS, ge=1)
    backoff_factor: float = Field(DEFAULT_RESET_BACKOFF_FACTOR, ge=1)
    min_delay_ms: float = Field(DEFAULT_RESET_MIN_DELAY_MS, ge=0)
    max_delay_ms: float = Field(DEFAULT_RESET_MAX_DELAY_MS, ge=0)

    def delay_for(self, attempt: int) -> float:
        """
        Delay in seconds before retrying after a failed attempt.

        Args:
            attempt: 1-based number of the attempt that failed

        Returns:
            Delay in seconds
        """
        delay_ms = self.min_delay_ms * self.backoff_factor ** (attempt - 1)
        return min(self.max_delay_ms, delay_ms) / 1000

    def wait_strategy(self) -> wait_exponential:
        """Equivalent tenacity wait strategy."""
        return wait_exponential(
            multiplier=self.min_delay_ms / 1000,
            exp_base=self.backoff_factor,
            max=self.max_delay_ms / 1000,
        )


async def delete_all_documents(collection: AsyncIOMotorCollection) -> int:
    """Delete every document of a collection, acknowledged by one node."""
    acknowledged = collection.with_options(
        write_concern=WriteConcern(w=RESET_WRITE_CONCERN_W)
    )
    result = await acknowledged.delete_many({})
    return result.deleted_count


async def drop_all_indexes(collection: AsyncIOMotorCollection) -> None:
    """Drop every secondary index of a collection."""
    try:
        await collection.drop_indexes()
    except OperationFailure as e:
        # Collection dropped since it was enumerated
        if e.code == NAMESPACE_NOT_FOUND_CODE:
            logger.debug(f"Collection '{collection.name}' vanished before drop_indexes")
            return
        raise


def terminate_process(error: RetryExhaustedError) -> None:
    """
    Exhaustion hook for test harness entry points.

    Raises:
        SystemExit: Always, with status 1, chained from the exhaustion error
    """
    contextual_logger.critical(
        f"Connection timed out. {error}",
        extra={"operation": error.operation, "attempts": error.attempts},
    )
    raise SystemExit(1) from error


class ResetEngine:
    """
    Runs reset batches over every user collection with bounded retry.

    The engine never exits the process itself: exhaustion raises
    RetryExhaustedError after calling the optional on_exhausted hook once.
    """

    def __init__(
        self,
        source: ConnectionManager | AsyncIOMotorDatabase,
        policy: RetryPolicy | None = None,
        on_exhausted: ExhaustionHook | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the reset engine.

        Args:
            source: Connection manager (awaited for its database) or a database
            policy: Retry policy (defaults to RetryPolicy())
            on_exhausted: Called with the RetryExhaustedError before it is raised
            sleep: Coroutine function used for backoff delays
        """
        self._source = source
        self.policy = policy or RetryPolicy()
        self._on_exhausted = on_exhausted
        self._sleep = sleep

    async def reset_all_data(self) -> list[str]:
        """
        Delete all documents from every user collection.

        Returns:
            Names of the collections that were cleared

        Raises:
            RetryExhaustedError: If every attempt failed
            DatabaseConnectionRefusedError: If the server refused the connection
        """
        return await self._run_with_retry("reset_all_data", delete_all_documents)

    async def reset_all_indexes(self) -> list[str]:
        """
        Drop all secondary indexes from every user collection.

        Returns:
            Names of the collections whose indexes were dropped

        Raises:
            RetryExhaustedError: If every attempt failed
            DatabaseConnectionRefusedError: If the server refused the connection
        """
        return await self._run_with_retry("reset_all_indexes", drop_all_indexes)

    async def _database(self) -> AsyncIOMotorDatabase:
        if isinstance(self._source, ConnectionManager):
            return await self._source.get_connection()
        return self._source

    async def _attempt(self, operation_name: str, operation: CollectionOperation) -> list[str]:
        collection_names: list[str] = []
        try:
            db = await self._database()
            collections = await list_resettable_collections(db)
            collection_names = [collection.name for collection in collections]
            results = await asyncio.gather(
                *(operation(collection) for collection in collections),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, BaseException):
                    raise result
            return collection_names
        except (PyMongoError, OSError) as e:
            if is_connection_refused(e):
                raise DatabaseConnectionRefusedError(
                    f"MongoDB refused the connection during {operation_name}: {e}",
                    context={"operation": operation_name},
                ) from e
            raise TransientOperationError(
                f"{operation_name} failed: {e}",
                operation=operation_name,
                collection_names=collection_names,
                context={"error_type": type(e).__name__},
            ) from e

    async def _run_with_retry(
        self, operation_name: str, operation: CollectionOperation
    ) -> list[str]:
        with bind_log_context(reset_operation=operation_name):
            return await self._retry_batch(operation_name, operation)

    async def _retry_batch(self, operation_name: str, operation: CollectionOperation) -> list[str]:
        start_time = time.time()
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=self.policy.wait_strategy(),
            retry=retry_if_exception_type(TransientOperationError),
            before_sleep=before_sleep_log(contextual_logger, logging.WARNING),
            sleep=self._sleep,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    names = await self._attempt(operation_name, operation)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            attempts = e.last_attempt.attempt_number
            error = RetryExhaustedError(
                f"{operation_name} failed after {attempts} attempt(s): {last_error}",
                operation=operation_name,
                attempts=attempts,
                last_error=last_error,
            )
            log_operation(
                contextual_logger,
                f"reset.{operation_name}",
                level=logging.ERROR,
                success=False,
                duration_ms=(time.time() - start_time) * 1000,
                attempts=attempts,
            )
            if self._on_exhausted is not None:
                self._on_exhausted(error)
            raise error from last_error

        log_operation(
            contextual_logger,
            f"reset.{operation_name}",
            duration_ms=(time.time() - start_time) * 1000,
            attempts=attempt.retry_state.attempt_number,
            collections=len(names),
        )
        return names


async def clear_collections(manager: ConnectionManager | None = None) -> list[str]:
    """
    Clear all collections of the (default) connection.

    Exits the process when the retry attempts are exhausted.
    """
    engine = ResetEngine(manager or get_default_manager(), on_exhausted=terminate_process)
    return await engine.reset_all_data()


async def clear_indexes(manager: ConnectionManager | None = None) -> list[str]:
    """
    Clear all indexes of the (default) connection.

    Exits the process when the retry attempts are exhausted.
    """
    engine = ResetEngine(manager or get_default_manager(), on_exhausted=terminate_process)
    return await engine.reset_all_indexes()
