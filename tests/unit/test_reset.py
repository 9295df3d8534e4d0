"""
Unit tests for the bounded-retry reset engine.

Tests batch semantics, system collection filtering, backoff delays,
exhaustion handling and the harness entry points.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo import WriteConcern
from pymongo.errors import AutoReconnect, OperationFailure, ServerSelectionTimeoutError

from mdb_helpers.database import (
    ResetEngine,
    RetryPolicy,
    clear_collections,
    clear_indexes,
    terminate_process,
)
from mdb_helpers.exceptions import (
    DatabaseConnectionRefusedError,
    RetryExhaustedError,
    TransientOperationError,
)


def failing_then_clearing(collection, failures: int):
    """Make delete_many fail `failures` times before clearing the collection."""
    calls = {"count": 0}

    async def delete_many(query, *args, **kwargs):
        calls["count"] += 1
        if calls["count"] <= failures:
            raise AutoReconnect(f"transient failure {calls['count']}")
        deleted = len(collection.docs)
        collection.docs.clear()
        return MagicMock(deleted_count=deleted)

    collection.delete_many.side_effect = delete_many


class TestRetryPolicy:
    """Test backoff delay computation."""

    def test_defaults(self):
        policy = RetryPolicy()

        assert policy.max_attempts == 10
        assert policy.backoff_factor == 2
        assert policy.min_delay_ms == 10
        assert policy.max_delay_ms == 1000

    @pytest.mark.parametrize(
        "attempt,expected",
        [(1, 0.01), (2, 0.02), (3, 0.04), (7, 0.64), (8, 1.0), (9, 1.0)],
    )
    def test_delay_for(self, attempt, expected):
        assert RetryPolicy().delay_for(attempt) == pytest.approx(expected)

    def test_wait_strategy_matches_delay_for(self):
        policy = RetryPolicy()
        wait = policy.wait_strategy()

        for attempt in range(1, policy.max_attempts + 1):
            retry_state = MagicMock(attempt_number=attempt)
            assert wait(retry_state) == pytest.approx(policy.delay_for(attempt))

    def test_policy_is_immutable(self):
        policy = RetryPolicy()

        with pytest.raises(Exception):
            policy.max_attempts = 3


class TestResetAllData:
    """Test the delete-all batch."""

    @pytest.mark.asyncio
    async def test_clears_every_user_collection(self, mock_database):
        """Test that every collection ends up empty and system ones are untouched."""
        a = mock_database.add_collection("A", [{"_id": 1}, {"_id": 2}, {"_id": 3}])
        b = mock_database.add_collection("B")
        profile = mock_database.add_collection("system.profile", [{"op": "query"}])
        engine = ResetEngine(mock_database, sleep=AsyncMock())

        cleared = await engine.reset_all_data()

        assert cleared == ["A", "B"]
        assert a.docs == []
        assert b.docs == []
        assert profile.docs == [{"op": "query"}]
        profile.delete_many.assert_not_awaited()
        a.with_options.assert_called_once_with(write_concern=WriteConcern(w=1))
        a.delete_many.assert_awaited_once_with({})

    @pytest.mark.asyncio
    async def test_is_idempotent(self, mock_database):
        """Test that resetting an already empty database succeeds."""
        mock_database.add_collection("A", [{"_id": 1}])
        mock_database.add_collection("B")
        engine = ResetEngine(mock_database, sleep=AsyncMock())

        await engine.reset_all_data()
        cleared = await engine.reset_all_data()

        assert cleared == ["A", "B"]
        assert all(c.docs == [] for c in mock_database.collections.values())

    @pytest.mark.asyncio
    async def test_no_collections(self, mock_database):
        """Test that an empty database trivially succeeds."""
        engine = ResetEngine(mock_database, sleep=AsyncMock())

        assert await engine.reset_all_data() == []

    @pytest.mark.asyncio
    async def test_uses_connection_manager(self, open_manager, mock_database):
        """Test that a ConnectionManager source is awaited for its database."""
        a = mock_database.add_collection("A", [{"_id": 1}])
        engine = ResetEngine(open_manager, sleep=AsyncMock())

        await engine.reset_all_data()

        assert a.docs == []


class TestResetAllIndexes:
    """Test the drop-all-indexes batch."""

    @pytest.mark.asyncio
    async def test_drops_indexes_except_system(self, mock_database):
        a = mock_database.add_collection("A")
        a.indexes = ["_id_", "name_1"]
        profile = mock_database.add_collection("system.profile")
        engine = ResetEngine(mock_database, sleep=AsyncMock())

        dropped = await engine.reset_all_indexes()

        assert dropped == ["A"]
        assert a.indexes == ["_id_"]
        a.drop_indexes.assert_awaited_once()
        profile.drop_indexes.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_vanished_collection_counts_as_done(self, mock_database):
        """Test that a collection dropped after enumeration is not an error."""
        a = mock_database.add_collection("A")
        a.drop_indexes.side_effect = OperationFailure("ns not found", code=26)
        sleep = AsyncMock()
        engine = ResetEngine(mock_database, sleep=sleep)

        assert await engine.reset_all_indexes() == ["A"]
        sleep.assert_not_awaited()


class TestRetryShell:
    """Test batch-level retry with backoff."""

    @pytest.mark.asyncio
    async def test_succeeds_after_three_failures(self, mock_database):
        """Test that the batch is retried as a unit with 10, 20 and 40 ms delays."""
        a = mock_database.add_collection("A", [{"_id": 1}, {"_id": 2}, {"_id": 3}])
        b = mock_database.add_collection("B")
        failing_then_clearing(a, failures=3)
        sleep = AsyncMock()
        engine = ResetEngine(mock_database, sleep=sleep)

        cleared = await engine.reset_all_data()

        assert cleared == ["A", "B"]
        assert a.docs == []
        assert a.delete_many.await_count == 4
        # the whole batch is re-run, including collections that succeeded
        assert b.delete_many.await_count == 4
        assert mock_database.list_collection_names.await_count == 4
        delays = [call.args[0] for call in sleep.await_args_list]
        assert delays == pytest.approx([0.01, 0.02, 0.04])
        assert sum(delays) == pytest.approx(0.07)

    @pytest.mark.asyncio
    async def test_real_sleep_elapsed_time(self, mock_database):
        """Test the elapsed backoff with the real event loop sleep."""
        a = mock_database.add_collection("A", [{"_id": 1}])
        failing_then_clearing(a, failures=3)
        engine = ResetEngine(mock_database)
        loop = asyncio.get_running_loop()

        start = loop.time()
        await engine.reset_all_data()
        elapsed = loop.time() - start

        assert elapsed >= 0.07
        assert elapsed < 1.0

    @pytest.mark.asyncio
    async def test_exhaustion_raises_and_calls_hook_once(self, mock_database):
        """Test that failing every attempt raises RetryExhaustedError."""
        a = mock_database.add_collection("A", [{"_id": 1}])
        a.delete_many.side_effect = AutoReconnect("still down")
        on_exhausted = MagicMock()
        sleep = AsyncMock()
        engine = ResetEngine(mock_database, on_exhausted=on_exhausted, sleep=sleep)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await engine.reset_all_data()

        error = exc_info.value
        assert error.attempts == 10
        assert error.operation == "reset_all_data"
        assert isinstance(error.last_error, TransientOperationError)
        assert isinstance(error.last_error.__cause__, AutoReconnect)
        assert error.last_error.collection_names == ["A"]
        assert a.delete_many.await_count == 10
        assert sleep.await_count == 9
        on_exhausted.assert_called_once_with(error)

    @pytest.mark.asyncio
    async def test_custom_policy_attempts(self, mock_database):
        a = mock_database.add_collection("A")
        a.drop_indexes.side_effect = OperationFailure("interrupted", code=11601)
        engine = ResetEngine(mock_database, policy=RetryPolicy(max_attempts=3), sleep=AsyncMock())

        with pytest.raises(RetryExhaustedError) as exc_info:
            await engine.reset_all_indexes()

        assert exc_info.value.attempts == 3
        assert a.drop_indexes.await_count == 3

    @pytest.mark.asyncio
    async def test_connection_refused_is_not_retried(self, mock_database):
        """Test that a refusal propagates immediately."""
        a = mock_database.add_collection("A", [{"_id": 1}])
        a.delete_many.side_effect = ServerSelectionTimeoutError(
            "localhost:27017: [Errno 111] Connection refused"
        )
        sleep = AsyncMock()
        on_exhausted = MagicMock()
        engine = ResetEngine(mock_database, on_exhausted=on_exhausted, sleep=sleep)

        with pytest.raises(DatabaseConnectionRefusedError):
            await engine.reset_all_data()

        assert a.delete_many.await_count == 1
        sleep.assert_not_awaited()
        on_exhausted.assert_not_called()

    @pytest.mark.asyncio
    async def test_programming_errors_are_not_retried(self, mock_database):
        a = mock_database.add_collection("A")
        a.delete_many.side_effect = TypeError("bad filter")
        engine = ResetEngine(mock_database, sleep=AsyncMock())

        with pytest.raises(TypeError):
            await engine.reset_all_data()

        assert a.delete_many.await_count == 1

    @pytest.mark.asyncio
    async def test_batch_settles_before_failing(self, mock_database):
        """Test that a failing collection does not abandon the others mid-flight."""
        a = mock_database.add_collection("A")
        b = mock_database.add_collection("B", [{"_id": 1}])
        a.delete_many.side_effect = AutoReconnect("down")
        finished = []

        async def slow_delete(query, *args, **kwargs):
            await asyncio.sleep(0.01)
            b.docs.clear()
            finished.append("B")
            return MagicMock(deleted_count=1)

        b.delete_many.side_effect = slow_delete
        engine = ResetEngine(mock_database, policy=RetryPolicy(max_attempts=1), sleep=AsyncMock())

        with pytest.raises(RetryExhaustedError) as exc_info:
            await engine.reset_all_data()

        assert finished == ["B"]
        assert exc_info.value.last_error.collection_names == ["A", "B"]
        assert b.docs == []

    @pytest.mark.asyncio
    async def test_enumeration_failure_is_retried(self, mock_database):
        mock_database.add_collection("A")
        names = mock_database.list_collection_names
        names.side_effect = [AutoReconnect("not primary"), ["A"]]
        sleep = AsyncMock()
        engine = ResetEngine(mock_database, sleep=sleep)

        assert await engine.reset_all_data() == ["A"]
        assert sleep.await_count == 1


    @pytest.mark.asyncio
    async def test_enumeration_failure_names_no_collections(self, mock_database):
        """Test that an attempt failing before enumeration reports no collections."""
        mock_database.list_collection_names.side_effect = AutoReconnect("not primary")
        engine = ResetEngine(mock_database, policy=RetryPolicy(max_attempts=2), sleep=AsyncMock())

        with pytest.raises(RetryExhaustedError) as exc_info:
            await engine.reset_all_data()

        last_error = exc_info.value.last_error
        assert last_error.collection_names == []
        assert last_error.context["operation"] == "reset_all_data"


class TestHarnessEntryPoints:
    """Test clear_collections() and clear_indexes()."""

    def test_terminate_process_exits_non_zero(self):
        error = RetryExhaustedError("gave up", operation="reset_all_data", attempts=10)

        with pytest.raises(SystemExit) as exc_info:
            terminate_process(error)

        assert exc_info.value.code == 1
        assert exc_info.value.__cause__ is error

    @pytest.mark.asyncio
    async def test_clear_collections(self, open_manager, mock_database):
        a = mock_database.add_collection("A", [{"_id": 1}])

        assert await clear_collections(open_manager) == ["A"]
        assert a.docs == []

    @pytest.mark.asyncio
    async def test_clear_indexes(self, open_manager, mock_database):
        a = mock_database.add_collection("A")
        a.indexes = ["_id_", "email_1"]

        assert await clear_indexes(open_manager) == ["A"]
        assert a.indexes == ["_id_"]
