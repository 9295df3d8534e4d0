"""
Pytest configuration and shared fixtures for MDB_HELPERS tests.

This module provides:
- Mock MongoDB client, database and collection fixtures
- A ConnectionManager wired to the mock client
- Environment isolation
"""

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from motor.motor_asyncio import AsyncIOMotorCollection

from mdb_helpers.database import ConnectionManager, reset_default_manager

TEST_URI = "mongodb://localhost:27017/helpers_test"


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: tests that need a real MongoDB server")


# ============================================================================
# MOCK MONGODB FIXTURES
# ============================================================================


def make_collection(name: str, docs: list[dict[str, Any]] | None = None) -> MagicMock:
    """
    Create a mock collection holding an in-memory list of documents.

    delete_many({}) empties the list; drop_indexes() resets the index list.
    """
    collection = MagicMock(spec=AsyncIOMotorCollection)
    collection.name = name
    collection.docs = list(docs or [])
    collection.indexes = ["_id_"]

    async def delete_many(query, *args, **kwargs):
        deleted = len(collection.docs)
        collection.docs.clear()
        return MagicMock(deleted_count=deleted)

    async def drop_indexes(*args, **kwargs):
        collection.indexes = ["_id_"]

    collection.delete_many = AsyncMock(side_effect=delete_many)
    collection.drop_indexes = AsyncMock(side_effect=drop_indexes)
    collection.with_options = MagicMock(return_value=collection)
    collection.find_one = AsyncMock(return_value=None)
    collection.find = MagicMock(return_value=MagicMock(to_list=AsyncMock(return_value=[])))
    collection.count_documents = AsyncMock(return_value=0)
    collection.replace_one = AsyncMock(return_value=MagicMock(upserted_id=None))
    collection.update_one = AsyncMock(return_value=MagicMock(modified_count=1))
    collection.update_many = AsyncMock(return_value=MagicMock(modified_count=2))
    collection.find_one_and_update = AsyncMock(return_value=None)
    collection.create_indexes = AsyncMock(return_value=[])
    return collection


class MockDatabase:
    """Database stand-in with a live, mutable set of collections."""

    def __init__(self, name: str = "test_db"):
        self.name = name
        self.collections: dict[str, MagicMock] = {}
        self.list_collection_names = AsyncMock(side_effect=lambda: list(self.collections))

    def add_collection(self, name: str, docs: list[dict[str, Any]] | None = None) -> MagicMock:
        collection = make_collection(name, docs)
        self.collections[name] = collection
        return collection

    def __getitem__(self, name: str) -> MagicMock:
        if name not in self.collections:
            self.add_collection(name)
        return self.collections[name]


@pytest.fixture
def mock_database() -> MockDatabase:
    """Create an empty mock database."""
    return MockDatabase()


@pytest.fixture
def mock_mongo_client(mock_database: MockDatabase) -> MagicMock:
    """Create a mock MongoDB client whose databases resolve to mock_database."""
    client = MagicMock()
    client.admin.command = AsyncMock(return_value={"ok": 1})
    client.__getitem__.return_value = mock_database
    client.get_default_database.return_value = mock_database
    client.close = MagicMock()
    return client


@pytest.fixture
def client_factory(mock_mongo_client: MagicMock) -> MagicMock:
    """Client factory handing out mock_mongo_client."""
    return MagicMock(return_value=mock_mongo_client)


@pytest.fixture
def connection_manager(client_factory: MagicMock) -> ConnectionManager:
    """An uninitialized ConnectionManager using the mock client."""
    return ConnectionManager(client_factory=client_factory, sleep=AsyncMock())


@pytest_asyncio.fixture
async def open_manager(connection_manager: ConnectionManager) -> ConnectionManager:
    """A ConnectionManager whose connection is open."""
    connection_manager.init_connection(TEST_URI, {"db_name": "test_db"})
    await connection_manager.get_connection()
    return connection_manager


# ============================================================================
# ENVIRONMENT
# ============================================================================


@pytest.fixture(autouse=True)
def reset_environment(monkeypatch):
    """Reset environment variables and the default manager before each test."""
    env_vars_to_clear = [
        "MONGO_CONNECTION_STRING",
        "MONGO_CONNECTION_STRING_TEST",
        "MDB_HELPERS_ENV",
        "MONGO_DB_NAME",
        "MONGO_KEEP_ALIVE_MS",
        "MONGO_CONNECT_TIMEOUT_MS",
        "MONGO_RECONNECT_TRIES",
        "MONGO_RECONNECT_INTERVAL_MS",
        "MONGO_SHUTDOWN_TIMEOUT_MS",
    ]
    for var in env_vars_to_clear:
        monkeypatch.delenv(var, raising=False)
    reset_default_manager()
    yield
    reset_default_manager()
