"""
Fixtures for integration tests against a real MongoDB server.

A MongoDB container is started once per session via testcontainers.
Tests are skipped when testcontainers or Docker are unavailable.
"""

import pytest
import pytest_asyncio

from mdb_helpers.database import ConnectionManager


@pytest.fixture(scope="session")
def mongodb_container():
    """Start a MongoDB container shared by all integration tests."""
    try:
        from testcontainers.mongodb import MongoDbContainer
    except ImportError:
        pytest.skip("testcontainers not installed. Install with: pip install -e '.[test]'")

    container = MongoDbContainer(image="mongo:7.0")
    try:
        container.start()
    except Exception as e:  # noqa: BLE001 - no Docker daemon available
        pytest.skip(f"Could not start MongoDB container: {e}")
    try:
        yield container
    finally:
        container.stop()


@pytest.fixture
def mongodb_connection_string(mongodb_container):
    """Connection string for the test container."""
    return mongodb_container.get_connection_url()


@pytest_asyncio.fixture
async def real_manager(mongodb_connection_string):
    """
    ConnectionManager opened on the container.

    Closed after the test.
    """
    manager = ConnectionManager()
    manager.init_connection(
        mongodb_connection_string,
        {"db_name": "helpers_integration", "reconnectTries": 3},
    )
    db = await manager.get_connection()
    await manager.mongo_client.drop_database(db.name)
    yield manager
    await manager.shutdown()
