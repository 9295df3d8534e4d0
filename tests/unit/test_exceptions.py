"""
Unit tests for the error taxonomy.
"""

import pytest

from mdb_helpers.exceptions import (
    DatabaseConnectionRefusedError,
    InitializationError,
    InvalidConfigurationError,
    ModelNotFoundError,
    MongoHelpersError,
    RetryExhaustedError,
    ShutdownError,
    TransientOperationError,
    UniqueConstraintError,
)


@pytest.mark.parametrize(
    "error_class",
    [
        InvalidConfigurationError,
        InitializationError,
        DatabaseConnectionRefusedError,
        TransientOperationError,
        RetryExhaustedError,
        ShutdownError,
        UniqueConstraintError,
    ],
)
def test_errors_share_a_base(error_class):
    error = error_class("boom")

    assert isinstance(error, MongoHelpersError)
    assert isinstance(error, RuntimeError)


def test_refusal_is_an_initialization_error():
    assert issubclass(DatabaseConnectionRefusedError, InitializationError)


class TestMongoHelpersError:
    def test_message_without_context(self):
        assert str(MongoHelpersError("boom")) == "boom"

    def test_message_with_context(self):
        error = MongoHelpersError("boom", context={"collection": "users", "attempts": 2})

        assert str(error) == "boom (context: collection=users, attempts=2)"
        assert error.message == "boom"


class TestInvalidConfigurationError:
    def test_key_and_value_in_context(self):
        error = InvalidConfigurationError("bad", config_key="connectTimeoutMS", config_value=0)

        assert error.config_key == "connectTimeoutMS"
        assert error.config_value == 0
        assert error.context == {"config_key": "connectTimeoutMS", "config_value": 0}


class TestRetryExhaustedError:
    def test_attributes(self):
        cause = TransientOperationError("failed", operation="reset_all_data")
        error = RetryExhaustedError(
            "gave up", operation="reset_all_data", attempts=10, last_error=cause
        )

        assert error.attempts == 10
        assert error.last_error is cause
        assert error.context == {"operation": "reset_all_data", "attempts": 10}


def test_initialization_error_keeps_uri():
    error = InitializationError("closed", mongo_uri="mongodb://localhost")

    assert error.mongo_uri == "mongodb://localhost"
    assert "mongo_uri=mongodb://localhost" in str(error)


def test_model_not_found_message():
    error = ModelNotFoundError("Client")

    assert str(error) == "no such model as Client"
    assert error.model_name == "Client"
