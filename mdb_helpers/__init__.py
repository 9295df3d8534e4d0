"""
MDB_HELPERS - MongoDB helpers

Connection lifecycle, schema decoration, identity helpers and test-database
reset utilities built on Motor.
"""

# Database layer
from .database import (
    ConnectionManager,
    ConnectionState,
    ResetEngine,
    RetryPolicy,
    clear_collections,
    clear_indexes,
    db_shutdown,
    get_connection,
    init_connection,
    init_connection_from_config,
    list_resettable_collections,
)
# Errors
from .exceptions import (
    DatabaseConnectionRefusedError,
    InvalidConfigurationError,
    MongoHelpersError,
    RetryExhaustedError,
)
# Identity helpers
from .identity import get_id, get_ids, is_object_id, is_same_object_id, pick_ids
# Models
from .models import Document, ModelRegistry, assert_instance, init_models, upsert_model
# Schema decoration
from .schema import (
    SchemaDescriptor,
    add_indexes,
    add_unique_indexes,
    add_virtual_getters,
    apply_all_hooks,
    hook_all_methods,
)
# Test assertions
from .testing import (
    assert_not_same_object_id,
    assert_same_document,
    assert_same_document_array,
    assert_same_document_id_array,
    assert_same_object_id,
    assert_same_object_id_array,
)

__version__ = "0.1.0"

__all__ = [
    # Connection
    "ConnectionManager",
    "ConnectionState",
    "init_connection",
    "init_connection_from_config",
    "get_connection",
    "db_shutdown",
    # Reset
    "ResetEngine",
    "RetryPolicy",
    "clear_collections",
    "clear_indexes",
    "list_resettable_collections",
    # Errors
    "MongoHelpersError",
    "InvalidConfigurationError",
    "DatabaseConnectionRefusedError",
    "RetryExhaustedError",
    # Schema
    "SchemaDescriptor",
    "add_indexes",
    "add_unique_indexes",
    "add_virtual_getters",
    "apply_all_hooks",
    "hook_all_methods",
    # Models
    "Document",
    "ModelRegistry",
    "assert_instance",
    "init_models",
    "upsert_model",
    # Identity
    "get_id",
    "get_ids",
    "is_object_id",
    "is_same_object_id",
    "pick_ids",
    # Assertions
    "assert_not_same_object_id",
    "assert_same_document",
    "assert_same_document_array",
    "assert_same_document_id_array",
    "assert_same_object_id",
    "assert_same_object_id_array",
]
