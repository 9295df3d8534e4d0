"""
Test helpers.

Deep-equality assertions for documents and ObjectIds.
"""

from .assertions import (
    assert_not_same_object_id,
    assert_raises_message,
    assert_same_document,
    assert_same_document_array,
    assert_same_document_id_array,
    assert_same_object_id,
    assert_same_object_id_array,
)

__all__ = [
    "assert_not_same_object_id",
    "assert_raises_message",
    "assert_same_document",
    "assert_same_document_array",
    "assert_same_document_id_array",
    "assert_same_object_id",
    "assert_same_object_id_array",
]
