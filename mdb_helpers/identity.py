"""
Identity helpers for document identifiers.
"""

from typing import Any, Iterable, Mapping

from bson import ObjectId


def get_id(document: Any) -> Any:
    """Return the ``_id`` of a mapping or document object (None if absent)."""
    if isinstance(document, Mapping):
        return document.get("_id")
    return getattr(document, "_id", None)


def get_ids(documents: Iterable[Any]) -> list[Any]:
    return [get_id(document) for document in documents]


def pick_ids(documents: Mapping[str, Any]) -> dict[str, Any]:
    """
    Map each value of a mapping to its ``_id``.

    Example:
        pick_ids({"owner": user, "team": team})
        # {"owner": user._id, "team": team._id}
    """
    return {key: get_id(value) for key, value in documents.items()}


def is_object_id(value: Any) -> bool:
    return isinstance(value, ObjectId)


def is_same_object_id(a: Any, b: Any) -> bool:
    """
    Compare two ObjectIds by value.

    Raises:
        AssertionError: If either argument is not an ObjectId
    """
    if not is_object_id(a):
        raise AssertionError("1st argument is not an ObjectId")
    if not is_object_id(b):
        raise AssertionError("2nd argument is not an ObjectId")
    return str(a) == str(b)
