"""
Schema decoration helpers.

A SchemaDescriptor is an immutable description of a model: its indexes,
virtual getters, query hooks and pre-save hooks. Every helper takes a
descriptor and returns a new one, so shared schema definitions are never
mutated in place.

Example:
    schema = SchemaDescriptor()
    schema = add_indexes(schema, [{"a": 1}, {"b": -1}])
    schema = add_unique_indexes(schema, [{"email": 1}])
    schema = add_virtual_getters(schema, {"bot": "raw.is_bot"})
    schema = apply_all_hooks(schema, [exclude_deleted])
"""

import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterable, Mapping, Sequence

from pymongo import IndexModel

from .constants import HOOKED_QUERY_METHODS
from .exceptions import UniqueConstraintError

logger = logging.getLogger(__name__)

IndexKeys = Mapping[str, Any] | Sequence[tuple[str, Any]]

# Receives the method name and the query filter; may return a replacement filter
QueryHook = Callable[[str, dict[str, Any]], dict[str, Any] | None]

# Receives the document being saved and its collection
SaveHook = Callable[[Any, Any], Awaitable[None]]

# Dotted path of a stored value, or a getter receiving the stored fields
VirtualGetter = str | Callable[[Mapping[str, Any]], Any]

_MISSING = object()


def normalize_keys(keys: IndexKeys) -> tuple[tuple[str, Any], ...]:
    """
    Normalize index keys to a tuple of (field_name, direction) pairs.

    Args:
        keys: Index keys as dict or list of tuples

    Returns:
        Tuple of (field_name, direction) tuples
    """
    if isinstance(keys, Mapping):
        return tuple(keys.items())
    return tuple((k, v) for k, v in keys)


@dataclass(frozen=True)
class IndexSpec:
    """One index declaration."""

    keys: tuple[tuple[str, Any], ...]
    unique: bool = False

    @classmethod
    def from_keys(cls, keys: IndexKeys, unique: bool = False) -> "IndexSpec":
        return cls(keys=normalize_keys(keys), unique=unique)

    @property
    def key_dict(self) -> dict[str, Any]:
        return dict(self.keys)

    @property
    def fields(self) -> list[str]:
        return [name for name, _ in self.keys]

    def to_index_model(self) -> IndexModel:
        if self.unique:
            return IndexModel(list(self.keys), unique=True)
        return IndexModel(list(self.keys))


@dataclass(frozen=True)
class SchemaDescriptor:
    """
    Immutable model schema.

    Attributes:
        indexes: Declared indexes, in declaration order
        virtuals: Virtual field name -> dotted path or getter callable
        hooks: Query method name -> hooks run before it
        pre_save: Hooks awaited before a document is saved
    """

    indexes: tuple[IndexSpec, ...] = ()
    virtuals: Mapping[str, VirtualGetter] = field(default_factory=lambda: MappingProxyType({}))
    hooks: Mapping[str, tuple[QueryHook, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    pre_save: tuple[SaveHook, ...] = ()

    def index_models(self) -> list[IndexModel]:
        """Driver index models for every declared index."""
        return [index.to_index_model() for index in self.indexes]

    def unique_indexes(self) -> tuple[IndexSpec, ...]:
        return tuple(index for index in self.indexes if index.unique)

    def hooks_for(self, method: str) -> tuple[QueryHook, ...]:
        return self.hooks.get(method, ())


def get_path(source: Any, path: str, default: Any = None) -> Any:
    """
    Read a value at a dotted path from nested mappings or objects.

    Args:
        source: Mapping or object to read from
        path: Dotted path, e.g. "raw.is_bot"
        default: Returned when a segment is missing

    Returns:
        The value found, or default
    """
    current = source
    for segment in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(segment, _MISSING)
        else:
            current = getattr(current, segment, _MISSING)
        if current is _MISSING:
            return default
    return current


def add_indexes(schema: SchemaDescriptor, indexes: Iterable[IndexKeys]) -> SchemaDescriptor:
    """
    Add indexes to a schema.

    Args:
        schema: The schema to which we are adding indexes
        indexes: Index keys, like [{"a": 1}, {"b": -1}]

    Returns:
        New SchemaDescriptor
    """
    added = tuple(IndexSpec.from_keys(keys) for keys in indexes)
    return replace(schema, indexes=schema.indexes + added)


async def validate_unique(document: Any, collection: Any) -> None:
    """
    Pre-save hook enforcing the unique indexes of the document's schema.

    Another stored document holding the same values fails the check; the
    document's own stored copy (when it has an id) does not.

    Raises:
        UniqueConstraintError: If another document already holds the values
    """
    schema: SchemaDescriptor = type(document).__schema__
    stored = document.to_dict()
    for index in schema.unique_indexes():
        query = {name: get_path(stored, name) for name in index.fields}
        if all(value is None for value in query.values()):
            continue
        if document.id is not None:
            query["_id"] = {"$ne": document.id}
        if await collection.count_documents(query, limit=1):
            keys = index.fields
            raise UniqueConstraintError(
                f"Error, expected {', '.join(keys)} to be unique.",
                model_name=type(document).__model_name__,
                keys=keys,
            )


def add_unique_indexes(
    schema: SchemaDescriptor, unique_indexes: Iterable[IndexKeys]
) -> SchemaDescriptor:
    """
    Add unique indexes to a schema, plus the uniqueness validator pre-save hook.

    Args:
        schema: The schema to which we are adding indexes
        unique_indexes: Index keys, like [{"a": 1, "b": -1}]

    Returns:
        New SchemaDescriptor
    """
    added = tuple(IndexSpec.from_keys(keys, unique=True) for keys in unique_indexes)
    pre_save = schema.pre_save
    if validate_unique not in pre_save:
        pre_save = pre_save + (validate_unique,)
    return replace(schema, indexes=schema.indexes + added, pre_save=pre_save)


def add_virtual_getters(
    schema: SchemaDescriptor, virtuals: Mapping[str, VirtualGetter]
) -> SchemaDescriptor:
    """
    Add virtuals (getters only) to a schema.

    Args:
        schema: The schema to which we are adding virtuals
        virtuals: Virtual name -> path of the stored value, or a getter
            called with the stored fields, e.g.
            {"bot": "raw.is_bot", "label": lambda d: d["name"].title()}

    Returns:
        New SchemaDescriptor
    """
    merged = {**schema.virtuals, **virtuals}
    return replace(schema, virtuals=MappingProxyType(merged))


def hook_all_methods(schema: SchemaDescriptor, hook: QueryHook) -> SchemaDescriptor:
    """Attach a pre hook to every hooked query method."""
    hooks = dict(schema.hooks)
    for method in HOOKED_QUERY_METHODS:
        hooks[method] = hooks.get(method, ()) + (hook,)
    return replace(schema, hooks=MappingProxyType(hooks))


def apply_all_hooks(schema: SchemaDescriptor, hooks: Iterable[QueryHook]) -> SchemaDescriptor:
    for hook in hooks:
        schema = hook_all_methods(schema, hook)
    return schema
