"""
Beanie document models built from schema descriptors.

upsert_model() turns a SchemaDescriptor into a beanie Document subclass:
declared indexes become the model's index settings, virtual getters become
computed (non-persisted) properties, query hooks run before the hooked
query methods and pre-save hooks (uniqueness validation among them) run as
before-event actions on insert, replace and save.

This module is part of MDB_HELPERS.

Example:
    Client = upsert_model("Client", schema)
    await init_models(db)
    client = Client(name="acme", raw={"is_bot": False})
    await client.save()
    bots = await Client.find({"raw.is_bot": True}).to_list()
"""

import copy
import json
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, ClassVar, Iterator, Mapping, Sequence

from beanie import Document as BeanieDocument
from beanie import Insert, Replace, Save, before_event, init_beanie
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ConfigDict, computed_field

from .exceptions import ModelNotFoundError
from .schema import SchemaDescriptor, VirtualGetter, get_path

logger = logging.getLogger(__name__)

# Fields beanie declares on every document
_BEANIE_FIELDS = ("id", "revision_id")

# Set while beanie looks a document up by _id on its own behalf (save, replace, ...)
_query_hooks_suspended: ContextVar[bool] = ContextVar(
    "mdb_helpers_query_hooks_suspended", default=False
)


@contextmanager
def _own_document_lookups() -> Iterator[None]:
    token = _query_hooks_suspended.set(True)
    try:
        yield
    finally:
        _query_hooks_suspended.reset(token)


def default_collection_name(model_name: str) -> str:
    """Lower-cased, pluralized collection name for a model."""
    name = model_name.lower()
    return name if name.endswith("s") else f"{name}s"


def pretty_json(value: Any) -> str:
    if hasattr(value, "to_dict"):
        value = value.to_dict()
    return json.dumps(value, indent=2, default=str)


def virtual_field(getter: VirtualGetter) -> Any:
    """
    Build the computed property of one virtual getter.

    Args:
        getter: Dotted path of a stored value, or a callable receiving the
                stored fields

    Returns:
        A read-only pydantic computed field
    """
    if callable(getter):

        def resolve(self: "Document") -> Any:
            return getter(self.to_dict())

    else:

        def resolve(self: "Document") -> Any:
            return get_path(self.to_dict(), getter)

    return computed_field(property(resolve), return_type=Any)


def _query_filter(args: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
    if not args:
        return {}
    if len(args) == 1:
        return dict(args[0])
    return {"$and": [dict(arg) for arg in args]}


class Document(BeanieDocument):
    """
    Base of every registered model.

    Fields not declared on the model are kept as stored. The schema of the
    model decides its indexes, computed virtuals, query hooks and pre-save
    hooks.
    """

    model_config = ConfigDict(extra="allow")

    __model_name__: ClassVar[str] = ""
    __schema__: ClassVar[SchemaDescriptor] = SchemaDescriptor()

    def to_dict(self) -> dict[str, Any]:
        """Stored representation of the document (virtuals excluded)."""
        stored = {name: value for name, value in self if name not in _BEANIE_FIELDS}
        return {"_id": self.id, **copy.deepcopy(stored)}

    @before_event(Insert, Replace, Save)
    async def run_pre_save_hooks(self) -> None:
        """
        Await the schema's pre-save hooks.

        Raises:
            UniqueConstraintError: If a unique index would be violated
        """
        collection = self.get_motor_collection()
        for hook in self.__schema__.pre_save:
            await hook(self, collection)

    # ------------------------------------------------------------------
    # Hooked queries
    # ------------------------------------------------------------------

    @classmethod
    def _apply_hooks(cls, method: str, query: Mapping[str, Any] | None) -> dict[str, Any]:
        current = dict(query or {})
        if _query_hooks_suspended.get():
            return current
        for hook in cls.__schema__.hooks_for(method):
            replaced = hook(method, current)
            if replaced is not None:
                current = replaced
        return current

    @classmethod
    def find(cls, *args: Mapping[str, Any], **kwargs: Any) -> Any:
        return super().find(cls._apply_hooks("find", _query_filter(args)), **kwargs)

    @classmethod
    def find_one(cls, *args: Mapping[str, Any], **kwargs: Any) -> Any:
        return super().find_one(cls._apply_hooks("find_one", _query_filter(args)), **kwargs)

    @classmethod
    async def count_documents(cls, *args: Mapping[str, Any]) -> int:
        query = cls._apply_hooks("count_documents", _query_filter(args))
        return await super().find(query).count()

    @classmethod
    async def update_one(
        cls, query: Mapping[str, Any], update: Mapping[str, Any], **kwargs: Any
    ) -> Any:
        query = cls._apply_hooks("update_one", query)
        return await cls.get_motor_collection().update_one(query, update, **kwargs)

    @classmethod
    async def update_many(
        cls, query: Mapping[str, Any], update: Mapping[str, Any], **kwargs: Any
    ) -> Any:
        query = cls._apply_hooks("update_many", query)
        return await cls.get_motor_collection().update_many(query, update, **kwargs)

    @classmethod
    async def find_one_and_update(
        cls, query: Mapping[str, Any], update: Mapping[str, Any], **kwargs: Any
    ) -> "Document | None":
        query = cls._apply_hooks("find_one_and_update", query)
        doc = await cls.get_motor_collection().find_one_and_update(query, update, **kwargs)
        return cls.model_validate(doc) if doc is not None else None

    # Beanie finds the stored copy of a document through find_one({"_id": ...});
    # query hooks only apply to caller queries.

    async def save(self, *args: Any, **kwargs: Any) -> Any:
        with _own_document_lookups():
            return await super().save(*args, **kwargs)

    async def replace(self, *args: Any, **kwargs: Any) -> Any:
        with _own_document_lookups():
            return await super().replace(*args, **kwargs)

    async def update(self, *args: Any, **kwargs: Any) -> Any:
        with _own_document_lookups():
            return await super().update(*args, **kwargs)

    async def delete(self, *args: Any, **kwargs: Any) -> Any:
        with _own_document_lookups():
            return await super().delete(*args, **kwargs)


class ModelRegistry:
    """Registry of models by name."""

    def __init__(self) -> None:
        self._models: dict[str, type[Document]] = {}

    def has_model(self, name: str | None) -> bool:
        return name in self._models

    def model(self, name: str | None) -> type[Document]:
        """
        Get a registered model.

        Raises:
            ModelNotFoundError: If no model has this name
        """
        try:
            return self._models[name]
        except KeyError:
            raise ModelNotFoundError(name) from None

    def upsert_model(
        self,
        name: str,
        schema: SchemaDescriptor | None = None,
        collection_name: str | None = None,
    ) -> type[Document]:
        """
        Create a model with the given name and schema, or return it if it already exists.

        Args:
            name: The name of the model, like "Client"
            schema: The schema of the model (required when creating it)
            collection_name: Collection name (defaults to the pluralized model name)

        Returns:
            The model class

        Raises:
            AssertionError: If the name is missing, or the schema is missing
                            for a model that does not exist yet
        """
        if not name:
            raise AssertionError("Model name not given")
        if name in self._models:
            return self._models[name]
        if schema is None:
            raise AssertionError(f"Model schema not given for {name}")

        collection_name = collection_name or default_collection_name(name)
        settings = type(
            "Settings",
            (),
            {
                "__module__": __name__,
                "__qualname__": f"{name}.Settings",
                "name": collection_name,
                "indexes": schema.index_models(),
            },
        )
        namespace: dict[str, Any] = {
            "__module__": __name__,
            "__qualname__": name,
            "__model_name__": name,
            "__schema__": schema,
            "Settings": settings,
        }
        for virtual_name, getter in schema.virtuals.items():
            namespace[virtual_name] = virtual_field(getter)

        model = type(name, (Document,), namespace)
        self._models[name] = model
        logger.debug(f"Registered model '{name}' on collection '{collection_name}'")
        return model

    def remove(self, name: str) -> None:
        self._models.pop(name, None)

    def names(self) -> list[str]:
        return list(self._models)

    async def init(self, database: AsyncIOMotorDatabase) -> None:
        """
        Bind every registered model to a database.

        Beanie creates the declared indexes of each model's collection.

        Args:
            database: Database the models are stored in
        """
        models = list(self._models.values())
        await init_beanie(database=database, document_models=models)
        logger.info(f"Initialized {len(models)} model(s) on '{database.name}'")


default_registry = ModelRegistry()


def upsert_model(
    name: str,
    schema: SchemaDescriptor | None = None,
    collection_name: str | None = None,
    registry: ModelRegistry | None = None,
) -> type[Document]:
    """Create or fetch a model on the (default) registry. See ModelRegistry.upsert_model()."""
    registry = registry or default_registry
    return registry.upsert_model(name, schema, collection_name=collection_name)


def get_model(name: str, registry: ModelRegistry | None = None) -> type[Document]:
    return (registry or default_registry).model(name)


async def init_models(
    database: AsyncIOMotorDatabase, registry: ModelRegistry | None = None
) -> None:
    """Bind the models of the (default) registry to a database. See ModelRegistry.init()."""
    await (registry or default_registry).init(database)


def assert_instance(
    instance: Any, model: type[Document], registry: ModelRegistry | None = None
) -> None:
    """
    Raise if a given object is not an instance of a given model.

    Args:
        instance: Could be anything, but most likely a Document
        model: A registered model class
        registry: Registry the model belongs to (defaults to the default registry)

    Raises:
        ModelNotFoundError: If the model is not registered
        AssertionError: If instance is not an instance of model
    """
    registry = registry or default_registry
    model_name = getattr(model, "__model_name__", None)
    registry.model(model_name)
    if not isinstance(instance, model):
        raise AssertionError(
            f"Expected an instance of {model_name} but got this:\n{pretty_json(instance)}"
        )
