from .collection import EntityCollection, SthCollection
from .db import close_db, get_db, init_db
from .entity import Entity, EntityFactory
from .entity_manager import EntityManager
from .exceptions import (
    CollectionConsumedError,
    ORMError,
    StorageError,
    TableLockError,
    UnknownEntityTypeError,
)
from .metadata import EntityDefs, FieldDefs, Metadata, RelationDefs, RelationType
from .params import SelectParams, merge_select_params
from .repository import All, Identified, Reference, RelationOverride, Repository

__all__ = [
    "All",
    "CollectionConsumedError",
    "Entity",
    "EntityCollection",
    "EntityDefs",
    "EntityFactory",
    "EntityManager",
    "FieldDefs",
    "Identified",
    "Metadata",
    "ORMError",
    "Reference",
    "RelationDefs",
    "RelationOverride",
    "RelationType",
    "Repository",
    "SelectParams",
    "StorageError",
    "SthCollection",
    "TableLockError",
    "UnknownEntityTypeError",
    "close_db",
    "get_db",
    "init_db",
    "merge_select_params",
]
