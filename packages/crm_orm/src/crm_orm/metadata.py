from __future__ import annotations

import re
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .exceptions import UnknownEntityTypeError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

FieldType = Literal[
    "id",
    "varchar",
    "text",
    "int",
    "float",
    "bool",
    "date",
    "datetime",
    "json",
    "foreign_id",
    "foreign_type",
]

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def to_snake_case(name: str) -> str:
    """Convert an entity type name such as ``AccountContact`` to ``account_contact``."""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


class RelationType(str, Enum):
    """Kinds of relationships an entity type can declare."""

    BELONGS_TO = "belongsTo"
    BELONGS_TO_PARENT = "belongsToParent"
    HAS_MANY = "hasMany"
    MANY_MANY = "manyMany"


class FieldDefs(BaseModel):
    """Definition of a single stored attribute."""

    model_config = ConfigDict(frozen=True)

    type: FieldType = "varchar"
    default: Any = None
    not_null: bool = False
    max_length: int | None = None


class RelationDefs(BaseModel):
    """
    Definition of a named relationship.

    Keys left empty are derived from the owning entity type when the
    enclosing ``EntityDefs`` is validated:

    - belongsTo: ``key`` is ``<relation>_id`` on the owner, ``foreign_key`` is ``id``.
    - belongsToParent: ``key`` is ``<relation>_id`` and the target type is read
      from ``<relation>_type`` on each record.
    - hasMany: ``foreign_key`` is ``<owner>_id`` on the target type.
    - manyMany: ``relation_name`` is the pivot table and ``mid_keys`` holds the
      (owner, target) pivot columns.
    """

    type: RelationType
    entity: str | None = None
    key: str | None = None
    foreign_key: str | None = None
    foreign: str | None = None
    relation_name: str | None = None
    mid_keys: tuple[str, str] | None = None
    additional_columns: dict[str, FieldDefs] = Field(default_factory=dict)
    entity_list: list[str] = Field(default_factory=list)


class EntityDefs(BaseModel):
    """Metadata for one entity type: its table, attributes and relations."""

    entity_type: str
    table: str | None = None
    fields: dict[str, FieldDefs] = Field(default_factory=dict)
    relations: dict[str, RelationDefs] = Field(default_factory=dict)

    @model_validator(mode="after")
    def fill_derived_defs(self) -> EntityDefs:
        owner = to_snake_case(self.entity_type)
        if self.table is None:
            self.table = owner

        fields = {"id": FieldDefs(type="id"), **self.fields}
        fields.setdefault("deleted", FieldDefs(type="bool", default=False))

        for name, relation in self.relations.items():
            if relation.type is RelationType.BELONGS_TO:
                relation.key = relation.key or f"{name}_id"
                relation.foreign_key = relation.foreign_key or "id"
                fields.setdefault(relation.key, FieldDefs(type="foreign_id"))
            elif relation.type is RelationType.BELONGS_TO_PARENT:
                relation.key = relation.key or f"{name}_id"
                fields.setdefault(relation.key, FieldDefs(type="foreign_id"))
                fields.setdefault(f"{name}_type", FieldDefs(type="foreign_type"))
            elif relation.type is RelationType.HAS_MANY:
                relation.key = relation.key or "id"
                relation.foreign_key = relation.foreign_key or f"{owner}_id"
            elif relation.type is RelationType.MANY_MANY:
                if relation.entity is None:
                    msg = f"Relation '{name}' of {self.entity_type} needs a target entity"
                    raise ValueError(msg)
                target = to_snake_case(relation.entity)
                relation.key = relation.key or "id"
                relation.foreign_key = relation.foreign_key or "id"
                relation.relation_name = (
                    relation.relation_name or "_".join(sorted((owner, target)))
                )
                relation.mid_keys = relation.mid_keys or (
                    f"{owner}_id",
                    f"{target}_id",
                )

            if relation.type is not RelationType.BELONGS_TO_PARENT and not relation.entity:
                msg = f"Relation '{name}' of {self.entity_type} needs a target entity"
                raise ValueError(msg)

        self.fields = fields
        return self

    def get_relation(self, name: str) -> RelationDefs | None:
        return self.relations.get(name)


class Metadata:
    """
    Registry of entity type definitions.

    Example:
        >>> metadata = Metadata.from_dict({
        ...     "Account": {"fields": {"name": {"type": "varchar"}}},
        ... })
        >>> metadata.get("Account").table
        'account'
    """

    def __init__(self, defs: Iterable[EntityDefs] = ()):
        self._defs: dict[str, EntityDefs] = {}
        for item in defs:
            self.add(item)

    @classmethod
    def from_dict(cls, data: Mapping[str, Mapping[str, Any]]) -> Metadata:
        """Build a registry from ``{entity_type: {fields: ..., relations: ...}}``."""
        return cls(
            EntityDefs.model_validate({"entity_type": entity_type, **defs})
            for entity_type, defs in data.items()
        )

    def add(self, defs: EntityDefs) -> EntityDefs:
        self._defs[defs.entity_type] = defs
        return defs

    def has(self, entity_type: str) -> bool:
        return entity_type in self._defs

    def get(self, entity_type: str) -> EntityDefs:
        """
        Return the definition of ``entity_type``.

        Raises:
            UnknownEntityTypeError: If the type was never registered.
        """
        try:
            return self._defs[entity_type]
        except KeyError:
            msg = f"Entity type '{entity_type}' is not defined"
            raise UnknownEntityTypeError(msg) from None

    def get_relation(self, entity_type: str, relation_name: str) -> RelationDefs | None:
        if not self.has(entity_type):
            return None
        return self._defs[entity_type].get_relation(relation_name)

    def entity_types(self) -> list[str]:
        return list(self._defs)
