from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .metadata import EntityDefs, Metadata, RelationType


class Entity:
    """
    An identified record of one entity type.

    Attributes live in a plain mapping. Lifecycle flags track where the
    instance is in its life: ``is_new`` until the first insert, ``is_fetched``
    when hydrated from storage, ``is_saved`` once written at least once, and
    ``is_being_saved`` while a repository ``save()`` is in progress.

    Example:
        >>> account = Entity(defs)
        >>> account.set({"name": "Acme"})
        >>> account.get("name")
        'Acme'
    """

    def __init__(self, defs: EntityDefs):
        self.defs = defs
        self.is_new = False
        self.is_saved = False
        self.is_fetched = False
        self.is_being_saved = False
        self._values: dict[str, Any] = {}
        self._fetched_values: dict[str, Any] = {}

    @property
    def entity_type(self) -> str:
        return self.defs.entity_type

    @property
    def id(self) -> Any:
        return self._values.get("id")

    @id.setter
    def id(self, value: Any) -> None:
        self._values["id"] = value

    def get(self, name: str, default: Any = None) -> Any:
        return self._values.get(name, default)

    def has(self, name: str) -> bool:
        return name in self._values

    def set(self, name: str | Mapping[str, Any], value: Any = None) -> None:
        """
        Set one attribute, or several at once when given a mapping.

        Example:
            >>> entity.set("name", "Acme")
            >>> entity.set({"name": "Acme", "industry": "Retail"})
        """
        if isinstance(name, str):
            self._values[name] = value
            return
        self._values.update(name)

    def clear(self, name: str) -> None:
        self._values.pop(name, None)

    def get_values(self) -> dict[str, Any]:
        return dict(self._values)

    def populate_defaults(self) -> None:
        """Fill unset attributes with the defaults declared in the type definition."""
        for name, field in self.defs.fields.items():
            if field.default is not None and name not in self._values:
                self._values[name] = copy.deepcopy(field.default)

    def set_as_fetched(self, values: Mapping[str, Any]) -> None:
        """Hydrate the entity from a storage row."""
        self._values = dict(values)
        self.is_new = False
        self.is_fetched = True
        self.update_fetched_values()

    def update_fetched_values(self) -> None:
        """Snapshot current values as the baseline for dirty tracking."""
        self._fetched_values = copy.deepcopy(self._values)

    def get_fetched(self, name: str) -> Any:
        return self._fetched_values.get(name)

    def is_attribute_changed(self, name: str) -> bool:
        if name not in self._values:
            return False
        if name not in self._fetched_values:
            return True
        return self._values[name] != self._fetched_values[name]

    def get_changed_values(self) -> dict[str, Any]:
        return {
            name: value
            for name, value in self._values.items()
            if self.is_attribute_changed(name)
        }

    def has_relation(self, name: str) -> bool:
        return name in self.defs.relations

    def get_relation_type(self, name: str) -> RelationType | None:
        relation = self.defs.get_relation(name)
        return relation.type if relation else None

    def get_relation_param(self, name: str, param: str) -> Any:
        relation = self.defs.get_relation(name)
        if relation is None:
            return None
        return getattr(relation, param, None)

    def __repr__(self) -> str:
        return f"<{self.entity_type} id={self.id!r}>"


class EntityFactory:
    """
    Creates empty entity instances for registered entity types.

    A custom ``Entity`` subclass can be registered per type; everything else
    gets the base class.
    """

    def __init__(
        self,
        metadata: Metadata,
        entity_classes: Mapping[str, type[Entity]] | None = None,
    ):
        self.metadata = metadata
        self._entity_classes: dict[str, type[Entity]] = dict(entity_classes or {})

    def register(self, entity_type: str, entity_class: type[Entity]) -> None:
        self._entity_classes[entity_type] = entity_class

    def create(self, entity_type: str) -> Entity:
        """
        Instantiate an empty entity of ``entity_type``.

        Raises:
            UnknownEntityTypeError: If the type is not defined in the metadata.
        """
        defs = self.metadata.get(entity_type)
        entity_class = self._entity_classes.get(entity_type, Entity)
        return entity_class(defs)
