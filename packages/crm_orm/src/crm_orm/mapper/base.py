from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from crm_orm.collection import EntityCollection, SthCollection
    from crm_orm.entity import Entity
    from crm_orm.params import SelectParams


@runtime_checkable
class Mapper(Protocol):
    """
    Storage-execution boundary used by repositories.

    A mapper turns entities, relation instructions and ``SelectParams`` into
    storage operations. Repositories never build query text themselves; every
    read and write goes through one of these coroutines.
    """

    async def select_by_id(
        self, entity: Entity, id: str, params: SelectParams
    ) -> Entity | None: ...

    async def select(
        self, entity: Entity, params: SelectParams
    ) -> EntityCollection | SthCollection: ...

    async def select_by_query(self, entity: Entity, sql: str) -> EntityCollection: ...

    def create_sth_collection(
        self, entity: Entity, *, params: SelectParams | None = None, sql: str | None = None
    ) -> SthCollection: ...

    async def insert(self, entity: Entity) -> None: ...

    async def update(self, entity: Entity) -> None: ...

    async def delete(self, entity: Entity) -> bool: ...

    async def delete_from_db(
        self, entity_type: str, id: str, only_deleted: bool = False
    ) -> bool: ...

    async def restore_deleted(self, entity_type: str, id: str) -> bool: ...

    async def count(self, entity: Entity, params: SelectParams) -> int: ...

    async def max(self, entity: Entity, params: SelectParams, field: str) -> Any: ...

    async def min(self, entity: Entity, params: SelectParams, field: str) -> Any: ...

    async def sum(self, entity: Entity, params: SelectParams, field: str) -> Any: ...

    async def select_related(
        self, entity: Entity, relation_name: str, params: SelectParams
    ) -> EntityCollection | Entity | None: ...

    async def count_related(
        self, entity: Entity, relation_name: str, params: SelectParams
    ) -> int: ...

    async def relate(
        self,
        entity: Entity,
        relation_name: str,
        foreign: Entity,
        data: dict[str, Any] | None = None,
    ) -> bool: ...

    async def unrelate(self, entity: Entity, relation_name: str, foreign: Entity) -> bool: ...

    async def add_relation(
        self,
        entity: Entity,
        relation_name: str,
        foreign_id: str,
        foreign: Entity | None = None,
        data: dict[str, Any] | None = None,
    ) -> bool: ...

    async def remove_relation(
        self, entity: Entity, relation_name: str, foreign_id: str
    ) -> bool: ...

    async def remove_all_relations(self, entity: Entity, relation_name: str) -> bool: ...

    async def update_relation(
        self,
        entity: Entity,
        relation_name: str,
        foreign_id: str,
        data: dict[str, Any],
    ) -> bool: ...

    async def mass_relate(
        self, entity: Entity, relation_name: str, params: SelectParams
    ) -> bool: ...

    async def get_relation_column(
        self, entity: Entity, relation_name: str, foreign_id: str, column: str
    ) -> Any: ...

    async def lock_table(self, entity_type: str) -> None: ...

    async def unlock_tables(self) -> None: ...
