from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, Union

from crm_core.logging import get_logger
from pydantic import BaseModel

from crm_orm.entity import Entity
from crm_orm.metadata import RelationType
from crm_orm.params import SelectParams

from .lifecycle import RepositoryLifecycle

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from crm_orm.collection import EntityCollection, SthCollection
    from crm_orm.params import ParamsInput

    RelateHook = Callable[
        [Any, Entity, Any, "dict[str, Any] | None", Mapping[str, Any]], Awaitable[Any]
    ]
    UnrelateHook = Callable[[Any, Entity, Any, Mapping[str, Any]], Awaitable[Any]]

logger = get_logger(__name__)


@dataclass(frozen=True)
class Identified:
    """A foreign record passed as an entity."""

    entity: Entity

    @property
    def id(self) -> str | None:
        return self.entity.id


@dataclass(frozen=True)
class Reference:
    """A foreign record passed by id."""

    id: str


@dataclass(frozen=True)
class All:
    """Every foreign record of a relation; only meaningful for ``unrelate``."""


Foreign = Union[Identified, Reference, All]


def resolve_foreign(value: Any) -> Foreign | None:
    """
    Classify the ``foreign`` argument of a relation operation.

    Returns None for unsupported values.

    Example:
        >>> resolve_foreign("5f2c")
        Reference(id='5f2c')
        >>> resolve_foreign(True)
        All()
    """
    # bool first: True must not fall through to any other branch
    if isinstance(value, bool):
        return All() if value else None
    if isinstance(value, (Identified, Reference, All)):
        return value
    if isinstance(value, Entity):
        return Identified(value)
    if isinstance(value, str):
        return Reference(value)
    return None


@dataclass(frozen=True)
class RelationOverride:
    """
    Relation-specific behaviour registered on a repository class.

    Every member is an optional coroutine function. ``before_*``/``after_*``
    run in addition to the generic hooks; ``relate``/``unrelate`` replace the
    generic mapper dispatch and their result decides whether the after hooks
    run.

    Relate callables are called as ``(repository, entity, foreign, data, options)``,
    unrelate callables as ``(repository, entity, foreign, options)``; ``foreign``
    is the argument as the caller passed it.

    Example:
        >>> async def after_relate_teams(repo, entity, foreign, data, options):
        ...     await repo.save(entity, {"skip_all": True})
        >>> class AccountRepository(Repository):
        ...     relation_overrides = {"teams": RelationOverride(after_relate=after_relate_teams)}
    """

    before_relate: RelateHook | None = None
    relate: RelateHook | None = None
    after_relate: RelateHook | None = None
    before_unrelate: UnrelateHook | None = None
    unrelate: UnrelateHook | None = None
    after_unrelate: UnrelateHook | None = None


def _normalize_data(data: Any) -> dict[str, Any] | None:
    # Pivot data may be given as any plain object; the mapper wants a dict.
    # Returns None for None and for values that carry no attributes.
    if data is None:
        return None
    if isinstance(data, Mapping):
        return dict(data)
    if isinstance(data, BaseModel):
        return data.model_dump()
    if dataclasses.is_dataclass(data) and not isinstance(data, type):
        return dataclasses.asdict(data)
    if hasattr(data, "__dict__") and not isinstance(data, type):
        return dict(vars(data))
    return None


class RepositoryRelations(RepositoryLifecycle):
    """
    Relation reads and mutations.

    Caller misuse (no entity id, unknown relation, unsupported ``foreign``)
    is answered with ``False``/``None``/``0`` instead of an exception.
    Storage failures propagate.
    """

    relation_overrides: ClassVar[Mapping[str, RelationOverride]] = {}

    def _relation_known(self, entity: Entity, relation_name: str) -> bool:
        if entity.has_relation(relation_name):
            return True
        logger.debug(
            "Unknown relation %s", relation_name, extra={"entity_type": entity.entity_type}
        )
        return False

    def _override(self, relation_name: str) -> RelationOverride | None:
        return self.relation_overrides.get(relation_name)

    def _target_type(self, entity: Entity, relation_name: str) -> str | None:
        if entity.get_relation_type(relation_name) is RelationType.BELONGS_TO_PARENT:
            return entity.get(f"{relation_name}_type")
        return entity.get_relation_param(relation_name, "entity")

    def _related_params(self, target_type: str | None, params: ParamsInput) -> SelectParams:
        params = SelectParams.coerce(params)
        if target_type and not params.skip_additional_select_params:
            repository = self.entity_manager.get_repository(target_type)
            params = repository.handle_select_params(params)
        return params

    # --- Reads ---

    async def find_related(
        self, entity: Entity, relation_name: str, params: ParamsInput = None
    ) -> EntityCollection | SthCollection | Entity | None:
        """
        Fetch the records related to ``entity``.

        Returns the related entity (or None) for belongs-to relations and a
        collection for has-many and many-to-many relations. Returns None for
        an entity without id or an unknown relation.
        """
        if not entity.id or not self._relation_known(entity, relation_name):
            return None
        target_type = self._target_type(entity, relation_name)
        params = self._related_params(target_type, params)
        return await self.mapper.select_related(entity, relation_name, params)

    async def count_related(
        self, entity: Entity, relation_name: str, params: ParamsInput = None
    ) -> int:
        if not entity.id or not self._relation_known(entity, relation_name):
            return 0
        target_type = self._target_type(entity, relation_name)
        params = self._related_params(target_type, params)
        return int(await self.mapper.count_related(entity, relation_name, params))

    async def is_related(self, entity: Entity, relation_name: str, foreign: Any) -> bool:
        """
        Check whether ``foreign`` (entity or id) is related to ``entity``.

        For belongs-to relations the foreign record must still exist; a key
        pointing at a removed record does not count.
        """
        if not entity.id or not self._relation_known(entity, relation_name):
            return False
        resolved = resolve_foreign(foreign)
        if not isinstance(resolved, (Identified, Reference)) or not resolved.id:
            logger.debug("Unsupported foreign argument for is_related: %r", foreign)
            return False

        if entity.get_relation_type(relation_name) is RelationType.BELONGS_TO:
            foreign_type = entity.get_relation_param(relation_name, "entity")
            key = entity.get_relation_param(relation_name, "key")
            foreign_id = entity.get(key)
            if not foreign_id:
                # Fresh repositories; this one may hold a caller's chain.
                own = await (
                    self.entity_manager.get_repository(entity.entity_type)
                    .select(["id", key])
                    .where({"id": entity.id})
                    .find_one()
                )
                foreign_id = own.get(key) if own is not None else None
            if not foreign_id:
                return False
            foreign_entity = await (
                self.entity_manager.get_repository(foreign_type)
                .select(["id"])
                .where({"id": foreign_id})
                .find_one()
            )
            if foreign_entity is None:
                return False
            return foreign_entity.id == resolved.id

        count = await self.count_related(
            entity, relation_name, {"where_clause": {"id": resolved.id}}
        )
        return count > 0

    # --- Generic hooks ---

    async def before_relate(
        self,
        entity: Entity,
        relation_name: str,
        foreign: Any,
        data: dict[str, Any] | None,
        options: Mapping[str, Any],
    ) -> None:
        pass

    async def after_relate(
        self,
        entity: Entity,
        relation_name: str,
        foreign: Any,
        data: dict[str, Any] | None,
        options: Mapping[str, Any],
    ) -> None:
        pass

    async def before_unrelate(
        self, entity: Entity, relation_name: str, foreign: Any, options: Mapping[str, Any]
    ) -> None:
        pass

    async def after_unrelate(
        self, entity: Entity, relation_name: str, foreign: Any, options: Mapping[str, Any]
    ) -> None:
        pass

    async def before_mass_relate(
        self,
        entity: Entity,
        relation_name: str,
        params: SelectParams,
        options: Mapping[str, Any],
    ) -> None:
        pass

    async def after_mass_relate(
        self,
        entity: Entity,
        relation_name: str,
        params: SelectParams,
        options: Mapping[str, Any],
    ) -> None:
        pass

    # --- Mutations ---

    async def relate(
        self,
        entity: Entity,
        relation_name: str,
        foreign: Any,
        data: Any = None,
        options: Mapping[str, Any] | None = None,
    ) -> bool:
        """
        Relate ``foreign`` (an entity or an id) to ``entity``.

        The generic ``before_relate`` hook always runs, followed by the
        relation's ``before_relate`` override if one is registered. A
        registered ``relate`` override replaces the mapper call. The after
        hooks run, in the same order, only on a truthy result.

        Example:
            >>> await repo.relate(account, "teams", team)
            >>> await repo.relate(account, "contacts", contact_id, {"role": "Owner"})
        """
        if not entity.id:
            logger.debug("Cannot relate without id", extra={"entity_type": entity.entity_type})
            return False
        if not self._relation_known(entity, relation_name):
            return False

        pivot_data = _normalize_data(data)
        if data is not None and pivot_data is None:
            logger.debug("Unsupported relation data for %s: %r", relation_name, data)
            return False

        options = dict(options or {})
        override = self._override(relation_name)

        await self.before_relate(entity, relation_name, foreign, data, options)
        if override is not None and override.before_relate is not None:
            await override.before_relate(self, entity, foreign, data, options)

        if override is not None and override.relate is not None:
            result = await override.relate(self, entity, foreign, data, options)
        else:
            resolved = resolve_foreign(foreign)
            if isinstance(resolved, Identified):
                result = await self.mapper.relate(
                    entity, relation_name, resolved.entity, pivot_data
                )
            elif isinstance(resolved, Reference):
                result = await self.mapper.add_relation(
                    entity, relation_name, resolved.id, None, pivot_data
                )
            else:
                logger.debug("Unsupported foreign argument for relate: %r", foreign)
                result = False

        if result:
            await self.after_relate(entity, relation_name, foreign, data, options)
            if override is not None and override.after_relate is not None:
                await override.after_relate(self, entity, foreign, data, options)

        return bool(result)

    async def unrelate(
        self,
        entity: Entity,
        relation_name: str,
        foreign: Any,
        options: Mapping[str, Any] | None = None,
    ) -> bool:
        """
        Remove a relation.

        ``foreign`` may be an entity, an id, or ``True`` to remove every
        record of the relation. Hooks follow the pattern of ``relate()``.
        """
        if not entity.id:
            logger.debug("Cannot unrelate without id", extra={"entity_type": entity.entity_type})
            return False
        if not self._relation_known(entity, relation_name):
            return False

        options = dict(options or {})
        override = self._override(relation_name)

        await self.before_unrelate(entity, relation_name, foreign, options)
        if override is not None and override.before_unrelate is not None:
            await override.before_unrelate(self, entity, foreign, options)

        if override is not None and override.unrelate is not None:
            result = await override.unrelate(self, entity, foreign, options)
        else:
            resolved = resolve_foreign(foreign)
            if isinstance(resolved, Identified):
                result = await self.mapper.unrelate(entity, relation_name, resolved.entity)
            elif isinstance(resolved, Reference):
                result = await self.mapper.remove_relation(entity, relation_name, resolved.id)
            elif isinstance(resolved, All):
                result = await self.mapper.remove_all_relations(entity, relation_name)
            else:
                logger.debug("Unsupported foreign argument for unrelate: %r", foreign)
                result = False

        if result:
            await self.after_unrelate(entity, relation_name, foreign, options)
            if override is not None and override.after_unrelate is not None:
                await override.after_unrelate(self, entity, foreign, options)

        return bool(result)

    async def update_relation(
        self, entity: Entity, relation_name: str, foreign: Any, data: Any
    ) -> bool:
        """Update the pivot columns of a many-to-many relation row."""
        if not entity.id or not self._relation_known(entity, relation_name):
            return False
        resolved = resolve_foreign(foreign)
        if not isinstance(resolved, (Identified, Reference)) or not resolved.id:
            logger.debug("Unsupported foreign argument for update_relation: %r", foreign)
            return False
        pivot_data = _normalize_data(data)
        if pivot_data is None:
            logger.debug("Unsupported relation data for %s: %r", relation_name, data)
            return False
        return await self.mapper.update_relation(entity, relation_name, resolved.id, pivot_data)

    async def mass_relate(
        self,
        entity: Entity,
        relation_name: str,
        params: ParamsInput = None,
        options: Mapping[str, Any] | None = None,
    ) -> bool:
        """
        Relate every record matching ``params`` to ``entity``.

        Example:
            >>> await repo.mass_relate(team, "accounts", {"where_clause": {"industry": "Retail"}})
        """
        if not entity.id:
            logger.debug("Cannot mass relate without id", extra={"entity_type": entity.entity_type})
            return False
        if not self._relation_known(entity, relation_name):
            return False

        options = dict(options or {})
        params = SelectParams.coerce(params)
        await self.before_mass_relate(entity, relation_name, params, options)
        result = await self.mapper.mass_relate(entity, relation_name, params)
        await self.after_mass_relate(entity, relation_name, params, options)
        return bool(result)

    async def get_relation_column(
        self, entity: Entity, relation_name: str, foreign_id: str, column: str
    ) -> Any:
        """Read one column of a many-to-many pivot row."""
        if not self._relation_known(entity, relation_name):
            return None
        return await self.mapper.get_relation_column(entity, relation_name, foreign_id, column)
