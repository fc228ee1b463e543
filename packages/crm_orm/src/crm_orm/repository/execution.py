from __future__ import annotations

from typing import TYPE_CHECKING, Any

from crm_orm.collection import SthCollection
from crm_orm.params import SelectParams, merge_select_params

from .construction import RepositoryConstruction

if TYPE_CHECKING:
    from crm_orm.collection import EntityCollection
    from crm_orm.entity import Entity
    from crm_orm.params import ParamsInput

STH_COLLECTION = "sth"


class RepositoryExecution(RepositoryConstruction):
    """
    Terminal read operations.

    Each method resolves the effective ``SelectParams`` from the accumulated
    state plus the per-call parameters, hands them to the mapper and resets
    the accumulated state afterwards, whether the mapper call succeeded or
    not.
    """

    def handle_select_params(self, params: SelectParams) -> SelectParams:
        """
        Adjust select parameters for this entity type before they reach the mapper.

        Override in a type-specific repository to add default filters or
        joins. Skipped when ``params.skip_additional_select_params`` is set.
        """
        return params

    def get_select_params(self, params: ParamsInput = None) -> SelectParams:
        """
        Merge the accumulated state with ``params``.

        The accumulated state is not modified. See
        :func:`crm_orm.params.merge_select_params` for the precedence rules.
        """
        return merge_select_params(
            self.where_clause,
            self.having_clause,
            self._list_params,
            params,
            legacy=self.entity_manager.legacy_params_merge,
        )

    def _effective_params(self, params: ParamsInput) -> SelectParams:
        effective = self.get_select_params(params)
        if not effective.skip_additional_select_params:
            effective = self.handle_select_params(effective)
        return effective

    async def find(self, params: ParamsInput = None) -> EntityCollection | SthCollection:
        """
        Fetch the entities matching the accumulated state and ``params``.

        Returns a materialized ``EntityCollection``, or a forward-only
        ``SthCollection`` when ``sth()`` was chained or ``sth=True`` given.

        Example:
            >>> collection = await repo.where({"industry": "Retail"}).find()
            >>> [account.get("name") for account in collection]
        """
        try:
            effective = self._effective_params(params)
            return await self.mapper.select(self.seed, effective)
        finally:
            self.reset()

    async def find_one(self, params: ParamsInput = None) -> Entity | None:
        """Return the first matching entity, or None."""
        collection = await self.limit(0, 1).find(params)
        if isinstance(collection, SthCollection):
            stream = aiter(collection)
            try:
                return await anext(stream, None)
            finally:
                await stream.aclose()
        if len(collection):
            return collection[0]
        return None

    async def find_by_query(
        self, sql: str, collection_type: str | None = None
    ) -> EntityCollection | SthCollection:
        """
        Fetch entities with a raw SQL query.

        The query is passed to the mapper unchanged. With
        ``collection_type="sth"`` rows are streamed instead of loaded at once.
        """
        try:
            if collection_type is None:
                return await self.mapper.select_by_query(self.seed, sql)
            if collection_type == STH_COLLECTION:
                return self.mapper.create_sth_collection(self.seed, sql=sql)
            msg = f"Unsupported collection type '{collection_type}'"
            raise ValueError(msg)
        finally:
            self.reset()

    async def count(self, params: ParamsInput = None) -> int:
        try:
            effective = self._effective_params(params)
            return int(await self.mapper.count(self.seed, effective))
        finally:
            self.reset()

    async def max(self, field: str, params: ParamsInput = None) -> Any:
        try:
            return await self.mapper.max(self.seed, self.get_select_params(params), field)
        finally:
            self.reset()

    async def min(self, field: str, params: ParamsInput = None) -> Any:
        try:
            return await self.mapper.min(self.seed, self.get_select_params(params), field)
        finally:
            self.reset()

    async def sum(self, field: str, params: ParamsInput = None) -> Any:
        try:
            return await self.mapper.sum(self.seed, self.get_select_params(params), field)
        finally:
            self.reset()
