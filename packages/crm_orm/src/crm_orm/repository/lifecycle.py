from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from crm_core.logging import get_logger

from crm_orm.exceptions import TableLockError
from crm_orm.params import SelectParams

from .execution import RepositoryExecution

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

    from crm_orm.entity import Entity
    from crm_orm.params import ParamsInput

logger = get_logger(__name__)


class RepositoryLifecycle(RepositoryExecution):
    """
    Entity lifecycle: creation, loading, saving and removal.

    Subclasses customize behaviour through the ``before_*``/``after_*``
    coroutine hooks, which are no-ops here.
    """

    def get_new(self) -> Entity:
        """
        Return a new, unsaved entity with type defaults populated.

        Raises:
            UnknownEntityTypeError: If the repository's type lost its metadata.
        """
        entity = self.entity_factory.create(self.entity_type)
        entity.is_new = True
        entity.populate_defaults()
        return entity

    async def get_by_id(self, id: str, params: ParamsInput = None) -> Entity | None:
        """Fetch an entity by id. Returns None when no record matches."""
        entity = self.entity_factory.create(self.entity_type)
        params = SelectParams.coerce(params)
        if not params.skip_additional_select_params:
            params = self.handle_select_params(params)
        return await self.mapper.select_by_id(entity, id, params)

    async def get(self, id: str | None = None) -> Entity | None:
        if id is None:
            return self.get_new()
        return await self.get_by_id(id)

    async def before_save(self, entity: Entity, options: Mapping[str, Any]) -> None:
        pass

    async def after_save(self, entity: Entity, options: Mapping[str, Any]) -> None:
        pass

    async def save(self, entity: Entity, options: Mapping[str, Any] | None = None) -> None:
        """
        Insert or update an entity.

        Sequence:
            1. flag the entity as being saved;
            2. ``before_save`` unless ``skip_before_save``/``skip_all``;
            3. insert a new, never saved entity, update anything else;
            4. flag the entity as saved;
            5. ``after_save`` unless ``skip_after_save``/``skip_all``;
            6. clear ``is_new`` (unless ``keep_new``), or refresh the fetched
               values of a fetched entity;
            7. clear the being-saved flag, also when any step above raised.

        Example:
            >>> account = repo.get_new()
            >>> account.set("name", "Acme")
            >>> await repo.save(account, {"keep_new": True})
        """
        options = dict(options or {})
        skip_all = bool(options.get("skip_all"))

        entity.is_being_saved = True
        try:
            if not options.get("skip_before_save") and not skip_all:
                await self.before_save(entity, options)

            if entity.is_new and not entity.is_saved:
                await self.mapper.insert(entity)
            else:
                await self.mapper.update(entity)

            entity.is_saved = True

            if not options.get("skip_after_save") and not skip_all:
                await self.after_save(entity, options)

            if entity.is_new:
                if not options.get("keep_new"):
                    entity.is_new = False
            elif entity.is_fetched:
                entity.update_fetched_values()
        finally:
            entity.is_being_saved = False

    async def before_remove(self, entity: Entity, options: Mapping[str, Any]) -> None:
        pass

    async def after_remove(self, entity: Entity, options: Mapping[str, Any]) -> None:
        pass

    async def remove(self, entity: Entity, options: Mapping[str, Any] | None = None) -> None:
        """Soft-delete an entity, running the remove hooks around it."""
        options = dict(options or {})
        await self.before_remove(entity, options)
        await self.mapper.delete(entity)
        await self.after_remove(entity, options)

    async def delete_from_db(self, id: str, only_deleted: bool = False) -> bool:
        """Hard-delete a record, bypassing hooks."""
        return await self.mapper.delete_from_db(self.entity_type, id, only_deleted)

    async def restore_deleted(self, id: str) -> bool:
        """Restore a record flagged as deleted."""
        return await self.mapper.restore_deleted(self.entity_type, id)

    # --- Table locking ---

    def is_table_locked(self) -> bool:
        return self._is_table_locked

    async def lock_table(self) -> None:
        """
        Take an exclusive write lock on this entity type's table.

        Raises:
            TableLockError: If this repository already holds the lock.
        """
        if self.is_table_locked():
            msg = f"Table of {self.entity_type} is already locked"
            raise TableLockError(msg)
        await self.mapper.lock_table(self.entity_type)
        self._is_table_locked = True
        logger.info("Locked table", extra={"entity_type": self.entity_type})

    async def unlock_table(self) -> None:
        try:
            await self.mapper.unlock_tables()
        finally:
            self._is_table_locked = False
            logger.info("Unlocked table", extra={"entity_type": self.entity_type})

    @asynccontextmanager
    async def table_lock(self) -> AsyncIterator[None]:
        """
        Hold the table lock for the duration of the block.

        The lock is released on every exit path, including exceptions.

        Example:
            >>> async with repo.table_lock():
            ...     number = await repo.max("number")
            ...     await repo.save(next_record(number))
        """
        await self.lock_table()
        try:
            yield
        finally:
            await self.unlock_table()
