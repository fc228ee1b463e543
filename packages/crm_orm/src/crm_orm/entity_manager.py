from __future__ import annotations

from typing import TYPE_CHECKING, Any

from crm_core.config import crm_settings
from crm_core.logging import get_logger
from sqlalchemy.exc import SQLAlchemyError

from .entity import EntityFactory
from .exceptions import StorageError
from .mapper import RDBMapper, build_tables
from .params import SelectParams
from .repository import Repository

if TYPE_CHECKING:
    from collections.abc import Mapping

    from sqlalchemy import MetaData
    from sqlalchemy.ext.asyncio import AsyncSession

    from .collection import SthCollection
    from .entity import Entity
    from .mapper import Mapper
    from .metadata import Metadata
    from .params import ParamsInput

logger = get_logger(__name__)


class EntityManager:
    """
    Entry point wiring a session, entity metadata and repositories together.

    Example:
        >>> async for db in get_db():
        ...     em = EntityManager(db, metadata)
        ...     account = await em.get_entity("Account", account_id)
    """

    def __init__(
        self,
        session: AsyncSession | None,
        metadata: Metadata,
        *,
        entity_factory: EntityFactory | None = None,
        mapper: Mapper | None = None,
        repositories: Mapping[str, type[Repository]] | None = None,
        legacy_params_merge: bool | None = None,
    ):
        self.session = session
        self.metadata = metadata
        self.entity_factory = entity_factory or EntityFactory(metadata)
        self.legacy_params_merge = (
            crm_settings.ORM_LEGACY_PARAMS_MERGE
            if legacy_params_merge is None
            else legacy_params_merge
        )
        self._mapper = mapper
        self._repository_classes: dict[str, type[Repository]] = dict(repositories or {})
        self._sa_metadata: MetaData | None = None

    @property
    def sa_metadata(self) -> MetaData:
        if self._sa_metadata is None:
            self._sa_metadata = build_tables(self.metadata)
        return self._sa_metadata

    def get_mapper(self) -> Mapper:
        """
        Return the mapper, building an ``RDBMapper`` on first use.

        Raises:
            RuntimeError: If no mapper was given and there is no session.
        """
        if self._mapper is None:
            if self.session is None:
                msg = "EntityManager has no session; pass a session or a mapper."
                raise RuntimeError(msg)
            self._mapper = RDBMapper(
                self.session, self.metadata, self.entity_factory, self.sa_metadata
            )
        return self._mapper

    def register_repository(self, entity_type: str, repository_class: type[Repository]) -> None:
        self._repository_classes[entity_type] = repository_class

    def get_repository(self, entity_type: str) -> Repository:
        """
        Return a new repository for ``entity_type``.

        Each call builds a fresh instance, so chains started in different
        places never share accumulated state.

        Raises:
            UnknownEntityTypeError: If the type is not defined in the metadata.
        """
        repository_class = self._repository_classes.get(entity_type, Repository)
        return repository_class(entity_type, self)

    async def get_entity(self, entity_type: str, id: str | None = None) -> Entity | None:
        return await self.get_repository(entity_type).get(id)

    async def save_entity(self, entity: Entity, options: Mapping[str, Any] | None = None) -> None:
        await self.get_repository(entity.entity_type).save(entity, options)

    async def remove_entity(self, entity: Entity, options: Mapping[str, Any] | None = None) -> None:
        await self.get_repository(entity.entity_type).remove(entity, options)

    def create_sth_collection(
        self, entity_type: str, params: ParamsInput = None
    ) -> SthCollection:
        """Build a streamed collection of ``entity_type`` without running a repository chain."""
        seed = self.entity_factory.create(entity_type)
        return self.get_mapper().create_sth_collection(
            seed, params=SelectParams.coerce(params)
        )

    async def create_schema(self) -> None:
        """
        Create every entity and pivot table on the session's connection.

        Example:
            >>> await em.create_schema()
        """
        if self.session is None:
            msg = "EntityManager has no session; cannot create the schema."
            raise RuntimeError(msg)
        try:
            connection = await self.session.connection()
            await connection.run_sync(self.sa_metadata.create_all)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Schema creation failed: %s", e)
            msg = f"Database error while creating the schema: {e}"
            raise StorageError(msg) from e
        logger.info("Created tables for %d entity types", len(self.metadata.entity_types()))
