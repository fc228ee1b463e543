from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from crm_core.config import crm_settings
from crm_core.logging import get_logger
from sqlalchemy import delete, func, insert, select, text, update
from sqlalchemy.exc import SQLAlchemyError

from crm_orm.collection import EntityCollection, SthCollection
from crm_orm.exceptions import StorageError
from crm_orm.metadata import RelationType
from crm_orm.params import SelectParams

from .conditions import ConditionBuilder
from .schema import build_tables

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

    from sqlalchemy import MetaData, Table
    from sqlalchemy.engine import Result
    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlalchemy.sql import ColumnElement, Executable, Select

    from crm_orm.entity import Entity, EntityFactory
    from crm_orm.metadata import Metadata, RelationDefs

logger = get_logger(__name__)

SQL_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "COUNT": func.count,
    "SUM": func.sum,
    "MAX": func.max,
    "MIN": func.min,
    "AVG": func.avg,
}


def _is_descending(direction: Any) -> bool:
    if isinstance(direction, bool):
        return direction
    return isinstance(direction, str) and direction.upper() == "DESC"


@dataclass
class QueryContext:
    """
    FROM clause of one query plus the names it makes resolvable.

    ``aliases`` maps join aliases to the joined (aliased) tables so that
    conditions such as ``{"teams.name": "Sales"}`` can be resolved.
    """

    table: Table
    from_clause: Any
    aliases: dict[str, Any] = field(default_factory=dict)

    def resolve(self, attribute: str) -> ColumnElement[Any]:
        """
        Turn an attribute reference into a column expression.

        Supported forms: ``name``, ``alias.name`` and ``FUNC:name`` where FUNC
        is one of COUNT, SUM, MAX, MIN, AVG.
        """
        if ":" in attribute:
            function_name, _, inner = attribute.partition(":")
            function = SQL_FUNCTIONS.get(function_name.upper())
            if function is None:
                msg = f"Unsupported function '{function_name}' in '{attribute}'"
                raise ValueError(msg)
            return function(self.resolve(inner))

        if "." in attribute:
            alias, _, name = attribute.partition(".")
            target = self.aliases.get(alias)
            if target is None or name not in target.c:
                msg = f"Unknown joined attribute '{attribute}'"
                raise ValueError(msg)
            return target.c[name]

        if attribute not in self.table.c:
            msg = f"Attribute '{attribute}' not found on table {self.table.name}"
            raise ValueError(msg)
        return self.table.c[attribute]


class RDBMapper:
    """
    SQLAlchemy implementation of the mapper boundary.

    Works on an ``AsyncSession`` with Core statements built from ``Metadata``
    tables; entities are hydrated through the ``EntityFactory``. Each write
    operation commits when ``autocommit`` is enabled. Every failing statement
    rolls the session back and surfaces as ``StorageError``.

    Example:
        >>> mapper = RDBMapper(session, metadata, EntityFactory(metadata))
        >>> collection = await mapper.select(seed, SelectParams(limit=10))
    """

    def __init__(
        self,
        session: AsyncSession,
        metadata: Metadata,
        entity_factory: EntityFactory,
        sa_metadata: MetaData | None = None,
        *,
        autocommit: bool = True,
        sth_batch_size: int | None = None,
    ):
        self.session = session
        self.metadata = metadata
        self.entity_factory = entity_factory
        self.sa_metadata = build_tables(metadata, sa_metadata)
        self.autocommit = autocommit
        self.sth_batch_size = sth_batch_size or crm_settings.ORM_STH_BATCH_SIZE

    # --- Tables & statements ---

    def get_table(self, entity_type: str) -> Table:
        return self.sa_metadata.tables[self.metadata.get(entity_type).table]

    def _pivot_table(self, relation: RelationDefs) -> Table:
        return self.sa_metadata.tables[relation.relation_name]

    def _get_relation(self, entity_type: str, relation_name: str) -> RelationDefs:
        relation = self.metadata.get_relation(entity_type, relation_name)
        if relation is None:
            msg = f"Relation '{relation_name}' not found on {entity_type}"
            raise ValueError(msg)
        return relation

    def _build_context(self, entity_type: str, params: SelectParams) -> QueryContext:
        table = self.get_table(entity_type)
        context = QueryContext(table=table, from_clause=table)
        for spec in params.joins:
            self._add_join(context, entity_type, spec, outer=False)
        for spec in params.left_joins:
            self._add_join(context, entity_type, spec, outer=True)
        return context

    def _add_join(
        self, context: QueryContext, entity_type: str, spec: Any, *, outer: bool
    ) -> None:
        if isinstance(spec, str):
            relation_name, alias, conditions = spec, spec, None
        else:
            relation_name = spec[0]
            alias = spec[1] if len(spec) > 1 and spec[1] else relation_name
            conditions = spec[2] if len(spec) > 2 else None

        if alias in context.aliases:
            return

        relation = self._get_relation(entity_type, relation_name)
        if relation.type is RelationType.BELONGS_TO_PARENT:
            msg = f"Cannot join polymorphic relation '{relation_name}'"
            raise ValueError(msg)

        base = context.table
        target = self.get_table(relation.entity).alias(alias)
        middle = None

        if relation.type is RelationType.BELONGS_TO:
            onclause = target.c.id == base.c[relation.key]
        elif relation.type is RelationType.HAS_MANY:
            onclause = target.c[relation.foreign_key] == base.c.id
        else:
            near_key, far_key = relation.mid_keys
            middle = self._pivot_table(relation).alias(f"{alias}_middle")
            context.from_clause = context.from_clause.join(
                middle,
                (middle.c[near_key] == base.c.id) & middle.c.deleted.is_(False),
                isouter=outer,
            )
            context.aliases[f"{alias}_middle"] = middle
            onclause = target.c.id == middle.c[far_key]

        onclause = onclause & target.c.deleted.is_(False)

        if conditions:

            def resolve(attribute: str) -> Any:
                if "." not in attribute and ":" not in attribute:
                    if attribute in target.c:
                        return target.c[attribute]
                    if middle is not None and attribute in middle.c:
                        return middle.c[attribute]
                return context.resolve(attribute)

            extra = ConditionBuilder(resolve).build(conditions)
            if extra is not None:
                onclause = onclause & extra

        context.from_clause = context.from_clause.join(
            target, onclause, isouter=outer
        )
        context.aliases[alias] = target

    def _order_clauses(
        self, context: QueryContext, params: SelectParams
    ) -> list[ColumnElement[Any]]:
        if params.order_by is None:
            return []

        if isinstance(params.order_by, str):
            items: list[Any] = [[params.order_by, params.order]]
        else:
            items = [
                [item, params.order] if isinstance(item, str) else item
                for item in params.order_by
            ]

        clauses = []
        for item in items:
            column = context.resolve(item[0])
            direction = item[1] if len(item) > 1 else None
            clauses.append(column.desc() if _is_descending(direction) else column.asc())
        return clauses

    def build_select(
        self,
        entity_type: str,
        params: SelectParams,
        *,
        extra_conditions: list[ColumnElement[bool]] | None = None,
        paginate: bool = True,
    ) -> Select:
        """Translate ``params`` into a SQLAlchemy ``Select`` for ``entity_type``."""
        context = self._build_context(entity_type, params)
        table = context.table

        if params.select:
            names = list(params.select)
            if "id" not in names and not params.group_by:
                names.insert(0, "id")
            columns = [context.resolve(name).label(name) for name in names]
        else:
            columns = list(table.c)

        stmt = select(*columns).select_from(context.from_clause)
        stmt = stmt.where(table.c.deleted.is_(False))

        where = ConditionBuilder(context.resolve).build(params.where_clause)
        if where is not None:
            stmt = stmt.where(where)
        for condition in extra_conditions or []:
            stmt = stmt.where(condition)

        if params.group_by:
            stmt = stmt.group_by(*(context.resolve(name) for name in params.group_by))

        having = ConditionBuilder(context.resolve).build(params.having_clause)
        if having is not None:
            stmt = stmt.having(having)

        if params.distinct:
            stmt = stmt.distinct()

        if paginate:
            order = self._order_clauses(context, params)
            if order:
                stmt = stmt.order_by(*order)
            if params.offset:
                stmt = stmt.offset(params.offset)
            if params.limit is not None:
                stmt = stmt.limit(params.limit)

        return stmt

    # --- Execution helpers ---

    async def _execute(self, stmt: Executable) -> Result[Any]:
        logger.debug("Executing %s", stmt)
        try:
            return await self.session.execute(stmt)
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Statement failed: %s", e)
            msg = f"Database error while executing statement: {e}"
            raise StorageError(msg) from e

    async def _commit(self, force: bool = False) -> None:
        if not self.autocommit and not force:
            return
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Commit failed: %s", e)
            msg = f"Database error while committing: {e}"
            raise StorageError(msg) from e

    def _hydrate(self, entity_type: str, row: Mapping[str, Any]) -> Entity:
        entity = self.entity_factory.create(entity_type)
        entity.set_as_fetched(dict(row))
        return entity

    def _stream(self, entity_type: str, stmt: Executable) -> Callable[[], AsyncIterator[Entity]]:
        async def iterate() -> AsyncIterator[Entity]:
            logger.debug("Streaming %s", stmt)
            try:
                result = await self.session.stream(
                    stmt.execution_options(yield_per=self.sth_batch_size)
                )
                try:
                    async for row in result.mappings():
                        yield self._hydrate(entity_type, row)
                finally:
                    await result.close()
            except SQLAlchemyError as e:
                await self.session.rollback()
                logger.error("Streamed statement failed: %s", e)
                msg = f"Database error while streaming {entity_type}: {e}"
                raise StorageError(msg) from e

        return iterate

    async def _collect(
        self, entity_type: str, stmt: Select, params: SelectParams
    ) -> EntityCollection | SthCollection:
        if params.sth:
            return SthCollection(entity_type, self._stream(entity_type, stmt))
        result = await self._execute(stmt)
        return EntityCollection(
            entity_type,
            (self._hydrate(entity_type, row) for row in result.mappings()),
        )

    # --- Reads ---

    async def select_by_id(
        self, entity: Entity, id: str, params: SelectParams
    ) -> Entity | None:
        table = self.get_table(entity.entity_type)
        stmt = self.build_select(
            entity.entity_type,
            params,
            extra_conditions=[table.c.id == id],
            paginate=False,
        ).limit(1)
        result = await self._execute(stmt)
        row = result.mappings().first()
        if row is None:
            return None
        entity.set_as_fetched(dict(row))
        return entity

    async def select(
        self, entity: Entity, params: SelectParams
    ) -> EntityCollection | SthCollection:
        stmt = self.build_select(entity.entity_type, params)
        return await self._collect(entity.entity_type, stmt, params)

    async def select_by_query(self, entity: Entity, sql: str) -> EntityCollection:
        result = await self._execute(text(sql))
        return EntityCollection(
            entity.entity_type,
            (self._hydrate(entity.entity_type, row) for row in result.mappings()),
        )

    def create_sth_collection(
        self,
        entity: Entity,
        *,
        params: SelectParams | None = None,
        sql: str | None = None,
    ) -> SthCollection:
        stmt: Executable = (
            text(sql)
            if sql is not None
            else self.build_select(entity.entity_type, params or SelectParams())
        )
        return SthCollection(entity.entity_type, self._stream(entity.entity_type, stmt))

    async def count(self, entity: Entity, params: SelectParams) -> int:
        inner = self.build_select(entity.entity_type, params, paginate=False)
        stmt = select(func.count()).select_from(inner.subquery())
        result = await self._execute(stmt)
        return int(result.scalar() or 0)

    async def _aggregate(
        self, entity: Entity, params: SelectParams, function: str, field_name: str
    ) -> Any:
        context = self._build_context(entity.entity_type, params)
        column = SQL_FUNCTIONS[function](context.resolve(field_name))
        stmt = (
            select(column)
            .select_from(context.from_clause)
            .where(context.table.c.deleted.is_(False))
        )
        where = ConditionBuilder(context.resolve).build(params.where_clause)
        if where is not None:
            stmt = stmt.where(where)
        result = await self._execute(stmt)
        return result.scalar()

    async def max(self, entity: Entity, params: SelectParams, field: str) -> Any:
        return await self._aggregate(entity, params, "MAX", field)

    async def min(self, entity: Entity, params: SelectParams, field: str) -> Any:
        return await self._aggregate(entity, params, "MIN", field)

    async def sum(self, entity: Entity, params: SelectParams, field: str) -> Any:
        return await self._aggregate(entity, params, "SUM", field)

    # --- Writes ---

    async def insert(self, entity: Entity) -> None:
        table = self.get_table(entity.entity_type)
        if not entity.id:
            entity.id = uuid.uuid4().hex
        values = {k: v for k, v in entity.get_values().items() if k in table.c}
        values.setdefault("deleted", False)
        await self._execute(insert(table).values(**values))
        await self._commit()

    async def update(self, entity: Entity) -> None:
        table = self.get_table(entity.entity_type)
        values = {
            k: v
            for k, v in entity.get_changed_values().items()
            if k in table.c and k != "id"
        }
        if not values:
            return
        await self._execute(update(table).where(table.c.id == entity.id).values(**values))
        await self._commit()

    async def delete(self, entity: Entity) -> bool:
        table = self.get_table(entity.entity_type)
        result = await self._execute(
            update(table).where(table.c.id == entity.id).values(deleted=True)
        )
        await self._commit()
        entity.set("deleted", True)
        return bool(getattr(result, "rowcount", 0))

    async def delete_from_db(
        self, entity_type: str, id: str, only_deleted: bool = False
    ) -> bool:
        table = self.get_table(entity_type)
        stmt = delete(table).where(table.c.id == id)
        if only_deleted:
            stmt = stmt.where(table.c.deleted.is_(True))
        result = await self._execute(stmt)
        await self._commit()
        return bool(getattr(result, "rowcount", 0))

    async def restore_deleted(self, entity_type: str, id: str) -> bool:
        table = self.get_table(entity_type)
        result = await self._execute(
            update(table)
            .where(table.c.id == id, table.c.deleted.is_(True))
            .values(deleted=False)
        )
        await self._commit()
        return bool(getattr(result, "rowcount", 0))

    # --- Relations ---

    async def _load_key(self, entity: Entity, key: str) -> Any:
        if entity.has(key):
            return entity.get(key)
        table = self.get_table(entity.entity_type)
        result = await self._execute(select(table.c[key]).where(table.c.id == entity.id))
        return result.scalar()

    def _related_conditions(
        self, entity: Entity, relation: RelationDefs
    ) -> list[ColumnElement[bool]]:
        target = self.get_table(relation.entity)
        if relation.type is RelationType.HAS_MANY:
            return [target.c[relation.foreign_key] == entity.id]
        pivot = self._pivot_table(relation)
        near_key, far_key = relation.mid_keys
        related_ids = select(pivot.c[far_key]).where(
            pivot.c[near_key] == entity.id, pivot.c.deleted.is_(False)
        )
        return [target.c.id.in_(related_ids)]

    async def _single_target(
        self, entity: Entity, relation_name: str, relation: RelationDefs
    ) -> tuple[str | None, Any]:
        foreign_id = await self._load_key(entity, relation.key)
        if relation.type is RelationType.BELONGS_TO_PARENT:
            foreign_type = await self._load_key(entity, f"{relation_name}_type")
        else:
            foreign_type = relation.entity
        return foreign_type, foreign_id

    async def select_related(
        self, entity: Entity, relation_name: str, params: SelectParams
    ) -> EntityCollection | SthCollection | Entity | None:
        relation = self._get_relation(entity.entity_type, relation_name)

        if relation.type in (RelationType.BELONGS_TO, RelationType.BELONGS_TO_PARENT):
            foreign_type, foreign_id = await self._single_target(
                entity, relation_name, relation
            )
            if not foreign_type or not foreign_id:
                return None
            foreign = self.entity_factory.create(foreign_type)
            return await self.select_by_id(foreign, foreign_id, params)

        stmt = self.build_select(
            relation.entity,
            params,
            extra_conditions=self._related_conditions(entity, relation),
        )
        return await self._collect(relation.entity, stmt, params)

    async def count_related(
        self, entity: Entity, relation_name: str, params: SelectParams
    ) -> int:
        relation = self._get_relation(entity.entity_type, relation_name)

        if relation.type in (RelationType.BELONGS_TO, RelationType.BELONGS_TO_PARENT):
            foreign_type, foreign_id = await self._single_target(
                entity, relation_name, relation
            )
            if not foreign_type or not foreign_id:
                return 0
            target = self.get_table(foreign_type)
            conditions = [target.c.id == foreign_id]
            foreign_entity_type = foreign_type
        else:
            conditions = self._related_conditions(entity, relation)
            foreign_entity_type = relation.entity

        inner = self.build_select(
            foreign_entity_type, params, extra_conditions=conditions, paginate=False
        )
        result = await self._execute(select(func.count()).select_from(inner.subquery()))
        return int(result.scalar() or 0)

    async def relate(
        self,
        entity: Entity,
        relation_name: str,
        foreign: Entity,
        data: dict[str, Any] | None = None,
    ) -> bool:
        if not foreign.id:
            return False
        return await self.add_relation(entity, relation_name, foreign.id, foreign, data)

    async def unrelate(self, entity: Entity, relation_name: str, foreign: Entity) -> bool:
        if not foreign.id:
            return False
        return await self.remove_relation(entity, relation_name, foreign.id)

    async def add_relation(
        self,
        entity: Entity,
        relation_name: str,
        foreign_id: str,
        foreign: Entity | None = None,
        data: dict[str, Any] | None = None,
    ) -> bool:
        relation = self._get_relation(entity.entity_type, relation_name)
        table = self.get_table(entity.entity_type)

        if relation.type is RelationType.BELONGS_TO:
            await self._execute(
                update(table)
                .where(table.c.id == entity.id)
                .values({relation.key: foreign_id})
            )
            entity.set(relation.key, foreign_id)

        elif relation.type is RelationType.BELONGS_TO_PARENT:
            if foreign is None:
                logger.debug(
                    "Polymorphic relation %s.%s needs an entity, not an id",
                    entity.entity_type,
                    relation_name,
                )
                return False
            type_key = f"{relation_name}_type"
            await self._execute(
                update(table)
                .where(table.c.id == entity.id)
                .values({relation.key: foreign_id, type_key: foreign.entity_type})
            )
            entity.set({relation.key: foreign_id, type_key: foreign.entity_type})

        elif relation.type is RelationType.HAS_MANY:
            target = self.get_table(relation.entity)
            result = await self._execute(
                update(target)
                .where(target.c.id == foreign_id, target.c.deleted.is_(False))
                .values({relation.foreign_key: entity.id})
            )
            if not getattr(result, "rowcount", 0):
                return False

        else:
            await self._upsert_pivot(entity, relation, foreign_id, data)

        await self._commit()
        return True

    async def _upsert_pivot(
        self,
        entity: Entity,
        relation: RelationDefs,
        foreign_id: str,
        data: dict[str, Any] | None,
    ) -> None:
        pivot = self._pivot_table(relation)
        near_key, far_key = relation.mid_keys
        columns = {k: v for k, v in (data or {}).items() if k in relation.additional_columns}

        result = await self._execute(
            select(pivot.c.id).where(
                pivot.c[near_key] == entity.id, pivot.c[far_key] == foreign_id
            )
        )
        existing_id = result.scalar()
        if existing_id is None:
            await self._execute(
                insert(pivot).values(
                    {near_key: entity.id, far_key: foreign_id, "deleted": False, **columns}
                )
            )
        else:
            await self._execute(
                update(pivot)
                .where(pivot.c.id == existing_id)
                .values(deleted=False, **columns)
            )

    async def remove_relation(
        self, entity: Entity, relation_name: str, foreign_id: str
    ) -> bool:
        return await self._remove_relations(entity, relation_name, foreign_id)

    async def remove_all_relations(self, entity: Entity, relation_name: str) -> bool:
        return await self._remove_relations(entity, relation_name, None)

    async def _remove_relations(
        self, entity: Entity, relation_name: str, foreign_id: str | None
    ) -> bool:
        relation = self._get_relation(entity.entity_type, relation_name)
        table = self.get_table(entity.entity_type)

        if relation.type in (RelationType.BELONGS_TO, RelationType.BELONGS_TO_PARENT):
            values: dict[str, Any] = {relation.key: None}
            if relation.type is RelationType.BELONGS_TO_PARENT:
                values[f"{relation_name}_type"] = None
            stmt = update(table).where(table.c.id == entity.id)
            if foreign_id is not None:
                stmt = stmt.where(table.c[relation.key] == foreign_id)
            result = await self._execute(stmt.values(values))
            if getattr(result, "rowcount", 0):
                entity.set(values)

        elif relation.type is RelationType.HAS_MANY:
            target = self.get_table(relation.entity)
            stmt = update(target).where(target.c[relation.foreign_key] == entity.id)
            if foreign_id is not None:
                stmt = stmt.where(target.c.id == foreign_id)
            await self._execute(stmt.values({relation.foreign_key: None}))

        else:
            pivot = self._pivot_table(relation)
            near_key, far_key = relation.mid_keys
            stmt = update(pivot).where(pivot.c[near_key] == entity.id)
            if foreign_id is not None:
                stmt = stmt.where(pivot.c[far_key] == foreign_id)
            await self._execute(stmt.values(deleted=True))

        await self._commit()
        return True

    async def update_relation(
        self,
        entity: Entity,
        relation_name: str,
        foreign_id: str,
        data: dict[str, Any],
    ) -> bool:
        relation = self._get_relation(entity.entity_type, relation_name)
        if relation.type is not RelationType.MANY_MANY:
            return False

        columns = {k: v for k, v in data.items() if k in relation.additional_columns}
        if not columns:
            return False

        pivot = self._pivot_table(relation)
        near_key, far_key = relation.mid_keys
        result = await self._execute(
            update(pivot)
            .where(
                pivot.c[near_key] == entity.id,
                pivot.c[far_key] == foreign_id,
                pivot.c.deleted.is_(False),
            )
            .values(**columns)
        )
        await self._commit()
        return bool(getattr(result, "rowcount", 0))

    async def mass_relate(
        self, entity: Entity, relation_name: str, params: SelectParams
    ) -> bool:
        relation = self._get_relation(entity.entity_type, relation_name)
        if relation.type not in (RelationType.HAS_MANY, RelationType.MANY_MANY):
            return False

        id_params = params.model_copy(update={"select": ["id"], "group_by": []})
        result = await self._execute(
            self.build_select(relation.entity, id_params, paginate=False)
        )
        # Materialized first; MySQL rejects updating a table it selects from.
        foreign_ids = list(result.scalars().all())

        if relation.type is RelationType.HAS_MANY:
            if foreign_ids:
                target = self.get_table(relation.entity)
                await self._execute(
                    update(target)
                    .where(target.c.id.in_(foreign_ids))
                    .values({relation.foreign_key: entity.id})
                )
        else:
            for foreign_id in foreign_ids:
                await self._upsert_pivot(entity, relation, foreign_id, None)

        await self._commit()
        return True

    async def get_relation_column(
        self, entity: Entity, relation_name: str, foreign_id: str, column: str
    ) -> Any:
        relation = self._get_relation(entity.entity_type, relation_name)
        if relation.type is not RelationType.MANY_MANY:
            return None

        pivot = self._pivot_table(relation)
        if column not in pivot.c:
            return None
        near_key, far_key = relation.mid_keys
        result = await self._execute(
            select(pivot.c[column]).where(
                pivot.c[near_key] == entity.id,
                pivot.c[far_key] == foreign_id,
                pivot.c.deleted.is_(False),
            )
        )
        return result.scalar()

    # --- Locking ---

    async def _dialect_name(self) -> str:
        connection = await self.session.connection()
        return connection.dialect.name

    async def lock_table(self, entity_type: str) -> None:
        table_name = self.get_table(entity_type).name
        dialect = await self._dialect_name()
        if dialect in ("mysql", "mariadb"):
            await self._execute(text(f"LOCK TABLES `{table_name}` WRITE"))
        elif dialect == "postgresql":
            await self._execute(text(f'LOCK TABLE "{table_name}" IN EXCLUSIVE MODE'))
        else:
            logger.debug("Dialect %s has no table locks; skipping %s", dialect, table_name)

    async def unlock_tables(self) -> None:
        dialect = await self._dialect_name()
        if dialect in ("mysql", "mariadb"):
            await self._execute(text("UNLOCK TABLES"))
        elif dialect == "postgresql":
            # Table locks last until the end of the transaction, so the
            # unlock commits whatever the autocommit mode.
            await self._commit(force=True)
