from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)

from crm_orm.metadata import RelationType

if TYPE_CHECKING:
    from crm_orm.metadata import FieldDefs, Metadata

ID_LENGTH = 32

FIELD_TYPE_TO_SQL: dict[str, Any] = {
    "id": String(ID_LENGTH),
    "varchar": String(255),
    "text": Text,
    "int": Integer,
    "float": Float,
    "bool": Boolean,
    "date": Date,
    "datetime": DateTime(timezone=True),
    "json": JSON,
    "foreign_id": String(ID_LENGTH),
    "foreign_type": String(100),
}


def build_column(name: str, field: FieldDefs) -> Column[Any]:
    """Translate one attribute definition into a SQLAlchemy column."""
    sql_type = FIELD_TYPE_TO_SQL[field.type]
    if field.type == "varchar" and field.max_length:
        sql_type = String(field.max_length)

    if field.type == "id":
        return Column(name, sql_type, primary_key=True)

    default = field.default if not isinstance(field.default, (dict, list)) else None
    return Column(
        name,
        sql_type,
        nullable=not field.not_null,
        default=default,
        index=field.type == "foreign_id" or name == "deleted",
    )


def build_tables(metadata: Metadata, sa_metadata: MetaData | None = None) -> MetaData:
    """
    Create one table per entity type plus one pivot table per many-to-many
    relation.

    Pivot tables carry an autoincrement ``id``, the two ``mid_keys``, any
    additional relation columns, and a ``deleted`` flag so unrelating keeps
    the row for later revival.

    Example:
        >>> sa_metadata = build_tables(metadata)
        >>> async with engine.begin() as conn:
        ...     await conn.run_sync(sa_metadata.create_all)
    """
    sa_metadata = sa_metadata if sa_metadata is not None else MetaData()

    for entity_type in metadata.entity_types():
        defs = metadata.get(entity_type)
        if defs.table in sa_metadata.tables:
            continue
        Table(
            defs.table,
            sa_metadata,
            *(build_column(name, field) for name, field in defs.fields.items()),
        )

    for entity_type in metadata.entity_types():
        for relation in metadata.get(entity_type).relations.values():
            if relation.type is not RelationType.MANY_MANY:
                continue
            if relation.relation_name in sa_metadata.tables:
                continue
            assert relation.mid_keys is not None
            near_key, far_key = relation.mid_keys
            Table(
                relation.relation_name,
                sa_metadata,
                Column("id", Integer, primary_key=True, autoincrement=True),
                Column(near_key, String(ID_LENGTH), index=True),
                Column(far_key, String(ID_LENGTH), index=True),
                *(
                    build_column(name, field)
                    for name, field in relation.additional_columns.items()
                ),
                Column("deleted", Boolean, default=False, index=True),
            )

    return sa_metadata
