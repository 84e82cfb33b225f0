"""
Catalog reflection.

Reads tables, columns, primary keys and foreign keys from a live
database through SQLAlchemy's inspector and assembles a SchemaCatalog.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import Connection, Engine, inspect
from sqlalchemy.engine.reflection import Inspector

from entityql.core.schema_catalog.catalog import (
    ColumnRecord,
    ForeignKeyRecord,
    PrimaryKeyRecord,
    SchemaCatalog,
    TableRecord,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


def reflect_catalog(
    bind: Engine | Connection, schema: str | None = None
) -> SchemaCatalog:
    """
    Reflect a database schema into a SchemaCatalog.

    Args:
        bind: Engine or connection to inspect.
        schema: Schema to reflect. Uses the connection's default when None.

    Returns:
        The reflected catalog.
    """
    inspector = inspect(bind)

    tables: list[TableRecord] = []
    columns: list[ColumnRecord] = []
    primary_keys: list[PrimaryKeyRecord] = []
    foreign_keys: list[ForeignKeyRecord] = []

    for name in sorted(inspector.get_table_names(schema=schema)):
        tables.append(TableRecord(name=name, schema=schema))

        pk = tuple(
            inspector.get_pk_constraint(name, schema=schema).get(
                "constrained_columns"
            )
            or ()
        )
        primary_keys.append(PrimaryKeyRecord(table=name, columns=pk))

        for col in inspector.get_columns(name, schema=schema):
            columns.append(
                ColumnRecord(table=name, name=col["name"], is_primary_key=col["name"] in pk)
            )

        unique_sets = _unique_column_sets(inspector, name, schema, pk)
        for fk in inspector.get_foreign_keys(name, schema=schema):
            referred_schema = fk.get("referred_schema")
            if referred_schema is not None and referred_schema != schema:
                logger.debug(
                    "Skipping cross-schema foreign key %s on %s", fk.get("name"), name
                )
                continue
            from_columns = tuple(fk["constrained_columns"])
            foreign_keys.append(
                ForeignKeyRecord(
                    from_table=name,
                    from_columns=from_columns,
                    to_table=fk["referred_table"],
                    to_columns=tuple(fk["referred_columns"]),
                    is_unique=any(u <= set(from_columns) for u in unique_sets),
                    name=fk.get("name"),
                )
            )

    logger.info(
        "Reflected %d table(s) and %d foreign key(s)", len(tables), len(foreign_keys)
    )
    return SchemaCatalog.from_metadata(tables, columns, foreign_keys, primary_keys)


async def reflect_catalog_async(
    engine: AsyncEngine, schema: str | None = None
) -> SchemaCatalog:
    """Reflect a database schema through an async engine."""
    async with engine.connect() as connection:
        return await connection.run_sync(reflect_catalog, schema)


def _unique_column_sets(
    inspector: Inspector,
    table_name: str,
    schema: str | None,
    primary_key: tuple[str, ...],
) -> list[frozenset[str]]:
    """Column sets guaranteed unique on a table: primary key, unique constraints and indexes."""
    sets: list[frozenset[str]] = []
    if primary_key:
        sets.append(frozenset(primary_key))

    try:
        for constraint in inspector.get_unique_constraints(table_name, schema=schema):
            sets.append(frozenset(constraint["column_names"]))
    except NotImplementedError:
        logger.debug("Dialect cannot reflect unique constraints for %s", table_name)

    for index in inspector.get_indexes(table_name, schema=schema):
        names = index.get("column_names") or []
        # Expression indexes report None for computed entries
        if index.get("unique") and names and all(names):
            sets.append(frozenset(names))

    return [s for s in sets if s]
