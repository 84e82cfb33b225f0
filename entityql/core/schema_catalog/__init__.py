"""Schema Catalog for EntityQL - tables, columns, primary and foreign keys."""

from .catalog import (
    Column,
    ColumnRecord,
    ForeignKeyConstraint,
    ForeignKeyRecord,
    PrimaryKeyRecord,
    SchemaCatalog,
    Table,
    TableRecord,
)

__all__ = [
    "Column",
    "ColumnRecord",
    "ForeignKeyConstraint",
    "ForeignKeyRecord",
    "PrimaryKeyRecord",
    "SchemaCatalog",
    "Table",
    "TableRecord",
]
