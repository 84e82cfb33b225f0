"""
Schema Catalog for EntityQL.

This module defines:
- Which tables exist and in which namespace
- Their columns and primary keys (in declaration order)
- The foreign-key constraints connecting them

The catalog is built once from reflected metadata and never mutated,
so one instance can be shared by any number of compilations.
"""

import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from entityql.core.errors import CatalogError, UnknownEntityError

logger = logging.getLogger(__name__)


# -----------------------------
# Catalog Types
# -----------------------------


@dataclass(frozen=True)
class Column:
    """A single table column."""

    name: str
    table: str  # owning table name (reference only)
    is_primary_key: bool = False


@dataclass(frozen=True)
class Table:
    """A database table with its ordered columns."""

    name: str
    schema: str | None = None
    columns: tuple[Column, ...] = ()
    primary_key: tuple[str, ...] = ()  # primary-key column names, declaration order

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}" if self.schema else self.name

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(column.name for column in self.columns)

    def get_column(self, name: str) -> Column | None:
        """Get a column by name."""
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def has_column(self, name: str) -> bool:
        return self.get_column(name) is not None


@dataclass(frozen=True)
class ForeignKeyConstraint:
    """
    A foreign key from one table's columns to another table's columns.

    is_unique is True when from_columns are covered by a unique or
    primary-key constraint on from_table: at most one row references
    any given target row.
    """

    name: str
    from_table: str
    from_columns: tuple[str, ...]
    to_table: str
    to_columns: tuple[str, ...]
    is_unique: bool = False

    def __post_init__(self) -> None:
        if not self.from_columns:
            raise CatalogError(f"Foreign key '{self.name}' has no columns")
        if len(self.from_columns) != len(self.to_columns):
            raise CatalogError(
                f"Foreign key '{self.name}' maps {len(self.from_columns)} "
                f"columns onto {len(self.to_columns)}"
            )


# -----------------------------
# Metadata Feed Records
# -----------------------------


@dataclass(frozen=True)
class TableRecord:
    """One row of the table feed."""

    name: str
    schema: str | None = None


@dataclass(frozen=True)
class ColumnRecord:
    """One row of the column feed."""

    table: str
    name: str
    is_primary_key: bool = False


@dataclass(frozen=True)
class PrimaryKeyRecord:
    """Primary key of one table, columns in declaration order."""

    table: str
    columns: tuple[str, ...]


@dataclass(frozen=True)
class ForeignKeyRecord:
    """One row of the foreign-key feed."""

    from_table: str
    from_columns: tuple[str, ...]
    to_table: str
    to_columns: tuple[str, ...]
    is_unique: bool = False
    name: str | None = None


# -----------------------------
# Schema Catalog Class
# -----------------------------


class SchemaCatalog:
    """
    Immutable model of tables and foreign keys.

    Provides lookup methods for tables, primary keys and the
    foreign keys connecting two tables.
    """

    def __init__(
        self,
        tables: Iterable[Table],
        foreign_keys: Iterable[ForeignKeyConstraint] = (),
    ):
        table_map: dict[str, Table] = {}
        for table in tables:
            if table.name in table_map:
                raise CatalogError(
                    f"Duplicate table '{table.name}'; reflect one schema at a time"
                )
            self._check_table(table)
            table_map[table.name] = table

        fk_map: dict[str, ForeignKeyConstraint] = {}
        for fk in sorted(foreign_keys, key=lambda fk: fk.name):
            if fk.name in fk_map:
                raise CatalogError(f"Duplicate foreign key '{fk.name}'")
            self._check_foreign_key(fk, table_map)
            fk_map[fk.name] = fk

        self._tables = MappingProxyType(table_map)
        self._foreign_keys = tuple(fk_map.values())

        # Index constraints by their unordered table pair
        pair_index: dict[frozenset[str], list[ForeignKeyConstraint]] = defaultdict(list)
        for fk in self._foreign_keys:
            pair_index[frozenset((fk.from_table, fk.to_table))].append(fk)
        self._pair_index = MappingProxyType(
            {pair: frozenset(fks) for pair, fks in pair_index.items()}
        )

    # -------------------------
    # Construction
    # -------------------------

    @classmethod
    def from_metadata(
        cls,
        tables: Iterable[TableRecord],
        columns: Iterable[ColumnRecord],
        foreign_keys: Iterable[ForeignKeyRecord] = (),
        primary_keys: Iterable[PrimaryKeyRecord] | None = None,
    ) -> "SchemaCatalog":
        """
        Assemble a catalog from the three reflection feeds.

        Args:
            tables: Table feed (name, namespace).
            columns: Column feed in column order, with primary-key flags.
            foreign_keys: Foreign-key feed.
            primary_keys: Optional primary-key feed giving declaration
                order. Defaults to flagged columns in column order.

        Returns:
            The assembled SchemaCatalog.

        Raises:
            CatalogError: If the feeds are inconsistent.
        """
        table_records = list(tables)
        known = {record.name for record in table_records}

        columns_by_table: dict[str, list[ColumnRecord]] = defaultdict(list)
        for record in columns:
            if record.table not in known:
                logger.debug("Skipping column %s.%s", record.table, record.name)
                continue
            columns_by_table[record.table].append(record)

        pk_order: dict[str, tuple[str, ...]] = {}
        for record in primary_keys or ():
            if record.table in known:
                pk_order[record.table] = tuple(record.columns)

        built: list[Table] = []
        for record in table_records:
            column_records = columns_by_table.get(record.name, [])
            primary_key = pk_order.get(
                record.name,
                tuple(c.name for c in column_records if c.is_primary_key),
            )
            pk_set = set(primary_key)
            built.append(
                Table(
                    name=record.name,
                    schema=record.schema,
                    columns=tuple(
                        Column(
                            name=c.name,
                            table=record.name,
                            is_primary_key=c.name in pk_set,
                        )
                        for c in column_records
                    ),
                    primary_key=primary_key,
                )
            )

        fk_records = list(foreign_keys)
        used_names = {record.name for record in fk_records if record.name}
        constraints: list[ForeignKeyConstraint] = []
        for record in fk_records:
            if record.from_table not in known or record.to_table not in known:
                logger.debug(
                    "Skipping foreign key %s -> %s outside the table feed",
                    record.from_table,
                    record.to_table,
                )
                continue
            name = record.name or _default_fk_name(record, used_names)
            used_names.add(name)
            constraints.append(
                ForeignKeyConstraint(
                    name=name,
                    from_table=record.from_table,
                    from_columns=tuple(record.from_columns),
                    to_table=record.to_table,
                    to_columns=tuple(record.to_columns),
                    is_unique=record.is_unique,
                )
            )

        return cls(built, constraints)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SchemaCatalog":
        """Rebuild a catalog from a to_dict() snapshot."""
        try:
            tables = [
                Table(
                    name=t["name"],
                    schema=t.get("schema"),
                    columns=tuple(
                        Column(
                            name=c,
                            table=t["name"],
                            is_primary_key=c in t.get("primary_key", ()),
                        )
                        for c in t["columns"]
                    ),
                    primary_key=tuple(t.get("primary_key", ())),
                )
                for t in data["tables"]
            ]
            foreign_keys = [
                ForeignKeyConstraint(
                    name=fk["name"],
                    from_table=fk["from_table"],
                    from_columns=tuple(fk["from_columns"]),
                    to_table=fk["to_table"],
                    to_columns=tuple(fk["to_columns"]),
                    is_unique=bool(fk.get("is_unique", False)),
                )
                for fk in data.get("foreign_keys", ())
            ]
        except (KeyError, TypeError) as e:
            raise CatalogError(f"Malformed catalog snapshot: {e}") from e
        return cls(tables, foreign_keys)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the catalog to a JSON-compatible snapshot."""
        return {
            "tables": [
                {
                    "name": table.name,
                    "schema": table.schema,
                    "columns": list(table.column_names),
                    "primary_key": list(table.primary_key),
                }
                for table in self._tables.values()
            ],
            "foreign_keys": [
                {
                    "name": fk.name,
                    "from_table": fk.from_table,
                    "from_columns": list(fk.from_columns),
                    "to_table": fk.to_table,
                    "to_columns": list(fk.to_columns),
                    "is_unique": fk.is_unique,
                }
                for fk in self._foreign_keys
            ],
        }

    # -------------------------
    # Lookup Methods
    # -------------------------

    def get_table(self, name: str) -> Table | None:
        """Get a table by bare or schema-qualified name."""
        table = self._tables.get(name)
        if table is None and "." in name:
            schema, _, bare = name.rpartition(".")
            table = self._tables.get(bare)
            if table is not None and table.schema != schema:
                return None
        return table

    def has_table(self, name: str) -> bool:
        return self.get_table(name) is not None

    def lookup_table(self, name: str) -> Table:
        """
        Get a table by name, failing if it is absent.

        Raises:
            UnknownEntityError: If no such table exists.
        """
        table = self.get_table(name)
        if table is None:
            raise UnknownEntityError(name)
        return table

    def primary_key_columns(self, table: Table | str) -> tuple[Column, ...]:
        """Primary-key columns in declaration order; may be empty."""
        if isinstance(table, str):
            table = self.lookup_table(table)
        return tuple(table.get_column(name) for name in table.primary_key)

    def foreign_keys_between(
        self, table_a: Table | str, table_b: Table | str
    ) -> frozenset[ForeignKeyConstraint]:
        """All foreign keys connecting two tables, in either direction."""
        name_a = table_a if isinstance(table_a, str) else table_a.name
        name_b = table_b if isinstance(table_b, str) else table_b.name
        return self._pair_index.get(frozenset((name_a, name_b)), frozenset())

    def get_foreign_key(self, name: str) -> ForeignKeyConstraint | None:
        """Get a foreign key by constraint name."""
        for fk in self._foreign_keys:
            if fk.name == name:
                return fk
        return None

    @property
    def foreign_keys(self) -> tuple[ForeignKeyConstraint, ...]:
        """All foreign keys, ordered by name."""
        return self._foreign_keys

    def list_tables(self) -> list[str]:
        """List all table names."""
        return list(self._tables.keys())

    # -------------------------
    # Validation
    # -------------------------

    @staticmethod
    def _check_table(table: Table) -> None:
        names = table.column_names
        if len(set(names)) != len(names):
            raise CatalogError(f"Table '{table.name}' has duplicate column names")
        for pk in table.primary_key:
            if pk not in names:
                raise CatalogError(
                    f"Primary key column '{pk}' missing from table '{table.name}'"
                )

    @staticmethod
    def _check_foreign_key(
        fk: ForeignKeyConstraint, tables: Mapping[str, Table]
    ) -> None:
        for table_name, columns in (
            (fk.from_table, fk.from_columns),
            (fk.to_table, fk.to_columns),
        ):
            table = tables.get(table_name)
            if table is None:
                raise CatalogError(
                    f"Foreign key '{fk.name}' references unknown table '{table_name}'"
                )
            for column in columns:
                if not table.has_column(column):
                    raise CatalogError(
                        f"Foreign key '{fk.name}' references unknown column "
                        f"'{table_name}.{column}'"
                    )


def _default_fk_name(record: ForeignKeyRecord, used: set[str]) -> str:
    """PostgreSQL-style default name: <table>_<columns>_fkey[N]."""
    base = f"{record.from_table}_{'_'.join(record.from_columns)}_fkey"
    name = base
    suffix = 1
    while name in used:
        name = f"{base}{suffix}"
        suffix += 1
    return name
