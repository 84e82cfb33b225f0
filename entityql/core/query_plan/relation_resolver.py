"""
Relation Resolver for EntityQL.

Maps a parent/child table pair to the unique foreign key joining them,
using the schema catalog. Relationships are never declared in specs;
they are inferred from foreign-key metadata.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from entityql.core.entity_spec.models import Cardinality
from entityql.core.errors import (
    AmbiguousRelationError,
    NoRelationError,
    RelationCardinalityMismatchError,
)
from entityql.core.schema_catalog.catalog import (
    ForeignKeyConstraint,
    SchemaCatalog,
)

logger = logging.getLogger(__name__)


# -----------------------------
# Data structures
# -----------------------------


class RelationKind(str, Enum):
    """How a foreign key relates a parent table to a child table."""

    ONE_TO_MANY = "one_to_many"  # child references parent, not unique
    FACET = "facet"  # child references parent, unique
    REFERENCE = "reference"  # parent references child

    @property
    def cardinality(self) -> Cardinality:
        if self is RelationKind.ONE_TO_MANY:
            return Cardinality.MANY
        return Cardinality.ONE


@dataclass(frozen=True)
class ForeignKeyPath:
    """
    A resolved join path between a parent and a child table.

    parent_columns[i] on the parent joins child_columns[i] on the child.
    """

    constraint: ForeignKeyConstraint
    kind: RelationKind
    parent_table: str
    child_table: str
    parent_columns: tuple[str, ...]
    child_columns: tuple[str, ...]

    @property
    def cardinality(self) -> Cardinality:
        return self.kind.cardinality


# -----------------------------
# Resolver
# -----------------------------


class RelationResolver:
    """
    Resolves the foreign key joining a parent entity to a child entity.

    Resolution is deterministic: candidates are ordered by constraint
    name, never by metadata scan order.
    """

    def __init__(self, catalog: SchemaCatalog):
        self._catalog = catalog

    def candidates(self, parent: str, child: str) -> list[ForeignKeyPath]:
        """
        Classify every foreign key connecting parent and child.

        A self-referencing constraint yields both its child-side kind
        and REFERENCE.
        """
        parent_table = self._catalog.lookup_table(parent)
        child_table = self._catalog.lookup_table(child)

        paths: list[ForeignKeyPath] = []
        fks = self._catalog.foreign_keys_between(parent_table, child_table)
        for fk in sorted(fks, key=lambda fk: fk.name):
            if fk.from_table == child_table.name and fk.to_table == parent_table.name:
                paths.append(
                    ForeignKeyPath(
                        constraint=fk,
                        kind=RelationKind.FACET if fk.is_unique else RelationKind.ONE_TO_MANY,
                        parent_table=parent_table.name,
                        child_table=child_table.name,
                        parent_columns=fk.to_columns,
                        child_columns=fk.from_columns,
                    )
                )
            if fk.from_table == parent_table.name and fk.to_table == child_table.name:
                paths.append(
                    ForeignKeyPath(
                        constraint=fk,
                        kind=RelationKind.REFERENCE,
                        parent_table=parent_table.name,
                        child_table=child_table.name,
                        parent_columns=fk.from_columns,
                        child_columns=fk.to_columns,
                    )
                )
        return paths

    def resolve(
        self,
        parent: str,
        child: str,
        cardinality: Cardinality | None = None,
        via: str | None = None,
    ) -> ForeignKeyPath:
        """
        Resolve the unique join path from parent to child.

        Args:
            parent: Parent table name.
            child: Child table name.
            cardinality: Declared cardinality. None is treated as ONE.
            via: Optional constraint name restricting the candidates.

        Returns:
            The single eligible ForeignKeyPath.

        Raises:
            UnknownEntityError: If either table is absent.
            NoRelationError: If no foreign key connects the tables.
            RelationCardinalityMismatchError: If foreign keys exist but
                none matches the declared cardinality.
            AmbiguousRelationError: If several foreign keys are eligible.
        """
        declared = cardinality or Cardinality.ONE
        paths = self.candidates(parent, child)

        if via is not None:
            paths = [p for p in paths if p.constraint.name == via]
        if not paths:
            raise NoRelationError(parent, child, via=via)

        eligible = [p for p in paths if p.cardinality is declared]
        if not eligible:
            raise RelationCardinalityMismatchError(
                parent, child, self._mismatch_message(parent, child, declared, paths)
            )

        # A self-referencing unique key is both facet and reference; candidates()
        # lists the child side first, and that reading wins
        by_name: dict[str, ForeignKeyPath] = {}
        for p in eligible:
            by_name.setdefault(p.constraint.name, p)
        eligible = list(by_name.values())

        if len(eligible) > 1:
            raise AmbiguousRelationError(
                parent, child, [p.constraint.name for p in eligible]
            )

        path = eligible[0]
        logger.debug(
            "Resolved %s -> %s via %s (%s)",
            parent,
            child,
            path.constraint.name,
            path.kind.value,
        )
        return path

    # -------------------------
    # Helpers
    # -------------------------

    @staticmethod
    def _mismatch_message(
        parent: str,
        child: str,
        declared: Cardinality,
        paths: list[ForeignKeyPath],
    ) -> str:
        found = ", ".join(f"'{p.constraint.name}' ({p.kind.value})" for p in paths)
        if declared is Cardinality.MANY:
            return (
                f"'{child}' is not a one-to-many relation of '{parent}' "
                f"(found {found}); drop 'first' to select it as a single entity"
            )
        return (
            f"'{child}' is a one-to-many relation of '{parent}' "
            f"(found {found}); state a limit with 'first'"
        )
