"""
Spec Compiler for EntityQL.

Lowers an EntitySpec tree into a CTE plan: children are compiled before
their parents (post-order) so each parent can aggregate already-named
child sub-queries.
"""

import logging
from collections.abc import Iterator, Mapping
from itertools import count
from typing import Any

from entityql.core.entity_spec.models import (
    RESERVED_PREFIX,
    Cardinality,
    EntitySpec,
    PlainField,
    RelationSelect,
    RenamedField,
)
from entityql.core.errors import (
    MissingPrimaryKeyError,
    ReservedFieldError,
    SpecDepthExceededError,
    UnknownFieldError,
)
from entityql.core.query_plan.plan import (
    CompiledQuery,
    CteNode,
    JoinOnto,
    NestedAggregation,
    OutputColumn,
)
from entityql.core.query_plan.relation_resolver import RelationResolver
from entityql.core.schema_catalog.catalog import SchemaCatalog, Table

logger = logging.getLogger(__name__)

# Relation nesting allowed before a spec is assumed to be runaway recursion
DEFAULT_MAX_DEPTH = 32

# Bytes of the entity name kept in a node name; the rest of PostgreSQL's
# 63-byte identifier limit holds the node number and emitter suffixes
NAME_PREFIX_BYTES = 40


def node_name(entity: str, index: int) -> str:
    """Name of the index-th node of a compilation, unique per compile."""
    prefix = entity.encode("utf-8")[:NAME_PREFIX_BYTES].decode("utf-8", errors="ignore")
    return f"{prefix}_{index}"


class SpecCompiler:
    """
    Compiles an EntitySpec against a SchemaCatalog into a CompiledQuery.

    Compilation is pure: no I/O, no shared mutable state. One compiler
    may be used from several threads at once.
    """

    def __init__(self, catalog: SchemaCatalog, max_depth: int = DEFAULT_MAX_DEPTH):
        """
        Initialize the compiler.

        Args:
            catalog: Schema catalog to resolve entities and relations in.
            max_depth: Deepest relation nesting accepted. Recursive
                specs deeper than this fail instead of recursing forever.
        """
        self._catalog = catalog
        self._resolver = RelationResolver(catalog)
        self._max_depth = max_depth

    def compile(self, spec: EntitySpec | Mapping[str, Any]) -> CompiledQuery:
        """
        Compile a spec into a bottom-up chain of CTE nodes.

        Args:
            spec: An EntitySpec or its raw mapping form.

        Returns:
            CompiledQuery whose last node is the root.

        Raises:
            InvalidSpecError: If a raw spec is malformed.
            UnknownEntityError: If an entity is not in the catalog.
            UnknownFieldError: If a selected column does not exist.
            ReservedFieldError: If select is omitted and a column name
                starts with the reserved '$' prefix.
            MissingPrimaryKeyError: If an entity's table has no primary key.
            NoRelationError, AmbiguousRelationError,
            RelationCardinalityMismatchError: If a relation cannot be
                resolved to exactly one foreign key.
            SpecDepthExceededError: If nesting exceeds max_depth.
        """
        spec = EntitySpec.parse(spec)
        nodes: list[CteNode] = []
        self._compile_entity(spec, None, 0, nodes, count())

        compiled = CompiledQuery(nodes=tuple(nodes))
        logger.info(
            "Compiled spec for '%s' into %d node(s)", spec.entity, len(nodes)
        )
        return compiled

    # -------------------------
    # Recursion
    # -------------------------

    def _compile_entity(
        self,
        spec: EntitySpec,
        joins_onto: JoinOnto | None,
        depth: int,
        nodes: list[CteNode],
        numbers: Iterator[int],
    ) -> CteNode:
        """Compile children first, then append this entity's node."""
        if depth > self._max_depth:
            raise SpecDepthExceededError(spec.entity, self._max_depth)

        # Numbered on entry so children can refer to their parent by name
        name = node_name(spec.entity, next(numbers))

        table = self._catalog.lookup_table(spec.entity)
        primary_key = self._primary_key(spec, table)
        columns = self._select_columns(spec, table)

        aggregations: list[NestedAggregation] = []
        for alias, relation in spec.relations():
            aggregations.append(
                self._compile_relation(
                    table, name, alias, relation, depth, nodes, numbers
                )
            )

        node = CteNode(
            name=name,
            entity=spec.entity,
            source_table=table,
            selected_columns=tuple(columns),
            primary_key=primary_key,
            joins_onto=joins_onto,
            nested_aggregations=tuple(aggregations),
        )
        logger.debug(
            "Compiled node '%s' (%d column(s), %d relation(s))",
            name,
            len(columns),
            len(aggregations),
        )
        nodes.append(node)
        return node

    def _compile_relation(
        self,
        table: Table,
        parent_name: str,
        alias: str,
        relation: RelationSelect,
        depth: int,
        nodes: list[CteNode],
        numbers: Iterator[int],
    ) -> NestedAggregation:
        """Resolve one relation field and compile its child node."""
        cardinality = relation.cardinality
        child_table = self._catalog.lookup_table(relation.spec.entity)
        path = self._resolver.resolve(
            table.name, child_table.name, cardinality, via=relation.via
        )

        child = self._compile_entity(
            relation.spec,
            JoinOnto(
                parent_cte=parent_name,
                child_columns=path.child_columns,
                parent_columns=path.parent_columns,
                constraint=path.constraint.name,
            ),
            depth + 1,
            nodes,
            numbers,
        )
        return NestedAggregation(
            alias=alias,
            child_cte=child.name,
            cardinality=cardinality,
            limit=relation.first if cardinality is Cardinality.MANY else None,
        )

    # -------------------------
    # Helpers
    # -------------------------

    def _primary_key(self, spec: EntitySpec, table: Table) -> tuple[str, ...]:
        columns = self._catalog.primary_key_columns(table)
        if not columns:
            raise MissingPrimaryKeyError(spec.entity)
        return tuple(column.name for column in columns)

    @staticmethod
    def _select_columns(spec: EntitySpec, table: Table) -> list[OutputColumn]:
        """Resolve plain and renamed fields; no select means every column."""
        if spec.select is None:
            for name in table.column_names:
                if name.startswith(RESERVED_PREFIX):
                    raise ReservedFieldError(spec.entity, name)
            return [OutputColumn(column=c, output=c) for c in table.column_names]

        columns: list[OutputColumn] = []
        for item in spec.select.values():
            match item:
                case PlainField() | RenamedField():
                    if not table.has_column(item.column):
                        raise UnknownFieldError(spec.entity, item.column)
                    columns.append(OutputColumn(column=item.column, output=item.output))
                case RelationSelect():
                    continue
        return columns
