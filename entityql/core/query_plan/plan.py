"""
CTE plan structures for EntityQL.

A compiled spec is an ordered chain of CteNodes, leaves first. Every
node referring to another by name appears after it; the last node is
the query root.
"""

from dataclasses import dataclass

from entityql.core.entity_spec.models import Cardinality
from entityql.core.schema_catalog.catalog import Table

# Synthesized metadata columns present on every row at every level
ID_COLUMN = "$id"
ENTITY_COLUMN = "$entity"

# Separator between primary-key values in $id
ID_SEPARATOR = "|"


@dataclass(frozen=True)
class OutputColumn:
    """A table column selected under an output key."""

    column: str
    output: str


@dataclass(frozen=True)
class JoinOnto:
    """How a child node groups back onto its parent."""

    parent_cte: str
    child_columns: tuple[str, ...]  # on this node's table
    parent_columns: tuple[str, ...]  # on the parent's table
    constraint: str


@dataclass(frozen=True)
class NestedAggregation:
    """A relation field aggregated from a child node."""

    alias: str
    child_cte: str
    cardinality: Cardinality
    limit: int | None = None  # set for MANY


@dataclass(frozen=True)
class CteNode:
    """One named sub-query of the plan."""

    name: str
    entity: str  # $entity literal
    source_table: Table
    selected_columns: tuple[OutputColumn, ...]
    primary_key: tuple[str, ...]  # $id parts, declaration order
    joins_onto: JoinOnto | None = None
    nested_aggregations: tuple[NestedAggregation, ...] = ()

    @property
    def is_root(self) -> bool:
        return self.joins_onto is None

    @property
    def output_keys(self) -> tuple[str, ...]:
        """Keys of each result row produced by this node."""
        return (
            *(c.output for c in self.selected_columns),
            ID_COLUMN,
            ENTITY_COLUMN,
            *(a.alias for a in self.nested_aggregations),
        )


@dataclass(frozen=True)
class CompiledQuery:
    """The full bottom-up chain of nodes; the last one is the root."""

    nodes: tuple[CteNode, ...]

    def __post_init__(self) -> None:
        if not self.nodes:
            raise ValueError("A compiled query needs at least one node")
        defined: set[str] = set()
        for node in self.nodes:
            if node.name in defined:
                raise ValueError(f"Duplicate node name '{node.name}'")
            for aggregation in node.nested_aggregations:
                if aggregation.child_cte not in defined:
                    raise ValueError(
                        f"Node '{node.name}' references '{aggregation.child_cte}' "
                        "before it is defined"
                    )
            defined.add(node.name)
        if not self.nodes[-1].is_root:
            raise ValueError("The last node must be the root")

    @property
    def root(self) -> CteNode:
        return self.nodes[-1]

    @property
    def ctes(self) -> tuple[CteNode, ...]:
        """Non-root nodes, in declaration order."""
        return self.nodes[:-1]

    def get_node(self, name: str) -> CteNode:
        for node in self.nodes:
            if node.name == name:
                return node
        raise KeyError(name)
