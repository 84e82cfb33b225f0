"""
Query Emitter for EntityQL.

Renders a CompiledQuery into a single SQLAlchemy Select (and its literal
SQL text): child nodes become CTEs in declaration order, the root node
becomes the final SELECT.
"""

from functools import reduce
from itertools import chain

from sqlalchemy import (
    String,
    Text,
    and_,
    cast,
    column,
    func,
    literal,
    literal_column,
    select,
    table,
)
from sqlalchemy.dialects.postgresql import aggregate_order_by
from sqlalchemy.dialects.postgresql.base import PGDialect
from sqlalchemy.engine import Dialect
from sqlalchemy.sql import Select
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.sql.selectable import CTE, Subquery, TableClause

from entityql.core.entity_spec.models import Cardinality
from entityql.core.query_plan.plan import (
    ENTITY_COLUMN,
    ID_COLUMN,
    ID_SEPARATOR,
    CompiledQuery,
    CteNode,
    NestedAggregation,
)
from entityql.core.schema_catalog.catalog import Table

# Internal columns; never part of a result row
JOIN_KEY_PREFIX = "$join_"
ORDER_KEY_PREFIX = "$order_"
RANK_COLUMN = "$rank"
VALUE_COLUMN = "$value"

EMPTY_JSON_ARRAY = "'[]'::json"

# Key/value pairs per json_build_object call (100 arguments at most)
MAX_OBJECT_PAIRS = 50


def join_key(index: int) -> str:
    return f"{JOIN_KEY_PREFIX}{index}"


def order_key(index: int) -> str:
    return f"{ORDER_KEY_PREFIX}{index}"


def _inline(value: str) -> ColumnElement:
    """String constant rendered into the SQL text, never sent as a parameter."""
    return literal(value, String, literal_execute=True)


class QueryEmitter:
    """
    Builds the executable statement for a CompiledQuery.

    Output is deterministic: the same CompiledQuery always renders to
    byte-identical text.
    """

    def __init__(self, dialect: Dialect | None = None):
        """
        Initialize the emitter.

        Args:
            dialect: SQLAlchemy dialect used for rendering.
                     Defaults to PostgreSQL (json_agg, json_build_object).
        """
        self._dialect = dialect or PGDialect()

    def emit(self, compiled: CompiledQuery) -> str:
        """Render the compiled query as literal SQL text."""
        statement = self.build_statement(compiled)
        return str(
            statement.compile(
                dialect=self._dialect,
                compile_kwargs={"literal_binds": True},
            )
        )

    def build_statement(self, compiled: CompiledQuery) -> Select:
        """Build the SQLAlchemy Select for the compiled query."""
        ctes: dict[str, CTE] = {}
        for node in compiled.ctes:
            ctes[node.name] = self._node_select(compiled, node, ctes).cte(
                name=node.name
            )
        return self._node_select(compiled, compiled.root, ctes)

    # -------------------------
    # Node Rendering
    # -------------------------

    def _node_select(
        self,
        compiled: CompiledQuery,
        node: CteNode,
        ctes: dict[str, CTE],
    ) -> Select:
        """Select one node's fields, metadata and nested aggregates."""
        source = self._source(node.source_table)

        columns: list[ColumnElement] = [
            source.c[c.column].label(c.output) for c in node.selected_columns
        ]
        columns.append(self._id_expression(source, node.primary_key).label(ID_COLUMN))
        columns.append(_inline(node.entity).label(ENTITY_COLUMN))

        # Children expose their join keys and primary key for grouping/ranking
        if node.joins_onto is not None:
            for i, name in enumerate(node.joins_onto.child_columns):
                columns.append(source.c[name].label(join_key(i)))
            for i, name in enumerate(node.primary_key):
                columns.append(source.c[name].label(order_key(i)))

        from_clause = source
        for aggregation in node.nested_aggregations:
            child = compiled.get_node(aggregation.child_cte)
            aggregate = self._aggregate(child, ctes[child.name], aggregation)

            onclause = and_(
                *(
                    source.c[name] == aggregate.c[join_key(i)]
                    for i, name in enumerate(child.joins_onto.parent_columns)
                )
            )
            from_clause = from_clause.outerjoin(aggregate, onclause)

            value = aggregate.c[VALUE_COLUMN]
            if aggregation.cardinality is Cardinality.MANY:
                value = func.coalesce(value, literal_column(EMPTY_JSON_ARRAY))
            columns.append(value.label(aggregation.alias))

        query = select(*columns).select_from(from_clause)
        if node.is_root:
            query = query.order_by(*(source.c[name] for name in node.primary_key))
        return query

    def _aggregate(
        self,
        child: CteNode,
        cte: CTE,
        aggregation: NestedAggregation,
    ) -> Subquery:
        """
        Collapse a child CTE to one row per join key.

        Rows are numbered per join-key group by the child's primary key
        and filtered before aggregation, so the limit applies per parent.
        """
        key_count = len(child.joins_onto.child_columns)
        order_count = len(child.primary_key)

        rank = func.row_number().over(
            partition_by=[cte.c[join_key(i)] for i in range(key_count)],
            order_by=[cte.c[order_key(i)] for i in range(order_count)],
        )
        ranked = select(*cte.c, rank.label(RANK_COLUMN)).subquery(
            f"{child.name}__ranked"
        )

        keys = [ranked.c[join_key(i)] for i in range(key_count)]
        row_object = self._row_object(
            [(_inline(key), ranked.c[key]) for key in child.output_keys]
        )

        if aggregation.cardinality is Cardinality.MANY:
            value = func.json_agg(
                aggregate_order_by(
                    row_object, *(ranked.c[order_key(i)] for i in range(order_count))
                )
            )
            query = (
                select(*keys, value.label(VALUE_COLUMN))
                .where(ranked.c[RANK_COLUMN] <= aggregation.limit)
                .group_by(*keys)
            )
        else:
            query = select(*keys, row_object.label(VALUE_COLUMN)).where(
                ranked.c[RANK_COLUMN] == 1
            )
        return query.subquery(f"{child.name}__agg")

    # -------------------------
    # Expressions
    # -------------------------

    @staticmethod
    def _row_object(pairs: list[tuple[ColumnElement, ColumnElement]]) -> ColumnElement:
        """
        JSON object of key/value pairs.

        Wide rows are built in chunks of jsonb objects merged with ||,
        since PostgreSQL functions take at most 100 arguments.
        """
        if len(pairs) <= MAX_OBJECT_PAIRS:
            return func.json_build_object(*chain.from_iterable(pairs))

        chunks = [
            func.jsonb_build_object(*chain.from_iterable(pairs[i : i + MAX_OBJECT_PAIRS]))
            for i in range(0, len(pairs), MAX_OBJECT_PAIRS)
        ]
        return reduce(lambda merged, chunk: merged.op("||")(chunk), chunks)

    @staticmethod
    def _source(source_table: Table) -> TableClause:
        return table(
            source_table.name,
            *(column(name) for name in source_table.column_names),
            schema=source_table.schema,
        )

    @staticmethod
    def _id_expression(source: TableClause, primary_key: tuple[str, ...]) -> ColumnElement:
        """Pipe-joined primary-key values as text, in declaration order."""
        parts = [cast(source.c[name], Text) for name in primary_key]
        expression = parts[0]
        for part in parts[1:]:
            expression = expression + _inline(ID_SEPARATOR) + part
        return expression
