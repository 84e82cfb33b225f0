"""Query execution layer."""

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Connection, Engine, column, func, select, table
from sqlalchemy.sql import Select

from entityql.core.entity_spec.models import Cardinality
from entityql.core.query_plan.emitter import QueryEmitter
from entityql.core.query_plan.plan import CompiledQuery, CteNode

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """Result of query execution."""

    columns: list[str]
    rows: list[dict[str, Any]]
    row_count: int


class QueryExecutor:
    """
    Runs compiled queries against a database.

    A connection is acquired per call and released on every exit path.
    Driver and SQL errors propagate unchanged.
    """

    def __init__(self, engine: Engine, emitter: QueryEmitter | None = None):
        self._engine = engine
        self._emitter = emitter or QueryEmitter()

    def execute(
        self, compiled: CompiledQuery, verify_facets: bool = False
    ) -> ExecutionResult:
        """
        Execute a compiled query and return its rows.

        Args:
            compiled: The compiled query to run.
            verify_facets: Log a warning for every one-to-one relation
                whose join key matches several child rows.

        Returns:
            ExecutionResult with columns and rows as dicts.
        """
        statement = self._emitter.build_statement(compiled)

        with self._engine.connect() as connection:
            if verify_facets:
                self._verify_facets(connection, compiled)

            result = connection.execute(statement)
            columns = list(result.keys())
            rows = [dict(row._mapping) for row in result]

        logger.info("Query for '%s' returned %d row(s)", compiled.root.entity, len(rows))
        return ExecutionResult(columns=columns, rows=rows, row_count=len(rows))

    def _verify_facets(self, connection: Connection, compiled: CompiledQuery) -> None:
        """Warn about one-to-one relations that are not unique in the data."""
        for node in compiled.nodes:
            for aggregation in node.nested_aggregations:
                if aggregation.cardinality is not Cardinality.ONE:
                    continue
                child = compiled.get_node(aggregation.child_cte)
                duplicates = connection.execute(self._duplicate_keys(child)).first()
                if duplicates is not None:
                    logger.warning(
                        "Relation '%s' of '%s' matched more than one '%s' row for key %s; "
                        "only the row with the lowest primary key is returned",
                        aggregation.alias,
                        node.entity,
                        child.entity,
                        tuple(duplicates),
                    )

    @staticmethod
    def _duplicate_keys(child: CteNode) -> Select:
        source = table(
            child.source_table.name,
            *(column(name) for name in child.joins_onto.child_columns),
            schema=child.source_table.schema,
        )
        keys = [source.c[name] for name in child.joins_onto.child_columns]
        return (
            select(*keys)
            .group_by(*keys)
            .having(func.count() > 1)
            .limit(1)
        )
