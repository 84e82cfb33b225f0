"""Database collaborators: engine, catalog reflection, query execution."""

from entityql.db.base import get_database_url, get_engine
from entityql.db.executor import ExecutionResult, QueryExecutor
from entityql.db.reflection import reflect_catalog, reflect_catalog_async

__all__ = [
    "ExecutionResult",
    "QueryExecutor",
    "get_database_url",
    "get_engine",
    "reflect_catalog",
    "reflect_catalog_async",
]
