"""Query planning for EntityQL: relation resolution, compilation, emission."""

from .compiler import DEFAULT_MAX_DEPTH, SpecCompiler
from .emitter import QueryEmitter
from .plan import (
    ENTITY_COLUMN,
    ID_COLUMN,
    CompiledQuery,
    CteNode,
    JoinOnto,
    NestedAggregation,
    OutputColumn,
)
from .relation_resolver import ForeignKeyPath, RelationKind, RelationResolver

__all__ = [
    "DEFAULT_MAX_DEPTH",
    "ENTITY_COLUMN",
    "ID_COLUMN",
    "CompiledQuery",
    "CteNode",
    "ForeignKeyPath",
    "JoinOnto",
    "NestedAggregation",
    "OutputColumn",
    "QueryEmitter",
    "RelationKind",
    "RelationResolver",
    "SpecCompiler",
]
