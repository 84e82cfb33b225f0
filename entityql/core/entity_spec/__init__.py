"""Entity spec input models for EntityQL."""

from .models import (
    MAX_LIMIT,
    Cardinality,
    EntitySpec,
    PlainField,
    RelationSelect,
    RenamedField,
    SelectItem,
    output_key,
)

__all__ = [
    "MAX_LIMIT",
    "Cardinality",
    "EntitySpec",
    "PlainField",
    "RelationSelect",
    "RenamedField",
    "SelectItem",
    "output_key",
]
