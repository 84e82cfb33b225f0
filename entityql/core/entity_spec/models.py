"""
Entity spec models for EntityQL.

An entity spec names a root table and the fields to select from it.
Fields are either plain columns, renamed columns, or nested relation
selections, which are themselves entity specs.

Raw caller input uses the compact form:

    {
        "entity": "study",
        "select": {
            "code": True,                 # keep column name
            "closed": "is_closed",        # rename output key
            "experiments": {              # nested relation
                "spec": {"entity": "experiment"},
                "first": 10,
                "via": "experiment_study_id_fkey",
            },
        },
    }
"""

from collections.abc import Iterator, Mapping
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from entityql.core.errors import InvalidSpecError

# Upper bound of a per-parent row limit (unsigned 32-bit)
MAX_LIMIT = 2**32 - 1

# Prefix reserved for synthesized columns ($id, $entity, ...)
RESERVED_PREFIX = "$"

# PostgreSQL truncates longer identifiers, so output labels could collide
MAX_IDENTIFIER_BYTES = 63


class Cardinality(str, Enum):
    """How many child rows a relation yields per parent row."""

    ONE = "one"
    MANY = "many"


# -----------------------------
# Select Items
# -----------------------------


class PlainField(BaseModel):
    """A column selected under its catalog name."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["plain"] = "plain"
    column: str

    @property
    def output(self) -> str:
        return self.column


class RenamedField(BaseModel):
    """A column selected under a different output key."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["renamed"] = "renamed"
    column: str
    output: str = Field(..., min_length=1)


class RelationSelect(BaseModel):
    """
    A nested entity reached through a foreign key.

    first present means Many(first); absent means One.
    via names the foreign-key constraint to use when several apply.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["relation"] = "relation"
    spec: "EntitySpec"
    first: int | None = Field(default=None, ge=0, le=MAX_LIMIT)
    via: str | None = None

    @property
    def cardinality(self) -> Cardinality:
        return Cardinality.ONE if self.first is None else Cardinality.MANY


SelectItem = Annotated[
    Union[PlainField, RenamedField, RelationSelect],
    Field(discriminator="kind"),
]


# -----------------------------
# Root Spec
# -----------------------------


class EntitySpec(BaseModel):
    """
    Selection of one entity and, recursively, its related entities.

    select=None selects every column of the table.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    entity: str = Field(..., min_length=1)
    select: dict[str, SelectItem] | None = None

    @field_validator("select", mode="before")
    @classmethod
    def coerce_select(cls, value: Any) -> Any:
        """Expand the compact select syntax into tagged items."""
        if not isinstance(value, Mapping):
            return value

        coerced: dict[str, Any] = {}
        for key, item in value.items():
            if item is True:
                coerced[key] = {"kind": "plain", "column": key}
            elif item is False:
                continue
            elif isinstance(item, str):
                coerced[key] = {"kind": "renamed", "column": key, "output": item}
            elif isinstance(item, Mapping) and "kind" not in item:
                coerced[key] = {"kind": "relation", **item}
            else:
                coerced[key] = item
        return coerced

    @model_validator(mode="after")
    def check_output_keys(self) -> "EntitySpec":
        seen: set[str] = set()
        for key, item in (self.select or {}).items():
            if not isinstance(item, RelationSelect) and item.column != key:
                raise ValueError(
                    f"Select key '{key}' must match its column '{item.column}'"
                )
            output = output_key(key, item)
            if output.startswith(RESERVED_PREFIX):
                raise ValueError(f"Output key '{output}' is reserved")
            if len(output.encode("utf-8")) > MAX_IDENTIFIER_BYTES:
                raise ValueError(
                    f"Output key '{output}' is longer than {MAX_IDENTIFIER_BYTES} bytes"
                )
            if output in seen:
                raise ValueError(f"Duplicate output key '{output}'")
            seen.add(output)
        return self

    @classmethod
    def parse(cls, raw: "EntitySpec | Mapping[str, Any]") -> "EntitySpec":
        """
        Parse raw caller input into an EntitySpec.

        Raises:
            InvalidSpecError: If the input does not have the spec shape.
        """
        if isinstance(raw, cls):
            return raw
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            raise InvalidSpecError(f"Invalid entity spec: {e}") from e

    def relations(self) -> Iterator[tuple[str, RelationSelect]]:
        """Iterate (alias, relation) pairs in select order."""
        for key, item in (self.select or {}).items():
            if isinstance(item, RelationSelect):
                yield key, item


def output_key(key: str, item: PlainField | RenamedField | RelationSelect) -> str:
    """Output key a select entry produces in result rows."""
    match item:
        case PlainField() | RenamedField():
            return item.output
        case RelationSelect():
            return key


RelationSelect.model_rebuild()
EntitySpec.model_rebuild()
