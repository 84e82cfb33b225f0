"""
Error taxonomy for EntityQL.

Every failure raised while building a catalog or compiling a spec derives
from EntityQLError. Compilation is all-or-nothing: any SpecCompileError
aborts the whole compilation.
"""

from collections.abc import Sequence


class EntityQLError(Exception):
    """Base class for all EntityQL errors."""

    pass


# -----------------------------
# Catalog Errors
# -----------------------------


class CatalogError(EntityQLError):
    """Raised when schema metadata is inconsistent."""

    pass


# -----------------------------
# Compile Errors
# -----------------------------


class SpecCompileError(EntityQLError):
    """Raised when an entity spec cannot be compiled."""

    pass


class InvalidSpecError(SpecCompileError):
    """Raised when a raw spec does not have the expected shape."""

    pass


class UnknownEntityError(SpecCompileError):
    """Raised when a spec names a table absent from the catalog."""

    def __init__(self, entity: str):
        self.entity = entity
        super().__init__(f"Unknown entity '{entity}'")


class UnknownFieldError(SpecCompileError):
    """Raised when a select references a column the table does not have."""

    def __init__(self, entity: str, field: str):
        self.entity = entity
        self.field = field
        super().__init__(f"Entity '{entity}' has no column '{field}'")


class ReservedFieldError(SpecCompileError):
    """Raised when an unrenamed column would clash with a synthesized $ column."""

    def __init__(self, entity: str, field: str):
        self.entity = entity
        self.field = field
        super().__init__(
            f"Column '{field}' of '{entity}' uses the reserved '$' prefix; "
            "select it under another name"
        )


class MissingPrimaryKeyError(SpecCompileError):
    """Raised when an entity's table has no primary key to build $id from."""

    def __init__(self, entity: str):
        self.entity = entity
        super().__init__(
            f"Entity '{entity}' has no primary key; cannot synthesize $id"
        )


class SpecDepthExceededError(SpecCompileError):
    """Raised when relation nesting goes deeper than the configured limit."""

    def __init__(self, entity: str, max_depth: int):
        self.entity = entity
        self.max_depth = max_depth
        super().__init__(
            f"Spec nesting exceeds {max_depth} levels at entity '{entity}' "
            "(recursive specs must terminate)"
        )


class RelationError(SpecCompileError):
    """Base class for join path resolution failures."""

    def __init__(self, parent: str, child: str, message: str):
        self.parent = parent
        self.child = child
        super().__init__(message)


class NoRelationError(RelationError):
    """Raised when no foreign key connects parent and child."""

    def __init__(self, parent: str, child: str, via: str | None = None):
        self.via = via
        if via is None:
            message = f"No foreign key connects '{parent}' and '{child}'"
        else:
            message = (
                f"No foreign key named '{via}' connects '{parent}' and '{child}'"
            )
        super().__init__(parent, child, message)


class AmbiguousRelationError(RelationError):
    """Raised when more than one foreign key could join parent and child."""

    def __init__(self, parent: str, child: str, candidates: Sequence[str]):
        self.candidates = tuple(candidates)
        names = ", ".join(f"'{c}'" for c in self.candidates)
        super().__init__(
            parent,
            child,
            f"Ambiguous relation between '{parent}' and '{child}': "
            f"candidates are {names}; name one with 'via'",
        )


class RelationCardinalityMismatchError(RelationError):
    """Raised when the declared cardinality disagrees with the foreign key."""

    pass
