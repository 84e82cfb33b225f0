"""Shared fixtures: a small study/experiment catalog."""

import pytest

from entityql.core.schema_catalog.catalog import (
    ColumnRecord,
    ForeignKeyRecord,
    PrimaryKeyRecord,
    SchemaCatalog,
    TableRecord,
)


def _columns(table: str, *names: str, pk: tuple[str, ...] = ("id",)) -> list[ColumnRecord]:
    return [ColumnRecord(table=table, name=n, is_primary_key=n in pk) for n in names]


@pytest.fixture
def catalog() -> SchemaCatalog:
    """
    Catalog used across core tests.

    study 1-n experiment 1-n sample
    study 1-1 study_profile (facet)
    experiment n-1 employee (owner reference)
    employee n-1 employee (manager, self reference)
    transfer has two foreign keys to study
    site has a composite primary key declared (region, code)
    audit_log has no primary key
    """
    tables = [
        TableRecord(name=name, schema="public")
        for name in (
            "study",
            "experiment",
            "sample",
            "study_profile",
            "employee",
            "transfer",
            "site",
            "visit",
            "audit_log",
        )
    ]
    columns = [
        *_columns("study", "id", "code", "closed"),
        *_columns("experiment", "id", "study_id", "owner_id", "name"),
        *_columns("sample", "id", "experiment_id", "label"),
        *_columns("study_profile", "study_id", "summary", pk=("study_id",)),
        *_columns("employee", "id", "manager_id", "name"),
        *_columns("transfer", "id", "source_study_id", "target_study_id"),
        *_columns("site", "code", "region", "name", pk=("code", "region")),
        *_columns("visit", "id", "site_region", "site_code", "visited_on"),
        *_columns("audit_log", "study_id", "message", pk=()),
    ]
    primary_keys = [PrimaryKeyRecord(table="site", columns=("region", "code"))]
    foreign_keys = [
        ForeignKeyRecord("experiment", ("study_id",), "study", ("id",)),
        ForeignKeyRecord("experiment", ("owner_id",), "employee", ("id",)),
        ForeignKeyRecord("sample", ("experiment_id",), "experiment", ("id",)),
        ForeignKeyRecord(
            "study_profile", ("study_id",), "study", ("id",), is_unique=True
        ),
        ForeignKeyRecord("employee", ("manager_id",), "employee", ("id",)),
        ForeignKeyRecord("transfer", ("source_study_id",), "study", ("id",)),
        ForeignKeyRecord("transfer", ("target_study_id",), "study", ("id",)),
        ForeignKeyRecord(
            "visit",
            ("site_region", "site_code"),
            "site",
            ("region", "code"),
            name="visit_site_fkey",
        ),
        ForeignKeyRecord("audit_log", ("study_id",), "study", ("id",)),
    ]
    return SchemaCatalog.from_metadata(tables, columns, foreign_keys, primary_keys)
