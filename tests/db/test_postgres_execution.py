"""
Tests for nested queries executed on PostgreSQL.

Connects to TEST_DATABASE_URL, or the configured DATABASE_URL, and works
in a throwaway schema. Skipped when no PostgreSQL server answers.
"""

import os
import uuid

import pytest
from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    insert,
)
from sqlalchemy.exc import OperationalError
from sqlalchemy.schema import CreateSchema, DropSchema

from entityql.config import get_settings
from entityql.core.query_plan.compiler import SpecCompiler
from entityql.core.schema_catalog.catalog import SchemaCatalog
from entityql.db.executor import QueryExecutor
from entityql.db.reflection import reflect_catalog

WIDE_COLUMNS = 52


# -----------------------------
# Fixtures
# -----------------------------


@pytest.fixture(scope="module")
def engine():
    url = os.environ.get("TEST_DATABASE_URL") or get_settings().database_url
    engine = create_engine(url)
    if engine.dialect.name != "postgresql":
        pytest.skip(f"{url} is not a PostgreSQL database")
    try:
        with engine.connect():
            pass
    except OperationalError as e:
        engine.dispose()
        pytest.skip(f"PostgreSQL is not available: {e}")

    yield engine
    engine.dispose()


@pytest.fixture(scope="module")
def schema(engine) -> str:
    """
    Throwaway schema with studies, experiments and samples.

    study 1: experiments 11-15 (inserted out of order), a profile, a wide row
    study 2: experiments 21-22
    study 3: nothing
    experiment 11: samples 101-103; experiment 21: sample 201
    """
    name = f"entityql_test_{uuid.uuid4().hex[:8]}"
    metadata = MetaData(schema=name)

    study = Table(
        "study",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("code", String(20)),
    )
    experiment = Table(
        "experiment",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("study_id", Integer, ForeignKey(f"{name}.study.id")),
        Column("name", String(50)),
    )
    sample = Table(
        "sample",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("experiment_id", Integer, ForeignKey(f"{name}.experiment.id")),
        Column("label", String(50)),
    )
    profile = Table(
        "study_profile",
        metadata,
        Column("study_id", Integer, ForeignKey(f"{name}.study.id"), primary_key=True),
        Column("summary", String(200)),
    )
    wide = Table(
        "wide",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("study_id", Integer, ForeignKey(f"{name}.study.id")),
        *(Column(f"c{i}", Integer) for i in range(WIDE_COLUMNS)),
    )

    with engine.begin() as connection:
        connection.execute(CreateSchema(name))
        metadata.create_all(connection)
        connection.execute(
            insert(study),
            [{"id": i, "code": f"S{i}"} for i in (1, 2, 3)],
        )
        connection.execute(
            insert(experiment),
            [
                {"id": i, "study_id": i // 10, "name": f"E{i}"}
                for i in (15, 11, 13, 22, 12, 14, 21)
            ],
        )
        connection.execute(
            insert(sample),
            [
                {"id": 103, "experiment_id": 11, "label": "c"},
                {"id": 101, "experiment_id": 11, "label": "a"},
                {"id": 201, "experiment_id": 21, "label": "x"},
                {"id": 102, "experiment_id": 11, "label": "b"},
            ],
        )
        connection.execute(insert(profile), [{"study_id": 1, "summary": "first"}])
        connection.execute(
            insert(wide),
            [{"id": 1, "study_id": 1, **{f"c{i}": i for i in range(WIDE_COLUMNS)}}],
        )

    yield name

    with engine.begin() as connection:
        connection.execute(DropSchema(name, cascade=True))


@pytest.fixture(scope="module")
def catalog(engine, schema: str) -> SchemaCatalog:
    return reflect_catalog(engine, schema)


@pytest.fixture
def run(engine, catalog: SchemaCatalog):
    """Compile and execute a spec, returning its rows."""

    def _run(spec: dict) -> list[dict]:
        compiled = SpecCompiler(catalog).compile(spec)
        return QueryExecutor(engine).execute(compiled).rows

    return _run


def _experiments(first: int, select: dict | None = None) -> dict:
    return {
        "spec": {"entity": "experiment", "select": select or {"id": True, "name": True}},
        "first": first,
    }


# -----------------------------
# Many Relation Tests
# -----------------------------


class TestManyRelations:
    """Tests for per-parent limited JSON arrays."""

    def test_arrays_limited_per_parent(self, run) -> None:
        rows = run({"entity": "study", "select": {"code": True, "experiments": _experiments(3)}})

        assert [row["code"] for row in rows] == ["S1", "S2", "S3"]
        assert [len(row["experiments"]) for row in rows] == [3, 2, 0]

    def test_arrays_ordered_by_child_primary_key(self, run) -> None:
        rows = run({"entity": "study", "select": {"experiments": _experiments(10)}})

        assert [e["id"] for e in rows[0]["experiments"]] == [11, 12, 13, 14, 15]
        assert [e["id"] for e in rows[1]["experiments"]] == [21, 22]

    def test_missing_children_are_empty_array(self, run) -> None:
        rows = run({"entity": "study", "select": {"experiments": _experiments(3)}})
        assert rows[2]["experiments"] == []

    def test_first_zero(self, run) -> None:
        rows = run({"entity": "study", "select": {"experiments": _experiments(0)}})
        assert [row["experiments"] for row in rows] == [[], [], []]

    def test_child_metadata_and_renames(self, run) -> None:
        rows = run(
            {"entity": "study", "select": {"experiments": _experiments(1, {"name": "title"})}}
        )

        assert rows[0]["experiments"] == [
            {"title": "E11", "$id": "11", "$entity": "experiment"}
        ]

    def test_nested_arrays(self, run) -> None:
        samples = {"spec": {"entity": "sample", "select": {"id": True}}, "first": 2}
        rows = run(
            {
                "entity": "study",
                "select": {"experiments": _experiments(10, {"id": True, "samples": samples})},
            }
        )

        by_id = {e["id"]: e for e in rows[0]["experiments"]}
        assert [s["id"] for s in by_id[11]["samples"]] == [101, 102]
        assert by_id[12]["samples"] == []
        assert [s["id"] for s in rows[1]["experiments"][0]["samples"]] == [201]


# -----------------------------
# One Relation Tests
# -----------------------------


class TestOneRelations:
    """Tests for single structured values."""

    def test_object_or_null(self, run) -> None:
        rows = run(
            {
                "entity": "study",
                "select": {"profile": {"spec": {"entity": "study_profile"}}},
            }
        )

        assert rows[0]["profile"] == {
            "study_id": 1,
            "summary": "first",
            "$id": "1",
            "$entity": "study_profile",
        }
        assert rows[1]["profile"] is None
        assert rows[2]["profile"] is None

    def test_reference(self, run) -> None:
        rows = run(
            {
                "entity": "experiment",
                "select": {
                    "id": True,
                    "study": {"spec": {"entity": "study", "select": {"code": True}}},
                },
            }
        )

        assert rows[0]["id"] == 11
        assert rows[0]["study"] == {"code": "S1", "$id": "1", "$entity": "study"}


# -----------------------------
# Edge Case Tests
# -----------------------------


class TestEdgeCases:
    """Inputs that stress naming and argument limits."""

    def test_wide_child_row(self, run) -> None:
        rows = run(
            {"entity": "study", "select": {"rows": {"spec": {"entity": "wide"}, "first": 1}}}
        )

        [item] = rows[0]["rows"]
        assert len(item) == WIDE_COLUMNS + 4
        assert item["c51"] == 51
        assert item["$entity"] == "wide"

    def test_long_aliases(self, run) -> None:
        first, second = "a" * 60, "a" * 59 + "b"
        rows = run(
            {
                "entity": "study",
                "select": {first: _experiments(1), second: _experiments(2)},
            }
        )

        assert len(rows[0][first]) == 1
        assert len(rows[0][second]) == 2

    def test_alias_containing_separator(self, run) -> None:
        samples = {"spec": {"entity": "sample", "select": {"id": True}}, "first": 1}
        rows = run(
            {
                "entity": "study",
                "select": {
                    "x": _experiments(1, {"id": True, "y": samples}),
                    "x__y": _experiments(1),
                },
            }
        )

        assert rows[0]["x"][0]["y"] == [{"id": 101, "$id": "101", "$entity": "sample"}]
        assert rows[0]["x__y"][0]["id"] == 11
