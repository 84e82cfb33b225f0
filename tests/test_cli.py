"""Tests for the entityql command line."""

import json
from pathlib import Path

import pytest
from sqlalchemy import Column, Integer, MetaData, String, Table, create_engine, insert

from entityql.cli import main
from entityql.core.schema_catalog.catalog import SchemaCatalog


@pytest.fixture
def snapshot(tmp_path: Path, catalog: SchemaCatalog) -> Path:
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps(catalog.to_dict()))
    return path


def _write_spec(tmp_path: Path, spec: dict) -> Path:
    path = tmp_path / "spec.json"
    path.write_text(json.dumps(spec))
    return path


class TestSqlOnly:
    """Compiling against a catalog snapshot."""

    def test_prints_sql(self, tmp_path: Path, snapshot: Path, capsys) -> None:
        spec = _write_spec(
            tmp_path,
            {
                "entity": "study",
                "select": {
                    "code": True,
                    "experiments": {"spec": {"entity": "experiment"}, "first": 5},
                },
            },
        )

        code = main([str(spec), "--catalog", str(snapshot), "--sql-only"])

        assert code == 0
        out = capsys.readouterr().out
        assert out.startswith("WITH experiment_1 AS")
        assert "json_agg" in out

    def test_unknown_entity_fails(self, tmp_path: Path, snapshot: Path, capsys) -> None:
        spec = _write_spec(tmp_path, {"entity": "nope"})

        code = main([str(spec), "--catalog", str(snapshot), "--sql-only"])

        assert code == 1
        assert "nope" in capsys.readouterr().out

    def test_invalid_json_fails(self, tmp_path: Path, snapshot: Path, capsys) -> None:
        spec = tmp_path / "spec.json"
        spec.write_text("{not json")

        code = main([str(spec), "--catalog", str(snapshot), "--sql-only"])

        assert code == 1
        assert "Invalid JSON" in capsys.readouterr().out

    def test_malformed_snapshot_fails(self, tmp_path: Path, capsys) -> None:
        spec = _write_spec(tmp_path, {"entity": "study"})
        snapshot = tmp_path / "catalog.json"
        snapshot.write_text(json.dumps({"tables": [{"schema": None}]}))

        code = main([str(spec), "--catalog", str(snapshot), "--sql-only"])

        assert code == 1
        assert "Malformed catalog snapshot" in capsys.readouterr().out


class TestDatabase:
    """Reflecting and executing against a SQLite file."""

    @pytest.fixture
    def database_url(self, tmp_path: Path) -> str:
        url = f"sqlite:///{tmp_path / 'studies.db'}"
        engine = create_engine(url)
        metadata = MetaData()
        study = Table(
            "study",
            metadata,
            Column("id", Integer, primary_key=True),
            Column("code", String(20)),
        )
        metadata.create_all(engine)
        with engine.begin() as connection:
            connection.execute(insert(study), [{"id": 1, "code": "S1"}])
        engine.dispose()
        return url

    def test_executes_and_prints_rows(
        self, tmp_path: Path, database_url: str, capsys
    ) -> None:
        spec = _write_spec(tmp_path, {"entity": "study", "select": {"code": True}})

        code = main([str(spec), "--database-url", database_url])

        assert code == 0
        out = capsys.readouterr().out
        assert '"$entity": "study"' in out
        assert '"code": "S1"' in out
        assert "1 row(s)" in out

    def test_dump_catalog(self, tmp_path: Path, database_url: str) -> None:
        spec = _write_spec(tmp_path, {"entity": "study"})
        dump = tmp_path / "dump.json"

        code = main(
            [str(spec), "--database-url", database_url, "--sql-only", "--dump-catalog", str(dump)]
        )

        assert code == 0
        catalog = SchemaCatalog.from_dict(json.loads(dump.read_text()))
        assert catalog.lookup_table("study").primary_key == ("id",)
