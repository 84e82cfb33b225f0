"""
EntityQL command line.

Compiles an entity spec (JSON file) against a reflected or snapshotted
catalog, prints the SQL and, unless --sql-only is given, runs it.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.syntax import Syntax
from rich.text import Text

from entityql.config import get_settings
from entityql.core.errors import EntityQLError
from entityql.core.query_plan.compiler import SpecCompiler
from entityql.core.query_plan.emitter import QueryEmitter
from entityql.core.schema_catalog.catalog import SchemaCatalog
from entityql.db.base import get_engine
from entityql.db.executor import QueryExecutor
from entityql.db.reflection import reflect_catalog

console = Console()
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="entityql",
        description="Compile a nested entity spec into one SQL query",
    )
    parser.add_argument("spec", help="Path to the JSON spec, or '-' for stdin")
    parser.add_argument(
        "--catalog",
        type=Path,
        help="Catalog snapshot (JSON) to compile against instead of reflecting",
    )
    parser.add_argument("--database-url", help="Overrides DATABASE_URL")
    parser.add_argument("--schema", help="Schema to reflect (overrides DATABASE_SCHEMA)")
    parser.add_argument(
        "--sql-only",
        action="store_true",
        help="Print the SQL without executing it",
    )
    parser.add_argument(
        "--verify-facets",
        action="store_true",
        help="Warn when a one-to-one relation matches several rows",
    )
    parser.add_argument(
        "--dump-catalog",
        type=Path,
        help="Write the reflected catalog snapshot to this file",
    )
    parser.add_argument("--log-level", help="Overrides LOG_LEVEL")
    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    settings = get_settings()

    logging.basicConfig(
        level=(args.log_level or settings.log_level).upper(),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )

    try:
        spec = _load_spec(args.spec)
        engine = None
        if args.catalog is not None:
            catalog = SchemaCatalog.from_dict(_load_json(args.catalog.read_text()))
        else:
            engine = get_engine(args.database_url)
            catalog = reflect_catalog(engine, args.schema or settings.database_schema)

        if args.dump_catalog is not None:
            args.dump_catalog.write_text(json.dumps(catalog.to_dict(), indent=2))
            logger.info("Wrote catalog snapshot to %s", args.dump_catalog)

        compiled = SpecCompiler(catalog, max_depth=settings.max_spec_depth).compile(spec)
        sql = QueryEmitter().emit(compiled)

        if args.sql_only:
            console.out(sql, highlight=False)
            return 0

        console.print(Syntax(sql, "sql", word_wrap=True))
        if engine is None:
            engine = get_engine(args.database_url)
        result = QueryExecutor(engine).execute(compiled, verify_facets=args.verify_facets)
        console.print_json(data=result.rows, default=str)
        console.print(f"[dim]{result.row_count} row(s)[/dim]")
        return 0

    except EntityQLError as e:
        console.print(Text.assemble(("Error: ", "red"), str(e)), soft_wrap=True)
        return 1


def _load_spec(source: str) -> Any:
    text = sys.stdin.read() if source == "-" else Path(source).read_text()
    return _load_json(text)


def _load_json(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise EntityQLError(f"Invalid JSON: {e}") from e


if __name__ == "__main__":
    sys.exit(main())
