"""
cli
===

Command line entry point.

Commands
--------

``sqldelta diff <a> <b>``
    Compare two schemas, two tables (``<conn>/<table>``) or, with
    ``--data``, the rows of two tables.

``sqldelta dump create <conn> [name]``
    Write a portable ``<name>.tgz`` dump of a database.

``sqldelta dump load <conn> <dumpfile>``
    Recreate the tables of a dump in a database and load their rows.

Examples::

    sqldelta diff prod staging --exclude 'TMP_%'
    sqldelta diff pg://localhost/shop/orders sq:///shop.db/orders --data --key id
    sqldelta dump create prod nightly
    sqldelta dump load local dumps/nightly.tgz

Errors raised by the core or the database driver are printed as
``ERROR: <message>`` on stderr with exit status 1.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from rich.console import Console
from snowflake.connector import errors as snowflake_errors
from sqlalchemy.exc import SQLAlchemyError

from . import __version__
from .catalog import Catalog, open_catalog
from .config import Settings, Target, read_settings, resolve_target
from .dumper import ARCHIVE_SUFFIX, create_dump, load_dump
from .errors import NotFoundError, SqlDeltaError
from .filters import filter_tables
from .log import get_logger, setup_logging
from .models import TableDescriptor
from .reporting import (
    HIDDEN_HINT,
    Section,
    columns_section,
    generate_summary_md,
    indexes_section,
    print_section,
    rows_section,
    tables_section,
)
from .schema_diff import compare_columns, compare_indexes, compare_tables, union_keys
from .streams import diff_streams

logger = get_logger(__name__)

SIDES = ("before", "after")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="sqldelta",
        description="Diff relational schemas and table data, and dump/load portable database snapshots.",
    )
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument("--config", default=None, help="Path to a YAML config (default: $SQLDELTA_CONFIG or ./sqldelta.yml)")
    ap.add_argument("--log-level", default=None, help="Logging level (debug, info, warning...)")

    sub = ap.add_subparsers(dest="command", required=True)

    diff = sub.add_parser("diff", help="Compare two schemas, tables or table contents")
    diff.add_argument("a", help="'before' connection: URL or alias, optionally /<table>")
    diff.add_argument("b", help="'after' connection: URL or alias, optionally /<table>")
    diff.add_argument("--all", action="store_true", help="Also show similar entries, rows and columns")
    diff.add_argument("--data", action="store_true", help="Compare table rows instead of structure")
    diff.add_argument(
        "--query",
        default=None,
        help="Compare the rows a SELECT returns on both sides; it must ORDER BY the key column",
    )
    diff.add_argument("--key", default=None, help="Column rows are ordered and matched by (default: id)")
    diff.add_argument("--columns", default="*", help="Comma separated columns to compare with --data (default: *)")
    diff.add_argument("--limit", type=int, default=None, help="Rows to compare with --data (default: 20)")
    diff.add_argument("--offset", type=int, default=0, help="Rows to skip with --data (default: 0)")
    diff.add_argument("--report", default=None, help="Also write the diff as a Markdown report to this file")
    _add_table_filters(diff)

    dump = sub.add_parser("dump", help="Create or load portable dumps")
    dump_sub = dump.add_subparsers(dest="dump_command", required=True)

    create = dump_sub.add_parser("create", help="Dump a database to <name>.tgz")
    create.add_argument("conn", help="Connection URL or alias")
    create.add_argument("name", nargs="?", default=None, help="Dump name or path (default: generated)")
    create.add_argument("--dumps-dir", default=None, help="Directory relative dump names resolve against")
    _add_table_filters(create)

    load = dump_sub.add_parser("load", help="Load a dump into a database")
    load.add_argument("conn", help="Connection URL or alias")
    load.add_argument("dumpfile", help="Dump archive (.tgz), a path or a name under the dumps directory")
    load.add_argument("--dumps-dir", default=None, help="Directory relative dump names resolve against")

    return ap


def _add_table_filters(ap: argparse.ArgumentParser) -> None:
    ap.add_argument(
        "--include",
        action="append",
        default=[],
        help="Include table pattern (repeatable). SQL LIKE (%% _) or regex via re:... e.g. --include 'FACT_%%'",
    )
    ap.add_argument(
        "--exclude",
        action="append",
        default=[],
        help="Exclude table pattern (repeatable). SQL LIKE (%% _) or regex via re:... e.g. --exclude 'TMP_%%'",
    )


# ---- diff ----
def _require_table(catalog: Catalog, table: str, side: str) -> None:
    if not catalog.has_table(table):
        raise NotFoundError(f"Table '{table}' not found in '{side}' schema")


def _require_column(table: TableDescriptor, column: str, side: str) -> None:
    if column not in table.columns:
        raise NotFoundError(f"Column '{column}' not found in table '{table.name}' of '{side}' schema")


def parse_columns(value: Optional[str], key: str) -> Optional[List[str]]:
    """``"*"`` (or empty) means every column; otherwise the key column comes first."""
    if not value or value.strip() == "*":
        return None
    names = [c.strip() for c in value.split(",") if c.strip()]
    return union_keys([key], names)


def diff_schemas(cat_a: Catalog, cat_b: Catalog, args: argparse.Namespace, settings: Settings) -> List[Section]:
    tf = settings.table_filter
    names_a = filter_tables([t.name for t in cat_a.list_tables()], tf.include, tf.exclude, tf.case_sensitive)
    names_b = filter_tables([t.name for t in cat_b.list_tables()], tf.include, tf.exclude, tf.case_sensitive)
    result = compare_tables(cat_a.get_schema(names_a), cat_b.get_schema(names_b), show_similar=args.all)
    return [tables_section(result)]


def diff_table_structure(
    cat_a: Catalog, cat_b: Catalog, table_a: str, table_b: str, args: argparse.Namespace
) -> List[Section]:
    before = cat_a.get_schema([table_a])[table_a]
    after = cat_b.get_schema([table_b])[table_b]
    columns = compare_columns(before.columns, after.columns, show_similar=args.all)
    indexes = compare_indexes(before.indexes, after.indexes, show_similar=args.all)
    return [columns_section(columns), indexes_section(indexes)]


def diff_table_data(
    cat_a: Catalog,
    cat_b: Catalog,
    table_a: str,
    table_b: str,
    args: argparse.Namespace,
    settings: Settings,
) -> List[Section]:
    key = args.key or settings.diff_key
    limit = args.limit if args.limit is not None else settings.diff_limit
    columns = parse_columns(args.columns, key)

    for catalog, table, side in ((cat_a, table_a, SIDES[0]), (cat_b, table_b, SIDES[1])):
        descriptor = catalog.get_schema([table])[table]
        for column in columns or [key]:
            _require_column(descriptor, column, side)

    rows_a = cat_a.stream_rows(table_a, order_by=key, limit=limit, offset=args.offset, columns=columns)
    rows_b = cat_b.stream_rows(table_b, order_by=key, limit=limit, offset=args.offset, columns=columns)
    result = diff_streams(rows_a, rows_b, id_key=key, all_rows=args.all, all_columns=args.all or bool(columns))
    caption = f"Rows {args.offset + 1} .. {args.offset + limit} of '{table_a}' ordered by {key}"
    return [rows_section(result, key, caption=caption)]


def diff_query_data(cat_a: Catalog, cat_b: Catalog, args: argparse.Namespace, settings: Settings) -> List[Section]:
    key = args.key or settings.diff_key
    rows_a = cat_a.run_query(args.query)
    rows_b = cat_b.run_query(args.query)
    result = diff_streams(rows_a, rows_b, id_key=key, all_rows=args.all, all_columns=args.all)
    return [rows_section(result, key, caption=f"Rows of the query ordered by {key}")]


def run_diff(args: argparse.Namespace, settings: Settings, console: Console) -> int:
    target_a = resolve_target(args.a, settings)
    target_b = resolve_target(args.b, settings)
    logger.debug("Comparing %s with %s", target_a.describe(), target_b.describe())

    with open_catalog(target_a.url) as cat_a, open_catalog(target_b.url) as cat_b:
        if args.query:
            sections = diff_query_data(cat_a, cat_b, args, settings)
        elif target_a.table or target_b.table:
            table_a = target_a.table or target_b.table
            table_b = target_b.table or target_a.table
            _require_table(cat_a, table_a, SIDES[0])
            _require_table(cat_b, table_b, SIDES[1])
            if args.data:
                sections = diff_table_data(cat_a, cat_b, table_a, table_b, args, settings)
            else:
                sections = diff_table_structure(cat_a, cat_b, table_a, table_b, args)
        else:
            if args.data:
                raise SqlDeltaError("--data needs a table on at least one side (<conn>/<table>)")
            sections = diff_schemas(cat_a, cat_b, args, settings)

    for section in sections:
        print_section(console, section)
    if any(section.has_hidden for section in sections):
        console.print(HIDDEN_HINT, markup=False, highlight=False)

    if args.report:
        path = generate_summary_md(Path(args.report), report_header(target_a, target_b, args, settings), sections)
        logger.info("Report written to %s", path)
    return 0


def report_header(target_a: Target, target_b: Target, args: argparse.Namespace, settings: Settings) -> List[str]:
    tf = settings.table_filter
    return [
        f"- Before: `{target_a.describe()}`",
        f"- After: `{target_b.describe()}`",
        f"- Options: all={args.all} data={args.data} query={args.query or '-'}",
        f"- Table filters: include={tf.include if tf.include else '[]'} exclude={tf.exclude if tf.exclude else '[]'}",
    ]


# ---- dump ----
def resolve_dumpfile(value: str, dumps_dir: Path) -> Path:
    """Return the archive *value* names, looking in *dumps_dir* for bare names."""
    path = Path(value)
    candidates = [path, path.with_name(path.name + ARCHIVE_SUFFIX)]
    if not path.is_absolute():
        candidates += [dumps_dir / c for c in candidates]
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return path


def run_dump_create(args: argparse.Namespace, settings: Settings) -> int:
    target = resolve_target(args.conn, settings)
    tf = settings.table_filter
    with open_catalog(target.url) as catalog:
        path = create_dump(
            catalog,
            args.name,
            dumps_dir=settings.dumps_dir,
            include=tf.include,
            exclude=tf.exclude,
            case_sensitive=tf.case_sensitive,
        )
    print(path)
    return 0


def run_dump_load(args: argparse.Namespace, settings: Settings) -> int:
    target = resolve_target(args.conn, settings)
    archive = resolve_dumpfile(args.dumpfile, settings.dumps_dir)
    with open_catalog(target.url) as catalog:
        loaded = load_dump(catalog, archive)
    print(f"Loaded {sum(loaded.values())} rows into {len(loaded)} tables from {archive}")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the CLI; return the process exit status."""
    args = build_parser().parse_args(argv)
    settings = read_settings(args)
    setup_logging(settings.log_level)
    console = Console()

    try:
        if args.command == "diff":
            return run_diff(args, settings, console)
        if args.dump_command == "create":
            return run_dump_create(args, settings)
        return run_dump_load(args, settings)
    except (SqlDeltaError, SQLAlchemyError, snowflake_errors.Error) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
