"""
dumper
======

Portable dumps: create them from a live catalog and load them into another.

A dump is a gzip tarball holding one top-level ``<dump-name>/`` directory::

    <dump-name>.tgz
      <dump-name>/migrations/<14-digit-timestamp>-<table>.yml
      <dump-name>/data/<table>.jsonl

Migration scripts are declarative create scripts (see
:mod:`sqldelta.migrations`) written in foreign-key dependency order, with
strictly increasing timestamps so replay order is deterministic. Data files
hold one JSON object per row and are omitted for empty tables.

Tables are processed one at a time and rows flow through a single lazy
pipeline per table, so memory stays bounded by one row (plus one insert
chunk on load).

Primary API
-----------
- :func:`create_dump` / :class:`DumpWriter`
- :func:`load_dump` / :class:`DumpLoader`
"""

from __future__ import annotations

import base64
import datetime as dt
import json
import re
import shutil
import tarfile
import uuid
from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Set, Tuple

from .catalog.base import Catalog
from .errors import NotFoundError, SqlDeltaError, StreamFailure
from .filters import filter_tables
from .log import get_logger
from .migrations import dump_script, list_scripts, load_script
from .models import ColumnDescriptor, IndexDescriptor, Row, TableSnapshot
from .streams import run_pipeline
from .typemap import INTEGER_TYPES, PRIMARY_KEY_TYPES, to_portable_type
from .utils import is_numeric, parse_datetime, safe_name, slugify, string_date, timestamp_sequence, to_number, write_text

logger = get_logger(__name__)

BOOKKEEPING_PREFIX = "sqldelta_migrations"
ARCHIVE_SUFFIX = ".tgz"
# tarfile extraction filters exist from Python 3.10.12 / 3.11.4
HAS_EXTRACTION_FILTERS = hasattr(tarfile, "data_filter")

# Datetimes as written by different drivers:
# - 2012-01-01 00:00:00
# - 2012-01-01T00:00:00.000Z (ISO)
DATE_RX = re.compile(r"^\d{4}-\d\d-\d\d( |T)\d\d:\d\d:\d\d")

NO_DEFAULT_TYPES = ("timestamp", "dateTime")


# ---- table ordering ----
def order_tables(dependencies: Mapping[str, Set[str]]) -> List[str]:
    """Order tables so each comes after every table it references.

    Parameters
    ----------
    dependencies:
        ``table -> referenced tables``. Self references and tables outside
        the mapping are ignored.

    Returns
    -------
    list of str
        Tables by dependency level, then by name. Tables caught in a
        reference cycle are appended last, by name, with a warning.
    """
    deps = {t: {d for d in refs if d != t and d in dependencies} for t, refs in dependencies.items()}
    level: Dict[str, int] = {}
    pending = sorted(deps)

    while pending:
        waiting = []
        for table in pending:
            if all(d in level for d in deps[table]):
                level[table] = max((level[d] for d in deps[table]), default=0) + 1
            else:
                waiting.append(table)
        if len(waiting) == len(pending):
            logger.warning("Reference cycle between tables: %s", ", ".join(waiting))
            last = max(level.values(), default=0) + 1
            for table in waiting:
                level[table] = last
            break
        pending = waiting

    return sorted(level, key=lambda t: (level[t], t))


# ---- create scripts ----
def column_spec(col: ColumnDescriptor, table: str, is_primary_key: bool = False) -> Dict[str, Any]:
    """Return the create script entry for one column.

    A single-column integer primary key becomes an ``increments`` column;
    primary key, nullable and default qualifiers are implied by it.
    """
    portable = to_portable_type(col, table)
    increments = is_primary_key and not col.nullable and portable in PRIMARY_KEY_TYPES
    if increments:
        portable = PRIMARY_KEY_TYPES[portable]

    spec: Dict[str, Any] = {"name": col.name, "type": portable}
    if col.precision and col.scale:
        spec["precision"] = col.precision
        spec["scale"] = col.scale
    elif col.max_length and portable == "string":
        spec["length"] = col.max_length

    if increments:
        return spec

    if col.unsigned and portable in INTEGER_TYPES:
        spec["unsigned"] = True
    if is_primary_key:
        spec["primary"] = True
    elif not col.nullable:
        spec["nullable"] = False
    if col.default is not None and portable not in NO_DEFAULT_TYPES:
        default = col.default
        spec["default"] = to_number(default) if isinstance(default, str) and is_numeric(default) else default
    if col.foreign_key:
        spec["references"] = {"table": col.foreign_key.table, "column": col.foreign_key.column}
    return spec


def index_spec(index: IndexDescriptor) -> Dict[str, Any]:
    spec: Dict[str, Any] = {}
    # MySQL names every primary key index "PRIMARY"; the name cannot be reused.
    if index.name and index.name != "PRIMARY":
        spec["name"] = index.name
    spec["unique"] = index.unique
    spec["columns"] = list(index.columns)
    return spec


def build_create_script(catalog: Catalog, table: str) -> Dict[str, Any]:
    """Describe *table* as a declarative create script."""
    primary_key = catalog.get_primary_key(table)
    single_pk = primary_key[0] if len(primary_key) == 1 else None

    script: Dict[str, Any] = {
        "table": table,
        "columns": [column_spec(c, table, c.name == single_pk) for c in catalog.list_columns(table)],
    }
    if len(primary_key) > 1:
        script["primary"] = list(primary_key)

    indexes = [
        index_spec(ix)
        for ix in catalog.list_indexes(table)
        # the index backing the primary key comes with the key itself
        if not (ix.unique and list(ix.columns) == primary_key)
    ]
    if indexes:
        script["indexes"] = indexes
    return script


# ---- row encoding ----
def sanitize_row(row: Row) -> Row:
    """Drop NULL fields and store booleans as 1/0."""
    out: Row = {}
    for key, value in row.items():
        if value is None:
            continue
        if value is True:
            value = 1
        elif value is False:
            value = 0
        out[key] = value
    return out


def json_default(value: Any) -> Any:
    """Encode values JSON has no type for."""
    if isinstance(value, dt.datetime):
        return value.isoformat(sep=" ")
    if isinstance(value, (dt.date, dt.time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        # integral values stay JSON numbers; others keep every digit as text
        if value.is_finite() and value == value.to_integral_value():
            return int(value)
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, (uuid.UUID, dt.timedelta)):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_row(row: Row) -> str:
    return json.dumps(row, default=json_default, ensure_ascii=False) + "\n"


def rehydrate_row(row: Row) -> Row:
    """Turn datetime strings back into datetimes.

    JSON has no date type, so datetimes come back from a data file as
    strings; anything matching :data:`DATE_RX` that parses is converted.
    """
    for key, value in row.items():
        if isinstance(value, str) and DATE_RX.match(value):
            parsed = parse_datetime(value)
            if parsed is not None:
                row[key] = parsed
    return row


def read_rows(path: Path) -> Iterator[Row]:
    """Yield the rows of a ``.jsonl`` data file, lazily."""
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            if line.strip():
                yield json.loads(line)


# ---- writer ----
class DumpWriter:
    """Write a dump of *catalog* into *dumps_dir*.

    Parameters
    ----------
    catalog:
        Source catalog.
    dumps_dir:
        Directory relative dump names are resolved against.
    include, exclude:
        Table patterns, see :func:`sqldelta.filters.filter_tables`.
    case_sensitive:
        Whether table patterns are case-sensitive.

    After :meth:`create`, ``manifest`` holds one :class:`TableSnapshot` per
    dumped table, in dump order.
    """

    def __init__(
        self,
        catalog: Catalog,
        dumps_dir: Optional[Path] = None,
        include: Sequence[str] = (),
        exclude: Sequence[str] = (),
        case_sensitive: bool = False,
    ):
        self.catalog = catalog
        self.dumps_dir = Path(dumps_dir) if dumps_dir else Path.cwd()
        self.include = list(include)
        self.exclude = list(exclude)
        self.case_sensitive = case_sensitive
        self.manifest: List[TableSnapshot] = []

    def default_name(self) -> str:
        return f"dump-{self.catalog.engine_name}-{slugify(self.catalog.database_name)}-{string_date()}"

    def resolve(self, name: Optional[str] = None) -> Tuple[Path, Path]:
        """Return ``(staging_dir, tarball_path)`` for dump *name*."""
        name = name or self.default_name()
        if name.endswith(ARCHIVE_SUFFIX):
            name = name[: -len(ARCHIVE_SUFFIX)]
        dump_dir = Path(name)
        if not dump_dir.is_absolute():
            dump_dir = self.dumps_dir / dump_dir
        return dump_dir, dump_dir.with_name(dump_dir.name + ARCHIVE_SUFFIX)

    def list_tables(self) -> List[str]:
        """Tables to dump: filtered, bookkeeping tables excluded, in dependency order."""
        names = [t.name for t in self.catalog.list_tables() if not t.name.startswith(BOOKKEEPING_PREFIX)]
        names = filter_tables(names, self.include, self.exclude, self.case_sensitive)
        dependencies = {
            name: {c.foreign_key.table for c in self.catalog.list_columns(name) if c.foreign_key}
            for name in names
        }
        return order_tables(dependencies)

    def write_migration(self, table: str, path: Path) -> Dict[str, Any]:
        script = build_create_script(self.catalog, table)
        try:
            write_text(path, dump_script(script))
        except OSError as exc:
            raise StreamFailure(f"Cannot write '{path}': {exc}") from exc
        return script

    def write_data(self, table: str, path: Path) -> int:
        """Stream the rows of *table* into *path*; return rows written."""
        if not self.catalog.has_rows(table):
            return 0
        primary_key = self.catalog.get_primary_key(table)
        rows = self.catalog.stream_rows(table, order_by=primary_key[0] if primary_key else None)

        try:
            f = path.open("w", encoding="utf-8")
        except OSError as exc:
            raise StreamFailure(f"Cannot write '{path}': {exc}") from exc

        def write_lines(lines: Iterator[str]) -> Iterator[str]:
            for line in lines:
                f.write(line)
                yield line

        with f:
            return run_pipeline(
                rows,
                lambda stream: (sanitize_row(r) for r in stream),
                lambda stream: (encode_row(r) for r in stream),
                write_lines,
            )

    def archive(self, dump_dir: Path, tarball: Path) -> None:
        try:
            with tarfile.open(tarball, "w:gz") as tar:
                tar.add(dump_dir, arcname=dump_dir.name)
        except (OSError, tarfile.TarError) as exc:
            tarball.unlink(missing_ok=True)
            raise StreamFailure(f"Cannot create archive '{tarball}': {exc}") from exc

    def create(self, name: Optional[str] = None) -> Path:
        """Create the dump and return the tarball path."""
        dump_dir, tarball = self.resolve(name)
        if tarball.exists():
            raise SqlDeltaError(f"Dump file '{tarball}' already exists")

        shutil.rmtree(dump_dir, ignore_errors=True)
        (dump_dir / "migrations").mkdir(parents=True)
        (dump_dir / "data").mkdir(parents=True)

        stamps = timestamp_sequence()
        self.manifest = []
        for table in self.list_tables():
            script_path = f"migrations/{next(stamps)}-{safe_name(table)}.yml"
            data_path = f"data/{safe_name(table)}.jsonl"

            script = self.write_migration(table, dump_dir / script_path)
            logger.info("Created %s", script_path)

            rows = self.write_data(table, dump_dir / data_path)
            if rows:
                logger.info("Created %s (%d rows)", data_path, rows)
            self.manifest.append(TableSnapshot(table, script, script_path, data_path if rows else None))

        self.archive(dump_dir, tarball)
        shutil.rmtree(dump_dir)
        logger.debug("Dumped %d tables into %s", len(self.manifest), tarball)
        return tarball


def create_dump(catalog: Catalog, destination: Optional[str] = None, **options: Any) -> Path:
    """Dump *catalog* to ``<destination>.tgz``; return the tarball path.

    *destination* is a dump name or path, with or without ``.tgz``. When
    omitted a name is generated (``dump-<engine>-<database>-<timestamp>``).
    """
    return DumpWriter(catalog, **options).create(destination)


def safe_members(tar: tarfile.TarFile, dest: Path) -> Iterator[tarfile.TarInfo]:
    """Yield the archive members, refusing links, devices and paths outside *dest*.

    Used where :mod:`tarfile` has no extraction filters.
    """
    root = dest.resolve()
    for member in tar.getmembers():
        target = (root / member.name).resolve()
        if not (member.isfile() or member.isdir()) or (target != root and root not in target.parents):
            raise tarfile.TarError(f"Refusing to extract '{member.name}'")
        yield member


def extract_archive(archive: Path, dest: Path) -> None:
    with tarfile.open(archive, "r:gz") as tar:
        if HAS_EXTRACTION_FILTERS:
            tar.extractall(dest, filter="data")
        else:
            tar.extractall(dest, members=safe_members(tar, dest))


# ---- loader ----
class DumpLoader:
    """Load the dump at *archive* into *catalog*.

    Migrations are tracked in a bookkeeping table named after the dump, so
    loading several dumps into one database keeps their bookkeeping apart.
    """

    def __init__(self, catalog: Catalog, archive: Path):
        self.catalog = catalog
        self.archive = Path(archive).resolve()
        self.dump_name = self.archive.name
        if self.dump_name.endswith(ARCHIVE_SUFFIX):
            self.dump_name = self.dump_name[: -len(ARCHIVE_SUFFIX)]

    @property
    def bookkeeping_table(self) -> str:
        return f"{BOOKKEEPING_PREFIX}_{slugify(self.dump_name)}"

    @contextmanager
    def extracted(self) -> Iterator[Path]:
        """Extract the archive next to it; the directory is removed on exit."""
        staging = self.archive.with_name(f"{self.dump_name}.extracted")
        shutil.rmtree(staging, ignore_errors=True)
        try:
            try:
                extract_archive(self.archive, staging)
            except (OSError, tarfile.TarError) as exc:
                raise StreamFailure(f"Cannot extract '{self.archive}': {exc}") from exc
            yield self.find_root(staging)
        finally:
            shutil.rmtree(staging, ignore_errors=True)

    @staticmethod
    def find_root(staging: Path) -> Path:
        """Return the directory holding ``migrations/`` (the top-level dump dir)."""
        if (staging / "migrations").is_dir():
            return staging
        for child in sorted(p for p in staging.iterdir() if p.is_dir()):
            if (child / "migrations").is_dir():
                return child
        raise NotFoundError(f"Migration files at '{staging}' not found")

    @staticmethod
    def ordered_data_files(root: Path, scripts: Sequence[Path]) -> List[Tuple[str, Path]]:
        """Return ``(table, data_file)`` in migration order.

        Data files without a create script are loaded last, named after
        their file.
        """
        data_dir = root / "data"
        files = {p.name: p for p in data_dir.glob("*.jsonl")} if data_dir.is_dir() else {}

        ordered: List[Tuple[str, Path]] = []
        for script in scripts:
            table = load_script(script)["table"]
            path = files.pop(f"{safe_name(table)}.jsonl", None)
            if path is not None:
                ordered.append((table, path))
        for name in sorted(files):
            ordered.append((name[: -len(".jsonl")], files[name]))
        return ordered

    def load(self) -> Dict[str, int]:
        """Apply the migrations then load every data file; return rows per table."""
        if not self.archive.exists():
            raise NotFoundError(f"Dump file '{self.archive}' not found")

        loaded: Dict[str, int] = {}
        with self.extracted() as root:
            scripts = list_scripts(root / "migrations")
            logger.info("Saving migrations to table %s ...", self.bookkeeping_table)
            self.catalog.apply_migrations(scripts, self.bookkeeping_table)

            for table, path in self.ordered_data_files(root, scripts):
                logger.info("Loading data to %s ...", table)
                self.catalog.truncate(table)
                loaded[table] = self.catalog.bulk_insert(table, (rehydrate_row(r) for r in read_rows(path)))
        return loaded


def load_dump(catalog: Catalog, archive: Path) -> Dict[str, int]:
    """Load the dump at *archive* into *catalog*; return rows loaded per table."""
    return DumpLoader(catalog, archive).load()
