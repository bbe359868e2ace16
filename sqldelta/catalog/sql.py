"""
catalog.sql
===========

SQLAlchemy-backed catalogs.

:class:`SqlAlchemyCatalog` introspects through the SQLAlchemy Inspector and
streams/inserts rows with SQLAlchemy Core. Engine subclasses only override
what differs between engines:

- table statistics (row counts and byte sizes)
- the number of rows per insert statement
- (MSSQL) the typed bulk-insert path
"""

from __future__ import annotations

import base64
import datetime as dt
import json
import re
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import sqlalchemy as sa
from sqlalchemy.dialects import mssql
from sqlalchemy.engine import Engine, make_url

from ..errors import NotFoundError, UnsupportedTypeError
from ..log import get_logger
from ..migrations import MigrationRunner
from ..models import ColumnDescriptor, ForeignKey, IndexDescriptor, Row, TableInfo
from ..schema_diff import union_keys
from ..streams import chunked, param_limited_chunk_size, run_pipeline
from ..utils import clean_default, parse_datetime
from .base import Catalog

logger = get_logger(__name__)

_PARAMS_RX = re.compile(r"\(.*?\)")
_SPACES_RX = re.compile(r"\s+")


def native_type_name(type_: sa.types.TypeEngine, dialect: sa.engine.Dialect) -> Tuple[str, bool]:
    """Return ``(name, unsigned)`` for a reflected column type.

    The name is the engine-rendered type without length/precision suffix,
    lowercased. Types SQLAlchemy could not recognize come back as
    ``"unknown"``.
    """
    try:
        compiled = type_.compile(dialect=dialect)
    except sa.exc.CompileError:
        return "unknown", False
    name = _SPACES_RX.sub(" ", _PARAMS_RX.sub("", compiled)).strip().lower()
    unsigned = " unsigned" in f" {name}"
    name = name.replace("unsigned", "").replace("zerofill", "").strip()
    return name, unsigned


def _parse_iso(parser: Callable[[str], Any], value: str) -> Any:
    try:
        return parser(value)
    except ValueError:
        return value


def _parse_number(value: str, asdecimal: bool) -> Any:
    try:
        number = Decimal(value)
    except InvalidOperation:
        return value
    return number if asdecimal else float(number)


def coerce_value(column: sa.Column, value: Any) -> Any:
    """Convert a JSON-decoded *value* to what *column*'s type binds."""
    if value is None:
        return None
    col_type = column.type

    if isinstance(col_type, sa.DateTime) and isinstance(value, str):
        return parse_datetime(value) or value
    if isinstance(col_type, sa.Date) and isinstance(value, dt.datetime):
        return value.date()
    if isinstance(col_type, sa.Date) and isinstance(value, str):
        return _parse_iso(dt.date.fromisoformat, value[:10])
    if isinstance(col_type, sa.Time) and isinstance(value, str):
        return _parse_iso(dt.time.fromisoformat, value)
    if isinstance(col_type, sa.LargeBinary) and isinstance(value, str):
        return base64.b64decode(value)
    if isinstance(col_type, sa.Numeric) and isinstance(value, str):
        return _parse_number(value, col_type.asdecimal)
    if isinstance(col_type, sa.Boolean) and isinstance(value, int):
        return bool(value)
    if isinstance(col_type, sa.String) and isinstance(value, (dt.date, dt.time)):
        return value.isoformat(sep=" ") if isinstance(value, dt.datetime) else value.isoformat()
    if not isinstance(col_type, sa.JSON) and isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


def coerce_rows(table: sa.Table, rows: List[Row]) -> List[Row]:
    """Coerce a chunk of rows, filling keys missing from some rows with NULL."""
    keys = union_keys(*rows)
    return [{k: coerce_value(table.c[k], row.get(k)) for k in keys} for row in rows]


class SqlAlchemyCatalog(Catalog):
    """Catalog over any SQLAlchemy engine.

    Parameters
    ----------
    url:
        SQLAlchemy connection URL.
    engine:
        An existing engine to reuse instead of creating one from *url*.
    engine_options:
        Extra keyword arguments for :func:`sqlalchemy.create_engine`.
    """

    engine_name = "sql"

    def __init__(self, url: str, engine: Optional[Engine] = None, **engine_options: Any):
        self.url = make_url(url)
        self.engine = engine or sa.create_engine(self.url, **engine_options)
        self._tables: Dict[str, sa.Table] = {}
        self._metadata = sa.MetaData()

    @property
    def database_name(self) -> str:
        return self.url.database or self.url.host or "db"

    @property
    def inspector(self) -> sa.engine.Inspector:
        return sa.inspect(self.engine)

    def reflect(self, table: str) -> sa.Table:
        """Return the reflected SQLAlchemy table, cached per catalog."""
        if table not in self._tables:
            if not self.inspector.has_table(table):
                raise NotFoundError(f"Table '{table}' not found")
            self._tables[table] = sa.Table(table, self._metadata, autoload_with=self.engine)
        return self._tables[table]

    # ---- introspection ----
    def table_stats(self, names: Sequence[str]) -> Dict[str, Tuple[Optional[int], Optional[int]]]:
        """Return ``name -> (row_count, byte_size)``; exact counts by default."""
        stats = {}
        with self.engine.connect() as conn:
            for name in names:
                count = conn.execute(sa.select(sa.func.count()).select_from(sa.table(name))).scalar()
                stats[name] = (int(count), None)
        return stats

    def list_tables(self) -> List[TableInfo]:
        names = sorted(self.inspector.get_table_names())
        stats = self.table_stats(names)
        return [TableInfo(name, *stats.get(name, (None, None))) for name in names]

    def has_table(self, table: str) -> bool:
        return self.inspector.has_table(table)

    def get_primary_key(self, table: str) -> List[str]:
        pk = self.inspector.get_pk_constraint(table) or {}
        return list(pk.get("constrained_columns") or [])

    def list_foreign_keys(self, table: str) -> Dict[str, ForeignKey]:
        out: Dict[str, ForeignKey] = {}
        for fk in self.inspector.get_foreign_keys(table):
            for col, ref in zip(fk["constrained_columns"], fk["referred_columns"]):
                out[col] = ForeignKey(fk["referred_table"], ref)
        return out

    def list_columns(self, table: str) -> List[ColumnDescriptor]:
        inspector = self.inspector
        if not inspector.has_table(table):
            raise NotFoundError(f"Table '{table}' not found")
        primary_key = set(self.get_primary_key(table))
        foreign_keys = self.list_foreign_keys(table)

        columns = []
        for col in inspector.get_columns(table):
            col_type = col["type"]
            name, unsigned = native_type_name(col_type, self.engine.dialect)
            max_length = precision = scale = None
            if isinstance(col_type, sa.String):
                max_length = col_type.length
            elif isinstance(col_type, sa.Numeric) and not isinstance(col_type, sa.Float):
                precision, scale = col_type.precision, col_type.scale
            columns.append(
                ColumnDescriptor(
                    name=col["name"],
                    type=name,
                    nullable=bool(col["nullable"]) and col["name"] not in primary_key,
                    default=clean_default(col.get("default")),
                    max_length=max_length,
                    precision=precision,
                    scale=scale,
                    unsigned=unsigned,
                    foreign_key=foreign_keys.get(col["name"]),
                )
            )
        return columns

    def list_indexes(self, table: str) -> List[IndexDescriptor]:
        indexes = []
        for ix in self.inspector.get_indexes(table):
            options = ix.get("dialect_options") or {}
            algorithm = next((v for k, v in options.items() if k.endswith("_using")), None)
            indexes.append(
                IndexDescriptor(
                    name=ix["name"],
                    unique=bool(ix.get("unique")),
                    algorithm=str(algorithm).lower() if algorithm else "unknown",
                    columns=tuple(c for c in ix["column_names"] if c),
                )
            )
        return indexes

    # ---- data ----
    def stream_rows(
        self,
        table: str,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        columns: Optional[Sequence[str]] = None,
    ) -> Iterator[Row]:
        tbl = self.reflect(table)
        query = sa.select(*[tbl.c[c] for c in columns]) if columns else sa.select(tbl)
        if order_by:
            query = query.order_by(tbl.c[order_by])
        if limit is not None:
            query = query.limit(limit)
        if offset:
            query = query.offset(offset)

        with self.engine.connect() as conn:
            result = conn.execution_options(stream_results=True).execute(query)
            for row in result.mappings():
                yield dict(row)

    def run_query(self, sql: str) -> Iterator[Row]:
        with self.engine.connect() as conn:
            result = conn.execution_options(stream_results=True).execute(sa.text(sql))
            for row in result.mappings():
                yield dict(row)

    def has_rows(self, table: str) -> bool:
        tbl = self.reflect(table)
        with self.engine.connect() as conn:
            return conn.execute(sa.select(sa.literal(1)).select_from(tbl).limit(1)).first() is not None

    def truncate(self, table: str) -> None:
        tbl = self.reflect(table)
        with self.engine.begin() as conn:
            conn.execute(tbl.delete())

    def insert_chunk(self, table: sa.Table, rows: List[Row]) -> None:
        with self.engine.begin() as conn:
            conn.execute(table.insert(), coerce_rows(table, rows))

    def bulk_insert(self, table: str, rows: Iterable[Row]) -> int:
        tbl = self.reflect(table)
        size = self.chunk_size(table)
        total = 0

        def write(chunks: Iterator[List[Row]]) -> Iterator[List[Row]]:
            nonlocal total
            for chunk in chunks:
                self.insert_chunk(tbl, chunk)
                total += len(chunk)
                yield chunk

        run_pipeline(rows, lambda stream: chunked(stream, size), write)
        return total

    def apply_migrations(self, scripts: Sequence[Path], table_name: str) -> List[str]:
        applied = MigrationRunner(self.engine, table_name).run(scripts)
        self._tables.clear()
        self._metadata = sa.MetaData()
        return applied

    def close(self) -> None:
        self.engine.dispose()


class SqliteCatalog(SqlAlchemyCatalog):
    """SQLite: exact counts, ``dbstat`` sizes, 999 bound parameters."""

    engine_name = "sqlite"
    #: Max bound parameters per statement in SQLite builds before 3.32.
    param_limit = 999

    Q_TABLE_BYTES = sa.text("SELECT name, SUM(pgsize) AS bytes FROM dbstat GROUP BY name")

    @property
    def database_name(self) -> str:
        return Path(self.url.database or "memory").stem

    def table_stats(self, names: Sequence[str]) -> Dict[str, Tuple[Optional[int], Optional[int]]]:
        stats = super().table_stats(names)
        try:
            with self.engine.connect() as conn:
                sizes = {row.name: row.bytes for row in conn.execute(self.Q_TABLE_BYTES)}
        except sa.exc.OperationalError:
            # sqlite compiled without SQLITE_ENABLE_DBSTAT_VTAB
            return stats
        return {name: (rows, sizes.get(name)) for name, (rows, _) in stats.items()}

    def chunk_size(self, table: str) -> int:
        return param_limited_chunk_size(self.param_limit, len(self.reflect(table).columns))


class PostgresCatalog(SqlAlchemyCatalog):
    engine_name = "postgres"

    Q_TABLE_STATS = sa.text(
        """
        SELECT c.relname AS name,
          c.reltuples AS row_count,
          pg_total_relation_size(c.oid) AS byte_size
        FROM pg_class c
          JOIN pg_namespace n ON n.oid = c.relnamespace
        WHERE c.relkind = 'r'
          AND n.nspname = current_schema()
        """
    )

    def table_stats(self, names: Sequence[str]) -> Dict[str, Tuple[Optional[int], Optional[int]]]:
        with self.engine.connect() as conn:
            rows = {
                r.name: (max(int(r.row_count), 0), int(r.byte_size))
                for r in conn.execute(self.Q_TABLE_STATS)
            }
        return {name: rows.get(name, (None, None)) for name in names}


class MysqlCatalog(SqlAlchemyCatalog):
    engine_name = "mysql"

    Q_TABLE_STATS = sa.text(
        """
        SELECT table_name AS name,
          table_rows AS row_count,
          data_length + index_length AS byte_size
        FROM information_schema.tables
        WHERE table_schema = DATABASE()
        """
    )

    def table_stats(self, names: Sequence[str]) -> Dict[str, Tuple[Optional[int], Optional[int]]]:
        with self.engine.connect() as conn:
            rows = {
                r.name: (
                    int(r.row_count) if r.row_count is not None else None,
                    int(r.byte_size) if r.byte_size is not None else None,
                )
                for r in conn.execute(self.Q_TABLE_STATS)
            }
        return {name: rows.get(name, (None, None)) for name in names}


# Native names the typed bulk path widens instead of taking from the dialect.
MSSQL_CUSTOM_TYPES: Dict[str, Callable[[], sa.types.TypeEngine]] = {
    "decimal": lambda: mssql.DECIMAL(32, 16),
    "text": lambda: mssql.NVARCHAR(),
}


def mssql_bulk_type(native: str, table: Optional[str] = None) -> sa.types.TypeEngine:
    """Return the explicit MSSQL type used to bulk load a *native* column.

    Raises
    ------
    UnsupportedTypeError
        When the name is not an MSSQL data type.
    """
    name = native.lower()
    if name in MSSQL_CUSTOM_TYPES:
        return MSSQL_CUSTOM_TYPES[name]()
    type_cls = mssql.base.ischema_names.get(name)
    if type_cls is None:
        raise UnsupportedTypeError(
            name.upper(),
            table,
            "A valid MSSQL data type should be used, see "
            "https://learn.microsoft.com/sql/t-sql/data-types/data-types-transact-sql",
        )
    return type_cls()


class MssqlCatalog(SqlAlchemyCatalog):
    """MSSQL: typed bulk load with explicit column types."""

    engine_name = "mssql"

    Q_TABLE_STATS = sa.text(
        """
        SELECT s.table_name AS name,
          MAX(p.rows) AS row_count,
          SUM(a.used_pages) * 8 * 1000 AS byte_size
        FROM information_schema.tables s
          LEFT JOIN sys.tables t ON s.table_name = t.name AND s.table_type = 'BASE TABLE'
          LEFT JOIN sys.indexes i ON t.object_id = i.object_id
          LEFT JOIN sys.partitions p ON i.object_id = p.object_id AND i.index_id = p.index_id
          LEFT JOIN sys.allocation_units a ON p.partition_id = a.container_id
        WHERE s.table_schema != 'sys'
          AND (i.object_id IS NULL OR i.object_id > 255)
        GROUP BY s.table_name
        """
    )

    def __init__(self, url: str, engine: Optional[Engine] = None, **engine_options: Any):
        if engine is None and make_url(url).get_driver_name() == "pyodbc":
            engine_options.setdefault("fast_executemany", True)
        super().__init__(url, engine, **engine_options)

    def table_stats(self, names: Sequence[str]) -> Dict[str, Tuple[Optional[int], Optional[int]]]:
        with self.engine.connect() as conn:
            rows = {
                r.name: (
                    int(r.row_count) if r.row_count is not None else None,
                    int(r.byte_size) if r.byte_size is not None else None,
                )
                for r in conn.execute(self.Q_TABLE_STATS)
            }
        return {name: rows.get(name, (None, None)) for name in names}

    def bulk_table(self, table: str) -> Tuple[sa.Table, bool]:
        """Return a table declaring every column's bulk type, and whether it has an identity."""
        columns = []
        identity = False
        for col in self.inspector.get_columns(table):
            native, _ = native_type_name(col["type"], self.engine.dialect)
            columns.append(sa.Column(col["name"], mssql_bulk_type(native, table), nullable=col["nullable"]))
            identity = identity or bool(col.get("identity"))
        return sa.Table(table, sa.MetaData(), *columns), identity

    def bulk_insert(self, table: str, rows: Iterable[Row]) -> int:
        reflected = self.reflect(table)
        typed, identity = self.bulk_table(table)
        quoted = self.engine.dialect.identifier_preparer.quote(table)
        total = 0

        def write(chunks: Iterator[List[Row]]) -> Iterator[List[Row]]:
            nonlocal total
            with self.engine.begin() as conn:
                if identity:
                    conn.exec_driver_sql(f"SET IDENTITY_INSERT {quoted} ON")
                for chunk in chunks:
                    conn.execute(typed.insert(), coerce_rows(reflected, chunk))
                    total += len(chunk)
                    yield chunk
                if identity:
                    conn.exec_driver_sql(f"SET IDENTITY_INSERT {quoted} OFF")

        run_pipeline(rows, lambda stream: chunked(stream, self.chunk_size(table)), write)
        return total


class OracleCatalog(SqlAlchemyCatalog):
    engine_name = "oracle"

    def table_stats(self, names: Sequence[str]) -> Dict[str, Tuple[Optional[int], Optional[int]]]:
        return {name: (None, None) for name in names}


class BigQueryCatalog(SqlAlchemyCatalog):
    """BigQuery through the ``bigquery://project/dataset`` dialect."""

    engine_name = "bigquery"

    @property
    def database_name(self) -> str:
        return self.url.database or self.url.host or "bigquery"

    def table_stats(self, names: Sequence[str]) -> Dict[str, Tuple[Optional[int], Optional[int]]]:
        query = sa.text("SELECT table_id AS name, row_count, size_bytes FROM __TABLES__")
        with self.engine.connect() as conn:
            rows = {r.name: (int(r.row_count), int(r.size_bytes)) for r in conn.execute(query)}
        return {name: rows.get(name, (None, None)) for name in names}
