"""
migrations
==========

Declarative "create table" scripts and the runner that applies them.

A create script is a YAML document::

    table: orders
    columns:
      - {name: id, type: increments}
      - {name: total, type: decimal, precision: 8, scale: 2, nullable: false, default: 0}
      - {name: customer_id, type: integer, references: {table: customers, column: id}}
    primary: [a, b]            # only for composite keys
    indexes:
      - {name: ix_orders_total, unique: false, columns: [total]}

Column types use the portable vocabulary of :mod:`sqldelta.typemap`, so the
same script recreates the table on any engine SQLAlchemy can talk to.

:class:`MigrationRunner` applies scripts in file-name order and records
each applied script in a bookkeeping table, so applying the same set twice
is a no-op.
"""

from __future__ import annotations

import datetime as dt
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import sqlalchemy as sa
import yaml
from sqlalchemy.engine import Connection, Engine

from .errors import SqlDeltaError, StreamFailure
from .log import get_logger
from .typemap import to_sqlalchemy_type

logger = get_logger(__name__)

SCRIPT_SUFFIX = ".yml"

Bind = Union[Engine, Connection]


def load_script(path: Path) -> Dict[str, Any]:
    """Read and validate one create script."""
    try:
        with path.open("r", encoding="utf-8") as f:
            script = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise StreamFailure(f"Cannot read create script '{path}': {exc}") from exc

    if not isinstance(script, dict) or not script.get("table") or not script.get("columns"):
        raise SqlDeltaError(f"Malformed create script '{path}': 'table' and 'columns' are required")
    return script


def dump_script(script: Dict[str, Any]) -> str:
    """Render a create script as YAML, keys in authoring order."""
    return yaml.safe_dump(script, sort_keys=False, allow_unicode=True, default_flow_style=None)


def _server_default(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def default_index_name(table: str, columns: Sequence[str], unique: bool) -> str:
    return f"{table}_{'_'.join(columns)}_{'unique' if unique else 'index'}"


def _ensure_referenced(metadata: sa.MetaData, bind: Bind, table: str, own_table: str) -> None:
    if table == own_table or table in metadata.tables:
        return
    sa.Table(table, metadata, autoload_with=bind)


def build_column(spec: Dict[str, Any], table: str, metadata: sa.MetaData, bind: Bind) -> sa.Column:
    """Build a SQLAlchemy column from one ``columns`` entry."""
    portable = spec["type"]
    sa_type = to_sqlalchemy_type(
        portable,
        length=spec.get("length"),
        precision=spec.get("precision"),
        scale=spec.get("scale"),
        unsigned=bool(spec.get("unsigned")),
    )

    args: List[Any] = [spec["name"], sa_type]
    ref = spec.get("references")
    if ref:
        _ensure_referenced(metadata, bind, ref["table"], table)
        args.append(sa.ForeignKey(f"{ref['table']}.{ref['column']}"))

    if portable in ("increments", "bigIncrements"):
        return sa.Column(*args, primary_key=True, autoincrement=True)

    return sa.Column(
        *args,
        primary_key=bool(spec.get("primary")),
        nullable=spec.get("nullable", True),
        server_default=_server_default(spec.get("default")),
        autoincrement=False,
    )


def build_table(script: Dict[str, Any], metadata: sa.MetaData, bind: Bind) -> sa.Table:
    """Build (but do not create) the table described by *script*.

    Tables referenced by foreign keys and not yet known to *metadata* are
    reflected from *bind* first.
    """
    name = script["table"]
    items: List[Any] = [build_column(col, name, metadata, bind) for col in script["columns"]]

    primary = script.get("primary") or []
    if primary:
        items.append(sa.PrimaryKeyConstraint(*primary))

    table = sa.Table(name, metadata, *items)

    for index in script.get("indexes") or []:
        columns = index["columns"]
        unique = bool(index.get("unique"))
        sa.Index(
            index.get("name") or default_index_name(name, columns, unique),
            *[table.c[c] for c in columns],
            unique=unique,
        )
    return table


class MigrationRunner:
    """Apply create scripts against *engine*, tracked in *table_name*.

    Parameters
    ----------
    engine:
        Destination engine.
    table_name:
        Bookkeeping table holding one row per applied script
        (``id, name, batch, applied_at``).
    """

    def __init__(self, engine: Engine, table_name: str):
        self.engine = engine
        self.table_name = table_name
        self.metadata = sa.MetaData()
        self.bookkeeping = sa.Table(
            table_name,
            sa.MetaData(),
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("name", sa.String(255), nullable=False, unique=True),
            sa.Column("batch", sa.Integer, nullable=False),
            sa.Column("applied_at", sa.DateTime, nullable=False),
        )

    def ensure_bookkeeping_table(self) -> None:
        self.bookkeeping.create(self.engine, checkfirst=True)

    def applied(self) -> List[str]:
        """Names of the scripts already applied, in application order."""
        query = sa.select(self.bookkeeping.c.name).order_by(self.bookkeeping.c.id)
        with self.engine.connect() as conn:
            return [row.name for row in conn.execute(query)]

    def _next_batch(self) -> int:
        query = sa.select(sa.func.max(self.bookkeeping.c.batch))
        with self.engine.connect() as conn:
            return (conn.execute(query).scalar() or 0) + 1

    def run(self, scripts: Sequence[Path]) -> List[str]:
        """Apply pending *scripts* in file-name order; return their names.

        Each table is created together with its bookkeeping row in one
        transaction. A failure leaves the tables created so far in place.
        """
        self.ensure_bookkeeping_table()
        done = set(self.applied())
        batch = self._next_batch()
        applied: List[str] = []

        for path in sorted(scripts, key=lambda p: p.name):
            if path.name in done:
                logger.debug("Skipping applied migration %s", path.name)
                continue
            script = load_script(path)
            with self.engine.begin() as conn:
                table = build_table(script, self.metadata, conn)
                table.create(conn)
                conn.execute(
                    self.bookkeeping.insert().values(
                        name=path.name,
                        batch=batch,
                        applied_at=dt.datetime.now(),
                    )
                )
            logger.info("Migrated %s", path.name)
            applied.append(path.name)
        return applied


def list_scripts(directory: Path) -> List[Path]:
    return sorted(p for p in directory.iterdir() if p.suffix == SCRIPT_SUFFIX)
