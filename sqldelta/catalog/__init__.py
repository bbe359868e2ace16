"""
catalog
=======

Engine adapters behind the :class:`~sqldelta.catalog.base.Catalog`
interface.

:func:`open_catalog` picks the adapter once, from the connection URL scheme;
nothing downstream branches on the engine again.
"""

from __future__ import annotations

from typing import Any, Callable, Dict

from ..errors import SqlDeltaError
from .base import Catalog
from .sql import (
    BigQueryCatalog,
    MssqlCatalog,
    MysqlCatalog,
    OracleCatalog,
    PostgresCatalog,
    SqlAlchemyCatalog,
    SqliteCatalog,
)
from .snowflake import SnowflakeCatalog

# Short scheme names accepted on the command line, by SQLAlchemy backend.
SCHEME_ALIASES: Dict[str, tuple] = {
    "mysql": ("my", "maria", "mariadb", "aurora", "percona"),
    "postgresql": ("pg", "pgsql", "postgres"),
    "sqlite": ("sq", "file", "sqlite3"),
    "mssql": ("ms", "sqlserver"),
    "bigquery": ("bq",),
    "snowflake": ("sf",),
}

CATALOGS: Dict[str, Callable[..., Catalog]] = {
    "sqlite": SqliteCatalog,
    "postgresql": PostgresCatalog,
    "mysql": MysqlCatalog,
    "mssql": MssqlCatalog,
    "oracle": OracleCatalog,
    "bigquery": BigQueryCatalog,
}


def resolve_scheme(scheme: str) -> str:
    """Return the SQLAlchemy backend name for a (possibly short) scheme."""
    backend, plus, driver = scheme.partition("+")
    for name, aliases in SCHEME_ALIASES.items():
        if backend == name or backend in aliases:
            backend = name
            break
    return f"{backend}{plus}{driver}"


def normalize_url(url: str) -> str:
    """Rewrite short schemes (``pg://``, ``sq://``...) to SQLAlchemy ones."""
    scheme, sep, rest = url.partition("://")
    if not sep:
        raise SqlDeltaError(f"Unknown connection URI '{url}', cannot parse or resolve it from an alias")
    return f"{resolve_scheme(scheme)}://{rest}"


def backend_name(url: str) -> str:
    return normalize_url(url).split("://", 1)[0].split("+", 1)[0]


def open_catalog(url: str, **options: Any) -> Catalog:
    """Open a catalog for *url*, picking the adapter from its scheme."""
    url = normalize_url(url)
    backend = backend_name(url)
    if backend == "snowflake":
        return SnowflakeCatalog(url, **options)
    catalog_cls = CATALOGS.get(backend, SqlAlchemyCatalog)
    return catalog_cls(url, **options)


__all__ = [
    "Catalog",
    "SqlAlchemyCatalog",
    "SqliteCatalog",
    "PostgresCatalog",
    "MysqlCatalog",
    "MssqlCatalog",
    "OracleCatalog",
    "BigQueryCatalog",
    "SnowflakeCatalog",
    "open_catalog",
    "normalize_url",
]
