"""
catalog.base
============

The :class:`Catalog` interface every engine adapter implements.

A catalog wraps one live connection and offers schema introspection, ordered
row streaming, bulk loading and migrations. The diff and dump code only ever
talk to this interface, never to a specific engine.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence

from ..models import ColumnDescriptor, IndexDescriptor, Row, TableDescriptor, TableInfo
from ..streams import DEFAULT_CHUNK_SIZE


class Catalog(ABC):
    """One live database connection.

    Subclasses provide the introspection and data primitives; schema
    assembly (:meth:`get_schema`) is shared.
    """

    #: Engine family name, used in default dump names.
    engine_name = "generic"
    default_chunk_size = DEFAULT_CHUNK_SIZE

    @property
    @abstractmethod
    def database_name(self) -> str:
        """Name of the connected database (file stem for file databases)."""

    @abstractmethod
    def list_tables(self) -> List[TableInfo]:
        """Tables with approximate row count and byte size, by name."""

    @abstractmethod
    def list_columns(self, table: str) -> List[ColumnDescriptor]:
        """Columns of *table* in ordinal order."""

    @abstractmethod
    def list_indexes(self, table: str) -> List[IndexDescriptor]:
        ...

    @abstractmethod
    def get_primary_key(self, table: str) -> List[str]:
        """Primary key columns of *table* (empty, single or composite)."""

    @abstractmethod
    def stream_rows(
        self,
        table: str,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        columns: Optional[Sequence[str]] = None,
    ) -> Iterator[Row]:
        """Yield rows of *table* lazily, ordered ascending by *order_by*."""

    @abstractmethod
    def run_query(self, sql: str) -> Iterator[Row]:
        """Yield the rows of a raw SELECT in the order the query returns them."""

    @abstractmethod
    def has_rows(self, table: str) -> bool:
        ...

    @abstractmethod
    def truncate(self, table: str) -> None:
        """Delete every row of *table*."""

    @abstractmethod
    def bulk_insert(self, table: str, rows: Iterable[Row]) -> int:
        """Insert *rows* in chunks of :meth:`chunk_size`; return rows inserted."""

    @abstractmethod
    def apply_migrations(self, scripts: Sequence[Path], table_name: str) -> List[str]:
        """Apply pending create *scripts*, tracked in *table_name*."""

    def chunk_size(self, table: str) -> int:
        """Rows per insert statement for *table*."""
        return self.default_chunk_size

    def has_table(self, table: str) -> bool:
        return any(t.name == table for t in self.list_tables())

    def describe_table(self, info: TableInfo) -> TableDescriptor:
        return TableDescriptor(
            name=info.name,
            row_count=info.row_count,
            byte_size=info.byte_size,
            columns={c.name: c for c in self.list_columns(info.name)},
            indexes=tuple(self.list_indexes(info.name)),
        )

    def get_schema(self, tables: Optional[Sequence[str]] = None) -> Dict[str, TableDescriptor]:
        """Return ``name -> TableDescriptor`` for all tables, or only *tables*."""
        wanted = set(tables) if tables is not None else None
        return {
            info.name: self.describe_table(info)
            for info in self.list_tables()
            if wanted is None or info.name in wanted
        }

    def close(self) -> None:
        pass

    def __enter__(self) -> "Catalog":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
