"""
models
======

Read-only descriptors shared by the diff and dump code.

Descriptors are built fresh from a live catalog for each command and never
mutated afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, NamedTuple, Optional, Tuple

from .utils import full_type

Row = Dict[str, Any]


@dataclass(frozen=True)
class ForeignKey:
    """Target of a foreign key column."""
    table: str
    column: str

    def __str__(self) -> str:
        return f"{self.table}.{self.column}"


@dataclass(frozen=True)
class ColumnDescriptor:
    """A table column as reported by the catalog.

    Attributes:
        name: Column name.
        type: Engine-native type name, lowercase, without size suffix.
        nullable: Whether the column accepts NULL.
        default: Cleaned default value (``None`` when absent).
        max_length: Character length for string types.
        precision: Numeric precision.
        scale: Numeric scale.
        unsigned: Unsigned integer flag (MySQL).
        foreign_key: Referenced table/column, if any.
    """

    name: str
    type: str
    nullable: bool = True
    default: Any = None
    max_length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    unsigned: bool = False
    foreign_key: Optional[ForeignKey] = None

    @property
    def full_type(self) -> str:
        return full_type(self.type, self.unsigned, self.precision, self.scale, self.max_length)

    @property
    def signature(self) -> Tuple[str, bool]:
        """Fields a column diff is classified by (the default is not one)."""
        return (self.full_type, self.nullable)


@dataclass(frozen=True)
class IndexDescriptor:
    """A table index. Column order is significant."""
    name: str
    unique: bool = False
    algorithm: str = "unknown"
    columns: Tuple[str, ...] = ()

    @property
    def content_hash(self) -> str:
        return f"{self.algorithm}:{self.unique}:{','.join(self.columns)}"


@dataclass(frozen=True)
class TableInfo:
    """Table entry of a catalog listing."""
    name: str
    row_count: Optional[int] = None
    byte_size: Optional[int] = None


@dataclass(frozen=True)
class TableDescriptor:
    """A table with its columns (in ordinal order) and indexes."""
    name: str
    row_count: Optional[int] = None
    byte_size: Optional[int] = None
    columns: Mapping[str, ColumnDescriptor] = field(default_factory=dict)
    indexes: Tuple[IndexDescriptor, ...] = ()


class DiffStatus(str, Enum):
    CREATED = "created"
    DELETED = "deleted"
    CHANGED = "changed"
    SIMILAR = "similar"


class DiffResult(NamedTuple):
    """Entries of a diff plus its human readable summary."""
    entries: List[Any]
    summary: str


@dataclass(frozen=True)
class DiffEntry:
    """Classification of one compared item.

    ``nested`` is only filled for table entries, holding the ``columns`` and
    ``indexes`` diffs of that table.
    """

    key: str
    status: DiffStatus
    before: Any = None
    after: Any = None
    changed_fields: FrozenSet[str] = frozenset()
    nested: Dict[str, DiffResult] = field(default_factory=dict, compare=False)

    @property
    def current(self) -> Any:
        return self.after if self.after is not None else self.before


@dataclass(frozen=True)
class TableSnapshot:
    """One table of a dump: its create script and optional data file."""
    table_name: str
    create_script: Dict[str, Any]
    script_path: str
    data_file_path: Optional[str] = None
