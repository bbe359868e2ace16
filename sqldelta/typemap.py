"""
typemap
=======

Portable column type vocabulary.

A dump describes columns with a small, engine-agnostic vocabulary so a
table can be recreated on any supported engine:

``increments, bigIncrements, integer, bigInteger, string, text, float,
decimal, boolean, date, time, dateTime, timestamp, binary, json, uuid``

:func:`to_portable_type` maps an engine-native column to that vocabulary and
:func:`to_sqlalchemy_type` maps a vocabulary name back to a SQLAlchemy type
for the migration runner.
"""

from __future__ import annotations

from typing import Dict, List, Optional

import sqlalchemy as sa
from sqlalchemy.dialects import mysql

from .errors import UnsupportedTypeError
from .models import ColumnDescriptor

# Native names (bare or full) known for each portable type, besides the
# portable name itself. Full type is looked up before the bare native name.
PORTABLE_TYPES: Dict[str, List[str]] = {
    "increments": ["serial", "serial4"],
    "bigIncrements": ["bigserial", "serial8"],
    "integer": ["int", "int4", "integer", "mediumint", "smallint", "int2", "int64"],
    "bigInteger": ["bigint", "int8"],
    "string": ["char", "character", "varchar", "nvarchar", "nchar", "character varying", "varchar2", "nvarchar2"],
    "text": ["nvarchar(-1)", "text", "longtext", "mediumtext", "tinytext", "ntext", "clob", "nclob"],
    "float": ["real", "double", "double precision", "float4", "float8", "float64", "binary_double"],
    "decimal": ["money", "numeric", "number", "bignumeric", "smallmoney"],
    "boolean": ["tinyint", "bool", "bit"],
    "date": [],
    "time": ["time without time zone"],
    "dateTime": ["datetime", "datetime2", "smalldatetime", "timestamp without time zone", "timestamp_ntz"],
    "timestamp": ["timestamp with time zone", "timestamptz", "datetimeoffset", "timestamp_tz", "timestamp_ltz"],
    "binary": ["blob", "bytea", "varbinary", "longblob", "mediumblob", "image", "raw", "bytes"],
    "json": ["jsonb", "variant", "object", "array"],
    "uuid": ["uniqueidentifier"],
}

PRIMARY_KEY_TYPES = {"integer": "increments", "bigInteger": "bigIncrements"}
INTEGER_TYPES = ("increments", "bigIncrements", "integer", "bigInteger")

DEFAULT_STRING_LENGTH = 255
DEFAULT_DECIMAL = (8, 2)


def _find_type(name: str) -> Optional[str]:
    for portable, aliases in PORTABLE_TYPES.items():
        if name == portable.lower() or name in aliases:
            return portable
    return None


def lookup_type(native: str, full: Optional[str] = None) -> Optional[str]:
    """Return the portable type for a native type name, or None.

    >>> lookup_type("character varying", "character varying(40)")
    'string'
    """
    candidates = [full] if full else []
    candidates.append(native)
    for name in candidates:
        found = _find_type(name.lower().strip())
        if found:
            return found
    return None


def to_portable_type(column: ColumnDescriptor, table: Optional[str] = None) -> str:
    """Map *column* to the portable vocabulary.

    Raises
    ------
    UnsupportedTypeError
        When the native type has no mapping.
    """
    portable = lookup_type(column.type, column.full_type)
    if portable is None:
        raise UnsupportedTypeError(column.type, table, "Cannot convert it to a portable type")
    if portable == "decimal" and column.precision and column.scale == 0:
        # NUMBER(38,0) and friends hold integers
        return "bigInteger" if column.precision > 9 else "integer"
    return portable


def to_sqlalchemy_type(
    portable: str,
    length: Optional[int] = None,
    precision: Optional[int] = None,
    scale: Optional[int] = None,
    unsigned: bool = False,
) -> sa.types.TypeEngine:
    """Return the SQLAlchemy type used to create a portable column."""
    if portable in ("increments", "integer"):
        base: sa.types.TypeEngine = sa.Integer()
        if unsigned:
            base = base.with_variant(mysql.INTEGER(unsigned=True), "mysql")
        return base
    if portable in ("bigIncrements", "bigInteger"):
        base = sa.BigInteger()
        if unsigned:
            base = base.with_variant(mysql.BIGINT(unsigned=True), "mysql")
        if portable == "bigIncrements":
            # sqlite only autoincrements INTEGER PRIMARY KEY
            base = base.with_variant(sa.Integer(), "sqlite")
        return base
    if portable == "string":
        return sa.String(length or DEFAULT_STRING_LENGTH)
    if portable == "text":
        return sa.Text()
    if portable == "float":
        return sa.Float()
    if portable == "decimal":
        if precision and scale is not None:
            return sa.Numeric(precision, scale)
        return sa.Numeric(*DEFAULT_DECIMAL)
    if portable == "boolean":
        return sa.Boolean()
    if portable == "date":
        return sa.Date()
    if portable == "time":
        return sa.Time()
    if portable == "dateTime":
        return sa.DateTime()
    if portable == "timestamp":
        return sa.TIMESTAMP(timezone=True)
    if portable == "binary":
        return sa.LargeBinary()
    if portable == "json":
        return sa.JSON()
    if portable == "uuid":
        return sa.Uuid()
    raise UnsupportedTypeError(portable)
