"""
errors
======

Exceptions raised by the diff and dump core.

Every command invocation surfaces at most one of these to the CLI, which
prints it and exits non-zero. Nothing is retried automatically.
"""

from __future__ import annotations

from typing import Optional


class SqlDeltaError(Exception):
    """Base class for all errors reported to the user."""


class NotFoundError(SqlDeltaError):
    """A table, archive or dump directory does not exist."""


class UnsupportedTypeError(SqlDeltaError):
    """A native column type cannot be mapped.

    Parameters
    ----------
    type_name:
        The offending native (or portable) type name.
    table:
        Table owning the column, when known.
    hint:
        Optional extra guidance appended to the message.
    """

    def __init__(self, type_name: str, table: Optional[str] = None, hint: str = "") -> None:
        self.type_name = type_name
        self.table = table
        where = f" in table '{table}'" if table else ""
        message = f"Unknown column type '{type_name}'{where}"
        if hint:
            message += f". {hint}"
        super().__init__(message)


class StreamFailure(SqlDeltaError):
    """An I/O error on a read, transform or write stage of a pipeline."""
