"""
utils
=====

Small, shared utilities used across the codebase.

This module intentionally contains only low-level helpers that are safe to
import from anywhere (no database access, no heavy imports).

Functions
---------
- :func:`safe_name`:
  Convert an arbitrary identifier (table name, dump name, etc.) into a
  filesystem-safe filename component.
- :func:`full_type`:
  Render a native column type with its length/precision suffix.
- :func:`clean_default`:
  Strip the quoting/parenthesis drivers wrap around column defaults.
- :func:`string_date` / :func:`timestamp_sequence`:
  Sortable 14-digit timestamps used to name migration scripts.
"""

from __future__ import annotations

import datetime as dt
import os
import re
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

DUMP_DATE_ENV = "SQLDELTA_DUMP_DATE"


def safe_name(value: str) -> str:
    """Return *value* usable as a file name inside a dump.

    Runs of characters outside ``[A-Za-z0-9._-]`` become one underscore.

    >>> safe_name("order lines$2025")
    'order_lines_2025'
    >>> safe_name("")
    'unnamed'
    """
    out = re.sub(r"[^A-Za-z0-9._-]+", "_", value).strip("_")
    return out or "unnamed"


def slugify(value: str) -> str:
    """Return a lowercase snake_case slug usable as an SQL identifier.

    >>> slugify("dump-Prod DB.2020")
    'dump_prod_db_2020'
    """
    out = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", value)
    out = re.sub(r"[^A-Za-z0-9]+", "_", out).strip("_").lower()
    return out or "unnamed"


def write_text(path: Path, content: str) -> None:
    """Write UTF-8 text to *path* with normalized newlines."""
    path.parent.mkdir(parents=True, exist_ok=True)
    content = content.replace("\r\n", "\n").replace("\r", "\n")
    path.write_text(content, encoding="utf-8")


def deep_get(d: Dict[str, Any], keys: List[str], default: Any = None) -> Any:
    """Safely get nested dict value with default."""
    cur: Any = d
    for k in keys:
        if not isinstance(cur, dict) or k not in cur:
            return default
        cur = cur[k]
    return cur


def is_numeric(value: Any) -> bool:
    """Return True for numbers and strings holding a finite number."""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    if not isinstance(value, str) or not value.strip():
        return False
    try:
        number = float(value)
    except ValueError:
        return False
    return number not in (float("inf"), float("-inf")) and number == number


def to_number(value: str) -> Any:
    """Convert a numeric string to ``int`` when integral, else ``float``."""
    try:
        return int(value)
    except ValueError:
        return float(value)


def full_type(
    type_name: str,
    unsigned: bool = False,
    precision: Optional[int] = None,
    scale: Optional[int] = None,
    max_length: Optional[int] = None,
) -> str:
    """Render *type_name* with its unsigned flag and size suffix.

    >>> full_type("decimal", precision=8, scale=2)
    'decimal(8,2)'
    >>> full_type("varchar", max_length=255)
    'varchar(255)'
    """
    out = type_name
    if unsigned:
        out += " unsigned"
    if precision and scale:
        out += f"({precision},{scale})"
    if max_length:
        out += f"({max_length})"
    return out


def clean_default(value: Any) -> Any:
    """Return the logical default from a driver-reported column default.

    Depending on the engine, defaults come back wrapped by quotes and/or
    parenthesis: integer ``0`` as ``"('0')"``, string ``str`` as ``"'str'"``
    or ``"'str'::text"`` (PostgreSQL). One layer of each is removed.
    """
    if not isinstance(value, str) or is_numeric(value):
        return value
    value = re.sub(r"^\((.*?)\)$", r"\1", value)
    value = re.sub(r"^\((.*?)\)$", r"\1", value)
    value = re.sub(r"^'(.*?)'::[\w ]+$", r"\1", value)
    value = re.sub(r"^'(.*?)'$", r"\1", value)
    value = re.sub(r'^"(.*?)"$', r"\1", value)
    return value


def parse_datetime(value: str) -> Optional[dt.datetime]:
    """Parse an ISO or ``YYYY-MM-DD HH:MM:SS`` string; ``Z`` means UTC.

    Returns None when *value* is not a datetime.
    """
    try:
        return dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def string_date(date: Optional[dt.datetime] = None) -> str:
    """Return *date* as a sortable ``YYYYMMDDHHMMSS`` string.

    When *date* is omitted the current time is used, unless the
    ``SQLDELTA_DUMP_DATE`` environment variable pins it (ISO format).
    """
    if date is None:
        pinned = os.environ.get(DUMP_DATE_ENV)
        date = dt.datetime.fromisoformat(pinned) if pinned else dt.datetime.now()
    return date.strftime("%Y%m%d%H%M%S")


def timestamp_sequence(start: Optional[dt.datetime] = None) -> Iterator[str]:
    """Yield strictly increasing 14-digit timestamps, one second apart."""
    if start is None:
        start = dt.datetime.strptime(string_date(), "%Y%m%d%H%M%S")
    current = start
    while True:
        yield string_date(current)
        current += dt.timedelta(seconds=1)


def pretty_bytes(size: Optional[int]) -> Optional[str]:
    """Return *size* as a human readable string using decimal units.

    >>> pretty_bytes(48000)
    '48 kB'
    """
    if size is None:
        return None
    number = float(size)
    for unit in ("B", "kB", "MB", "GB", "TB"):
        if abs(number) < 1000 or unit == "TB":
            break
        number /= 1000
    text = f"{number:.3g}" if unit != "B" else str(int(number))
    return f"{text} {unit}"
