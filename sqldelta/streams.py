"""
streams
=======

Row streams: merge-join diffing and backpressured pipelines.

A row stream is any iterator of ``dict`` rows. Streams are pulled lazily, so
a stage only runs when the stage after it asks for the next item; a slow
writer stalls the reader upstream, and no stage holds more than its own
working set (one row per side for the differ, one chunk for
:func:`chunked`).

Primary API
-----------
- :func:`merge_join` / :func:`diff_streams`
- :func:`chunked`, :func:`param_limited_chunk_size`
- :func:`run_pipeline`
"""

from __future__ import annotations

import datetime as dt
import json
import tarfile
from collections import Counter
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

import yaml

from .errors import SqlDeltaError, StreamFailure
from .models import DiffResult, DiffStatus, Row
from .schema_diff import SUMMARY_ORDER

EMPTY = "[null]"
ARROW = "→"
DEFAULT_CHUNK_SIZE = 500

Pair = Tuple[Optional[Row], Optional[Row]]
Stage = Callable[[Iterator[Any]], Iterator[Any]]


def key_order(value: Any) -> Tuple[int, Any]:
    """Return the sort key *value* is merged by.

    Keys are numeric: numbers and numeric strings compare by value, so ``1``
    from one engine matches ``"1"`` from another. NULL sorts first; other
    strings sort after numbers, then anything else (dates, UUIDs).
    """
    if value is None:
        return (0, 0)
    if isinstance(value, (bool, int, float, Decimal)):
        return (1, value)
    if isinstance(value, str):
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            return (2, value)
        return (1, number) if number.is_finite() else (2, value)
    return (3, value)


def _key_less(a: Row, b: Row, id_key: str) -> bool:
    try:
        return key_order(a[id_key]) < key_order(b[id_key])
    except TypeError as exc:
        raise SqlDeltaError(f"Cannot order {id_key} values {a[id_key]!r} and {b[id_key]!r}") from exc


def merge_join(stream_a: Iterable[Row], stream_b: Iterable[Row], id_key: str = "id") -> Iterator[Pair]:
    """Pair rows of two streams sorted ascending by *id_key*.

    An exhausted stream counts as ``+inf``, so the side with the smaller (or
    only remaining) key is always the one advanced. Rows with equal keys
    (see :func:`key_order`) are paired; rows without a partner come out as
    ``(row, None)`` or ``(None, row)``. Keys that cannot be ordered against
    each other raise :class:`SqlDeltaError`.
    """
    iter_a = iter(stream_a)
    iter_b = iter(stream_b)
    a = next(iter_a, None)
    b = next(iter_b, None)

    while a is not None or b is not None:
        if b is None or (a is not None and _key_less(a, b, id_key)):
            yield a, None
            a = next(iter_a, None)
        elif a is None or _key_less(b, a, id_key):
            yield None, b
            b = next(iter_b, None)
        else:
            yield a, b
            a = next(iter_a, None)
            b = next(iter_b, None)


def normalize_value(value: Any) -> Any:
    """Return *value* in the form row values are compared in."""
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return value


def display_value(value: Any) -> Any:
    value = normalize_value(value)
    if value is None:
        return EMPTY
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


def value_or_diff(before: Any, after: Any) -> str:
    before = display_value(before)
    after = display_value(after)
    if before == after:
        return before
    return f"{before} {ARROW} {after}"


def _changed_fields(a: Row, b: Row, id_key: Optional[str] = None) -> List[str]:
    changed = []
    for key in dict.fromkeys([*a, *b]):
        if key != id_key and normalize_value(a.get(key)) != normalize_value(b.get(key)):
            changed.append(key)
    return changed


def pair_status(a: Optional[Row], b: Optional[Row], id_key: Optional[str] = None) -> DiffStatus:
    if b is None:
        return DiffStatus.DELETED
    if a is None:
        return DiffStatus.CREATED
    return DiffStatus.CHANGED if _changed_fields(a, b, id_key) else DiffStatus.SIMILAR


def _format_pair(a: Optional[Row], b: Optional[Row], id_key: Optional[str] = None) -> Row:
    out: Row = {}
    for key in dict.fromkeys([*(a or {}), *(b or {})]):
        if a is not None and b is not None and key != id_key:
            out[key] = value_or_diff(a.get(key), b.get(key))
        else:
            out[key] = display_value((a if a is not None else b).get(key))
    return out


def diff_streams(
    stream_a: Iterable[Row],
    stream_b: Iterable[Row],
    id_key: str = "id",
    all_rows: bool = False,
    all_columns: bool = False,
) -> DiffResult:
    """Diff two row streams pre-sorted ascending by *id_key*.

    The streams are not sorted here; the caller orders them (an
    ``ORDER BY`` on the catalog query).

    Parameters
    ----------
    stream_a, stream_b:
        "before" and "after" row streams.
    id_key:
        Field both streams are sorted and matched by.
    all_rows:
        Keep rows without changes.
    all_columns:
        Keep fields that did not change in any row. When False the kept
        column set is global across the result (the key column plus every
        field changed in at least one matched pair), so all rows have the
        same columns.

    Returns
    -------
    DiffResult
        ``entries`` are the formatted rows in key order: a changed field is
        rendered ``before → after``, anything else as its single value.
        ``summary`` counts rows per status.
    """
    kept: List[Pair] = []
    counts: Counter = Counter()
    keys_with_changes: Dict[str, bool] = {}

    for a, b in merge_join(stream_a, stream_b, id_key):
        status = pair_status(a, b, id_key)
        counts[status] += 1
        if status is DiffStatus.CHANGED:
            for key in _changed_fields(a, b, id_key):
                keys_with_changes[key] = True
        if all_rows or status is not DiffStatus.SIMILAR:
            kept.append((a, b))

    rows = []
    for a, b in kept:
        row = _format_pair(a, b, id_key)
        if not all_columns:
            row = {k: v for k, v in row.items() if k == id_key or k in keys_with_changes}
        rows.append(row)

    return DiffResult(rows, _rows_summary(counts, all_rows))


def _rows_summary(counts: Counter, all_rows: bool) -> str:
    if not counts:
        return "none"
    parts = []
    for status in SUMMARY_ORDER:
        num = counts.get(status, 0)
        if not num:
            continue
        text = f"{num}x {status.value}"
        if status is DiffStatus.SIMILAR and not all_rows:
            text += " (hidden)"
        parts.append(text)
    return ", ".join(parts)


def chunked(items: Iterable[Any], size: int = DEFAULT_CHUNK_SIZE) -> Iterator[List[Any]]:
    """Group *items* into lists of at most *size* elements."""
    if size < 1:
        raise ValueError(f"chunk size must be positive, got {size}")
    chunk: List[Any] = []
    for item in items:
        chunk.append(item)
        if len(chunk) >= size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


def param_limited_chunk_size(param_limit: int, column_count: int) -> int:
    """Rows per insert statement so a full chunk stays under *param_limit*.

    >>> param_limited_chunk_size(999, 10)
    99
    """
    if column_count < 1:
        return param_limit
    return max(1, param_limit // column_count)


def run_pipeline(source: Iterable[Any], *stages: Stage) -> int:
    """Pull *source* through *stages* until exhausted; return items consumed.

    Each stage takes an iterator and returns one. The last stage is
    normally a sink yielding one item per write. I/O and decode failures
    from any stage abort the whole pipeline as :class:`StreamFailure`.
    """
    stream: Iterator[Any] = iter(source)
    for stage in stages:
        stream = stage(stream)
    count = 0
    try:
        for _ in stream:
            count += 1
    except (OSError, tarfile.TarError, json.JSONDecodeError, yaml.YAMLError) as exc:
        raise StreamFailure(f"Pipeline failed: {exc}") from exc
    return count
