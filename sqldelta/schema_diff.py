"""
schema_diff
===========

Reconcile two sets of column, index or table descriptors into a classified
diff.

Every comparison walks the union of keys of both sides in first-seen order
and classifies each key:

- ``created``: only on the "after" side
- ``deleted``: only on the "before" side
- ``changed``: on both sides, with at least one compared field different
- ``similar``: on both sides, identical

Primary API
-----------
- :func:`compare_columns`
- :func:`compare_indexes`
- :func:`compare_tables`

Each returns a :class:`~sqldelta.models.DiffResult` ``(entries, summary)``.
``similar`` entries are left out of ``entries`` unless ``show_similar``, but
are always counted in ``summary``.
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence

from .models import (
    ColumnDescriptor,
    DiffEntry,
    DiffResult,
    DiffStatus,
    IndexDescriptor,
    TableDescriptor,
)

SUMMARY_ORDER = (DiffStatus.DELETED, DiffStatus.CREATED, DiffStatus.CHANGED, DiffStatus.SIMILAR)

KeyFunc = Callable[[IndexDescriptor], str]


def build_summary(entries: Sequence[DiffEntry], show_similar: bool = False) -> str:
    """Return the count of entries per status, e.g. ``"1x deleted, 2x similar"``.

    Parameters
    ----------
    entries:
        All entries of a diff, before any ``similar`` filtering.
    show_similar:
        When False, the ``similar`` count is suffixed with ``(hidden)``.
    """
    if not entries:
        return "none"
    counts = Counter(entry.status for entry in entries)
    parts: List[str] = []
    for status in SUMMARY_ORDER:
        num = counts.get(status, 0)
        if not num:
            continue
        text = f"{num}x {status.value}"
        if status is DiffStatus.SIMILAR and not show_similar:
            text += " (hidden)"
        parts.append(text)
    return ", ".join(parts)


def union_keys(*keys: Iterable[str]) -> List[str]:
    """Return the union of *keys* in first-seen order."""
    return list(dict.fromkeys(k for group in keys for k in group))


def _classify(before: Any, after: Any, changed: FrozenSet[str]) -> DiffStatus:
    if after is None:
        return DiffStatus.DELETED
    if before is None:
        return DiffStatus.CREATED
    return DiffStatus.CHANGED if changed else DiffStatus.SIMILAR


def _result(entries: List[DiffEntry], show_similar: bool) -> DiffResult:
    summary = build_summary(entries, show_similar)
    if not show_similar:
        entries = [e for e in entries if e.status is not DiffStatus.SIMILAR]
    return DiffResult(entries, summary)


def column_changes(before: ColumnDescriptor, after: ColumnDescriptor) -> FrozenSet[str]:
    """Return the names of the signature fields that differ."""
    changed = set()
    if before.full_type != after.full_type:
        changed.add("type")
    if before.nullable != after.nullable:
        changed.add("nullable")
    return frozenset(changed)


def compare_columns(
    before: Mapping[str, ColumnDescriptor],
    after: Mapping[str, ColumnDescriptor],
    show_similar: bool = False,
) -> DiffResult:
    """Diff two ``name -> ColumnDescriptor`` maps by type signature."""
    entries: List[DiffEntry] = []
    for key in union_keys(before, after):
        col_before = before.get(key)
        col_after = after.get(key)
        changed: FrozenSet[str] = frozenset()
        if col_before is not None and col_after is not None:
            changed = column_changes(col_before, col_after)
        entries.append(
            DiffEntry(
                key=key,
                status=_classify(col_before, col_after, changed),
                before=col_before,
                after=col_after,
                changed_fields=changed,
            )
        )
    return _result(entries, show_similar)


def key_by_name(index: IndexDescriptor) -> str:
    return index.name


def key_by_hash(index: IndexDescriptor) -> str:
    return index.content_hash


def _count_merged(before: Sequence[IndexDescriptor], after: Sequence[IndexDescriptor], key: KeyFunc) -> int:
    return len({key(i) for i in before} | {key(i) for i in after})


def index_key_function(before: Sequence[IndexDescriptor], after: Sequence[IndexDescriptor]) -> KeyFunc:
    """Pick how to align two index lists: by name or by content hash.

    Indexes autogenerated by some tools get different random names each
    time, and would show up as one deleted plus one created index if keyed
    by name. Both alignments are tried and the one needing fewer distinct
    keys (so more matches between both sides) wins; ties go to the hash.

    This is a heuristic: a renamed index that also changed its columns
    cannot be told apart from a genuine drop and create.
    """
    by_hash = _count_merged(before, after, key_by_hash)
    by_name = _count_merged(before, after, key_by_name)
    return key_by_hash if by_hash <= by_name else key_by_name


def index_changes(before: IndexDescriptor, after: IndexDescriptor) -> FrozenSet[str]:
    changed = set()
    for name in ("name", "unique", "algorithm", "columns"):
        if getattr(before, name) != getattr(after, name):
            changed.add(name)
    return frozenset(changed)


def compare_indexes(
    before: Sequence[IndexDescriptor],
    after: Sequence[IndexDescriptor],
    show_similar: bool = False,
    key: Optional[KeyFunc] = None,
) -> DiffResult:
    """Diff two index lists, aligned by :func:`index_key_function`.

    An index is ``changed`` when its content hash differs, or when the hash
    alignment matched two indexes under different names.
    """
    key = key or index_key_function(before, after)
    # Last index wins when a side has two with the same key.
    before_by_key: Dict[str, IndexDescriptor] = {key(i): i for i in before}
    after_by_key: Dict[str, IndexDescriptor] = {key(i): i for i in after}

    entries: List[DiffEntry] = []
    for k in union_keys(before_by_key, after_by_key):
        ind_before = before_by_key.get(k)
        ind_after = after_by_key.get(k)
        changed: FrozenSet[str] = frozenset()
        if ind_before is not None and ind_after is not None:
            changed = index_changes(ind_before, ind_after)
        entries.append(
            DiffEntry(
                key=(ind_after or ind_before).name,
                status=_classify(ind_before, ind_after, changed),
                before=ind_before,
                after=ind_after,
                changed_fields=changed,
            )
        )
    return _result(entries, show_similar)


def compare_table(before: Optional[TableDescriptor], after: Optional[TableDescriptor], name: str) -> DiffEntry:
    """Diff one table, including its nested column and index diffs.

    Nested diffs are computed with ``show_similar=True`` even for created or
    deleted tables, so their full shape is visible.
    """
    columns = compare_columns(
        before.columns if before else {},
        after.columns if after else {},
        show_similar=True,
    )
    indexes = compare_indexes(
        before.indexes if before else (),
        after.indexes if after else (),
        show_similar=True,
    )

    changed: FrozenSet[str] = frozenset()
    if before is not None and after is not None:
        fields = set()
        if any(e.status is not DiffStatus.SIMILAR for e in columns.entries):
            fields.add("columns")
        if any(e.status is not DiffStatus.SIMILAR for e in indexes.entries):
            fields.add("indexes")
        if before.row_count != after.row_count:
            fields.add("row_count")
        if before.byte_size != after.byte_size:
            fields.add("byte_size")
        changed = frozenset(fields)

    return DiffEntry(
        key=name,
        status=_classify(before, after, changed),
        before=before,
        after=after,
        changed_fields=changed,
        nested={"columns": columns, "indexes": indexes},
    )


def compare_tables(
    before: Mapping[str, TableDescriptor],
    after: Mapping[str, TableDescriptor],
    show_similar: bool = False,
) -> DiffResult:
    """Diff two ``name -> TableDescriptor`` schemas.

    A table present on both sides is ``similar`` only when none of its
    columns or indexes changed and its row count and byte size are equal.
    """
    entries = [compare_table(before.get(k), after.get(k), k) for k in union_keys(before, after)]
    return _result(entries, show_similar)
