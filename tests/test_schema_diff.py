"""Unit tests for schema_diff module."""

from typing import Dict, Optional

from sqldelta.models import ColumnDescriptor, DiffStatus, ForeignKey, IndexDescriptor, TableDescriptor
from sqldelta.schema_diff import (
    build_summary,
    compare_columns,
    compare_indexes,
    compare_table,
    compare_tables,
    index_key_function,
    key_by_hash,
    key_by_name,
)


def columns(*cols: ColumnDescriptor) -> Dict[str, ColumnDescriptor]:
    return {c.name: c for c in cols}


ID = ColumnDescriptor("id", "integer", nullable=False)
NAME_40 = ColumnDescriptor("name", "varchar", nullable=False, max_length=40)
NAME_80 = ColumnDescriptor("name", "varchar", nullable=False, max_length=80)
PHONE = ColumnDescriptor("phone", "varchar", max_length=20)


def table(name: str, *cols: ColumnDescriptor, indexes=(), rows: int = 0, size: Optional[int] = None) -> TableDescriptor:
    return TableDescriptor(name=name, row_count=rows, byte_size=size, columns=columns(*cols), indexes=tuple(indexes))


class TestBuildSummary:
    """Tests for build_summary function."""

    def test_empty(self) -> None:
        """Test an empty diff summarizes as none."""
        assert build_summary([]) == "none"


class TestCompareColumns:
    """Tests for compare_columns function."""

    def test_created_changed_and_hidden_similar(self) -> None:
        """Test classification and summary order."""
        result = compare_columns(columns(ID, NAME_40), columns(ID, NAME_80, PHONE))
        assert [(e.key, e.status) for e in result.entries] == [
            ("name", DiffStatus.CHANGED),
            ("phone", DiffStatus.CREATED),
        ]
        assert result.entries[0].changed_fields == frozenset({"type"})
        assert result.summary == "1x created, 1x changed, 1x similar (hidden)"

    def test_show_similar_keeps_everything(self) -> None:
        """Test similar entries are kept and not marked hidden."""
        result = compare_columns(columns(ID, NAME_40), columns(ID, NAME_40), show_similar=True)
        assert [e.key for e in result.entries] == ["id", "name"]
        assert result.summary == "2x similar"

    def test_default_is_not_compared(self) -> None:
        """Test a default change alone keeps the column similar."""
        before = ColumnDescriptor("status", "varchar", default="new", max_length=10)
        after = ColumnDescriptor("status", "varchar", default="open", max_length=10)
        result = compare_columns(columns(before), columns(after))
        assert result.entries == []
        assert result.summary == "1x similar (hidden)"

    def test_nullable_change(self) -> None:
        """Test nullable is part of the signature."""
        after = ColumnDescriptor("name", "varchar", nullable=True, max_length=40)
        result = compare_columns(columns(NAME_40), columns(after))
        assert result.entries[0].changed_fields == frozenset({"nullable"})

    def test_symmetry(self) -> None:
        """Test swapping sides swaps created and deleted."""
        forward = compare_columns(columns(ID), columns(ID, PHONE))
        backward = compare_columns(columns(ID, PHONE), columns(ID))
        assert forward.entries[0].status is DiffStatus.CREATED
        assert backward.entries[0].status is DiffStatus.DELETED
        assert backward.summary == "1x deleted, 1x similar (hidden)"

    def test_self_diff_is_all_similar(self) -> None:
        """Test a column map compared with itself."""
        cols = columns(ID, NAME_40, PHONE)
        result = compare_columns(cols, cols)
        assert result.entries == []
        assert result.summary == "3x similar (hidden)"


class TestIndexAlignment:
    """Tests for the name/hash index alignment."""

    def test_renamed_index_aligned_by_hash(self) -> None:
        """Test autogenerated names do not look like drop + create."""
        before = [IndexDescriptor("idx_7f3a", columns=("email",))]
        after = [IndexDescriptor("idx_91bc", columns=("email",))]
        assert index_key_function(before, after) is key_by_hash

        result = compare_indexes(before, after)
        assert len(result.entries) == 1
        entry = result.entries[0]
        assert entry.status is DiffStatus.CHANGED
        assert entry.changed_fields == frozenset({"name"})
        assert entry.key == "idx_91bc"

    def test_changed_columns_aligned_by_name(self) -> None:
        """Test a stable name with new columns is one changed index."""
        before = [IndexDescriptor("ix_orders", columns=("customer_id",))]
        after = [IndexDescriptor("ix_orders", columns=("customer_id", "placed_on"))]
        assert index_key_function(before, after) is key_by_name

        result = compare_indexes(before, after)
        assert [(e.key, e.status) for e in result.entries] == [("ix_orders", DiffStatus.CHANGED)]
        assert result.entries[0].changed_fields == frozenset({"columns"})

    def test_tie_goes_to_hash(self) -> None:
        """Test equal key counts pick the hash alignment."""
        before = [IndexDescriptor("a", columns=("x",))]
        after = [IndexDescriptor("b", columns=("y",))]
        assert index_key_function(before, after) is key_by_hash
        result = compare_indexes(before, after)
        assert result.summary == "1x deleted, 1x created"

    def test_duplicate_hash_last_wins(self) -> None:
        """Test two identical indexes on one side collapse to the last one."""
        before = [IndexDescriptor("ix_one", columns=("x",)), IndexDescriptor("ix_two", columns=("x",))]
        after = [IndexDescriptor("ix_two", columns=("x",))]
        result = compare_indexes(before, after)
        assert result.entries == []
        assert result.summary == "1x similar (hidden)"

    def test_column_order_matters(self) -> None:
        """Test (a, b) and (b, a) are different indexes."""
        before = [IndexDescriptor("ix", columns=("a", "b"))]
        after = [IndexDescriptor("ix", columns=("b", "a"))]
        result = compare_indexes(before, after)
        assert result.entries[0].status is DiffStatus.CHANGED


class TestCompareTables:
    """Tests for compare_table and compare_tables functions."""

    def test_created_table_has_nested_diffs(self) -> None:
        """Test a created table still shows all its columns and indexes."""
        after = table("audit", ID, PHONE, indexes=[IndexDescriptor("ix_phone", columns=("phone",))])
        entry = compare_table(None, after, "audit")
        assert entry.status is DiffStatus.CREATED
        assert entry.nested["columns"].summary == "2x created"
        assert [e.status for e in entry.nested["columns"].entries] == [DiffStatus.CREATED, DiffStatus.CREATED]
        assert entry.nested["indexes"].summary == "1x created"

    def test_nested_diffs_keep_similar(self) -> None:
        """Test nested diffs are never filtered."""
        entry = compare_table(table("t", ID, NAME_40), table("t", ID, NAME_80), "t")
        assert entry.status is DiffStatus.CHANGED
        assert entry.changed_fields == frozenset({"columns"})
        assert [e.key for e in entry.nested["columns"].entries] == ["id", "name"]

    def test_row_count_change(self) -> None:
        """Test row counts alone make a table changed."""
        entry = compare_table(table("t", ID, rows=1), table("t", ID, rows=2), "t")
        assert entry.status is DiffStatus.CHANGED
        assert entry.changed_fields == frozenset({"row_count"})

    def test_byte_size_change(self) -> None:
        """Test byte size alone makes a table changed."""
        entry = compare_table(table("t", ID, rows=3, size=8192), table("t", ID, rows=3, size=16384), "t")
        assert entry.status is DiffStatus.CHANGED
        assert entry.changed_fields == frozenset({"byte_size"})

    def test_equal_byte_size_is_similar(self) -> None:
        """Test equal counts and sizes leave a table similar."""
        entry = compare_table(table("t", ID, rows=3, size=8192), table("t", ID, rows=3, size=8192), "t")
        assert entry.status is DiffStatus.SIMILAR
        assert entry.changed_fields == frozenset()

    def test_similar_filtered_between_created_and_deleted(self) -> None:
        """Test only similar tables are hidden, created and deleted ones stay."""
        before = {"a": table("a", ID), "b": table("b", ID, size=10), "c": table("c", ID)}
        after = {"b": table("b", ID, size=10), "c": table("c", ID), "d": table("d", ID)}

        hidden = compare_tables(before, after)
        assert [(e.key, e.status) for e in hidden.entries] == [("a", DiffStatus.DELETED), ("d", DiffStatus.CREATED)]
        assert hidden.summary == "1x deleted, 1x created, 2x similar (hidden)"

        shown = compare_tables(before, after, show_similar=True)
        assert [e.key for e in shown.entries] == ["a", "b", "c", "d"]
        assert shown.summary == "1x deleted, 1x created, 2x similar"

    def test_schema_diff(self) -> None:
        """Test a whole schema, union in first-seen order."""
        fk = ColumnDescriptor("customer_id", "integer", foreign_key=ForeignKey("customers", "id"))
        before = {
            "customers": table("customers", ID, NAME_40),
            "legacy": table("legacy", ID),
            "orders": table("orders", ID, fk),
        }
        after = {
            "audit": table("audit", ID),
            "customers": table("customers", ID, NAME_80),
            "orders": table("orders", ID, fk),
        }
        result = compare_tables(before, after)
        assert [(e.key, e.status) for e in result.entries] == [
            ("customers", DiffStatus.CHANGED),
            ("legacy", DiffStatus.DELETED),
            ("audit", DiffStatus.CREATED),
        ]
        assert result.summary == "1x deleted, 1x created, 1x changed, 1x similar (hidden)"

    def test_self_diff(self) -> None:
        """Test a schema compared with itself is all similar."""
        schema = {"customers": table("customers", ID, NAME_40, indexes=[IndexDescriptor("ix", columns=("name",))])}
        result = compare_tables(schema, schema, show_similar=True)
        assert [e.status for e in result.entries] == [DiffStatus.SIMILAR]
