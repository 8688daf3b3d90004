from __future__ import annotations

from dataclasses import replace

from conftest import audit_log_table, col, pk
from diff import StructureKind, compare_columns, compare_indexes, compare_structure
from schema.metadata import IndexColumn, IndexDescriptor


def _with_columns(table, columns):
    return replace(table, columns=tuple(columns))


def test_identical_tables():
    assert compare_structure(audit_log_table(), audit_log_table("Other")) == []


def test_column_names_case_insensitive():
    left = audit_log_table()
    right = _with_columns(left, [replace(c, name=c.name.upper()) for c in left.columns])
    assert compare_columns(left, right) == []


def test_missing_and_extra_columns():
    left = audit_log_table()
    right = _with_columns(left, list(left.columns[:3]) + [col("Added")])
    kinds = {(d.kind, d.name) for d in compare_columns(left, right)}
    assert kinds == {
        (StructureKind.MISSING_COLUMN, "PayloadLength"),
        (StructureKind.EXTRA_COLUMN, "Added"),
    }


def test_type_and_nullability_changes_reported_together():
    left = audit_log_table()
    payload = replace(left.columns[2], data_type="NVARCHAR(100)", is_nullable=False)
    right = _with_columns(left, [left.columns[0], left.columns[1], payload, left.columns[3]])
    [diff] = compare_columns(left, right)
    assert diff.kind is StructureKind.COLUMN_MISMATCH
    assert "type NVARCHAR(200) != NVARCHAR(100)" in diff.detail
    assert "nullable" in diff.detail


def test_computed_formula_whitespace_and_case_ignored():
    left = audit_log_table()
    computed = replace(left.columns[3], computed_definition="\n  (LEN([Payload]))  ")
    right = _with_columns(left, list(left.columns[:3]) + [computed])
    assert compare_columns(left, right) == []


def test_persisted_flag_and_formula_changes():
    left = audit_log_table()
    changed = replace(left.columns[3], is_persisted=False, computed_definition="(datalength([Payload]))")
    right = _with_columns(left, list(left.columns[:3]) + [changed])
    [diff] = compare_columns(left, right)
    assert "persisted" in diff.detail
    assert "formula" in diff.detail


def test_index_differences():
    left = replace(
        audit_log_table(),
        indexes=(
            pk("PK_AuditLog", "Id"),
            IndexDescriptor(
                name="IX_CreatedAt",
                is_unique=False,
                columns=(IndexColumn("CreatedAt"), IndexColumn("Payload", is_included=True)),
            ),
        ),
    )
    right = replace(
        left,
        indexes=(
            pk("PK_AuditLog", "Id"),
            IndexDescriptor(
                name="IX_CreatedAt",
                is_unique=False,
                columns=(IndexColumn("CreatedAt", is_descending=True),),
            ),
            IndexDescriptor(name="IX_Extra", is_unique=False, columns=(IndexColumn("Id"),)),
        ),
    )
    kinds = [(d.kind, d.name) for d in compare_indexes(left, right)]
    assert kinds == [
        (StructureKind.INDEX_MISMATCH, "IX_CreatedAt"),
        (StructureKind.EXTRA_INDEX, "IX_Extra"),
    ]


def test_indexes_can_be_skipped():
    left = audit_log_table()
    right = replace(left, indexes=())
    assert compare_structure(left, right, include_indexes=False) == []
    [diff] = compare_structure(left, right)
    assert diff.kind is StructureKind.MISSING_INDEX
