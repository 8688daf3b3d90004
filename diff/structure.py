"""Column-by-column (and index) structure comparison of two tables."""

from __future__ import annotations

import logging

from diff.models import StructureDifference, StructureKind
from schema.metadata import ColumnDescriptor, IndexDescriptor, TableDescriptor

logger = logging.getLogger(__name__)


def _norm_sql(text: str | None) -> str | None:
    if text is None:
        return None
    return " ".join(text.split()).lower()


def _column_changes(left: ColumnDescriptor, right: ColumnDescriptor) -> list[str]:
    changes = []
    if left.data_type.upper() != right.data_type.upper():
        changes.append(f"type {left.data_type} != {right.data_type}")
    if left.is_nullable != right.is_nullable:
        changes.append(f"nullable {left.is_nullable} != {right.is_nullable}")
    if left.is_identity != right.is_identity:
        changes.append(f"identity {left.is_identity} != {right.is_identity}")
    if left.is_computed != right.is_computed:
        changes.append(f"computed {left.is_computed} != {right.is_computed}")
    elif left.is_computed:
        if left.is_persisted != right.is_persisted:
            changes.append(f"persisted {left.is_persisted} != {right.is_persisted}")
        if _norm_sql(left.computed_definition) != _norm_sql(right.computed_definition):
            changes.append(
                f"formula {left.computed_definition} != {right.computed_definition}"
            )
    return changes


def _index_signature(index: IndexDescriptor) -> tuple:
    return (
        index.is_unique,
        index.type_desc,
        tuple((c.name.lower(), c.is_descending) for c in index.key_columns),
        frozenset(c.name.lower() for c in index.included_columns),
        _norm_sql(index.filter_definition),
    )


def compare_columns(left: TableDescriptor, right: TableDescriptor) -> list[StructureDifference]:
    right_cols = {c.name.lower(): c for c in right.columns}
    left_names = {c.name.lower() for c in left.columns}
    diffs = []

    for col in left.columns:
        other = right_cols.get(col.name.lower())
        if other is None:
            diffs.append(StructureDifference(StructureKind.MISSING_COLUMN, col.name))
            continue
        changes = _column_changes(col, other)
        if changes:
            diffs.append(StructureDifference(
                StructureKind.COLUMN_MISMATCH, col.name, "; ".join(changes),
            ))

    for col in right.columns:
        if col.name.lower() not in left_names:
            diffs.append(StructureDifference(StructureKind.EXTRA_COLUMN, col.name))
    return diffs


def compare_indexes(left: TableDescriptor, right: TableDescriptor) -> list[StructureDifference]:
    right_idx = {i.name.lower(): i for i in right.indexes}
    left_names = {i.name.lower() for i in left.indexes}
    diffs = []

    for idx in left.indexes:
        other = right_idx.get(idx.name.lower())
        if other is None:
            diffs.append(StructureDifference(StructureKind.MISSING_INDEX, idx.name))
        elif _index_signature(idx) != _index_signature(other):
            diffs.append(StructureDifference(
                StructureKind.INDEX_MISMATCH, idx.name,
                "uniqueness, type, key order or included columns differ",
            ))

    for idx in right.indexes:
        if idx.name.lower() not in left_names:
            diffs.append(StructureDifference(StructureKind.EXTRA_INDEX, idx.name))
    return diffs


def compare_structure(
    left: TableDescriptor,
    right: TableDescriptor,
    include_indexes: bool = True,
) -> list[StructureDifference]:
    """Columns matched by name (case-insensitive), then indexes by name."""
    diffs = compare_columns(left, right)
    if include_indexes:
        diffs += compare_indexes(left, right)
    if diffs:
        logger.debug(
            "Structure %s vs %s: %d difference(s)",
            left.qualified_name, right.qualified_name, len(diffs),
        )
    return diffs
