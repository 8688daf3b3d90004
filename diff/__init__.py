"""Table comparison: row-by-row on a primary key, and column/index structure.

Usage:
    from diff import compare, summarize, write_diff_report

    entries = compare(left_rows, right_rows, primary_key="OrderId")
    print(summarize(entries))
"""

# --- Models ---
from diff.models import (
    ColumnDifference,
    DiffEntry,
    MissingRow,
    RowRecord,
    Side,
    StructureDifference,
    StructureKind,
    ValueMismatch,
)

# --- Row comparison ---
from diff.engine import NULL, compare, compare_symmetric, normalize_value
from diff.frames import compare_frames

# --- Structure comparison ---
from diff.structure import compare_columns, compare_indexes, compare_structure

# --- Reporting ---
from diff.report import DiffSummary, summarize, write_diff_report

__all__ = [
    # Models
    "ColumnDifference",
    "DiffEntry",
    "MissingRow",
    "RowRecord",
    "Side",
    "StructureDifference",
    "StructureKind",
    "ValueMismatch",
    # Rows
    "NULL",
    "compare",
    "compare_symmetric",
    "normalize_value",
    "compare_frames",
    # Structure
    "compare_columns",
    "compare_indexes",
    "compare_structure",
    # Reporting
    "DiffSummary",
    "summarize",
    "write_diff_report",
]
