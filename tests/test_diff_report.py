from __future__ import annotations

import polars as pl

from diff import ColumnDifference, MissingRow, Side, ValueMismatch, summarize, write_diff_report
from diff.report import REPORT_COLUMNS, report_rows

ENTRIES = [
    MissingRow(key=2, side=Side.RIGHT),
    ValueMismatch(
        key=1,
        differences=(ColumnDifference("a", "x", "y"), ColumnDifference("b", None, "0")),
    ),
    ValueMismatch(key=3, differences=(ColumnDifference("a", "p", "q"),)),
]


def test_summary_counts():
    summary = summarize(ENTRIES)
    assert summary.missing_rows == 1
    assert summary.mismatched_rows == 2
    assert summary.mismatched_columns == {"a": 2, "b": 1}
    assert not summary.is_clean
    assert summarize([]).is_clean


def test_one_report_row_per_differing_column():
    assert report_rows(ENTRIES) == [
        ("2", "missing", "right", None, None, None),
        ("1", "mismatch", None, "a", "x", "y"),
        ("1", "mismatch", None, "b", None, "0"),
        ("3", "mismatch", None, "a", "p", "q"),
    ]


def test_csv_written(tmp_path):
    path = write_diff_report(ENTRIES, tmp_path / "nested" / "orders_diff.csv")
    df = pl.read_csv(path, infer_schema_length=0)
    assert tuple(df.columns) == REPORT_COLUMNS
    assert len(df) == 4
    assert df["kind"].to_list() == ["missing", "mismatch", "mismatch", "mismatch"]


def test_empty_report_keeps_header(tmp_path):
    path = write_diff_report([], tmp_path / "clean.csv")
    assert path.read_text().strip() == ",".join(REPORT_COLUMNS)
