"""Difference report: summary counts and a CSV written with Polars."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

import polars as pl

from diff.models import DiffEntry, MissingRow, ValueMismatch

logger = logging.getLogger(__name__)

REPORT_COLUMNS = ("key", "kind", "side", "column", "left_value", "right_value")


@dataclass
class DiffSummary:
    missing_rows: int = 0
    mismatched_rows: int = 0
    mismatched_columns: dict[str, int] = field(default_factory=dict)

    @property
    def is_clean(self) -> bool:
        return self.missing_rows == 0 and self.mismatched_rows == 0


def summarize(entries: Iterable[DiffEntry]) -> DiffSummary:
    summary = DiffSummary()
    for entry in entries:
        if isinstance(entry, MissingRow):
            summary.missing_rows += 1
        else:
            summary.mismatched_rows += 1
            for column in entry.columns:
                summary.mismatched_columns[column] = summary.mismatched_columns.get(column, 0) + 1
    return summary


def _text(value) -> str | None:
    return None if value is None else str(value)


def report_rows(entries: Iterable[DiffEntry]) -> list[tuple]:
    """One row per missing key and one row per differing column."""
    rows = []
    for entry in entries:
        if isinstance(entry, MissingRow):
            rows.append((_text(entry.key), "missing", entry.side.value, None, None, None))
        elif isinstance(entry, ValueMismatch):
            for d in entry.differences:
                rows.append((
                    _text(entry.key), "mismatch", None, d.column,
                    _text(d.left), _text(d.right),
                ))
    return rows


def write_diff_report(entries: Iterable[DiffEntry], path: str | Path) -> Path:
    """Write the difference report as CSV (header always written)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df = pl.DataFrame(
        report_rows(entries),
        schema={name: pl.Utf8 for name in REPORT_COLUMNS},
        orient="row",
    )
    df.write_csv(path)
    logger.info("Wrote difference report: %s (%d lines)", path, len(df))
    return path
