"""Vectorized row comparison over Polars DataFrames.

Same rules as diff.engine.compare(): right side deduplicated on the
normalized key (first occurrence wins), left-to-right missing detection only,
values compared by trimmed string form with NULL as its own value. Values are
stringified by Polars' Utf8 cast, so temporal and float formatting follows
Polars rather than Python's str().

Used when both sides were read through ConnectorX and are too large to
compare comfortably as Python dicts.
"""

from __future__ import annotations

import logging

import polars as pl

from diff.models import ColumnDifference, DiffEntry, MissingRow, Side, ValueMismatch
from errors import ColumnNotFound

logger = logging.getLogger(__name__)

# Normalized NULL marker. Contains a control character so no trimmed value
# read from a table can collide with it.
_NULL_MARK = "\x00<NULL>\x00"

_ROW = "__left_row"
_RIGHT_ROW = "__right_row"
_KEY = "__key"
_PRESENT = "__present"
_RIGHT_SUFFIX = "__right"


def _normalize(col: str) -> pl.Expr:
    return pl.col(col).cast(pl.Utf8).str.strip_chars().fill_null(_NULL_MARK)


def compare_frames(
    left: pl.DataFrame,
    right: pl.DataFrame,
    primary_key: str,
) -> list[DiffEntry]:
    """Compare two DataFrames keyed on ``primary_key``; results in left-row order.

    Raises:
        ColumnNotFound: primary_key missing from either frame.
    """
    if primary_key not in left.columns:
        raise ColumnNotFound(primary_key, "left frame")
    if primary_key not in right.columns:
        raise ColumnNotFound(primary_key, "right frame")

    value_cols = [c for c in left.columns if c in right.columns and c != primary_key]

    left_n = left.with_row_index(_ROW).select(
        [pl.col(_ROW), _normalize(primary_key).alias(_KEY)]
        + [_normalize(c).alias(c) for c in value_cols]
    )
    right_n = (
        right.with_row_index(_RIGHT_ROW)
        .select(
            [pl.col(_RIGHT_ROW), _normalize(primary_key).alias(_KEY)]
            + [_normalize(c).alias(c) for c in value_cols]
        )
        .unique(subset=[_KEY], keep="first", maintain_order=True)
        .with_columns(pl.lit(True).alias(_PRESENT))
    )

    duplicates = len(right) - len(right_n)
    if duplicates:
        logger.warning(
            "%d duplicate key(s) on the right side for [%s] — first occurrence used",
            duplicates, primary_key,
        )

    joined = left_n.join(right_n, on=_KEY, how="left", suffix=_RIGHT_SUFFIX).sort(_ROW)

    mismatch_flags = [
        (pl.col(c) != pl.col(f"{c}{_RIGHT_SUFFIX}")).alias(c) for c in value_cols
    ]
    flagged = joined.select(
        [pl.col(_ROW), pl.col(_RIGHT_ROW), pl.col(_PRESENT).is_null().alias("__missing")]
        + mismatch_flags
    )

    entries: list[DiffEntry] = []
    left_keys = left[primary_key]
    for row in flagged.iter_rows(named=True):
        left_idx = row[_ROW]
        key = left_keys[left_idx]
        if row["__missing"]:
            entries.append(MissingRow(key=key, side=Side.RIGHT))
            continue
        differing = [c for c in value_cols if row[c]]
        if not differing:
            continue
        right_idx = row[_RIGHT_ROW]
        entries.append(ValueMismatch(
            key=key,
            differences=tuple(
                ColumnDifference(column=c, left=left[c][left_idx], right=right[c][right_idx])
                for c in differing
            ),
        ))

    logger.debug(
        "Frame compare on [%s]: %d left rows, %d right keys, %d differences",
        primary_key, len(left), len(right_n), len(entries),
    )
    return entries
