"""Row-by-row table comparison keyed on one primary-key column.

compare() builds a lookup of the right side by normalized key (first
occurrence wins on duplicates), then streams the left side against it:

  - key not on the right        -> MissingRow(key, Side.RIGHT)
  - key on both, values differ  -> one ValueMismatch listing every differing column
  - key on both, all equal      -> nothing

Keys that exist only on the right are NOT reported. That asymmetry is the
long-standing behavior of the comparison tool and is kept as the default;
compare_symmetric() is the explicit opt-in that also reports them.

Values are compared by their trimmed string form. NULL normalizes to a
sentinel that no string can equal (not "", not "NULL").
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from diff.models import ColumnDifference, DiffEntry, MissingRow, RowRecord, Side, ValueMismatch
from errors import ColumnNotFound

logger = logging.getLogger(__name__)


class _NullSentinel:
    """Normalized form of NULL. Equal only to itself."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "<NULL>"


NULL = _NullSentinel()


def normalize_value(value: Any) -> Any:
    """NULL -> sentinel, anything else -> trimmed string form."""
    if value is None:
        return NULL
    return str(value).strip()


def _key_of(record: RowRecord, primary_key: str, side: str):
    try:
        raw = record[primary_key]
    except KeyError:
        raise ColumnNotFound(primary_key, f"{side} row set") from None
    return raw, normalize_value(raw)


def build_lookup(rows: Iterable[RowRecord], primary_key: str) -> dict[Any, RowRecord]:
    """Normalized key -> first record with that key. Later duplicates are ignored."""
    lookup: dict[Any, RowRecord] = {}
    duplicates = 0
    for record in rows:
        _, key = _key_of(record, primary_key, "right")
        if key in lookup:
            duplicates += 1
            continue
        lookup[key] = record
    if duplicates:
        logger.warning(
            "%d duplicate key(s) on the right side for [%s] — first occurrence used",
            duplicates, primary_key,
        )
    return lookup


def _compare_record(
    key: Any,
    left: RowRecord,
    right: RowRecord,
    primary_key: str,
) -> ValueMismatch | None:
    differences = [
        ColumnDifference(column=column, left=left_value, right=right[column])
        for column, left_value in left.items()
        if column != primary_key
        and column in right
        and normalize_value(left_value) != normalize_value(right[column])
    ]
    if not differences:
        return None
    return ValueMismatch(key=key, differences=tuple(differences))


def iter_differences(
    left_rows: Iterable[RowRecord],
    right_lookup: dict[Any, RowRecord],
    primary_key: str,
):
    """Yield DiffEntry for each left record against a prebuilt right lookup.

    The lookup is only read, so several workers may share one lookup while
    each scans its own slice of the left side.
    """
    for record in left_rows:
        raw_key, key = _key_of(record, primary_key, "left")
        match = right_lookup.get(key)
        if match is None:
            yield MissingRow(key=raw_key, side=Side.RIGHT)
            continue
        mismatch = _compare_record(raw_key, record, match, primary_key)
        if mismatch is not None:
            yield mismatch


def compare(
    left_rows: Iterable[RowRecord],
    right_rows: Iterable[RowRecord],
    primary_key: str,
) -> list[DiffEntry]:
    """Compare two equally-shaped row sets keyed on ``primary_key``.

    Raises:
        ColumnNotFound: A record lacks the primary-key column.
    """
    lookup = build_lookup(right_rows, primary_key)
    entries = list(iter_differences(left_rows, lookup, primary_key))
    logger.debug(
        "Compared on [%s]: %d right keys, %d differences",
        primary_key, len(lookup), len(entries),
    )
    return entries


def compare_symmetric(
    left_rows: Iterable[RowRecord],
    right_rows: Iterable[RowRecord],
    primary_key: str,
) -> list[DiffEntry]:
    """compare() plus MissingRow(key, Side.LEFT) for keys only on the right."""
    left_rows = list(left_rows)
    right_rows = list(right_rows)
    entries = compare(left_rows, right_rows, primary_key)

    left_keys = {_key_of(r, primary_key, "left")[1] for r in left_rows}
    reported: set = set()
    for record in right_rows:
        raw_key, key = _key_of(record, primary_key, "right")
        if key in left_keys or key in reported:
            continue
        reported.add(key)
        entries.append(MissingRow(key=raw_key, side=Side.LEFT))
    return entries
