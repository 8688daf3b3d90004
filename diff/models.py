"""Difference records produced by the row and structure comparators."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Union

# One fetched row: column name -> nullable scalar. Never mutated after fetch.
RowRecord = Mapping[str, Any]


class Side(str, Enum):
    LEFT = "left"
    RIGHT = "right"


@dataclass(frozen=True)
class MissingRow:
    """A key present on one side only. ``side`` is the side that lacks it."""

    key: Any
    side: Side


@dataclass(frozen=True)
class ColumnDifference:
    column: str
    left: Any
    right: Any


@dataclass(frozen=True)
class ValueMismatch:
    """A key present on both sides with at least one differing column."""

    key: Any
    differences: tuple[ColumnDifference, ...]

    @property
    def columns(self) -> list[str]:
        return [d.column for d in self.differences]


DiffEntry = Union[MissingRow, ValueMismatch]


class StructureKind(str, Enum):
    MISSING_COLUMN = "missing_column"      # left only
    EXTRA_COLUMN = "extra_column"          # right only
    COLUMN_MISMATCH = "column_mismatch"
    MISSING_INDEX = "missing_index"
    EXTRA_INDEX = "extra_index"
    INDEX_MISMATCH = "index_mismatch"


@dataclass(frozen=True)
class StructureDifference:
    kind: StructureKind
    name: str
    detail: str = ""

    def __str__(self) -> str:
        text = f"{self.kind.value}: {self.name}"
        return f"{text} ({self.detail})" if self.detail else text
