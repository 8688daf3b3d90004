"""RotationPlan: everything a rotation needs, derived once per invocation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

import config
from errors import NoInsertableColumns
from schema.ddl_scripter import suffixed_name
from schema.metadata import TableDescriptor


@dataclass(frozen=True)
class ConstraintRename:
    """Names one PK/UNIQUE constraint carries through a rotation.

    The shadow is created with ``shadow_name`` (no collision with the live
    table), the old table's constraint moves to ``backup_name``, then the
    promoted table takes ``original_name``.
    """

    original_name: str
    shadow_name: str
    backup_name: str


@dataclass(frozen=True)
class RotationPlan:
    table: TableDescriptor
    date_column: str
    retention_days: int
    cutoff: datetime
    shadow_name: str
    backup_name: str
    transitional_name: str
    data_columns: tuple[str, ...]

    @property
    def schema(self) -> str:
        return self.table.schema

    @property
    def source_name(self) -> str:
        return self.table.name

    @property
    def copies_identity(self) -> bool:
        return self.table.has_identity_data_column

    @property
    def constraint_renames(self) -> list[ConstraintRename]:
        return [
            ConstraintRename(
                original_name=idx.name,
                shadow_name=suffixed_name(idx.name, config.SHADOW_SUFFIX),
                backup_name=suffixed_name(idx.name, config.BACKUP_SUFFIX),
            )
            for idx in self.table.indexes
            if idx.is_constraint
        ]


def build_rotation_plan(
    table: TableDescriptor,
    date_column: str,
    retention_days: int,
    now: datetime | None = None,
) -> RotationPlan:
    """Validate inputs and derive names, column list and cutoff.

    Raises:
        ValueError: retention_days is not a non-negative integer.
        ColumnNotFound: date_column is not a column of the table.
        NoInsertableColumns: every column is computed or rowversion.
    """
    if isinstance(retention_days, bool) or not isinstance(retention_days, int):
        raise ValueError(f"retention_days must be an integer, got {retention_days!r}")
    if retention_days < 0:
        raise ValueError(f"retention_days must be >= 0, got {retention_days}")

    date_col = table.column(date_column)

    data_columns = tuple(c.name for c in table.data_columns)
    if not data_columns:
        raise NoInsertableColumns(table.qualified_name)

    if now is None:
        now = datetime.now()

    return RotationPlan(
        table=table,
        date_column=date_col.name,
        retention_days=retention_days,
        cutoff=now - timedelta(days=retention_days),
        shadow_name=suffixed_name(table.name, config.SHADOW_SUFFIX),
        backup_name=suffixed_name(table.name, config.BACKUP_SUFFIX),
        transitional_name=suffixed_name(table.name, config.TRANSITIONAL_SUFFIX),
        data_columns=data_columns,
    )
