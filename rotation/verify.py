"""Post-rotation checks. Findings are warnings, never failures.

- Column structure of the promoted table must match the backup (both come
  from the same original): name, type, nullability, computed, persisted,
  formula.
- MIN(date column) of the promoted table should sit within
  ROTATION_VERIFY_TOLERANCE_DAYS of the cutoff.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING

import config
from connections import quote_identifier, quote_table
from diff.structure import compare_columns
from schema.metadata import fetch_table_descriptor

if TYPE_CHECKING:
    from connections import SqlSession
    from diff.models import StructureDifference
    from rotation.plan import RotationPlan

logger = logging.getLogger(__name__)


@dataclass
class RotationVerification:
    column_differences: list[StructureDifference] = field(default_factory=list)
    min_retained: datetime | None = None
    cutoff: datetime | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.warnings


def _as_datetime(value) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return None


def check_retention_window(
    min_retained,
    cutoff: datetime,
    tolerance_days: int | None = None,
) -> str | None:
    """Return a warning if MIN(date) is further than the tolerance from the cutoff."""
    if tolerance_days is None:
        tolerance_days = config.ROTATION_VERIFY_TOLERANCE_DAYS
    value = _as_datetime(min_retained)
    if value is None:
        return None
    # Naive cutoff vs an aware DATETIMEOFFSET value: compare wall clock.
    if value.tzinfo is not None and cutoff.tzinfo is None:
        value = value.replace(tzinfo=None)
    drift_days = abs((value - cutoff).total_seconds()) / 86400
    if drift_days > tolerance_days:
        return (
            f"Oldest retained row ({value:%Y-%m-%d %H:%M:%S}) is {drift_days:.1f} days "
            f"from the cutoff ({cutoff:%Y-%m-%d %H:%M:%S}); expected within "
            f"{tolerance_days} days"
        )
    return None


def verify_rotation(session: SqlSession, plan: RotationPlan) -> RotationVerification:
    """Compare promoted vs backup structure and check the retained date range."""
    result = RotationVerification(cutoff=plan.cutoff)
    try:
        promoted = fetch_table_descriptor(session, plan.schema, plan.source_name)
        backup = fetch_table_descriptor(session, plan.schema, plan.backup_name)
        result.column_differences = compare_columns(promoted, backup)
        for diff in result.column_differences:
            result.warnings.append(f"Structure differs from backup: {diff}")

        min_value = session.execute(
            f"SELECT MIN({quote_identifier(plan.date_column)}) "
            f"FROM {quote_table(plan.schema, plan.source_name)}"
        ).scalar()
        result.min_retained = _as_datetime(min_value)
        if min_value is None:
            logger.info(
                "Verification: no rows retained in %s",
                quote_table(plan.schema, plan.source_name),
            )
        else:
            warning = check_retention_window(min_value, plan.cutoff)
            if warning:
                result.warnings.append(warning)
    finally:
        # Read-only checks; end the implicit transaction they opened.
        session.rollback()

    for warning in result.warnings:
        logger.warning("Verification %s: %s", quote_table(plan.schema, plan.source_name), warning)
    if result.is_clean:
        logger.info("Verification passed for %s", quote_table(plan.schema, plan.source_name))
    return result
