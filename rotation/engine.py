"""Retention rotation: keep recent rows, archive the full table as <table>_OLD.

Runs as one transaction on one session (autocommit=False):

  1. Take the rotation app lock for the table.
  2. Drop a leftover <table>_TEMP, create it from the scripted source DDL.
  3. INSERT INTO <table>_TEMP (data columns) SELECT ... WHERE date >= cutoff.
     Computed and rowversion columns are never named; SQL Server fills them.
     The shadow IDENTITY is reseeded past the source's last issued value.
  4. <table> -> <table>_ROTATING -> <table>_OLD (old backup dropped only if
     drop_existing_backup), backup constraints get the _OLD suffix.
  5. <table>_TEMP -> <table>, shadow constraints take the original names.
  6. COMMIT.

Any failure (including query timeout) rolls back the whole transaction;
the source table is untouched and no _TEMP/_ROTATING/_OLD artifact of this
run remains. The error is re-raised unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

import config
from connections import quote_identifier, quote_string, quote_table
from errors import BackupTableExists, OriginalTableMissing, ShadowTableMissing, TableAdminError
from orchestration.table_lock import acquire_table_lock
from rotation.plan import RotationPlan, build_rotation_plan
from rotation.state import RotationState, RotationStateMachine
from schema.ddl_scripter import script_table_ddl

if TYPE_CHECKING:
    from connections import SqlSession
    from rotation.verify import RotationVerification
    from schema.metadata import TableDescriptor

logger = logging.getLogger(__name__)


@dataclass
class RotationResult:
    """Outcome of a successful rotation."""

    table: str
    backup_table: str
    cutoff: datetime
    rows_retained: int = 0
    states: list[str] = field(default_factory=list)
    verification: RotationVerification | None = None


def build_insert_statement(plan: RotationPlan, cutoff_sql: str = "?") -> str:
    """INSERT ... SELECT of data columns only.

    The cutoff is a bound parameter unless ``cutoff_sql`` supplies a literal.
    """
    cols = ", ".join(quote_identifier(c) for c in plan.data_columns)
    shadow = quote_table(plan.schema, plan.shadow_name)
    source = quote_table(plan.schema, plan.source_name)
    return (
        f"INSERT INTO {shadow} ({cols}) "
        f"SELECT {cols} FROM {source} "
        f"WHERE {quote_identifier(plan.date_column)} >= {cutoff_sql}"
    )


# last_value stays NULL until the table issues its first identity value.
_IDENTITY_QUERY = (
    "SELECT CAST(last_value AS BIGINT), CAST(increment_value AS BIGINT) "
    "FROM sys.identity_columns WHERE object_id = OBJECT_ID(?)"
)


class RotationEngine:
    """Executes rotations on a session opened with autocommit=False."""

    def __init__(
        self,
        session: SqlSession,
        drop_existing_backup: bool = False,
        lock_timeout_ms: int | None = None,
    ) -> None:
        self.session = session
        self.drop_existing_backup = drop_existing_backup
        self.lock_timeout_ms = lock_timeout_ms

    def rotate(
        self,
        table: TableDescriptor,
        date_column: str,
        retention_days: int,
        now: datetime | None = None,
        verify: bool = False,
    ) -> RotationResult:
        """Rotate ``table`` keeping rows with date_column >= now - retention_days.

        Raises:
            ValueError, ColumnNotFound, NoInsertableColumns: before any statement runs.
            TableLocked, BackupTableExists, OriginalTableMissing,
            ShadowTableMissing, StatementError, ServerConnectionError:
                after rollback.
        """
        plan = build_rotation_plan(table, date_column, retention_days, now=now)
        machine = RotationStateMachine(table.qualified_name)

        logger.info(
            "Rotating %s: keeping %s >= %s (%d days), backup -> %s",
            table.qualified_name, plan.date_column, plan.cutoff.isoformat(sep=" "),
            plan.retention_days, quote_table(plan.schema, plan.backup_name),
        )

        try:
            with self.session.transaction():
                acquire_table_lock(
                    self.session, plan.schema, plan.source_name, self.lock_timeout_ms,
                )
                self._check_backup(plan)
                self._create_shadow(plan, machine)
                rows_retained = self._copy_rows(plan, machine)
                self._retire_original(plan, machine)
                self._promote_shadow(plan, machine)
        except Exception:
            machine.rollback()
            logger.error(
                "Rotation of %s failed at state %s; transaction rolled back, "
                "no destructive change was made",
                table.qualified_name, machine.failed_at.value,
            )
            raise

        machine.advance(RotationState.STABLE)
        result = RotationResult(
            table=quote_table(plan.schema, plan.source_name),
            backup_table=quote_table(plan.schema, plan.backup_name),
            cutoff=plan.cutoff,
            rows_retained=rows_retained,
            states=[s.value for s in machine.history],
        )
        logger.info(
            "Rotation of %s committed: %d rows retained, backup %s",
            result.table, result.rows_retained, result.backup_table,
        )

        if verify:
            result.verification = self._verify(plan)

        return result

    def _verify(self, plan: RotationPlan) -> RotationVerification:
        """Run post-commit checks; a check that cannot run becomes a warning."""
        from rotation.verify import RotationVerification, verify_rotation

        try:
            return verify_rotation(self.session, plan)
        except TableAdminError as e:
            source = quote_table(plan.schema, plan.source_name)
            logger.warning(
                "Verification of %s could not complete (%s: %s); rotation is committed",
                source, type(e).__name__, e,
            )
            return RotationVerification(
                cutoff=plan.cutoff,
                warnings=[f"Verification could not complete: {type(e).__name__}: {e}"],
            )

    # --- Steps ---

    def _check_backup(self, plan: RotationPlan) -> None:
        """Fail before copying anything if an old backup blocks the rename."""
        if self.session.table_exists(plan.schema, plan.backup_name) and not self.drop_existing_backup:
            raise BackupTableExists(quote_table(plan.schema, plan.backup_name))

    def _create_shadow(self, plan: RotationPlan, machine: RotationStateMachine) -> None:
        if self.session.table_exists(plan.schema, plan.shadow_name):
            logger.warning(
                "Dropping leftover shadow table %s",
                quote_table(plan.schema, plan.shadow_name),
            )
            self.session.drop_table(plan.schema, plan.shadow_name)

        for statement in script_table_ddl(
            plan.table,
            rename_to=plan.shadow_name,
            constraint_suffix=config.SHADOW_SUFFIX,
        ):
            self.session.execute(statement)
        machine.advance(RotationState.SHADOW_CREATED)

    def _copy_rows(self, plan: RotationPlan, machine: RotationStateMachine) -> int:
        shadow = quote_table(plan.schema, plan.shadow_name)
        if plan.copies_identity:
            self.session.execute(f"SET IDENTITY_INSERT {shadow} ON")
        result = self.session.execute(build_insert_statement(plan), plan.cutoff)
        if plan.copies_identity:
            self.session.execute(f"SET IDENTITY_INSERT {shadow} OFF")

        rows = max(result.rowcount, 0)
        logger.info("Copied %d rows into %s", rows, shadow)
        if plan.copies_identity:
            self._continue_identity(plan, rows)
        machine.advance(RotationState.DATA_COPIED)
        return rows

    def _continue_identity(self, plan: RotationPlan, rows_copied: int) -> None:
        """Reseed the shadow so it never reissues an identity value now archived in the backup."""
        row = self.session.execute(
            _IDENTITY_QUERY, quote_table(plan.schema, plan.source_name),
        ).rows
        if not row or row[0][0] is None:
            return
        last_value, increment = row[0]
        # A table that has never held rows issues the reseed value itself.
        reseed = last_value if rows_copied else last_value + increment
        shadow = quote_table(plan.schema, plan.shadow_name)
        self.session.execute(
            f"DBCC CHECKIDENT ({quote_string(shadow)}, RESEED, {int(reseed)}) WITH NO_INFOMSGS"
        )
        logger.debug("Reseeded %s identity to %d", shadow, reseed)

    def _retire_original(self, plan: RotationPlan, machine: RotationStateMachine) -> None:
        if not self.session.table_exists(plan.schema, plan.source_name):
            raise OriginalTableMissing(quote_table(plan.schema, plan.source_name))
        self.session.rename_table(plan.schema, plan.source_name, plan.transitional_name)
        machine.advance(RotationState.ORIGINAL_RENAMED_TO_TRANSITIONAL)

        if self.session.table_exists(plan.schema, plan.backup_name):
            if not self.drop_existing_backup:
                raise BackupTableExists(quote_table(plan.schema, plan.backup_name))
            logger.info(
                "Dropping previous backup %s", quote_table(plan.schema, plan.backup_name),
            )
            self.session.drop_table(plan.schema, plan.backup_name)

        self.session.rename_table(plan.schema, plan.transitional_name, plan.backup_name)
        for rename in plan.constraint_renames:
            self.session.rename_constraint(plan.schema, rename.original_name, rename.backup_name)
        machine.advance(RotationState.ORIGINAL_RENAMED_TO_BACKUP)

    def _promote_shadow(self, plan: RotationPlan, machine: RotationStateMachine) -> None:
        if not self.session.table_exists(plan.schema, plan.shadow_name):
            raise ShadowTableMissing(quote_table(plan.schema, plan.shadow_name))
        self.session.rename_table(plan.schema, plan.shadow_name, plan.source_name)
        for rename in plan.constraint_renames:
            self.session.rename_constraint(plan.schema, rename.shadow_name, rename.original_name)
        machine.advance(RotationState.SHADOW_RENAMED_TO_ORIGINAL)


def rotate(
    session: SqlSession,
    table: TableDescriptor,
    date_column: str,
    retention_days: int,
    now: datetime | None = None,
    drop_existing_backup: bool = False,
    verify: bool = False,
) -> RotationResult:
    """Functional entry point around RotationEngine.rotate()."""
    engine = RotationEngine(session, drop_existing_backup=drop_existing_backup)
    return engine.rotate(table, date_column, retention_days, now=now, verify=verify)
