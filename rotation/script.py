"""Render a rotation as a standalone T-SQL batch.

For review or for running by hand in SSMS/sqlcmd. The batch follows the same
protocol as RotationEngine: XACT_ABORT, one transaction, app lock,
OBJECT_ID checks before each rename, ROLLBACK + THROW in the CATCH block.
"""

from __future__ import annotations

from datetime import datetime

import config
from connections import quote_identifier, quote_string, quote_table
from orchestration.table_lock import lock_resource
from rotation.engine import build_insert_statement
from rotation.plan import RotationPlan
from schema.ddl_scripter import script_table_ddl

# THROW error numbers (user range starts at 50000)
ERR_ORIGINAL_MISSING = 50001
ERR_SHADOW_MISSING = 50002
ERR_LOCKED = 50003
ERR_BACKUP_EXISTS = 50004


def _datetime_literal(value: datetime) -> str:
    """ISO 8601 literal, unambiguous under any DATEFORMAT/LANGUAGE setting."""
    return "'" + value.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "'"


def _indent(sql: str, prefix: str = "    ") -> str:
    return "\n".join(prefix + line if line else line for line in sql.splitlines())


def _sp_rename(schema: str, old: str, new: str) -> str:
    return (
        f"EXEC sp_rename {quote_string(quote_table(schema, old))}, "
        f"{quote_string(new)}, 'OBJECT';"
    )


def _reseed_lines(plan: RotationPlan) -> list[str]:
    source = quote_table(plan.schema, plan.source_name)
    shadow = quote_table(plan.schema, plan.shadow_name)
    return [
        "DECLARE @last_value BIGINT, @increment BIGINT;",
        "SELECT @last_value = CAST(last_value AS BIGINT), @increment = CAST(increment_value AS BIGINT) "
        f"FROM sys.identity_columns WHERE object_id = OBJECT_ID({quote_string(source)});",
        "IF @last_value IS NOT NULL",
        "BEGIN",
        f"    IF NOT EXISTS (SELECT 1 FROM {shadow}) SET @last_value = @last_value + @increment;",
        f"    DBCC CHECKIDENT ({quote_string(shadow)}, RESEED, @last_value) WITH NO_INFOMSGS;",
        "END",
    ]


def render_rotation_script(
    plan: RotationPlan,
    database: str = "",
    drop_existing_backup: bool = False,
) -> str:
    schema = plan.schema
    source = quote_table(schema, plan.source_name)
    shadow = quote_table(schema, plan.shadow_name)
    backup = quote_table(schema, plan.backup_name)

    body: list[str] = []
    body.append("BEGIN TRANSACTION;")
    body.append("")
    body.append("DECLARE @lock INT;")
    body.append(
        "EXEC @lock = sp_getapplock "
        f"@Resource = {quote_string(lock_resource(database, schema, plan.source_name))}, "
        "@LockMode = 'Exclusive', @LockOwner = 'Transaction', "
        f"@LockTimeout = {config.ROTATION_LOCK_TIMEOUT_MS};"
    )
    body.append(
        f"IF @lock < 0 THROW {ERR_LOCKED}, "
        f"{quote_string('Could not acquire rotation lock for ' + source)}, 1;"
    )
    body.append("")

    if not drop_existing_backup:
        body.append(f"IF OBJECT_ID({quote_string(backup)}, N'U') IS NOT NULL")
        body.append(
            f"    THROW {ERR_BACKUP_EXISTS}, "
            f"{quote_string('Backup table ' + backup + ' already exists')}, 1;"
        )
        body.append("")

    body.append(f"-- Shadow table {shadow}")
    body.append(f"DROP TABLE IF EXISTS {shadow};")
    for statement in script_table_ddl(
        plan.table, rename_to=plan.shadow_name, constraint_suffix=config.SHADOW_SUFFIX,
    ):
        body.append(statement + ";")
    body.append("")

    insert = build_insert_statement(plan, cutoff_sql=_datetime_literal(plan.cutoff))
    body.append(f"-- Keep rows with {plan.date_column} >= cutoff ({plan.retention_days} days)")
    if plan.copies_identity:
        body.append(f"SET IDENTITY_INSERT {shadow} ON;")
    body.append(insert + ";")
    if plan.copies_identity:
        body.append(f"SET IDENTITY_INSERT {shadow} OFF;")
        body += _reseed_lines(plan)
    body.append("")

    body.append(f"IF OBJECT_ID({quote_string(source)}, N'U') IS NULL")
    body.append(
        f"    THROW {ERR_ORIGINAL_MISSING}, "
        f"{quote_string('Original table ' + source + ' no longer exists')}, 1;"
    )
    body.append(_sp_rename(schema, plan.source_name, plan.transitional_name))
    if drop_existing_backup:
        body.append(f"DROP TABLE IF EXISTS {backup};")
    body.append(_sp_rename(schema, plan.transitional_name, plan.backup_name))
    for rename in plan.constraint_renames:
        body.append(_sp_rename(schema, rename.original_name, rename.backup_name))
    body.append("")

    body.append(f"IF OBJECT_ID({quote_string(shadow)}, N'U') IS NULL")
    body.append(
        f"    THROW {ERR_SHADOW_MISSING}, "
        f"{quote_string('Shadow table ' + shadow + ' no longer exists')}, 1;"
    )
    body.append(_sp_rename(schema, plan.shadow_name, plan.source_name))
    for rename in plan.constraint_renames:
        body.append(_sp_rename(schema, rename.shadow_name, rename.original_name))
    body.append("")
    body.append("COMMIT TRANSACTION;")

    header = [
        f"-- Rotation of {source}: keep {plan.date_column} >= {plan.cutoff:%Y-%m-%d %H:%M:%S}",
        f"-- Backup: {backup}",
    ]
    if database:
        header.append(f"USE {quote_identifier(database)};")
    header += ["SET XACT_ABORT ON;", "SET NOCOUNT ON;", ""]

    return "\n".join(
        header
        + ["BEGIN TRY"]
        + [_indent("\n".join(body))]
        + [
            "END TRY",
            "BEGIN CATCH",
            "    IF @@TRANCOUNT > 0 ROLLBACK TRANSACTION;",
            "    THROW;",
            "END CATCH;",
            "",
        ]
    )
