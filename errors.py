"""Error taxonomy shared by the rotation, copy, compare and SSIS tools.

Every failure is fatal to the current invocation; nothing here is retried.
Session code wraps pyodbc errors into ServerConnectionError / StatementError
and chains the original exception.
"""

from __future__ import annotations


class TableAdminError(Exception):
    """Base class for all table admin failures."""


class ConfigurationMissing(TableAdminError):
    """A required job or environment setting is absent. Raised before any connection."""

    def __init__(self, field_name: str, context: str = "") -> None:
        self.field_name = field_name
        where = f" in {context}" if context else ""
        super().__init__(f"Required setting '{field_name}' is missing{where}")


class ServerConnectionError(TableAdminError):
    """A server could not be reached or the connection dropped mid-operation."""


class StatementError(TableAdminError):
    """A DDL/DML statement failed on the server."""

    def __init__(self, message: str, sql: str | None = None) -> None:
        self.sql = sql
        super().__init__(message)


class TableNotFound(TableAdminError):
    def __init__(self, schema: str, table: str) -> None:
        self.schema = schema
        self.table = table
        super().__init__(f"Table [{schema}].[{table}] does not exist")


class ColumnNotFound(TableAdminError):
    def __init__(self, column: str, table: str) -> None:
        self.column = column
        self.table = table
        super().__init__(f"Column '{column}' not found in {table}")


class NoInsertableColumns(TableAdminError):
    def __init__(self, table: str) -> None:
        self.table = table
        super().__init__(f"{table} has no insertable (non-computed, non-rowversion) columns to copy")


class OriginalTableMissing(TableAdminError):
    """Source table vanished between shadow creation and the rename step."""

    def __init__(self, table: str) -> None:
        self.table = table
        super().__init__(
            f"Original table {table} no longer exists before rename "
            f"(concurrent modification?)"
        )


class ShadowTableMissing(TableAdminError):
    """Shadow table vanished before it could be promoted."""

    def __init__(self, table: str) -> None:
        self.table = table
        super().__init__(
            f"Shadow table {table} no longer exists before rename "
            f"(concurrent modification?)"
        )


class BackupTableExists(TableAdminError):
    def __init__(self, table: str) -> None:
        self.table = table
        super().__init__(
            f"Backup table {table} already exists. Set drop_existing_backup "
            f"to replace it."
        )


class DestinationTableExists(TableAdminError):
    def __init__(self, table: str) -> None:
        self.table = table
        super().__init__(
            f"Destination table {table} already exists. Set drop_if_exists "
            f"to replace it."
        )


class TableLocked(TableAdminError):
    """Another session holds the rotation application lock for this table."""

    def __init__(self, resource: str, status: int) -> None:
        self.resource = resource
        self.status = status
        super().__init__(f"Could not acquire lock {resource} (sp_getapplock={status})")


class IllegalStateTransition(TableAdminError):
    def __init__(self, current: object, target: object) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Illegal rotation state transition {current} -> {target}")
