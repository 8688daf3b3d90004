"""OperationTracker context manager -> ops.TableAdminEventLog.

Writes exactly one row per operation per table. All operations of one CLI
run share a RunId. Without a log target the tracker only times and logs.

Usage:
    tracker = OperationTracker(log_target)
    with tracker.track("ROTATE", "[dbo].[AuditLog]") as event:
        result = engine.rotate(...)
        event.rows_processed = result.rows_retained
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone

import connections

logger = logging.getLogger(__name__)

_OPS_TABLES_DDL = (
    """
    IF SCHEMA_ID('ops') IS NULL EXEC('CREATE SCHEMA ops')
    """,
    """
    IF OBJECT_ID('ops.TableAdminLog', 'U') IS NULL
    CREATE TABLE ops.TableAdminLog (
        Id           BIGINT IDENTITY(1,1) PRIMARY KEY,
        RunId        NVARCHAR(36)   NOT NULL,
        Operation    NVARCHAR(32)   NULL,
        TableName    NVARCHAR(300)  NULL,
        LogLevel     NVARCHAR(16)   NOT NULL,
        Module       NVARCHAR(128)  NULL,
        FunctionName NVARCHAR(128)  NULL,
        Message      NVARCHAR(4000) NULL,
        ErrorType    NVARCHAR(128)  NULL,
        StackTrace   NVARCHAR(4000) NULL,
        CreatedAt    DATETIME2      NOT NULL
    )
    """,
    """
    IF OBJECT_ID('ops.TableAdminEventLog', 'U') IS NULL
    CREATE TABLE ops.TableAdminEventLog (
        Id            BIGINT IDENTITY(1,1) PRIMARY KEY,
        RunId         NVARCHAR(36)   NOT NULL,
        EventType     NVARCHAR(32)   NOT NULL,
        TableName     NVARCHAR(300)  NULL,
        ServerLabel   NVARCHAR(300)  NULL,
        StartedAt     DATETIME2      NOT NULL,
        CompletedAt   DATETIME2      NULL,
        DurationMs    INT            NULL,
        Status        NVARCHAR(16)   NOT NULL,
        ErrorMessage  NVARCHAR(4000) NULL,
        RowsProcessed BIGINT         NULL,
        Warnings      INT            NULL,
        EventDetail   NVARCHAR(MAX)  NULL
    )
    """,
)


def ensure_ops_tables(target: connections.ServerTarget) -> None:
    """Create ops.TableAdminLog / ops.TableAdminEventLog if missing. Idempotent."""
    try:
        conn = connections.get_connection(target)
        try:
            cursor = conn.cursor()
            for ddl in _OPS_TABLES_DDL:
                cursor.execute(ddl)
            cursor.close()
            conn.commit()
        finally:
            conn.close()
    except Exception:
        logger.warning("Could not ensure ops log tables on %s — non-fatal", target.label, exc_info=True)


@dataclass
class OperationEvent:
    """Mutable event object; tool code sets counts inside the with block."""

    event_type: str
    table_name: str
    server_label: str = ""
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: float = 0.0
    status: str = "SUCCESS"
    error_message: str | None = None
    rows_processed: int = 0
    warnings: int = 0
    event_detail: str | None = None


class OperationTracker:
    """Tracks tool operations; writes them to ops.TableAdminEventLog when a target is set."""

    def __init__(self, log_target: connections.ServerTarget | None = None) -> None:
        self.log_target = log_target
        self.run_id = str(uuid.uuid4())

    @contextmanager
    def track(self, event_type: str, table_name: str, server_label: str = ""):
        event = OperationEvent(event_type=event_type, table_name=table_name, server_label=server_label)
        event.started_at = datetime.now(timezone.utc)
        try:
            yield event
            if event.status not in ("FAILED", "SKIPPED"):
                event.status = "WARNING" if event.warnings else "SUCCESS"
        except Exception as e:
            event.status = "FAILED"
            event.error_message = str(e)[:4000]
            raise
        finally:
            event.completed_at = datetime.now(timezone.utc)
            event.duration_ms = (event.completed_at - event.started_at).total_seconds() * 1000
            logger.info(
                "%s %s: %s in %.0f ms (rows=%d, warnings=%d)",
                event.event_type, event.table_name, event.status,
                event.duration_ms, event.rows_processed, event.warnings,
            )
            if self.log_target is not None:
                self._write_event(event)

    def _write_event(self, event: OperationEvent) -> None:
        try:
            conn = connections.get_connection(self.log_target)
            try:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    INSERT INTO ops.TableAdminEventLog (
                        RunId, EventType, TableName, ServerLabel, StartedAt,
                        CompletedAt, DurationMs, Status, ErrorMessage,
                        RowsProcessed, Warnings, EventDetail
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    self.run_id,
                    event.event_type,
                    event.table_name,
                    event.server_label,
                    event.started_at,
                    event.completed_at,
                    int(event.duration_ms),
                    event.status,
                    event.error_message,
                    event.rows_processed,
                    event.warnings,
                    event.event_detail,
                )
                cursor.close()
                conn.commit()
            finally:
                conn.close()
        except Exception:
            logger.exception("Failed to write event to ops.TableAdminEventLog")
