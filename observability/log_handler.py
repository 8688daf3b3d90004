"""SqlServerLogHandler: custom logging.Handler -> ops.TableAdminLog.

Every module uses standard logger = logging.getLogger(__name__) calls.
The handler holds RunId, Operation and TableName in thread-local context.
Only installed when config.LOG_DATABASE is set.
"""

from __future__ import annotations

import logging
import sys
import threading
import traceback
from datetime import datetime, timezone

import connections


class SqlServerLogHandler(logging.Handler):
    """Buffering handler that writes log records to ops.TableAdminLog.

    Usage:
        handler = SqlServerLogHandler(target)
        handler.set_context(run_id="3f2a...", operation="ROTATE", table_name="dbo.AuditLog")
        logging.getLogger().addHandler(handler)
    """

    def __init__(self, target: connections.ServerTarget, level: int = logging.INFO) -> None:
        super().__init__(level)
        self._target = target
        self._context = threading.local()
        self._buffer: list[tuple] = []
        self._buffer_lock = threading.Lock()
        # OBS-4: Small buffer narrows the crash-loss window.
        self._buffer_size = 10

    def set_context(
        self,
        run_id: str | None = None,
        operation: str | None = None,
        table_name: str | None = None,
    ) -> None:
        if run_id is not None:
            self._context.run_id = run_id
        if operation is not None:
            self._context.operation = operation
        self._context.table_name = table_name

    def _get_context(self) -> tuple[str | None, str | None, str | None]:
        return (
            getattr(self._context, "run_id", None),
            getattr(self._context, "operation", None),
            getattr(self._context, "table_name", None),
        )

    def emit(self, record: logging.LogRecord) -> None:
        # Records from the connection layer itself would recurse on flush.
        if record.name == connections.__name__:
            return
        try:
            run_id, operation, table_name = self._get_context()
            if run_id is None:
                return

            error_type = None
            stack_trace = None
            if record.exc_info and record.exc_info[1]:
                error_type = type(record.exc_info[1]).__name__
                stack_trace = "".join(
                    traceback.format_exception(*record.exc_info)
                )[:4000]

            row = (
                run_id,
                operation,
                table_name,
                record.levelname,
                record.name,
                record.funcName,
                self.format(record)[:4000],
                error_type,
                stack_trace,
                datetime.now(timezone.utc),
            )

            with self._buffer_lock:
                self._buffer.append(row)
                # OBS-4: Flush immediately on WARNING+, these are most likely to be lost on crash.
                if len(self._buffer) >= self._buffer_size or record.levelno >= logging.WARNING:
                    self._flush_buffer()
        except Exception:
            self.handleError(record)

    def _flush_buffer(self) -> None:
        if not self._buffer:
            return
        rows = self._buffer[:]
        self._buffer.clear()

        try:
            conn = connections.get_connection(self._target)
            try:
                cursor = conn.cursor()
                cursor.executemany(
                    """
                    INSERT INTO ops.TableAdminLog (
                        RunId, Operation, TableName, LogLevel, Module,
                        FunctionName, Message, ErrorType, StackTrace, CreatedAt
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
                cursor.close()
                conn.commit()
            finally:
                conn.close()
        except Exception as flush_err:
            # OBS-4: Surface flush failures on stderr; logging here would recurse.
            print(
                f"[SqlServerLogHandler] FLUSH FAILED ({len(rows)} entries lost): "
                f"{flush_err}",
                file=sys.stderr,
            )

    def flush(self) -> None:
        with self._buffer_lock:
            self._flush_buffer()

    def close(self) -> None:
        self.flush()
        super().close()
