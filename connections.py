"""SQL Server connections for the admin tools.

Provides pyodbc sessions (for DDL/DML and catalog reads), ConnectorX URIs
(for bulk reads into Polars), and identifier quoting helpers (H-1) for
safe dynamic SQL construction. Values always travel as bound parameters;
only identifiers are spliced into statement text, and only after quoting.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from urllib.parse import quote_plus

import pyodbc

import config
from errors import ServerConnectionError, StatementError

logger = logging.getLogger(__name__)

# P-3: Connection overhead measurement: cumulative time spent establishing
# pyodbc connections per run. Per-process, not thread-safe.
_connection_time_ms: float = 0.0
_connection_count: int = 0

# ---------------------------------------------------------------------------
# H-1: SQL identifier escaping: bracket-escape with ]] doubling
# ---------------------------------------------------------------------------

_MAX_IDENTIFIER_LENGTH = 128  # SQL Server sysname limit (matches QUOTENAME())

# ODBC SQLSTATEs for query/login timeouts. A timeout is a statement failure,
# not a lost connection.
_TIMEOUT_SQLSTATES = {"HYT00", "HYT01"}


def quote_identifier(name: str) -> str:
    """H-1: Bracket-escape a SQL Server identifier (table, column, index name).

    Equivalent to T-SQL QUOTENAME(): wraps in brackets and doubles any embedded
    closing brackets.

    Raises:
        ValueError: If name exceeds 128 characters or is empty.
    """
    if not name:
        raise ValueError("H-1: Identifier cannot be empty")
    if len(name) > _MAX_IDENTIFIER_LENGTH:
        raise ValueError(
            f"H-1: Identifier exceeds {_MAX_IDENTIFIER_LENGTH} characters "
            f"(len={len(name)}): {name[:50]}..."
        )
    return f"[{name.replace(']', ']]')}]"


def quote_table(schema: str, table: str) -> str:
    """H-1: Bracket-escape a two-part ``schema.table`` name.

    Returns:
        e.g. ``[dbo].[Orders]``
    """
    return f"{quote_identifier(schema)}.{quote_identifier(table)}"


def quote_string(value: str) -> str:
    """Render a Unicode string literal (N'...') with embedded quotes doubled.

    Only used where a statement is rendered as text for later execution
    (rotation/SSIS scripts). Live execution binds parameters instead.
    """
    return "N'" + value.replace("'", "''") + "'"


@dataclass(frozen=True)
class ServerTarget:
    """One SQL Server database endpoint (server + database + credentials)."""

    host: str
    database: str
    port: int = 1433
    user: str = ""
    password: str = ""
    trusted: bool = False
    name: str = ""

    @classmethod
    def from_env(cls, database: str, host: str | None = None, name: str = "") -> ServerTarget:
        """Build a target from the .env defaults, overriding host/database."""
        return cls(
            host=host or config.SQL_SERVER_HOST,
            database=database,
            port=config.SQL_SERVER_PORT,
            user=config.SQL_SERVER_USER,
            password=config.SQL_SERVER_PASSWORD,
            trusted=config.SQL_SERVER_TRUSTED,
            name=name,
        )

    @property
    def label(self) -> str:
        return self.name or f"{self.host}/{self.database}"

    def odbc_connection_string(self) -> str:
        auth = (
            "Trusted_Connection=yes;"
            if self.trusted or not self.user
            else f"UID={self.user};PWD={self.password};"
        )
        return (
            f"DRIVER={{{config.ODBC_DRIVER}}};"
            f"SERVER={self.host},{self.port};"
            f"DATABASE={self.database};"
            f"{auth}"
            "TrustServerCertificate=yes;"
        )

    def connectorx_uri(self) -> str:
        if self.trusted or not self.user:
            return (
                f"mssql://{self.host}:{self.port}/{self.database}"
                "?trusted_connection=true&TrustServerCertificate=true"
            )
        usr = quote_plus(self.user)
        pwd = quote_plus(self.password)
        return (
            f"mssql://{usr}:{pwd}@{self.host}:{self.port}"
            f"/{self.database}?TrustServerCertificate=true"
        )


def get_connection(target: ServerTarget, autocommit: bool = True) -> pyodbc.Connection:
    """Create a fresh pyodbc connection (not pooled).

    Raises:
        ServerConnectionError: If the server cannot be reached or login fails.
    """
    global _connection_time_ms, _connection_count
    start = time.monotonic()
    try:
        conn = pyodbc.connect(
            target.odbc_connection_string(),
            autocommit=autocommit,
            timeout=config.CONNECT_TIMEOUT,
        )
    except pyodbc.Error as e:
        raise ServerConnectionError(
            f"Could not connect to {target.label}: {e}"
        ) from e
    elapsed = (time.monotonic() - start) * 1000
    _connection_time_ms += elapsed
    _connection_count += 1
    return conn


def get_connection_overhead() -> tuple[float, int]:
    """P-3: Return cumulative connection overhead (total_ms, connection_count)."""
    return _connection_time_ms, _connection_count


def _translate_error(err: pyodbc.Error, sql: str) -> Exception:
    sqlstate = err.args[0] if err.args else ""
    if isinstance(err, (pyodbc.OperationalError, pyodbc.InterfaceError)) and (
        sqlstate not in _TIMEOUT_SQLSTATES
    ):
        return ServerConnectionError(f"Connection failure: {err}")
    return StatementError(f"Statement failed: {err}", sql=sql)


@dataclass
class StatementResult:
    """Rows (for queries) and affected row count (for DML) of one statement."""

    rows: list[tuple]
    rowcount: int

    def scalar(self):
        if not self.rows:
            return None
        return self.rows[0][0]


class SqlSession:
    """One pyodbc connection plus the small set of operations the tools need.

    The rotation and copy engines only talk to a session, never to pyodbc
    directly. Tests substitute an in-memory implementation with the same
    methods.

    Usage::

        with SqlSession.open(target, autocommit=False) as session:
            session.execute("DELETE FROM [dbo].[T] WHERE id = ?", 42)
            session.commit()
    """

    def __init__(self, conn: pyodbc.Connection, target: ServerTarget | None = None) -> None:
        self._conn = conn
        self.target = target

    @classmethod
    def open(
        cls,
        target: ServerTarget,
        autocommit: bool = True,
        query_timeout: int = 0,
    ) -> SqlSession:
        conn = get_connection(target, autocommit=autocommit)
        if query_timeout:
            conn.timeout = query_timeout
        logger.debug("Opened session to %s (autocommit=%s)", target.label, autocommit)
        return cls(conn, target)

    def __enter__(self) -> SqlSession:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def database(self) -> str:
        return self.target.database if self.target else ""

    # --- Statements ---

    def execute(self, sql: str, *params) -> StatementResult:
        """Execute one statement with bound parameters.

        Raises:
            ServerConnectionError: Connection-level failure.
            StatementError: Any other server-side failure (incl. timeouts).
        """
        cursor = self._conn.cursor()
        try:
            cursor.execute(sql, *params)
            rows = [tuple(r) for r in cursor.fetchall()] if cursor.description else []
            return StatementResult(rows=rows, rowcount=cursor.rowcount)
        except pyodbc.Error as e:
            raise _translate_error(e, sql) from e
        finally:
            try:
                cursor.close()
            except pyodbc.Error:
                logger.debug("Cursor close failed", exc_info=True)

    def executemany(self, sql: str, rows: list[tuple]) -> int:
        """Bulk parameterized insert via pyodbc fast_executemany."""
        if not rows:
            return 0
        cursor = self._conn.cursor()
        try:
            cursor.fast_executemany = True
            cursor.executemany(sql, rows)
            return len(rows)
        except pyodbc.Error as e:
            raise _translate_error(e, sql) from e
        finally:
            try:
                cursor.close()
            except pyodbc.Error:
                logger.debug("Cursor close failed", exc_info=True)

    def iter_batches(self, sql: str, batch_size: int, *params):
        """Yield lists of row tuples from a query, batch_size rows at a time."""
        cursor = self._conn.cursor()
        try:
            cursor.execute(sql, *params)
            while True:
                batch = cursor.fetchmany(batch_size)
                if not batch:
                    break
                yield [tuple(r) for r in batch]
        except pyodbc.Error as e:
            raise _translate_error(e, sql) from e
        finally:
            try:
                cursor.close()
            except pyodbc.Error:
                logger.debug("Cursor close failed", exc_info=True)

    # --- Object helpers ---

    def table_exists(self, schema: str, table: str) -> bool:
        result = self.execute(
            "SELECT OBJECT_ID(?, 'U')", quote_table(schema, table),
        )
        return result.scalar() is not None

    def drop_table(self, schema: str, table: str) -> None:
        self.execute(f"DROP TABLE IF EXISTS {quote_table(schema, table)}")

    def rename_table(self, schema: str, old_name: str, new_name: str) -> None:
        """sp_rename a table within its schema (new name is unqualified)."""
        self.execute(
            "EXEC sp_rename @objname = ?, @newname = ?, @objtype = 'OBJECT'",
            quote_table(schema, old_name), new_name,
        )

    def rename_constraint(self, schema: str, old_name: str, new_name: str) -> None:
        """sp_rename a schema-scoped constraint (PK/UNIQUE); its index follows."""
        self.execute(
            "EXEC sp_rename @objname = ?, @newname = ?, @objtype = 'OBJECT'",
            quote_table(schema, old_name), new_name,
        )

    def count_rows(self, schema: str, table: str, where: str | None = None) -> int:
        sql = f"SELECT COUNT_BIG(*) FROM {quote_table(schema, table)}"
        if where:
            sql += f" WHERE {where}"
        value = self.execute(sql).scalar()
        return int(value) if value is not None else 0

    # --- Transactions ---

    def commit(self) -> None:
        try:
            self._conn.commit()
        except pyodbc.Error as e:
            raise _translate_error(e, "COMMIT") from e

    def rollback(self) -> None:
        try:
            self._conn.rollback()
        except pyodbc.Error as e:
            raise _translate_error(e, "ROLLBACK") from e

    @contextmanager
    def transaction(self):
        """Commit on success, roll back and re-raise on any exception.

        Requires a session opened with autocommit=False.
        """
        try:
            yield self
        except BaseException:
            try:
                self.rollback()
            except (ServerConnectionError, StatementError):
                logger.error("Rollback failed on %s", self.target.label if self.target else "session",
                             exc_info=True)
            raise
        else:
            self.commit()

    def close(self) -> None:
        try:
            self._conn.close()
        except pyodbc.Error:
            logger.debug("Connection close failed", exc_info=True)
