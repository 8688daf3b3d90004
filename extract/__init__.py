"""Extract package: bulk reads from SQL Server into Polars via ConnectorX.

B-7: ConnectorX errors can surface as Rust thread panics (PanicException)
that inherit from BaseException rather than Exception. cx_read_sql_safe()
catches them and re-raises as the tool's own error types. Nothing is
retried: a failed read aborts the operation before any comparison or copy
starts.
"""

from __future__ import annotations

import logging

import connectorx as cx
import polars as pl

from errors import ServerConnectionError, StatementError

logger = logging.getLogger(__name__)

# O-3: Connection-level error patterns (server unreachable, login, network).
# Anything else from ConnectorX is treated as a statement failure.
_CONNECTION_PATTERNS = (
    "login failed",
    "connection reset",
    "connection refused",
    "timed out",
    "timeout",
    "broken pipe",
    "network",
    "server is not available",
    "could not connect",
    "tls",
)


def _is_connection_error(error_str: str) -> bool:
    return any(pattern in error_str for pattern in _CONNECTION_PATTERNS)


def cx_read_sql_safe(
    *,
    conn: str,
    query: str,
    context: str = "",
) -> pl.DataFrame:
    """B-7: Single-attempt wrapper around cx.read_sql returning Polars.

    Args:
        conn: ConnectorX connection URI.
        query: SQL query to execute.
        context: Description for log messages (e.g. "read sql01/Sales:[dbo].[Orders]").

    Raises:
        ServerConnectionError: The server could not be reached.
        StatementError: The query failed.
    """
    try:
        return cx.read_sql(conn, query, return_type="polars")
    except (KeyboardInterrupt, SystemExit):
        raise
    except BaseException as e:
        error_type = type(e).__name__
        logger.error("B-7: ConnectorX %s failed (%s: %s)", context, error_type, e)
        if _is_connection_error(str(e).lower()):
            raise ServerConnectionError(f"{context}: {e}") from e
        raise StatementError(f"{context}: {e}", sql=query) from e
