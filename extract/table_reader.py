"""Read a table (or a projection of it) from a server target.

Used by the compare tool to materialize both sides before diffing. Both
sides must be read with the same projection; read_table_frame() selects
columns explicitly and in the order given.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import polars as pl

from connections import quote_identifier, quote_table
from extract import cx_read_sql_safe

if TYPE_CHECKING:
    from connections import ServerTarget

logger = logging.getLogger(__name__)


def build_select(
    schema: str,
    table: str,
    columns: list[str] | None = None,
    where: str | None = None,
) -> str:
    col_list = ", ".join(quote_identifier(c) for c in columns) if columns else "*"
    query = f"SELECT {col_list} FROM {quote_table(schema, table)}"
    if where:
        query += f" WHERE {where}"
    return query


def read_table_frame(
    target: ServerTarget,
    schema: str,
    table: str,
    columns: list[str] | None = None,
    where: str | None = None,
) -> pl.DataFrame:
    """Read schema.table from target into a DataFrame.

    Args:
        target: Server/database to read from.
        schema: Table schema.
        table: Table name.
        columns: Projection (defaults to every column).
        where: Optional raw filter from the job file (trusted operator input).
    """
    query = build_select(schema, table, columns, where)
    label = f"{target.label}:{quote_table(schema, table)}"
    logger.info("Reading %s", label)
    df = cx_read_sql_safe(conn=target.connectorx_uri(), query=query, context=f"read {label}")
    logger.info("Read %d rows from %s", len(df), label)
    return df


def frame_to_records(df: pl.DataFrame) -> list[dict]:
    """DataFrame -> list of RowRecord dicts for diff.engine.compare()."""
    return df.to_dicts()
