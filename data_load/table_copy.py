"""Cross-server table copy: scripted structure + batched data, then reconcile.

Two independent single-server operations, no distributed transaction:

  1. Read the source structure (TableNotFound if absent).
  2. On the destination, in one transaction: drop the existing table only
     when drop_if_exists is set (else DestinationTableExists), create it from
     the scripted DDL, stream source rows in batches and insert them with
     pyodbc fast_executemany. Any failure rolls the destination back.
  3. Reconcile client-side: row counts and column/index structure. Findings
     are warnings on the result, not failures.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import config
from connections import quote_identifier, quote_table
from diff.structure import compare_structure
from errors import DestinationTableExists, NoInsertableColumns
from extract.table_reader import build_select
from schema.ddl_scripter import script_table_ddl
from schema.metadata import fetch_table_descriptor

if TYPE_CHECKING:
    from connections import SqlSession
    from diff.models import StructureDifference

logger = logging.getLogger(__name__)


@dataclass
class CopyResult:
    source_table: str
    dest_table: str
    rows_copied: int = 0
    source_rows: int = 0
    dest_rows: int = 0
    replaced_existing: bool = False
    structure_differences: list[StructureDifference] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.warnings


def build_insert_values(schema: str, table: str, columns: list[str]) -> str:
    cols = ", ".join(quote_identifier(c) for c in columns)
    params = ", ".join("?" for _ in columns)
    return f"INSERT INTO {quote_table(schema, table)} ({cols}) VALUES ({params})"


def copy_table(
    source_session: SqlSession,
    dest_session: SqlSession,
    schema: str,
    table: str,
    dest_schema: str | None = None,
    dest_table: str | None = None,
    drop_if_exists: bool = False,
    where: str | None = None,
    batch_size: int | None = None,
) -> CopyResult:
    """Copy schema.table from the source session's database to the destination's.

    dest_session must be opened with autocommit=False.

    Raises:
        TableNotFound: Source table does not exist.
        DestinationTableExists: Destination exists and drop_if_exists is False.
        NoInsertableColumns: Source has only computed or rowversion columns.
        StatementError, ServerConnectionError: Destination rolled back.
    """
    dest_schema = dest_schema or schema
    dest_table = dest_table or table
    batch_size = batch_size or config.COPY_BATCH_SIZE

    source_desc = fetch_table_descriptor(source_session, schema, table)
    data_columns = [c.name for c in source_desc.data_columns]
    if not data_columns:
        raise NoInsertableColumns(source_desc.qualified_name)

    result = CopyResult(
        source_table=source_desc.qualified_name,
        dest_table=quote_table(dest_schema, dest_table),
    )
    logger.info(
        "Copying %s -> %s (batch_size=%d%s)",
        result.source_table, result.dest_table, batch_size,
        f", where={where}" if where else "",
    )

    select_sql = build_select(schema, table, data_columns, where)
    insert_sql = build_insert_values(dest_schema, dest_table, data_columns)

    try:
        with dest_session.transaction():
            if dest_session.table_exists(dest_schema, dest_table):
                if not drop_if_exists:
                    raise DestinationTableExists(result.dest_table)
                logger.info("Dropping existing destination %s", result.dest_table)
                dest_session.drop_table(dest_schema, dest_table)
                result.replaced_existing = True

            for statement in script_table_ddl(source_desc, rename_to=dest_table, schema=dest_schema):
                dest_session.execute(statement)

            if source_desc.has_identity_data_column:
                dest_session.execute(f"SET IDENTITY_INSERT {result.dest_table} ON")
            for batch in source_session.iter_batches(select_sql, batch_size):
                result.rows_copied += dest_session.executemany(insert_sql, batch)
                logger.debug("Copied %d rows so far into %s", result.rows_copied, result.dest_table)
            if source_desc.has_identity_data_column:
                dest_session.execute(f"SET IDENTITY_INSERT {result.dest_table} OFF")
    except Exception:
        logger.error(
            "Copy of %s failed — destination transaction rolled back, "
            "no change was made to %s",
            result.source_table, result.dest_table,
        )
        raise

    logger.info("Committed %d rows into %s", result.rows_copied, result.dest_table)
    _reconcile(source_session, dest_session, source_desc, dest_schema, dest_table, where, result)
    return result


def _reconcile(source_session, dest_session, source_desc, dest_schema, dest_table, where, result) -> None:
    try:
        result.source_rows = source_session.count_rows(source_desc.schema, source_desc.name, where)
        result.dest_rows = dest_session.count_rows(dest_schema, dest_table)
        dest_desc = fetch_table_descriptor(dest_session, dest_schema, dest_table)
    finally:
        dest_session.rollback()

    if result.source_rows != result.dest_rows:
        result.warnings.append(
            f"Row count mismatch: source={result.source_rows}, destination={result.dest_rows}"
        )
    result.structure_differences = compare_structure(source_desc, dest_desc)
    for diff in result.structure_differences:
        result.warnings.append(f"Structure differs: {diff}")

    for warning in result.warnings:
        logger.warning("Copy %s -> %s: %s", result.source_table, result.dest_table, warning)
    if result.is_clean:
        logger.info(
            "Copy reconciled: %d rows on both sides, structure identical",
            result.dest_rows,
        )
