"""CLI entry point for cross-server table copy.

Usage:
    python3 main_copy_table.py --job jobs/copy_reference.json
    python3 main_copy_table.py --job jobs/copy_reference.json --table Currency --drop-if-exists
"""

from __future__ import annotations

# L-1: cli_common sets sys.path; it must be imported before any other project modules.
import cli_common

import argparse
import logging
import sys

from connections import SqlSession
from data_load.table_copy import copy_table
from errors import ServerConnectionError, TableAdminError
from orchestration.job_config import parse_copy_job

logger = logging.getLogger(__name__)


def run_copy(job, specs, tracker, sql_handler=None, drop_if_exists=False, batch_size=None) -> tuple[int, int]:
    """Copy each table in ``specs``; returns (succeeded, failed)."""
    succeeded = 0
    failed = 0
    try:
        with SqlSession.open(job.source) as source_session, \
                SqlSession.open(job.destination, autocommit=False) as dest_session:
            for spec in specs:
                table_label = f"[{spec.schema}].[{spec.table}]"
                if sql_handler is not None:
                    sql_handler.set_context(table_name=table_label)
                try:
                    with tracker.track("COPY", table_label, server_label=job.destination.label) as event:
                        result = copy_table(
                            source_session,
                            dest_session,
                            spec.schema,
                            spec.table,
                            dest_schema=spec.dest_schema,
                            dest_table=spec.dest_table,
                            drop_if_exists=drop_if_exists,
                            where=spec.where,
                            batch_size=batch_size,
                        )
                        event.rows_processed = result.rows_copied
                        event.warnings = len(result.warnings)
                        event.event_detail = f"dest={result.dest_table}"
                    succeeded += 1
                except TableAdminError:
                    failed += 1
                    logger.exception("Copy of %s failed", table_label)
    except ServerConnectionError:
        logger.exception("Could not connect for copy %s -> %s", job.source.label, job.destination.label)
        return 0, len(specs)
    return succeeded, failed


def main() -> None:
    parser = argparse.ArgumentParser(description="Copy tables (structure + data) between SQL Server databases")
    cli_common.add_common_arguments(parser)
    parser.add_argument("--table", type=str, help="Copy only this table from the job")
    parser.add_argument("--drop-if-exists", action="store_true", help="Replace destination tables that already exist")
    parser.add_argument("--batch-size", type=int, help="Rows per insert batch (default from job / COPY_BATCH_SIZE)")
    args = parser.parse_args()

    tracker, sql_handler = cli_common.setup_logging("COPY", verbose=args.verbose)

    try:
        job = cli_common.load_job(args.job, parse_copy_job)
    except (TableAdminError, ValueError) as e:
        logger.error("Invalid copy job %s: %s", args.job, e)
        sys.exit(1)

    specs = [s for s in job.tables if args.table is None or s.table.lower() == args.table.lower()]
    if not specs:
        logger.error("No table in %s matches --table %s", args.job, args.table)
        sys.exit(1)

    drop_if_exists = args.drop_if_exists or job.drop_if_exists
    batch_size = args.batch_size or job.batch_size
    logger.info(
        "Starting copy: %s -> %s, tables=%d",
        job.source.label, job.destination.label, len(specs),
    )

    succeeded, failed = run_copy(
        job, specs, tracker, sql_handler,
        drop_if_exists=drop_if_exists, batch_size=batch_size,
    )
    sys.exit(cli_common.finish("Copy", succeeded, failed, sql_handler))


if __name__ == "__main__":
    main()
