"""CLI entry point for table comparison.

Usage:
    python3 main_compare_tables.py --job jobs/compare_orders.json
    python3 main_compare_tables.py --job jobs/compare_orders.json --symmetric --output diff.csv
    python3 main_compare_tables.py --job jobs/compare_orders.json --vectorized --no-structure
"""

from __future__ import annotations

# L-1: cli_common sets sys.path; it must be imported before any other project modules.
import cli_common

import argparse
import logging
import sys
from pathlib import Path

from connections import SqlSession, quote_table
from diff import compare, compare_frames, compare_structure, compare_symmetric, summarize, write_diff_report
from diff.models import MissingRow, Side
from errors import TableAdminError
from extract.table_reader import frame_to_records, read_table_frame
from orchestration.job_config import CompareJob, parse_compare_job
from schema.metadata import fetch_table_descriptor

logger = logging.getLogger(__name__)


def _projection(job: CompareJob) -> list[str] | None:
    if not job.columns:
        return None
    columns = list(job.columns)
    if job.primary_key not in columns:
        columns.insert(0, job.primary_key)
    return columns


def _structure_warnings(job: CompareJob, right_schema: str, right_table: str) -> list[str]:
    with SqlSession.open(job.left) as left_session, SqlSession.open(job.right) as right_session:
        left_desc = fetch_table_descriptor(left_session, job.schema, job.table)
        right_desc = fetch_table_descriptor(right_session, right_schema, right_table)
    return [f"Structure differs: {d}" for d in compare_structure(left_desc, right_desc)]


def run_compare(job: CompareJob) -> tuple[list, list[str]]:
    """Materialize both sides, compare rows (and structure). Returns (entries, warnings)."""
    right_schema = job.right_schema or job.schema
    right_table = job.right_table or job.table

    warnings: list[str] = []
    if job.structure:
        warnings += _structure_warnings(job, right_schema, right_table)

    left_df = read_table_frame(job.left, job.schema, job.table, _projection(job), job.where)
    # Right side uses the left's column list so both projections line up.
    right_df = read_table_frame(job.right, right_schema, right_table, left_df.columns, job.where)

    if job.vectorized:
        entries = compare_frames(left_df, right_df, job.primary_key)
        if job.symmetric:
            reverse = compare_frames(right_df, left_df, job.primary_key)
            right_only = {
                str(e.key).strip(): e.key for e in reverse if isinstance(e, MissingRow)
            }
            entries += [MissingRow(key=key, side=Side.LEFT) for key in right_only.values()]
    else:
        left_rows = frame_to_records(left_df)
        right_rows = frame_to_records(right_df)
        compare_fn = compare_symmetric if job.symmetric else compare
        entries = compare_fn(left_rows, right_rows, job.primary_key)
    return entries, warnings


def main() -> None:
    parser = argparse.ArgumentParser(description="Compare a table across two SQL Server databases")
    cli_common.add_common_arguments(parser)
    parser.add_argument("--output", type=str, help="CSV report path (overrides the job's output_path)")
    parser.add_argument("--symmetric", action="store_true", help="Also report keys that exist only on the right")
    parser.add_argument("--vectorized", action="store_true", help="Compare with Polars joins instead of row dicts")
    parser.add_argument("--no-structure", action="store_true", help="Skip the column/index structure comparison")
    args = parser.parse_args()

    tracker, sql_handler = cli_common.setup_logging("COMPARE", verbose=args.verbose)

    try:
        job = cli_common.load_job(args.job, parse_compare_job)
    except (TableAdminError, ValueError) as e:
        logger.error("Invalid compare job %s: %s", args.job, e)
        sys.exit(1)

    if args.symmetric:
        job.symmetric = True
    if args.vectorized:
        job.vectorized = True
    if args.no_structure:
        job.structure = False
    if args.output:
        job.output_path = Path(args.output)

    table_label = quote_table(job.schema, job.table)
    if sql_handler is not None:
        sql_handler.set_context(table_name=table_label)

    failed = 0
    try:
        with tracker.track("COMPARE", table_label, server_label=f"{job.left.label} vs {job.right.label}") as event:
            entries, warnings = run_compare(job)
            summary = summarize(entries)
            write_diff_report(entries, job.output_path)

            for warning in warnings:
                logger.warning("%s: %s", table_label, warning)
            event.rows_processed = summary.missing_rows + summary.mismatched_rows
            event.warnings = len(warnings) + (0 if summary.is_clean else 1)
            event.event_detail = f"report={job.output_path}"
            logger.info(
                "Compare %s: %d missing row(s), %d mismatched row(s)%s",
                table_label, summary.missing_rows, summary.mismatched_rows,
                f", by column: {summary.mismatched_columns}" if summary.mismatched_columns else "",
            )
    except TableAdminError:
        failed = 1
        logger.exception("Compare of %s failed", table_label)

    sys.exit(cli_common.finish("Compare", 1 - failed, failed, sql_handler))


if __name__ == "__main__":
    main()
