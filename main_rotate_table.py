"""CLI entry point for retention rotation.

Usage:
    python3 main_rotate_table.py --job jobs/rotate_audit.json
    python3 main_rotate_table.py --job jobs/rotate_audit.json --table AuditLog
    python3 main_rotate_table.py --job jobs/rotate_audit.json --script-only --output rotate.sql
    python3 main_rotate_table.py --job jobs/rotate_audit.json --drop-existing-backup
"""

from __future__ import annotations

# L-1: cli_common sets sys.path; it must be imported before any other project modules.
import cli_common

import argparse
import logging
import sys
from pathlib import Path

import config
from connections import SqlSession
from errors import TableAdminError
from orchestration.job_config import parse_rotation_job
from rotation import RotationEngine, build_rotation_plan, render_rotation_script
from schema.metadata import fetch_table_descriptor

logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(description="Rotate tables: keep recent rows, archive the rest as <table>_OLD")
    cli_common.add_common_arguments(parser)
    parser.add_argument("--table", type=str, help="Rotate only this table from the job")
    parser.add_argument("--retention-days", type=int, help="Override retention_days for every table")
    parser.add_argument("--drop-existing-backup", action="store_true", help="Replace an existing <table>_OLD instead of failing")
    parser.add_argument("--no-verify", action="store_true", help="Skip post-rotation verification")
    parser.add_argument("--script-only", action="store_true", help="Render the T-SQL batch instead of executing it")
    parser.add_argument("--output", type=str, help="With --script-only: write the script here instead of stdout")
    args = parser.parse_args()

    tracker, sql_handler = cli_common.setup_logging("ROTATE", verbose=args.verbose)

    try:
        job = cli_common.load_job(args.job, parse_rotation_job)
    except (TableAdminError, ValueError) as e:
        logger.error("Invalid rotation job %s: %s", args.job, e)
        sys.exit(1)

    specs = [s for s in job.tables if args.table is None or s.table.lower() == args.table.lower()]
    if not specs:
        logger.error("No table in %s matches --table %s", args.job, args.table)
        sys.exit(1)

    succeeded = 0
    failed = 0
    scripts: list[str] = []

    for spec in specs:
        retention = args.retention_days if args.retention_days is not None else spec.retention_days
        drop_backup = args.drop_existing_backup or spec.drop_existing_backup
        table_label = f"[{spec.schema}].[{spec.table}]"
        if sql_handler is not None:
            sql_handler.set_context(table_name=table_label)

        try:
            with tracker.track("ROTATE", table_label, server_label=job.target.label) as event:
                with SqlSession.open(
                    job.target,
                    autocommit=False,
                    query_timeout=config.ROTATION_QUERY_TIMEOUT,
                ) as session:
                    descriptor = fetch_table_descriptor(session, spec.schema, spec.table)

                    if args.script_only:
                        session.rollback()
                        plan = build_rotation_plan(descriptor, spec.date_column, retention)
                        scripts.append(render_rotation_script(
                            plan, database=job.target.database, drop_existing_backup=drop_backup,
                        ))
                        event.status = "SKIPPED"
                        event.event_detail = "script only"
                    else:
                        engine = RotationEngine(session, drop_existing_backup=drop_backup)
                        result = engine.rotate(
                            descriptor,
                            spec.date_column,
                            retention,
                            verify=spec.verify and not args.no_verify,
                        )
                        event.rows_processed = result.rows_retained
                        event.event_detail = f"backup={result.backup_table}, cutoff={result.cutoff.isoformat()}"
                        if result.verification is not None:
                            event.warnings = len(result.verification.warnings)
            succeeded += 1
        except (TableAdminError, ValueError):
            failed += 1
            logger.exception("Rotation of %s failed; no destructive change was made", table_label)

    if scripts:
        text = "\n".join(scripts)
        if args.output:
            Path(args.output).write_text(text, encoding="utf-8")
            logger.info("Wrote rotation script for %d table(s) to %s", len(scripts), args.output)
        else:
            print(text)

    sys.exit(cli_common.finish("Rotation", succeeded, failed, sql_handler))


if __name__ == "__main__":
    main()
