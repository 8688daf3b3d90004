"""CLI entry point for SSIS catalog environment migration.

Reads environment variables for the job's folders from the source SSISDB and
either writes the recreating script or applies it to the destination.

Usage:
    python3 main_ssis_env_copy.py --job jobs/ssis_env.json --output env.sql
    python3 main_ssis_env_copy.py --job jobs/ssis_env.json --apply
"""

from __future__ import annotations

# L-1: cli_common sets sys.path; it must be imported before any other project modules.
import cli_common

import argparse
import logging
import sys
from pathlib import Path

from connections import SqlSession
from errors import ConfigurationMissing, TableAdminError
from orchestration.job_config import parse_ssis_env_job
from ssis.env_variables import (
    apply_environment_statements,
    build_environment_statements,
    fetch_environment_variables,
    render_environment_script,
)

logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(description="Copy SSIS catalog environments between servers")
    cli_common.add_common_arguments(parser)
    parser.add_argument("--folder", action="append", help="Catalog folder to copy (repeatable; overrides the job)")
    parser.add_argument("--output", type=str, help="Write the script here (default: job output_path or stdout)")
    parser.add_argument("--apply", action="store_true", help="Execute the statements on the job's destination")
    args = parser.parse_args()

    tracker, sql_handler = cli_common.setup_logging("SSIS_ENV", verbose=args.verbose)

    try:
        job = cli_common.load_job(args.job, parse_ssis_env_job)
        if args.apply and job.destination is None:
            raise ConfigurationMissing("destination", "SSIS environment job (--apply)")
    except (TableAdminError, ValueError) as e:
        logger.error("Invalid SSIS environment job %s: %s", args.job, e)
        sys.exit(1)

    folders = args.folder or job.folders
    failed = 0
    try:
        with tracker.track("SSIS_ENV", ",".join(folders), server_label=job.source.label) as event:
            with SqlSession.open(job.source) as source:
                variables = fetch_environment_variables(source, folders)

            if not variables:
                logger.warning("No environment variables found in folders %s", folders)
            event.rows_processed = len(variables)
            event.warnings = sum(1 for v in variables if v.sensitive and v.value is None)

            if args.apply:
                statements = build_environment_statements(variables, job.folder_map)
                with SqlSession.open(job.destination, autocommit=False) as dest:
                    apply_environment_statements(dest, statements)
                event.event_detail = f"applied to {job.destination.label}"
            else:
                script = render_environment_script(variables, job.folder_map)
                output = Path(args.output) if args.output else job.output_path
                if output:
                    output.parent.mkdir(parents=True, exist_ok=True)
                    output.write_text(script, encoding="utf-8")
                    logger.info("Wrote SSIS environment script to %s", output)
                    event.event_detail = f"script={output}"
                else:
                    print(script)
    except (TableAdminError, ValueError):
        failed = 1
        logger.exception("SSIS environment copy failed for folders %s", folders)

    sys.exit(cli_common.finish("SSIS environment copy", 1 - failed, failed, sql_handler))


if __name__ == "__main__":
    main()
