"""CLI common boilerplate: shared setup for the rotate/copy/compare/SSIS tools.

L-1: Centralizes sys.path, logging, the optional SQL Server log handler,
job-file loading and the end-of-run summary that every main_*.py needs.

Import this module BEFORE any other project imports in main_*.py files.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Ensure project root is on sys.path for imports
sys.path.insert(0, str(Path(__file__).parent))

import config
from connections import ServerTarget
from observability.event_tracker import OperationTracker, ensure_ops_tables
from observability.log_handler import SqlServerLogHandler
from orchestration.job_config import load_job_file

logger = logging.getLogger(__name__)


def log_target() -> ServerTarget | None:
    """Target for ops.* logging, or None when LOG_DATABASE is unset."""
    if not config.LOG_DATABASE or not config.SQL_SERVER_HOST:
        return None
    return ServerTarget.from_env(config.LOG_DATABASE, name="log")


def setup_logging(operation: str, verbose: bool = False) -> tuple[OperationTracker, SqlServerLogHandler | None]:
    """Configure logging: StreamHandler + SqlServerLogHandler when LOG_DATABASE is set.

    Args:
        operation: Tool name for log context (ROTATE, COPY, COMPARE, SSIS_ENV).
        verbose: Console at DEBUG instead of INFO.

    Returns:
        (tracker, sql_handler). sql_handler is None when SQL logging is off.
    """
    level = getattr(logging, config.LOG_LEVEL, logging.INFO)
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else level)

    # Console handler
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.DEBUG if verbose else logging.INFO)
    console.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s - %(message)s")
    )
    root.addHandler(console)

    target = log_target()
    tracker = OperationTracker(target)
    if target is None:
        logger.debug("LOG_DATABASE not set — SQL Server logging disabled")
        return tracker, None

    ensure_ops_tables(target)
    sql_handler = SqlServerLogHandler(target, level=level)
    sql_handler.set_context(run_id=tracker.run_id, operation=operation)
    root.addHandler(sql_handler)
    return tracker, sql_handler


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--job", type=str, required=True, help="Path to the JSON job file")
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG on the console")


def load_job(path: str, parse):
    """Load and parse a job file; ConfigurationMissing propagates to the caller."""
    data = load_job_file(path)
    return parse(data)


def log_connection_overhead() -> None:
    """P-3: Log cumulative connection overhead at run end."""
    from connections import get_connection_overhead
    total_ms, count = get_connection_overhead()
    if count > 0:
        logger.info(
            "P-3: Connection overhead: %.1f ms total across %d connections (%.1f ms avg)",
            total_ms, count, total_ms / count,
        )


def finish(operation: str, succeeded: int, failed: int, sql_handler: SqlServerLogHandler | None) -> int:
    """Log the run summary, flush SQL logging, return the process exit code."""
    log_connection_overhead()
    logger.info("%s complete: succeeded=%d, failed=%d", operation, succeeded, failed)
    if sql_handler is not None:
        sql_handler.flush()
    return 1 if failed > 0 else 0
