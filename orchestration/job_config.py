"""Job files: JSON descriptions of what a tool run should do.

Each CLI accepts ``--job path.json`` plus command-line overrides. Required
fields are checked here, before any connection is opened; a missing one
raises ConfigurationMissing.

Server targets::

    {"host": "sql01", "database": "Sales", "port": 1433,
     "user": "svc_admin", "password_env": "SALES_SQL_PASSWORD"}

``password_env`` names an environment variable (loaded from the .env file)
so passwords stay out of job files. Omitted host/port/user fall back to the
SQL_SERVER_* defaults; omitting user means integrated authentication.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import config
from connections import ServerTarget
from errors import ConfigurationMissing

logger = logging.getLogger(__name__)


def _require(data: dict, key: str, context: str) -> Any:
    value = data.get(key)
    if value is None or value == "":
        raise ConfigurationMissing(key, context)
    return value


def load_job_file(path: str | Path) -> dict:
    path = Path(path)
    if not path.exists():
        raise ConfigurationMissing("job file", str(path))
    data = json.loads(path.read_text(encoding="utf-8"))
    logger.debug("Loaded job file %s", path)
    return data


def parse_target(data: dict | None, context: str) -> ServerTarget:
    if not data:
        raise ConfigurationMissing("server target", context)
    host = data.get("host") or config.SQL_SERVER_HOST
    if not host:
        raise ConfigurationMissing("host", context)
    database = _require(data, "database", context)

    password = data.get("password", "")
    if data.get("password_env"):
        password = os.getenv(data["password_env"], "")
        if not password:
            raise ConfigurationMissing(data["password_env"], f"{context} (environment)")

    user = data.get("user", config.SQL_SERVER_USER)
    if user == config.SQL_SERVER_USER and not password:
        password = config.SQL_SERVER_PASSWORD

    return ServerTarget(
        host=host,
        database=database,
        port=int(data.get("port", config.SQL_SERVER_PORT)),
        user=user,
        password=password,
        trusted=bool(data.get("trusted", config.SQL_SERVER_TRUSTED)),
        name=data.get("name", ""),
    )


# ---------------------------------------------------------------------------
# Rotation
# ---------------------------------------------------------------------------

@dataclass
class RotationTableSpec:
    schema: str
    table: str
    date_column: str
    retention_days: int
    drop_existing_backup: bool = False
    verify: bool = True


@dataclass
class RotationJob:
    target: ServerTarget
    tables: list[RotationTableSpec] = field(default_factory=list)


def parse_rotation_job(data: dict) -> RotationJob:
    """``{"target": {...}, "tables": [{"schema", "table", "date_column", "retention_days"}]}``"""
    target = parse_target(data.get("target"), "rotation job target")
    tables_data = data.get("tables")
    if not tables_data:
        raise ConfigurationMissing("tables", "rotation job")

    tables = []
    for i, t in enumerate(tables_data):
        context = f"rotation job tables[{i}]"
        retention = _require(t, "retention_days", context)
        tables.append(RotationTableSpec(
            schema=t.get("schema", "dbo"),
            table=_require(t, "table", context),
            date_column=_require(t, "date_column", context),
            retention_days=int(retention),
            drop_existing_backup=bool(t.get("drop_existing_backup", data.get("drop_existing_backup", False))),
            verify=bool(t.get("verify", True)),
        ))
    return RotationJob(target=target, tables=tables)


# ---------------------------------------------------------------------------
# Copy
# ---------------------------------------------------------------------------

@dataclass
class CopyTableSpec:
    schema: str
    table: str
    dest_schema: str | None = None
    dest_table: str | None = None
    where: str | None = None


@dataclass
class CopyJob:
    source: ServerTarget
    destination: ServerTarget
    tables: list[CopyTableSpec] = field(default_factory=list)
    drop_if_exists: bool = False
    batch_size: int = config.COPY_BATCH_SIZE


def parse_copy_job(data: dict) -> CopyJob:
    source = parse_target(data.get("source"), "copy job source")
    destination = parse_target(data.get("destination"), "copy job destination")
    tables_data = data.get("tables")
    if not tables_data:
        raise ConfigurationMissing("tables", "copy job")

    tables = []
    for i, t in enumerate(tables_data):
        context = f"copy job tables[{i}]"
        tables.append(CopyTableSpec(
            schema=t.get("schema", "dbo"),
            table=_require(t, "table", context),
            dest_schema=t.get("dest_schema"),
            dest_table=t.get("dest_table"),
            where=t.get("where"),
        ))
    return CopyJob(
        source=source,
        destination=destination,
        tables=tables,
        drop_if_exists=bool(data.get("drop_if_exists", False)),
        batch_size=int(data.get("batch_size", config.COPY_BATCH_SIZE)),
    )


# ---------------------------------------------------------------------------
# Compare
# ---------------------------------------------------------------------------

@dataclass
class CompareJob:
    left: ServerTarget
    right: ServerTarget
    schema: str
    table: str
    primary_key: str
    right_schema: str | None = None
    right_table: str | None = None
    columns: list[str] | None = None
    where: str | None = None
    output_path: Path | None = None
    symmetric: bool = False
    structure: bool = True
    vectorized: bool = False


def parse_compare_job(data: dict) -> CompareJob:
    context = "compare job"
    table = _require(data, "table", context)
    output = data.get("output_path")
    return CompareJob(
        left=parse_target(data.get("left"), "compare job left"),
        right=parse_target(data.get("right"), "compare job right"),
        schema=data.get("schema", "dbo"),
        table=table,
        primary_key=_require(data, "primary_key", context),
        right_schema=data.get("right_schema"),
        right_table=data.get("right_table"),
        columns=data.get("columns"),
        where=data.get("where"),
        output_path=Path(output) if output else config.REPORT_OUTPUT_DIR / f"{table}_diff.csv",
        symmetric=bool(data.get("symmetric", False)),
        structure=bool(data.get("structure", True)),
        vectorized=bool(data.get("vectorized", False)),
    )


# ---------------------------------------------------------------------------
# SSIS environments
# ---------------------------------------------------------------------------

@dataclass
class SsisEnvJob:
    source: ServerTarget
    folders: list[str]
    destination: ServerTarget | None = None
    folder_map: dict[str, str] = field(default_factory=dict)
    output_path: Path | None = None


def parse_ssis_env_job(data: dict) -> SsisEnvJob:
    folders = data.get("folders")
    if not folders:
        raise ConfigurationMissing("folders", "SSIS environment job")
    destination = data.get("destination")
    output = data.get("output_path")
    return SsisEnvJob(
        source=parse_target(data.get("source"), "SSIS environment job source"),
        folders=list(folders),
        destination=parse_target(destination, "SSIS environment job destination") if destination else None,
        folder_map=dict(data.get("folder_map", {})),
        output_path=Path(output) if output else None,
    )
