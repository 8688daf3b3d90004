"""SSIS catalog environment migration (SSISDB folders -> another server).

Reads every environment variable under the given catalog folders and renders
the catalog calls that recreate them elsewhere:

    catalog.create_folder              (if the folder is missing)
    catalog.create_environment         (if the environment is missing)
    catalog.create_environment_variable per variable

Literals are escaped and typed to match the variable's SSIS data type;
catalog.create_environment_variable rejects an NVARCHAR value for an Int32
variable, so numbers/booleans/dates are CAST into a sql_variant @value
declared ahead of each EXEC. Values are read as NVARCHAR(MAX); dates come
back in ISO 8601 (style 126) and floats with full precision (style 3).

Sensitive variables come back with a NULL value from the catalog view (the
value is encrypted); they are scripted with NULL and a warning so the
operator can set them by hand.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from connections import quote_string

if TYPE_CHECKING:
    from connections import SqlSession

logger = logging.getLogger(__name__)

_CATALOG = "[SSISDB].[catalog]"

# SSIS data type -> SQL type the @value sql_variant must carry.
_SQL_TYPE_BY_SSIS_TYPE = {
    "Boolean": "BIT",
    "Byte": "TINYINT",
    "Int16": "SMALLINT",
    "Int32": "INT",
    "Int64": "BIGINT",
    "SByte": "SMALLINT",
    "UInt32": "BIGINT",
    "UInt64": "DECIMAL(20,0)",
    "Single": "REAL",
    "Double": "FLOAT",
    "Decimal": "DECIMAL(38,18)",
    "DateTime": "DATETIME2",
}

_FETCH_QUERY = """
SELECT
    f.name AS folder_name,
    e.name AS environment_name,
    e.description AS environment_description,
    v.name AS variable_name,
    v.type AS data_type,
    CASE
        WHEN SQL_VARIANT_PROPERTY(v.value, 'BaseType')
                IN ('date', 'datetime', 'datetime2', 'smalldatetime', 'datetimeoffset')
            THEN CONVERT(NVARCHAR(MAX), CAST(v.value AS DATETIME2), 126)
        WHEN SQL_VARIANT_PROPERTY(v.value, 'BaseType') IN ('float', 'real')
            THEN CONVERT(NVARCHAR(MAX), CAST(v.value AS FLOAT), 3)
        ELSE CAST(v.value AS NVARCHAR(MAX))
    END AS value,
    v.sensitive,
    v.description
FROM [SSISDB].[catalog].[folders] f
JOIN [SSISDB].[catalog].[environments] e ON f.folder_id = e.folder_id
JOIN [SSISDB].[catalog].[environment_variables] v ON e.environment_id = v.environment_id
WHERE f.name IN ({placeholders})
ORDER BY f.name, e.name, v.name
"""

# ISO 8601 as CONVERT style 126 returns it (up to 7 fractional digits).
_ISO_DATETIME = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2})(?:[T ](?P<time>\d{2}:\d{2}(?::\d{2})?)(?:\.(?P<fraction>\d+))?)?$"
)


@dataclass(frozen=True)
class EnvironmentVariable:
    folder: str
    environment: str
    name: str
    data_type: str
    value: str | None
    sensitive: bool = False
    description: str | None = None
    environment_description: str | None = None


def fetch_environment_variables(session: SqlSession, folders: list[str]) -> list[EnvironmentVariable]:
    """Read environment variables for the given catalog folders."""
    if not folders:
        return []
    placeholders = ", ".join("?" for _ in folders)
    rows = session.execute(_FETCH_QUERY.format(placeholders=placeholders), *folders).rows
    variables = [
        EnvironmentVariable(
            folder=r[0],
            environment=r[1],
            environment_description=r[2],
            name=r[3],
            data_type=r[4],
            value=r[5],
            sensitive=bool(r[6]),
            description=r[7],
        )
        for r in rows
    ]
    logger.info(
        "Fetched %d environment variable(s) from folders %s",
        len(variables), ", ".join(folders),
    )
    return variables


def _parse_datetime(value: str) -> datetime:
    """Parse a catalog DateTime value: ISO 8601 or the server's default style."""
    text = value.strip()
    match = _ISO_DATETIME.match(text)
    if match:
        fraction = (match["fraction"] or "")[:6].ljust(6, "0")
        time_part = match["time"] or "00:00:00"
        if time_part.count(":") == 1:
            time_part += ":00"
        iso = f"{match['date']}T{time_part}.{fraction}"
        return datetime.fromisoformat(iso)
    # Style 0 (mon dd yyyy hh:miAM) has a padded day: "Jan  1 2024 12:00AM".
    try:
        return datetime.strptime(" ".join(text.split()), "%b %d %Y %I:%M%p")
    except ValueError:
        raise ValueError(f"Value {value!r} is not a valid DateTime") from None


def render_value(data_type: str, value: str | None) -> str:
    """Render @value as a literal of the type SSIS expects for data_type.

    Numbers are parsed before rendering so nothing but a numeric literal can
    reach the statement text.

    Raises:
        ValueError: The stored value does not parse as data_type.
    """
    if value is None:
        return "NULL"
    sql_type = _SQL_TYPE_BY_SSIS_TYPE.get(data_type)
    if sql_type is None:
        return quote_string(value)
    if data_type == "Boolean":
        flag = value.strip().lower() in ("1", "true")
        return f"CAST({1 if flag else 0} AS BIT)"
    if data_type == "DateTime":
        parsed = _parse_datetime(value)
        return f"CAST('{parsed:%Y-%m-%dT%H:%M:%S.%f}' AS DATETIME2)"
    try:
        number = Decimal(value.strip())
    except InvalidOperation:
        raise ValueError(f"Value {value!r} is not a valid {data_type}") from None
    if not number.is_finite():
        raise ValueError(f"Value {value!r} is not a valid {data_type}")
    return f"CAST({number} AS {sql_type})"


def _folder_statement(folder: str) -> str:
    return (
        f"IF NOT EXISTS (SELECT 1 FROM {_CATALOG}.[folders] WHERE name = {quote_string(folder)})\n"
        f"    EXEC {_CATALOG}.[create_folder] @folder_name = {quote_string(folder)}"
    )


def _environment_statement(folder: str, environment: str, description: str | None) -> str:
    return (
        f"IF NOT EXISTS (SELECT 1 FROM {_CATALOG}.[environments] e "
        f"JOIN {_CATALOG}.[folders] f ON f.folder_id = e.folder_id "
        f"WHERE f.name = {quote_string(folder)} AND e.name = {quote_string(environment)})\n"
        f"    EXEC {_CATALOG}.[create_environment] "
        f"@folder_name = {quote_string(folder)}, "
        f"@environment_name = {quote_string(environment)}, "
        f"@environment_description = {quote_string(description or '')}"
    )


def _variable_statement(var: EnvironmentVariable, folder: str) -> str:
    # EXEC accepts only constants and variables as parameter values.
    return (
        f"DECLARE @value sql_variant = {render_value(var.data_type, var.value)};\n"
        f"EXEC {_CATALOG}.[create_environment_variable] "
        f"@folder_name = {quote_string(folder)}, "
        f"@environment_name = {quote_string(var.environment)}, "
        f"@variable_name = {quote_string(var.name)}, "
        f"@data_type = {quote_string(var.data_type)}, "
        f"@sensitive = {1 if var.sensitive else 0}, "
        "@value = @value, "
        f"@description = {quote_string(var.description or '')}"
    )


def build_environment_statements(
    variables: list[EnvironmentVariable],
    folder_map: dict[str, str] | None = None,
) -> list[str]:
    """Statements that recreate the variables, folders renamed via folder_map."""
    folder_map = folder_map or {}
    statements: list[str] = []
    seen_folders: set[str] = set()
    seen_envs: set[tuple[str, str]] = set()

    for var in variables:
        folder = folder_map.get(var.folder, var.folder)
        if folder not in seen_folders:
            seen_folders.add(folder)
            statements.append(_folder_statement(folder))
        if (folder, var.environment) not in seen_envs:
            seen_envs.add((folder, var.environment))
            statements.append(
                _environment_statement(folder, var.environment, var.environment_description)
            )
        if var.sensitive and var.value is None:
            logger.warning(
                "Sensitive variable %s/%s/%s has no readable value — scripted as NULL, "
                "set it manually on the destination",
                folder, var.environment, var.name,
            )
        statements.append(_variable_statement(var, folder))
    return statements


def render_environment_script(
    variables: list[EnvironmentVariable],
    folder_map: dict[str, str] | None = None,
) -> str:
    """One batch per statement; each variable batch declares its own @value."""
    statements = build_environment_statements(variables, folder_map)
    return "".join(f"{s};\nGO\n" for s in statements)


def apply_environment_statements(session: SqlSession, statements: list[str]) -> int:
    """Execute the statements on the destination in one transaction.

    session must be opened with autocommit=False. Returns the statement count.
    """
    with session.transaction():
        for statement in statements:
            session.execute(statement)
    logger.info("Applied %d SSIS catalog statement(s)", len(statements))
    return len(statements)
