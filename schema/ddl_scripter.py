"""Script CREATE TABLE / CREATE INDEX statements from a TableDescriptor.

Produces an equivalent table under a new name: same columns (types,
collation, nullability, identity, defaults), computed-column formulas,
check constraints, PK/UNIQUE constraints and indexes.

PK/UNIQUE constraint names are schema-scoped in SQL Server, so a copy in the
same schema must not reuse them. ``constraint_suffix`` appends a suffix to
each constraint name (rotation passes the shadow suffix and renames them
back after promotion). Defaults and check constraints are scripted unnamed
and get system-generated names.

Foreign keys, triggers and permissions are not scripted.
"""

from __future__ import annotations

import logging

from connections import quote_identifier, quote_table
from schema.metadata import ColumnDescriptor, IndexDescriptor, TableDescriptor

logger = logging.getLogger(__name__)

_MAX_NAME_LENGTH = 128

_ROWSTORE_TYPES = ("CLUSTERED", "NONCLUSTERED")
_COLUMNSTORE_TYPES = ("CLUSTERED COLUMNSTORE", "NONCLUSTERED COLUMNSTORE")


def suffixed_name(name: str, suffix: str) -> str:
    """Append suffix, trimming the base so the result fits in a sysname."""
    if not suffix:
        return name
    return name[: _MAX_NAME_LENGTH - len(suffix)] + suffix


def _column_ddl(col: ColumnDescriptor) -> str:
    name = quote_identifier(col.name)
    if col.is_computed:
        parts = [f"{name} AS {col.computed_definition}"]
        if col.is_persisted:
            parts.append("PERSISTED")
            if not col.is_nullable:
                parts.append("NOT NULL")
        return " ".join(parts)

    parts = [name, col.data_type]
    if col.collation_name:
        parts.append(f"COLLATE {col.collation_name}")
    if col.is_identity:
        seed = col.identity_seed if col.identity_seed is not None else 1
        increment = col.identity_increment if col.identity_increment is not None else 1
        parts.append(f"IDENTITY({seed},{increment})")
    parts.append("NULL" if col.is_nullable else "NOT NULL")
    if col.default_definition:
        parts.append(f"DEFAULT {col.default_definition}")
    return " ".join(parts)


def _key_list(index: IndexDescriptor) -> str:
    return ", ".join(
        f"{quote_identifier(c.name)} {'DESC' if c.is_descending else 'ASC'}"
        for c in index.key_columns
    )


def _constraint_ddl(index: IndexDescriptor, suffix: str) -> str:
    kind = "PRIMARY KEY" if index.is_primary_key else "UNIQUE"
    clustering = "CLUSTERED" if index.type_desc == "CLUSTERED" else "NONCLUSTERED"
    name = quote_identifier(suffixed_name(index.name, suffix))
    return f"CONSTRAINT {name} {kind} {clustering} ({_key_list(index)})"


def _index_ddl(index: IndexDescriptor, target: str) -> str | None:
    name = quote_identifier(index.name)
    if index.type_desc in _COLUMNSTORE_TYPES:
        if index.type_desc == "CLUSTERED COLUMNSTORE":
            return f"CREATE CLUSTERED COLUMNSTORE INDEX {name} ON {target}"
        cols = ", ".join(quote_identifier(c.name) for c in index.columns)
        return f"CREATE NONCLUSTERED COLUMNSTORE INDEX {name} ON {target} ({cols})"

    if index.type_desc not in _ROWSTORE_TYPES:
        logger.warning(
            "Index %s on %s has unsupported type %s — not scripted",
            index.name, target, index.type_desc,
        )
        return None

    unique = "UNIQUE " if index.is_unique else ""
    sql = f"CREATE {unique}{index.type_desc} INDEX {name} ON {target} ({_key_list(index)})"
    if index.included_columns:
        included = ", ".join(quote_identifier(c.name) for c in index.included_columns)
        sql += f" INCLUDE ({included})"
    if index.filter_definition:
        sql += f" WHERE {index.filter_definition}"
    return sql


def script_table_ddl(
    table: TableDescriptor,
    rename_to: str | None = None,
    constraint_suffix: str = "",
    schema: str | None = None,
) -> list[str]:
    """Build the statements that create a structural copy of ``table``.

    Args:
        table: Source structure.
        rename_to: Name of the new table (defaults to the source name).
        constraint_suffix: Appended to PK/UNIQUE constraint names.
        schema: Target schema (defaults to the source schema).

    Returns:
        CREATE TABLE statement followed by one CREATE INDEX per plain index.
    """
    target = quote_table(schema or table.schema, rename_to or table.name)

    lines = [f"    {_column_ddl(c)}" for c in table.columns]
    lines += [f"    CHECK {chk.definition}" for chk in table.check_constraints]
    lines += [
        f"    {_constraint_ddl(idx, constraint_suffix)}"
        for idx in table.indexes
        if idx.is_constraint
    ]
    statements = [f"CREATE TABLE {target} (\n" + ",\n".join(lines) + "\n)"]

    for idx in table.indexes:
        if idx.is_constraint:
            continue
        sql = _index_ddl(idx, target)
        if sql:
            statements.append(sql)

    return statements
