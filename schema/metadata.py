"""Table structure snapshots read from SQL Server catalog views.

TableDescriptor / ColumnDescriptor / IndexDescriptor are immutable snapshots
fetched once per operation. They drive DDL scripting (schema/ddl_scripter.py),
the rotation INSERT column list, and the structural comparator
(diff/structure.py).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from connections import quote_table
from errors import ColumnNotFound, TableNotFound

if TYPE_CHECKING:
    from connections import SqlSession

logger = logging.getLogger(__name__)

# Types whose max_length is reported in bytes but declared in characters.
_UNICODE_TYPES = ("nchar", "nvarchar")
_LENGTH_TYPES = ("char", "varchar", "binary", "varbinary") + _UNICODE_TYPES
_PRECISION_SCALE_TYPES = ("decimal", "numeric")
_SCALE_ONLY_TYPES = ("datetime2", "datetimeoffset", "time")
_ROW_VERSION_TYPES = ("TIMESTAMP", "ROWVERSION")


@dataclass(frozen=True)
class ColumnDescriptor:
    """One column of a table.

    A column is either a data column (listed in INSERT column lists) or one
    whose value the engine generates on write: computed columns and
    rowversion (timestamp) columns are never inserted.
    """

    name: str
    data_type: str
    is_computed: bool = False
    is_persisted: bool = False
    computed_definition: str | None = None
    is_nullable: bool = True
    is_identity: bool = False
    identity_seed: int | None = None
    identity_increment: int | None = None
    default_definition: str | None = None
    collation_name: str | None = None
    ordinal_position: int = 0

    @property
    def is_row_version(self) -> bool:
        return self.data_type.upper() in _ROW_VERSION_TYPES

    @property
    def is_data_column(self) -> bool:
        return not self.is_computed and not self.is_row_version


@dataclass(frozen=True)
class IndexColumn:
    name: str
    is_included: bool = False
    is_descending: bool = False


@dataclass(frozen=True)
class IndexDescriptor:
    name: str
    is_unique: bool
    columns: tuple[IndexColumn, ...] = ()
    is_primary_key: bool = False
    is_unique_constraint: bool = False
    type_desc: str = "NONCLUSTERED"
    filter_definition: str | None = None

    @property
    def is_constraint(self) -> bool:
        """PK and UNIQUE constraints are schema-scoped objects, plain indexes are not."""
        return self.is_primary_key or self.is_unique_constraint

    @property
    def key_columns(self) -> tuple[IndexColumn, ...]:
        return tuple(c for c in self.columns if not c.is_included)

    @property
    def included_columns(self) -> tuple[IndexColumn, ...]:
        return tuple(c for c in self.columns if c.is_included)


@dataclass(frozen=True)
class CheckConstraint:
    name: str
    definition: str


@dataclass(frozen=True)
class TableDescriptor:
    """Schema-qualified table with its ordered columns, indexes and checks."""

    schema: str
    name: str
    columns: tuple[ColumnDescriptor, ...]
    indexes: tuple[IndexDescriptor, ...] = field(default_factory=tuple)
    check_constraints: tuple[CheckConstraint, ...] = field(default_factory=tuple)

    @property
    def qualified_name(self) -> str:
        return quote_table(self.schema, self.name)

    @property
    def data_columns(self) -> list[ColumnDescriptor]:
        return [c for c in self.columns if c.is_data_column]

    @property
    def computed_columns(self) -> list[ColumnDescriptor]:
        return [c for c in self.columns if c.is_computed]

    @property
    def has_identity_data_column(self) -> bool:
        return any(c.is_identity for c in self.data_columns)

    def has_column(self, name: str) -> bool:
        return any(c.name.lower() == name.lower() for c in self.columns)

    def column(self, name: str) -> ColumnDescriptor:
        """Case-insensitive lookup (SQL Server default collation semantics).

        Raises:
            ColumnNotFound: If no column has that name.
        """
        for c in self.columns:
            if c.name.lower() == name.lower():
                return c
        raise ColumnNotFound(name, self.qualified_name)


def format_data_type(
    type_name: str,
    max_length: int | None,
    precision: int | None,
    scale: int | None,
) -> str:
    """Render the declared type from sys.columns parts (e.g. NVARCHAR(50), DECIMAL(18,2))."""
    lower = type_name.lower()
    upper = type_name.upper()
    if lower in _LENGTH_TYPES:
        if max_length == -1 or max_length is None:
            return f"{upper}(MAX)"
        length = max_length // 2 if lower in _UNICODE_TYPES else max_length
        return f"{upper}({length})"
    if lower in _PRECISION_SCALE_TYPES:
        p = precision or 18
        s = scale or 0
        return f"{upper}({p},{s})"
    if lower in _SCALE_ONLY_TYPES and scale is not None:
        return f"{upper}({scale})"
    return upper


_COLUMNS_QUERY = """
SELECT
    c.column_id,
    c.name,
    TYPE_NAME(c.user_type_id) AS type_name,
    c.max_length,
    c.precision,
    c.scale,
    c.is_nullable,
    c.is_identity,
    c.is_computed,
    cc.definition AS computed_definition,
    cc.is_persisted,
    CAST(ic.seed_value AS BIGINT) AS seed_value,
    CAST(ic.increment_value AS BIGINT) AS increment_value,
    dc.definition AS default_definition,
    c.collation_name
FROM sys.columns c
LEFT JOIN sys.computed_columns cc
    ON cc.object_id = c.object_id AND cc.column_id = c.column_id
LEFT JOIN sys.identity_columns ic
    ON ic.object_id = c.object_id AND ic.column_id = c.column_id
LEFT JOIN sys.default_constraints dc
    ON dc.parent_object_id = c.object_id AND dc.parent_column_id = c.column_id
WHERE c.object_id = OBJECT_ID(?, 'U')
ORDER BY c.column_id
"""

_INDEXES_QUERY = """
SELECT
    i.index_id,
    i.name,
    i.is_unique,
    i.is_primary_key,
    i.is_unique_constraint,
    i.type_desc,
    i.filter_definition,
    COL_NAME(ic.object_id, ic.column_id) AS column_name,
    ic.is_included_column,
    ic.is_descending_key
FROM sys.indexes i
JOIN sys.index_columns ic
    ON ic.object_id = i.object_id AND ic.index_id = i.index_id
WHERE i.object_id = OBJECT_ID(?, 'U')
  AND i.type > 0
  AND i.is_hypothetical = 0
ORDER BY i.index_id, ic.is_included_column, ic.key_ordinal, ic.index_column_id
"""

_CHECKS_QUERY = """
SELECT name, definition
FROM sys.check_constraints
WHERE parent_object_id = OBJECT_ID(?, 'U')
ORDER BY name
"""


def _build_columns(rows: list[tuple]) -> tuple[ColumnDescriptor, ...]:
    return tuple(
        ColumnDescriptor(
            name=row[1],
            data_type=format_data_type(row[2], row[3], row[4], row[5]),
            is_computed=bool(row[8]),
            is_persisted=bool(row[10]),
            computed_definition=row[9],
            is_nullable=bool(row[6]),
            is_identity=bool(row[7]),
            identity_seed=row[11],
            identity_increment=row[12],
            default_definition=row[13],
            collation_name=row[14],
            ordinal_position=row[0],
        )
        for row in rows
    )


def _build_indexes(rows: list[tuple]) -> tuple[IndexDescriptor, ...]:
    grouped: dict[int, dict] = {}
    for row in rows:
        entry = grouped.setdefault(row[0], {
            "name": row[1],
            "is_unique": bool(row[2]),
            "is_primary_key": bool(row[3]),
            "is_unique_constraint": bool(row[4]),
            "type_desc": row[5],
            "filter_definition": row[6],
            "columns": [],
        })
        entry["columns"].append(
            IndexColumn(name=row[7], is_included=bool(row[8]), is_descending=bool(row[9]))
        )
    return tuple(
        IndexDescriptor(
            name=e["name"],
            is_unique=e["is_unique"],
            columns=tuple(e["columns"]),
            is_primary_key=e["is_primary_key"],
            is_unique_constraint=e["is_unique_constraint"],
            type_desc=e["type_desc"],
            filter_definition=e["filter_definition"],
        )
        for e in grouped.values()
    )


def fetch_table_descriptor(session: SqlSession, schema: str, table: str) -> TableDescriptor:
    """Read columns, indexes and check constraints for schema.table.

    Raises:
        TableNotFound: If the table does not exist in the session's database.
    """
    object_name = quote_table(schema, table)
    column_rows = session.execute(_COLUMNS_QUERY, object_name).rows
    if not column_rows:
        raise TableNotFound(schema, table)

    index_rows = session.execute(_INDEXES_QUERY, object_name).rows
    check_rows = session.execute(_CHECKS_QUERY, object_name).rows

    descriptor = TableDescriptor(
        schema=schema,
        name=table,
        columns=_build_columns(column_rows),
        indexes=_build_indexes(index_rows),
        check_constraints=tuple(CheckConstraint(name=r[0], definition=r[1]) for r in check_rows),
    )
    logger.debug(
        "Fetched %s: %d columns (%d computed), %d indexes, %d check constraints",
        object_name, len(descriptor.columns), len(descriptor.computed_columns),
        len(descriptor.indexes), len(descriptor.check_constraints),
    )
    return descriptor
