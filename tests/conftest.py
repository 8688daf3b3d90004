"""Shared fixtures: an in-memory stand-in for SqlSession plus descriptor builders.

FakeSession understands exactly the statement shapes the rotation and copy
engines emit (scripted CREATE TABLE, INSERT ... SELECT with a date cutoff,
IDENTITY_INSERT, identity reseeds, sp_getapplock, MIN(date)) and keeps
tables as lists of dict rows. Transactions snapshot the whole catalog and
restore it on rollback.
"""

from __future__ import annotations

import copy
import re
import sys
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

import pytest

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from connections import StatementResult
from errors import StatementError
from schema.metadata import ColumnDescriptor, IndexColumn, IndexDescriptor, TableDescriptor

_CREATE_TABLE = re.compile(r"CREATE TABLE \[(?P<schema>[^\]]+)\]\.\[(?P<table>[^\]]+)\] \(\n(?P<body>.*)\n\)", re.S)
_COLUMN_LINE = re.compile(r"^\s{4}\[(?P<name>[^\]]+)\] (?P<rest>.*)$")
_CONSTRAINT = re.compile(r"CONSTRAINT \[(?P<name>[^\]]+)\]")
_INSERT_SELECT = re.compile(
    r"INSERT INTO \[(?P<schema>[^\]]+)\]\.\[(?P<dest>[^\]]+)\] \((?P<cols>[^)]*)\) "
    r"SELECT (?P=cols) FROM \[[^\]]+\]\.\[(?P<src>[^\]]+)\] WHERE \[(?P<date>[^\]]+)\] >= \?"
)
_INSERT_VALUES = re.compile(r"INSERT INTO \[(?P<schema>[^\]]+)\]\.\[(?P<dest>[^\]]+)\] \((?P<cols>[^)]*)\) VALUES")
_SELECT_FROM = re.compile(r"SELECT (?P<cols>.+?) FROM \[(?P<schema>[^\]]+)\]\.\[(?P<table>[^\]]+)\]")
_MIN = re.compile(r"SELECT MIN\(\[(?P<col>[^\]]+)\]\) FROM \[(?P<schema>[^\]]+)\]\.\[(?P<table>[^\]]+)\]")
_IDENTITY_INSERT = re.compile(r"SET IDENTITY_INSERT \[[^\]]+\]\.\[(?P<table>[^\]]+)\] (?P<mode>ON|OFF)")
_IDENTITY_SPEC = re.compile(r"IDENTITY\((?P<seed>-?\d+),(?P<increment>-?\d+)\)")
_IDENTITY_COLUMNS = re.compile(r"FROM sys.identity_columns WHERE object_id = OBJECT_ID\(\?\)")
_QUOTED_TABLE = re.compile(r"^\[(?P<schema>[^\]]+)\]\.\[(?P<table>[^\]]+)\]$")
_CHECKIDENT = re.compile(
    r"DBCC CHECKIDENT \(N'\[(?P<schema>[^\]]+)\]\.\[(?P<table>[^\]]+)\]', RESEED, (?P<value>-?\d+)\)"
)
_ROW_VERSION_TYPES = ("TIMESTAMP", "ROWVERSION")


def _split_columns(cols: str) -> list[str]:
    return [c.strip()[1:-1] for c in cols.split(",")]


class FakeSession:
    """In-memory session with the SqlSession surface used by the engines."""

    def __init__(self, database: str = "TestDb") -> None:
        self.database = database
        self.tables: dict[tuple[str, str], dict] = {}
        # (schema, constraint name) -> owning table name
        self.constraints: dict[tuple[str, str], str] = {}
        self.statements: list[str] = []
        self.identity_insert: set[str] = set()
        self.lock_status = 0
        self.fail_on: str | None = None
        self.fail_on_rename: str | None = None
        self.commits = 0
        self.rollbacks = 0
        self._snapshot = None

    # --- Test setup ---

    def add_table(self, descriptor: TableDescriptor, rows: list[dict] | None = None) -> None:
        identity = next((c for c in descriptor.columns if c.is_identity), None)
        table = {
            "columns": [c.name for c in descriptor.columns],
            "generated": {c.name for c in descriptor.columns if not c.is_data_column},
            "rows": [dict(r) for r in rows or []],
            "identity": identity.name if identity else None,
            "identity_increment": (identity.identity_increment or 1) if identity else None,
            "identity_last": None,
            "reseed": None,
        }
        self.tables[(descriptor.schema, descriptor.name)] = table
        self._track_identity(table, table["rows"])
        for idx in descriptor.indexes:
            if idx.is_constraint:
                self.constraints[(descriptor.schema, idx.name)] = descriptor.name

    def rows(self, schema: str, table: str) -> list[dict]:
        return self.tables[(schema, table)]["rows"]

    def names(self) -> set[str]:
        return {name for _, name in self.tables}

    def identity_last(self, schema: str, table: str):
        return self.tables[(schema, table)]["identity_last"]

    def reseed_value(self, schema: str, table: str):
        return self.tables[(schema, table)]["reseed"]

    @staticmethod
    def _track_identity(table: dict, rows: list[dict]) -> None:
        ids = [r[table["identity"]] for r in rows if table["identity"] in r]
        if ids:
            last = table["identity_last"]
            table["identity_last"] = max(ids) if last is None else max(last, *ids)

    def _reject_generated(self, table: dict, cols: list[str]) -> None:
        bad = [c for c in cols if c in table["generated"]]
        if bad:
            raise StatementError(f"Cannot insert an explicit value into column(s) {bad}")

    def _fail_if_requested(self, sql: str) -> None:
        if self.fail_on and self.fail_on in sql:
            raise StatementError(f"Injected failure on: {self.fail_on}", sql=sql)

    # --- Statements ---

    def execute(self, sql: str, *params) -> StatementResult:
        self.statements.append(sql)
        self._fail_if_requested(sql)

        if "sp_getapplock" in sql:
            return StatementResult(rows=[(self.lock_status,)], rowcount=-1)

        match = _CREATE_TABLE.search(sql)
        if match:
            return self._create_table(match)

        match = _IDENTITY_INSERT.search(sql)
        if match:
            if match["mode"] == "ON":
                self.identity_insert.add(match["table"])
            else:
                self.identity_insert.discard(match["table"])
            return StatementResult(rows=[], rowcount=-1)

        match = _INSERT_SELECT.search(sql)
        if match:
            return self._insert_select(match, params[0])

        match = _IDENTITY_COLUMNS.search(sql)
        if match:
            name = _QUOTED_TABLE.match(params[0])
            table = self.tables.get((name["schema"], name["table"]))
            if table is None or table["identity"] is None:
                return StatementResult(rows=[], rowcount=-1)
            return StatementResult(
                rows=[(table["identity_last"], table["identity_increment"])], rowcount=-1,
            )

        match = _CHECKIDENT.search(sql)
        if match:
            table = self.tables[(match["schema"], match["table"])]
            table["reseed"] = int(match["value"])
            table["identity_last"] = int(match["value"])
            return StatementResult(rows=[], rowcount=-1)

        match = _MIN.search(sql)
        if match:
            values = [r[match["col"]] for r in self.rows(match["schema"], match["table"])
                      if r.get(match["col"]) is not None]
            return StatementResult(rows=[(min(values) if values else None,)], rowcount=-1)

        if sql.startswith("CREATE"):
            # Plain CREATE INDEX: nothing to emulate.
            return StatementResult(rows=[], rowcount=-1)

        raise AssertionError(f"FakeSession cannot emulate: {sql}")

    def _create_table(self, match) -> StatementResult:
        key = (match["schema"], match["table"])
        if key in self.tables:
            raise StatementError(f"There is already an object named {match['table']}")
        columns, generated = [], set()
        identity, increment = None, None
        for line in match["body"].splitlines():
            col = _COLUMN_LINE.match(line)
            if col:
                columns.append(col["name"])
                rest = col["rest"]
                if rest.startswith("AS ") or rest.upper().startswith(_ROW_VERSION_TYPES):
                    generated.add(col["name"])
                spec = _IDENTITY_SPEC.search(rest)
                if spec:
                    identity, increment = col["name"], int(spec["increment"])
        for name in _CONSTRAINT.findall(match["body"]):
            if (match["schema"], name) in self.constraints:
                raise StatementError(f"There is already an object named {name}")
            self.constraints[(match["schema"], name)] = match["table"]
        self.tables[key] = {
            "columns": columns,
            "generated": generated,
            "rows": [],
            "identity": identity,
            "identity_increment": increment,
            "identity_last": None,
            "reseed": None,
        }
        return StatementResult(rows=[], rowcount=-1)

    def _insert_select(self, match, cutoff: datetime) -> StatementResult:
        schema = match["schema"]
        cols = _split_columns(match["cols"])
        dest = self.tables[(schema, match["dest"])]
        self._reject_generated(dest, cols)
        copied = [
            {c: r[c] for c in cols}
            for r in self.rows(schema, match["src"])
            if r[match["date"]] is not None and r[match["date"]] >= cutoff
        ]
        dest["rows"].extend(copied)
        self._track_identity(dest, copied)
        return StatementResult(rows=[], rowcount=len(copied))

    def executemany(self, sql: str, rows: list[tuple]) -> int:
        self.statements.append(sql)
        self._fail_if_requested(sql)
        match = _INSERT_VALUES.search(sql)
        cols = _split_columns(match["cols"])
        dest = self.tables[(match["schema"], match["dest"])]
        self._reject_generated(dest, cols)
        inserted = [dict(zip(cols, r)) for r in rows]
        dest["rows"].extend(inserted)
        self._track_identity(dest, inserted)
        return len(rows)

    def iter_batches(self, sql: str, batch_size: int, *params):
        self.statements.append(sql)
        match = _SELECT_FROM.search(sql)
        cols = _split_columns(match["cols"])
        rows = [tuple(r[c] for c in cols) for r in self.rows(match["schema"], match["table"])]
        for i in range(0, len(rows), batch_size):
            yield rows[i:i + batch_size]

    # --- Object helpers ---

    def table_exists(self, schema: str, table: str) -> bool:
        return (schema, table) in self.tables

    def drop_table(self, schema: str, table: str) -> None:
        self.statements.append(f"DROP {schema}.{table}")
        self.tables.pop((schema, table), None)
        self.constraints = {k: v for k, v in self.constraints.items() if k[0] != schema or v != table}

    def rename_table(self, schema: str, old_name: str, new_name: str) -> None:
        self.statements.append(f"RENAME {old_name} -> {new_name}")
        if self.fail_on_rename == old_name:
            raise StatementError(f"Injected rename failure on {old_name}")
        if (schema, old_name) not in self.tables:
            raise StatementError(f"No item by the name of {old_name}")
        if (schema, new_name) in self.tables:
            raise StatementError(f"There is already an object named {new_name}")
        self.tables[(schema, new_name)] = self.tables.pop((schema, old_name))
        for k, owner in self.constraints.items():
            if k[0] == schema and owner == old_name:
                self.constraints[k] = new_name

    def rename_constraint(self, schema: str, old_name: str, new_name: str) -> None:
        self.statements.append(f"RENAME CONSTRAINT {old_name} -> {new_name}")
        if (schema, old_name) not in self.constraints:
            raise StatementError(f"No item by the name of {old_name}")
        if (schema, new_name) in self.constraints:
            raise StatementError(f"There is already an object named {new_name}")
        owner = self.constraints.pop((schema, old_name))
        self.constraints[(schema, new_name)] = owner

    def count_rows(self, schema: str, table: str, where: str | None = None) -> int:
        return len(self.rows(schema, table))

    # --- Transactions ---

    def _take_snapshot(self) -> None:
        self._snapshot = copy.deepcopy((self.tables, self.constraints))

    def commit(self) -> None:
        self.commits += 1
        self._snapshot = None

    def rollback(self) -> None:
        self.rollbacks += 1
        if self._snapshot is not None:
            self.tables, self.constraints = self._snapshot
            self._snapshot = None

    @contextmanager
    def transaction(self):
        self._take_snapshot()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        else:
            self.commit()


def col(name: str, data_type: str = "INT", **kwargs) -> ColumnDescriptor:
    return ColumnDescriptor(name=name, data_type=data_type, **kwargs)


def pk(name: str, *columns: str, clustered: bool = True) -> IndexDescriptor:
    return IndexDescriptor(
        name=name,
        is_unique=True,
        columns=tuple(IndexColumn(c) for c in columns),
        is_primary_key=True,
        type_desc="CLUSTERED" if clustered else "NONCLUSTERED",
    )


def audit_log_table(name: str = "AuditLog", schema: str = "dbo") -> TableDescriptor:
    """Id (identity PK), CreatedAt, Payload, and a persisted computed PayloadLength."""
    return TableDescriptor(
        schema=schema,
        name=name,
        columns=(
            col("Id", "BIGINT", is_identity=True, identity_seed=1, identity_increment=1,
                is_nullable=False, ordinal_position=1),
            col("CreatedAt", "DATETIME2(7)", is_nullable=False, ordinal_position=2),
            col("Payload", "NVARCHAR(200)", ordinal_position=3),
            col("PayloadLength", "INT", is_computed=True, is_persisted=True,
                computed_definition="(len([Payload]))", ordinal_position=4),
        ),
        indexes=(pk("PK_AuditLog", "Id"),),
    )


NOW = datetime(2024, 6, 30, 12, 0, 0)


def audit_rows() -> list[dict]:
    return [
        {"Id": 1, "CreatedAt": datetime(2024, 1, 1), "Payload": "old", "PayloadLength": 3},
        {"Id": 2, "CreatedAt": datetime(2024, 5, 1), "Payload": "older", "PayloadLength": 5},
        {"Id": 3, "CreatedAt": datetime(2024, 6, 1), "Payload": "edge", "PayloadLength": 4},
        {"Id": 4, "CreatedAt": datetime(2024, 6, 20), "Payload": "recent", "PayloadLength": 6},
        {"Id": 5, "CreatedAt": datetime(2024, 6, 30, 11), "Payload": "newest", "PayloadLength": 6},
    ]


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def audit_session(fake_session) -> FakeSession:
    fake_session.add_table(audit_log_table(), audit_rows())
    return fake_session
