from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from connections import StatementResult
from ssis.env_variables import (
    EnvironmentVariable,
    apply_environment_statements,
    build_environment_statements,
    fetch_environment_variables,
    render_environment_script,
    render_value,
)


def _var(name="ConnStr", data_type="String", value="Data Source=sql01", **kwargs):
    defaults = dict(folder="TEST", environment="Default", description="")
    defaults.update(kwargs)
    return EnvironmentVariable(name=name, data_type=data_type, value=value, **defaults)


class TestRenderValue:

    @pytest.mark.parametrize("data_type, value, expected", [
        ("String", "it's", "N'it''s'"),
        ("Int32", "42", "CAST(42 AS INT)"),
        ("Int64", " -7 ", "CAST(-7 AS BIGINT)"),
        ("Decimal", "12.50", "CAST(12.50 AS DECIMAL(38,18))"),
        ("Boolean", "True", "CAST(1 AS BIT)"),
        ("Boolean", "0", "CAST(0 AS BIT)"),
        ("DateTime", "2024-03-01 08:30:00", "CAST('2024-03-01T08:30:00.000000' AS DATETIME2)"),
        ("DateTime", "2024-03-01T08:30:00.1234567", "CAST('2024-03-01T08:30:00.123456' AS DATETIME2)"),
        ("DateTime", "2024-03-01T08:30:00.5", "CAST('2024-03-01T08:30:00.500000' AS DATETIME2)"),
        ("DateTime", "Jan  1 2024 12:00AM", "CAST('2024-01-01T00:00:00.000000' AS DATETIME2)"),
        ("Double", "1.2345678901234567e+000", "CAST(1.2345678901234567 AS FLOAT)"),
        ("Double", "1.5e+010", "CAST(1.5E+10 AS FLOAT)"),
        ("String", None, "NULL"),
    ])
    def test_literals(self, data_type, value, expected):
        assert render_value(data_type, value) == expected

    @pytest.mark.parametrize("data_type, value", [
        ("Int32", "1; DROP TABLE x"),
        ("Double", "NaN"),
        ("DateTime", "yesterday"),
    ])
    def test_unparseable_value_rejected(self, data_type, value):
        with pytest.raises(ValueError):
            render_value(data_type, value)


class TestStatements:

    def test_folder_and_environment_created_once(self):
        statements = build_environment_statements([
            _var("A"), _var("B"), _var("C", environment="Nightly"),
        ])
        assert sum("create_folder" in s for s in statements) == 1
        assert sum("create_environment]" in s for s in statements) == 2
        assert sum("create_environment_variable" in s for s in statements) == 3
        assert statements[0].startswith("IF NOT EXISTS")

    def test_folder_map_renames_destination_folder(self):
        [folder, _, variable] = build_environment_statements([_var()], folder_map={"TEST": "PRO"})
        assert "@folder_name = N'PRO'" in folder
        assert "@folder_name = N'PRO'" in variable
        assert "N'TEST'" not in variable

    def test_variable_statement(self):
        statement = build_environment_statements([_var("Port", "Int32", "1433", sensitive=False)])[-1]
        assert statement == (
            "DECLARE @value sql_variant = CAST(1433 AS INT);\n"
            "EXEC [SSISDB].[catalog].[create_environment_variable] "
            "@folder_name = N'TEST', @environment_name = N'Default', "
            "@variable_name = N'Port', @data_type = N'Int32', @sensitive = 0, "
            "@value = @value, @description = N''"
        )

    @pytest.mark.parametrize("data_type, value", [
        ("Boolean", "True"),
        ("DateTime", "2024-03-01T08:30:00"),
        ("Decimal", "12.5"),
        ("String", "x"),
    ])
    def test_exec_parameters_are_never_expressions(self, data_type, value):
        statement = build_environment_statements([_var("V", data_type, value)])[-1]
        declare, exec_line = statement.split("\n")
        assert declare.startswith("DECLARE @value sql_variant = ")
        assert "CAST(" not in exec_line
        assert "@value = @value" in exec_line

    def test_sensitive_without_value_warns(self, caplog):
        statement = build_environment_statements([_var("Pwd", value=None, sensitive=True)])[-1]
        assert "@sensitive = 1" in statement
        assert statement.startswith("DECLARE @value sql_variant = NULL;")
        assert "set it manually" in caplog.text

    def test_script_runs_each_statement_as_its_own_batch(self):
        script = render_environment_script([_var("A"), _var("B")])
        assert script.count(";\nGO\n") == 4
        assert script.count("DECLARE @value") == 2


def test_fetch_binds_folder_names():
    session = MagicMock()
    session.execute.return_value = StatementResult(
        rows=[("TEST", "Default", "env", "Port", "Int32", "1433", False, "port")],
        rowcount=-1,
    )
    [var] = fetch_environment_variables(session, ["TEST", "PRO"])
    sql, *params = session.execute.call_args.args
    assert "WHERE f.name IN (?, ?)" in sql
    assert "CAST(v.value AS NVARCHAR(MAX))" in sql
    assert "NVARCHAR(4000)" not in sql
    assert "CAST(v.value AS DATETIME2), 126)" in sql
    assert "CAST(v.value AS FLOAT), 3)" in sql
    assert params == ["TEST", "PRO"]
    assert var == EnvironmentVariable(
        folder="TEST", environment="Default", name="Port", data_type="Int32",
        value="1433", sensitive=False, description="port", environment_description="env",
    )


def test_fetch_without_folders_skips_query():
    session = MagicMock()
    assert fetch_environment_variables(session, []) == []
    session.execute.assert_not_called()


def test_apply_runs_in_one_transaction():
    session = MagicMock()
    count = apply_environment_statements(session, ["S1", "S2"])
    assert count == 2
    session.transaction.assert_called_once()
    assert [c.args[0] for c in session.execute.call_args_list] == ["S1", "S2"]
