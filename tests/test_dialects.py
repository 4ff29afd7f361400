"""
Dialects - Unit Tests

SQL Server and PostgreSQL are exercised with mocked connections and cursors;
no server is needed.
"""

import sqlite3
import sys
from types import SimpleNamespace
from unittest.mock import MagicMock, Mock, patch

import pytest

from dbxfer.core.config import Settings
from dbxfer.core.errors import DbConnectionError, SourceError
from dbxfer.core.models import AuthenticationType, ConnectionParams
from dbxfer.tools.dialects import get_dialect
from dbxfer.tools.dialects.mssql import MssqlDialect, build_connection_string
from dbxfer.tools.dialects.postgres import PostgresDialect


def mock_conn(rows=None, description=None):
    cursor = Mock()
    cursor.fetchall.return_value = rows or []
    cursor.fetchone.return_value = (rows or [None])[0]
    cursor.description = description
    conn = Mock()
    conn.cursor.return_value = cursor
    return conn, cursor


class TestRegistry:
    def test_shared_instances(self):
        assert get_dialect("mssql") is get_dialect("mssql")
        assert isinstance(get_dialect("postgres"), PostgresDialect)

    def test_unknown(self):
        with pytest.raises(ValueError):
            get_dialect("oracle")


class TestTableNames:
    @pytest.mark.parametrize("name,expected", [
        ("Customers", (None, "Customers")),
        ("dbo.Customers", ("dbo", "Customers")),
        ("[dbo].[Order Details]", ("dbo", "Order Details")),
        ('"sales"."order.items"', ("sales", "order.items")),
        ("Sales.dbo.Customers", ("dbo", "Customers")),
        ("", (None, "")),
    ])
    def test_split_table_name(self, name, expected):
        assert get_dialect("mssql").split_table_name(name) == expected

    def test_quoting(self):
        assert get_dialect("mssql").qualify("dbo.Order]Lines") == "[dbo].[Order]]Lines]"
        assert get_dialect("postgres").qualify('public.my"table') == '"public"."my""table"'


class TestMssqlDialect:
    def setup_method(self):
        self.dialect = MssqlDialect()

    def test_statements(self):
        d = self.dialect
        assert d.count_sql("dbo.Orders", False) == "SELECT COUNT_BIG(*) FROM [dbo].[Orders]"
        assert d.count_sql("SELECT * FROM Orders;", True) == "SELECT COUNT_BIG(*) FROM (SELECT * FROM Orders) AS src"
        assert d.preview_sql("dbo.Orders", False, 5) == "SELECT TOP (5) * FROM [dbo].[Orders]"
        assert d.delete_all_sql("dbo.Orders") == "DELETE FROM [dbo].[Orders]"
        assert d.insert_sql("dbo.Orders", ["Id", "Total"]) == "INSERT INTO [dbo].[Orders] ([Id], [Total]) VALUES (?, ?)"

    def test_identity_insert_sql(self):
        sql = self.dialect.identity_insert_sql("dbo.Orders", True)
        assert "OBJECTPROPERTY(OBJECT_ID(N'[dbo].[Orders]'), 'TableHasIdentity') = 1" in sql
        assert sql.endswith("SET IDENTITY_INSERT [dbo].[Orders] ON")
        assert self.dialect.identity_insert_sql("dbo.Orders", False).endswith("OFF")

    def test_fast_executemany(self):
        cursor = Mock()
        self.dialect.prepare_batch_cursor(cursor)
        assert cursor.fast_executemany is True

    def test_connection_string_credentials(self):
        params = ConnectionParams(
            dialect="mssql", server="db01", port=1433, username="sa", password="p;ss}word",
            trust_server_certificate=False,
        )
        conn_str = build_connection_string(params, "Sales")
        assert conn_str.startswith("DRIVER={ODBC Driver 18 for SQL Server};SERVER=db01,1433;DATABASE=Sales;")
        assert "UID=sa;" in conn_str
        assert "PWD={p;ss}}word};" in conn_str
        assert "TrustServerCertificate=no;" in conn_str
        assert "Trusted_Connection" not in conn_str

    def test_connection_string_integrated(self):
        params = ConnectionParams(
            dialect="mssql", server="db01\\SQLEXPRESS", authentication=AuthenticationType.INTEGRATED,
            options={"driver": "ODBC Driver 17 for SQL Server"},
        )
        conn_str = build_connection_string(params, None)
        assert conn_str.startswith("DRIVER={ODBC Driver 17 for SQL Server};SERVER=db01\\SQLEXPRESS;")
        assert "Trusted_Connection=yes;" in conn_str
        assert "UID=" not in conn_str and "PWD=" not in conn_str
        assert "DATABASE=" not in conn_str

    def test_connect_uses_pyodbc(self):
        pyodbc = MagicMock()
        params = ConnectionParams(dialect="mssql", server="db01", username="sa", password="x", timeout=7)
        with patch.dict(sys.modules, {"pyodbc": pyodbc}):
            conn = self.dialect.connect(params, "Sales")
        assert conn is pyodbc.connect.return_value
        args, kwargs = pyodbc.connect.call_args
        assert "DATABASE=Sales;" in args[0]
        assert kwargs == {"autocommit": False, "timeout": 7}

    def test_connect_failure_is_connection_error(self):
        pyodbc = MagicMock()
        pyodbc.connect.side_effect = Exception("08001", "Login timeout expired")
        params = ConnectionParams(dialect="mssql", server="nowhere")
        with patch.dict(sys.modules, {"pyodbc": pyodbc}):
            with pytest.raises(DbConnectionError) as exc:
                self.dialect.connect(params, "Sales")
        assert exc.value.code == "CONN_FAILED"

    def test_list_databases(self):
        conn, cursor = mock_conn([("Sales", "ONLINE", "FULL", 2048, None)])
        databases = self.dialect.list_databases(conn, ConnectionParams(dialect="mssql"))
        assert databases[0].name == "Sales"
        assert databases[0].recovery_model == "FULL"
        assert databases[0].size_formatted == "2.00 GB"
        assert "sys.databases" in cursor.execute.call_args[0][0]
        cursor.close.assert_called_once()

    def test_describe_table(self):
        conn, cursor = mock_conn([
            ("Id", "int", "NO", None, 10, 0, None),
            ("Name", "nvarchar", "YES", 50, None, None, None),
            ("Notes", "nvarchar", "YES", -1, None, None, None),
            ("Price", "decimal", "NO", None, 18, 2, None),
            ("Ratio", "float", "YES", None, 53, None, None),
            ("Stamp", "datetime2", "YES", None, None, None, 3),
            ("Added", "datetime", "YES", None, None, None, 3),
        ])
        columns = self.dialect.describe_table(conn, "dbo.Products")
        assert [c.name for c in columns] == ["Id", "Name", "Notes", "Price", "Ratio", "Stamp", "Added"]
        assert columns[0].precision is None and columns[0].nullable is False
        assert columns[1].max_length == 50
        assert columns[2].max_length == -1
        assert (columns[3].precision, columns[3].scale) == (18, 2)
        assert columns[4].precision == 53
        assert columns[5].precision == 3
        assert columns[6].precision is None
        assert cursor.execute.call_args[0][1] == ("dbo", "Products")

    def test_describe_missing_table(self):
        conn, _ = mock_conn([])
        with pytest.raises(SourceError) as exc:
            self.dialect.describe_table(conn, "dbo.Missing")
        assert exc.value.code == "SOURCE_TABLE_NOT_FOUND"

    def test_identity_columns(self):
        conn, cursor = mock_conn([("OrderId",)])
        assert self.dialect.identity_columns(conn, "sales.Orders") == ["OrderId"]
        sql, params = cursor.execute.call_args[0]
        assert "sys.identity_columns" in sql
        assert params == ("[sales].[Orders]",)

    def test_describe_query(self):
        conn, cursor = mock_conn([
            ("Id", "int", False, None, None),
            ("Name", "nvarchar(50)", True, None, None),
            ("Total", "decimal(10,2)", True, None, None),
        ])
        columns = self.dialect.describe_query(conn, "SELECT TOP 100 * FROM Orders WHERE Total > 500")
        assert [(c.name, c.data_type) for c in columns] == [("Id", "int"), ("Name", "nvarchar"), ("Total", "decimal")]
        assert columns[1].max_length == 50
        assert (columns[2].precision, columns[2].scale) == (10, 2)
        assert columns[0].nullable is False
        assert cursor.execute.call_args[0][1] == ("SELECT TOP 100 * FROM Orders WHERE Total > 500",)

    def test_describe_invalid_query(self):
        conn, _ = mock_conn([(None, None, None, 208, "Invalid object name 'Nope'.")])
        with pytest.raises(SourceError) as exc:
            self.dialect.describe_query(conn, "SELECT * FROM Nope")
        assert exc.value.code == "SOURCE_INVALID_QUERY"
        assert exc.value.details == {"error_number": 208}


class TestPostgresDialect:
    def setup_method(self):
        self.dialect = PostgresDialect()

    def test_connect_kwargs(self):
        params = ConnectionParams(dialect="postgres", server="pg01", username="etl", password="pw", timeout=10)
        kwargs = self.dialect.connect_kwargs(params, "warehouse")
        assert kwargs["host"] == "pg01"
        assert kwargs["port"] == 5432
        assert kwargs["dbname"] == "warehouse"
        assert kwargs["password"] == "pw"
        assert kwargs["connect_timeout"] == 10
        assert kwargs["sslmode"] == "prefer"

    def test_integrated_auth_omits_password(self):
        params = ConnectionParams(
            dialect="postgres", server="pg01", authentication=AuthenticationType.INTEGRATED,
            password="ignored", trust_server_certificate=False, timeout=0,
        )
        kwargs = self.dialect.connect_kwargs(params, None)
        assert "password" not in kwargs
        assert "connect_timeout" not in kwargs
        assert kwargs["dbname"] == "postgres"
        assert kwargs["sslmode"] == "verify-full"

    def test_connect_uses_psycopg(self):
        psycopg = MagicMock()
        params = ConnectionParams(dialect="postgres", server="pg01", username="etl")
        with patch.dict(sys.modules, {"psycopg": psycopg}):
            conn = self.dialect.connect(params, "warehouse")
        assert conn is psycopg.connect.return_value
        assert psycopg.connect.call_args.kwargs["autocommit"] is False

    def test_statements(self):
        d = self.dialect
        assert d.preview_sql("public.orders", False, 10) == 'SELECT * FROM "public"."orders" LIMIT 10'
        assert d.count_sql("SELECT 1", True) == "SELECT COUNT(*) FROM (SELECT 1) AS src"
        assert d.insert_sql("orders", ["id"]) == 'INSERT INTO "orders" ("id") VALUES (%s)'
        assert d.insert_sql("orders", ["id"], preserve_identity=True) == (
            'INSERT INTO "orders" ("id") OVERRIDING SYSTEM VALUE VALUES (%s)'
        )
        assert d.identity_insert_sql("orders", True) is None

    def test_stream_cursor_is_named(self):
        conn = Mock()
        cursor = self.dialect.open_stream_cursor(conn)
        assert conn.cursor.call_args.kwargs["name"].startswith("dbxfer_")
        assert cursor.itersize == self.dialect.stream_itersize

    def test_describe_table(self):
        conn, cursor = mock_conn([
            ("id", "integer", "NO", None, 32, 0, None),
            ("name", "character varying", "YES", 80, None, None, None),
            ("amount", "numeric", "YES", None, 12, 2, None),
            ("placed_at", "timestamp without time zone", "YES", None, None, None, 0),
            ("ratio", "double precision", "YES", None, 53, None, None),
        ])
        columns = self.dialect.describe_table(conn, "orders")
        assert columns[0].precision is None
        assert columns[1].max_length == 80
        assert (columns[2].precision, columns[2].scale) == (12, 2)
        assert columns[3].precision == 0 and columns[3].scale is None
        assert columns[4].precision == 53
        assert cursor.execute.call_args[0][1] == (None, "orders")

    def test_identity_columns(self):
        conn, cursor = mock_conn([("id",), ("legacy_serial",)])
        assert self.dialect.identity_columns(conn, "public.orders") == ["id", "legacy_serial"]
        sql, params = cursor.execute.call_args[0]
        assert "is_identity = 'YES'" in sql
        assert "nextval(%%" in sql
        assert params == ("public", "orders")

    def test_describe_query(self):
        description = [
            SimpleNamespace(name="id", type_code=23, display_size=None, precision=None, scale=None),
            SimpleNamespace(name="label", type_code=1043, display_size=40, precision=None, scale=None),
        ]
        conn, cursor = mock_conn(description=description)
        names = {23: "int4", 1043: "varchar"}
        conn.adapters.types.get.side_effect = lambda oid: SimpleNamespace(name=names[oid])
        columns = self.dialect.describe_query(conn, "SELECT id, label FROM t;")
        assert [(c.name, c.data_type, c.max_length) for c in columns] == [("id", "int4", None), ("label", "varchar", 40)]
        assert cursor.execute.call_args[0][0] == "SELECT * FROM (SELECT id, label FROM t) AS src LIMIT 0"
        conn.rollback.assert_called()

    def test_describe_invalid_query(self):
        conn, cursor = mock_conn()
        cursor.execute.side_effect = Exception('relation "nope" does not exist')
        with pytest.raises(SourceError) as exc:
            self.dialect.describe_query(conn, "SELECT * FROM nope")
        assert exc.value.code == "SOURCE_INVALID_QUERY"
        conn.rollback.assert_called_once()


class TestCommandTimeout:
    @patch("dbxfer.tools.dialects.base.get_settings")
    def test_mssql_sets_query_timeout(self, mock_settings):
        mock_settings.return_value = Settings(command_timeout=45)
        pyodbc = MagicMock()
        with patch.dict(sys.modules, {"pyodbc": pyodbc}):
            conn = MssqlDialect().connect(ConnectionParams(dialect="mssql", server="db01"), "Sales")
        assert conn.timeout == 45

    @patch("dbxfer.tools.dialects.base.get_settings")
    def test_postgres_sets_statement_timeout(self, mock_settings):
        mock_settings.return_value = Settings(command_timeout=45)
        psycopg = MagicMock()
        with patch.dict(sys.modules, {"psycopg": psycopg}):
            conn = PostgresDialect().connect(ConnectionParams(dialect="postgres", server="pg01"), "warehouse")
        conn.cursor.return_value.execute.assert_called_once_with("SET statement_timeout = 45000")
        conn.commit.assert_called_once()

    @patch("dbxfer.tools.dialects.base.get_settings")
    def test_zero_disables_timeout(self, mock_settings):
        mock_settings.return_value = Settings(command_timeout=0)
        psycopg = MagicMock()
        with patch.dict(sys.modules, {"psycopg": psycopg}):
            conn = PostgresDialect().connect(ConnectionParams(dialect="postgres", server="pg01"), "warehouse")
        conn.cursor.assert_not_called()


class TestSqliteIdentityColumns:
    @pytest.mark.parametrize("ddl, expected", [
        ("CREATE TABLE t (Id INTEGER PRIMARY KEY AUTOINCREMENT, Name TEXT)", ["Id"]),
        ("CREATE TABLE t (Id integer primary key, Name TEXT)", ["Id"]),
        ("CREATE TABLE t (Id BIGINT PRIMARY KEY, Name TEXT)", []),
        ("CREATE TABLE t (A INTEGER, B INTEGER, PRIMARY KEY (A, B))", []),
        ("CREATE TABLE t (Id INTEGER, Name TEXT)", []),
    ])
    def test_rowid_alias(self, ddl, expected):
        conn = sqlite3.connect(":memory:")
        try:
            conn.execute(ddl)
            assert get_dialect("sqlite").identity_columns(conn, "t") == expected
        finally:
            conn.close()
