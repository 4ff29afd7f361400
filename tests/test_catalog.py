"""
Catalog helpers and Source Reader - Tests against SQLite files
"""

import pytest

from conftest import CUSTOMERS_DDL, create_database, customer_rows, insert_customers_sql, table_count

from dbxfer.core.errors import DbConnectionError, ErrorKind, SourceError
from dbxfer.core.models import ConnectionParams
from dbxfer.tools import catalog
from dbxfer.tools.transfer.source import SourceReader


class TestConnectionCheck:
    def test_existing_database(self, customers_source, sqlite_params):
        assert catalog.test_connection(sqlite_params, "source.db") is True

    def test_missing_database(self, tmp_path, sqlite_params):
        assert catalog.test_connection(sqlite_params, "missing.db") is False
        # a failed check must not leave an empty file behind
        assert not (tmp_path / "missing.db").exists()


class TestListings:
    def test_list_databases(self, tmp_path, sqlite_params):
        create_database(tmp_path, "b.db")
        create_database(tmp_path, "a.sqlite")
        (tmp_path / "notes.txt").write_text("not a database")
        databases = catalog.list_databases(sqlite_params)
        assert [d.name for d in databases] == ["a.sqlite", "b.db"]
        assert all(d.status == "ONLINE" for d in databases)

    def test_list_tables(self, tmp_path, sqlite_params):
        create_database(tmp_path, "shop.db", CUSTOMERS_DDL + ";CREATE TABLE Orders (Id INT, Total DECIMAL(10,2));")
        tables = catalog.list_tables(sqlite_params, "shop.db")
        assert [(t.name, t.column_count) for t in tables] == [("Customers", 5), ("Orders", 2)]
        assert tables[0].full_name == "main.Customers"

    def test_list_tables_of_missing_database(self, sqlite_params):
        with pytest.raises(DbConnectionError) as exc:
            catalog.list_tables(sqlite_params, "missing.db")
        assert exc.value.kind == ErrorKind.CONNECTION


class TestRowCount:
    def test_table(self, customers_source, sqlite_params):
        assert catalog.row_count(sqlite_params, "source.db", "Customers") == 2500

    def test_query(self, customers_source, sqlite_params):
        query = "SELECT Id FROM Customers WHERE Id <= 40;"
        assert catalog.row_count(sqlite_params, "source.db", query, is_query=True) == 40

    def test_missing_table(self, customers_source, sqlite_params):
        with pytest.raises(SourceError) as exc:
            catalog.row_count(sqlite_params, "source.db", "Nope")
        assert exc.value.code == "SOURCE_QUERY_FAILED"


class TestPreview:
    def test_table_preview_is_bounded(self, customers_source, sqlite_params):
        result = catalog.preview(sqlite_params, "source.db", "Customers", max_rows=5)
        assert result.columns == ["Id", "Name", "Email", "Balance", "CreatedAt"]
        assert result.row_count == 5
        assert result.as_dicts()[0]["Name"] == "Customer 1"

    def test_query_preview(self, customers_source, sqlite_params):
        result = catalog.preview(
            sqlite_params, "source.db", "SELECT Name FROM Customers WHERE Id > 2498", is_query=True
        )
        assert result.columns == ["Name"]
        assert [r[0] for r in result.rows] == ["Customer 2499", "Customer 2500"]

    def test_preview_does_not_modify_source(self, tmp_path, sqlite_params):
        path = create_database(tmp_path, "source.db", CUSTOMERS_DDL, {insert_customers_sql(): customer_rows(3)})
        # a data-modifying statement is wrapped as a derived table and rejected
        with pytest.raises(SourceError):
            catalog.preview(sqlite_params, "source.db", "DELETE FROM Customers", is_query=True)
        assert table_count(path, "Customers") == 3

    def test_rejects_non_positive_limit(self, customers_source, sqlite_params):
        with pytest.raises(ValueError):
            catalog.preview(sqlite_params, "source.db", "Customers", max_rows=0)


class TestSourceReader:
    def test_describe_table(self, customers_source, sqlite_params):
        columns = SourceReader(sqlite_params).describe("source.db", "Customers", False)
        assert [(c.name, c.data_type, c.nullable) for c in columns] == [
            ("Id", "INTEGER", True),
            ("Name", "NVARCHAR", False),
            ("Email", "VARCHAR", True),
            ("Balance", "DECIMAL", True),
            ("CreatedAt", "DATETIME2", True),
        ]
        assert columns[1].max_length == 100
        assert (columns[3].precision, columns[3].scale) == (18, 2)

    def test_describe_missing_table(self, customers_source, sqlite_params):
        with pytest.raises(SourceError) as exc:
            SourceReader(sqlite_params).describe("source.db", "Nope", False)
        assert exc.value.code == "SOURCE_TABLE_NOT_FOUND"

    def test_describe_invalid_query(self, customers_source, sqlite_params):
        with pytest.raises(SourceError) as exc:
            SourceReader(sqlite_params).describe("source.db", "SELECT * FROM Nope", True)
        assert exc.value.code == "SOURCE_INVALID_QUERY"

    def test_batches(self, customers_source, sqlite_params):
        with SourceReader(sqlite_params).open_cursor("source.db", "Customers", False) as cursor:
            sizes = [len(batch) for batch in cursor.batches(1000)]
        assert sizes == [1000, 1000, 500]

    def test_connection_params_for_other_directory(self, tmp_path, customers_source):
        other = ConnectionParams(dialect="sqlite", server=str(tmp_path / "elsewhere"))
        with pytest.raises(DbConnectionError):
            SourceReader(other).row_count("source.db", "Customers", False)
