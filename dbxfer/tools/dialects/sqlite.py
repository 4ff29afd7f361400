"""
SQLite dialect.

`ConnectionParams.server` is the directory holding the database files and a
database name is a file inside it (absolute paths and ':memory:' are accepted
as well). Connections open existing files only, so a mistyped database name
surfaces as a connection error instead of a new empty file.
"""

import json
import sqlite3
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from pathlib import Path
from typing import Any, List, Optional

from dbxfer.core.errors import SourceError
from dbxfer.core.models import ColumnDescriptor, ConnectionParams, DatabaseInfo, TableInfo
from dbxfer.tools.dialects.base import Dialect, strip_statement
from dbxfer.tools.transfer.types import descriptor_from_declaration

DATABASE_SUFFIXES = (".db", ".sqlite", ".sqlite3")


class SqliteDialect(Dialect):
    name = "sqlite"
    paramstyle = "?"

    def database_path(self, params: ConnectionParams, database: Optional[str]) -> str:
        if not database or database == ":memory:":
            return ":memory:"
        path = Path(database)
        if not path.is_absolute():
            path = Path(params.server or ".") / path
        return str(path.resolve())

    def _connect(self, params: ConnectionParams, database: Optional[str]):
        path = self.database_path(params, database)
        if path == ":memory:":
            return sqlite3.connect(path, timeout=params.timeout, check_same_thread=False)
        uri = f"{Path(path).as_uri()}?mode=rw"
        return sqlite3.connect(uri, uri=True, timeout=params.timeout, check_same_thread=False)

    def prepare_write_connection(self, conn) -> None:
        # a cache spill needs the EXCLUSIVE lock, which waits on readers of the same file
        conn.execute("PRAGMA cache_spill = OFF")

    def adapt_value(self, value: Any) -> Any:
        if isinstance(value, Decimal):
            return str(value)
        if isinstance(value, (datetime, date, time)):
            return value.isoformat()
        if isinstance(value, uuid.UUID):
            return str(value)
        if isinstance(value, (dict, list)):
            return json.dumps(value, default=str)
        return value

    def _schema_prefix(self, schema: Optional[str]) -> str:
        return f"{self.quote(schema)}." if schema else ""

    def list_databases(self, conn, params: ConnectionParams) -> List[DatabaseInfo]:
        directory = Path(params.server or ".")
        databases = []
        for path in sorted(directory.iterdir()):
            if path.is_file() and path.suffix.lower() in DATABASE_SUFFIXES:
                databases.append(DatabaseInfo(
                    name=path.name,
                    size_mb=path.stat().st_size // (1024 * 1024),
                    status="ONLINE",
                ))
        return databases

    def list_tables(self, conn) -> List[TableInfo]:
        cursor = conn.cursor()
        try:
            cursor.execute(
                "SELECT name FROM sqlite_master "
                "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
            )
            names = [row[0] for row in cursor.fetchall()]
            tables = []
            for name in names:
                cursor.execute(f"PRAGMA table_info({self.quote(name)})")
                tables.append(TableInfo(name=name, schema_name="main", column_count=len(cursor.fetchall())))
            return tables
        finally:
            cursor.close()

    def table_exists(self, conn, table_name: str) -> bool:
        schema, table = self.split_table_name(table_name)
        cursor = conn.cursor()
        try:
            cursor.execute(
                f"SELECT 1 FROM {self._schema_prefix(schema)}sqlite_master WHERE type = 'table' AND name = ?",
                (table,),
            )
            return cursor.fetchone() is not None
        finally:
            cursor.close()

    def _pragma_columns(self, cursor, schema: Optional[str], relation: str) -> List[ColumnDescriptor]:
        cursor.execute(f"PRAGMA {self._schema_prefix(schema)}table_info({self.quote(relation)})")
        # cid, name, type, notnull, dflt_value, pk
        return [
            descriptor_from_declaration(self.name, row[1], row[2] or "", nullable=not row[3])
            for row in cursor.fetchall()
        ]

    def identity_columns(self, conn, table_name: str) -> List[str]:
        schema, table = self.split_table_name(table_name)
        cursor = conn.cursor()
        try:
            cursor.execute(f"PRAGMA {self._schema_prefix(schema)}table_info({self.quote(table)})")
            rows = cursor.fetchall()
        finally:
            cursor.close()
        # only a single-column INTEGER PRIMARY KEY aliases the rowid
        keys = [row for row in rows if row[5]]
        if len(keys) == 1 and (keys[0][2] or "").strip().upper() == "INTEGER":
            return [keys[0][1]]
        return []

    def describe_table(self, conn, table_name: str) -> List[ColumnDescriptor]:
        schema, table = self.split_table_name(table_name)
        cursor = conn.cursor()
        try:
            columns = self._pragma_columns(cursor, schema, table)
        finally:
            cursor.close()
        if not columns:
            raise SourceError(f"Source table '{table_name}' does not exist", code="SOURCE_TABLE_NOT_FOUND")
        return columns

    def describe_query(self, conn, query: str) -> List[ColumnDescriptor]:
        # declared types of a result set are only visible through a view
        view = f"dbxfer_describe_{uuid.uuid4().hex[:12]}"
        cursor = conn.cursor()
        try:
            cursor.execute(f"CREATE TEMP VIEW {self.quote(view)} AS {strip_statement(query)}")
            try:
                return self._pragma_columns(cursor, "temp", view)
            finally:
                cursor.execute(f"DROP VIEW IF EXISTS temp.{self.quote(view)}")
        except sqlite3.Error as e:
            raise SourceError(f"Invalid source query: {e}", code="SOURCE_INVALID_QUERY") from e
        finally:
            cursor.close()
