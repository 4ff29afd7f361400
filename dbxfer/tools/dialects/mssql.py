"""
SQL Server dialect (pyodbc).

Connections are built from an ODBC connection string. Integrated authentication
maps to Trusted_Connection; credentials map to UID/PWD. Explicit identity values
are enabled per session with SET IDENTITY_INSERT.
"""

import re
from typing import Dict, List, Optional

from dbxfer.core.errors import SourceError
from dbxfer.core.models import AuthenticationType, ColumnDescriptor, ConnectionParams, DatabaseInfo, TableInfo
from dbxfer.tools.dialects.base import Dialect, strip_statement
from dbxfer.tools.transfer.types import descriptor_from_declaration, has_fractional_seconds

DEFAULT_DRIVER = "ODBC Driver 18 for SQL Server"


def _odbc_value(value) -> str:
    text = str(value)
    # values containing separators or braces must be braced, with '}' doubled
    if any(ch in text for ch in ";{}=") or text != text.strip():
        return "{" + text.replace("}", "}}") + "}"
    return text


def build_connection_string(params: ConnectionParams, database: Optional[str]) -> str:
    options = dict(params.options)
    driver = options.pop("driver", None) or DEFAULT_DRIVER
    server = params.server or "localhost"
    if params.port:
        server = f"{server},{params.port}"

    parts: Dict[str, str] = {
        "DRIVER": "{" + driver.strip("{}") + "}",
        "SERVER": _odbc_value(server),
    }
    if database:
        parts["DATABASE"] = _odbc_value(database)
    if params.authentication == AuthenticationType.INTEGRATED:
        parts["Trusted_Connection"] = "yes"
    else:
        parts["UID"] = _odbc_value(params.username)
        parts["PWD"] = _odbc_value(params.password)
    parts["TrustServerCertificate"] = "yes" if params.trust_server_certificate else "no"
    parts["Encrypt"] = "yes"
    parts["APP"] = "dbxfer"
    for key, value in options.items():
        parts[key] = _odbc_value(value)
    return ";".join(f"{k}={v}" for k, v in parts.items()) + ";"


class MssqlDialect(Dialect):
    name = "mssql"
    paramstyle = "?"
    default_schema = "dbo"

    def _connect(self, params: ConnectionParams, database: Optional[str]):
        import pyodbc
        return pyodbc.connect(
            build_connection_string(params, database),
            autocommit=False,
            timeout=params.timeout,
        )

    def set_command_timeout(self, conn, seconds: int) -> None:
        conn.timeout = seconds

    def quote(self, identifier: str) -> str:
        return "[" + identifier.replace("]", "]]") + "]"

    def count_sql(self, expression: str, is_query: bool) -> str:
        if is_query:
            return f"SELECT COUNT_BIG(*) FROM ({strip_statement(expression)}) AS src"
        return f"SELECT COUNT_BIG(*) FROM {self.qualify(expression)}"

    def preview_sql(self, expression: str, is_query: bool, max_rows: int) -> str:
        inner = f"({strip_statement(expression)}) AS src" if is_query else self.qualify(expression)
        return f"SELECT TOP ({int(max_rows)}) * FROM {inner}"

    def identity_insert_sql(self, table_name: str, enabled: bool) -> Optional[str]:
        qualified = self.qualify(table_name)
        literal = qualified.replace("'", "''")
        # SET IDENTITY_INSERT fails on tables without an identity column
        return (
            f"IF OBJECTPROPERTY(OBJECT_ID(N'{literal}'), 'TableHasIdentity') = 1 "
            f"SET IDENTITY_INSERT {qualified} {'ON' if enabled else 'OFF'}"
        )

    def prepare_batch_cursor(self, cursor) -> None:
        cursor.fast_executemany = True

    def list_databases(self, conn, params: ConnectionParams) -> List[DatabaseInfo]:
        cursor = conn.cursor()
        try:
            cursor.execute("""
                SELECT
                    d.name,
                    d.state_desc,
                    d.recovery_model_desc,
                    CAST(SUM(mf.size) * 8 / 1024 AS BIGINT) AS size_mb,
                    MAX(b.backup_finish_date) AS last_backup
                FROM sys.databases d
                LEFT JOIN sys.master_files mf ON d.database_id = mf.database_id
                LEFT JOIN msdb.dbo.backupset b ON d.name = b.database_name AND b.type = 'D'
                WHERE d.database_id > 4
                GROUP BY d.name, d.state_desc, d.recovery_model_desc
                ORDER BY d.name
            """)
            return [
                DatabaseInfo(
                    name=row[0],
                    status=row[1] or "",
                    recovery_model=row[2] or "",
                    size_mb=int(row[3] or 0),
                    last_backup=row[4],
                )
                for row in cursor.fetchall()
            ]
        finally:
            cursor.close()

    def list_tables(self, conn) -> List[TableInfo]:
        cursor = conn.cursor()
        try:
            cursor.execute("""
                SELECT
                    t.TABLE_SCHEMA,
                    t.TABLE_NAME,
                    COUNT(c.COLUMN_NAME) AS column_count
                FROM INFORMATION_SCHEMA.TABLES t
                LEFT JOIN INFORMATION_SCHEMA.COLUMNS c
                  ON t.TABLE_NAME = c.TABLE_NAME AND t.TABLE_SCHEMA = c.TABLE_SCHEMA
                WHERE t.TABLE_TYPE = 'BASE TABLE'
                GROUP BY t.TABLE_SCHEMA, t.TABLE_NAME
                ORDER BY t.TABLE_SCHEMA, t.TABLE_NAME
            """)
            return [
                TableInfo(schema_name=row[0], name=row[1], column_count=int(row[2] or 0))
                for row in cursor.fetchall()
            ]
        finally:
            cursor.close()

    def table_exists(self, conn, table_name: str) -> bool:
        schema, table = self.split_table_name(table_name)
        cursor = conn.cursor()
        try:
            cursor.execute(
                "SELECT 1 FROM INFORMATION_SCHEMA.TABLES "
                "WHERE TABLE_SCHEMA = COALESCE(?, SCHEMA_NAME()) AND TABLE_NAME = ?",
                (schema, table),
            )
            return cursor.fetchone() is not None
        finally:
            cursor.close()

    def identity_columns(self, conn, table_name: str) -> List[str]:
        cursor = conn.cursor()
        try:
            cursor.execute(
                "SELECT name FROM sys.identity_columns WHERE object_id = OBJECT_ID(?) ORDER BY column_id",
                (self.qualify(table_name),),
            )
            return [row[0] for row in cursor.fetchall()]
        finally:
            cursor.close()

    def describe_table(self, conn, table_name: str) -> List[ColumnDescriptor]:
        schema, table = self.split_table_name(table_name)
        cursor = conn.cursor()
        try:
            cursor.execute("""
                SELECT COLUMN_NAME, DATA_TYPE, IS_NULLABLE,
                       CHARACTER_MAXIMUM_LENGTH, NUMERIC_PRECISION, NUMERIC_SCALE, DATETIME_PRECISION
                FROM INFORMATION_SCHEMA.COLUMNS
                WHERE TABLE_SCHEMA = COALESCE(?, SCHEMA_NAME()) AND TABLE_NAME = ?
                ORDER BY ORDINAL_POSITION
            """, (schema, table))
            rows = cursor.fetchall()
        finally:
            cursor.close()
        if not rows:
            raise SourceError(f"Source table '{table_name}' does not exist", code="SOURCE_TABLE_NOT_FOUND")

        columns = []
        for name, data_type, is_nullable, max_length, precision, scale, time_precision in rows:
            upper = data_type.upper()
            if has_fractional_seconds(self.name, upper):
                precision = time_precision
            elif upper not in ("DECIMAL", "NUMERIC", "FLOAT"):
                precision = None
            columns.append(ColumnDescriptor(
                name=name,
                data_type=upper,
                nullable=is_nullable == "YES",
                max_length=max_length,
                precision=precision,
                scale=scale if upper in ("DECIMAL", "NUMERIC") else None,
            ))
        return columns

    def describe_query(self, conn, query: str) -> List[ColumnDescriptor]:
        cursor = conn.cursor()
        try:
            cursor.execute(
                "SELECT name, system_type_name, is_nullable, error_number, error_message "
                "FROM sys.dm_exec_describe_first_result_set(?, NULL, 0) "
                "ORDER BY column_ordinal",
                (strip_statement(query),),
            )
            rows = cursor.fetchall()
        finally:
            cursor.close()

        columns = []
        for index, (name, system_type_name, is_nullable, error_number, error_message) in enumerate(rows):
            if error_number is not None:
                raise SourceError(
                    f"Invalid source query: {error_message}",
                    code="SOURCE_INVALID_QUERY",
                    details={"error_number": error_number},
                )
            columns.append(descriptor_from_declaration(
                self.name,
                name or f"column{index + 1}",
                re.sub(r"\s+", " ", system_type_name or ""),
                nullable=bool(is_nullable),
            ))
        return columns
