"""
PostgreSQL dialect (psycopg 3).

Integrated authentication leaves the password out so libpq falls back to peer,
GSSAPI or a .pgpass entry. Large sources are streamed with a named server-side
cursor so the client never materializes the whole result set.
"""

import uuid
from typing import Any, List, Optional, Sequence

from dbxfer.core.errors import SourceError
from dbxfer.core.models import AuthenticationType, ColumnDescriptor, ConnectionParams, DatabaseInfo, TableInfo
from dbxfer.tools.dialects.base import Dialect, strip_statement
from dbxfer.tools.transfer.types import has_fractional_seconds


class PostgresDialect(Dialect):
    name = "postgres"
    paramstyle = "%s"
    default_schema = "public"
    stream_itersize = 2000

    def connect_kwargs(self, params: ConnectionParams, database: Optional[str]) -> dict:
        kwargs = {
            "host": params.server or "localhost",
            "port": params.port or 5432,
            "dbname": database or "postgres",
            "connect_timeout": params.timeout or None,
            "sslmode": "prefer" if params.trust_server_certificate else "verify-full",
            "application_name": "dbxfer",
        }
        if params.username:
            kwargs["user"] = params.username
        if params.authentication == AuthenticationType.CREDENTIALS and params.password:
            kwargs["password"] = params.password
        kwargs.update(params.options)
        return {k: v for k, v in kwargs.items() if v is not None}

    def _connect(self, params: ConnectionParams, database: Optional[str]):
        import psycopg
        return psycopg.connect(autocommit=False, **self.connect_kwargs(params, database))

    def set_command_timeout(self, conn, seconds: int) -> None:
        cursor = conn.cursor()
        try:
            cursor.execute(f"SET statement_timeout = {int(seconds) * 1000}")
        finally:
            cursor.close()
        # keep the setting out of the first transfer transaction
        conn.commit()

    def open_stream_cursor(self, conn):
        cursor = conn.cursor(name=f"dbxfer_{uuid.uuid4().hex[:12]}")
        cursor.itersize = self.stream_itersize
        return cursor

    def insert_sql(self, table_name: str, columns: Sequence[str], preserve_identity: bool = False) -> str:
        column_list = ", ".join(self.quote(c) for c in columns)
        placeholders = ", ".join([self.paramstyle] * len(columns))
        # GENERATED ALWAYS identity columns only accept explicit values with an override
        overriding = " OVERRIDING SYSTEM VALUE" if preserve_identity else ""
        return f"INSERT INTO {self.qualify(table_name)} ({column_list}){overriding} VALUES ({placeholders})"

    def adapt_value(self, value: Any) -> Any:
        if isinstance(value, (dict, list)):
            from psycopg.types.json import Jsonb
            return Jsonb(value)
        return value

    def list_databases(self, conn, params: ConnectionParams) -> List[DatabaseInfo]:
        cursor = conn.cursor()
        try:
            cursor.execute("""
                SELECT datname,
                       pg_database_size(datname) / 1048576 AS size_mb,
                       CASE WHEN datallowconn THEN 'ONLINE' ELSE 'OFFLINE' END AS status
                FROM pg_database
                WHERE NOT datistemplate
                ORDER BY datname
            """)
            return [
                DatabaseInfo(name=row[0], size_mb=int(row[1] or 0), status=row[2])
                for row in cursor.fetchall()
            ]
        finally:
            cursor.close()

    def list_tables(self, conn) -> List[TableInfo]:
        cursor = conn.cursor()
        try:
            cursor.execute("""
                SELECT t.table_schema, t.table_name, COUNT(c.column_name) AS column_count
                FROM information_schema.tables t
                LEFT JOIN information_schema.columns c
                  ON t.table_name = c.table_name AND t.table_schema = c.table_schema
                WHERE t.table_type = 'BASE TABLE'
                  AND t.table_schema NOT IN ('pg_catalog', 'information_schema')
                GROUP BY t.table_schema, t.table_name
                ORDER BY t.table_schema, t.table_name
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
                "SELECT 1 FROM information_schema.tables "
                "WHERE table_schema = COALESCE(%s, current_schema()) AND table_name = %s",
                (schema, table),
            )
            return cursor.fetchone() is not None
        finally:
            cursor.close()

    def identity_columns(self, conn, table_name: str) -> List[str]:
        schema, table = self.split_table_name(table_name)
        cursor = conn.cursor()
        try:
            # identity columns and serial columns backed by a sequence default
            cursor.execute("""
                SELECT column_name
                FROM information_schema.columns
                WHERE table_schema = COALESCE(%s, current_schema()) AND table_name = %s
                  AND (is_identity = 'YES' OR column_default LIKE 'nextval(%%')
                ORDER BY ordinal_position
            """, (schema, table))
            return [row[0] for row in cursor.fetchall()]
        finally:
            cursor.close()

    def describe_table(self, conn, table_name: str) -> List[ColumnDescriptor]:
        schema, table = self.split_table_name(table_name)
        cursor = conn.cursor()
        try:
            cursor.execute("""
                SELECT column_name, data_type, is_nullable,
                       character_maximum_length, numeric_precision, numeric_scale, datetime_precision
                FROM information_schema.columns
                WHERE table_schema = COALESCE(%s, current_schema()) AND table_name = %s
                ORDER BY ordinal_position
            """, (schema, table))
            rows = cursor.fetchall()
        finally:
            cursor.close()
        if not rows:
            raise SourceError(f"Source table '{table_name}' does not exist", code="SOURCE_TABLE_NOT_FOUND")
        columns = []
        for name, data_type, is_nullable, max_length, precision, scale, time_precision in rows:
            exact = data_type.lower() in ("numeric", "decimal")
            if has_fractional_seconds(self.name, data_type):
                precision = time_precision
            elif not exact and data_type.lower() not in ("double precision", "float"):
                precision = None
            columns.append(ColumnDescriptor(
                name=name,
                data_type=data_type,
                nullable=is_nullable == "YES",
                max_length=max_length,
                precision=precision,
                scale=scale if exact else None,
            ))
        return columns

    def describe_query(self, conn, query: str) -> List[ColumnDescriptor]:
        cursor = conn.cursor()
        try:
            cursor.execute(f"SELECT * FROM ({strip_statement(query)}) AS src LIMIT 0")
            description = cursor.description or []
        except Exception as e:
            conn.rollback()
            raise SourceError(f"Invalid source query: {e}", code="SOURCE_INVALID_QUERY") from e
        finally:
            cursor.close()

        columns = []
        for col in description:
            info = conn.adapters.types.get(col.type_code)
            type_name = info.name if info is not None else str(col.type_code)
            columns.append(ColumnDescriptor(
                name=col.name,
                data_type=type_name,
                nullable=True,
                max_length=col.display_size,
                precision=col.precision,
                scale=col.scale,
            ))
        conn.rollback()
        return columns
