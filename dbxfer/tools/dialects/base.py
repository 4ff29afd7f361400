"""
Dialect interface.

A dialect owns everything engine-specific: opening DB-API connections, quoting,
the SQL text for counting, previewing, clearing and inserting, catalog lookups,
and column metadata discovery. The transfer engine only talks to this interface.
"""

from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence, Tuple

from dbxfer.core.config import get_settings
from dbxfer.core.errors import DbConnectionError, SourceError
from dbxfer.core.logger import setup_logger
from dbxfer.core.models import ColumnDescriptor, ConnectionParams, DatabaseInfo, TableInfo

logger = setup_logger(__name__, include_location=True)


def strip_statement(sql: str) -> str:
    """Trim whitespace and trailing semicolons so a query can be wrapped."""
    return (sql or "").strip().rstrip(";").strip()


def close_connection(conn, label: str = "database") -> None:
    """Roll back whatever is still open and close the connection."""
    if conn is None:
        return
    try:
        conn.rollback()
    except Exception as e:
        logger.debug(f"Rollback before closing {label} connection failed: {e}")
    try:
        conn.close()
        logger.debug(f"Closed {label} connection")
    except Exception as e:
        logger.warning(f"Error closing {label} connection: {e}")


def _unquote(part: str) -> str:
    part = part.strip()
    if len(part) >= 2 and part[0] in '["`' and part[-1] in ']"`':
        return part[1:-1]
    return part


class Dialect(ABC):
    """Base class for database dialects."""

    name: str = ""
    paramstyle: str = "?"
    default_schema: Optional[str] = None

    # connections

    @abstractmethod
    def _connect(self, params: ConnectionParams, database: Optional[str]):
        """Open a raw DB-API connection (autocommit off)."""

    def connect(self, params: ConnectionParams, database: Optional[str] = None):
        """Open a connection to `database` (or the params' default), wrapping failures."""
        target = database or params.database
        try:
            conn = self._connect(params, target)
        except Exception as e:
            raise DbConnectionError(
                f"Could not connect to {self.name} server '{params.server}' database '{target or ''}': {e}",
                code="CONN_FAILED",
            ) from e
        timeout = get_settings().command_timeout
        if timeout:
            try:
                self.set_command_timeout(conn, timeout)
            except Exception as e:
                close_connection(conn, self.name)
                raise DbConnectionError(f"Could not configure {self.name} connection: {e}", code="CONN_FAILED") from e
        logger.debug(f"Opened {self.name} connection to {params.server or '<local>'}/{target or ''}")
        return conn

    def set_command_timeout(self, conn, seconds: int) -> None:
        """Limit how long a single statement may run. No-op where the driver has no such setting."""

    def ping(self, conn) -> None:
        cursor = conn.cursor()
        try:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        finally:
            cursor.close()

    # identifiers

    def quote(self, identifier: str) -> str:
        return '"' + identifier.replace('"', '""') + '"'

    def split_table_name(self, table_name: str) -> Tuple[Optional[str], str]:
        """'dbo.Customers' / '[dbo].[Customers]' -> ('dbo', 'Customers')."""
        text = (table_name or "").strip()
        parts = []
        current = ""
        closing = None
        for ch in text:
            if closing:
                current += ch
                if ch == closing:
                    closing = None
            elif ch in '["`':
                closing = "]" if ch == "[" else ch
                current += ch
            elif ch == ".":
                parts.append(current)
                current = ""
            else:
                current += ch
        parts.append(current)
        parts = [_unquote(p) for p in parts if p.strip()]
        if not parts:
            return None, ""
        if len(parts) == 1:
            return None, parts[0]
        return parts[-2], parts[-1]

    def qualify(self, table_name: str) -> str:
        schema, table = self.split_table_name(table_name)
        if schema:
            return f"{self.quote(schema)}.{self.quote(table)}"
        return self.quote(table)

    # statements

    def source_sql(self, expression: str, is_query: bool) -> str:
        if is_query:
            return strip_statement(expression)
        return f"SELECT * FROM {self.qualify(expression)}"

    def count_sql(self, expression: str, is_query: bool) -> str:
        if is_query:
            return f"SELECT COUNT(*) FROM ({strip_statement(expression)}) AS src"
        return f"SELECT COUNT(*) FROM {self.qualify(expression)}"

    def preview_sql(self, expression: str, is_query: bool, max_rows: int) -> str:
        inner = f"({strip_statement(expression)}) AS src" if is_query else self.qualify(expression)
        return f"SELECT * FROM {inner} LIMIT {int(max_rows)}"

    def delete_all_sql(self, table_name: str) -> str:
        return f"DELETE FROM {self.qualify(table_name)}"

    def insert_sql(self, table_name: str, columns: Sequence[str], preserve_identity: bool = False) -> str:
        column_list = ", ".join(self.quote(c) for c in columns)
        placeholders = ", ".join([self.paramstyle] * len(columns))
        return f"INSERT INTO {self.qualify(table_name)} ({column_list}) VALUES ({placeholders})"

    def identity_insert_sql(self, table_name: str, enabled: bool) -> Optional[str]:
        """Session statement that allows explicit identity values, if the engine needs one."""
        return None

    def create_table_sql(self, table_name: str, column_definitions: Sequence[str]) -> str:
        body = ",\n    ".join(column_definitions)
        return f"CREATE TABLE {self.qualify(table_name)} (\n    {body}\n)"

    def column_definition(self, column_name: str, type_declaration: str, nullable: bool) -> str:
        return f"{self.quote(column_name)} {type_declaration} {'NULL' if nullable else 'NOT NULL'}"

    # cursors

    def open_stream_cursor(self, conn):
        """Cursor used to stream a large source result set."""
        return conn.cursor()

    def prepare_write_connection(self, conn) -> None:
        """Hook for session settings on the destination connection."""

    def prepare_batch_cursor(self, cursor) -> None:
        """Hook for driver tuning on the insert cursor."""

    def adapt_value(self, value: Any) -> Any:
        """Convert a source value into something the destination driver can bind."""
        return value

    # catalog

    @abstractmethod
    def list_databases(self, conn, params: ConnectionParams) -> List[DatabaseInfo]:
        ...

    @abstractmethod
    def list_tables(self, conn) -> List[TableInfo]:
        ...

    @abstractmethod
    def table_exists(self, conn, table_name: str) -> bool:
        ...

    @abstractmethod
    def identity_columns(self, conn, table_name: str) -> List[str]:
        """Columns of an existing table whose values the engine generates on insert."""

    @abstractmethod
    def describe_table(self, conn, table_name: str) -> List[ColumnDescriptor]:
        ...

    @abstractmethod
    def describe_query(self, conn, query: str) -> List[ColumnDescriptor]:
        ...

    def describe(self, conn, expression: str, is_query: bool) -> List[ColumnDescriptor]:
        columns = self.describe_query(conn, expression) if is_query else self.describe_table(conn, expression)
        if not columns:
            what = "query" if is_query else f"table '{expression}'"
            raise SourceError(f"Source {what} exposes no columns", code="SOURCE_NO_COLUMNS")
        return columns

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
