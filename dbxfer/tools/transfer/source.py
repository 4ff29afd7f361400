"""
Source Reader.

Reads from the source server without modifying it: row counts, bounded
previews, column metadata and a streaming cursor that yields fixed-size
batches. Driver failures are reported as SourceError; a failure to reach the
server is a DbConnectionError raised by the dialect.
"""

from contextlib import contextmanager
from typing import Iterator, List, Optional

from dbxfer.core.errors import DbxferError, SourceError, classify_db_error
from dbxfer.core.logger import setup_logger, sql_summary
from dbxfer.core.models import ColumnDescriptor, ConnectionParams, PreviewResult
from dbxfer.tools.dialects import Dialect, get_dialect
from dbxfer.tools.dialects.base import close_connection
from dbxfer.tools.transfer.progress import CancellationToken

logger = setup_logger(__name__, include_location=True)

DEFAULT_PREVIEW_ROWS = 10


def _source_error(action: str, error: Exception) -> DbxferError:
    if isinstance(error, DbxferError):
        return error
    return SourceError(
        f"Failed to {action}: {error}",
        code="SOURCE_QUERY_FAILED",
        details=classify_db_error(error),
    )


class SourceCursor:
    """
    Read handle on one source expression, bound to its own connection.

    Column metadata is described on first access and cached. `batches()` streams
    the result set with `fetchmany`, so at most one batch is held in memory.
    """

    def __init__(self, dialect: Dialect, conn, expression: str, is_query: bool):
        self.dialect = dialect
        self.conn = conn
        self.expression = expression
        self.is_query = is_query
        self._columns: Optional[List[ColumnDescriptor]] = None
        self._cursor = None

    @property
    def columns(self) -> List[ColumnDescriptor]:
        if self._columns is None:
            try:
                self._columns = self.dialect.describe(self.conn, self.expression, self.is_query)
            except Exception as e:
                raise _source_error("describe source columns", e) from e
        return self._columns

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def count(self) -> int:
        sql = self.dialect.count_sql(self.expression, self.is_query)
        logger.debug(f"Counting source rows: {sql_summary(sql)}")
        cursor = self.conn.cursor()
        try:
            cursor.execute(sql)
            row = cursor.fetchone()
        except Exception as e:
            raise _source_error("count source rows", e) from e
        finally:
            cursor.close()
        return int(row[0]) if row and row[0] is not None else 0

    def batches(self, size: int, cancel: Optional[CancellationToken] = None) -> Iterator[List[tuple]]:
        """
        Yield lists of at most `size` rows.

        The cancellation token is checked before each fetch, so a cancelled
        transfer never reads another batch from the source.
        """
        if size < 1:
            raise ValueError("Batch size must be at least 1")
        sql = self.dialect.source_sql(self.expression, self.is_query)
        try:
            self._cursor = self.dialect.open_stream_cursor(self.conn)
            self._cursor.execute(sql)
        except Exception as e:
            raise _source_error("read source rows", e) from e

        while True:
            if cancel is not None:
                cancel.raise_if_cancelled()
            try:
                rows = self._cursor.fetchmany(size)
            except Exception as e:
                raise _source_error("read source rows", e) from e
            if not rows:
                break
            yield [tuple(r) for r in rows]

    def close(self) -> None:
        if self._cursor is not None:
            try:
                self._cursor.close()
            except Exception as e:
                logger.debug(f"Error closing source cursor: {e}")
            self._cursor = None
        close_connection(self.conn, "source")
        self.conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class SourceReader:
    """Read-only access to one source server."""

    def __init__(self, params: ConnectionParams, dialect: Optional[Dialect] = None):
        self.params = params
        self.dialect = dialect or get_dialect(params.dialect)

    def open_cursor(self, database: str, expression: str, is_query: bool) -> SourceCursor:
        conn = self.dialect.connect(self.params, database)
        return SourceCursor(self.dialect, conn, expression, is_query)

    @contextmanager
    def _connection(self, database: str):
        conn = self.dialect.connect(self.params, database)
        try:
            yield conn
        finally:
            close_connection(conn, "source")

    def row_count(self, database: str, expression: str, is_query: bool) -> int:
        with self.open_cursor(database, expression, is_query) as cursor:
            return cursor.count()

    def describe(self, database: str, expression: str, is_query: bool) -> List[ColumnDescriptor]:
        with self.open_cursor(database, expression, is_query) as cursor:
            return list(cursor.columns)

    def preview(
        self,
        database: str,
        expression: str,
        is_query: bool,
        max_rows: int = DEFAULT_PREVIEW_ROWS,
    ) -> PreviewResult:
        """Return at most `max_rows` rows and the column names of the source expression."""
        if max_rows < 1:
            raise ValueError("max_rows must be at least 1")
        sql = self.dialect.preview_sql(expression, is_query, max_rows)
        with self._connection(database) as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(sql)
                columns = [d[0] for d in (cursor.description or [])]
                rows = [tuple(r) for r in cursor.fetchmany(max_rows)]
            except Exception as e:
                raise _source_error("preview source rows", e) from e
            finally:
                cursor.close()
        logger.debug(f"Preview returned {len(rows)} row(s) for {'query' if is_query else expression}")
        return PreviewResult(columns=columns, rows=rows)


__all__ = ["SourceReader", "SourceCursor", "DEFAULT_PREVIEW_ROWS"]
