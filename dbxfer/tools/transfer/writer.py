"""
Destination Writer.

DDL runs and commits on its own before loading starts. Everything after that
(the optional DELETE, every batch insert and the identity-insert toggles) runs
on one connection inside one transaction owned by a WriteSession, so the
destination either receives the complete load or is left exactly as it was.
"""

from typing import List, Optional, Sequence

from dbxfer.core.errors import DbConnectionError, DbxferError, SchemaError, TransferError, classify_db_error
from dbxfer.core.logger import setup_logger, sql_summary
from dbxfer.core.models import ConnectionParams, TransferAction
from dbxfer.tools.dialects import Dialect, get_dialect
from dbxfer.tools.dialects.base import close_connection

logger = setup_logger(__name__, include_location=True)

DEFAULT_BATCH_SIZE = 1000


def _transfer_error(message: str, code: str, error: Exception, **extra) -> DbxferError:
    if isinstance(error, DbxferError):
        return error
    details = classify_db_error(error)
    details.update(extra)
    return TransferError(f"{message}: {error}", code=code, details=details)


class WriteSession:
    """
    One destination transaction for one transfer.

    Used as a context manager; leaving the block without `commit()` rolls the
    transaction back.
    """

    def __init__(
        self,
        dialect: Dialect,
        conn,
        table_name: str,
        columns: Sequence[str],
        action: TransferAction = TransferAction.APPEND,
        batch_size: int = DEFAULT_BATCH_SIZE,
        omit_columns: Sequence[str] = (),
    ):
        self.dialect = dialect
        self.conn = conn
        self.table_name = table_name
        omitted = {c.lower() for c in omit_columns}
        # positions of the inserted columns within each source row
        self.positions = [i for i, c in enumerate(columns) if c.lower() not in omitted]
        self.columns = [columns[i] for i in self.positions]
        self.omitted_columns = [c for c in columns if c.lower() in omitted]
        if not self.columns:
            raise TransferError(
                f"Every column of '{table_name}' is generated by the destination",
                code="TRANSFER_NO_COLUMNS",
                details={"omitted": self.omitted_columns},
            )
        self.action = action
        self.batch_size = batch_size
        self.rows_loaded = 0
        self.batches = 0
        self.identity_insert = False
        self.committed = False
        self.rolled_back = False
        self.deleted_rows: Optional[int] = None
        self._insert_sql = None

    def _execute(self, sql: str, params=None) -> int:
        cursor = self.conn.cursor()
        try:
            if params is None:
                cursor.execute(sql)
            else:
                cursor.execute(sql, params)
            return cursor.rowcount
        finally:
            cursor.close()

    def clear(self) -> int:
        """Delete every destination row inside the session transaction."""
        sql = self.dialect.delete_all_sql(self.table_name)
        logger.debug(f"Clearing destination {self.table_name}: {sql_summary(sql)}")
        try:
            self.deleted_rows = self._execute(sql)
        except Exception as e:
            raise _transfer_error(f"Failed to clear destination table '{self.table_name}'", "TRANSFER_CLEAR_FAILED", e) from e
        return self.deleted_rows

    def set_identity_insert(self, enabled: bool) -> None:
        sql = self.dialect.identity_insert_sql(self.table_name, enabled)
        self.identity_insert = enabled
        if not sql:
            return
        try:
            self._execute(sql)
        except Exception as e:
            raise _transfer_error(
                f"Failed to {'enable' if enabled else 'disable'} identity insert on '{self.table_name}'",
                "TRANSFER_IDENTITY_INSERT_FAILED",
                e,
            ) from e

    def insert_sql(self) -> str:
        if self._insert_sql is None:
            self._insert_sql = self.dialect.insert_sql(self.table_name, self.columns, self.identity_insert)
        return self._insert_sql

    def load_batch(self, rows: List[tuple]) -> int:
        """Insert one batch in the open transaction and return the rows loaded so far."""
        if self.committed or self.rolled_back:
            raise TransferError("Write session is already finished", code="TRANSFER_SESSION_CLOSED")
        if len(rows) > self.batch_size:
            raise ValueError(f"Batch of {len(rows)} rows exceeds the batch size of {self.batch_size}")
        if not rows:
            return self.rows_loaded

        adapt = self.dialect.adapt_value
        if self.omitted_columns:
            values = [tuple(adapt(row[i]) for i in self.positions) for row in rows]
        else:
            values = [tuple(adapt(v) for v in row) for row in rows]
        batch_number = self.batches + 1
        cursor = self.conn.cursor()
        try:
            self.dialect.prepare_batch_cursor(cursor)
            cursor.executemany(self.insert_sql(), values)
        except Exception as e:
            raise _transfer_error(
                f"Batch {batch_number} failed loading into '{self.table_name}'",
                "TRANSFER_BATCH_FAILED",
                e,
                batch=batch_number,
                first_row=self.rows_loaded + 1,
            ) from e
        finally:
            cursor.close()

        self.batches = batch_number
        self.rows_loaded += len(values)
        logger.debug(f"Loaded batch {batch_number}: {len(values)} rows, {self.rows_loaded} total")
        return self.rows_loaded

    def commit(self) -> None:
        try:
            self.conn.commit()
        except Exception as e:
            raise _transfer_error(f"Failed to commit load into '{self.table_name}'", "TRANSFER_COMMIT_FAILED", e) from e
        self.committed = True

    def rollback(self) -> None:
        if self.committed or self.rolled_back:
            return
        try:
            self.conn.rollback()
            logger.info(f"Rolled back load into {self.table_name}")
        except Exception as e:
            logger.error(f"Rollback of {self.table_name} failed: {e}")
        self.rolled_back = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if not self.committed:
            self.rollback()
        return False


class DestinationWriter:
    """Connection to one destination database; hands out write sessions on it."""

    def __init__(
        self,
        params: ConnectionParams,
        database: str,
        dialect: Optional[Dialect] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        self.params = params
        self.database = database
        self.dialect = dialect or get_dialect(params.dialect)
        self.batch_size = batch_size
        self._conn = None

    @property
    def conn(self):
        if self._conn is None:
            conn = self.dialect.connect(self.params, self.database)
            try:
                self.dialect.prepare_write_connection(conn)
            except Exception as e:
                close_connection(conn, "destination")
                raise DbConnectionError(
                    f"Could not prepare destination connection: {e}",
                    code="CONN_FAILED",
                    details=classify_db_error(e),
                ) from e
            self._conn = conn
        return self._conn

    def identity_columns(self, table_name: str) -> List[str]:
        try:
            return self.dialect.identity_columns(self.conn, table_name)
        except DbxferError:
            raise
        except Exception as e:
            raise SchemaError(
                f"Failed to look up identity columns of '{table_name}': {e}",
                code="SCHEMA_LOOKUP_FAILED",
                details=classify_db_error(e),
            ) from e

    def ensure_table(self, ddl: Optional[str]) -> bool:
        """Run and commit a CREATE TABLE statement. Returns False when there is nothing to create."""
        if not ddl:
            return False
        logger.info(f"Creating destination table: {sql_summary(ddl)}")
        cursor = self.conn.cursor()
        try:
            cursor.execute(ddl)
            self.conn.commit()
        except Exception as e:
            try:
                self.conn.rollback()
            except Exception as rollback_error:
                logger.warning(f"Rollback after failed DDL failed: {rollback_error}")
            raise SchemaError(
                f"Failed to create destination table: {e}",
                code="SCHEMA_DDL_FAILED",
                details=classify_db_error(e),
            ) from e
        finally:
            cursor.close()
        return True

    def begin_write(
        self,
        table_name: str,
        action: TransferAction,
        columns: Sequence[str],
        preserve_identity: bool = False,
    ) -> WriteSession:
        """
        Open the write session. For REPLACE the DELETE runs here, uncommitted,
        in the same transaction that will hold the loaded rows.

        Unless `preserve_identity` is set, identity columns of the destination
        are left out of the INSERT so the destination generates new keys.
        """
        omitted = [] if preserve_identity else self.identity_columns(table_name)
        session = WriteSession(self.dialect, self.conn, table_name, columns, action, self.batch_size, omitted)
        if session.omitted_columns:
            logger.info(
                f"Identity column(s) {', '.join(session.omitted_columns)} of {table_name} "
                f"are generated by the destination"
            )
        if action == TransferAction.REPLACE:
            try:
                session.clear()
            except Exception:
                session.rollback()
                raise
        return session

    def close(self) -> None:
        close_connection(self._conn, "destination")
        self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


__all__ = ["DestinationWriter", "WriteSession", "DEFAULT_BATCH_SIZE"]
