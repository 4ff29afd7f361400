"""
Schema Resolver.

Maps source column metadata onto destination column definitions through the
fixed type table and decides whether the destination table needs creating.
Every column is resolved before any DDL text is produced, so an unmapped type
fails the transfer without touching the destination.
"""

from typing import List, Optional, Sequence

from dbxfer.core.errors import DbxferError, SchemaError, classify_db_error
from dbxfer.core.logger import setup_logger
from dbxfer.core.models import ColumnDescriptor
from dbxfer.tools.dialects import Dialect
from dbxfer.tools.transfer.types import lookup, render_type

logger = setup_logger(__name__, include_location=True)


class SchemaResolver:
    def __init__(self, source_dialect: str, destination: Dialect):
        self.source_dialect = source_dialect
        self.destination = destination

    def column_definitions(self, columns: Sequence[ColumnDescriptor]) -> List[str]:
        if not columns:
            raise SchemaError("Source exposes no columns", code="SCHEMA_NO_COLUMNS")
        definitions = []
        for column in columns:
            try:
                spec = lookup(self.source_dialect, column.data_type)
            except SchemaError as e:
                e.details.setdefault("column", column.name)
                e.message = f"Column '{column.name}': {e.message}"
                e.args = (e.message,)
                raise
            declared = render_type(spec, column, self.destination.name)
            definitions.append(self.destination.column_definition(column.name, declared, column.nullable))
        return definitions

    def create_table_sql(self, table_name: str, columns: Sequence[ColumnDescriptor]) -> str:
        return self.destination.create_table_sql(table_name, self.column_definitions(columns))

    def table_exists(self, conn, table_name: str) -> bool:
        try:
            return self.destination.table_exists(conn, table_name)
        except DbxferError:
            raise
        except Exception as e:
            raise SchemaError(
                f"Failed to look up destination table '{table_name}': {e}",
                code="SCHEMA_LOOKUP_FAILED",
                details=classify_db_error(e),
            ) from e

    def resolve(self, conn, table_name: str, columns: Sequence[ColumnDescriptor]) -> Optional[str]:
        """
        Return the CREATE TABLE statement for a missing destination table, or
        None when the table already exists.

        Columns of an existing table are not compared with the source; an
        incompatible row surfaces later as a TransferError from the loader.
        """
        if self.table_exists(conn, table_name):
            logger.info(f"Destination table {table_name} exists, no DDL issued")
            return None
        ddl = self.create_table_sql(table_name, columns)
        logger.info(f"Destination table {table_name} is missing, {len(columns)} column(s) resolved")
        return ddl


__all__ = ["SchemaResolver"]
