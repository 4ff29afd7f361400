"""
Catalog helpers used before a transfer is configured: connection checks,
database and table listings, row counts, previews and the data type catalog.
"""

from typing import List, Optional

from dbxfer.core.errors import DbxferError, DbConnectionError, SourceError, classify_db_error
from dbxfer.core.logger import setup_logger
from dbxfer.core.models import ConnectionParams, DatabaseInfo, PreviewResult, TableInfo
from dbxfer.tools.dialects import get_dialect
from dbxfer.tools.dialects.base import close_connection
from dbxfer.tools.transfer.source import DEFAULT_PREVIEW_ROWS, SourceReader
from dbxfer.tools.transfer.types import list_data_types

logger = setup_logger(__name__, include_location=True)


def test_connection(params: ConnectionParams, database: Optional[str] = None) -> bool:
    """Open a connection and run a trivial query. Failures are logged, not raised."""
    dialect = get_dialect(params.dialect)
    conn = None
    try:
        conn = dialect.connect(params, database)
        dialect.ping(conn)
        logger.info(f"Connection to {params.dialect}://{params.server} succeeded")
        return True
    except Exception as e:
        logger.warning(f"Connection test failed: {e}")
        return False
    finally:
        close_connection(conn)


# keep pytest from collecting the helper when it is imported into a test module
test_connection.__test__ = False


def _catalog_call(params: ConnectionParams, database: Optional[str], what: str, fn):
    dialect = get_dialect(params.dialect)
    conn = dialect.connect(params, database)
    try:
        return fn(dialect, conn)
    except DbxferError:
        raise
    except Exception as e:
        details = classify_db_error(e)
        if details.get("db_kind") == "connection":
            raise DbConnectionError(f"Failed to list {what}: {e}", details=details) from e
        raise SourceError(f"Failed to list {what}: {e}", code="CATALOG_QUERY_FAILED", details=details) from e
    finally:
        close_connection(conn)


def list_databases(params: ConnectionParams) -> List[DatabaseInfo]:
    """User databases on the server (system databases excluded)."""
    return _catalog_call(params, params.database, "databases", lambda d, c: d.list_databases(c, params))


def list_tables(params: ConnectionParams, database: str) -> List[TableInfo]:
    """Base tables of `database` with their column counts, ordered by schema and name."""
    return _catalog_call(params, database, "tables", lambda d, c: d.list_tables(c))


def row_count(params: ConnectionParams, database: str, expression: str, is_query: bool = False) -> int:
    return SourceReader(params).row_count(database, expression, is_query)


def preview(
    params: ConnectionParams,
    database: str,
    expression: str,
    is_query: bool = False,
    max_rows: int = DEFAULT_PREVIEW_ROWS,
) -> PreviewResult:
    return SourceReader(params).preview(database, expression, is_query, max_rows)


__all__ = [
    "test_connection",
    "list_databases",
    "list_tables",
    "row_count",
    "preview",
    "list_data_types",
]
