from dbxfer.core.errors import (
    CancellationError,
    DbConnectionError,
    DbxferError,
    ErrorKind,
    RequestValidationError,
    SchemaError,
    SourceError,
    TransferError,
)
from dbxfer.core.models import (
    AuthenticationType,
    ConnectionParams,
    TransferAction,
    TransferMode,
    TransferProgress,
    TransferRequest,
    TransferResult,
    TransferState,
)
from dbxfer.tools.catalog import list_data_types, list_databases, list_tables, preview, row_count, test_connection
from dbxfer.tools.transfer import CancellationToken, QueueProgressSink, transfer, transfer_async

__version__ = "0.1.0"

__all__ = [
    "AuthenticationType",
    "ConnectionParams",
    "TransferAction",
    "TransferMode",
    "TransferProgress",
    "TransferRequest",
    "TransferResult",
    "TransferState",
    "ErrorKind",
    "DbxferError",
    "DbConnectionError",
    "SourceError",
    "SchemaError",
    "TransferError",
    "CancellationError",
    "RequestValidationError",
    "CancellationToken",
    "QueueProgressSink",
    "transfer",
    "transfer_async",
    "test_connection",
    "list_databases",
    "list_tables",
    "row_count",
    "preview",
    "list_data_types",
]
