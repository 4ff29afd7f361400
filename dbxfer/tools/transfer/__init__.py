from dbxfer.tools.transfer.executor import TransferOrchestrator, transfer, transfer_async
from dbxfer.tools.transfer.progress import (
    CallbackProgressSink,
    CancellationToken,
    ProgressSink,
    QueueProgressSink,
)
from dbxfer.tools.transfer.schema import SchemaResolver
from dbxfer.tools.transfer.source import SourceCursor, SourceReader
from dbxfer.tools.transfer.writer import DestinationWriter, WriteSession

__all__ = [
    "TransferOrchestrator",
    "transfer",
    "transfer_async",
    "CancellationToken",
    "ProgressSink",
    "CallbackProgressSink",
    "QueueProgressSink",
    "SchemaResolver",
    "SourceReader",
    "SourceCursor",
    "DestinationWriter",
    "WriteSession",
]
