"""
Transfer Orchestrator.

Drives one transfer through its states:

    VALIDATING -> COUNTING -> PREPARING_SCHEMA -> (CLEARING_DESTINATION)
        -> LOADING -> COMMITTING -> SUCCEEDED

FAILED and CANCELLED are reachable from every non-terminal state. The
cancellation token is checked at every state boundary and before each batch.
Engine errors never escape `run()`: they roll back the write session, publish a
terminal snapshot and come back as a failed TransferResult.

Usage:
    result = transfer(source_params, destination_params, request, progress=print)
    if not result.success:
        print(result.error.kind, result.message)
"""

import asyncio
import time
import uuid
from typing import List, Optional

from dbxfer.core.config import Settings, get_settings
from dbxfer.core.errors import CancellationError, ErrorInfo, ErrorKind, RequestValidationError, classify_error
from dbxfer.core.logger import setup_logger, transfer_context
from dbxfer.core.models import (
    ConnectionParams,
    TransferAction,
    TransferProgress,
    TransferRequest,
    TransferResult,
    TransferState,
)
from dbxfer.tools.transfer.progress import CancellationToken, SinkLike, as_sink
from dbxfer.tools.transfer.schema import SchemaResolver
from dbxfer.tools.transfer.source import SourceCursor, SourceReader
from dbxfer.tools.transfer.writer import DestinationWriter, WriteSession

logger = setup_logger(__name__, include_location=True)


class TransferOrchestrator:
    """Runs a single TransferRequest. Instances are single-use."""

    def __init__(
        self,
        source: ConnectionParams,
        destination: ConnectionParams,
        request: TransferRequest,
        progress: SinkLike = None,
        cancel: Optional[CancellationToken] = None,
        settings: Optional[Settings] = None,
    ):
        self.source = source
        self.destination = destination
        self.request = request
        self.sink = as_sink(progress)
        self.cancel = cancel or CancellationToken()
        self.settings = settings or get_settings()
        self.batch_size = self.settings.batch_size
        self.transfer_id = uuid.uuid4().hex[:12]

        self.state = TransferState.VALIDATING
        self.history: List[TransferState] = [self.state]
        self.total_rows = 0
        self.transferred_rows = 0
        self.batches = 0
        self.table_created = False
        self._started = False

    # progress

    def _publish(
        self,
        message: str,
        complete: bool = False,
        success: bool = False,
        error: Optional[ErrorInfo] = None,
        total_rows: Optional[int] = None,
    ) -> TransferProgress:
        snapshot = TransferProgress(
            total_rows=self.total_rows if total_rows is None else total_rows,
            transferred_rows=self.transferred_rows,
            state=self.state,
            status_message=message,
            is_complete=complete,
            is_success=success,
            error_message=error.message if error else None,
            error_kind=error.kind if error else None,
        )
        self.sink.publish(snapshot)
        return snapshot

    def _enter(self, state: TransferState, message: str) -> None:
        self.cancel.raise_if_cancelled()
        self.state = state
        self.history.append(state)
        logger.debug(f"Transfer {self.transfer_id} -> {state.value}: {message}")
        self._publish(message)

    # phases

    def _validate(self) -> None:
        problems = self.request.validation_errors()
        if problems:
            raise RequestValidationError(
                "Invalid transfer request: " + "; ".join(problems),
                details={"problems": problems},
            )
        self._publish("Validating transfer request")

    def _load(self, cursor: SourceCursor, session: WriteSession) -> None:
        for batch in cursor.batches(self.batch_size, self.cancel):
            self.transferred_rows = session.load_batch(batch)
            self.batches = session.batches
            self._publish(f"Transferred {self.transferred_rows:,} of {self.total_rows:,} rows")

    def _result(self, success: bool, message: str, started: float, error: Optional[ErrorInfo] = None,
                rows: int = 0) -> TransferResult:
        return TransferResult(
            success=success,
            state=self.state,
            total_rows=self.total_rows,
            rows_transferred=rows,
            batches=self.batches,
            table_created=self.table_created,
            message=message,
            error=error,
            duration_s=round(time.monotonic() - started, 3),
        )

    def run(self) -> TransferResult:
        if self._started:
            raise RuntimeError("TransferOrchestrator instances are single-use")
        self._started = True
        request = self.request
        started = time.monotonic()

        cursor: Optional[SourceCursor] = None
        writer: Optional[DestinationWriter] = None
        session: Optional[WriteSession] = None

        with transfer_context(self.transfer_id, request.destination_table):
            logger.info(
                f"Starting transfer {request.mode.value} "
                f"{self.source.dialect}://{self.source.server}/{request.source_database} -> "
                f"{self.destination.dialect}://{self.destination.server}/{request.destination_database} "
                f"| action={request.action.value} | batch_size={self.batch_size}"
            )
            try:
                self._validate()

                self._enter(TransferState.COUNTING, "Counting source rows")
                cursor = SourceReader(self.source).open_cursor(
                    request.source_database, request.source_expression, request.is_query
                )
                self.total_rows = cursor.count()
                logger.info(f"Source row count: {self.total_rows}")

                self._enter(TransferState.PREPARING_SCHEMA, f"Preparing destination table {request.destination_table}")
                columns = cursor.columns
                writer = DestinationWriter(self.destination, request.destination_database, batch_size=self.batch_size)
                resolver = SchemaResolver(self.source.dialect, writer.dialect)
                ddl = resolver.resolve(writer.conn, request.destination_table, columns)
                self.table_created = writer.ensure_table(ddl)

                if request.action == TransferAction.REPLACE:
                    self._enter(TransferState.CLEARING_DESTINATION, f"Clearing {request.destination_table}")
                session = writer.begin_write(
                    request.destination_table,
                    request.action,
                    [c.name for c in columns],
                    preserve_identity=request.preserve_identity,
                )
                if request.preserve_identity:
                    session.set_identity_insert(True)

                self._enter(TransferState.LOADING, f"Loading {self.total_rows:,} rows")
                self._load(cursor, session)
                if request.preserve_identity:
                    session.set_identity_insert(False)

                self._enter(TransferState.COMMITTING, "Committing transaction")
                session.commit()

                self.state = TransferState.SUCCEEDED
                self.history.append(self.state)
                if self.transferred_rows != self.total_rows:
                    logger.warning(
                        f"Source returned {self.transferred_rows} rows but counted {self.total_rows}"
                    )
                message = f"Transferred {self.transferred_rows:,} rows in {self.batches} batch(es)"
                # the final snapshot always reads 100%, even if the source drifted after counting
                self._publish(message, complete=True, success=True, total_rows=self.transferred_rows)
                logger.success(f"Transfer {self.transfer_id} complete: {message}")
                return self._result(True, message, started, rows=self.transferred_rows)

            except Exception as e:
                if session is not None:
                    session.rollback()
                info = classify_error(e)
                if isinstance(e, CancellationError):
                    self.state = TransferState.CANCELLED
                    message = f"Transfer cancelled, {self.transferred_rows:,} loaded rows rolled back"
                    logger.warning(f"Transfer {self.transfer_id} cancelled during {self.history[-1].value}")
                else:
                    self.state = TransferState.FAILED
                    message = info.message
                    logger.error(
                        f"Transfer {self.transfer_id} failed during {self.history[-1].value}: {e}",
                        exc_info=info.kind == ErrorKind.UNKNOWN,
                    )
                self.history.append(self.state)
                self._publish(message, complete=True, success=False, error=info)
                return self._result(False, message, started, error=info)

            finally:
                if cursor is not None:
                    cursor.close()
                if writer is not None:
                    writer.close()


def transfer(
    source: ConnectionParams,
    destination: ConnectionParams,
    request: TransferRequest,
    progress: SinkLike = None,
    cancel: Optional[CancellationToken] = None,
    settings: Optional[Settings] = None,
) -> TransferResult:
    """Run one transfer on the calling thread and return its result."""
    return TransferOrchestrator(source, destination, request, progress, cancel, settings).run()


async def transfer_async(
    source: ConnectionParams,
    destination: ConnectionParams,
    request: TransferRequest,
    progress: SinkLike = None,
    cancel: Optional[CancellationToken] = None,
    settings: Optional[Settings] = None,
) -> TransferResult:
    """
    Run `transfer()` on a worker thread.

    Cancelling the awaiting task sets the cancellation token; the transfer stops
    at its next batch boundary and rolls back before the task finishes.
    """
    token = cancel or CancellationToken()
    task = asyncio.ensure_future(
        asyncio.to_thread(transfer, source, destination, request, progress, token, settings)
    )
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        token.cancel("awaiting task was cancelled")
        await task
        raise


__all__ = ["TransferOrchestrator", "transfer", "transfer_async"]
