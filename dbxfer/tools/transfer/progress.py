"""
Cancellation and progress delivery for a running transfer.

The orchestrator runs on the caller's worker thread and publishes immutable
`TransferProgress` snapshots to a sink. Sinks never raise into the engine:

- CallbackProgressSink invokes a callable and logs (then ignores) its failures.
- QueueProgressSink puts snapshots on a bounded queue for another thread or an
  event loop to drain; when the consumer falls behind the oldest snapshot is
  dropped, so the terminal snapshot is always delivered.
"""

import queue
import threading
from typing import Callable, Optional, Protocol, Union, runtime_checkable

from dbxfer.core.config import get_settings
from dbxfer.core.errors import CancellationError
from dbxfer.core.logger import setup_logger
from dbxfer.core.models import TransferProgress

logger = setup_logger(__name__, include_location=True)


class CancellationToken:
    """Cooperative cancellation flag shared between the caller and the engine."""

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: Optional[str] = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationError(
                f"Transfer cancelled by caller: {self.reason}" if self.reason else "Transfer cancelled by caller"
            )

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


@runtime_checkable
class ProgressSink(Protocol):
    def publish(self, progress: TransferProgress) -> None:
        ...


class NullProgressSink:
    def publish(self, progress: TransferProgress) -> None:
        pass


class CallbackProgressSink:
    def __init__(self, callback: Callable[[TransferProgress], None]):
        self.callback = callback

    def publish(self, progress: TransferProgress) -> None:
        try:
            self.callback(progress)
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")


class QueueProgressSink:
    def __init__(self, maxsize: Optional[int] = None):
        if maxsize is None:
            maxsize = get_settings().progress_queue_size
        self.queue: "queue.Queue[TransferProgress]" = queue.Queue(maxsize=maxsize)
        self.dropped = 0

    def publish(self, progress: TransferProgress) -> None:
        while True:
            try:
                self.queue.put_nowait(progress)
                return
            except queue.Full:
                try:
                    self.queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass

    def get(self, timeout: Optional[float] = None) -> TransferProgress:
        return self.queue.get(timeout=timeout)

    def drain(self) -> list:
        items = []
        while True:
            try:
                items.append(self.queue.get_nowait())
            except queue.Empty:
                return items


SinkLike = Union[ProgressSink, Callable[[TransferProgress], None], None]


def as_sink(sink: SinkLike) -> ProgressSink:
    """Accept a sink, a plain callable or None."""
    if sink is None:
        return NullProgressSink()
    if isinstance(sink, ProgressSink):
        return sink
    if callable(sink):
        return CallbackProgressSink(sink)
    raise TypeError(f"Unsupported progress sink: {sink!r}")


__all__ = [
    "CancellationToken",
    "ProgressSink",
    "NullProgressSink",
    "CallbackProgressSink",
    "QueueProgressSink",
    "as_sink",
]
