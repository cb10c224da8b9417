"""Drains the capture queue into bounded batches for the packet store."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, List, Optional, Protocol, Sequence

from .capture_queue import CaptureQueue, QueueEmpty
from .errors import QueueClosed
from .models import CapturedPacket

logger = logging.getLogger(__name__)

BATCH_THRESHOLD = 100


class BatchSink(Protocol):
    def save_packets(self, packets: Sequence[CapturedPacket]) -> None:  # pragma: no cover - protocol definition
        ...


class BatchAccumulator:
    """Collects queued packets and saves them once the batch exceeds *threshold*.

    The flush triggers on ``len(batch) > threshold``, so every triggered save
    carries everything accumulated since the previous one.  A failed save
    ends the loop; nothing is retried.
    """

    def __init__(
        self,
        packet_queue: CaptureQueue,
        store: BatchSink,
        *,
        threshold: int = BATCH_THRESHOLD,
        flush_on_close: bool = True,
        poll_interval: float = 0.5,
        on_exit: Optional[Callable[[Optional[BaseException]], None]] = None,
    ) -> None:
        if threshold < 0:
            raise ValueError("threshold must be >= 0")
        self.packet_queue = packet_queue
        self.store = store
        self.threshold = threshold
        self.flush_on_close = flush_on_close
        self.poll_interval = poll_interval

        self.saved_batches = 0
        self.saved_packets = 0
        self.error: Optional[BaseException] = None

        self._batch: List[CapturedPacket] = []
        self._on_exit = on_exit
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    @property
    def pending(self) -> int:
        return len(self._batch)

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        """Consume the queue until it closes or *stop_event* is set."""
        stop_event = stop_event or self._stop_event
        while not stop_event.is_set():
            try:
                packet = self.packet_queue.get(timeout=self.poll_interval)
            except queue.Empty:
                continue
            except QueueClosed:
                logger.info("Capture queue closed")
                break

            self._batch.append(packet)
            if len(self._batch) > self.threshold:
                self.flush()

        self._drain()
        if self.flush_on_close and self._batch:
            logger.info("Flushing %d pending packets on shutdown", len(self._batch))
            self.flush()
        elif self._batch:
            logger.warning("Discarding %d unsaved packets on shutdown", len(self._batch))
            self._batch = []

    def _drain(self) -> None:
        """Move whatever is still queued into the batch without waiting."""
        while True:
            try:
                self._batch.append(self.packet_queue.pop())
            except QueueEmpty:
                return

    def flush(self) -> None:
        batch, self._batch = self._batch, []
        if not batch:
            return
        try:
            self.store.save_packets(batch)
        except Exception:
            logger.exception("Failed to save batch of %d packets", len(batch))
            raise
        self.saved_batches += 1
        self.saved_packets += len(batch)
        logger.debug("Saved batch %d (%d packets)", self.saved_batches, len(batch))

    # ------------------------------------------------------------------
    def start(self) -> None:
        with self._lock:
            if self._thread is not None:
                raise RuntimeError("Accumulator already running")
            self._thread = threading.Thread(target=self._run, name="batch-accumulator", daemon=True)
            self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        self.join(timeout)

    def join(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            thread = self._thread
        if thread is not None:
            thread.join(timeout)

    def is_running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        try:
            self.run()
        except Exception as exc:
            self.error = exc
        if self._on_exit is not None:
            try:
                self._on_exit(self.error)
            except Exception:  # pragma: no cover - user supplied handler
                logger.exception("Accumulator exit handler raised an exception")


__all__ = ["BATCH_THRESHOLD", "BatchSink", "BatchAccumulator"]
