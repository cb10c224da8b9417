"""FIFO hand-off between the capture loop and the batch accumulator."""

from __future__ import annotations

import enum
import logging
import queue
import threading
import time
from collections import deque
from typing import Deque, Iterable, Iterator, List, Optional

from .errors import QueueClosed
from .models import CapturedPacket

logger = logging.getLogger(__name__)


class QueueEmpty(Exception):
    """Raised by the non-blocking pop operations when nothing is queued."""


class OverflowPolicy(str, enum.Enum):
    """What a bounded queue does when a push finds it full."""

    BLOCK = "block"
    DROP_OLDEST = "drop_oldest"
    DROP_NEWEST = "drop_newest"


class CaptureQueue:
    """Ordered packet channel with explicit capacity and overflow handling.

    ``maxsize=0`` keeps the queue unbounded, so the producer never waits.
    Closing the queue lets consumers drain what is left and then stop.
    """

    def __init__(
        self,
        maxsize: int = 0,
        overflow: OverflowPolicy = OverflowPolicy.BLOCK,
    ) -> None:
        if maxsize < 0:
            raise ValueError("maxsize must be >= 0")
        self.maxsize = int(maxsize)
        self.overflow = OverflowPolicy(overflow)
        self.dropped = 0

        self._items: Deque[CapturedPacket] = deque()
        self._closed = False
        self._mutex = threading.Lock()
        self._not_empty = threading.Condition(self._mutex)
        self._not_full = threading.Condition(self._mutex)

    # ------------------------------------------------------------------
    def push(self, packet: CapturedPacket) -> bool:
        """Append *packet*; return False if the overflow policy discarded one."""
        with self._not_full:
            self._ensure_open()
            accepted = self._make_room()
            if accepted:
                self._items.append(packet)
                self._not_empty.notify()
            return accepted

    def push_multiple(self, packets: Iterable[CapturedPacket]) -> int:
        accepted = 0
        for packet in packets:
            if self.push(packet):
                accepted += 1
        return accepted

    def _make_room(self) -> bool:
        if not self.maxsize or len(self._items) < self.maxsize:
            return True
        if self.overflow is OverflowPolicy.DROP_NEWEST:
            self.dropped += 1
            logger.debug("Queue full, dropping newest packet")
            return False
        if self.overflow is OverflowPolicy.DROP_OLDEST:
            self._items.popleft()
            self.dropped += 1
            logger.debug("Queue full, dropping oldest packet")
            return True
        while len(self._items) >= self.maxsize:
            self._not_full.wait()
            self._ensure_open()
        return True

    # ------------------------------------------------------------------
    def get(self, timeout: Optional[float] = None) -> CapturedPacket:
        """Block until a packet is available.

        Raises :class:`queue.Empty` if *timeout* elapses first and
        :class:`QueueClosed` once the queue is closed and drained.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._not_empty:
            while not self._items:
                if self._closed:
                    raise QueueClosed("capture queue is closed")
                if deadline is None:
                    self._not_empty.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise queue.Empty
                self._not_empty.wait(remaining)
            return self._take()

    def pop(self) -> CapturedPacket:
        with self._mutex:
            if not self._items:
                raise QueueEmpty("queue is empty")
            return self._take()

    def pop_multiple(self, count: int) -> List[CapturedPacket]:
        with self._mutex:
            if not self._items:
                raise QueueEmpty("queue is empty")
            if count > len(self._items):
                raise ValueError("count is greater than the number of items in the queue")
            return [self._take() for _ in range(count)]

    def _take(self) -> CapturedPacket:
        packet = self._items.popleft()
        self._not_full.notify()
        return packet

    # ------------------------------------------------------------------
    def close(self) -> None:
        with self._mutex:
            if self._closed:
                return
            self._closed = True
            self._not_empty.notify_all()
            self._not_full.notify_all()
        logger.debug("Capture queue closed with %d packets pending", len(self))

    @property
    def closed(self) -> bool:
        with self._mutex:
            return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise QueueClosed("cannot push to a closed capture queue")

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[CapturedPacket]:
        while True:
            try:
                yield self.get()
            except QueueClosed:
                return


__all__ = ["CaptureQueue", "OverflowPolicy", "QueueEmpty"]
