"""Wires capture, queue, accumulator and store into one running pipeline."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from .batching import BatchAccumulator, BatchSink
from .capture import CaptureRunner, Device, HandleOpener, open_live
from .capture_queue import CaptureQueue
from .config import AppConfig

logger = logging.getLogger(__name__)


class Pipeline:
    """Capture thread -> queue -> accumulator thread -> store.

    When capture ends the queue is closed so the accumulator drains it,
    flushes its partial batch and exits.  ``finished`` is set once both
    loops are done; ``on_failure`` fires on the first fatal loop error.
    """

    def __init__(
        self,
        config: AppConfig,
        store: BatchSink,
        *,
        device: Optional[Device] = None,
        opener: HandleOpener = open_live,
        on_failure: Optional[Callable[[BaseException], None]] = None,
    ) -> None:
        self.config = config
        self.device = device or Device(name=config.device_name)
        self.queue = CaptureQueue(config.queue_size, config.overflow)
        self.on_failure = on_failure
        self.finished = threading.Event()

        self.accumulator = BatchAccumulator(
            self.queue,
            store,
            threshold=config.batch_threshold,
            on_exit=self._accumulator_exited,
        )
        self.capture = CaptureRunner(
            self.device,
            self.queue,
            filter_expression=config.filter_expression,
            mirror_path=config.mirror_path,
            opener=opener,
            on_exit=self._capture_exited,
        )

    @property
    def error(self) -> Optional[BaseException]:
        return self.capture.error or self.accumulator.error

    def start(self) -> None:
        self.accumulator.start()
        self.capture.start()
        logger.info("Pipeline started for %s", self.device.name)

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop capturing, then let the accumulator drain and flush."""
        self.capture.stop(timeout)
        self.queue.close()
        self.accumulator.join(timeout)
        logger.info(
            "Pipeline stopped: %d packets saved in %d batches",
            self.accumulator.saved_packets,
            self.accumulator.saved_batches,
        )

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self.finished.wait(timeout)

    # ------------------------------------------------------------------
    def _capture_exited(self, error: Optional[BaseException]) -> None:
        if error is not None:
            self._fail(error)
        self.queue.close()

    def _accumulator_exited(self, error: Optional[BaseException]) -> None:
        if error is not None:
            self._fail(error)
        self.finished.set()

    def _fail(self, error: BaseException) -> None:
        logger.critical("Pipeline loop failed: %s", error)
        if self.on_failure is not None:
            self.on_failure(error)


__all__ = ["Pipeline"]
