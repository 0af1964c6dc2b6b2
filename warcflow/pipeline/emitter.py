"""
Sink drainer (single writer).

Purpose
-------
Forward finished segment outputs from the parallel workers to the run's
output sinks in segment order. This is the only thread that ever calls
`sink.write()` during a parallel run, so sinks need no locking of their own.

Behavior
--------
- takes `SegmentOutput`s from the ReorderingQueue in index order
- copies each complete output into the sinks (buffer i goes to sink i, one
  buffer per output slot of the stage chain), then releases the buffers
- stops at the first incomplete output (its worker was cancelled or failed),
  or when the queue is closed; the queue is closed on exit either way
- a sink write error is reported through `on_error`, which the runner uses to
  cancel the workers of later segments

Sink content written before a stop is left in place: it is exactly the
output of segments 0..k for the last fully drained k.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import IO, Callable, List, Optional, Sequence

from ..ports import OutputSinkPort
from .reorder import QueueClosed, ReorderingQueue

logger = logging.getLogger(__name__)

COPY_CHUNK = 1 << 20


@dataclass
class SegmentOutput:
    """A worker's buffered output for one segment, one buffer per output slot."""

    index: int
    buffers: List[IO[bytes]]
    complete: bool

    def close(self) -> None:
        for buffer in self.buffers:
            buffer.close()


class SinkDrainer:
    """
    Ordered copier from worker buffers to the output sinks.

    Parameters
    ----------
    sinks : Sequence[OutputSinkPort]
        Downstream destinations, indexed by output slot; only written from
        the drainer thread.
    queue : ReorderingQueue
        Source of SegmentOutput items, one per segment index.
    expected : int
        Number of segments in the run; the drainer exits after that many.
    on_error : Callable[[int, BaseException], None] | None
        Called with (segment index, error) if writing to a sink fails.
    """

    def __init__(
        self,
        *,
        sinks: Sequence[OutputSinkPort],
        queue: ReorderingQueue,
        expected: int,
        on_error: Optional[Callable[[int, BaseException], None]] = None,
    ) -> None:
        self._sinks = list(sinks)
        self._queue = queue
        self._expected = int(expected)
        self._on_error = on_error
        self._thread = threading.Thread(target=self._run, name="warcflow-drainer", daemon=True)
        self.drained = 0

    # --- lifecycle ---

    def start(self) -> "SinkDrainer":
        self._thread.start()
        return self

    def join(self, timeout: Optional[float] = None) -> None:
        self._thread.join(timeout)

    # --- worker loop ---

    def _run(self) -> None:
        try:
            self._drain()
        finally:
            # Producers still blocked in put() get QueueClosed.
            self._queue.close()

    def _drain(self) -> None:
        while self.drained < self._expected:
            try:
                out: SegmentOutput = self._queue.take()
            except QueueClosed:
                logger.debug("drainer stopped after %d/%d segments (queue closed)", self.drained, self._expected)
                return
            try:
                if not out.complete:
                    logger.debug("drainer stopped at incomplete segment %d", out.index)
                    return
                for sink, buffer in zip(self._sinks, out.buffers):
                    self._copy(buffer, sink)
            except Exception as exc:
                logger.error("writing segment %d to the sink failed: %s", out.index, exc)
                if self._on_error is not None:
                    self._on_error(out.index, exc)
                return
            finally:
                out.close()
            self.drained += 1

    @staticmethod
    def _copy(buffer: IO[bytes], sink: OutputSinkPort) -> None:
        buffer.seek(0)
        while True:
            chunk = buffer.read(COPY_CHUNK)
            if not chunk:
                break
            sink.write(chunk)
