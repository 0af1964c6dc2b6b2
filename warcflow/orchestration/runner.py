"""
Pipeline runner: drive a stage chain over a record source, sequentially or
with a pool of worker threads.

Sequential
----------
One pass over `iter(source)`; every record goes through the optional filter
and then the chain; writers write straight to the sink.

Parallel
--------
    source.segments(n) -> [seg0, seg1, ...]
    worker(seg_i): private chain copy, private spool buffers, private report
    ReorderingQueue(capacity) <- (i, buffers)  # blocks when too far ahead
    SinkDrainer -> sinks                       # single writer, index order

There is one spool buffer per output slot of the chain (slot 0 is the run's
sink, the others are sinks of individual stages). Every sink therefore
receives exactly the bytes a sequential run would write, in the same order,
for any number of workers. A chain with an in-order stage (one that numbers
records as it sees them) is always run sequentially.

Failures
--------
Per-record stage failures are counted and the run continues. A structural
failure (RecordCorruption, SegmentOpenFailure, a sink write error, a worker
crash) in segment k cancels the workers of segments after k at their next
record boundary; segments before k run to completion, so a failure in an
earlier segment still takes precedence. The drainer stops at the last fully
drained segment, and RunAborted carries the error of the lowest failing
segment and a report of every segment up to and including it, which is what
a sequential run reports.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..config import RunnerConfig
from ..dto import FailureDescriptor, Record, RecordOutcome, Segment
from ..errors import RunAborted
from ..pipeline.emitter import SegmentOutput, SinkDrainer
from ..pipeline.reorder import QueueClosed, ReorderingQueue
from ..pipeline.report import RunReport
from ..pipeline.stages import StageChain
from ..ports import OutputSinkPort, RecordSourcePort
from ..sinks import GuardedSink, spool_buffer

logger = logging.getLogger(__name__)

RecordFilter = Callable[[Record], bool]


class RunState(str, Enum):
    IDLE = "idle"
    PARTITIONING = "partitioning"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


# ---------- Progress ----------
class _Progress:
    """Thread-safe record counter that logs every `every` records."""

    def __init__(self, every: int, on_record: Optional[Callable[[int], Any]] = None) -> None:
        self._every = max(1, int(every))
        self._on_record = on_record
        self._count = 0
        self._start = time.monotonic()
        self._lock = threading.Lock()

    def update(self) -> None:
        with self._lock:
            self._count += 1
            count = self._count
        if self._on_record is not None:
            self._on_record(1)
        if count % self._every == 0:
            elapsed = max(time.monotonic() - self._start, 1e-9)
            logger.info("%d records (%.1f records/s)", count, count / elapsed)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._start


@dataclass
class _SegmentResult:
    segment: Segment
    report: RunReport
    error: Optional[BaseException] = None


class _Cancellation:
    """
    Abort line of a parallel run: the lowest segment index with a structural
    failure. Segments past the line are cancelled; the others keep running.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._line: Optional[Tuple[int, BaseException]] = None

    def fail(self, index: int, error: BaseException) -> None:
        with self._lock:
            if self._line is None or index < self._line[0]:
                self._line = (index, error)

    def cancels(self, index: int) -> bool:
        line = self._line
        return line is not None and index > line[0]

    def first(self) -> Optional[Tuple[int, BaseException]]:
        """(segment index, error) of the lowest failing segment, if any."""
        with self._lock:
            return self._line


def _copy_filter(record_filter: Optional[RecordFilter]) -> Optional[RecordFilter]:
    if record_filter is None:
        return None
    copier = getattr(record_filter, "copy", None)
    return copier() if callable(copier) else record_filter


# ---------- Runner ----------
class PipelineRunner:
    """
    Run a StageChain over a record source.

    Parameters
    ----------
    source : RecordSourcePort
        Record supplier; must support `segments()` / `open_at()` for run().
    chain : StageChain
        Stages applied to every accepted record. Frozen while a run is active.
    sink : OutputSinkPort
        Destination for the output of every stage that has no sink of its own.
    config : RunnerConfig | None
        Worker count, queue capacity, spool size and progress interval.
    record_filter : Callable[[Record], bool] | None
        Records for which it returns False are counted as dropped and never
        reach the stages.
    on_record : Callable[[int], Any] | None
        Called with 1 after every handled record, from whichever thread
        handled it (e.g. `tqdm.update`).
    """

    def __init__(
        self,
        source: RecordSourcePort,
        chain: StageChain,
        sink: OutputSinkPort,
        *,
        config: Optional[RunnerConfig] = None,
        record_filter: Optional[RecordFilter] = None,
        on_record: Optional[Callable[[int], Any]] = None,
    ) -> None:
        self.source = source
        self.chain = chain
        self.sink = sink
        self.config = config or RunnerConfig()
        self.record_filter = record_filter
        self.on_record = on_record
        self._state = RunState.IDLE
        self._state_lock = threading.Lock()
        self.report: Optional[RunReport] = None

    @property
    def state(self) -> RunState:
        return self._state

    # --- sequential ---

    def run_sequentially(self) -> RunReport:
        """Process every record in container order on the calling thread."""
        self._begin(RunState.RUNNING)
        report = RunReport()
        progress = _Progress(self.config.progress_every, self.on_record)
        sinks = self._guarded_sinks()
        logger.info("sequential run over %r started", self.source)

        with self.chain.running():
            try:
                for record in self.source:
                    self._handle(self.chain, self.record_filter, record, sinks, report)
                    progress.update()
                for sink in sinks:
                    sink.flush()
            except Exception as exc:
                self._abort(exc, report)

        return self._complete(report, progress)

    # --- parallel ---

    def run(self, worker_count: Optional[int] = None) -> RunReport:
        """
        Process the source with `worker_count` threads (config default if None).

        Returns
        -------
        RunReport
            Identical, for the same source and chain, to the report of
            run_sequentially(); the sink contents are identical too.

        Raises
        ------
        RunAborted
            On any structural failure.
        """
        workers = self.config.worker_count if worker_count is None else int(worker_count)
        if workers < 1:
            raise ValueError("worker_count must be >= 1")
        if self.chain.in_order:
            logger.warning("chain has an in-order stage, running %r sequentially", self.source)
            return self.run_sequentially()

        self._begin(RunState.PARTITIONING)
        try:
            segments = self.source.segments(workers * self.config.segments_per_worker)
        except Exception as exc:
            self._abort(exc, RunReport())

        with self._state_lock:
            self._state = RunState.RUNNING
        progress = _Progress(self.config.progress_every, self.on_record)
        logger.info("parallel run over %r: %d segment(s), %d worker(s)", self.source, len(segments), workers)
        if not segments:
            return self._complete(RunReport(), progress)

        queue = ReorderingQueue(self.config.queue_capacity_factor * workers)
        cancel = _Cancellation()
        sinks = self._guarded_sinks()
        drainer = SinkDrainer(sinks=sinks, queue=queue, expected=len(segments), on_error=cancel.fail)
        reports: Dict[int, RunReport] = {}

        with self.chain.running():
            drainer.start()
            try:
                with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="warcflow-worker") as executor:
                    futures = {
                        executor.submit(self._run_segment, seg, queue, cancel, progress): seg for seg in segments
                    }
                    try:
                        for future in as_completed(futures):
                            try:
                                result = future.result()
                            except Exception as exc:
                                seg = futures[future]
                                logger.exception("worker for segment %d crashed", seg.index)
                                cancel.fail(seg.index, exc)
                                self._mark_incomplete(queue, seg.index)
                                continue
                            reports[result.segment.index] = result.report
                    except BaseException:
                        cancel.fail(-1, RuntimeError("run interrupted"))
                        queue.close()
                        raise
            finally:
                drainer.join()
                self._discard_pending(queue)

        first = cancel.first()
        if first is not None:
            index, error = first
            partial = RunReport.merge_all(reports[i] for i in sorted(reports) if i <= index)
            self._abort(error, partial)

        report = RunReport.merge_all(reports[i] for i in sorted(reports))
        try:
            for sink in sinks:
                sink.flush()
        except Exception as exc:
            self._abort(exc, report)

        return self._complete(report, progress)

    def _run_segment(
        self,
        segment: Segment,
        queue: ReorderingQueue,
        cancel: _Cancellation,
        progress: _Progress,
    ) -> _SegmentResult:
        """Worker body; structural errors are returned, not raised."""
        report = RunReport()
        buffers = [spool_buffer(self.config.spool_max_bytes) for _ in range(self.chain.slot_count)]
        complete = False
        error: Optional[BaseException] = None

        try:
            chain = self.chain.copy()
            record_filter = _copy_filter(self.record_filter)
            guarded = [GuardedSink(b) for b in buffers]
            for record in self.source.open_at(segment):
                if cancel.cancels(segment.index):
                    break
                self._handle(chain, record_filter, record, guarded, report)
                progress.update()
            else:
                complete = True
        except Exception as exc:
            logger.error("segment %d [%d, %d) failed: %s", segment.index, segment.start, segment.end, exc)
            cancel.fail(segment.index, exc)
            error = exc

        # An incomplete output stops the drainer at this segment.
        output = SegmentOutput(segment.index, buffers, complete)
        try:
            queue.put(segment.index, output)
        except QueueClosed:
            output.close()
        return _SegmentResult(segment, report, error)

    # === Helpers ===

    def _guarded_sinks(self) -> List[GuardedSink]:
        """The run's sink and every stage sink, indexed by output slot."""
        return [GuardedSink(s) for s in [self.sink] + self.chain.sinks()]

    @staticmethod
    def _handle(
        chain: StageChain,
        record_filter: Optional[RecordFilter],
        record: Record,
        sink: Any,
        report: RunReport,
    ) -> None:
        if record_filter is not None:
            try:
                accepted = record_filter(record)
            except Exception as exc:
                report.record_outcome(
                    record.record_id,
                    RecordOutcome.FAILED,
                    [
                        FailureDescriptor(
                            record_id=record.record_id,
                            offset=record.offset,
                            stage="filter",
                            error_type=type(exc).__name__,
                            message=str(exc),
                        )
                    ],
                )
                return
            if not accepted:
                report.record_outcome(record.record_id, RecordOutcome.DROPPED)
                return
        result = chain.apply(record, sink)
        report.record_outcome(record.record_id, result.outcome, result.failures)

    @staticmethod
    def _discard_pending(queue: ReorderingQueue) -> None:
        for out in queue.drain_pending().values():
            out.close()

    @staticmethod
    def _mark_incomplete(queue: ReorderingQueue, index: int) -> None:
        """Stand in for the output of a crashed worker so the drainer stops there."""
        try:
            queue.put(index, SegmentOutput(index, [], False))
        except QueueClosed:
            logger.debug("queue closed before segment %d was marked incomplete", index)
        except ValueError:
            logger.debug("segment %d output was already queued", index)

    def _begin(self, state: RunState) -> None:
        with self._state_lock:
            if self._state in (RunState.PARTITIONING, RunState.RUNNING):
                raise RuntimeError("runner is already running")
            self._state = state
            self.report = None

    def _complete(self, report: RunReport, progress: _Progress) -> RunReport:
        report.seal()
        with self._state_lock:
            self._state = RunState.COMPLETED
            self.report = report
        logger.info(
            "run completed: %d processed, %d dropped, %d failed in %.2fs",
            report.processed,
            report.dropped,
            report.failed,
            progress.elapsed,
        )
        return report

    def _abort(self, error: BaseException, report: RunReport) -> None:
        report.seal()
        with self._state_lock:
            self._state = RunState.ABORTED
            self.report = report
        logger.error("run aborted after %d record(s): %s", report.attempted, error)
        raise RunAborted(error, report) from error
