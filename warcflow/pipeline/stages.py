"""
Stage chain: ordered (processor, writer) pairs applied to every record.

Each stage receives the same input record. A processor returning None drops
the record for that stage only; otherwise the writer serializes the value to
the sink. A raise from either half becomes a per-record failure descriptor
and the remaining stages still run; only SinkFailure escapes.

Bare callables are accepted on both sides and wrapped into adapters, so
`chain.add(lambda r: r.target_uri, ToStringWriter())` works as expected.

Parallel runs call `copy()` once per worker. Stateless stages are shared
(flyweight); stages that expose their own `copy()` get a private instance.

Output slots: a stage added without a sink writes to slot 0, the run's sink.
A stage added with its own sink writes to that sink's slot (1, 2, ...; the
same sink object always gets the same slot). Distinct slots must be distinct
destinations, so the runner can keep one ordered stream per slot.

A stage whose processor or writer sets `in_order = True` depends on seeing
records in container order; `chain.in_order` reports whether any does.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from typing import Any, Callable, Iterator, List, Optional, Sequence, Union

from ..dto import ChainResult, FailureDescriptor, Record, RecordOutcome
from ..errors import ProcessingFailure, SinkFailure
from ..ports import OutputSinkPort, ProcessorPort, WriterPort

logger = logging.getLogger(__name__)

ProcessorLike = Union[ProcessorPort, Callable[[Record], Any]]
WriterLike = Union[WriterPort, Callable[[Any, OutputSinkPort], Any]]


# === Callable adapters ===


class _CallableProcessor:
    __slots__ = ("fn", "name")

    def __init__(self, fn: Callable[[Record], Any]) -> None:
        self.fn = fn
        self.name = getattr(fn, "__name__", type(fn).__name__)

    def process(self, record: Record) -> Any:
        return self.fn(record)


class _CallableWriter:
    __slots__ = ("fn",)

    def __init__(self, fn: Callable[[Any, OutputSinkPort], Any]) -> None:
        self.fn = fn

    def write(self, value: Any, sink: OutputSinkPort) -> None:
        self.fn(value, sink)


def _coerce_processor(p: ProcessorLike) -> ProcessorPort:
    if hasattr(p, "process"):
        return p  # type: ignore[return-value]
    if callable(p):
        return _CallableProcessor(p)
    raise TypeError(f"processor must define process() or be callable, got {type(p).__name__}")


def _coerce_writer(w: WriterLike) -> WriterPort:
    if hasattr(w, "write"):
        return w  # type: ignore[return-value]
    if callable(w):
        return _CallableWriter(w)
    raise TypeError(f"writer must define write() or be callable, got {type(w).__name__}")


def _copy_of(obj: Any) -> Any:
    copier = getattr(obj, "copy", None)
    return copier() if callable(copier) else obj


def _close(obj: Any) -> None:
    closer = getattr(obj, "close", None)
    if callable(closer):
        closer()


# === Stage ===


class Stage:
    """One processor/writer pair, writing to output slot `slot`."""

    __slots__ = ("processor", "writer", "name", "slot")

    def __init__(
        self, processor: ProcessorLike, writer: WriterLike, name: Optional[str] = None, slot: int = 0
    ) -> None:
        self.processor = _coerce_processor(processor)
        self.writer = _coerce_writer(writer)
        self.name = name or getattr(self.processor, "name", None) or type(self.processor).__name__
        self.slot = slot

    @property
    def in_order(self) -> bool:
        return bool(getattr(self.processor, "in_order", False) or getattr(self.writer, "in_order", False))

    def copy(self) -> "Stage":
        return Stage(_copy_of(self.processor), _copy_of(self.writer), self.name, self.slot)

    def close(self) -> None:
        _close(self.processor)
        _close(self.writer)

    def __repr__(self) -> str:
        return f"Stage({self.name!r})"


class StageChain:
    """Ordered list of stages; frozen (no add) while a run is using it."""

    def __init__(self, stages: Optional[List[Stage]] = None, sinks: Optional[List[OutputSinkPort]] = None) -> None:
        self._stages: List[Stage] = list(stages or [])
        self._sinks: List[OutputSinkPort] = list(sinks or [])
        self._active_runs = 0
        self._lock = threading.Lock()

    # --- building ---

    def add(
        self,
        processor: ProcessorLike,
        writer: WriterLike,
        name: Optional[str] = None,
        *,
        sink: Optional[OutputSinkPort] = None,
    ) -> "StageChain":
        """Append a stage; returns the chain so calls can be chained."""
        with self._lock:
            if self._active_runs:
                raise RuntimeError("cannot add a stage while a run is using this chain")
            self._stages.append(Stage(processor, writer, name, self._slot_for(sink)))
        return self

    def _slot_for(self, sink: Optional[OutputSinkPort]) -> int:
        if sink is None:
            return 0
        for i, own in enumerate(self._sinks):
            if own is sink:
                return i + 1
        self._sinks.append(sink)
        return len(self._sinks)

    def sinks(self) -> List[OutputSinkPort]:
        """Sinks of slots 1, 2, ... (slot 0 is the run's sink)."""
        return list(self._sinks)

    @property
    def slot_count(self) -> int:
        return 1 + len(self._sinks)

    @property
    def in_order(self) -> bool:
        """True if some stage must see records in container order."""
        return any(stage.in_order for stage in self._stages)

    @contextlib.contextmanager
    def running(self) -> Iterator["StageChain"]:
        """Mark the chain as in use for the duration of a run."""
        with self._lock:
            self._active_runs += 1
        try:
            yield self
        finally:
            with self._lock:
                self._active_runs -= 1

    @property
    def frozen(self) -> bool:
        return self._active_runs > 0

    # --- application ---

    def apply(self, record: Record, sink: Union[OutputSinkPort, Sequence[OutputSinkPort]]) -> ChainResult:
        """
        Run every stage on `record`.

        `sink` is either the run's sink (stages with their own sink still
        write to it) or one sink per output slot.

        Returns
        -------
        ChainResult
            FAILED if any stage raised, PROCESSED if at least one writer ran,
            DROPPED otherwise (including for an empty chain).
        """
        if isinstance(sink, (list, tuple)):
            outputs = list(sink)
        else:
            outputs = [sink] + self._sinks
        failures: List[FailureDescriptor] = []
        wrote = False
        for stage in self._stages:
            try:
                value = stage.processor.process(record)
                if value is None:
                    continue
                stage.writer.write(value, outputs[stage.slot])
                wrote = True
            except SinkFailure:
                raise
            except Exception as exc:
                failure = ProcessingFailure(record.record_id, stage.name, exc)
                logger.debug("%s", failure)
                failures.append(
                    FailureDescriptor(
                        record_id=record.record_id,
                        offset=record.offset,
                        stage=stage.name,
                        error_type=type(exc).__name__,
                        message=str(exc),
                    )
                )

        if failures:
            return ChainResult(RecordOutcome.FAILED, failures)
        return ChainResult(RecordOutcome.PROCESSED if wrote else RecordOutcome.DROPPED)

    # --- lifecycle ---

    def copy(self) -> "StageChain":
        """Per-worker chain; unfrozen, sharing stateless stages and the slot sinks."""
        with self._lock:
            return StageChain([s.copy() for s in self._stages], self._sinks)

    def close(self) -> None:
        for stage in self._stages:
            stage.close()

    def __len__(self) -> int:
        return len(self._stages)

    def __iter__(self) -> Iterator[Stage]:
        return iter(list(self._stages))

    def __repr__(self) -> str:
        return f"StageChain({[s.name for s in self._stages]!r})"
