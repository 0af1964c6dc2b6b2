"""
Hexagonal interfaces (Ports) for the record-processing pipeline.

These define the boundary between the runners and their collaborators:
the record source, the stage processors/writers, the output sink and the
name resolution capability. Keep them small and implementation-agnostic so
they're easy to fake in tests.
"""

from __future__ import annotations

from typing import Any, Iterator, List, Optional, Protocol

from .dto import Address, Record, Segment


class RecordSourcePort(Protocol):
    """Supplies records from a container, plus split points for parallel runs."""

    def __iter__(self) -> Iterator[Record]:
        """Full sequential read, in container order."""
        ...

    def segments(self, target_count: int) -> List[Segment]:
        """
        Partition the container into at most `target_count` contiguous,
        independently decodable segments in record order. Never splits a block.
        Each segment carries the store position of its first record.
        """
        ...

    def open_at(self, segment: Segment) -> Iterator[Record]:
        """
        Independent cursor over the records with segment.start <= offset < segment.end,
        numbered from segment.first_position.
        Raises SegmentOpenFailure if the segment cannot be opened and
        RecordCorruption on unreadable framing.
        """
        ...


class ProcessorPort(Protocol):
    """Transforms or filters a record. Returning None means Dropped."""

    def process(self, record: Record) -> Optional[Any]:
        ...


class WriterPort(Protocol):
    """
    Serializes a processed value to an output sink. A writer that keeps state
    across records in container order sets `in_order = True`.
    """

    def write(self, value: Any, sink: "OutputSinkPort") -> None:
        ...


class OutputSinkPort(Protocol):
    """
    Ordered, append-only byte destination. The parallel runner only ever calls
    write() from its single drainer thread.
    """

    def write(self, data: bytes) -> Any:
        ...

    def flush(self) -> None:
        ...


class ResolverPort(Protocol):
    """Name-to-address lookup handed to processing stages as a dependency."""

    def resolve(self, name: str) -> List[Address]:
        """
        Return a non-empty, ordered list of addresses for `name`.
        Raises TemporaryNameResolutionError or PermanentNameResolutionError.
        """
        ...
