"""
File-backed record source.

Reads WARC records from a container file that is either plain, a sequence of
gzip members, or a sequence of zstd frames, and exposes the container's block
boundaries as split points for parallel runs.

Guarantees
----------
- `iter(source)` yields every record in container order.
- `segments(n)` partitions [first block, end of file) into at most n
  contiguous segments whose boundaries are block starts.
- Reading every segment with `open_at`, in ascending order, yields exactly
  the records of a full sequential read: no gaps, no duplicates, no partial
  records.

Every record carries its store position, its 0-based index in the container.
A segment knows the position of its first record, so a record has the same
position whether the container is read sequentially or segment by segment.

The container is opened read-only; it must not be modified while a run is in
progress. `open_at` detects truncation and size/mtime changes since
partitioning and raises SegmentOpenFailure. The block index is rebuilt when
the file's size or mtime differ from the last scan.
"""

from __future__ import annotations

import io
import logging
import os
import threading
from bisect import bisect_left
from dataclasses import dataclass, replace
from typing import Iterator, List, Optional, Tuple

from ..dto import Block, Compression, Record, Segment
from ..errors import RecordCorruption, SegmentOpenFailure
from ..ports import RecordSourcePort
from .decompress import iter_blocks, member_skip_length, scan_blocks
from .framing import read_record, skip_record
from .validator import sniff_compression, validate_container

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Snapshot:
    size: int
    mtime_ns: int


class ArchiveSource(RecordSourcePort):
    """
    Record source over one container file.

    Parameters
    ----------
    path : str | os.PathLike
        Container file.
    compression : "none" | "gzip" | "zstd" | None
        Block encoding; sniffed from the magic bytes when None.
    """

    def __init__(self, path: "str | os.PathLike[str]", compression: Optional[Compression] = None) -> None:
        self.path = os.fspath(path)
        self.compression: Compression = compression or sniff_compression(self.path)
        if not validate_container(self.path, self.compression):
            logger.warning("%s does not look like a %s container", self.path, self.compression)
        self._blocks: Optional[List[Block]] = None
        self._snapshot: Optional[_Snapshot] = None
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"ArchiveSource({self.path!r}, compression={self.compression!r})"

    # --- sequential access ---

    def __iter__(self) -> Iterator[Record]:
        return self.records()

    def records(self) -> Iterator[Record]:
        """Full sequential read of the container."""
        return self._cursor(0, None)

    # --- partitioning ---

    def blocks(self) -> List[Block]:
        """
        Block extents of the whole container.

        Cached until the file's size or mtime change. If a block cannot be
        located, scanning stops there and one final block covers the rest of
        the file; the corruption is then reported, with its offset, by
        whoever reads that block.
        """
        st = self._stat()
        with self._lock:
            if self._blocks is None or st != self._snapshot:
                if self._blocks is not None:
                    logger.info("%s changed on disk, rebuilding block index", self.path)
                self._snapshot = st
                self._blocks = self._scan(st.size)
            return list(self._blocks)

    def segments(self, target_count: int) -> List[Segment]:
        """
        Split the container into at most `target_count` segments.

        Boundaries are the block starts nearest to `target_count` equal byte
        shares; boundaries that collapse onto the same block are merged, so
        small containers may yield fewer segments than requested.
        """
        if target_count < 1:
            raise ValueError("target_count must be >= 1")
        blocks = self.blocks()
        if not blocks:
            return []

        size = self._snapshot.size if self._snapshot else blocks[-1].end
        starts = [b.offset for b in blocks]
        first = starts[0]
        total = size - first
        n = min(target_count, len(blocks))

        bounds = [first]
        for i in range(1, n):
            target = first + total * i / n
            j = bisect_left(starts, target)
            candidates = [k for k in (j - 1, j) if 0 <= k < len(starts)]
            k = min(candidates, key=lambda k: (abs(starts[k] - target), k))
            if starts[k] > bounds[-1]:
                bounds.append(starts[k])
        bounds.append(size)

        # store position of the first record of every block
        first_positions = {}
        position = 0
        for b in blocks:
            first_positions[b.offset] = position
            position += b.records or 0

        segments = [
            Segment(index=i, start=bounds[i], end=bounds[i + 1], first_position=first_positions[bounds[i]])
            for i in range(len(bounds) - 1)
        ]
        logger.debug("partitioned %s into %d segment(s) (requested %d)", self.path, len(segments), target_count)
        return segments

    def open_at(self, segment: Segment) -> Iterator[Record]:
        """
        Open an independent cursor over `segment`.

        Checks are done eagerly so that SegmentOpenFailure is raised here,
        not on the first next().
        """
        try:
            st = self._stat()
        except OSError as exc:
            raise SegmentOpenFailure(segment, f"container not accessible: {exc}") from exc
        if st.size < segment.end:
            raise SegmentOpenFailure(segment, f"container is {st.size} bytes, segment ends at {segment.end}")
        if self._snapshot is not None and st != self._snapshot:
            raise SegmentOpenFailure(segment, "container changed since partitioning")
        try:
            f = open(self.path, "rb")
        except OSError as exc:
            raise SegmentOpenFailure(segment, f"cannot open container: {exc}") from exc
        return self._cursor(segment.start, segment.end, f, position=segment.first_position)

    # === Helpers ===

    def _stat(self) -> _Snapshot:
        st = os.stat(self.path)
        return _Snapshot(size=st.st_size, mtime_ns=st.st_mtime_ns)

    def _scan(self, size: int) -> List[Block]:
        blocks: List[Block] = []
        pos = 0
        try:
            with open(self.path, "rb") as f:
                if self.compression == "none":
                    for start, end in _scan_plain(f, size):
                        blocks.append(Block(start, end - start, records=1))
                        pos = end
                else:
                    for block, payload in scan_blocks(f, self.compression, size):
                        if payload is not None:
                            block = replace(block, records=_count_records(payload, block.offset))
                        blocks.append(block)
                        pos = block.end
        except RecordCorruption as exc:
            logger.warning("block scan of %s stopped: %s", self.path, exc)
            if pos < size:
                blocks.append(Block(pos, size - pos))
        return blocks

    def _cursor(self, start: int, end: Optional[int], f=None, *, position: int = 0) -> Iterator[Record]:
        if f is None:
            f = open(self.path, "rb")
        with f:
            if self.compression == "none":
                f.seek(start)
                pos = start
                while end is None or pos < end:
                    rec = read_record(f, pos, position=position)
                    if rec is None:
                        return
                    yield rec
                    position += 1
                    pos = f.tell()
                return

            for block, payload in iter_blocks(f, self.compression, start, end):
                recs = _read_block(payload, block.offset, position)
                # positions are indexed as one record per skip-length member
                if self.compression == "gzip" and len(recs) != 1 and member_skip_length(f, block.offset) is not None:
                    raise RecordCorruption(block.offset, f"gzip member with skip length holds {len(recs)} records")
                yield from recs
                position += len(recs)


def _read_block(payload: bytes, offset: int, position: int) -> List[Record]:
    stream = io.BytesIO(payload)
    recs: List[Record] = []
    while True:
        rec = read_record(stream, offset, len(recs), position + len(recs))
        if rec is None:
            return recs
        recs.append(rec)


def _count_records(payload: bytes, offset: int) -> Optional[int]:
    """Number of records in a decoded block, or None if they cannot be framed."""
    stream = io.BytesIO(payload)
    count = 0
    try:
        while skip_record(stream, offset, len(payload)) is not None:
            count += 1
    except RecordCorruption:
        return None
    return count


def _scan_plain(f, size: int) -> Iterator[Tuple[int, int]]:
    pos = 0
    f.seek(0)
    while pos < size:
        nxt = skip_record(f, pos, size)
        if nxt is None:
            return
        yield pos, nxt
        pos = nxt
