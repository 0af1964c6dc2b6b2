"""
Output sinks: ordered, append-only byte destinations.
"""

from __future__ import annotations

import sys
import tempfile
from typing import IO, Any, BinaryIO, Optional

from .errors import SinkFailure


class StreamSink:
    """Wrap a binary stream (file, stdout buffer, socket file, ...)."""

    def __init__(self, stream: BinaryIO, *, owns_stream: bool = False) -> None:
        self._stream = stream
        self._owns = owns_stream
        self.bytes_written = 0

    @classmethod
    def open(cls, path: Optional[str]) -> "StreamSink":
        """File at `path`, or standard output for None / "-"."""
        if path is None or path == "-":
            return cls(sys.stdout.buffer)
        return cls(open(path, "wb"), owns_stream=True)

    def write(self, data: bytes) -> int:
        self._stream.write(data)
        self.bytes_written += len(data)
        return len(data)

    def flush(self) -> None:
        self._stream.flush()

    def close(self) -> None:
        self.flush()
        if self._owns:
            self._stream.close()

    def __enter__(self) -> "StreamSink":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class MemorySink:
    """In-memory sink; handy for tests and small runs."""

    def __init__(self) -> None:
        self._buf = bytearray()

    def write(self, data: bytes) -> int:
        self._buf += data
        return len(data)

    def flush(self) -> None:
        return

    def getvalue(self) -> bytes:
        return bytes(self._buf)

    def lines(self):
        return self.getvalue().splitlines()


class GuardedSink:
    """Re-raise any write/flush error of the wrapped sink as SinkFailure."""

    def __init__(self, inner) -> None:
        self.inner = inner

    def write(self, data: bytes) -> Any:
        try:
            return self.inner.write(data)
        except SinkFailure:
            raise
        except Exception as exc:
            raise SinkFailure(exc) from exc

    def flush(self) -> None:
        try:
            self.inner.flush()
        except SinkFailure:
            raise
        except Exception as exc:
            raise SinkFailure(exc) from exc


def spool_buffer(max_size: int) -> IO[bytes]:
    """Worker-local buffer: memory up to `max_size`, then a temporary file."""
    return tempfile.SpooledTemporaryFile(max_size=max_size, mode="w+b")
