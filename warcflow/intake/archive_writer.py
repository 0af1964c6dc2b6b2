"""
Archive writer: appends records to a container.

- "none": plain WARC framing, back to back;
- "gzip": one gzip member per record, with the "sl" skip-length FEXTRA
  sub-field so readers can index members without inflating them;
- "zstd": one zstd frame per record, with the content size in the frame header.

One record per block keeps every record independently decodable, which is
what lets the archive source split the container at any record.
"""

from __future__ import annotations

import struct
import zlib
from typing import BinaryIO, Iterable

import zstandard  # type: ignore

from ..dto import Compression, Record
from .decompress import GZIP_FEXTRA, GZIP_MAGIC, SKIP_LENGTH_ID
from .framing import encode_record

_GZIP_OS_UNKNOWN = 0xFF
# magic(2) CM(1) FLG(1) MTIME(4) XFL(1) OS(1) XLEN(2) + sub-field header(4) + payload(8)
_GZIP_HEADER_LEN = 10 + 2 + 4 + 8
_GZIP_TRAILER_LEN = 8


def gzip_member(payload: bytes, *, level: int = 6, mtime: int = 0) -> bytes:
    """Compress `payload` into a single gzip member carrying the "sl" field."""
    comp = zlib.compressobj(level, zlib.DEFLATED, -zlib.MAX_WBITS)
    deflated = comp.compress(payload) + comp.flush()
    member_len = _GZIP_HEADER_LEN + len(deflated) + _GZIP_TRAILER_LEN

    extra = SKIP_LENGTH_ID + struct.pack("<H", 8) + struct.pack("<II", member_len, len(payload) & 0xFFFFFFFF)
    header = (
        GZIP_MAGIC
        + bytes([zlib.DEFLATED, GZIP_FEXTRA])
        + struct.pack("<I", mtime)
        + bytes([0, _GZIP_OS_UNKNOWN])
        + struct.pack("<H", len(extra))
        + extra
    )
    trailer = struct.pack("<II", zlib.crc32(payload) & 0xFFFFFFFF, len(payload) & 0xFFFFFFFF)
    return header + deflated + trailer


def zstd_frame(payload: bytes, *, level: int = 3) -> bytes:
    """Compress `payload` into a single zstd frame."""
    return zstandard.ZstdCompressor(level=level, write_content_size=True).compress(payload)


def encode_block(record: Record, compression: Compression = "none") -> bytes:
    """Serialize one record as one container block."""
    raw = encode_record(record)
    if compression == "none":
        return raw
    if compression == "gzip":
        return gzip_member(raw)
    if compression == "zstd":
        return zstd_frame(raw)
    raise ValueError(f"unknown compression: {compression!r}")


class ArchiveWriter:
    """
    Append records to a binary stream.

    Parameters
    ----------
    stream : binary file-like
        Destination; the writer does not own it unless `owns_stream` is True.
    compression : "none" | "gzip" | "zstd"
        Block encoding for every record.
    """

    def __init__(self, stream: BinaryIO, compression: Compression = "none", *, owns_stream: bool = False) -> None:
        self._stream = stream
        self._compression = compression
        self._owns = owns_stream
        self._written = 0

    @classmethod
    def open(cls, path: str, compression: Compression = "none") -> "ArchiveWriter":
        return cls(open(path, "wb"), compression, owns_stream=True)

    @property
    def compression(self) -> Compression:
        return self._compression

    def write(self, record: Record) -> int:
        """Append one record; returns its block's offset relative to the writer's start."""
        offset = self._written
        block = encode_block(record, self._compression)
        self._stream.write(block)
        self._written += len(block)
        return offset

    def write_all(self, records: Iterable[Record]) -> int:
        n = 0
        for r in records:
            self.write(r)
            n += 1
        return n

    def flush(self) -> None:
        self._stream.flush()

    def close(self) -> None:
        self.flush()
        if self._owns:
            self._stream.close()

    def __enter__(self) -> "ArchiveWriter":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
