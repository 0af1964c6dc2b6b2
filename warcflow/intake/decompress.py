"""
Block decoder for compressed containers.

A compressed container is a concatenation of independently decodable blocks:
gzip members (RFC 1952) or zstd frames. This module decodes one block at a
time from a seekable binary file, reporting exactly how many compressed bytes
the block spans, which is what makes blocks usable as split points.

Block-boundary discovery:
- gzip members written by ArchiveWriter carry an "sl" FEXTRA sub-field with
  the member's total length, so the scanner can jump from member to member
  without inflating anything;
- any other gzip member, and every zstd frame, is located by decoding it and
  looking at the decoder's unused input.

This module does not parse records; it only handles decompression.
"""

from __future__ import annotations

import struct
import zlib
from typing import BinaryIO, Iterator, List, Optional, Tuple

import zstandard  # type: ignore

from ..dto import Block, Compression
from ..errors import RecordCorruption

CHUNK_SIZE = 64 * 1024

GZIP_MAGIC = b"\x1f\x8b"
GZIP_FEXTRA = 0x04
SKIP_LENGTH_ID = b"sl"
# 10-byte fixed header + trailer (CRC32, ISIZE); smallest possible member is a bit larger
_MIN_GZIP_MEMBER = 18
_GZIP_HEAD_PEEK = 64


def _new_decoder(compression: Compression):
    if compression == "gzip":
        return zlib.decompressobj(wbits=16 + zlib.MAX_WBITS)
    if compression == "zstd":
        return zstandard.ZstdDecompressor().decompressobj()
    raise ValueError(f"not a block-compressed container: {compression!r}")


def decode_block(f: BinaryIO, offset: int, compression: Compression) -> Optional[Tuple[Block, bytes]]:
    """
    Decode the block starting at `offset`.

    Returns
    -------
    (Block, bytes) | None
        The block's extent in the container and its decompressed payload,
        or None when `offset` is at end of file.

    Raises
    ------
    RecordCorruption
        If the bytes at `offset` are not a complete, valid block.
    """
    f.seek(offset)
    chunk = f.read(CHUNK_SIZE)
    if not chunk:
        return None

    dec = _new_decoder(compression)
    out: List[bytes] = []
    consumed = 0
    while True:
        try:
            out.append(dec.decompress(chunk))
        except (zlib.error, zstandard.ZstdError) as exc:
            raise RecordCorruption(offset, f"cannot decode {compression} block: {exc}") from exc
        if dec.eof:
            consumed += len(chunk) - len(dec.unused_data)
            break
        consumed += len(chunk)
        chunk = f.read(CHUNK_SIZE)
        if not chunk:
            raise RecordCorruption(offset, f"truncated {compression} block")

    return Block(offset, consumed), b"".join(out)


def iter_blocks(
    f: BinaryIO, compression: Compression, start: int, end: Optional[int] = None
) -> Iterator[Tuple[Block, bytes]]:
    """Yield (Block, payload) for every block starting in [start, end)."""
    pos = start
    while end is None or pos < end:
        item = decode_block(f, pos, compression)
        if item is None:
            return
        block, payload = item
        yield block, payload
        pos = block.end


def scan_blocks(f: BinaryIO, compression: Compression, size: int) -> Iterator[Tuple[Block, Optional[bytes]]]:
    """
    Yield (Block, payload) for every block in the container, in order.

    Uses the gzip skip-length field when present, so well-formed archives are
    indexed without inflating them; the payload is None for such members.
    Raises RecordCorruption at the first block that cannot be located.
    """
    pos = 0
    while pos < size:
        if compression == "gzip":
            f.seek(pos)
            head = f.read(_GZIP_HEAD_PEEK)
            if head[:2] != GZIP_MAGIC:
                raise RecordCorruption(pos, "missing gzip member header")
            skip = read_gzip_skip_length(head)
            if skip is not None and _MIN_GZIP_MEMBER <= skip <= size - pos:
                yield Block(pos, skip, records=1), None
                pos += skip
                continue

        item = decode_block(f, pos, compression)
        if item is None:
            return
        block, payload = item
        yield block, payload
        pos = block.end


def read_gzip_skip_length(head: bytes) -> Optional[int]:
    """
    Return the member length stored in the "sl" FEXTRA sub-field, if any.

    Layout of the sub-field: SI1 SI2 = "sl", LEN = 8 (little endian short),
    then two little-endian unsigned ints: compressed member length and
    uncompressed payload length.
    """
    if len(head) < 12 or head[:2] != GZIP_MAGIC or head[2] != 8:
        return None
    if not head[3] & GZIP_FEXTRA:
        return None
    (xlen,) = struct.unpack_from("<H", head, 10)
    extra = head[12 : 12 + xlen]
    if len(extra) < xlen:
        return None

    i = 0
    while i + 4 <= len(extra):
        sub_id = extra[i : i + 2]
        (sub_len,) = struct.unpack_from("<H", extra, i + 2)
        data = extra[i + 4 : i + 4 + sub_len]
        if sub_id == SKIP_LENGTH_ID and len(data) >= 4:
            (csl,) = struct.unpack_from("<I", data, 0)
            return csl
        i += 4 + sub_len
    return None


def member_skip_length(f: BinaryIO, offset: int) -> Optional[int]:
    """Skip length of the gzip member starting at `offset`, if it carries one."""
    f.seek(offset)
    return read_gzip_skip_length(f.read(_GZIP_HEAD_PEEK))
