"""
WARC record framing.

A record on disk (after decompression) looks like:

    WARC/1.0\\r\\n
    WARC-Type: response\\r\\n
    ...header lines...\\r\\n
    Content-Length: N\\r\\n
    \\r\\n
    <N bytes of content block>\\r\\n\\r\\n

`read_record` parses one record from a binary stream and raises
RecordCorruption (carrying the record's container offset) on any framing
deviation; `encode_record` produces the same layout.
"""

from __future__ import annotations

from typing import BinaryIO, List, Optional, Tuple

from ..dto import Headers, Record
from ..errors import RecordCorruption

CRLF = b"\r\n"
TRAILER = b"\r\n\r\n"
_MAX_LINE = 64 * 1024
_MAX_HEADERS = 1024


def _read_head(stream: BinaryIO, offset: int) -> Optional[Tuple[str, Headers, int]]:
    """
    Parse the version line and header block.

    Returns (version, headers, content_length), or None on clean end of stream.
    """
    line = stream.readline(_MAX_LINE)
    if not line:
        return None
    if not line.startswith(b"WARC/") or not line.endswith(b"\n"):
        raise RecordCorruption(offset, "missing WARC version line")
    version = line.rstrip(b"\r\n").decode("ascii", errors="replace")

    headers: List[Tuple[str, str]] = []
    while True:
        line = stream.readline(_MAX_LINE)
        if not line:
            raise RecordCorruption(offset, "truncated header block")
        if line in (CRLF, b"\n"):
            break
        if not line.endswith(b"\n"):
            raise RecordCorruption(offset, "header line too long")
        name, sep, value = line.decode("utf-8", errors="replace").partition(":")
        if not sep or not name.strip():
            raise RecordCorruption(offset, f"malformed header line {line[:40]!r}")
        headers.append((name.strip(), value.strip()))
        if len(headers) > _MAX_HEADERS:
            raise RecordCorruption(offset, "too many header lines")

    length = _content_length(headers)
    if length is None:
        raise RecordCorruption(offset, "missing or invalid Content-Length")
    return version, tuple(headers), length


def _content_length(headers: Headers) -> Optional[int]:
    for k, v in headers:
        if k.lower() == "content-length":
            try:
                n = int(v)
            except ValueError:
                return None
            return n if n >= 0 else None
    return None


def _record_type(headers: Headers) -> Optional[str]:
    for k, v in headers:
        if k.lower() == "warc-type":
            return v.strip().lower() or None
    return None


def read_record(stream: BinaryIO, offset: int, ordinal: int = 0, position: int = 0) -> Optional[Record]:
    """
    Read one record from `stream`.

    Parameters
    ----------
    stream : binary file-like
        Positioned at the start of a record.
    offset : int
        Container offset reported for this record (and for its corruption).
    ordinal : int
        Index of the record inside its compressed block.
    position : int
        Store position: index of the record in the whole container.

    Returns
    -------
    Record | None
        The record, or None on clean end of stream.
    """
    head = _read_head(stream, offset)
    if head is None:
        return None
    version, headers, length = head

    kind = _record_type(headers)
    if kind is None:
        raise RecordCorruption(offset, "missing WARC-Type")

    body = stream.read(length)
    if len(body) != length:
        raise RecordCorruption(offset, "truncated content block")
    if stream.read(len(TRAILER)) != TRAILER:
        raise RecordCorruption(offset, "missing record trailer")

    return Record(
        kind=kind, headers=headers, body=body, offset=offset, ordinal=ordinal, version=version, position=position
    )


def skip_record(stream: BinaryIO, offset: int, size: int) -> Optional[int]:
    """
    Skip one uncompressed record without reading its body.

    Returns the offset of the next record, or None on clean end of stream.
    """
    head = _read_head(stream, offset)
    if head is None:
        return None
    _, _, length = head
    nxt = stream.tell() + length + len(TRAILER)
    if nxt > size:
        raise RecordCorruption(offset, "truncated content block")
    stream.seek(nxt - len(TRAILER))
    if stream.read(len(TRAILER)) != TRAILER:
        raise RecordCorruption(offset, "missing record trailer")
    return nxt


def encode_record(record: Record) -> bytes:
    """Serialize `record` with a Content-Length matching its body."""
    lines = [record.version.encode("ascii") + CRLF]
    saw_length = False
    for k, v in record.headers:
        if k.lower() == "content-length":
            v = str(len(record.body))
            saw_length = True
        lines.append(f"{k}: {v}".encode("utf-8") + CRLF)
    if not saw_length:
        lines.append(f"Content-Length: {len(record.body)}".encode("ascii") + CRLF)
    lines.append(CRLF)
    lines.append(record.body)
    lines.append(TRAILER)
    return b"".join(lines)


def make_record(
    kind: str,
    body: bytes = b"",
    *,
    target_uri: Optional[str] = None,
    date: Optional[str] = None,
    record_id: Optional[str] = None,
    extra_headers: Optional[Headers] = None,
) -> Record:
    """Build a record with the usual WARC headers, for writers and tests."""
    headers: List[Tuple[str, str]] = [("WARC-Type", kind)]
    if target_uri is not None:
        headers.append(("WARC-Target-URI", target_uri))
    if date is not None:
        headers.append(("WARC-Date", date))
    if record_id is not None:
        headers.append(("WARC-Record-ID", record_id))
    if extra_headers:
        headers.extend(extra_headers)
    headers.append(("Content-Length", str(len(body))))
    return Record(kind=kind, headers=tuple(headers), body=body)
