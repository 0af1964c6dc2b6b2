"""
HTTP response parsing for response records.

Minimal and forgiving: status line, header lines, and the entity. Chunked
transfer coding is removed when it decodes cleanly; otherwise the raw entity
is kept. No content-encoding handling.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from ..dto import HttpResponse


def parse_http_response(message: bytes) -> Optional[HttpResponse]:
    """Return the parsed response, or None if `message` is not an HTTP response."""
    head, sep, entity = message.partition(b"\r\n\r\n")
    eol = b"\r\n"
    if not sep:
        head, sep, entity = message.partition(b"\n\n")
        eol = b"\n"
        if not sep:
            head, entity = message, b""

    lines = head.split(eol)
    parts = lines[0].split(None, 2)
    if len(parts) < 2 or not parts[0].startswith(b"HTTP/"):
        return None
    try:
        status = int(parts[1])
    except ValueError:
        return None
    reason = parts[2].decode("latin-1").strip() if len(parts) > 2 else ""
    version = parts[0].decode("latin-1")

    headers: List[Tuple[str, str]] = []
    for line in lines[1:]:
        name, colon, value = line.decode("latin-1").partition(":")
        if colon and name.strip():
            headers.append((name.strip(), value.strip()))

    resp = HttpResponse(status=status, reason=reason, headers=tuple(headers), entity=entity, version=version)
    if (resp.header("Transfer-Encoding") or "").lower() == "chunked":
        dechunked = _dechunk(entity)
        if dechunked is not None:
            resp = HttpResponse(
                status=status, reason=reason, headers=tuple(headers), entity=dechunked, version=version
            )
    return resp


def _dechunk(data: bytes) -> Optional[bytes]:
    out: List[bytes] = []
    pos = 0
    while True:
        eol = data.find(b"\r\n", pos)
        if eol < 0:
            return None
        size_field = data[pos:eol].split(b";", 1)[0].strip()
        try:
            size = int(size_field, 16)
        except ValueError:
            return None
        if size == 0:
            return b"".join(out)
        start = eol + 2
        chunk = data[start : start + size]
        if len(chunk) != size:
            return None
        out.append(chunk)
        pos = start + size + 2
