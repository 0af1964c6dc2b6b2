"""
Basic container validation.

Goal: fast, side-effect-free checks that decide how a container is encoded
(plain WARC, gzip members or zstd frames) before we spend CPU decoding it.

We DO NOT parse records here, just magic bytes and size sanity, because the
block decoder and the record framing will do deeper checks later.
"""

from __future__ import annotations

import os
from typing import Final

from ..dto import Compression

# --- Magic numbers (as they appear on disk) ---

MAGIC_WARC: Final[bytes] = b"WARC/"
MAGIC_GZIP: Final[bytes] = bytes.fromhex("1f8b")
MAGIC_ZSTD: Final[bytes] = bytes.fromhex("28b52ffd")


def _read_head(path: str, n: int) -> bytes:
    with open(path, "rb") as f:
        return f.read(n)


def _looks_like_warc(head: bytes) -> bool:
    return head.startswith(MAGIC_WARC)


def _looks_like_gzip(head: bytes) -> bool:
    return len(head) >= 2 and head[:2] == MAGIC_GZIP


def _looks_like_zstd(head: bytes) -> bool:
    return len(head) >= 4 and head[:4] == MAGIC_ZSTD


def sniff_compression(path: str) -> Compression:
    """
    Infer the container encoding from its first bytes.

    An empty file is treated as an (empty) uncompressed container; anything
    unrecognised also maps to "none" so that the record framing reports the
    problem with a precise offset.
    """
    head = _read_head(path, 8)
    if _looks_like_gzip(head):
        return "gzip"
    if _looks_like_zstd(head):
        return "zstd"
    return "none"


def validate_container(path: str, compression: Compression) -> bool:
    """
    Quick validation of a container path.

    Checks:
    - File exists (an empty file is a valid, empty container).
    - If compression == none: starts with a WARC version line.
    - If compression == gzip/zstd: magic bytes match the compressor.

    Returns True if basic checks pass, False otherwise.
    """
    try:
        st = os.stat(path)
    except OSError:
        return False

    if st.st_size == 0:
        return True

    head = _read_head(path, 8)

    if compression == "none":
        return _looks_like_warc(head)

    if compression == "gzip":
        return _looks_like_gzip(head)

    if compression == "zstd":
        return _looks_like_zstd(head)

    return False
