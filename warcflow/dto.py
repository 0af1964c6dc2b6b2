"""
Data Transfer Objects (DTOs) shared by the intake, resolution and pipeline layers.

These are intentionally small and immutable, and independent of any I/O or
compression library. Records are produced by the archive source and never
mutated afterwards.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import cached_property
from typing import Dict, List, Literal, Optional, Tuple
from urllib.parse import urlsplit

RecordType = Literal[
    "warcinfo",
    "response",
    "resource",
    "request",
    "metadata",
    "revisit",
    "conversion",
    "continuation",
]
Compression = Literal["none", "gzip", "zstd"]

Headers = Tuple[Tuple[str, str], ...]


# === Archive records ===


@dataclass(frozen=True)
class Record:
    """One archived unit (a captured response, request, metadata, ...)."""

    kind: str                      # WARC-Type value, lower-cased (see RecordType)
    headers: Headers               # (name, value) pairs, insertion order preserved
    body: bytes = b""
    offset: int = 0                # container offset of the record (or of its block)
    ordinal: int = 0               # position inside a multi-record compressed block
    version: str = "WARC/1.0"
    position: int = 0              # 0-based index of the record in the container (store position)

    @property
    def record_id(self) -> str:
        """Position-based identifier, stable across runs of the same container."""
        return f"{self.offset}:{self.ordinal}"

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Return the first header value named `name` (case-insensitive)."""
        lname = name.lower()
        for k, v in self.headers:
            if k.lower() == lname:
                return v
        return default

    @property
    def target_uri(self) -> Optional[str]:
        uri = self.header("WARC-Target-URI")
        if uri is None:
            return None
        # Some writers wrap the URI in angle brackets (WARC/1.0 grammar).
        return uri.strip().strip("<>")

    @property
    def host(self) -> Optional[str]:
        uri = self.target_uri
        if not uri:
            return None
        return urlsplit(uri).hostname

    @property
    def date(self) -> Optional[datetime]:
        raw = self.header("WARC-Date")
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
        except ValueError:
            return None

    def http_response(self) -> Optional["HttpResponse"]:
        """HTTP response message carried by a response record (parsed once, on first use)."""
        return self._parsed_response

    def uri_response(self) -> Optional["UriResponse"]:
        """(target URI, HTTP response) view, for response records that have both."""
        uri = self.target_uri
        response = self.http_response()
        if not uri or response is None:
            return None
        return UriResponse(uri=uri, response=response)

    @cached_property
    def _parsed_response(self) -> Optional["HttpResponse"]:
        if self.kind != "response":
            return None
        from .intake.http_message import parse_http_response

        return parse_http_response(self.body)


@dataclass(frozen=True)
class HttpResponse:
    """Head and entity of an HTTP response carried in a response record."""

    status: int
    reason: str
    headers: Headers
    entity: bytes
    version: str = "HTTP/1.1"

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        lname = name.lower()
        for k, v in self.headers:
            if k.lower() == lname:
                return v
        return default

    @property
    def status_line(self) -> str:
        return f"{self.version} {self.status} {self.reason}".rstrip()

    @property
    def content_type(self) -> Optional[str]:
        return self.header("Content-Type")

    @property
    def charset(self) -> Optional[str]:
        ctype = self.content_type or ""
        for part in ctype.split(";")[1:]:
            k, _, v = part.strip().partition("=")
            if k.lower() == "charset" and v:
                return v.strip().strip('"')
        return None


@dataclass(frozen=True)
class UriResponse:
    """A response record seen as the pair (target URI, parsed HTTP response)."""

    uri: str
    response: HttpResponse


# === Container layout ===


@dataclass(frozen=True)
class Block:
    """An independently decodable span of the container (record, gzip member or zstd frame)."""

    offset: int
    length: int
    records: Optional[int] = None  # records inside the block; None if not known yet

    @property
    def end(self) -> int:
        return self.offset + self.length


@dataclass(frozen=True)
class Segment:
    """Contiguous span [start, end) of the container assigned to one worker."""

    index: int
    start: int
    end: int
    first_position: int = 0        # store position of the first record in the segment

    def __contains__(self, offset: int) -> bool:
        return self.start <= offset < self.end


# === Resolution ===


@dataclass(frozen=True)
class Address:
    """A resolved host address; `bytes(addr)` is its 4-byte (v4) or 16-byte (v6) form."""

    packed: bytes

    def __post_init__(self) -> None:
        if len(self.packed) not in (4, 16):
            raise ValueError(f"address must be 4 or 16 bytes, got {len(self.packed)}")

    def __bytes__(self) -> bytes:
        return self.packed

    def __str__(self) -> str:
        return str(ipaddress.ip_address(self.packed))

    @property
    def version(self) -> int:
        return 4 if len(self.packed) == 4 else 6

    @classmethod
    def parse(cls, text: str) -> "Address":
        return cls(ipaddress.ip_address(text).packed)


# === Per-record outcomes ===


class RecordOutcome(str, Enum):
    PROCESSED = "processed"
    DROPPED = "dropped"
    FAILED = "failed"


@dataclass(frozen=True)
class FailureDescriptor:
    """What went wrong on one record; collected by the RunReport."""

    record_id: str
    offset: int
    stage: str
    error_type: str
    message: str

    def as_dict(self) -> Dict[str, object]:
        return {
            "record_id": self.record_id,
            "offset": self.offset,
            "stage": self.stage,
            "error_type": self.error_type,
            "message": self.message,
        }


@dataclass(frozen=True)
class ChainResult:
    """Outcome of applying a stage chain to one record."""

    outcome: RecordOutcome
    failures: List[FailureDescriptor] = field(default_factory=list)
