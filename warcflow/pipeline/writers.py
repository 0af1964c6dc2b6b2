"""
Bundled writers: serialize a processed value to the output sink.

Text writers emit one UTF-8 line per value. Record-based writers expect the
value to be a Record (pair them with IdentityProcessor). Position writers
print the record's store position, its index in the container.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, FrozenSet, Iterable, Optional, Sequence

from ..dto import Compression, Record
from ..intake.archive_writer import encode_block
from ..ports import OutputSinkPort, WriterPort


def _line(sink: OutputSinkPort, text: str) -> None:
    sink.write(text.encode("utf-8") + b"\n")


def _require_record(value: Any, writer: str) -> Record:
    if not isinstance(value, Record):
        raise TypeError(f"{writer} expects a Record, got {type(value).__name__}")
    return value


class ToStringWriter:
    """str(value) followed by a newline."""

    def write(self, value: Any, sink: OutputSinkPort) -> None:
        _line(sink, str(value))


class ByteWriter:
    """Raw bytes, unchanged."""

    def write(self, value: Any, sink: OutputSinkPort) -> None:
        if isinstance(value, str):
            raise TypeError("ByteWriter expects bytes, got str")
        sink.write(bytes(value))


class RecordWriter:
    """Re-frame a record as a container block (plain, gzip member or zstd frame)."""

    def __init__(self, compression: Compression = "none") -> None:
        self.compression = compression

    def write(self, value: Any, sink: OutputSinkPort) -> None:
        sink.write(encode_block(_require_record(value, "RecordWriter"), self.compression))


class URLDigestWriter:
    """"<target uri>\t<payload digest>" for records that carry both."""

    def write(self, value: Any, sink: OutputSinkPort) -> None:
        record = _require_record(value, "URLDigestWriter")
        uri = record.target_uri
        digest = record.header("WARC-Payload-Digest")
        if uri and digest:
            _line(sink, f"{uri}\t{digest.strip()}")


class DateURLWriter:
    """"YYYY/MM/DD\tHH:MM:SS\t<target uri>" from WARC-Date."""

    def write(self, value: Any, sink: OutputSinkPort) -> None:
        record = _require_record(value, "DateURLWriter")
        uri = record.target_uri
        date = record.date
        if uri and date is not None:
            _line(sink, f"{date:%Y/%m/%d}\t{date:%H:%M:%S}\t{uri}")


# === Store-position writers ===

DUPLICATE_HEADER = "BUbiNG-Is-Duplicate"
# store index goes in the top 16 bits of a 64-bit position key
STORE_INDEX_SHIFT = 48


def load_repeated(path: str) -> FrozenSet[int]:
    """Position keys listed in a text file, one decimal integer per line; blank lines and '#' comments are ignored."""
    keys = set()
    with open(path, "r", encoding="ascii") as f:
        for lineno, raw in enumerate(f, 1):
            line = raw.split("#", 1)[0].strip()
            if not line:
                continue
            try:
                keys.add(int(line))
            except ValueError:
                raise ValueError(f"{path}:{lineno}: not a position key: {line!r}") from None
    return frozenset(keys)


class _RepeatedPositions:
    """Skip records whose (store index, store position) key is in a repeated set."""

    def __init__(self, store_index: int = 0, repeated: Optional[Iterable[int]] = None) -> None:
        self.store_index = int(store_index)
        self._mask = self.store_index << STORE_INDEX_SHIFT
        self.repeated: FrozenSet[int] = frozenset(repeated or ())

    def is_repeated(self, record: Record) -> bool:
        return bool(self.repeated) and (self._mask | record.position) in self.repeated


class URLPositionWriter(_RepeatedPositions):
    """"<target uri>\t<store position>", skipping repeated positions."""

    def write(self, value: Any, sink: OutputSinkPort) -> None:
        record = _require_record(value, "URLPositionWriter")
        uri = record.target_uri
        if uri and not self.is_repeated(record):
            _line(sink, f"{uri}\t{record.position}")


class ConstantPositionURLWriter:
    """"<constant>\t<store position>\t<target uri>"."""

    def __init__(self, constant: str) -> None:
        self.constant = constant

    def write(self, value: Any, sink: OutputSinkPort) -> None:
        record = _require_record(value, "ConstantPositionURLWriter")
        uri = record.target_uri
        if uri:
            _line(sink, f"{self.constant}\t{record.position}\t{uri}")


class URLDigestStatusLengthWriter:
    """
    "<target uri>\t<payload digest>\t<status>\t<duplicate mark>\t<entity length>"
    for response records; the duplicate mark is the BUbiNG-Is-Duplicate
    header value, or "-" when the header is absent.
    """

    def write(self, value: Any, sink: OutputSinkPort) -> None:
        record = _require_record(value, "URLDigestStatusLengthWriter")
        uri = record.target_uri
        digest = record.header("WARC-Payload-Digest")
        response = record.http_response()
        if not uri or not digest or response is None:
            return
        duplicate = record.header(DUPLICATE_HEADER)
        mark = duplicate.strip() if duplicate is not None else "-"
        _line(sink, f"{uri}\t{digest.strip()}\t{response.status}\t{mark}\t{len(response.entity)}")


class URLDigestFinalPositionWriter(_RepeatedPositions):
    """
    "<target uri>\t<payload digest>\t<final position>\t<status line>".

    The final position numbers the records that survive deduplication across
    stores: repeated positions are skipped entirely, and records marked as
    duplicates print -1 without taking a number. The counter lives in the
    writer, so the chain must see records in container order.
    """

    in_order = True

    def __init__(self, store_index: int = 0, repeated: Optional[Iterable[int]] = None) -> None:
        super().__init__(store_index, repeated)
        self.final_position = 0

    def write(self, value: Any, sink: OutputSinkPort) -> None:
        record = _require_record(value, "URLDigestFinalPositionWriter")
        uri = record.target_uri
        digest = record.header("WARC-Payload-Digest")
        response = record.http_response()
        if not uri or not digest or response is None or self.is_repeated(record):
            return
        if record.header(DUPLICATE_HEADER) is not None:
            position = -1
        else:
            position = self.final_position
            self.final_position += 1
        _line(sink, f"{uri}\t{digest.strip()}\t{position}\t{response.status_line}")


# ---------- Registry ----------


def _store_args(args: Sequence[str]) -> Dict[str, Any]:
    """[store index[, repeated-set file]] -> keyword arguments."""
    if len(args) > 2:
        raise ValueError("expected at most a store index and a repeated-set file")
    kwargs: Dict[str, Any] = {}
    if args:
        kwargs["store_index"] = int(args[0])
    if len(args) > 1:
        kwargs["repeated"] = load_repeated(args[1])
    return kwargs


def _no_args(cls: Callable[[], WriterPort]) -> Callable[..., WriterPort]:
    def factory(*args: str) -> WriterPort:
        if args:
            raise ValueError(f"writer takes no arguments, got {list(args)!r}")
        return cls()

    return factory


def _constant(*args: str) -> WriterPort:
    if len(args) != 1:
        raise ValueError("constant-position-url needs exactly one argument (the constant)")
    return ConstantPositionURLWriter(args[0])


WRITERS: Dict[str, Callable[..., WriterPort]] = {
    "string": _no_args(ToStringWriter),
    "bytes": _no_args(ByteWriter),
    "record": _no_args(RecordWriter),
    "record-gzip": _no_args(lambda: RecordWriter("gzip")),
    "record-zstd": _no_args(lambda: RecordWriter("zstd")),
    "url-digest": _no_args(URLDigestWriter),
    "date-url": _no_args(DateURLWriter),
    "url-position": lambda *args: URLPositionWriter(**_store_args(args)),
    "constant-position-url": _constant,
    "url-digest-status-length": _no_args(URLDigestStatusLengthWriter),
    "url-digest-final-position": lambda *args: URLDigestFinalPositionWriter(**_store_args(args)),
}


def build_writer(spec: str) -> WriterPort:
    """
    Build a writer from "name" or "name:arg1,arg2" (e.g. "url-position:3,repeated.txt").
    """
    name, _, rest = spec.partition(":")
    factory = WRITERS.get(name.strip().lower())
    if factory is None:
        raise ValueError(f"unknown writer {name!r}; known: {', '.join(sorted(WRITERS))}")
    args = [a.strip() for a in rest.split(",")] if rest else []
    return factory(*args)
