import sys
from pathlib import Path
from typing import Callable, List, Sequence

import pytest


def _add_root_to_path() -> None:
    root = Path(__file__).resolve().parents[1]
    if str(root) not in sys.path:
        sys.path.insert(0, str(root))


_add_root_to_path()

from warcflow.dto import Record  # noqa: E402
from warcflow.intake.archive_writer import ArchiveWriter  # noqa: E402
from warcflow.intake.framing import make_record  # noqa: E402

HOSTS = ("alpha.example.org", "beta.example.org", "gamma.example.com")


def http_body(i: int, *, status: int = 200, ctype: str = "text/html; charset=utf-8", entity: bytes = b"") -> bytes:
    entity = entity or f"<html><body>page {i}</body></html>".encode("utf-8")
    return (
        f"HTTP/1.1 {status} OK\r\nContent-Type: {ctype}\r\nContent-Length: {len(entity)}\r\n\r\n".encode("ascii")
        + entity
    )


def sample_record(i: int, **kw) -> Record:
    host = HOSTS[i % len(HOSTS)]
    return make_record(
        "response",
        kw.pop("body", None) or http_body(i, **kw),
        target_uri=f"http://{host}/page/{i}.html",
        date=f"2024-01-{(i % 28) + 1:02d}T10:20:{i % 60:02d}Z",
        record_id=f"<urn:uuid:00000000-0000-0000-0000-{i:012d}>",
        extra_headers=(("WARC-Payload-Digest", f"sha1:DIGEST{i:04d}"),),
    )


def sample_records(n: int) -> List[Record]:
    head = make_record("warcinfo", b"software: tests\r\n")
    return [head] + [sample_record(i) for i in range(n)]


@pytest.fixture
def records() -> List[Record]:
    return sample_records(40)


@pytest.fixture
def build_archive(tmp_path: Path) -> Callable[..., Path]:
    """Write records into a container file and return its path."""
    counter = {"n": 0}

    def build(recs: Sequence[Record], compression: str = "none", *, tail: bytes = b"") -> Path:
        counter["n"] += 1
        path = tmp_path / f"archive-{counter['n']}.warc"
        with ArchiveWriter.open(str(path), compression) as writer:  # type: ignore[arg-type]
            writer.write_all(recs)
        if tail:
            with open(path, "ab") as f:
                f.write(tail)
        return path

    return build


@pytest.fixture(params=["none", "gzip", "zstd"])
def compression(request) -> str:
    return request.param
