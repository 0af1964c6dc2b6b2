import os
import threading
import time

import pytest

from warcflow.config import RunnerConfig
from warcflow.dto import RecordOutcome
from warcflow.errors import RecordCorruption, RunAborted, SegmentOpenFailure, SinkFailure
from warcflow.intake.archive_source import ArchiveSource
from warcflow.intake.framing import make_record
from warcflow.orchestration.runner import PipelineRunner, RunState
from warcflow.pipeline.filters import HostEndsWith
from warcflow.pipeline.processors import IdentityProcessor, TargetUriExtractor
from warcflow.pipeline.stages import StageChain
from warcflow.pipeline.writers import ToStringWriter, URLDigestFinalPositionWriter, URLPositionWriter
from warcflow.sinks import MemorySink

GARBAGE = b"NOT-A-WARC-BLOCK\r\n" * 8


def _chain() -> StageChain:
    return StageChain().add(TargetUriExtractor(), ToStringWriter()).add(IdentityProcessor(), URLPositionWriter())


def _config(**kw) -> RunnerConfig:
    return RunnerConfig(worker_count=kw.pop("worker_count", 4), **kw)


def _sequential(path, chain=None, **kw):
    sink = MemorySink()
    runner = PipelineRunner(ArchiveSource(path), chain or _chain(), sink, config=_config(), **kw)
    return runner.run_sequentially(), sink.getvalue()


def _parallel(path, workers, chain=None, config=None, **kw):
    sink = MemorySink()
    runner = PipelineRunner(ArchiveSource(path), chain or _chain(), sink, config=config or _config(), **kw)
    return runner.run(workers), sink.getvalue()


# ---------- Sequential ----------
def test_sequential_writes_in_container_order(build_archive, records) -> None:
    path = build_archive(records)

    report, out = _sequential(path)

    lines = out.decode("utf-8").splitlines()
    uris = [r.target_uri for r in records if r.target_uri]
    assert [ln for ln in lines if "\t" not in ln] == uris
    assert [ln.split("\t")[0] for ln in lines if "\t" in ln] == uris
    assert report.processed == len(records)
    assert report.failed == 0
    assert report.sealed


def test_sequential_run_on_empty_container(tmp_path) -> None:
    path = tmp_path / "empty.warc"
    path.write_bytes(b"")

    report, out = _sequential(path)

    assert report.attempted == 0
    assert out == b""


def test_state_moves_to_completed(build_archive, records) -> None:
    runner = PipelineRunner(ArchiveSource(build_archive(records)), _chain(), MemorySink(), config=_config())
    assert runner.state == RunState.IDLE
    report = runner.run_sequentially()
    assert runner.state == RunState.COMPLETED
    assert runner.report is report


# ---------- Parallel equivalence ----------
@pytest.mark.parametrize("workers", [1, 2, 3, 8])
def test_parallel_matches_sequential(build_archive, records, compression, workers) -> None:
    path = build_archive(records, compression)

    seq_report, seq_out = _sequential(path)
    par_report, par_out = _parallel(path, workers)

    assert par_out == seq_out
    assert par_report == seq_report


def test_more_segments_than_workers_with_tight_queue(build_archive, records) -> None:
    path = build_archive(records, "gzip")
    cfg = _config(segments_per_worker=4, queue_capacity_factor=1, spool_max_bytes=64)

    seq_report, seq_out = _sequential(path)
    par_report, par_out = _parallel(path, 3, config=cfg)

    assert par_out == seq_out
    assert par_report == seq_report


def test_repeated_runs_are_identical(build_archive, records) -> None:
    path = build_archive(records, "zstd")
    chain = _chain()

    first = _parallel(path, 4, chain=chain)
    second = _parallel(path, 4, chain=chain)

    assert first == second


def test_single_record_many_workers(build_archive) -> None:
    path = build_archive([make_record("resource", b"x", target_uri="http://one.test/")])

    report, out = _parallel(path, 8)

    assert report.processed == 1
    assert out.splitlines()[0] == b"http://one.test/"


def test_parallel_run_on_empty_container(tmp_path) -> None:
    path = tmp_path / "empty.warc"
    path.write_bytes(b"")

    report, out = _parallel(path, 4)

    assert report.attempted == 0
    assert out == b""


def test_worker_count_must_be_positive(build_archive, records) -> None:
    runner = PipelineRunner(ArchiveSource(build_archive(records)), _chain(), MemorySink(), config=_config())
    with pytest.raises(ValueError):
        runner.run(0)


# ---------- Per-record failures ----------
def _flaky_chain() -> StageChain:
    def flaky(record):
        if record.target_uri and record.target_uri.endswith(("/3.html", "/17.html", "/30.html")):
            raise ValueError(f"cannot handle {record.target_uri}")
        return record.target_uri

    return StageChain().add(flaky, ToStringWriter(), name="flaky")


@pytest.mark.parametrize("workers", [None, 4])
def test_failures_are_isolated(build_archive, records, workers) -> None:
    path = build_archive(records, "gzip")

    if workers is None:
        report, out = _sequential(path, chain=_flaky_chain())
    else:
        report, out = _parallel(path, workers, chain=_flaky_chain())

    assert report.failed == 3
    assert report.dropped == 1  # warcinfo has no target URI
    assert report.processed == len(records) - 4
    assert [f.stage for f in report.failures] == ["flaky"] * 3
    offsets = [f.offset for f in report.failures]
    assert offsets == sorted(offsets)
    assert b"/3.html" not in out


def test_filter_rejections_count_as_dropped(build_archive, records) -> None:
    path = build_archive(records)
    org = sum(1 for r in records if r.host and r.host.endswith(".org"))

    seq_report, seq_out = _sequential(path, record_filter=HostEndsWith(".org"))
    par_report, par_out = _parallel(path, 3, record_filter=HostEndsWith(".org"))

    assert seq_report.processed == org
    assert seq_report.dropped == len(records) - org
    assert (par_report, par_out) == (seq_report, seq_out)


# ---------- Structural failures ----------
def test_sequential_abort_on_corruption(build_archive, records, compression) -> None:
    clean_size = os.path.getsize(build_archive(records, compression))
    path = build_archive(records, compression, tail=GARBAGE)
    sink = MemorySink()
    runner = PipelineRunner(ArchiveSource(path), _chain(), sink, config=_config())

    with pytest.raises(RunAborted) as info:
        runner.run_sequentially()

    assert isinstance(info.value.cause, RecordCorruption)
    assert info.value.cause.offset == clean_size
    assert info.value.report.processed == len(records)
    assert runner.state == RunState.ABORTED


@pytest.mark.parametrize("workers", [2, 4])
def test_parallel_abort_reports_corruption(build_archive, records, compression, workers) -> None:
    path = build_archive(records, compression, tail=GARBAGE)

    seq_sink = MemorySink()
    with pytest.raises(RunAborted) as seq:
        PipelineRunner(ArchiveSource(path), _chain(), seq_sink, config=_config()).run_sequentially()

    par_sink = MemorySink()
    runner = PipelineRunner(ArchiveSource(path), _chain(), par_sink, config=_config())
    with pytest.raises(RunAborted) as par:
        runner.run(workers)

    assert isinstance(par.value.cause, RecordCorruption)
    assert par.value.cause.offset == seq.value.cause.offset
    assert par.value.report == seq.value.report
    assert seq_sink.getvalue().startswith(par_sink.getvalue())
    assert runner.state == RunState.ABORTED


class _FailingSegmentSource:
    """Delegates to an ArchiveSource but refuses to open one segment."""

    def __init__(self, inner: ArchiveSource, bad_index: int) -> None:
        self.inner = inner
        self.bad_index = bad_index

    def __iter__(self):
        return iter(self.inner)

    def segments(self, target_count):
        return self.inner.segments(target_count)

    def open_at(self, segment):
        if segment.index == self.bad_index:
            raise SegmentOpenFailure(segment, "simulated")
        return self.inner.open_at(segment)


def test_segment_open_failure_aborts(build_archive, records) -> None:
    source = _FailingSegmentSource(ArchiveSource(build_archive(records)), bad_index=1)
    sink = MemorySink()
    runner = PipelineRunner(source, _chain(), sink, config=_config())

    with pytest.raises(RunAborted) as info:
        runner.run(4)

    assert isinstance(info.value.cause, SegmentOpenFailure)
    assert info.value.cause.segment.index == 1
    # Segment 0 runs to completion; nothing after it reaches the sink.
    first = source.segments(4)[0]
    expected_sink = MemorySink()
    chain = _chain()
    for rec in ArchiveSource(source.inner.path).open_at(first):
        chain.apply(rec, expected_sink)
    assert sink.getvalue() == expected_sink.getvalue()
    assert info.value.report.attempted == sum(1 for _ in ArchiveSource(source.inner.path).open_at(first))


class _BrokenSink:
    def __init__(self) -> None:
        self.calls = 0
        self.lock = threading.Lock()

    def write(self, data):
        with self.lock:
            self.calls += 1
        raise OSError("disk full")

    def flush(self):
        pass


@pytest.mark.parametrize("workers", [None, 3])
def test_sink_errors_abort_the_run(build_archive, records, workers) -> None:
    runner = PipelineRunner(ArchiveSource(build_archive(records)), _chain(), _BrokenSink(), config=_config())

    with pytest.raises(RunAborted) as info:
        runner.run_sequentially() if workers is None else runner.run(workers)

    assert isinstance(info.value.cause, SinkFailure)
    assert isinstance(info.value.cause.cause, OSError)


def test_report_outcomes_cover_every_record(build_archive, records) -> None:
    report, _ = _parallel(build_archive(records, "zstd"), 5)
    assert report.attempted == len(records)
    assert report.processed + report.dropped + report.failed == report.attempted
    assert RecordOutcome.PROCESSED.value == "processed"


@pytest.mark.parametrize("workers", [None, 3])
def test_on_record_called_once_per_record(build_archive, records, workers) -> None:
    seen = []
    lock = threading.Lock()

    def tick(n):
        with lock:
            seen.append(n)

    runner = PipelineRunner(ArchiveSource(build_archive(records)), _chain(), MemorySink(), config=_config(), on_record=tick)
    runner.run_sequentially() if workers is None else runner.run(workers)

    assert sum(seen) == len(records)


@pytest.mark.parametrize("victim", [1, 20])
def test_corruption_inside_container(build_archive, records, compression, victim) -> None:
    path = build_archive(records, compression)
    offset = ArchiveSource(path).blocks()[victim].offset
    with open(path, "r+b") as f:
        f.seek(offset)
        f.write(b"XXXXXX")

    seq_sink = MemorySink()
    with pytest.raises(RunAborted) as seq:
        PipelineRunner(ArchiveSource(path), _chain(), seq_sink, config=_config()).run_sequentially()
    par_sink = MemorySink()
    with pytest.raises(RunAborted) as par:
        PipelineRunner(ArchiveSource(path), _chain(), par_sink, config=_config()).run(4)

    assert seq.value.cause.offset == offset
    assert seq.value.report.attempted == victim
    assert par.value.cause.offset == offset
    assert par.value.report == seq.value.report
    assert seq_sink.getvalue().startswith(par_sink.getvalue())


def test_parallel_abort_reports_lowest_failing_segment(build_archive, records) -> None:
    path = build_archive(records, "gzip")
    source = ArchiveSource(path)
    blocks = source.blocks()
    segments = source.segments(2)
    early, late = blocks[3].offset, blocks[30].offset
    assert early < segments[1].start <= late
    # damage the deflate data; the skip-length headers stay intact
    with open(path, "r+b") as f:
        for offset in (early, late):
            f.seek(offset + 30)
            f.write(b"\xff" * 6)

    boundary = segments[1].start

    def slow_in_first_segment(record):
        if record.offset < boundary:
            time.sleep(0.02)
        return None

    def chain():
        return _chain().add(slow_in_first_segment, ToStringWriter(), name="slow")

    seq_sink = MemorySink()
    with pytest.raises(RunAborted) as seq:
        PipelineRunner(ArchiveSource(path), chain(), seq_sink, config=_config()).run_sequentially()
    par_sink = MemorySink()
    with pytest.raises(RunAborted) as par:
        PipelineRunner(ArchiveSource(path), chain(), par_sink, config=_config(segments_per_worker=1)).run(2)

    assert isinstance(par.value.cause, RecordCorruption)
    assert seq.value.cause.offset == early
    assert par.value.cause.offset == early
    assert par.value.report.attempted == 3
    assert par.value.report == seq.value.report
    assert seq_sink.getvalue().startswith(par_sink.getvalue())


# ---------- Output slots and in-order stages ----------
def _slot_chain(side: MemorySink) -> StageChain:
    return (
        StageChain()
        .add(TargetUriExtractor(), ToStringWriter())
        .add(IdentityProcessor(), URLPositionWriter(), sink=side)
    )


@pytest.mark.parametrize("workers", [2, 5])
def test_stage_sinks_match_sequential_run(build_archive, records, compression, workers) -> None:
    path = build_archive(records, compression)

    seq_side, par_side = MemorySink(), MemorySink()
    seq_report, seq_out = _sequential(path, chain=_slot_chain(seq_side))
    par_report, par_out = _parallel(path, workers, chain=_slot_chain(par_side))

    assert par_out == seq_out
    assert par_side.getvalue() == seq_side.getvalue()
    assert par_report == seq_report
    assert b"\t" not in par_out
    assert par_side.lines()[0] == f"{records[1].target_uri}\t1".encode("utf-8")


def test_in_order_chain_runs_sequentially(build_archive, records) -> None:
    path = build_archive(records, "zstd")

    def chain():
        return StageChain().add(IdentityProcessor(), URLDigestFinalPositionWriter())

    seq_report, seq_out = _sequential(path, chain=chain())
    par_report, par_out = _parallel(path, 4, chain=chain())

    assert par_out == seq_out
    assert par_report == seq_report
    assert [int(ln.split(b"\t")[2]) for ln in par_out.splitlines()] == list(range(len(records) - 1))
