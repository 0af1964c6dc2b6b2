import os
from pathlib import Path

import pytest

from warcflow.dto import Segment
from warcflow.errors import RecordCorruption, SegmentOpenFailure
from warcflow.intake.archive_source import ArchiveSource
from warcflow.intake.archive_writer import gzip_member, zstd_frame
from warcflow.intake.decompress import read_gzip_skip_length
from warcflow.intake.framing import encode_record, make_record
from warcflow.intake.validator import sniff_compression

GARBAGE = b"NOT-A-WARC-BLOCK\r\n" * 8


def uris(recs):
    return [r.target_uri for r in recs]


def _concat(source: ArchiveSource, segments):
    out = []
    for seg in segments:
        out.extend(source.open_at(seg))
    return out


def test_sequential_read_preserves_order(build_archive, records, compression) -> None:
    path = build_archive(records, compression)
    source = ArchiveSource(path)

    got = list(source)

    assert source.compression == compression
    assert uris(got) == uris(records)
    assert [r.body for r in got] == [r.body for r in records]
    offsets = [r.offset for r in got]
    assert offsets == sorted(offsets) and len(set(offsets)) == len(offsets)


@pytest.mark.parametrize("n", [1, 2, 3, 7, 64])
def test_segments_concatenate_to_full_read(build_archive, records, compression, n) -> None:
    path = build_archive(records, compression)
    source = ArchiveSource(path)
    full = list(source)

    segments = source.segments(n)

    assert 1 <= len(segments) <= n
    assert [s.index for s in segments] == list(range(len(segments)))
    assert segments[0].start == 0
    assert segments[-1].end == os.path.getsize(path)
    for a, b in zip(segments, segments[1:]):
        assert a.end == b.start
    assert _concat(source, segments) == full


def test_segment_boundaries_fall_on_block_starts(build_archive, records, compression) -> None:
    path = build_archive(records, compression)
    source = ArchiveSource(path)
    starts = {b.offset for b in source.blocks()}

    for seg in source.segments(5):
        assert seg.start in starts


def test_empty_container_has_no_segments(tmp_path: Path) -> None:
    path = tmp_path / "empty.warc"
    path.write_bytes(b"")
    source = ArchiveSource(path)

    assert list(source) == []
    assert source.segments(4) == []


def test_single_record_gives_one_segment(build_archive, compression) -> None:
    path = build_archive([make_record("resource", b"only", target_uri="http://x.test/")], compression)
    source = ArchiveSource(path)

    segments = source.segments(8)

    assert len(segments) == 1
    assert [r.target_uri for r in source.open_at(segments[0])] == ["http://x.test/"]


def test_segments_rejects_zero_target(build_archive, records) -> None:
    source = ArchiveSource(build_archive(records))
    with pytest.raises(ValueError):
        source.segments(0)


def test_sniffing_recognises_block_encodings(build_archive, records, compression) -> None:
    path = build_archive(records, compression)
    assert sniff_compression(str(path)) == compression


def test_gzip_member_carries_skip_length() -> None:
    member = gzip_member(b"WARC/1.0\r\n" * 50)
    assert read_gzip_skip_length(member[:64]) == len(member)


def test_corruption_surfaces_with_offset(build_archive, records, compression) -> None:
    clean = build_archive(records, compression)
    clean_size = os.path.getsize(clean)
    path = build_archive(records, compression, tail=GARBAGE)
    source = ArchiveSource(path)

    seen = []
    with pytest.raises(RecordCorruption) as info:
        for rec in source:
            seen.append(rec)

    assert info.value.offset == clean_size
    assert len(seen) == len(records)


def test_corrupt_tail_becomes_final_block(build_archive, records, compression) -> None:
    clean_size = os.path.getsize(build_archive(records, compression))
    source = ArchiveSource(build_archive(records, compression, tail=GARBAGE))

    last = source.blocks()[-1]

    assert last.offset == clean_size
    with pytest.raises(RecordCorruption) as info:
        list(source.open_at(Segment(index=0, start=last.offset, end=last.end)))
    assert info.value.offset == clean_size


def test_open_at_detects_truncated_container(build_archive, records) -> None:
    path = build_archive(records)
    source = ArchiveSource(path)
    segments = source.segments(3)

    with open(path, "r+b") as f:
        f.truncate(segments[-1].start + 10)

    with pytest.raises(SegmentOpenFailure):
        source.open_at(segments[-1])


def test_open_at_detects_missing_container(build_archive, records) -> None:
    path = build_archive(records, "gzip")
    source = ArchiveSource(path)
    segments = source.segments(2)
    os.remove(path)

    with pytest.raises(SegmentOpenFailure):
        source.open_at(segments[0])


@pytest.mark.parametrize("n", [1, 3, 7])
def test_store_positions_agree_across_segments(build_archive, records, compression, n) -> None:
    source = ArchiveSource(build_archive(records, compression))

    segments = source.segments(n)

    assert [r.position for r in source] == list(range(len(records)))
    assert [r.position for r in _concat(source, segments)] == list(range(len(records)))
    assert [seg.first_position for seg in segments] == [next(source.open_at(seg)).position for seg in segments]


def test_store_positions_count_records_inside_frames(tmp_path: Path, records) -> None:
    # two records per zstd frame: positions still number records, not frames
    path = tmp_path / "pairs.warc.zst"
    pairs = [records[i : i + 2] for i in range(0, len(records), 2)]
    path.write_bytes(b"".join(zstd_frame(b"".join(encode_record(r) for r in pair)) for pair in pairs))
    source = ArchiveSource(path)

    assert [b.records for b in source.blocks()] == [len(p) for p in pairs]
    segments = source.segments(4)
    got = _concat(source, segments)
    assert [r.position for r in got] == list(range(len(records)))
    assert [r.ordinal for r in got[:4]] == [0, 1, 0, 1]


def test_skip_length_member_with_two_records_is_corrupt(tmp_path: Path, records) -> None:
    path = tmp_path / "double.warc.gz"
    single = gzip_member(encode_record(records[0]))
    double = gzip_member(encode_record(records[1]) + encode_record(records[2]))
    path.write_bytes(single + double)
    source = ArchiveSource(path)
    second = source.blocks()[1]

    with pytest.raises(RecordCorruption) as info:
        list(source)

    assert info.value.offset == second.offset


def test_block_index_is_rebuilt_when_file_changes(build_archive, records, compression) -> None:
    path = build_archive(records, compression)
    source = ArchiveSource(path)
    before = source.blocks()

    longer = build_archive(records + records[1:4], compression)
    os.replace(longer, path)
    os.utime(path, ns=(os.stat(path).st_atime_ns, os.stat(path).st_mtime_ns + 1_000_000_000))

    after = source.blocks()
    assert len(after) > len(before)
    segments = source.segments(3)
    assert len(_concat(source, segments)) == len(records) + 3
