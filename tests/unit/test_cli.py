import json
import logging

import pytest

from warcflow.cli import main


@pytest.fixture(autouse=True)
def _reset_package_logger():
    yield
    logger = logging.getLogger("warcflow")
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()


def _summary(capsys) -> dict:
    err = capsys.readouterr().err
    start = err.index("{")
    return json.loads(err[start : err.rindex("}") + 1])


def test_cli_parallel_run_writes_output(build_archive, records, tmp_path, capsys) -> None:
    path = build_archive(records, "gzip")
    out = tmp_path / "uris.txt"

    status = main([str(path), "-p", "target-uri", "-w", "string", "-o", str(out), "-T", "3", "--log-level", "ERROR"])

    assert status == 0
    assert out.read_text("utf-8").splitlines() == [r.target_uri for r in records if r.target_uri]
    summary = _summary(capsys)
    assert summary["state"] == "completed"
    assert summary["processed"] == len(records) - 1
    assert summary["dropped"] == 1


def test_cli_sequential_with_filter_and_resolver(build_archive, records, tmp_path, capsys) -> None:
    path = build_archive(records)
    out = tmp_path / "hosts.txt"

    status = main(
        [
            str(path),
            "-p", "host-address", "-w", "string",
            "-f", "host-ends-with:.com",
            "--resolver", "synthetic",
            "-S",
            "-o", str(out),
            "--log-level", "ERROR",
        ]
    )

    assert status == 0
    lines = out.read_text("utf-8").splitlines()
    assert lines and all(ln.startswith("gamma.example.com\t") for ln in lines)
    assert len(set(lines)) == 1


def test_cli_reports_abort(build_archive, records, tmp_path, capsys) -> None:
    path = build_archive(records, tail=b"GARBAGE\r\n")

    status = main([str(path), "-p", "identity", "-w", "url-position", "-o", str(tmp_path / "o.txt"), "-S"])

    assert status == 1
    summary = _summary(capsys)
    assert summary["state"] == "aborted"
    assert "offset" in summary["error"]
    assert summary["processed"] == len(records)


@pytest.mark.parametrize(
    "argv",
    [
        ["-p", "target-uri"],
        ["-p", "target-uri", "-w", "string", "-w", "string"],
        ["-p", "unknown", "-w", "string"],
        ["-p", "target-uri", "-w", "string", "-f", "bogus"],
        ["-p", "target-uri", "-w", "string", "-T", "2", "-S"],
        ["-p", "target-uri", "-w", "string", "-o", "a.txt", "-o", "b.txt"],
        ["-p", "target-uri", "-w", "constant-position-url"],
    ],
)
def test_cli_usage_errors_exit_2(build_archive, records, argv) -> None:
    path = build_archive(records)
    with pytest.raises(SystemExit) as info:
        main([str(path), *argv])
    assert info.value.code == 2


def test_cli_progress_bar_counts_records(build_archive, records, tmp_path, capsys) -> None:
    path = build_archive(records, "zstd")

    status = main([str(path), "-p", "target-uri", "-w", "string", "-o", str(tmp_path / "o.txt"), "-T", "2", "--progress"])

    assert status == 0
    err = capsys.readouterr().err
    assert f"{len(records)}rec" in err.replace(" ", "")


def test_cli_one_output_per_stage(build_archive, records, tmp_path, capsys) -> None:
    path = build_archive(records, "gzip")
    uris_out = tmp_path / "uris.txt"
    positions_out = tmp_path / "positions.tsv"

    status = main(
        [
            str(path),
            "-p", "target-uri", "-w", "string",
            "-p", "identity", "-w", "url-position",
            "-o", str(uris_out),
            "-o", str(positions_out),
            "-T", "3",
            "--log-level", "ERROR",
        ]
    )

    assert status == 0
    assert uris_out.read_text("utf-8").splitlines() == [r.target_uri for r in records if r.target_uri]
    assert positions_out.read_text("utf-8").splitlines() == [
        f"{r.target_uri}\t{i}" for i, r in enumerate(records) if r.target_uri
    ]


def test_cli_same_output_named_twice_is_shared(build_archive, records, tmp_path, capsys) -> None:
    path = build_archive(records)
    out = tmp_path / "both.txt"

    status = main(
        [
            str(path),
            "-p", "target-uri", "-w", "string",
            "-p", "target-uri", "-w", "string",
            "-o", str(out),
            "-o", str(out),
            "-T", "2",
            "--log-level", "ERROR",
        ]
    )

    assert status == 0
    expected = []
    for r in records:
        if r.target_uri:
            expected += [r.target_uri, r.target_uri]
    assert out.read_text("utf-8").splitlines() == expected


def test_cli_final_position_writer_runs_in_order(build_archive, records, tmp_path, capsys) -> None:
    path = build_archive(records, "zstd")
    out = tmp_path / "final.tsv"

    status = main(
        [
            str(path),
            "-p", "identity", "-w", "url-digest-final-position:0",
            "-o", str(out),
            "-T", "4",
            "--log-level", "ERROR",
        ]
    )

    assert status == 0
    lines = [ln.split("\t") for ln in out.read_text("utf-8").splitlines()]
    assert [int(cols[2]) for cols in lines] == list(range(len(records) - 1))
    assert all(cols[3] == "HTTP/1.1 200 OK" for cols in lines)
