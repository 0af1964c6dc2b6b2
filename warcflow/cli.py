"""
Command line entry point.

    warcflow ARCHIVE -p target-uri -w string -o uris.txt
    warcflow ARCHIVE -p identity -w url-digest -p response-content -w string -T 8
    warcflow ARCHIVE -p host-address -w string --resolver synthetic -f host-ends-with:.org -S

Processors (-p) and writers (-w) pair up in the order given. One -o is shared
by every stage; with one -o per -p, each stage writes to its own output
(warcflow ARCHIVE -p identity -w url-digest -p target-uri -w string -o a.tsv -o b.txt).
A JSON summary of the run report goes to stderr; exit status is 0 on
completion, 1 if the run aborted, 2 on usage errors.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from contextlib import ExitStack
from typing import Dict, List, Optional, Tuple

from tqdm import tqdm

from .config import LoggingConfig, ResolverConfig, RunnerConfig
from .errors import RunAborted
from .intake.archive_source import ArchiveSource
from .logs import init_logging
from .orchestration.runner import PipelineRunner
from .pipeline.filters import and_, parse_filter
from .pipeline.processors import PROCESSORS, build_processor
from .pipeline.stages import StageChain
from .pipeline.writers import WRITERS, build_writer
from .resolve import build_resolver
from .sinks import StreamSink


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="warcflow", description="Parallel filtered processing of WARC containers")
    p.add_argument("archive", help="Container file (plain, gzip or zstd)")
    p.add_argument(
        "-p", "--processor", dest="processors", action="append", default=[], metavar="NAME",
        help=f"Processor, one of: {', '.join(sorted(PROCESSORS))}",
    )
    p.add_argument(
        "-w", "--writer", dest="writers", action="append", default=[], metavar="NAME",
        help=f"Writer paired with the processor in the same position, one of: {', '.join(sorted(WRITERS))}",
    )
    p.add_argument(
        "-o", "--output", dest="outputs", action="append", default=[], metavar="FILE",
        help='Output file, "-" for stdout (default); give one per -p to route each stage separately',
    )
    p.add_argument(
        "-f", "--filter", dest="filters", action="append", default=[], metavar="SPEC",
        help='Record filter "name" or "name:arg", "!" negates; repeated filters must all accept',
    )
    p.add_argument("--compression", choices=["none", "gzip", "zstd"], help="Override container sniffing")

    mode = p.add_mutually_exclusive_group()
    mode.add_argument("-T", "--threads", type=int, help="Worker threads (default: WARCFLOW_WORKERS or CPU count)")
    mode.add_argument("-S", "--sequential", action="store_true", help="Run on the calling thread only")

    p.add_argument("--resolver", choices=["system", "protocol", "synthetic"], help="Name resolution backend")
    p.add_argument(
        "--nameserver", dest="nameservers", action="append", default=[], help="Nameserver for --resolver protocol",
    )
    p.add_argument("--progress", action="store_true", help="Show a record progress bar on stderr")
    p.add_argument("--log-level", help="DEBUG / INFO / WARNING / ERROR")
    p.add_argument("--log-file", help="Also log to this rotating file")
    return p


def _build_stages(
    p: argparse.ArgumentParser, args: argparse.Namespace, resolver_cfg: ResolverConfig
) -> List[Tuple[object, object, str]]:
    if not args.processors:
        p.error("at least one -p/-w pair is required")
    if len(args.processors) != len(args.writers):
        p.error(f"{len(args.processors)} processor(s) but {len(args.writers)} writer(s); give one -w per -p")
    if len(args.outputs) > 1 and len(args.outputs) != len(args.processors):
        p.error(f"{len(args.processors)} processor(s) but {len(args.outputs)} outputs; give one -o, or one per -p")

    resolver = build_resolver(resolver_cfg) if "host-address" in args.processors else None
    try:
        return [
            (build_processor(pname, resolver), build_writer(wname), f"{pname}/{wname}")
            for pname, wname in zip(args.processors, args.writers)
        ]
    except ValueError as exc:
        p.error(str(exc))


def _open_outputs(stack: ExitStack, outputs: List[str]) -> List[StreamSink]:
    """One sink per output name; the same file named twice is opened once."""
    opened: Dict[str, StreamSink] = {}
    sinks = []
    for name in outputs:
        key = name if name == "-" else os.path.abspath(name)
        if key not in opened:
            opened[key] = stack.enter_context(StreamSink.open(name))
        sinks.append(opened[key])
    return sinks


def main(argv: Optional[List[str]] = None) -> int:
    p = build_parser()
    args = p.parse_args(argv)

    log_cfg = LoggingConfig.from_env()
    updates = {k: v for k, v in (("level", args.log_level), ("log_file", args.log_file)) if v}
    log = init_logging(log_cfg.model_copy(update=updates) if updates else log_cfg)

    runner_cfg = RunnerConfig.from_env()
    if args.threads is not None:
        if args.threads < 1:
            p.error("-T must be >= 1")
        runner_cfg = runner_cfg.model_copy(update={"worker_count": args.threads})

    resolver_cfg = ResolverConfig.from_env()
    resolver_updates: dict = {}
    if args.resolver:
        resolver_updates["backend"] = args.resolver
    if args.nameservers:
        resolver_updates["nameservers"] = tuple(args.nameservers)
    if resolver_updates:
        resolver_cfg = resolver_cfg.model_copy(update=resolver_updates)

    stages = _build_stages(p, args, resolver_cfg)
    try:
        record_filter = and_(*[parse_filter(spec) for spec in args.filters]) if args.filters else None
    except ValueError as exc:
        p.error(str(exc))

    try:
        source = ArchiveSource(args.archive, compression=args.compression)
    except OSError as exc:
        p.error(f"cannot open {args.archive}: {exc}")

    summary: dict
    status = 0
    pbar = tqdm(desc=os.path.basename(args.archive), unit="rec", file=sys.stderr) if args.progress else None
    with ExitStack() as stack:
        sinks = _open_outputs(stack, args.outputs or ["-"])
        sink = sinks[0]
        chain = StageChain()
        for i, (processor, writer, name) in enumerate(stages):
            own = sinks[i] if len(sinks) > 1 else sink
            chain.add(processor, writer, name=name, sink=None if own is sink else own)
        runner = PipelineRunner(
            source,
            chain,
            sink,
            config=runner_cfg,
            record_filter=record_filter,
            on_record=pbar.update if pbar is not None else None,
        )
        try:
            report = runner.run_sequentially() if args.sequential else runner.run()
            summary = {"state": runner.state.value, **report.as_dict()}
        except RunAborted as exc:
            log.error("aborted: %s", exc.cause)
            summary = {"state": runner.state.value, "error": str(exc.cause)}
            if exc.report is not None:
                summary.update(exc.report.as_dict())
            status = 1
        finally:
            chain.close()
            if pbar is not None:
                pbar.close()

    print(json.dumps(summary, indent=2), file=sys.stderr)
    return status


if __name__ == "__main__":
    sys.exit(main())
