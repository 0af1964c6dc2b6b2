"""
warcflow: parallel filtered processing of WARC archive containers.

Public API (stable):
- RunnerConfig, ResolverConfig, LoggingConfig  (configuration)
- PipelineRunner, RunState                     (sequential / parallel runs)
- StageChain                                   (processor/writer pairs)
- RunReport                                    (per-run outcome counts)
- ArchiveSource                                (plain / gzip / zstd containers)
- ArchiveWriter                                (builds containers)
- build_resolver                               (name resolution backends)
- Ports: RecordSourcePort, ProcessorPort, WriterPort, OutputSinkPort, ResolverPort
- DTOs: Record, Segment, Address, RecordOutcome, FailureDescriptor
- Errors: RecordCorruption, SegmentOpenFailure, SinkFailure, RunAborted, NameResolutionError

Bundled filters, processors and writers live in `warcflow.pipeline.*`.
"""

from __future__ import annotations

# Configuration
from .config import LoggingConfig, ResolverConfig, RunnerConfig

# Orchestration
from .orchestration.runner import PipelineRunner, RunState

# Pipeline
from .pipeline.report import RunReport
from .pipeline.stages import StageChain

# Ports
from .ports import OutputSinkPort, ProcessorPort, RecordSourcePort, ResolverPort, WriterPort

# Adapters
from .intake.archive_source import ArchiveSource
from .intake.archive_writer import ArchiveWriter
from .resolve import build_resolver
from .sinks import MemorySink, StreamSink

# DTOs
from .dto import Address, FailureDescriptor, Record, RecordOutcome, Segment

# Errors
from .errors import (
    NameResolutionError,
    PermanentNameResolutionError,
    RecordCorruption,
    RunAborted,
    SegmentOpenFailure,
    SinkFailure,
    TemporaryNameResolutionError,
    WarcflowError,
)

__version__ = "0.1.0"

__all__ = [
    "LoggingConfig",
    "ResolverConfig",
    "RunnerConfig",
    "PipelineRunner",
    "RunState",
    "RunReport",
    "StageChain",
    "OutputSinkPort",
    "ProcessorPort",
    "RecordSourcePort",
    "ResolverPort",
    "WriterPort",
    "ArchiveSource",
    "ArchiveWriter",
    "build_resolver",
    "MemorySink",
    "StreamSink",
    "Address",
    "FailureDescriptor",
    "Record",
    "RecordOutcome",
    "Segment",
    "NameResolutionError",
    "PermanentNameResolutionError",
    "RecordCorruption",
    "RunAborted",
    "SegmentOpenFailure",
    "SinkFailure",
    "TemporaryNameResolutionError",
    "WarcflowError",
]
