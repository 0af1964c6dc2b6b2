"""
Error taxonomy for archive processing.

Two channels:
- per-record problems (ProcessingFailure) are recovered into the RunReport;
- structural problems (RecordCorruption, SegmentOpenFailure, SinkFailure,
  worker crashes) abort the run and surface as RunAborted.

NameResolutionError is raised by the resolver backends and propagates to the
calling stage; the pipeline never swallows it on its own.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover
    from .dto import Segment
    from .pipeline.report import RunReport


class WarcflowError(Exception):
    """Base class for every error raised by this package."""


# === Structural (abort the run) ===


class RecordCorruption(WarcflowError):
    """Record framing is unreadable at `offset`; downstream offsets are unreliable."""

    def __init__(self, offset: int, reason: str = "malformed record framing") -> None:
        super().__init__(f"{reason} at offset {offset}")
        self.offset = int(offset)
        self.reason = reason


class SegmentOpenFailure(WarcflowError):
    """A segment cannot be opened (container missing, truncated or changed)."""

    def __init__(self, segment: "Segment", reason: str) -> None:
        super().__init__(f"cannot open segment {segment.index} [{segment.start}, {segment.end}): {reason}")
        self.segment = segment
        self.reason = reason


class SinkFailure(WarcflowError):
    """Writing to the output sink (or a worker's buffer) failed."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"output sink failed: {cause}")
        self.cause = cause


# === Per-record (recorded, run continues) ===


class ProcessingFailure(WarcflowError):
    """A processor or writer raised on a well-formed record."""

    def __init__(self, record_id: str, stage: str, cause: BaseException) -> None:
        super().__init__(f"stage {stage!r} failed on record {record_id}: {cause!r}")
        self.record_id = record_id
        self.stage = stage
        self.cause = cause


# === Name resolution ===


class NameResolutionError(WarcflowError):
    """A host name could not be resolved."""

    temporary: bool = False

    def __init__(self, name: str, reason: str = "") -> None:
        kind = "temporary" if self.temporary else "permanent"
        msg = f"cannot resolve {name!r} ({kind})"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)
        self.name = name
        self.reason = reason


class TemporaryNameResolutionError(NameResolutionError):
    """Resolution failed for a reason that may go away on retry."""

    temporary = True


class PermanentNameResolutionError(NameResolutionError):
    """The name does not exist or has no addresses."""

    temporary = False


# === Run outcome ===


class RunAborted(WarcflowError):
    """
    The run stopped on a structural error.

    Attributes
    ----------
    cause : BaseException
        The triggering error (RecordCorruption, SegmentOpenFailure, ...).
    report : RunReport | None
        Outcomes of the records processed before the abort.
    """

    def __init__(self, cause: BaseException, report: Optional["RunReport"] = None) -> None:
        super().__init__(f"run aborted: {cause}")
        self.cause = cause
        self.report = report
