"""
Run report: aggregate outcome counters and failure descriptors for one run.

A report is owned by exactly one runner (or one parallel worker) while the
run is in progress, merged at the end, and sealed once the run terminates.
Merging is associative and commutative on the counters; failure lists are
unioned and kept ordered by record position.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Tuple

from ..dto import FailureDescriptor, RecordOutcome


def _failure_key(f: FailureDescriptor) -> Tuple[int, str, str]:
    return (f.offset, f.record_id, f.stage)


class RunReport:
    """Counts of processed / dropped / failed records plus failure descriptors."""

    def __init__(self) -> None:
        self._counts: Dict[RecordOutcome, int] = {o: 0 for o in RecordOutcome}
        self._failures: List[FailureDescriptor] = []
        self._sealed = False

    # --- mutation (owning runner only) ---

    def record_outcome(
        self,
        record_id: str,
        outcome: RecordOutcome,
        failures: Iterable[FailureDescriptor] = (),
    ) -> None:
        """Account for one attempted record."""
        if self._sealed:
            raise RuntimeError("run report is sealed")
        self._counts[RecordOutcome(outcome)] += 1
        for f in failures:
            if f.record_id != record_id:
                raise ValueError(f"failure for {f.record_id} recorded against {record_id}")
            self._failures.append(f)

    def merge(self, other: "RunReport") -> "RunReport":
        """Return a new, unsealed report combining both."""
        merged = RunReport()
        for o in RecordOutcome:
            merged._counts[o] = self._counts[o] + other._counts[o]
        merged._failures = sorted(self._failures + other._failures, key=_failure_key)
        return merged

    @classmethod
    def merge_all(cls, reports: Iterable["RunReport"]) -> "RunReport":
        total = cls()
        for r in reports:
            total = total.merge(r)
        return total

    def seal(self) -> "RunReport":
        """Freeze the report; called when the run completes or aborts."""
        self._sealed = True
        return self

    # --- read-only accessors ---

    @property
    def sealed(self) -> bool:
        return self._sealed

    @property
    def processed(self) -> int:
        return self._counts[RecordOutcome.PROCESSED]

    @property
    def dropped(self) -> int:
        return self._counts[RecordOutcome.DROPPED]

    @property
    def failed(self) -> int:
        return self._counts[RecordOutcome.FAILED]

    @property
    def attempted(self) -> int:
        return sum(self._counts.values())

    @property
    def failures(self) -> Tuple[FailureDescriptor, ...]:
        return tuple(sorted(self._failures, key=_failure_key))

    def as_dict(self) -> Dict[str, object]:
        return {
            "attempted": self.attempted,
            "processed": self.processed,
            "dropped": self.dropped,
            "failed": self.failed,
            "failures": [f.as_dict() for f in self.failures],
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RunReport):
            return NotImplemented
        return self._counts == other._counts and self.failures == other.failures

    def __repr__(self) -> str:
        return (
            f"RunReport(processed={self.processed}, dropped={self.dropped}, "
            f"failed={self.failed}, sealed={self._sealed})"
        )
