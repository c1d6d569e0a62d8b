# src/mgp/engine/aggregate.py
from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from mgp.plan.types import JobOutcome, JobStatus, StageSummary
from mgp.utils.logger import get_logger

LOG = get_logger("aggregate")

STATUS_LOG = "processing_status.log"
PREVIOUS_STATUS_LOG = "processing_status.prev.log"
SUMMARY_JSON = "summary.json"


def rotate_status_log(log_dir: Path) -> Path:
    """Keep the previous run's status log for diffing and start a fresh one."""
    log_dir.mkdir(parents=True, exist_ok=True)
    current = log_dir / STATUS_LOG
    if current.exists():
        current.replace(log_dir / PREVIOUS_STATUS_LOG)
    current.touch()
    return current


def read_status_log(path: Path) -> Dict[str, str]:
    """Parse ``STATUS: key`` lines; later lines win."""
    out: Dict[str, str] = {}
    if not path.exists():
        return out
    for ln in path.read_text(encoding="utf-8").splitlines():
        status, sep, key = ln.partition(": ")
        if sep and status in JobStatus.__members__:
            out[key.strip()] = status
    return out


def count_status(path: Path) -> Dict[str, int]:
    counts = {s.value: 0 for s in JobStatus}
    for status in read_status_log(path).values():
        counts[status] += 1
    return counts


class Aggregator:
    """
    Single-owner fold of job outcomes into a StageSummary.

    Outcomes may arrive in any order; a key reported twice is counted once.
    """

    def __init__(self, stage: str, status_log: Optional[Path] = None) -> None:
        self.stage = stage
        self.status_log = status_log
        self._outcomes: Dict[str, JobOutcome] = {}

    def __len__(self) -> int:
        return len(self._outcomes)

    @property
    def outcomes(self) -> List[JobOutcome]:
        return [self._outcomes[k] for k in sorted(self._outcomes)]

    def ingest(self, outcome: JobOutcome) -> bool:
        if outcome.key in self._outcomes:
            LOG.warning("Duplicate outcome for %s ignored (%s)", outcome.key, outcome.status.value)
            return False
        self._outcomes[outcome.key] = outcome
        if self.status_log is not None:
            with self.status_log.open("a", encoding="utf-8") as fh:
                fh.write(f"{outcome.status.value}: {outcome.key}\n")
        return True

    def ingest_all(self, outcomes: Iterable[JobOutcome]) -> int:
        return sum(1 for o in outcomes if self.ingest(o))

    def counts(self) -> Tuple[int, int, int]:
        ok = warn = bad = 0
        for o in self._outcomes.values():
            if o.status is JobStatus.SUCCESS:
                ok += 1
            elif o.status is JobStatus.WARNING:
                warn += 1
            else:
                bad += 1
        return ok, warn, bad

    def summary(self, elapsed: float = 0.0, excluded: Iterable[Tuple[Path, str]] = ()) -> StageSummary:
        ok, warn, bad = self.counts()
        return StageSummary(
            stage=self.stage,
            total=len(self._outcomes),
            succeeded=ok,
            warned=warn,
            failed=bad,
            elapsed=elapsed,
            failed_keys=sorted(k for k, o in self._outcomes.items() if o.status is JobStatus.FAILED),
            warned_keys=sorted(k for k, o in self._outcomes.items() if o.status is JobStatus.WARNING),
            excluded=[(str(p), r) for p, r in excluded],
        )
