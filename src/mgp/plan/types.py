# src/mgp/plan/types.py
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence, Tuple

from mgp.utils.samples import DiscoveryRule, SampleInput

if TYPE_CHECKING:
    from mgp.config.schema import PipelineConfig
    from mgp.engine.validate import ValidationRule


class JobStatus(str, Enum):
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    FAILED = "FAILED"


@dataclass(frozen=True)
class CommandStep:
    argv: Tuple[str, ...]
    stdout: Optional[Path] = None     # redirect stdout here instead of the job log
    discard_stdout: bool = False
    optional: bool = False            # failure is noted in the log, chain continues
    label: str = ""

    @property
    def name(self) -> str:
        return self.label or Path(self.argv[0]).name


@dataclass(frozen=True)
class JobDescriptor:
    sample: str
    inputs: Tuple[Path, ...]
    steps: Tuple[CommandStep, ...]
    outputs: Tuple[Path, ...]
    log_path: Path
    task: str = ""                                   # sub-job label (CM model, ssu/lsu)
    work_dir: Optional[Path] = None                  # private scratch dir
    promote: Tuple[Tuple[Path, Path], ...] = ()      # (staged, final) moves after success
    rules: Tuple["ValidationRule", ...] = ()

    @property
    def key(self) -> str:
        return f"{self.sample}:{self.task}" if self.task else self.sample


@dataclass(frozen=True)
class RunResult:
    exit_code: int
    log_path: Path
    reason: str = ""
    elapsed: float = 0.0


@dataclass(frozen=True)
class JobOutcome:
    key: str
    sample: str
    status: JobStatus
    log_path: Path
    outputs: Tuple[Path, ...] = ()
    exit_code: int = 0
    reason: str = ""
    reused: bool = False

    @classmethod
    def success(cls, job: JobDescriptor, *, reused: bool = False) -> "JobOutcome":
        return cls(job.key, job.sample, JobStatus.SUCCESS, job.log_path, job.outputs, reused=reused)

    @classmethod
    def warning(cls, job: JobDescriptor, reason: str, outputs: Sequence[Path] = ()) -> "JobOutcome":
        return cls(job.key, job.sample, JobStatus.WARNING, job.log_path, tuple(outputs), reason=reason)

    @classmethod
    def failure(cls, job: JobDescriptor, exit_code: int, reason: str = "") -> "JobOutcome":
        return cls(job.key, job.sample, JobStatus.FAILED, job.log_path, exit_code=exit_code, reason=reason)


@dataclass
class StageSummary:
    stage: str
    total: int = 0
    succeeded: int = 0
    warned: int = 0
    failed: int = 0
    elapsed: float = 0.0
    failed_keys: List[str] = field(default_factory=list)
    warned_keys: List[str] = field(default_factory=list)
    excluded: List[Tuple[str, str]] = field(default_factory=list)   # (path, reason)

    @property
    def exit_code(self) -> int:
        return 2 if self.failed else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "total": self.total,
            "succeeded": self.succeeded,
            "warned": self.warned,
            "failed": self.failed,
            "elapsed": round(self.elapsed, 3),
            "failed_keys": list(self.failed_keys),
            "warned_keys": list(self.warned_keys),
            "excluded": [list(x) for x in self.excluded],
        }

    def write_json(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2) + "\n", encoding="utf-8")
        return path

    @classmethod
    def read_json(cls, path: Path) -> "StageSummary":
        data = json.loads(path.read_text(encoding="utf-8"))
        return cls(
            stage=data["stage"],
            total=int(data.get("total", 0)),
            succeeded=int(data.get("succeeded", 0)),
            warned=int(data.get("warned", 0)),
            failed=int(data.get("failed", 0)),
            elapsed=float(data.get("elapsed", 0.0)),
            failed_keys=list(data.get("failed_keys", [])),
            warned_keys=list(data.get("warned_keys", [])),
            excluded=[(str(p), str(r)) for p, r in data.get("excluded", [])],
        )


@dataclass(frozen=True)
class StageContext:
    config: "PipelineConfig"
    stage: "StageDef"
    input_dir: Path
    output_dir: Path
    log_dir: Path
    temp_dir: Path
    dry_run: bool = False

    def job_log(self, key: str) -> Path:
        return self.log_dir / f"{key.replace(':', '_')}.log"

    def work_dir(self, sample: str, task: str = "") -> Path:
        return self.temp_dir / sample / task if task else self.temp_dir / sample


JobBuilder = Callable[[SampleInput, StageContext], Sequence[JobDescriptor]]
StageHook = Callable[[StageContext], None]
FinalizeHook = Callable[[StageContext, StageSummary], None]


@dataclass(frozen=True)
class StageDef:
    name: str
    title: str
    input_dir: Path
    output_dir: Path
    discovery: DiscoveryRule
    build: JobBuilder
    requires: Tuple[str, ...] = ()          # executables checked before dispatch
    preflight: Optional[StageHook] = None   # reference data / resource checks
    max_parallel: int = 1
    task_parallel: int = 1                  # >1 => nested sample x task concurrency
    finalize: Optional[FinalizeHook] = None
    log_dir: Optional[Path] = None          # default: <output_dir>/logs

    @property
    def logs(self) -> Path:
        return self.log_dir or self.output_dir / "logs"


@dataclass(frozen=True)
class PipelinePlan:
    variant: str
    title: str
    stages: Tuple[StageDef, ...]

    def names(self) -> List[str]:
        return [s.name for s in self.stages]

    def get(self, name: str) -> StageDef:
        for s in self.stages:
            if s.name == name:
                return s
        raise KeyError(name)
