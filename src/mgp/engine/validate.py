# src/mgp/engine/validate.py
from __future__ import annotations

import gzip
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Iterator, Optional

from mgp.plan.types import JobDescriptor, JobOutcome, RunResult
from mgp.utils.logger import get_logger

LOG = get_logger("validate")


def _open_text(path: Path) -> IO[str]:
    if path.suffix == ".gz":
        return gzip.open(path, "rt", encoding="utf-8", errors="replace")
    return path.open("r", encoding="utf-8", errors="replace")


def _lines(path: Path) -> Iterator[str]:
    with _open_text(path) as fh:
        for line in fh:
            yield line.rstrip("\n")


def count_records(path: Path, fmt: str) -> int:
    """Records in a fasta / fastq / table file (gzip aware)."""
    if fmt == "fasta":
        return sum(1 for ln in _lines(path) if ln.startswith(">"))
    if fmt == "fastq":
        return sum(1 for ln in _lines(path) if ln.strip()) // 4
    if fmt == "table":
        return sum(1 for ln in _lines(path) if ln.strip() and not ln.startswith("#"))
    raise ValueError(f"unknown record format: {fmt}")


class ValidationRule:
    """Content check on a job's outputs; returns a warning reason or None."""

    def check(self, job: JobDescriptor) -> Optional[str]:
        raise NotImplementedError


@dataclass(frozen=True)
class MinRecords(ValidationRule):
    fmt: str = "fasta"
    minimum: int = 1
    output_index: int = 0

    def check(self, job: JobDescriptor) -> Optional[str]:
        path = job.outputs[self.output_index]
        n = count_records(path, self.fmt)
        if n < self.minimum:
            return f"{path.name}: {n} record(s), expected at least {self.minimum}"
        return None


@dataclass(frozen=True)
class HeaderSniff(ValidationRule):
    prefix: str = ">"
    output_index: int = 0

    def check(self, job: JobDescriptor) -> Optional[str]:
        path = job.outputs[self.output_index]
        for ln in _lines(path):
            if not ln.strip():
                continue
            if ln.startswith(self.prefix):
                return None
            return f"{path.name}: first line does not start with {self.prefix!r}"
        return f"{path.name}: no content"


@dataclass(frozen=True)
class RecordCountMatch(ValidationRule):
    input_fmt: str = "fastq"
    output_fmt: str = "fasta"
    input_index: int = 0
    output_index: int = 0

    def check(self, job: JobDescriptor) -> Optional[str]:
        n_in = count_records(job.inputs[self.input_index], self.input_fmt)
        n_out = count_records(job.outputs[self.output_index], self.output_fmt)
        if n_in != n_out:
            return f"sequence count mismatch (in: {n_in}, out: {n_out})"
        return None


def remove_outputs(job: JobDescriptor) -> None:
    for p in job.outputs:
        if p.is_file():
            p.unlink()
            LOG.debug("%s: removed partial output %s", job.key, p)


def _note(job: JobDescriptor, line: str) -> None:
    with job.log_path.open("a", encoding="utf-8") as fh:
        fh.write(f"[validate] {line}\n")


def validate_outputs(job: JobDescriptor, result: RunResult, *, dry_run: bool = False) -> JobOutcome:
    """
    Turn a raw run result into SUCCESS / WARNING / FAILED.

    Hard failures leave no outputs behind. Empty outputs are removed and
    downgraded to a warning; content-rule warnings keep the outputs.
    """
    if result.exit_code != 0:
        remove_outputs(job)
        _note(job, f"FAILED: exit {result.exit_code} {result.reason}".rstrip())
        return JobOutcome.failure(job, result.exit_code, result.reason or f"exit {result.exit_code}")

    if dry_run:
        return JobOutcome.success(job)

    missing = [p for p in job.outputs if not p.exists()]
    if missing:
        remove_outputs(job)
        reason = "missing output " + ", ".join(p.name for p in missing)
        _note(job, f"FAILED: {reason}")
        return JobOutcome.failure(job, result.exit_code, reason)

    empty = [p for p in job.outputs if p.stat().st_size == 0]
    if empty:
        for p in empty:
            p.unlink()
        kept = [p for p in job.outputs if p not in empty]
        reason = "empty output " + ", ".join(p.name for p in empty)
        _note(job, f"WARNING: {reason}")
        return JobOutcome.warning(job, reason, kept)

    for rule in job.rules:
        try:
            reason = rule.check(job)
        except (OSError, EOFError, ValueError) as e:
            reason = f"{type(rule).__name__} could not read output: {e}"
        if reason:
            _note(job, f"WARNING: {reason}")
            return JobOutcome.warning(job, reason, job.outputs)

    _note(job, "ok")
    return JobOutcome.success(job)


def outputs_reusable(job: JobDescriptor) -> bool:
    """True when every declared output already exists and is non-empty (resume)."""
    return bool(job.outputs) and all(p.is_file() and p.stat().st_size > 0 for p in job.outputs)
