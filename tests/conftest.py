"""Shared fixtures: fake external tools are small `python -c` programs."""

import os
import sys
from pathlib import Path

import pytest

from mgp.config.schema import GeneralSettings, PipelineConfig
from mgp.plan.types import CommandStep, JobDescriptor

SRC = Path(__file__).resolve().parents[1] / "src"

# jobs run `python -m mgp convert ...` in child processes
os.environ["PYTHONPATH"] = os.pathsep.join(p for p in (str(SRC), os.environ.get("PYTHONPATH", "")) if p)


def py(code: str) -> tuple:
    """argv for a throwaway tool written in Python."""
    return (sys.executable, "-c", code)


def write_file(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def fasta_writer(path: Path, n: int = 2) -> str:
    records = "".join(f">seq{i}\nACGT\n" for i in range(n))
    return f"open({str(path)!r}, 'w').write({records!r})"


@pytest.fixture
def config(tmp_path):
    """Config with temp dirs inside tmp_path."""
    return PipelineConfig(general=GeneralSettings(
        log_dir=tmp_path / "pipeline_logs",
        temp_root=tmp_path / "tmp",
    ))


@pytest.fixture
def make_job(tmp_path):
    def _make(key, *codes, outputs=(), rules=(), work=False, promote=(), task=""):
        steps = tuple(CommandStep(py(c)) for c in codes)
        log = tmp_path / "logs" / f"{key}{'_' + task if task else ''}.log"
        return JobDescriptor(
            sample=key,
            task=task,
            inputs=(),
            steps=steps,
            outputs=tuple(outputs),
            log_path=log,
            work_dir=(tmp_path / "work" / key) if work else None,
            promote=tuple(promote),
            rules=tuple(rules),
        )
    return _make
