# src/mgp/utils/runner.py
from __future__ import annotations

import os
import shutil
import subprocess
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import IO, Iterator, Mapping, Optional, Sequence

from mgp.plan.types import CommandStep, JobDescriptor, RunResult
from mgp.utils.logger import get_logger

LOG = get_logger("runner")

EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = 124


def run_command(
    cmd: Sequence[str],
    *,
    dry_run: bool = False,
    capture: bool = False,
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    log_file: Optional[Path] = None,
) -> subprocess.CompletedProcess[str]:
    """
    Execute a one-off subprocess with unified logging and error handling.

    - Logs the exact command line.
    - Respects dry_run (no execution).
    - capture=True buffers output; log_file sends stdout+stderr to a file.
    - Merges provided env with the current process environment (preserves PATH).
    - Raises CalledProcessError on failure (after logging stdout/stderr).
    """
    LOG.info("Running: %s", " ".join(cmd))
    if dry_run:
        LOG.debug("[dry-run] command not executed")
        return subprocess.CompletedProcess(cmd, 0, "", "")

    env_dict = os.environ.copy()
    if env:
        env_dict.update({str(k): str(v) for k, v in env.items()})

    try:
        if log_file is not None:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            with log_file.open("w", encoding="utf-8") as fh:
                result = subprocess.run(
                    list(cmd), check=True, cwd=str(cwd) if cwd else None, env=env_dict,
                    text=True, stdout=fh, stderr=subprocess.STDOUT,
                )
        else:
            result = subprocess.run(
                list(cmd), check=True, cwd=str(cwd) if cwd else None, env=env_dict,
                text=True, capture_output=capture,
            )
    except FileNotFoundError:
        LOG.error("Executable not found: %s (PATH=%s)", cmd[0], env_dict.get("PATH", ""))
        raise
    except subprocess.CalledProcessError as e:
        if e.stdout:
            LOG.error("STDOUT:\n%s", e.stdout.strip())
        if e.stderr:
            LOG.error("STDERR:\n%s", e.stderr.strip())
        LOG.error("Command failed with exit code %s", e.returncode)
        raise

    LOG.debug("Command completed successfully.")
    if capture and result.stdout:
        LOG.debug("Captured STDOUT:\n%s", result.stdout.strip())
    return result


@contextmanager
def job_workspace(work_dir: Optional[Path], *, cleanup: bool = True) -> Iterator[Optional[Path]]:
    """Create a job's private scratch dir; remove it on every exit path when cleanup is set."""
    if work_dir is None:
        yield None
        return
    work_dir.mkdir(parents=True, exist_ok=True)
    try:
        yield work_dir
    finally:
        if cleanup:
            shutil.rmtree(work_dir, ignore_errors=True)


def _stamp() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def _run_step(step: CommandStep, log: IO[str], *, cwd: Optional[Path], timeout: Optional[float]) -> int:
    log.write(f"[{_stamp()}] $ {' '.join(step.argv)}\n")
    log.flush()
    stdout_fh: Optional[IO[bytes]] = None
    try:
        if step.stdout is not None:
            step.stdout.parent.mkdir(parents=True, exist_ok=True)
            stdout_fh = step.stdout.open("wb")
            stdout_target = stdout_fh
        elif step.discard_stdout:
            stdout_target = subprocess.DEVNULL
        else:
            stdout_target = log
        proc = subprocess.run(
            list(step.argv),
            stdout=stdout_target,
            stderr=log,
            cwd=str(cwd) if cwd else None,
            timeout=timeout,
        )
        return proc.returncode
    except FileNotFoundError:
        log.write(f"ERROR: executable not found: {step.argv[0]}\n")
        return EXIT_NOT_FOUND
    except subprocess.TimeoutExpired:
        log.write(f"ERROR: {step.name} timed out after {timeout}s\n")
        return EXIT_TIMEOUT
    finally:
        if stdout_fh is not None:
            stdout_fh.close()


def _promote(job: JobDescriptor, log: IO[str]) -> None:
    for staged, final in job.promote:
        if not staged.exists():
            log.write(f"[promote] {staged.name} not produced; skipped\n")
            continue
        final.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(staged), str(final))
        log.write(f"[promote] {staged} -> {final}\n")


def run_job(
    job: JobDescriptor,
    *,
    dry_run: bool = False,
    timeout: Optional[float] = None,
    cleanup_temp: bool = True,
) -> RunResult:
    """
    Run every step of *job*, stdout/stderr into the job's own log.

    Never raises for tool failures: the first failing non-optional step
    ends the chain and its exit code is returned. The log file is always
    created, even when nothing could be started.
    """
    start = time.monotonic()
    job.log_path.parent.mkdir(parents=True, exist_ok=True)
    job.log_path.write_text("", encoding="utf-8")
    # append mode: the tools share this file descriptor with us
    with job.log_path.open("a", encoding="utf-8") as log:
        log.write(f"[{_stamp()}] job {job.key}\n")
        for p in job.inputs:
            log.write(f"  input: {p}\n")
        log.flush()

        if not job.steps:
            log.write("ERROR: job has no commands\n")
            return RunResult(EXIT_NOT_FOUND, job.log_path, "no commands", time.monotonic() - start)

        if dry_run:
            for step in job.steps:
                log.write(f"[dry-run] $ {' '.join(step.argv)}\n")
            LOG.debug("[dry-run] %s: %d command(s) not executed", job.key, len(job.steps))
            return RunResult(0, job.log_path, "dry-run", time.monotonic() - start)

        exit_code = 0
        reason = ""
        with job_workspace(job.work_dir, cleanup=cleanup_temp) as work:
            for step in job.steps:
                rc = _run_step(step, log, cwd=work, timeout=timeout)
                log.flush()
                if rc == 0:
                    continue
                if step.optional:
                    log.write(f"WARNING: optional step {step.name} exited {rc}; continuing\n")
                    continue
                exit_code = rc
                reason = f"{step.name} exited {rc}"
                if rc == EXIT_TIMEOUT:
                    reason = f"{step.name} timed out"
                elif rc == EXIT_NOT_FOUND:
                    reason = f"{step.name}: executable not found"
                break
            if exit_code == 0:
                _promote(job, log)

        elapsed = time.monotonic() - start
        log.write(f"[{_stamp()}] exit {exit_code} after {elapsed:.1f}s\n")

    LOG.debug("%s finished: exit=%s (%.1fs)", job.key, exit_code, elapsed)
    return RunResult(exit_code, job.log_path, reason, elapsed)
