# src/mgp/engine/stage.py
from __future__ import annotations

import os
import shutil
import subprocess
import sys
import tempfile
import time
from collections import OrderedDict
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from mgp.config.load import write_config
from mgp.config.schema import PipelineConfig
from mgp.engine.aggregate import SUMMARY_JSON, Aggregator, rotate_status_log
from mgp.engine.errors import ConfigError, PipelineError
from mgp.engine.limiter import Limiter
from mgp.engine.validate import outputs_reusable, validate_outputs
from mgp.plan.types import JobDescriptor, JobOutcome, JobStatus, RunResult, StageContext, StageDef, StageSummary
from mgp.utils.logger import attach_log_file, get_logger, log_success, log_warning
from mgp.utils.runner import run_job
from mgp.utils.samples import discover_samples

LOG = get_logger("stage")

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_PARTIAL = 2


def temp_root(config: PipelineConfig) -> Path:
    root = config.general.temp_root
    if root is None:
        root = Path(tempfile.gettempdir()) / f"mgp_{os.getpid()}"
    return root.resolve()


def cleanup_temp_dir(temp_dir: Path) -> None:
    """Remove a stage's temp dir, then the temp root once no other stage dir is left in it."""
    if temp_dir.exists():
        shutil.rmtree(temp_dir, ignore_errors=True)
    root = temp_dir.parent
    if root.is_dir() and not any(root.iterdir()):
        root.rmdir()
        LOG.debug("Removed empty temp root %s", root)


def check_executables(names: Sequence[str]) -> List[str]:
    """Names from *names* that are not on PATH."""
    return [n for n in names if shutil.which(n) is None]


def preflight(stage: StageDef, ctx: StageContext) -> None:
    """
    Check executables and reference data before anything is dispatched.

    In dry-run mode problems are reported but not fatal.
    """
    try:
        missing = check_executables(stage.requires)
        if missing:
            raise ConfigError(
                f"{stage.name}: required executable(s) not found on PATH: {', '.join(missing)}"
            )
        if stage.preflight is not None:
            stage.preflight(ctx)
    except ConfigError as e:
        if not ctx.dry_run:
            raise
        log_warning(LOG, "[dry-run] preflight: %s", e)


def _execute(job: JobDescriptor, ctx: StageContext) -> JobOutcome:
    general = ctx.config.general
    try:
        if general.resume and not ctx.dry_run and outputs_reusable(job):
            LOG.info("↺ %s: outputs present, reusing", job.key)
            # reused outputs go through the same content rules as fresh ones
            outcome = validate_outputs(job, RunResult(0, job.log_path, "reused"))
            return replace(outcome, reused=True)
        result = run_job(
            job,
            dry_run=ctx.dry_run,
            timeout=general.job_timeout,
            cleanup_temp=general.cleanup_temp,
        )
        return validate_outputs(job, result, dry_run=ctx.dry_run)
    except Exception as e:
        # a bug in one job must not take down its siblings
        LOG.exception("Unhandled exception while running %s", job.key)
        return JobOutcome.failure(job, EXIT_FATAL, f"{type(e).__name__}: {e}")


def _execute_group(jobs: Sequence[JobDescriptor], ctx: StageContext) -> List[JobOutcome]:
    """Run one sample's sub-jobs through the sample's own inner limiter."""
    inner = Limiter(ctx.stage.task_parallel, name=f"{ctx.stage.name}-{jobs[0].sample}")
    return [outcome for outcome in inner.map_unordered(lambda j: _execute(j, ctx), jobs)]


def _report(outcome: JobOutcome) -> None:
    if outcome.status is JobStatus.SUCCESS:
        log_success(LOG, "✓ %s", outcome.key)
    elif outcome.status is JobStatus.WARNING:
        log_warning(LOG, "⚠ %s: %s", outcome.key, outcome.reason)
    else:
        LOG.error("✗ %s failed: %s (log: %s)", outcome.key, outcome.reason, outcome.log_path)


def _log_summary(summary: StageSummary) -> None:
    LOG.info("=== %s summary ===", summary.stage)
    LOG.info("Total: %d", summary.total)
    LOG.info("Succeeded: %d", summary.succeeded)
    LOG.info("Warned: %d", summary.warned)
    # step logs are keyword-classified; only name failures that happened
    if summary.failed:
        LOG.info("Failed: %d (%s)", summary.failed, ", ".join(summary.failed_keys))
    LOG.info("Excluded inputs: %d", len(summary.excluded))
    LOG.info("Elapsed: %.1fs", summary.elapsed)


def make_context(stage: StageDef, config: PipelineConfig, *, dry_run: bool = False) -> StageContext:
    return StageContext(
        config=config,
        stage=stage,
        input_dir=stage.input_dir,
        output_dir=stage.output_dir,
        log_dir=stage.logs,
        temp_dir=temp_root(config) / stage.name,
        dry_run=dry_run,
    )


def run_stage(stage: StageDef, config: PipelineConfig, *, dry_run: bool = False) -> StageSummary:
    """
    Discovery -> Limiter -> Runner -> Validator -> Aggregator for one stage.

    Per-job failures end up in the summary; only stage-level problems
    (config, missing tools, no inputs) raise PipelineError.
    """
    ctx = make_context(stage, config, dry_run=dry_run)
    ctx.output_dir.mkdir(parents=True, exist_ok=True)
    ctx.log_dir.mkdir(parents=True, exist_ok=True)

    with attach_log_file(ctx.log_dir / f"{stage.name}_master.log"):
        start = time.monotonic()
        LOG.info("=== %s ===", stage.title)
        LOG.info("Input: %s", ctx.input_dir)
        LOG.info("Output: %s", ctx.output_dir)
        LOG.info("Parallel: %d (tasks per sample: %d)", stage.max_parallel, stage.task_parallel)

        preflight(stage, ctx)
        found = discover_samples(ctx.input_dir, stage.discovery)

        by_sample: "OrderedDict[str, List[JobDescriptor]]" = OrderedDict()
        for sample in found.samples:
            jobs = list(stage.build(sample, ctx))
            if jobs:
                by_sample[sample.key] = jobs
        n_jobs = sum(len(v) for v in by_sample.values())
        LOG.info("Dispatching %d job(s) for %d sample(s)", n_jobs, len(by_sample))

        aggregator = Aggregator(stage.name, rotate_status_log(ctx.log_dir))
        outer = Limiter(stage.max_parallel, name=stage.name)

        if stage.task_parallel > 1:
            groups = list(by_sample.values())
            for jobs, fut in outer.imap_unordered(lambda js: _execute_group(js, ctx), groups):
                error = fut.exception()
                if error is not None:
                    LOG.error("Sample %s crashed: %s", jobs[0].sample, error)
                    outcomes = [JobOutcome.failure(j, EXIT_FATAL, str(error)) for j in jobs]
                else:
                    outcomes = fut.result()
                for outcome in outcomes:
                    if aggregator.ingest(outcome):
                        _report(outcome)
        else:
            flat = [j for jobs in by_sample.values() for j in jobs]
            for job, fut in outer.imap_unordered(lambda j: _execute(j, ctx), flat):
                error = fut.exception()
                outcome = JobOutcome.failure(job, EXIT_FATAL, str(error)) if error else fut.result()
                if aggregator.ingest(outcome):
                    _report(outcome)

        summary = aggregator.summary(time.monotonic() - start, found.excluded)
        summary.write_json(ctx.log_dir / SUMMARY_JSON)
        _log_summary(summary)

        if stage.finalize is not None:
            stage.finalize(ctx, summary)

        if config.general.cleanup_temp:
            cleanup_temp_dir(ctx.temp_dir)

        if summary.failed:
            log_warning(LOG, "%s finished with %d failed job(s)", stage.name, summary.failed)
        else:
            log_success(LOG, "%s finished", stage.name)
    return summary


class EngineStage:
    """Runs a stage in-process and maps the result to 0 / 1 / 2."""

    def __init__(self, config: PipelineConfig, *, dry_run: bool = False) -> None:
        self.config = config
        self.dry_run = dry_run

    def __call__(self, stage: StageDef) -> int:
        try:
            summary = run_stage(stage, self.config, dry_run=self.dry_run)
        except PipelineError as e:
            LOG.error("ERROR: %s", e)
            return EXIT_FATAL
        except Exception:
            LOG.exception("Unhandled exception in stage %s", stage.name)
            return EXIT_FATAL
        return EXIT_PARTIAL if summary.failed else EXIT_OK


class ScriptStage:
    """
    Runs each stage as ``python -m mgp stage <name>`` in its own process.

    The effective config (file + CLI overrides) is written next to the
    stage logs so the child sees exactly what the parent resolved.
    """

    def __init__(
        self,
        config: PipelineConfig,
        variant: str,
        *,
        dry_run: bool = False,
        python: Optional[str] = None,
    ) -> None:
        self.config = config
        self.variant = variant
        self.dry_run = dry_run
        self.python = python or sys.executable

    def command(self, stage: StageDef, config_path: Path) -> List[str]:
        cmd = [self.python, "-m", "mgp", "stage", stage.name,
               "--variant", self.variant, "--config", str(config_path)]
        if self.dry_run:
            cmd.append("--dry-run")
        return cmd

    def __call__(self, stage: StageDef) -> int:
        config_path = write_config(self.config, stage.logs / f"{stage.name}_config.yaml")
        cmd = self.command(stage, config_path)
        LOG.info("Running: %s", " ".join(cmd))
        env: Dict[str, str] = dict(os.environ, PYTHONUNBUFFERED="1")
        try:
            proc = subprocess.Popen(
                cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
                text=True, encoding="utf-8", errors="replace", env=env,
            )
        except OSError as e:
            LOG.error("ERROR: could not start stage %s: %s", stage.name, e)
            return EXIT_FATAL
        assert proc.stdout is not None
        with proc.stdout:
            for line in proc.stdout:
                LOG.info("%s", line.rstrip("\n"))
        return proc.wait()
