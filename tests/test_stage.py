"""Tests for running one stage end to end with fake tools."""

import json

import pytest
from conftest import fasta_writer, py, write_file

from mgp.engine.aggregate import STATUS_LOG, SUMMARY_JSON
from mgp.engine.errors import ConfigError
from mgp.engine.stage import EXIT_FATAL, EXIT_OK, EXIT_PARTIAL, EngineStage, ScriptStage, run_stage
from mgp.engine.validate import MinRecords
from mgp.plan.types import CommandStep, JobDescriptor, StageDef
from mgp.utils.logger import attach_log_file
from mgp.utils.samples import DiscoveryRule

TXT = DiscoveryRule(patterns=("*.txt",), strip=r"\.txt$")


def _inputs(tmp_path, n):
    for i in range(n):
        write_file(tmp_path / "in" / f"s{i:02d}.txt", "x\n")
    return tmp_path / "in"


def _stage(tmp_path, *, fail=(), crash=(), header_only=(), tasks=("",), task_parallel=1, max_parallel=3,
           requires=(), finalize=None, work=False):
    """
    A stage that turns s*.txt into s*.fa.

    Keys in *fail* exit 1 after a partial write; keys in *header_only* write
    a file with no FASTA records.
    """

    def build(sample, ctx):
        jobs = []
        for task in tasks:
            name = f"{sample.key}_{task}" if task else sample.key
            out = ctx.output_dir / f"{name}.fa"
            if sample.key in fail:
                code = f"open({str(out)!r}, 'w').write('>partial\\n'); import sys; sys.exit(1)"
            elif sample.key in header_only:
                code = f"open({str(out)!r}, 'w').write('# header only\\n')"
            else:
                code = fasta_writer(out)
            log = ctx.job_log(f"{sample.key}:{task}" if task else sample.key)
            if sample.key in crash:
                log = ctx.log_dir
            jobs.append(JobDescriptor(
                sample=sample.key, task=task, inputs=sample.inputs,
                steps=(CommandStep(py(code)),), outputs=(out,), log_path=log,
                work_dir=ctx.work_dir(sample.key, task) if work else None,
                rules=(MinRecords("fasta"),),
            ))
        return jobs

    return StageDef(
        name="fake", title="Fake stage",
        input_dir=tmp_path / "in", output_dir=tmp_path / "out",
        discovery=TXT, build=build, requires=tuple(requires),
        max_parallel=max_parallel, task_parallel=task_parallel, finalize=finalize,
    )


class TestRunStage:
    """Test failure isolation and the stage summary."""

    def test_one_failure_among_ten(self, tmp_path, config):
        """Test job 3 of 10 failing leaves 9 outputs and no partial artifact."""
        _inputs(tmp_path, 10)
        summary = run_stage(_stage(tmp_path, fail={"s03"}), config)

        assert (summary.total, summary.succeeded, summary.warned, summary.failed) == (10, 9, 0, 1)
        assert summary.failed_keys == ["s03"]
        assert summary.exit_code == EXIT_PARTIAL
        out = tmp_path / "out"
        assert not (out / "s03.fa").exists()
        assert len(list(out.glob("*.fa"))) == 9
        assert (out / "logs" / "s03.log").exists()

    def test_summary_and_status_files(self, tmp_path, config):
        """Test summary.json and the status log are written."""
        _inputs(tmp_path, 4)
        run_stage(_stage(tmp_path, fail={"s01"}), config)
        logs = tmp_path / "out" / "logs"

        data = json.loads((logs / SUMMARY_JSON).read_text())
        assert data["total"] == 4 and data["failed"] == 1
        lines = (logs / STATUS_LOG).read_text().splitlines()
        assert sorted(lines) == ["FAILED: s01", "SUCCESS: s00", "SUCCESS: s02", "SUCCESS: s03"]
        assert "Fake stage" in (logs / "fake_master.log").read_text()

    def test_crashing_job_is_isolated(self, tmp_path, config):
        """Test an exception inside one job only fails that job."""
        _inputs(tmp_path, 3)
        summary = run_stage(_stage(tmp_path, crash={"s01"}), config)
        assert summary.failed_keys == ["s01"]
        assert summary.succeeded == 2

    def test_nested_tasks(self, tmp_path, config):
        """Test sample x task jobs are all counted."""
        _inputs(tmp_path, 3)
        stage = _stage(tmp_path, tasks=("ssu", "lsu"), task_parallel=2, max_parallel=2)
        summary = run_stage(stage, config)
        assert summary.total == 6 and summary.succeeded == 6
        assert (tmp_path / "out" / "s02_lsu.fa").exists()

    def test_finalize_sees_summary(self, tmp_path, config):
        """Test the finalize hook runs once with the summary."""
        _inputs(tmp_path, 2)
        seen = []
        run_stage(_stage(tmp_path, finalize=lambda ctx, s: seen.append(s.total)), config)
        assert seen == [2]

    def test_missing_executable(self, tmp_path, config):
        """Test a missing required tool stops the stage before dispatch."""
        _inputs(tmp_path, 2)
        with pytest.raises(ConfigError):
            run_stage(_stage(tmp_path, requires=["definitely-not-a-tool-xyz"]), config)
        assert not list((tmp_path / "out").glob("*.fa"))

    def test_dry_run(self, tmp_path, config):
        """Test dry-run reports every job without running any."""
        _inputs(tmp_path, 3)
        stage = _stage(tmp_path, requires=["definitely-not-a-tool-xyz"])
        summary = run_stage(stage, config, dry_run=True)
        assert summary.succeeded == 3
        assert not list((tmp_path / "out").glob("*.fa"))

    def test_resume_reuses_outputs(self, tmp_path, config):
        """Test resume skips jobs whose outputs exist and re-runs the rest."""
        _inputs(tmp_path, 3)
        run_stage(_stage(tmp_path, fail={"s01"}), config)
        log = tmp_path / "out" / "logs" / "s00.log"
        log.write_text("previous run\n")

        resumed = config.model_copy(update={"general": config.general.model_copy(update={"resume": True})})
        summary = run_stage(_stage(tmp_path), resumed)
        assert summary.succeeded == 3
        assert log.read_text().startswith("previous run\n")
        assert (tmp_path / "out" / "s01.fa").exists()

    def test_resume_keeps_warning(self, tmp_path, config):
        """Test a reused output that breaks a content rule is still a warning."""
        _inputs(tmp_path, 2)
        first = run_stage(_stage(tmp_path, header_only={"s01"}), config)
        assert (first.succeeded, first.warned) == (1, 1)

        resumed = config.model_copy(update={"general": config.general.model_copy(update={"resume": True})})
        summary = run_stage(_stage(tmp_path, header_only={"s01"}), resumed)
        assert (summary.succeeded, summary.warned, summary.failed) == (1, 1, 0)
        lines = (tmp_path / "out" / "logs" / STATUS_LOG).read_text().splitlines()
        assert sorted(lines) == ["SUCCESS: s00", "WARNING: s01"]
        assert (tmp_path / "out" / "s01.fa").exists()

    def test_temp_root_removed(self, tmp_path, config):
        """Test the per-run temp root is gone once the stage cleans up."""
        _inputs(tmp_path, 2)
        summary = run_stage(_stage(tmp_path, work=True), config)
        assert summary.succeeded == 2
        assert not (tmp_path / "tmp").exists()

    def test_keep_temp_root(self, tmp_path, config):
        """Test cleanup_temp=False leaves the stage work dirs."""
        _inputs(tmp_path, 2)
        keep = config.model_copy(update={"general": config.general.model_copy(update={"cleanup_temp": False})})
        run_stage(_stage(tmp_path, work=True), keep)
        assert (tmp_path / "tmp" / "fake" / "s00").is_dir()


class TestEngineStage:
    """Test the 0 / 1 / 2 exit mapping."""

    def test_ok(self, tmp_path, config):
        """Test a clean stage exits 0."""
        _inputs(tmp_path, 2)
        assert EngineStage(config)(_stage(tmp_path)) == EXIT_OK

    def test_partial(self, tmp_path, config):
        """Test some failed jobs exit 2."""
        _inputs(tmp_path, 3)
        assert EngineStage(config)(_stage(tmp_path, fail={"s02"})) == EXIT_PARTIAL

    def test_no_inputs(self, tmp_path, config):
        """Test an empty input dir exits 1 with an ERROR line."""
        (tmp_path / "in").mkdir()
        with attach_log_file(tmp_path / "run.log"):
            rc = EngineStage(config)(_stage(tmp_path))
        assert rc == EXIT_FATAL
        assert "ERROR: No valid inputs found" in (tmp_path / "run.log").read_text()


class TestScriptStage:
    """Test the isolated-process command line."""

    def test_command(self, tmp_path, config):
        """Test the child gets the stage, variant and written config."""
        runner = ScriptStage(config, "flash", dry_run=True, python="python3")
        cmd = runner.command(_stage(tmp_path), tmp_path / "fake_config.yaml")
        assert cmd[:5] == ["python3", "-m", "mgp", "stage", "fake"]
        assert cmd[5:] == ["--variant", "flash", "--config", str(tmp_path / "fake_config.yaml"), "--dry-run"]
