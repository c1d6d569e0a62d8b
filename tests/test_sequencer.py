"""Tests for stage sequencing and exit classification."""

import re
from pathlib import Path

from conftest import fasta_writer, py, write_file

from mgp.engine.classify import ExitCodeClassifier, KeywordClassifier, Verdict, make_classifier
from mgp.engine.sequencer import PipelineState, Sequencer, StageState, step_log_path
from mgp.engine.stage import EngineStage
from mgp.plan.types import CommandStep, JobDescriptor, PipelinePlan, StageDef
from mgp.utils.logger import get_logger
from mgp.utils.samples import DiscoveryRule

LOG = get_logger("fake")


def _plan(*names):
    stages = tuple(
        StageDef(n, n.title(), Path("."), Path("."), DiscoveryRule(("*",), ""), build=lambda s, c: [])
        for n in names
    )
    return PipelinePlan("1", "Test pipeline", stages)


def _runner(script):
    """Fake stage runner: logs each stage's message and returns its exit code."""
    calls = []

    def run(stage):
        calls.append(stage.name)
        rc, message = script.get(stage.name, (0, "all good"))
        if isinstance(rc, Exception):
            raise rc
        LOG.info(message)
        return rc

    run.calls = calls
    return run


class TestClassifiers:
    """Test keyword and exit-code verdicts."""

    def test_keyword(self):
        """Test error words decide between real failure and false alarm."""
        c = KeywordClassifier()
        assert c.classify(1, "no hits found") is Verdict.FALSE_ALARM
        assert c.classify(1, "Exception: segmentation fault") is Verdict.REAL_FAILURE
        assert c.classify(3, "Tool FAILED on input") is Verdict.REAL_FAILURE
        assert c.classify(0, "error") is Verdict.FALSE_ALARM

    def test_substring_match(self):
        """Test '0 errors' still counts as an error word."""
        assert KeywordClassifier().classify(1, "finished with 0 errors") is Verdict.REAL_FAILURE

    def test_exit_code(self):
        """Test any non-zero exit is real."""
        assert ExitCodeClassifier().classify(5, "") is Verdict.REAL_FAILURE
        assert isinstance(make_classifier("exit_code"), ExitCodeClassifier)


class TestSequencer:
    """Test the stage state machine."""

    def test_all_completed(self, tmp_path):
        """Test a clean run completes with exit 0."""
        run = _runner({})
        report = Sequencer(_plan("alpha", "beta"), run, log_dir=tmp_path).run()
        assert report.state is PipelineState.COMPLETED
        assert report.exit_code == 0
        assert [r.state for r in report.stages] == [StageState.COMPLETED] * 2
        assert run.calls == ["alpha", "beta"]

    def test_partial_continues(self, tmp_path):
        """Test exit 2 continues and makes the pipeline partial."""
        run = _runner({"alpha": (2, "1 of 4 jobs failed")})
        report = Sequencer(_plan("alpha", "beta"), run, log_dir=tmp_path).run()
        assert run.calls == ["alpha", "beta"]
        assert report.record("alpha").partial
        assert report.state is PipelineState.COMPLETED
        assert report.exit_code == 2

    def test_abort_on_partial(self, tmp_path):
        """Test exit 2 is classified when partial results should stop the run."""
        run = _runner({"alpha": (2, "1 of 4 jobs failed")})
        report = Sequencer(_plan("alpha", "beta"), run, log_dir=tmp_path, abort_on_partial=True).run()
        assert run.calls == ["alpha"]
        assert report.state is PipelineState.ABORTED
        assert report.exit_code == 1

    def test_false_alarm_skipped(self, tmp_path):
        """Test a non-zero exit with a clean log moves on."""
        run = _runner({"beta": (1, "no hits found")})
        report = Sequencer(_plan("alpha", "beta", "gamma"), run, log_dir=tmp_path).run()
        assert report.record("beta").state is StageState.SKIPPED_FALSE_ALARM
        assert run.calls == ["alpha", "beta", "gamma"]
        assert report.exit_code == 0

    def test_real_failure_aborts(self, tmp_path):
        """Test an error in the step log aborts and leaves later stages pending."""
        run = _runner({"beta": (1, "Exception: segmentation fault")})
        report = Sequencer(_plan("alpha", "beta", "gamma", "delta"), run, log_dir=tmp_path).run()
        assert run.calls == ["alpha", "beta"]
        assert report.record("beta").state is StageState.FAILED
        assert report.record("gamma").state is StageState.PENDING
        assert report.record("delta").state is StageState.PENDING
        assert report.state is PipelineState.ABORTED
        assert report.exit_code == 1

    def test_exit_code_classifier(self, tmp_path):
        """Test the strict classifier treats a clean-log exit as real."""
        run = _runner({"alpha": (1, "no hits found")})
        report = Sequencer(_plan("alpha", "beta"), run, log_dir=tmp_path,
                           classifier=ExitCodeClassifier()).run()
        assert report.record("alpha").state is StageState.FAILED
        assert run.calls == ["alpha"]

    def test_runner_exception(self, tmp_path):
        """Test a stage runner raising counts as a real failure."""
        run = _runner({"alpha": (RuntimeError("kaboom"), "")})
        report = Sequencer(_plan("alpha", "beta"), run, log_dir=tmp_path).run()
        rec = report.record("alpha")
        assert rec.exit_code == 1 and rec.state is StageState.FAILED
        assert "kaboom" in rec.log_path.read_text()

    def test_step_logs(self, tmp_path):
        """Test each stage gets its own numbered, timestamped log."""
        run = _runner({"beta": (0, "beta says hi")})
        report = Sequencer(_plan("alpha", "beta"), run, log_dir=tmp_path).run()
        rec = report.record("beta")
        assert re.fullmatch(r"2_beta_\d{8}_\d{6}\.log", rec.log_path.name)
        assert "beta says hi" in rec.log_path.read_text()
        assert "beta says hi" not in report.record("alpha").log_path.read_text()

    def test_report_lines(self, tmp_path):
        """Test the final report names every stage and the outcome."""
        report = Sequencer(_plan("alpha"), _runner({}), log_dir=tmp_path).run()
        text = "\n".join(report.lines())
        assert "alpha" in text and "COMPLETED" in text and "(exit 0)" in text

    def test_step_log_path(self, tmp_path):
        """Test the step log name format."""
        assert step_log_path(tmp_path, 3, "mask").name.startswith("3_mask_")

    def test_clean_stage_then_nonzero_exit(self, tmp_path, config):
        """Test an engine stage's own summary does not make a clean log look like a real failure."""
        write_file(tmp_path / "in" / "A.txt", "x\n")
        write_file(tmp_path / "in" / "B.txt", "x\n")

        def build(sample, ctx):
            out = ctx.output_dir / f"{sample.key}.fa"
            return [JobDescriptor(sample=sample.key, inputs=sample.inputs,
                                  steps=(CommandStep(py(fasta_writer(out))),),
                                  outputs=(out,), log_path=ctx.job_log(sample.key))]

        stage = StageDef("fake", "Fake stage", tmp_path / "in", tmp_path / "out",
                         DiscoveryRule(("*.txt",), r"\.txt$"), build=build)
        engine = EngineStage(config)

        def run(s):
            assert engine(s) == 0
            return 3

        plan = PipelinePlan("1", "Test pipeline", (stage,))
        report = Sequencer(plan, run, log_dir=tmp_path / "steps").run()
        rec = report.record("fake")
        assert "Succeeded: 2" in rec.log_path.read_text()
        assert rec.state is StageState.SKIPPED_FALSE_ALARM
        assert report.exit_code == 0
