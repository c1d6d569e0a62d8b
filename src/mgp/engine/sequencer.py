# src/mgp/engine/sequencer.py
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from mgp.engine.classify import ExitClassifier, KeywordClassifier, Verdict, read_log
from mgp.engine.stage import EXIT_FATAL, EXIT_OK, EXIT_PARTIAL
from mgp.plan.types import PipelinePlan, StageDef
from mgp.utils.logger import attach_log_file, get_logger, log_success, log_warning

LOG = get_logger("sequencer")

StageRunner = Callable[[StageDef], int]


class StageState(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    SKIPPED_FALSE_ALARM = "SKIPPED_FALSE_ALARM"


class PipelineState(str, Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    ABORTED = "ABORTED"


@dataclass
class StageRecord:
    name: str
    title: str
    state: StageState = StageState.PENDING
    exit_code: Optional[int] = None
    elapsed: float = 0.0
    log_path: Optional[Path] = None

    @property
    def partial(self) -> bool:
        return self.state is StageState.COMPLETED and self.exit_code == EXIT_PARTIAL


@dataclass
class PipelineReport:
    variant: str
    title: str
    log_dir: Path
    stages: List[StageRecord] = field(default_factory=list)
    state: PipelineState = PipelineState.RUNNING
    elapsed: float = 0.0

    @property
    def exit_code(self) -> int:
        if self.state is PipelineState.ABORTED:
            return EXIT_FATAL
        if any(r.partial for r in self.stages):
            return EXIT_PARTIAL
        return EXIT_OK

    def record(self, name: str) -> StageRecord:
        for r in self.stages:
            if r.name == name:
                return r
        raise KeyError(name)

    def lines(self) -> List[str]:
        out = [f"=== Pipeline report: {self.title} ===", f"Variant: {self.variant}"]
        for i, r in enumerate(self.stages, 1):
            rc = "-" if r.exit_code is None else str(r.exit_code)
            out.append(f"{i:>2}. {r.name:<14} {r.state.value:<20} exit={rc:<3} {r.elapsed:8.1f}s")
        out.append(f"Pipeline: {self.state.value} (exit {self.exit_code})")
        out.append(f"Total elapsed: {self.elapsed:.1f}s")
        out.append(f"Logs: {self.log_dir}")
        return out


def step_log_path(log_dir: Path, index: int, stage: str) -> Path:
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return log_dir / f"{index}_{stage}_{stamp}.log"


class Sequencer:
    """
    Run a plan's stages one after another.

    Exit 0 continues. Exit 2 (some jobs failed) continues and makes the
    overall result partial, unless abort_on_partial is set. Any other exit
    is judged by the classifier on the stage's step log: a real failure
    aborts the pipeline, a false alarm is skipped over.
    """

    def __init__(
        self,
        plan: PipelinePlan,
        run_stage: StageRunner,
        *,
        log_dir: Path,
        classifier: Optional[ExitClassifier] = None,
        abort_on_partial: bool = False,
    ) -> None:
        self.plan = plan
        self.run_stage = run_stage
        self.log_dir = log_dir
        self.classifier = classifier or KeywordClassifier()
        self.abort_on_partial = abort_on_partial

    def _judge(self, record: StageRecord, rc: int) -> StageState:
        if rc == EXIT_OK:
            return StageState.COMPLETED
        if rc == EXIT_PARTIAL and not self.abort_on_partial:
            log_warning(LOG, "Stage %s finished with failed samples; continuing", record.name)
            return StageState.COMPLETED
        text = read_log(record.log_path) if record.log_path else ""
        verdict = self.classifier.classify(rc, text)
        if verdict is Verdict.REAL_FAILURE:
            LOG.error("Stage %s failed (exit %d); see %s", record.name, rc, record.log_path)
            return StageState.FAILED
        log_warning(LOG, "Stage %s exited %d without errors in its log; treating as a false alarm",
                    record.name, rc)
        return StageState.SKIPPED_FALSE_ALARM

    def run(self) -> PipelineReport:
        self.log_dir.mkdir(parents=True, exist_ok=True)
        report = PipelineReport(
            variant=self.plan.variant,
            title=self.plan.title,
            log_dir=self.log_dir,
            stages=[StageRecord(s.name, s.title) for s in self.plan.stages],
        )
        LOG.info("=== %s (%d stages) ===", self.plan.title, len(self.plan.stages))
        start = time.monotonic()

        for i, stage in enumerate(self.plan.stages, 1):
            record = report.record(stage.name)
            record.state = StageState.RUNNING
            record.log_path = step_log_path(self.log_dir, i, stage.name)
            LOG.info("[%d/%d] %s", i, len(self.plan.stages), stage.title)

            t0 = time.monotonic()
            with attach_log_file(record.log_path):
                try:
                    rc = self.run_stage(stage)
                except Exception:
                    LOG.exception("Unhandled exception in stage %s", stage.name)
                    rc = EXIT_FATAL
            record.elapsed = time.monotonic() - t0
            record.exit_code = rc
            record.state = self._judge(record, rc)

            if record.state is StageState.FAILED:
                report.state = PipelineState.ABORTED
                break

        if report.state is PipelineState.RUNNING:
            report.state = PipelineState.COMPLETED
        report.elapsed = time.monotonic() - start

        for line in report.lines():
            LOG.info(line)
        if report.state is PipelineState.ABORTED:
            LOG.error("Pipeline aborted.")
        elif report.exit_code == EXIT_PARTIAL:
            log_warning(LOG, "Pipeline completed with failed samples.")
        else:
            log_success(LOG, "Pipeline completed successfully.")
        return report
