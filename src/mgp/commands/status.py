# src/mgp/commands/status.py
from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Tuple

from mgp.commands.common import add_variant_arg, config_from_args, fail
from mgp.engine.aggregate import PREVIOUS_STATUS_LOG, STATUS_LOG, SUMMARY_JSON, count_status, read_status_log
from mgp.engine.errors import ConfigError
from mgp.plan.build import plan_for_stage
from mgp.plan.types import JobStatus, StageSummary


def setup_parser(subparsers, parent) -> None:
    p = subparsers.add_parser(
        "status", parents=[parent],
        help="Show a stage's last summary and what changed since the previous run.",
    )
    p.add_argument("name", type=str, help="Stage name.")
    add_variant_arg(p)
    p.set_defaults(func=run)


def diff_runs(previous: Dict[str, str], current: Dict[str, str]) -> Tuple[List[str], List[str]]:
    """(newly failed, recovered) keys between two status logs."""
    failed = JobStatus.FAILED.value
    newly_failed = sorted(k for k, s in current.items() if s == failed and previous.get(k) != failed)
    recovered = sorted(k for k, s in previous.items() if s == failed and k in current and current[k] != failed)
    return newly_failed, recovered


def render(
    summary: StageSummary,
    newly_failed: List[str],
    recovered: List[str],
    counts: Optional[Dict[str, int]] = None,
) -> List[str]:
    lines = [
        f"Stage: {summary.stage}",
        f"  total={summary.total} succeeded={summary.succeeded} warned={summary.warned} "
        f"failed={summary.failed} excluded={len(summary.excluded)} elapsed={summary.elapsed:.1f}s",
    ]
    if summary.failed_keys:
        lines.append("  failed: " + ", ".join(summary.failed_keys))
    if summary.warned_keys:
        lines.append("  warned: " + ", ".join(summary.warned_keys))
    for path, reason in summary.excluded:
        lines.append(f"  excluded: {Path(path).name} ({reason})")
    if counts is not None:
        # appended per job, so these move while a stage is still running
        lines.append("  status log: " + " ".join(f"{s}={n}" for s, n in counts.items()))
    lines.append("  newly failed since previous run: " + (", ".join(newly_failed) or "none"))
    lines.append("  recovered since previous run: " + (", ".join(recovered) or "none"))
    return lines


def run(args) -> None:
    cfg = config_from_args(args)
    try:
        _plan, stage = plan_for_stage(cfg, args.name, args.variant)
    except ConfigError as e:
        fail(str(e))
        return

    summary_path = stage.logs / SUMMARY_JSON
    if not summary_path.exists():
        fail(f"no summary for stage {stage.name} yet ({summary_path})")
        return
    summary = StageSummary.read_json(summary_path)
    newly_failed, recovered = diff_runs(
        read_status_log(stage.logs / PREVIOUS_STATUS_LOG),
        read_status_log(stage.logs / STATUS_LOG),
    )
    counts = count_status(stage.logs / STATUS_LOG)
    for line in render(summary, newly_failed, recovered, counts):
        print(line)
