# src/mgp/commands/doctor.py
from __future__ import annotations

import shutil
import sys
from typing import List

from mgp.commands.common import add_variant_arg, config_from_args, fail
from mgp.engine.errors import ConfigError
from mgp.engine.stage import make_context
from mgp.plan.build import VARIANTS, build_plan, resolve_variant
from mgp.plan.types import PipelinePlan
from mgp.utils.logger import get_logger

LOG = get_logger("doctor")


def setup_parser(subparsers, parent) -> None:
    p = subparsers.add_parser(
        "doctor", parents=[parent],
        help="Preflight checks: external tools on PATH and reference data for each stage.",
    )
    add_variant_arg(p, help_text="Check only this variant (default: both).")
    p.set_defaults(func=run)


def _ok(x: bool) -> str:
    return "OK" if x else "MISSING"


def check_plan(plan: PipelinePlan, cfg) -> List[str]:
    """Print one line per check; return the problems found."""
    problems: List[str] = []
    print(f"== {plan.title} ==")
    for stage in plan.stages:
        for exe in stage.requires:
            path = shutil.which(exe)
            print(f"[check] {stage.name}: {exe} on PATH: {_ok(bool(path))} ({path or 'not found'})")
            if not path:
                problems.append(f"{stage.name}: {exe} not found on PATH")
        if stage.preflight is None:
            continue
        try:
            stage.preflight(make_context(stage, cfg))
            print(f"[check] {stage.name}: resources: OK")
        except ConfigError as e:
            print(f"[check] {stage.name}: resources: MISSING ({e})")
            problems.append(str(e))
    return problems


def run(args) -> None:
    cfg = config_from_args(args)
    try:
        variants = [resolve_variant(args.variant)] if args.variant else list(VARIANTS)
    except ConfigError as e:
        fail(str(e))
        return

    problems: List[str] = []
    for v in variants:
        problems += check_plan(build_plan(cfg, v), cfg)

    if problems:
        # the same tool can be missing for several stages
        unique = list(dict.fromkeys(problems))
        print("error: " + "; ".join(unique), file=sys.stderr)
        sys.exit(1)
    print("[ok] environment looks good.")
