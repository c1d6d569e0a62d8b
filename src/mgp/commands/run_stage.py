# src/mgp/commands/run_stage.py
from __future__ import annotations

import sys

from mgp.commands.common import add_override_args, add_variant_arg, config_from_args, fail
from mgp.engine.errors import ConfigError
from mgp.engine.stage import EngineStage
from mgp.plan.build import plan_for_stage


def setup_parser(subparsers, parent) -> None:
    p = subparsers.add_parser(
        "stage", parents=[parent],
        help="Run a single stage. Exit 0 = all samples ok, 1 = stage failed, 2 = some samples failed.",
    )
    p.add_argument("name", type=str, help="Stage name, e.g. fq2fa, cmsearch, mapseq.")
    add_variant_arg(p, help_text="Variant used to wire the stage's input dir (default: first variant with the stage).")
    add_override_args(p)
    p.set_defaults(func=run)


def run(args) -> None:
    cfg = config_from_args(args)
    try:
        _plan, stage = plan_for_stage(cfg, args.name, args.variant)
    except ConfigError as e:
        fail(str(e))
        return
    sys.exit(EngineStage(cfg, dry_run=args.dry_run)(stage))
