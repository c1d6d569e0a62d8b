# src/mgp/commands/run_pipeline.py
from __future__ import annotations

import sys

from mgp.commands.common import add_override_args, add_variant_arg, choose_variant, config_from_args, fail
from mgp.engine.classify import make_classifier
from mgp.engine.errors import ConfigError
from mgp.engine.sequencer import Sequencer
from mgp.engine.stage import EngineStage, ScriptStage
from mgp.plan.build import build_plan, select_stages
from mgp.utils.logger import get_logger

LOG = get_logger("run")


def setup_parser(subparsers, parent) -> None:
    p = subparsers.add_parser(
        "run", parents=[parent],
        help="Run a full pipeline variant (head stage + fq2fa ... fraggenescan).",
    )
    add_variant_arg(p, help_text="1|seqprep (SeqPrep-first) or 2|flash (Trim-then-FLASH). Prompts when omitted.")
    p.add_argument("--from-stage", type=str, default=None, help="Start at this stage (earlier outputs must exist).")
    p.add_argument("--stop-after", type=str, default=None, help="Stop after this stage.")
    p.add_argument("--isolate-stages", action="store_true",
                   help="Run each stage as its own 'python -m mgp stage' process.")
    add_override_args(p)
    p.set_defaults(func=run)


def run(args) -> None:
    cfg = config_from_args(args)
    variant = choose_variant(args.variant)
    try:
        plan = select_stages(
            build_plan(cfg, variant),
            from_stage=args.from_stage,
            stop_after=args.stop_after,
        )
    except ConfigError as e:
        fail(str(e))
        return

    general = cfg.general
    if general.isolate_stages:
        runner = ScriptStage(cfg, plan.variant, dry_run=args.dry_run)
    else:
        runner = EngineStage(cfg, dry_run=args.dry_run)

    sequencer = Sequencer(
        plan,
        runner,
        log_dir=general.log_dir.expanduser().resolve(),
        classifier=make_classifier(general.classifier, general.error_keywords),
        abort_on_partial=general.abort_on_partial,
    )
    report = sequencer.run()
    sys.exit(report.exit_code)
