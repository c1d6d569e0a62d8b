# src/mgp/cli.py
from __future__ import annotations

import argparse
from pathlib import Path

from mgp.utils.logger import setup_logger

from mgp.commands import run_pipeline as cmd_run
from mgp.commands import run_stage as cmd_stage
from mgp.commands import doctor as cmd_doctor
from mgp.commands import status as cmd_status
from mgp.commands import convert as cmd_convert


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mgp",
        description="Metagenomics pipeline CLI (run, stage, doctor, status, convert).",
    )

    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument("--config", type=Path, default=None,
                        help="YAML/JSON config (default: ./mgp.yaml if present).")
    parent.add_argument("--dry-run", action="store_true", help="Log commands without executing them.")

    subparsers = parser.add_subparsers(dest="command", required=True)

    cmd_run.setup_parser(subparsers, parent)
    cmd_stage.setup_parser(subparsers, parent)
    cmd_doctor.setup_parser(subparsers, parent)
    cmd_status.setup_parser(subparsers, parent)
    cmd_convert.setup_parser(subparsers, parent)
    return parser


def main(argv=None) -> None:
    args = build_parser().parse_args(argv)
    # conversions run as jobs; their output belongs in the job log only
    logger = setup_logger(None if args.command == "convert" else Path("mgp.log"))
    logger.debug("Parsed args: %r", args)
    args.func(args)
