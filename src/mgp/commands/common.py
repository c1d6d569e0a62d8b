# src/mgp/commands/common.py
from __future__ import annotations

import sys
from argparse import Namespace
from pathlib import Path
from typing import Callable, Optional

from mgp.config.load import apply_overrides, load_config
from mgp.config.schema import PipelineConfig
from mgp.engine.errors import ConfigError
from mgp.plan.build import VARIANTS, resolve_variant


# -------- Arg helpers ---------------------------------------------------------

def add_variant_arg(p, *, help_text: str = "Pipeline variant: 1|seqprep or 2|flash.") -> None:
    p.add_argument("--variant", type=str, default=None, help=help_text)


def add_override_args(p) -> None:
    p.add_argument("--max-parallel", type=int, default=None, help="Override max_parallel for every stage.")
    p.add_argument("--job-timeout", type=float, default=None, help="Kill a tool after this many seconds (exit 124).")
    p.add_argument("--keep-temp", action="store_true", help="Keep per-job work directories.")
    p.add_argument("--resume", action="store_true", help="Reuse existing non-empty outputs instead of re-running.")


def fail(message: str) -> None:
    print(f"error: {message}", file=sys.stderr)
    sys.exit(1)


# -------- Config & variant ----------------------------------------------------

def config_from_args(args: Namespace) -> PipelineConfig:
    """Config file (+ CLI overrides); any problem ends the command with exit 1."""
    path: Optional[Path] = getattr(args, "config", None)
    try:
        return apply_overrides(load_config(path), args)
    except ConfigError as e:
        fail(str(e))
        raise  # unreachable; keeps type checkers quiet


def prompt_variant(ask: Callable[[str], str] = input) -> str:
    print("Select pipeline variant:")
    for name, (number, title, _head) in VARIANTS.items():
        print(f"  {number}) {title} ({name})")
    try:
        return ask("Enter choice (1 or 2): ")
    except EOFError:
        return ""


def choose_variant(value: Optional[str], ask: Callable[[str], str] = input) -> str:
    choice = value if value is not None else prompt_variant(ask)
    try:
        return resolve_variant(choice)
    except ConfigError as e:
        fail(str(e))
        raise
