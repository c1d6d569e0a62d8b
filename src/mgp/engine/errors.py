# src/mgp/engine/errors.py
from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Sequence, Tuple


class PipelineError(Exception):
    """Base class for conditions that abort a stage (never a single job)."""


class ConfigError(PipelineError):
    """Missing executable, missing reference data or an invalid setting."""


class NoInputsError(PipelineError):
    """Discovery produced zero valid samples."""

    def __init__(
        self,
        input_dir: Path,
        patterns: Sequence[str],
        excluded: Optional[List[Tuple[Path, str]]] = None,
    ) -> None:
        self.input_dir = input_dir
        self.patterns = tuple(patterns)
        self.excluded = list(excluded or [])
        msg = f"No valid inputs found in {input_dir} (expected: {', '.join(self.patterns)})"
        if self.excluded:
            msg += f"; {len(self.excluded)} candidate(s) excluded"
        super().__init__(msg)
