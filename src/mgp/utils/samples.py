# src/mgp/utils/samples.py
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from mgp.engine.errors import NoInputsError
from mgp.utils.logger import get_logger

LOG = get_logger("samples")

# Mate naming conventions, tried in order:
#   <sample>_R1.fastq.gz -> <sample>_R2.fastq.gz
#   <sample>_1.fq.gz     -> <sample>_2.fq.gz
MATE_CONVENTIONS: Tuple[Tuple[str, str], ...] = (("_R1.", "_R2."), ("_1.", "_2."))


@dataclass(frozen=True)
class SampleInput:
    key: str
    inputs: Tuple[Path, ...]

    @property
    def primary(self) -> Path:
        return self.inputs[0]


@dataclass(frozen=True)
class DiscoveryRule:
    patterns: Tuple[str, ...]
    strip: str                          # regex removed from the file name -> SampleKey
    paired: bool = False
    companions: Tuple[str, ...] = ()    # path templates formatted with {sample}
    kind: str = "file"                  # "file" | "dir"
    dir_member: str = "*"               # kind="dir": at least one entry must match


PAIRED_FASTQ = DiscoveryRule(
    patterns=("*_R1.fastq*", "*_R1.fq*", "*_1.fastq*", "*_1.fq*"),
    strip=r"_(R1|1)\.(fastq|fq).*$",
    paired=True,
)


@dataclass
class Discovery:
    samples: List[SampleInput] = field(default_factory=list)
    excluded: List[Tuple[Path, str]] = field(default_factory=list)

    @property
    def keys(self) -> List[str]:
        return [s.key for s in self.samples]


def sample_key(name: str, strip: str) -> str:
    return re.sub(strip, "", name, count=1)


def find_mate(path: Path) -> Optional[Path]:
    """Return the first existing mate under MATE_CONVENTIONS, or None."""
    name = path.name
    for token, mate_token in MATE_CONVENTIONS:
        idx = name.rfind(token)
        if idx < 0:
            continue
        candidate = path.with_name(name[:idx] + mate_token + name[idx + len(token):])
        if candidate.exists():
            return candidate
    return None


def check_input(path: Path, *, kind: str = "file", dir_member: str = "*") -> Optional[str]:
    """Reason the input is unusable, or None when it is fine."""
    if not path.exists():
        return "not found"
    if not os.access(path, os.R_OK):
        return "not readable"
    if kind == "dir":
        if not path.is_dir():
            return "not a directory"
        if not any(path.glob(dir_member)):
            return f"no {dir_member} entries"
        return None
    if not path.is_file():
        return "not a regular file"
    if path.stat().st_size == 0:
        return "empty file"
    return None


def _candidates(input_dir: Path, rule: DiscoveryRule) -> List[Path]:
    seen = set()
    for pattern in rule.patterns:
        seen.update(input_dir.glob(pattern))
    return sorted(seen)


def discover_samples(input_dir: Path, rule: DiscoveryRule) -> Discovery:
    """
    Scan *input_dir* for inputs matching *rule* and validate each one.

    Invalid candidates are excluded with a reason and logged; only an
    empty result is fatal (NoInputsError).
    """
    found = Discovery()
    if not input_dir.is_dir():
        LOG.error("Input directory not found: %s", input_dir)
        raise NoInputsError(input_dir, rule.patterns)

    by_key: Dict[str, SampleInput] = {}
    for path in _candidates(input_dir, rule):
        key = sample_key(path.name, rule.strip)
        if not key:
            found.excluded.append((path, "empty sample key"))
            continue
        if key in by_key:
            found.excluded.append((path, f"duplicate sample key {key!r} (kept {by_key[key].primary.name})"))
            continue

        reason = check_input(path, kind=rule.kind, dir_member=rule.dir_member)
        inputs: List[Path] = [path]

        if reason is None and rule.paired:
            mate = find_mate(path)
            if mate is None:
                reason = "missing mate"
            else:
                mate_reason = check_input(mate)
                if mate_reason:
                    reason = f"mate {mate.name}: {mate_reason}"
                inputs.append(mate)

        if reason is None:
            for template in rule.companions:
                companion = Path(template.format(sample=key))
                comp_reason = check_input(companion)
                if comp_reason:
                    reason = f"missing companion {companion} ({comp_reason})"
                    break
                inputs.append(companion)

        if reason:
            found.excluded.append((path, reason))
            continue
        by_key[key] = SampleInput(key=key, inputs=tuple(inputs))

    found.samples = [by_key[k] for k in sorted(by_key)]

    for s in found.samples:
        LOG.info("✓ Valid sample: %s", s.key)
    for path, reason in found.excluded:
        LOG.warning("✗ Skipping %s: %s", path.name, reason)

    if not found.samples:
        raise NoInputsError(input_dir, rule.patterns, found.excluded)
    LOG.info("Found %d valid sample(s) in %s", len(found.samples), input_dir)
    return found
