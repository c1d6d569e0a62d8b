# src/mgp/engine/classify.py
from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional, Protocol, Sequence

DEFAULT_ERROR_KEYWORDS = ("error", "failed", "exception")


class Verdict(str, Enum):
    REAL_FAILURE = "real_failure"
    FALSE_ALARM = "false_alarm"


class ExitClassifier(Protocol):
    def classify(self, exit_code: int, log_text: str) -> Verdict: ...


class KeywordClassifier:
    """
    A non-zero stage exit is real only if the stage log mentions an error word.

    Plain case-insensitive substring match: "0 errors" counts as a hit and a
    crash that never prints one of the words is a false alarm.
    """

    def __init__(self, keywords: Sequence[str] = DEFAULT_ERROR_KEYWORDS) -> None:
        self.keywords = tuple(k.lower() for k in keywords if k)

    def matched(self, log_text: str) -> Optional[str]:
        text = log_text.lower()
        for k in self.keywords:
            if k in text:
                return k
        return None

    def classify(self, exit_code: int, log_text: str) -> Verdict:
        if exit_code == 0:
            return Verdict.FALSE_ALARM
        return Verdict.REAL_FAILURE if self.matched(log_text) else Verdict.FALSE_ALARM


class ExitCodeClassifier:
    """Every non-zero exit is a real failure."""

    def classify(self, exit_code: int, log_text: str) -> Verdict:
        return Verdict.REAL_FAILURE if exit_code != 0 else Verdict.FALSE_ALARM


def make_classifier(kind: str, keywords: Sequence[str] = DEFAULT_ERROR_KEYWORDS) -> ExitClassifier:
    if kind == "keyword":
        return KeywordClassifier(keywords)
    if kind == "exit_code":
        return ExitCodeClassifier()
    raise ValueError(f"unknown classifier: {kind}")


def read_log(path: Path) -> str:
    if not path.exists():
        return ""
    return path.read_text(encoding="utf-8", errors="replace")
