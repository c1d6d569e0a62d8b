# src/mgp/utils/logger.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from colorama import Fore, Style

_LOGGER_NAME = "mgp"
_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if name:
        return logging.getLogger(f"{_LOGGER_NAME}.{name}")
    return logging.getLogger(_LOGGER_NAME)


def setup_logger(log_file: Optional[Path] = Path("mgp.log")) -> logging.Logger:
    """
    Configure the root 'mgp' logger:
      - INFO to console
      - DEBUG to file (mgp.log)
    Idempotent: safe to call multiple times.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    if getattr(setup_logger, "_configured", False):
        return logger

    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    # Remove any pre-existing handlers (only for our logger)
    for h in list(logger.handlers):
        logger.removeHandler(h)

    fmt = logging.Formatter(_FORMAT)

    ch = logging.StreamHandler()
    ch.setLevel(logging.INFO)
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    if log_file is not None:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    setup_logger._configured = True  # type: ignore[attr-defined]
    return logger


@contextmanager
def attach_log_file(path: Path, *, level: int = logging.INFO, mode: str = "w") -> Iterator[Path]:
    """
    Tee everything logged under 'mgp' into *path* while the block runs.
    Used for stage master logs and sequencer step logs.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    if logger.level == logging.NOTSET or logger.level > level:
        logger.setLevel(level)
    path.parent.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(path, mode=mode, encoding="utf-8")
    fh.setLevel(level)
    fh.setFormatter(logging.Formatter(_FORMAT))
    logger.addHandler(fh)
    try:
        yield path
    finally:
        logger.removeHandler(fh)
        fh.close()


def log_success(logger: logging.Logger, message: str, *args: object) -> None:
    """Log a success message in green."""
    logger.info(f"{Fore.GREEN}{message}{Style.RESET_ALL}", *args)


def log_warning(logger: logging.Logger, message: str, *args: object) -> None:
    logger.warning(f"{Fore.YELLOW}{message}{Style.RESET_ALL}", *args)
