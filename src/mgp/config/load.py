# src/mgp/config/load.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from mgp.config.schema import PipelineConfig
from mgp.engine.errors import ConfigError
from mgp.utils.logger import get_logger

LOG = get_logger("config")

DEFAULT_CONFIG_NAME = "mgp.yaml"


def _read_mapping(path: Path) -> Dict[str, Any]:
    # JSON is valid YAML, so one parser covers both
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"{path}: not valid YAML/JSON ({e})") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: config must contain a mapping at the top level.")
    return data


def load_config(path: Optional[Path] = None) -> PipelineConfig:
    """
    Load a pipeline config.

    An explicit *path* must exist. Without one, ./mgp.yaml is used when
    present, otherwise built-in defaults.
    """
    if path is None:
        default = Path(DEFAULT_CONFIG_NAME)
        if not default.is_file():
            LOG.debug("No %s found; using built-in defaults", DEFAULT_CONFIG_NAME)
            return PipelineConfig()
        path = default
    if not path.is_file():
        raise ConfigError(f"config file not found: {path}")

    data = _read_mapping(path)
    try:
        cfg = PipelineConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"{path}: invalid config\n{e}") from e
    LOG.info("Loaded config: %s", path)
    return cfg


def apply_overrides(cfg: PipelineConfig, args) -> PipelineConfig:
    """CLI flags win over the file; only flags the user actually set are applied."""
    general = cfg.general
    updates: Dict[str, Any] = {}
    if getattr(args, "job_timeout", None) is not None:
        if args.job_timeout <= 0:
            raise ConfigError("--job-timeout must be > 0")
        updates["job_timeout"] = args.job_timeout
    if getattr(args, "keep_temp", False):
        updates["cleanup_temp"] = False
    if getattr(args, "resume", False):
        updates["resume"] = True
    if getattr(args, "isolate_stages", False):
        updates["isolate_stages"] = True
    if updates:
        cfg = cfg.model_copy(update={"general": general.model_copy(update=updates)})

    max_parallel = getattr(args, "max_parallel", None)
    if max_parallel is not None:
        if max_parallel < 1:
            raise ConfigError("--max-parallel must be >= 1")
        sections = {}
        for name in PipelineConfig.model_fields:
            if name == "general":
                continue
            sections[name] = getattr(cfg, name).model_copy(update={"max_parallel": max_parallel})
        cfg = cfg.model_copy(update=sections)
    return cfg


def write_config(cfg: PipelineConfig, path: Path) -> Path:
    payload = cfg.model_dump(mode="json")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
    return path
