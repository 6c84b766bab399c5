"""Load and validate router config from YAML, then apply environment overrides."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

import yaml
from pydantic import ValidationError

from tanda_router.config.models import RouterConfig

# Environment variable -> dotted config field.
ENV_OVERRIDES: dict[str, str] = {
    "DATABASE_URL": "database.dsn",
    "OPENAI_BASE_URL": "llm_base_url",
    "TANDA_LOG_LEVEL": "log_level",
}


def load_config(path: str | Path) -> RouterConfig:
    """
    Read a YAML mapping and validate it into RouterConfig.
    Raises FileNotFoundError, yaml.YAMLError, or ValueError on invalid config.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        raise ValueError("Config file is empty")
    if not isinstance(data, dict):
        raise ValueError("Invalid config: top-level YAML must be a mapping")

    try:
        return RouterConfig.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid config: {e}") from e


def apply_env_overrides(config: RouterConfig, environ: Mapping[str, str] | None = None) -> RouterConfig:
    """Return a re-validated copy with non-empty ENV_OVERRIDES variables applied."""
    env = os.environ if environ is None else environ
    data = config.model_dump()
    changed = False
    for var, field in ENV_OVERRIDES.items():
        value = env.get(var)
        if not value:
            continue
        target = data
        *parents, leaf = field.split(".")
        for part in parents:
            target = target[part]
        target[leaf] = value
        changed = True
    if not changed:
        return config
    try:
        return RouterConfig.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid config from environment: {e}") from e
