"""Configuration loading and validation."""

from tanda_router.config.models import (
    DEFAULT_FALLBACK_RESPONSE,
    DatabaseConfig,
    RouterConfig,
)
from tanda_router.config.loader import apply_env_overrides, load_config

__all__ = [
    "DEFAULT_FALLBACK_RESPONSE",
    "DatabaseConfig",
    "RouterConfig",
    "apply_env_overrides",
    "load_config",
]
