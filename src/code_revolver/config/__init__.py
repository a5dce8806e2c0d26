"""Configuration module for Code Revolver."""

from code_revolver.exceptions import ConfigurationError

from .rotation import (
    AutoSwitchConfig,
    PoolMetadata,
    RotationConfig,
    RotationConfigStore,
    normalize_priority,
    normalize_threshold,
    resolve_pool,
)
from .settings import Settings, get_settings


__all__ = [
    "AutoSwitchConfig",
    "ConfigurationError",
    "PoolMetadata",
    "RotationConfig",
    "RotationConfigStore",
    "Settings",
    "get_settings",
    "normalize_priority",
    "normalize_threshold",
    "resolve_pool",
]
