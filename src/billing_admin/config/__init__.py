"""Configuration management: TOML loading and config models.

Usage:
    >>> from billing_admin.config import load_admin_config, AdminConfig
"""

from billing_admin.config.loader import ConfigNotFoundError, load_admin_config
from billing_admin.config.models import AdminConfig, LoggingConfig, PathsConfig

__all__ = [
    "load_admin_config",
    "ConfigNotFoundError",
    "AdminConfig",
    "PathsConfig",
    "LoggingConfig",
]
