"""TOML configuration loader for billing-admin."""

import os
import tomllib
from pathlib import Path

from billing_admin.config.models import AdminConfig, LoggingConfig, PathsConfig

DEFAULT_CONFIG_NAME = "billing-admin.toml"


class ConfigNotFoundError(FileNotFoundError):
    """Raised when an explicitly requested config file does not exist."""

    pass


def _resolve_config_path(config_path: Path | None, env_prefix: str) -> tuple[Path, bool]:
    """Pick the config file to read.

    Returns:
        Tuple of (path, explicit) where ``explicit`` is False only for the
        implicit ``./billing-admin.toml`` fallback.
    """
    if config_path is not None:
        return Path(config_path), True

    env_path = os.environ.get(f"{env_prefix}BILLING_ADMIN_CONFIG")
    if env_path:
        return Path(env_path), True

    return Path.cwd() / DEFAULT_CONFIG_NAME, False


def load_admin_config(
    config_path: Path | None = None,
    env_prefix: str = "",
) -> AdminConfig:
    """Load billing-admin configuration from a TOML file.

    Lookup order:
    1. ``config_path`` argument
    2. ``{env_prefix}BILLING_ADMIN_CONFIG`` env var
    3. ``./billing-admin.toml`` (optional -- defaults are used if absent)

    ``{env_prefix}BILLING_DATA_DIR`` overrides ``paths.data_dir`` after the
    file is read.

    Relative paths in the file are resolved against the file's directory.

    Args:
        config_path: Explicit path to a TOML config file.
        env_prefix: Prefix for environment variable lookup
            (e.g. ``"APP_"`` reads ``APP_BILLING_ADMIN_CONFIG``).

    Returns:
        AdminConfig with paths and logging settings.

    Raises:
        ConfigNotFoundError: If an explicitly requested file doesn't exist.
        ValueError: If the file is not valid TOML.

    Example:
        >>> config = load_admin_config(Path("/srv/billing/billing-admin.toml"))
        >>> config.paths.db_path
        PosixPath('/srv/billing/data/billing.db')
    """
    path, explicit = _resolve_config_path(config_path, env_prefix)

    data: dict = {}
    source: Path | None = None
    if path.exists():
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid config file {path}: {e}") from e
        source = path.resolve()
    elif explicit:
        raise ConfigNotFoundError(
            f"Config file not found: {path}\n"
            f"Create it or omit --config to use defaults."
        )

    paths = PathsConfig(**data.get("paths", {}))
    base_dir = source.parent if source else Path.cwd()
    for field_name in ("data_dir", "logs_dir", "img_dir", "migrations_dir"):
        value: Path = getattr(paths, field_name)
        if not value.is_absolute():
            setattr(paths, field_name, base_dir / value)

    env_data_dir = os.environ.get(f"{env_prefix}BILLING_DATA_DIR")
    if env_data_dir:
        paths.data_dir = Path(env_data_dir)

    return AdminConfig(
        paths=paths,
        logging=LoggingConfig(**data.get("logging", {})),
        source=source,
    )
