"""Pydantic models for billing-admin configuration."""

from pathlib import Path

from pydantic import BaseModel, Field


# ============================================================================
# Configuration Models
# ============================================================================


class PathsConfig(BaseModel):
    """Filesystem layout of the billing installation from billing-admin.toml."""

    data_dir: Path = Path("data")
    db_filename: str = "billing.db"
    backup_subdir: str = "backup"
    logs_dir: Path = Path("logs")
    img_dir: Path = Path("public/img")
    migrations_dir: Path = Path("migrations")

    @property
    def db_path(self) -> Path:
        """Path of the live store."""
        return self.data_dir / self.db_filename

    @property
    def backup_dir(self) -> Path:
        """Directory holding backup sets and pre-restore snapshots."""
        return self.data_dir / self.backup_subdir


class LoggingConfig(BaseModel):
    """Logging settings from the ``[logging]`` table."""

    level: str = "INFO"
    write_activity_logs: bool = True


class AdminConfig(BaseModel):
    """Complete configuration from billing-admin.toml."""

    paths: PathsConfig = Field(default_factory=PathsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    source: Path | None = None  # file the config was read from, if any
