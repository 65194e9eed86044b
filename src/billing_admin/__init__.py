"""billing-admin: administrative backend of an ISP billing system.

Selective SQLite backup/restore across schema versions, schema
verification and migrations, activity log viewing, Mikrotik isolation
scripts, and logo upload -- as an async library and a CLI.

Usage:
    from billing_admin import backup_database, restore_database, list_backups
    from billing_admin import open_store, connect_and_validate, load_admin_config
"""

__version__ = "0.1.0"

# Adapters
from billing_admin.adapters.base import DatabaseClient
from billing_admin.adapters.sqlite import AsyncSQLiteAdapter

# Config
from billing_admin.config.loader import ConfigNotFoundError, load_admin_config
from billing_admin.config.models import AdminConfig, PathsConfig

# Factory
from billing_admin.factory import (
    StoreNotFoundError,
    connect_and_validate,
    get_adapter,
    open_store,
)

# Schema
from billing_admin.schema.comparator import column_intersection, validate_schema
from billing_admin.schema.migrations import BILLING_MIGRATIONS, apply_migrations

# Backup
from billing_admin.backup.backup_restore import (
    BackupNotFoundError,
    backup_database,
    list_backups,
    restore_database,
)
from billing_admin.backup.models import (
    RESTORABLE_TABLES,
    BackupResult,
    BackupSet,
    RestoreResult,
    TableRestoreResult,
)

__all__ = [
    # Adapters
    "DatabaseClient",
    "AsyncSQLiteAdapter",
    # Config
    "load_admin_config",
    "ConfigNotFoundError",
    "AdminConfig",
    "PathsConfig",
    # Factory
    "get_adapter",
    "open_store",
    "connect_and_validate",
    "StoreNotFoundError",
    # Schema
    "validate_schema",
    "column_intersection",
    "BILLING_MIGRATIONS",
    "apply_migrations",
    # Backup
    "RESTORABLE_TABLES",
    "backup_database",
    "restore_database",
    "list_backups",
    "BackupNotFoundError",
    "BackupResult",
    "BackupSet",
    "RestoreResult",
    "TableRestoreResult",
]
