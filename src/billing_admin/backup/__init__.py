"""Backup sets, selective restore, and the backup catalog.

Usage:
    from billing_admin.backup import backup_database, restore_database, list_backups
    from billing_admin.backup import RESTORABLE_TABLES, BackupSet, RestoreResult
"""

from billing_admin.backup.backup_restore import (
    BackupNotFoundError,
    backup_database,
    list_backups,
    resolve_backup_file,
    restore_database,
)
from billing_admin.backup.models import (
    RESTORABLE_TABLES,
    BackupFile,
    BackupResult,
    BackupSet,
    RestoreResult,
    TableRestoreResult,
    backup_timestamp,
)

__all__ = [
    "RESTORABLE_TABLES",
    "BackupFile",
    "BackupSet",
    "BackupResult",
    "RestoreResult",
    "TableRestoreResult",
    "BackupNotFoundError",
    "backup_timestamp",
    "backup_database",
    "restore_database",
    "list_backups",
    "resolve_backup_file",
]
