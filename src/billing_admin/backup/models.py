"""Backup set and restore result models.

A backup set is up to three sibling files sharing one base name:

    billing_backup_2025-01-01T00-00-00-000Z.db       main store snapshot
    billing_backup_2025-01-01T00-00-00-000Z.db-wal   pending write log (optional)
    billing_backup_2025-01-01T00-00-00-000Z.db-shm   shared-memory index (optional)

Usage:
    from billing_admin.backup.models import RESTORABLE_TABLES, BackupSet, RestoreResult
"""

import re
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

# Restored in this order.
RESTORABLE_TABLES: tuple[str, ...] = (
    "packages",
    "customers",
    "odps",
    "cable_routes",
    "network_segments",
)

BACKUP_PREFIX = "billing_backup"
PRE_RESTORE_PREFIX = "pre_restore"
TEMP_RESTORE_PREFIX = "temp_restore"

# Suffix -> member type, longest first so ".db" doesn't shadow the others.
MEMBER_SUFFIXES: tuple[tuple[str, str], ...] = (
    (".db-wal", "wal"),
    (".db-shm", "shm"),
    (".db", "db"),
)

ErrorKind = Literal[
    "not_found",
    "schema_mismatch",
    "partial_row_failure",
    "io_failure",
    "table_not_found",
    "restore_error",
]

FileType = Literal["db", "wal", "shm"]

_TIMESTAMP_RE = re.compile(
    r"_(\d{4}-\d{2}-\d{2})T(\d{2})-(\d{2})-(\d{2})(?:-(\d{3}))?Z?$"
)


def backup_timestamp(now: datetime | None = None) -> str:
    """UTC ISO 8601 timestamp with ``:`` and ``.`` replaced by ``-``.

    Example:
        >>> backup_timestamp(datetime(2025, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc))
        '2025-01-02T03-04-05-678Z'
    """
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return now.strftime("%Y-%m-%dT%H-%M-%S-") + f"{now.microsecond // 1000:03d}Z"


def parse_backup_timestamp(base_name: str) -> datetime | None:
    """Recover the creation time embedded in a base name, if any."""
    match = _TIMESTAMP_RE.search(base_name)
    if match is None:
        return None
    day, hour, minute, second, millis = match.groups()
    try:
        return datetime.strptime(
            f"{day} {hour}:{minute}:{second}", "%Y-%m-%d %H:%M:%S"
        ).replace(microsecond=int(millis or 0) * 1000, tzinfo=timezone.utc)
    except ValueError:
        return None


def split_member_name(filename: str) -> tuple[str, FileType] | None:
    """``(base_name, type)`` for a backup member filename, else None."""
    for suffix, file_type in MEMBER_SUFFIXES:
        if filename.endswith(suffix) and len(filename) > len(suffix):
            return filename[: -len(suffix)], file_type  # type: ignore[return-value]
    return None


# ============================================================================
# Catalog
# ============================================================================


class BackupFile(BaseModel):
    """One member of a backup set."""

    filename: str
    size: int
    type: FileType


class BackupSet(BaseModel):
    """A group of sibling files sharing one base name."""

    filename: str  # the .db member (synthesized if the set has none)
    base_name: str
    size: int = 0  # total bytes across members
    created: datetime
    file_count: int = 0
    files: list[BackupFile] = Field(default_factory=list)


# ============================================================================
# Results
# ============================================================================


class BackupResult(BaseModel):
    """Result of ``backup_database()``."""

    success: bool
    message: str = ""
    backup_file: str | None = None
    backup_base: str | None = None
    backup_files: list[str] = Field(default_factory=list)
    total_size: int = 0
    warnings: list[str] = Field(default_factory=list)
    error: str | None = None
    error_kind: ErrorKind | None = None


class TableRestoreResult(BaseModel):
    """Outcome of restoring one allow-listed table."""

    table: str
    success: bool
    rows_restored: int = 0
    rows_skipped: int = 0
    message: str = ""
    error_kind: ErrorKind | None = None


class RestoreResult(BaseModel):
    """Result of ``restore_database()``.

    ``success`` means the restore ran to completion; individual tables can
    still have failed, see ``results``.
    """

    success: bool
    message: str = ""
    restored_file: str | None = None
    pre_restore_file: str | None = None
    results: list[TableRestoreResult] = Field(default_factory=list)
    total_restored: int = 0
    warnings: list[str] = Field(default_factory=list)
    error: str | None = None
    error_kind: ErrorKind | None = None

    def table(self, name: str) -> TableRestoreResult | None:
        """Per-table result by table name."""
        return next((r for r in self.results if r.table == name), None)
