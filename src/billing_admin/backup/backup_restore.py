"""Selective backup and restore of the live SQLite store.

Backups are byte copies of the store and its ``-wal``/``-shm`` side files,
taken after a WAL checkpoint.  A restore never replaces the live file:
it copies the allow-listed tables row by row from a scratch copy of the
backup, limited to the columns both schemas share, so a backup taken
before a migration still restores into the migrated store.

Usage:
    from billing_admin.backup.backup_restore import (
        backup_database,
        list_backups,
        restore_database,
    )

    result = await backup_database("data/billing.db", "data/backup")
    sets = list_backups("data/backup")
    summary = await restore_database("data/billing.db", "data/backup", sets[0].filename)
"""

import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy.exc import DBAPIError

from billing_admin.adapters.base import DatabaseClient
from billing_admin.backup.models import (
    BACKUP_PREFIX,
    PRE_RESTORE_PREFIX,
    RESTORABLE_TABLES,
    TEMP_RESTORE_PREFIX,
    BackupFile,
    BackupResult,
    BackupSet,
    RestoreResult,
    TableRestoreResult,
    backup_timestamp,
    parse_backup_timestamp,
    split_member_name,
)
from billing_admin.factory import open_store
from billing_admin.schema.comparator import column_intersection, columns_only_in_source
from billing_admin.schema.introspector import SchemaIntrospector

logger = logging.getLogger(__name__)

SIDE_SUFFIXES = ("-wal", "-shm")


class BackupNotFoundError(FileNotFoundError):
    """Raised when a named backup does not exist or is not a bare ``.db`` name."""

    pass


def _sibling(path: Path, suffix: str) -> Path:
    """``billing.db`` + ``-wal`` -> ``billing.db-wal``."""
    return path.with_name(path.name + suffix)


def _remove_files(paths: list[Path]) -> None:
    """Delete files, logging (not raising) on failure."""
    for path in paths:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Error cleaning up %s: %s", path.name, e)


def _copy_with_sides(source: Path, dest: Path) -> list[Path]:
    """Copy ``source`` and whichever side files exist next to it.

    On failure, members already written are removed and the error
    propagates.

    Returns:
        Paths written, main file first.
    """
    written: list[Path] = []
    try:
        shutil.copyfile(source, dest)
        written.append(dest)
        for suffix in SIDE_SUFFIXES:
            side = _sibling(source, suffix)
            if side.exists():
                target = _sibling(dest, suffix)
                shutil.copyfile(side, target)
                written.append(target)
    except OSError:
        _remove_files(written)
        raise
    return written


async def _checkpoint(db_path: Path, warnings: list[str]) -> None:
    """FULL checkpoint; problems become warnings, never failures."""
    async with open_store(db_path) as store:
        outcome = await store.checkpoint("FULL")
    if outcome.ok:
        logger.debug(
            "WAL checkpoint of %s: %d/%d frames",
            db_path.name,
            outcome.checkpointed_frames,
            outcome.log_frames,
        )
        return
    logger.warning(outcome.warning)
    warnings.append(outcome.warning or f"WAL checkpoint failed for {db_path.name}")


# ============================================================================
# Backup
# ============================================================================


async def backup_database(
    db_path: str | Path,
    backup_dir: str | Path,
    now: datetime | None = None,
) -> BackupResult:
    """Create a backup set of the live store.

    Checkpoints the WAL into the main file, closes the connection, then
    copies ``billing.db`` and any ``-wal``/``-shm`` files to
    ``<backup_dir>/billing_backup_<timestamp>.db[-wal|-shm]``.

    Args:
        db_path: Live database file.
        backup_dir: Directory holding backup sets (created if missing).
        now: Timestamp to name the set after (defaults to the current time).

    Returns:
        ``BackupResult``.  A failed checkpoint only adds to ``warnings``;
        a failed copy gives ``success=False`` with ``error_kind="io_failure"``
        and leaves no partial set behind.

    Example:
        result = await backup_database(config.paths.db_path, config.paths.backup_dir)
        if result.success:
            print(result.backup_file, result.total_size)
    """
    db_path = Path(db_path)
    backup_dir = Path(backup_dir)

    if not db_path.is_file():
        return BackupResult(
            success=False,
            message=f"Error creating backup: database file not found: {db_path}",
            error=f"Database file not found: {db_path}",
            error_kind="io_failure",
        )

    base_name = f"{BACKUP_PREFIX}_{backup_timestamp(now)}"
    warnings: list[str] = []

    try:
        backup_dir.mkdir(parents=True, exist_ok=True)

        logger.info("Performing WAL checkpoint before backup...")
        await _checkpoint(db_path, warnings)

        logger.info("Copying database file to %s.db", base_name)
        written = _copy_with_sides(db_path, backup_dir / f"{base_name}.db")
    except OSError as e:
        logger.error("Error creating backup: %s", e)
        return BackupResult(
            success=False,
            message=f"Error creating backup: {e}",
            backup_base=base_name,
            warnings=warnings,
            error=str(e),
            error_kind="io_failure",
        )

    total_size = sum(p.stat().st_size for p in written)
    names = [p.name for p in written]
    logger.info("Database backup created successfully: %s (%d files)", base_name, len(names))

    return BackupResult(
        success=True,
        message=f"Database backup created ({len(names)} files: {', '.join(names)})",
        backup_file=names[0],
        backup_base=base_name,
        backup_files=names,
        total_size=total_size,
        warnings=warnings,
    )


# ============================================================================
# Restore
# ============================================================================


def resolve_backup_file(backup_dir: str | Path, backup_filename: str) -> Path:
    """Path of a named ``.db`` backup inside ``backup_dir``.

    Raises:
        BackupNotFoundError: If the name has path components, lacks the
            ``.db`` suffix, or the file does not exist.
    """
    if (
        not backup_filename
        or Path(backup_filename).name != backup_filename
        or backup_filename in (".", "..")
        or not backup_filename.endswith(".db")
    ):
        raise BackupNotFoundError(f"Backup file not found: {backup_filename}")

    path = Path(backup_dir) / backup_filename
    if not path.is_file():
        raise BackupNotFoundError(f"Backup file not found: {backup_filename}")
    return path


async def _restore_table(
    source: DatabaseClient,
    dest: DatabaseClient,
    table: str,
) -> TableRestoreResult:
    """Replace one table's rows in ``dest`` with the rows in ``source``.

    Only columns present in both tables (case-insensitive) are copied.
    Nothing in ``dest`` changes unless there is at least one such column.
    """
    if table not in RESTORABLE_TABLES:
        raise ValueError(f"Table {table!r} is not restorable")

    source_schema = SchemaIntrospector(source)
    if not await source_schema.table_exists(table):
        logger.warning("Table %s not found in backup database, skipping", table)
        return TableRestoreResult(
            table=table,
            success=False,
            message="Table not found in backup",
            error_kind="table_not_found",
        )

    dest_schema = SchemaIntrospector(dest)
    if not await dest_schema.table_exists(table):
        logger.warning("Table %s not found in live database, skipping", table)
        return TableRestoreResult(
            table=table,
            success=False,
            message="Table not found in live database",
            error_kind="table_not_found",
        )

    source_columns = [c.name for c in await source_schema.get_columns(table)]
    dest_columns = [c.name for c in await dest_schema.get_columns(table)]
    pairs = column_intersection(source_columns, dest_columns)

    if not pairs:
        logger.warning(
            "No common columns between backup and live database for table %s", table
        )
        return TableRestoreResult(
            table=table,
            success=False,
            message="No compatible columns between backup and live database",
            error_kind="schema_mismatch",
        )

    skipped_columns = columns_only_in_source(source_columns, dest_columns)
    if skipped_columns:
        logger.info(
            "Table %s: skipping %d columns not in live database: %s",
            table,
            len(skipped_columns),
            ", ".join(skipped_columns),
        )
    logger.info(
        "Table %s: restoring %d common columns: %s",
        table,
        len(pairs),
        ", ".join(name for name, _ in pairs),
    )

    rows = await source.select(table)
    outcome = await dest.replace_rows(table, pairs, rows)

    if not rows:
        return TableRestoreResult(table=table, success=True, message="No data to restore")

    message = f"Restored {outcome.restored} rows"
    if outcome.skipped:
        logger.warning("Table %s: skipped %d rows due to errors", table, outcome.skipped)
        message += f", skipped {outcome.skipped}"

    logger.info("Table %s: restored %d records", table, outcome.restored)
    return TableRestoreResult(
        table=table,
        success=True,
        rows_restored=outcome.restored,
        rows_skipped=outcome.skipped,
        message=message,
        error_kind="partial_row_failure" if outcome.skipped else None,
    )


async def restore_database(
    db_path: str | Path,
    backup_dir: str | Path,
    backup_filename: str,
    now: datetime | None = None,
) -> RestoreResult:
    """Selectively restore the allow-listed tables from a backup set.

    Steps:
    1. Resolve ``backup_filename`` inside ``backup_dir`` (missing -> nothing
       changes, ``error_kind="not_found"``).
    2. Snapshot the live store to ``pre_restore_<timestamp>.db``.
    3. Copy the set into ``temp_restore_<timestamp>.db[-wal|-shm]`` and fold
       its WAL in with a checkpoint.
    4. For each table in ``RESTORABLE_TABLES``, replace the live rows with
       the scratch rows projected onto the shared columns.  One
       transaction per table; a failing table does not stop the others.
    5. Close both stores and delete the scratch files.

    Args:
        db_path: Live database file.
        backup_dir: Directory holding backup sets.
        backup_filename: Bare ``.db`` member name, e.g.
            ``billing_backup_2025-01-01T00-00-00-000Z.db``.
        now: Timestamp for the snapshot and scratch names.

    Returns:
        ``RestoreResult`` with one ``TableRestoreResult`` per table processed.
        Tables already restored are not rolled back if a later step fails.

    Example:
        result = await restore_database(db, backup_dir, "billing_backup_...db")
        for table in result.results:
            print(table.table, table.success, table.rows_restored)
    """
    db_path = Path(db_path)
    backup_dir = Path(backup_dir)

    try:
        backup_path = resolve_backup_file(backup_dir, backup_filename)
    except BackupNotFoundError as e:
        logger.warning(str(e))
        return RestoreResult(
            success=False,
            message=str(e),
            restored_file=backup_filename,
            error=str(e),
            error_kind="not_found",
        )

    timestamp = backup_timestamp(now)
    warnings: list[str] = []

    # Snapshot of the live store; its WAL is folded in first so the
    # snapshot is complete on its own.
    pre_restore = backup_dir / f"{PRE_RESTORE_PREFIX}_{timestamp}.db"
    try:
        await _checkpoint(db_path, warnings)
        shutil.copyfile(db_path, pre_restore)
    except OSError as e:
        logger.error("Error creating pre-restore snapshot: %s", e)
        _remove_files([pre_restore])
        return RestoreResult(
            success=False,
            message=f"Error restoring database: {e}",
            restored_file=backup_filename,
            warnings=warnings,
            error=str(e),
            error_kind="io_failure",
        )
    logger.info("Current database saved to %s", pre_restore.name)
    logger.info("Starting selective restore from: %s", backup_filename)

    scratch = backup_dir / f"{TEMP_RESTORE_PREFIX}_{timestamp}.db"
    scratch_files = [scratch, *(_sibling(scratch, s) for s in SIDE_SUFFIXES)]
    results: list[TableRestoreResult] = []

    try:
        _copy_with_sides(backup_path, scratch)

        if _sibling(scratch, "-wal").exists():
            logger.info("Merging WAL file into temporary database...")
            await _checkpoint(scratch, warnings)

        async with open_store(scratch) as source, open_store(db_path) as dest:
            for table in RESTORABLE_TABLES:
                try:
                    results.append(await _restore_table(source, dest, table))
                except DBAPIError as e:
                    logger.error("Error restoring table %s: %s", table, e.orig)
                    results.append(
                        TableRestoreResult(
                            table=table,
                            success=False,
                            message=str(e.orig),
                            error_kind="restore_error",
                        )
                    )
    except (OSError, DBAPIError) as e:
        detail = str(e.orig) if isinstance(e, DBAPIError) else str(e)
        logger.error("Error restoring database: %s", detail)
        return RestoreResult(
            success=False,
            message=f"Error restoring database: {detail}",
            restored_file=backup_filename,
            pre_restore_file=pre_restore.name,
            results=results,
            total_restored=sum(r.rows_restored for r in results if r.success),
            warnings=warnings,
            error=detail,
            error_kind="io_failure" if isinstance(e, OSError) else "restore_error",
        )
    finally:
        _remove_files(scratch_files)

    total = sum(r.rows_restored for r in results if r.success)
    logger.info("Database restore completed. Total records restored: %d", total)
    for r in results:
        logger.info(
            "Table %s: %s - %d records - %s",
            r.table,
            "SUCCESS" if r.success else "FAILED",
            r.rows_restored,
            r.message,
        )

    return RestoreResult(
        success=True,
        message=(
            f"Database restored. Total {total} rows restored from tables: "
            f"{', '.join(RESTORABLE_TABLES)}"
        ),
        restored_file=backup_filename,
        pre_restore_file=pre_restore.name,
        results=results,
        total_restored=total,
        warnings=warnings,
    )


# ============================================================================
# Catalog
# ============================================================================


def _birth_time(stat_result) -> float:
    """Creation time where the platform records one, else modification time."""
    return getattr(stat_result, "st_birthtime", None) or stat_result.st_mtime


def list_backups(backup_dir: str | Path) -> list[BackupSet]:
    """Group the files in ``backup_dir`` into backup sets, newest first.

    Files ending in ``.db``, ``.db-wal`` or ``.db-shm`` are grouped by the
    name before that suffix; anything else is ignored.  A set's creation
    time is the timestamp in its name when there is one, else the
    earliest creation time among its members.

    Returns:
        ``BackupSet`` list (empty if the directory doesn't exist).
    """
    backup_dir = Path(backup_dir)
    if not backup_dir.is_dir():
        return []

    groups: dict[str, list[BackupFile]] = {}
    born: dict[str, float] = {}

    for path in sorted(backup_dir.iterdir()):
        member = split_member_name(path.name)
        if member is None or not path.is_file():
            continue
        base_name, file_type = member
        stat_result = path.stat()

        groups.setdefault(base_name, []).append(
            BackupFile(filename=path.name, size=stat_result.st_size, type=file_type)
        )
        file_born = _birth_time(stat_result)
        born[base_name] = min(born.get(base_name, file_born), file_born)

    backups: list[BackupSet] = []
    for base_name, files in groups.items():
        db_member = next((f for f in files if f.type == "db"), None)
        created = parse_backup_timestamp(base_name) or datetime.fromtimestamp(
            born[base_name], tz=timezone.utc
        )
        backups.append(
            BackupSet(
                filename=db_member.filename if db_member else f"{base_name}.db",
                base_name=base_name,
                size=sum(f.size for f in files),
                created=created,
                file_count=len(files),
                files=files,
            )
        )

    backups.sort(key=lambda b: (b.created, b.base_name), reverse=True)
    return backups
