"""Tests for backup sets, selective restore, and the backup catalog.

Every test works on real SQLite files under ``tmp_path``; only failure
paths (checkpoint warnings, copy errors) are injected with mocks.
"""

import shutil
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import DBAPIError

from billing_admin.adapters.base import CheckpointOutcome
from billing_admin.adapters.sqlite import AsyncSQLiteAdapter
from billing_admin.backup import backup_restore
from billing_admin.backup.backup_restore import (
    BackupNotFoundError,
    backup_database,
    list_backups,
    resolve_backup_file,
    restore_database,
)
from billing_admin.backup.models import (
    RESTORABLE_TABLES,
    backup_timestamp,
    parse_backup_timestamp,
    split_member_name,
)

from conftest import BILLING_ROWS, BILLING_TABLES

T1 = datetime(2025, 1, 1, 0, 0, 0, tzinfo=timezone.utc)
T2 = datetime(2025, 1, 2, 0, 0, 0, tzinfo=timezone.utc)
BASE_T1 = "billing_backup_2025-01-01T00-00-00-000Z"
BACKUP_T1 = f"{BASE_T1}.db"


def _mutate(path):
    conn = sqlite3.connect(path)
    conn.execute("DELETE FROM customers")
    conn.execute("UPDATE packages SET name = 'Changed'")
    conn.execute("INSERT INTO odps VALUES (2, 'ODP-NEW', 8)")
    conn.commit()
    conn.close()


# ------------------------------------------------------------------
# Naming helpers
# ------------------------------------------------------------------


class TestNaming:
    """Timestamped names and member classification."""

    def test_timestamp_replaces_colons_and_dots(self):
        """ISO timestamp uses dashes in place of ':' and '.'."""
        now = datetime(2025, 8, 19, 8, 41, 29, 101000, tzinfo=timezone.utc)
        assert backup_timestamp(now) == "2025-08-19T08-41-29-101Z"

    def test_timestamp_round_trips_through_base_name(self):
        """The creation time can be recovered from a base name."""
        now = datetime(2025, 8, 19, 8, 41, 29, 101000, tzinfo=timezone.utc)
        base = f"billing_backup_{backup_timestamp(now)}"
        assert parse_backup_timestamp(base) == now

    def test_unparseable_base_name(self):
        """Names without a timestamp yield None."""
        assert parse_backup_timestamp("manual_copy") is None

    def test_split_member_name(self):
        """Suffixes .db, .db-wal, .db-shm map to db, wal, shm."""
        assert split_member_name("x.db") == ("x", "db")
        assert split_member_name("x.db-wal") == ("x", "wal")
        assert split_member_name("x.db-shm") == ("x", "shm")
        assert split_member_name("x.sqlite") is None
        assert split_member_name(".db") is None


# ------------------------------------------------------------------
# Backup
# ------------------------------------------------------------------


class TestBackupDatabase:
    """backup_database() copies the store into a timestamped set."""

    @pytest.mark.asyncio
    async def test_creates_db_member(self, store, backup_dir, read_rows):
        """The .db member is a readable copy of the store."""
        result = await backup_database(store, backup_dir, now=T1)

        assert result.success
        assert result.backup_base == BASE_T1
        assert result.backup_file == BACKUP_T1
        assert result.backup_files == [BACKUP_T1]
        assert result.total_size == (backup_dir / BACKUP_T1).stat().st_size
        assert read_rows(backup_dir / BACKUP_T1, "customers") == BILLING_ROWS["customers"]

    @pytest.mark.asyncio
    async def test_creates_backup_dir(self, store, tmp_path):
        """A missing backup directory is created."""
        target = tmp_path / "new" / "backup"
        result = await backup_database(store, target, now=T1)
        assert result.success
        assert (target / BACKUP_T1).is_file()

    @pytest.mark.asyncio
    async def test_copies_side_files_when_present(self, tmp_path, make_store, backup_dir):
        """-wal and -shm files next to the store become set members."""
        db = make_store(tmp_path / "data" / "billing.db", wal=True)
        holder = sqlite3.connect(db)  # keeps -wal/-shm on disk
        try:
            holder.execute("SELECT count(*) FROM packages").fetchall()
            result = await backup_database(db, backup_dir, now=T1)
        finally:
            holder.close()

        assert result.success
        assert result.backup_files == [BACKUP_T1, f"{BACKUP_T1}-wal", f"{BACKUP_T1}-shm"]
        assert result.total_size == sum(
            (backup_dir / name).stat().st_size for name in result.backup_files
        )

    @pytest.mark.asyncio
    async def test_checkpoint_failure_is_a_warning(self, store, backup_dir):
        """A failed checkpoint is reported in warnings and the backup proceeds."""
        outcome = CheckpointOutcome(ok=False, warning="WAL checkpoint failed: locked")
        with patch.object(AsyncSQLiteAdapter, "checkpoint", AsyncMock(return_value=outcome)):
            result = await backup_database(store, backup_dir, now=T1)

        assert result.success
        assert result.warnings == ["WAL checkpoint failed: locked"]
        assert (backup_dir / BACKUP_T1).is_file()

    @pytest.mark.asyncio
    async def test_missing_store(self, tmp_path, backup_dir):
        """A missing store fails with io_failure and writes nothing."""
        result = await backup_database(tmp_path / "nope.db", backup_dir, now=T1)

        assert not result.success
        assert result.error_kind == "io_failure"
        assert list(backup_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_copy_failure_removes_partial_set(self, store, backup_dir):
        """If copying a side file fails, the members already written are removed."""
        store.with_name("billing.db-wal").write_bytes(b"pending")
        real_copy = shutil.copyfile
        calls = []

        def flaky_copy(src, dst):
            calls.append(dst)
            if len(calls) > 1:
                raise OSError("No space left on device")
            return real_copy(src, dst)

        ok = CheckpointOutcome(ok=True)
        with patch.object(AsyncSQLiteAdapter, "checkpoint", AsyncMock(return_value=ok)), \
                patch.object(backup_restore.shutil, "copyfile", side_effect=flaky_copy):
            result = await backup_database(store, backup_dir, now=T1)

        assert not result.success
        assert result.error_kind == "io_failure"
        assert "No space left" in result.error
        assert list(backup_dir.iterdir()) == []


# ------------------------------------------------------------------
# Restore
# ------------------------------------------------------------------


class TestResolveBackupFile:
    """Only bare .db names inside the backup directory are accepted."""

    def test_existing_file(self, backup_dir):
        """An existing .db member resolves to its path."""
        (backup_dir / BACKUP_T1).write_bytes(b"")
        assert resolve_backup_file(backup_dir, BACKUP_T1) == backup_dir / BACKUP_T1

    @pytest.mark.parametrize(
        "name",
        ["", "missing.db", "../billing.db", "sub/x.db", f"{BASE_T1}.db-wal", "notes.txt"],
    )
    def test_rejected_names(self, backup_dir, name):
        """Missing files, paths, and non-.db names raise BackupNotFoundError."""
        (backup_dir / f"{BASE_T1}.db-wal").write_bytes(b"")
        (backup_dir / "notes.txt").write_bytes(b"")
        with pytest.raises(BackupNotFoundError):
            resolve_backup_file(backup_dir, name)


class TestRestoreDatabase:
    """restore_database() repopulates allow-listed tables from a set."""

    @pytest.mark.asyncio
    async def test_round_trip(self, store, backup_dir, read_rows):
        """Rows changed after the backup are put back."""
        await backup_database(store, backup_dir, now=T1)
        _mutate(store)

        result = await restore_database(store, backup_dir, BACKUP_T1, now=T2)

        assert result.success
        assert result.error_kind is None
        assert [r.table for r in result.results] == list(RESTORABLE_TABLES)
        assert all(r.success for r in result.results)
        for table, rows in BILLING_ROWS.items():
            assert read_rows(store, table) == rows
        assert result.total_restored == sum(len(rows) for rows in BILLING_ROWS.values())
        assert result.table("customers").rows_restored == 3

    @pytest.mark.asyncio
    async def test_pre_restore_snapshot(self, store, backup_dir, read_rows):
        """The live store is saved as pre_restore_<ts>.db before anything changes."""
        await backup_database(store, backup_dir, now=T1)
        _mutate(store)

        result = await restore_database(store, backup_dir, BACKUP_T1, now=T2)

        snapshot = backup_dir / "pre_restore_2025-01-02T00-00-00-000Z.db"
        assert result.pre_restore_file == snapshot.name
        assert read_rows(snapshot, "customers") == []
        assert read_rows(snapshot, "odps")[-1] == (2, "ODP-NEW", 8)

    @pytest.mark.asyncio
    async def test_failed_snapshot_copy_removes_partial_file(self, store, backup_dir, read_rows):
        """A snapshot copy that fails midway leaves no pre_restore file behind."""
        await backup_database(store, backup_dir, now=T1)
        _mutate(store)

        def partial_copy(src, dst):
            Path(dst).write_bytes(b"partial")
            raise OSError("No space left on device")

        with patch.object(backup_restore.shutil, "copyfile", side_effect=partial_copy):
            result = await restore_database(store, backup_dir, BACKUP_T1, now=T2)

        assert not result.success
        assert result.error_kind == "io_failure"
        assert not list(backup_dir.glob("pre_restore_*"))
        assert read_rows(store, "customers") == []

    @pytest.mark.asyncio
    async def test_scratch_files_removed(self, store, backup_dir):
        """No temp_restore files remain afterwards."""
        await backup_database(store, backup_dir, now=T1)
        await restore_database(store, backup_dir, BACKUP_T1, now=T2)
        assert not [p for p in backup_dir.iterdir() if p.name.startswith("temp_restore_")]

    @pytest.mark.asyncio
    async def test_not_found_changes_nothing(self, store, backup_dir, read_rows):
        """A missing backup reports not_found and takes no snapshot."""
        result = await restore_database(store, backup_dir, "billing_backup_missing.db")

        assert not result.success
        assert result.error_kind == "not_found"
        assert "Backup file not found" in result.message
        assert list(backup_dir.iterdir()) == []
        assert read_rows(store, "customers") == BILLING_ROWS["customers"]

    @pytest.mark.asyncio
    async def test_path_outside_backup_dir_rejected(self, store, backup_dir):
        """A relative path is treated as not found."""
        result = await restore_database(store, backup_dir, "../billing.db")
        assert result.error_kind == "not_found"

    @pytest.mark.asyncio
    async def test_column_intersection(self, store, backup_dir, make_store, read_rows):
        """Backup-only columns are dropped and live-only columns take their default."""
        make_store(
            backup_dir / BACKUP_T1,
            tables={
                **BILLING_TABLES,
                "packages": (
                    "CREATE TABLE packages (id INTEGER PRIMARY KEY, Name TEXT, "
                    "price REAL, old_col TEXT)"
                ),
            },
            rows={**BILLING_ROWS, "packages": [(1, "Legacy 5M", 99000.0, "gone")]},
        )
        conn = sqlite3.connect(store)
        conn.execute("ALTER TABLE packages ADD COLUMN status TEXT DEFAULT 'active'")
        conn.commit()
        conn.close()

        result = await restore_database(store, backup_dir, BACKUP_T1, now=T2)

        assert result.success
        assert result.table("packages").success
        assert read_rows(store, "packages") == [(1, "Legacy 5M", 99000.0, "active")]

    @pytest.mark.asyncio
    async def test_no_compatible_columns(self, store, backup_dir, make_store, read_rows):
        """An empty column intersection leaves the live table untouched."""
        make_store(
            backup_dir / BACKUP_T1,
            tables={**BILLING_TABLES, "odps": "CREATE TABLE odps (legacy_key TEXT, legacy_val TEXT)"},
            rows={**BILLING_ROWS, "odps": [("a", "b")]},
        )

        result = await restore_database(store, backup_dir, BACKUP_T1, now=T2)

        odps = result.table("odps")
        assert not odps.success
        assert odps.error_kind == "schema_mismatch"
        assert odps.message == "No compatible columns between backup and live database"
        assert read_rows(store, "odps") == BILLING_ROWS["odps"]
        assert result.table("packages").success

    @pytest.mark.asyncio
    async def test_table_missing_from_backup(self, store, backup_dir, make_store, read_rows):
        """A table absent from the backup is reported and left as is."""
        tables = {k: v for k, v in BILLING_TABLES.items() if k != "network_segments"}
        rows = {k: v for k, v in BILLING_ROWS.items() if k != "network_segments"}
        make_store(backup_dir / BACKUP_T1, tables=tables, rows=rows)
        conn = sqlite3.connect(store)
        conn.execute("INSERT INTO network_segments VALUES (2, 'Edge')")
        conn.commit()
        conn.close()

        result = await restore_database(store, backup_dir, BACKUP_T1, now=T2)

        segments = result.table("network_segments")
        assert result.success
        assert not segments.success
        assert segments.error_kind == "table_not_found"
        assert segments.message == "Table not found in backup"
        assert read_rows(store, "network_segments") == [(1, "Core"), (2, "Edge")]

    @pytest.mark.asyncio
    async def test_table_missing_from_live_store(self, tmp_path, make_store, backup_dir):
        """A table absent from the live store is reported, not created."""
        tables = {k: v for k, v in BILLING_TABLES.items() if k != "cable_routes"}
        rows = {k: v for k, v in BILLING_ROWS.items() if k != "cable_routes"}
        live = make_store(tmp_path / "data" / "billing.db", tables=tables, rows=rows)
        make_store(backup_dir / BACKUP_T1)

        result = await restore_database(live, backup_dir, BACKUP_T1, now=T2)

        routes = result.table("cable_routes")
        assert routes.error_kind == "table_not_found"
        assert routes.message == "Table not found in live database"

    @pytest.mark.asyncio
    async def test_failing_rows_are_skipped(self, tmp_path, make_store, backup_dir, read_rows):
        """Rows rejected by the live schema are counted and the rest restored."""
        live = make_store(
            tmp_path / "data" / "billing.db",
            tables={
                **BILLING_TABLES,
                "packages": (
                    "CREATE TABLE packages (id INTEGER PRIMARY KEY, name TEXT, "
                    "price REAL CHECK (price >= 0))"
                ),
            },
        )
        make_store(
            backup_dir / BACKUP_T1,
            rows={**BILLING_ROWS, "packages": [*BILLING_ROWS["packages"], (3, "Bad", -1.0)]},
        )

        result = await restore_database(live, backup_dir, BACKUP_T1, now=T2)

        packages = result.table("packages")
        assert packages.success
        assert packages.rows_restored == 2
        assert packages.rows_skipped == 1
        assert packages.error_kind == "partial_row_failure"
        assert read_rows(live, "packages") == BILLING_ROWS["packages"]

    @pytest.mark.asyncio
    async def test_empty_backup_table_empties_live_table(self, store, backup_dir, make_store, read_rows):
        """Zero source rows is a success with count 0 and an empty live table."""
        make_store(backup_dir / BACKUP_T1, rows={**BILLING_ROWS, "customers": []})

        result = await restore_database(store, backup_dir, BACKUP_T1, now=T2)

        customers = result.table("customers")
        assert customers.success
        assert customers.rows_restored == 0
        assert customers.message == "No data to restore"
        assert read_rows(store, "customers") == []

    @pytest.mark.asyncio
    async def test_backup_wal_is_merged(self, tmp_path, store, make_store, backup_dir, read_rows):
        """Rows that only exist in the set's -wal member are restored."""
        source = make_store(tmp_path / "src" / "billing.db", wal=True)
        writer = sqlite3.connect(source)
        try:
            writer.execute("PRAGMA wal_autocheckpoint=0")
            writer.execute("INSERT INTO packages VALUES (3, 'Business 50M', 900000.0)")
            writer.commit()
            shutil.copyfile(source, backup_dir / BACKUP_T1)
            shutil.copyfile(f"{source}-wal", backup_dir / f"{BACKUP_T1}-wal")
        finally:
            writer.close()

        result = await restore_database(store, backup_dir, BACKUP_T1, now=T2)

        assert result.success
        assert read_rows(store, "packages")[-1] == (3, "Business 50M", 900000.0)
        assert not (backup_dir / "temp_restore_2025-01-02T00-00-00-000Z.db-wal").exists()

    @pytest.mark.asyncio
    async def test_table_error_does_not_stop_loop(self, store, backup_dir, read_rows):
        """A database error on one table is recorded and later tables still run."""
        await backup_database(store, backup_dir, now=T1)
        _mutate(store)
        real_restore_table = backup_restore._restore_table

        async def failing_customers(source, dest, table):
            if table == "customers":
                raise DBAPIError("DELETE", {}, sqlite3.OperationalError("disk I/O error"))
            return await real_restore_table(source, dest, table)

        with patch.object(backup_restore, "_restore_table", side_effect=failing_customers):
            result = await restore_database(store, backup_dir, BACKUP_T1, now=T2)

        customers = result.table("customers")
        assert result.success
        assert not customers.success
        assert customers.error_kind == "restore_error"
        assert "disk I/O error" in customers.message
        assert result.table("odps").success
        assert read_rows(store, "odps") == BILLING_ROWS["odps"]

    @pytest.mark.asyncio
    async def test_restore_into_migrated_store(self, store, backup_dir, read_rows):
        """A backup taken before a migration restores into the migrated store."""
        await backup_database(store, backup_dir, now=T1)
        conn = sqlite3.connect(store)
        conn.execute("ALTER TABLE customers ADD COLUMN auto_suspension INTEGER DEFAULT 1")
        conn.commit()
        conn.close()

        result = await restore_database(store, backup_dir, BACKUP_T1, now=T2)

        assert result.table("customers").rows_restored == 3
        assert read_rows(store, "customers")[0] == (1, "Budi", 1, 1)


# ------------------------------------------------------------------
# Catalog
# ------------------------------------------------------------------


class TestListBackups:
    """list_backups() groups sibling files into sets."""

    def _write(self, backup_dir, name, size):
        (backup_dir / name).write_bytes(b"x" * size)

    def test_missing_directory(self, tmp_path):
        """A directory that doesn't exist yields no sets."""
        assert list_backups(tmp_path / "absent") == []

    def test_groups_members(self, backup_dir):
        """Members sharing a base name form one set with summed size."""
        self._write(backup_dir, f"{BASE_T1}.db", 10)
        self._write(backup_dir, f"{BASE_T1}.db-wal", 5)
        self._write(backup_dir, f"{BASE_T1}.db-shm", 3)

        [backup] = list_backups(backup_dir)

        assert backup.base_name == BASE_T1
        assert backup.filename == BACKUP_T1
        assert backup.size == 18
        assert backup.file_count == 3
        assert sorted(f.type for f in backup.files) == ["db", "shm", "wal"]
        assert backup.created == T1

    def test_ignores_other_files(self, backup_dir):
        """Files without a backup suffix and directories are skipped."""
        self._write(backup_dir, "notes.txt", 4)
        (backup_dir / "nested.db").mkdir()
        assert list_backups(backup_dir) == []

    def test_synthesized_filename(self, backup_dir):
        """A set without a .db member still reports a .db filename."""
        self._write(backup_dir, "billing_backup_2025-03-01T00-00-00-000Z.db-wal", 4)
        [backup] = list_backups(backup_dir)
        assert backup.filename == "billing_backup_2025-03-01T00-00-00-000Z.db"
        assert backup.file_count == 1

    def test_newest_first(self, backup_dir):
        """Sets are ordered by creation time, newest first."""
        self._write(backup_dir, "billing_backup_2025-02-01T00-00-00-000Z.db", 1)
        self._write(backup_dir, f"{BASE_T1}.db", 1)
        self._write(backup_dir, "billing_backup_2025-03-01T00-00-00-000Z.db", 1)

        names = [b.base_name for b in list_backups(backup_dir)]

        assert names == [
            "billing_backup_2025-03-01T00-00-00-000Z",
            "billing_backup_2025-02-01T00-00-00-000Z",
            BASE_T1,
        ]

    def test_untimestamped_set_uses_file_time(self, backup_dir):
        """Sets without a timestamp in their name fall back to file times."""
        self._write(backup_dir, "manual.db", 2)
        [backup] = list_backups(backup_dir)
        assert backup.created.tzinfo is not None
        assert backup.created.year >= 2024

    @pytest.mark.asyncio
    async def test_lists_real_backup_and_snapshot(self, store, backup_dir):
        """A backup set and a pre-restore snapshot are both listed."""
        await backup_database(store, backup_dir, now=T1)
        await restore_database(store, backup_dir, BACKUP_T1, now=T2)

        names = [b.filename for b in list_backups(backup_dir)]

        assert names == ["pre_restore_2025-01-02T00-00-00-000Z.db", BACKUP_T1]
