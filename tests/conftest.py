"""Shared fixtures: small billing stores built with the sqlite3 module."""

import sqlite3
from pathlib import Path

import pytest

BILLING_TABLES: dict[str, str] = {
    "packages": "CREATE TABLE packages (id INTEGER PRIMARY KEY, name TEXT, price REAL)",
    "customers": (
        "CREATE TABLE customers (id INTEGER PRIMARY KEY, name TEXT, package_id INTEGER)"
    ),
    "odps": "CREATE TABLE odps (id INTEGER PRIMARY KEY, name TEXT, capacity INTEGER)",
    "cable_routes": (
        "CREATE TABLE cable_routes (id INTEGER PRIMARY KEY, odp_id INTEGER, length REAL)"
    ),
    "network_segments": "CREATE TABLE network_segments (id INTEGER PRIMARY KEY, name TEXT)",
}

BILLING_ROWS: dict[str, list[tuple]] = {
    "packages": [(1, "Home 10M", 150000.0), (2, "Home 20M", 250000.0)],
    "customers": [(1, "Budi", 1), (2, "Sari", 2), (3, "Agus", 1)],
    "odps": [(1, "ODP-01", 16)],
    "cable_routes": [(1, 1, 120.5), (2, 1, 80.0)],
    "network_segments": [(1, "Core")],
}


def _build(
    path: Path,
    tables: dict[str, str] | None = None,
    rows: dict[str, list[tuple]] | None = None,
    wal: bool = False,
) -> Path:
    tables = BILLING_TABLES if tables is None else tables
    rows = BILLING_ROWS if rows is None else rows
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    try:
        if wal:
            conn.execute("PRAGMA journal_mode=WAL")
        for ddl in tables.values():
            conn.execute(ddl)
        for table, table_rows in rows.items():
            for row in table_rows:
                placeholders = ", ".join("?" for _ in row)
                conn.execute(f"INSERT INTO {table} VALUES ({placeholders})", row)
        conn.commit()
    finally:
        conn.close()
    return path


def _read(path: Path, table: str) -> list[tuple]:
    conn = sqlite3.connect(path)
    try:
        return conn.execute(f"SELECT * FROM {table} ORDER BY rowid").fetchall()
    finally:
        conn.close()


@pytest.fixture
def make_store():
    """Factory: ``make_store(path, tables=None, rows=None, wal=False) -> path``."""
    return _build


@pytest.fixture
def read_rows():
    """Factory: ``read_rows(path, table) -> list of tuples`` in rowid order."""
    return _read


@pytest.fixture
def store(tmp_path, make_store) -> Path:
    """Live store at ``data/billing.db`` with all restorable tables populated."""
    return make_store(tmp_path / "data" / "billing.db")


@pytest.fixture
def backup_dir(tmp_path) -> Path:
    path = tmp_path / "data" / "backup"
    path.mkdir(parents=True)
    return path
