"""Database client protocol definition.

Defines the ``DatabaseClient`` Protocol that the store adapter implements.
All methods are ``async def`` -- the library is async-first.

Usage:
    from billing_admin.adapters.base import DatabaseClient

    async def do_work(client: DatabaseClient) -> None:
        rows = await client.select("packages", "id, name")
        await client.insert("packages", {"name": "Home 10M"}, replace=True)
        await client.execute("CREATE INDEX idx_name ON packages (name)")
        await client.close()
"""

from typing import Any, Protocol

from pydantic import BaseModel, Field


class CheckpointOutcome(BaseModel):
    """Result of a ``PRAGMA wal_checkpoint``.

    ``ok`` is False when the pragma raised or reported busy; the caller
    treats that as a warning, never as a failure.
    """

    ok: bool
    busy: bool = False
    log_frames: int = -1
    checkpointed_frames: int = -1
    warning: str | None = None


class ReplaceOutcome(BaseModel):
    """Counts from ``DatabaseClient.replace_rows``."""

    restored: int = 0
    skipped: int = 0
    row_errors: list[str] = Field(default_factory=list)


class DatabaseClient(Protocol):
    """Database client interface for the billing store.

    All methods are async -- callers must ``await`` every operation.
    Table and column names are quoted by the implementation; callers
    are still expected to validate them against an allow-list.
    """

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        """Select rows from table.

        Args:
            table: Table name.
            columns: ``"*"`` or comma-separated column names.
            filters: Optional dict of field=value filters (all must match via AND).
            order_by: Optional column name to sort by.

        Returns:
            List of dicts, one per row.  Empty list if no matches.
        """
        ...

    async def insert(self, table: str, data: dict, replace: bool = False) -> int:
        """Insert a row, optionally replacing on primary-key conflict.

        Returns:
            The rowid of the inserted row.
        """
        ...

    async def delete(self, table: str, filters: dict[str, Any] | None = None) -> int:
        """Delete rows matching ``filters`` (all rows when ``None``).

        Returns:
            Number of deleted rows.
        """
        ...

    async def replace_rows(
        self,
        table: str,
        columns: list[tuple[str, str]],
        rows: list[dict],
    ) -> ReplaceOutcome:
        """Empty ``table`` and insert ``rows`` in one transaction.

        Args:
            table: Destination table name.
            columns: ``(source_key, destination_column)`` pairs; each row is
                projected through them, missing keys become NULL.
            rows: Row dicts to insert with ``INSERT OR REPLACE``.

        Returns:
            ``ReplaceOutcome`` -- rows that fail to insert are skipped and
            counted, they do not abort the transaction.
        """
        ...

    async def execute(self, sql: str, params: dict | None = None) -> int:
        """Execute a raw SQL statement (DDL or DML).

        Returns:
            Affected row count reported by the driver (``-1`` for DDL).
        """
        ...

    async def execute_script(self, statements: list[str]) -> int:
        """Run ``statements`` atomically; returns how many were executed."""
        ...

    async def fetch(self, sql: str, params: dict | None = None) -> list[dict]:
        """Run a raw query (``PRAGMA`` or ``SELECT``) and return row dicts."""
        ...

    async def checkpoint(self, mode: str = "FULL") -> CheckpointOutcome:
        """Fold write-ahead-log content into the main database file."""
        ...

    async def close(self) -> None:
        """Close the connection and release the database file."""
        ...
