"""Async SQLite database adapter.

Provides ``AsyncSQLiteAdapter``, an async implementation of the
``DatabaseClient`` protocol using SQLAlchemy's async engine with the
``aiosqlite`` driver.

Each adapter owns one engine with ``NullPool``: a connection exists only
while a statement runs, and ``close()`` guarantees the database file is
released before callers copy it byte-for-byte.

Usage:
    from billing_admin.adapters.sqlite import AsyncSQLiteAdapter

    adapter = AsyncSQLiteAdapter("data/billing.db")
    rows = await adapter.select("packages", "id, name")
    await adapter.close()
"""

import logging
import re
from pathlib import Path
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from billing_admin.adapters.base import CheckpointOutcome, ReplaceOutcome

logger = logging.getLogger(__name__)

CHECKPOINT_MODES = frozenset({"PASSIVE", "FULL", "RESTART", "TRUNCATE"})

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_identifier(name: str) -> bool:
    """True if ``name`` is a plain SQL identifier (letters, digits, underscore)."""
    return bool(_IDENTIFIER_RE.match(name))


def quote_identifier(name: str) -> str:
    """Quote a table or column name for SQLite.

    Example:
        >>> quote_identifier('odd"name')
        '"odd""name"'
    """
    return '"' + name.replace('"', '""') + '"'


def create_sqlite_engine(db_path: str | Path, **kwargs: Any) -> AsyncEngine:
    """Create an async SQLAlchemy engine for a SQLite file.

    Default settings:

    - ``poolclass=NullPool``: no connection outlives its ``async with`` block.
    - ``connect_args={"timeout": 15}``: wait on the file lock instead of
      failing immediately when another writer holds it.

    Args:
        db_path: Path to the SQLite database file.
        **kwargs: Additional keyword arguments forwarded to
            ``create_async_engine``.

    Returns:
        Configured ``AsyncEngine``.
    """
    defaults: dict[str, Any] = {
        "poolclass": NullPool,
        "connect_args": {"timeout": 15},
        "echo": False,
    }
    merged = {**defaults, **kwargs}

    return create_async_engine(f"sqlite+aiosqlite:///{Path(db_path)}", **merged)


class AsyncSQLiteAdapter:
    """Async SQLite implementation of the ``DatabaseClient`` protocol.

    Args:
        db_path: Path to the SQLite database file.
        **engine_kwargs: Additional keyword arguments forwarded to
            ``create_sqlite_engine``.

    Example:
        adapter = AsyncSQLiteAdapter("data/billing.db")
        outcome = await adapter.checkpoint()
        await adapter.close()
    """

    def __init__(self, db_path: str | Path, **engine_kwargs: Any) -> None:
        self.db_path = Path(db_path)
        self._engine: AsyncEngine | None = create_sqlite_engine(
            self.db_path, **engine_kwargs
        )

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError(f"Adapter for {self.db_path} is closed")
        return self._engine

    # ------------------------------------------------------------------
    # CRUD Methods
    # ------------------------------------------------------------------

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        """Select rows from table using raw SQL."""
        if columns.strip() == "*":
            column_clause = "*"
        else:
            column_clause = ", ".join(
                quote_identifier(c.strip()) for c in columns.split(",") if c.strip()
            )

        params: dict[str, Any] = {}
        if filters:
            conditions: list[str] = []
            for i, (k, v) in enumerate(filters.items()):
                param_name = f"p_{i}"
                conditions.append(f"{quote_identifier(k)} = :{param_name}")
                params[param_name] = v
            where_clause = " WHERE " + " AND ".join(conditions)
        else:
            where_clause = ""

        order_clause = f" ORDER BY {quote_identifier(order_by)}" if order_by else ""

        query = text(
            f"SELECT {column_clause} FROM {quote_identifier(table)}"
            f"{where_clause}{order_clause}"
        )

        async with self.engine.connect() as conn:
            result = await conn.execute(query, params)
            return [dict(row) for row in result.mappings().all()]

    async def insert(self, table: str, data: dict, replace: bool = False) -> int:
        """Insert a row and return its rowid.

        Uses ``engine.begin()`` for automatic commit on success, rollback on
        error.
        """
        columns = list(data.keys())
        verb = "INSERT OR REPLACE" if replace else "INSERT"
        placeholders = ", ".join(f":p_{i}" for i in range(len(columns)))
        query = text(
            f"{verb} INTO {quote_identifier(table)} "
            f"({', '.join(quote_identifier(c) for c in columns)}) "
            f"VALUES ({placeholders})"
        )
        params = {f"p_{i}": data[c] for i, c in enumerate(columns)}

        async with self.engine.begin() as conn:
            result = await conn.execute(query, params)
            return result.lastrowid

    async def delete(self, table: str, filters: dict[str, Any] | None = None) -> int:
        """Delete rows from table; all rows when ``filters`` is empty.

        Uses ``engine.begin()`` for automatic commit on success, rollback on
        error.
        """
        params: dict[str, Any] = {}
        where_parts: list[str] = []

        for i, (k, v) in enumerate((filters or {}).items()):
            param_name = f"p_{i}"
            where_parts.append(f"{quote_identifier(k)} = :{param_name}")
            params[param_name] = v

        where_clause = f" WHERE {' AND '.join(where_parts)}" if where_parts else ""
        query = text(f"DELETE FROM {quote_identifier(table)}{where_clause}")

        async with self.engine.begin() as conn:
            result = await conn.execute(query, params)
            return result.rowcount

    async def replace_rows(
        self,
        table: str,
        columns: list[tuple[str, str]],
        rows: list[dict],
    ) -> ReplaceOutcome:
        """Empty ``table`` and refill it from ``rows`` in one transaction.

        A row that violates a constraint is skipped; SQLite rolls back only
        the failing statement, so the transaction carries on.  Any other
        error propagates and the whole table change is rolled back.
        """
        outcome = ReplaceOutcome()
        qtable = quote_identifier(table)

        column_list = ", ".join(quote_identifier(dest) for _, dest in columns)
        placeholders = ", ".join(f":p_{i}" for i in range(len(columns)))
        insert_stmt = text(
            f"INSERT OR REPLACE INTO {qtable} ({column_list}) VALUES ({placeholders})"
        )

        async with self.engine.begin() as conn:
            await conn.execute(text(f"DELETE FROM {qtable}"))

            if not columns:
                return outcome

            for row in rows:
                params = {
                    f"p_{i}": row.get(source) for i, (source, _) in enumerate(columns)
                }
                try:
                    await conn.execute(insert_stmt, params)
                except DBAPIError as e:
                    outcome.skipped += 1
                    outcome.row_errors.append(str(e.orig))
                    logger.warning("Error inserting row into %s: %s", table, e.orig)
                    continue
                outcome.restored += 1

        return outcome

    async def execute(self, sql: str, params: dict | None = None) -> int:
        """Execute a raw SQL statement (DDL or DML).

        Uses ``engine.begin()`` for automatic commit on success, rollback
        on error.

        Example:
            await adapter.execute(
                "ALTER TABLE packages ADD COLUMN image_filename TEXT NULL"
            )
        """
        async with self.engine.begin() as conn:
            result = await conn.execute(text(sql), params or {})
            return result.rowcount

    async def execute_script(self, statements: list[str]) -> int:
        """Run several statements in a single transaction.

        The driver only opens a transaction implicitly before DML, so an
        explicit ``BEGIN`` is issued to keep DDL in the same unit of work.
        If any statement fails, none of them take effect.

        Returns:
            Number of statements executed.
        """
        async with self.engine.begin() as conn:
            await conn.exec_driver_sql("BEGIN")
            for statement in statements:
                await conn.exec_driver_sql(statement)
        return len(statements)

    async def fetch(self, sql: str, params: dict | None = None) -> list[dict]:
        """Run a raw query and return row dicts."""
        async with self.engine.connect() as conn:
            result = await conn.execute(text(sql), params or {})
            return [dict(row) for row in result.mappings().all()]

    # ------------------------------------------------------------------
    # WAL Maintenance
    # ------------------------------------------------------------------

    async def checkpoint(self, mode: str = "FULL") -> CheckpointOutcome:
        """Run ``PRAGMA wal_checkpoint(<mode>)``.

        Never raises for database errors -- a failed or busy checkpoint is
        reported through ``CheckpointOutcome.warning``.

        Raises:
            ValueError: If ``mode`` is not a SQLite checkpoint mode.
        """
        mode = mode.upper()
        if mode not in CHECKPOINT_MODES:
            raise ValueError(f"Unknown checkpoint mode: {mode}")

        try:
            async with self.engine.connect() as conn:
                result = await conn.exec_driver_sql(f"PRAGMA wal_checkpoint({mode})")
                row = result.fetchone()
        except DBAPIError as e:
            return CheckpointOutcome(
                ok=False,
                warning=f"WAL checkpoint failed for {self.db_path.name}: {e.orig}",
            )

        busy, log_frames, checkpointed = row if row is not None else (0, -1, -1)
        if busy:
            return CheckpointOutcome(
                ok=False,
                busy=True,
                log_frames=log_frames,
                checkpointed_frames=checkpointed,
                warning=(
                    f"WAL checkpoint for {self.db_path.name} could not complete "
                    f"(database busy, {checkpointed}/{log_frames} frames)"
                ),
            )
        return CheckpointOutcome(
            ok=True, log_frames=log_frames, checkpointed_frames=checkpointed
        )

    async def close(self) -> None:
        """Dispose the engine; the database file is closed afterwards."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None

    # ------------------------------------------------------------------
    # Connection Test
    # ------------------------------------------------------------------

    async def test_connection(self) -> bool:
        """Run ``SELECT 1`` to verify the database can be opened."""
        async with self.engine.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            return result.scalar() == 1
