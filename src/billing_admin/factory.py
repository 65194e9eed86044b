"""Store adapter factory.

Every caller gets its own adapter for the duration of one operation;
there is no module-level connection cache.  ``open_store()`` is the
normal entry point and guarantees the adapter is closed (and the file
released) when the block exits.

Usage:
    from billing_admin.factory import open_store, connect_and_validate

    async with open_store("data/billing.db") as store:
        rows = await store.select("packages")

    result = await connect_and_validate("data/billing.db")
    if not result.success:
        print(result.error)
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy.exc import DBAPIError

from billing_admin.adapters.base import DatabaseClient
from billing_admin.adapters.sqlite import AsyncSQLiteAdapter
from billing_admin.schema.billing import expected_schema
from billing_admin.schema.comparator import validate_schema
from billing_admin.schema.introspector import SchemaIntrospector
from billing_admin.schema.models import ConnectionResult

logger = logging.getLogger(__name__)


class StoreNotFoundError(FileNotFoundError):
    """Raised when the database file to open does not exist."""

    pass


# ============================================================================
# Database Adapter Factory
# ============================================================================


def get_adapter(db_path: str | Path, must_exist: bool = True) -> DatabaseClient:
    """Create an adapter for a SQLite file.

    The caller owns the adapter and must ``await adapter.close()``;
    prefer ``open_store()``.

    Args:
        db_path: Path to the database file.
        must_exist: Refuse to open a missing file.  SQLite would otherwise
            create an empty database on first use.

    Raises:
        StoreNotFoundError: If ``must_exist`` and the file is missing.
    """
    db_path = Path(db_path)
    if must_exist and not db_path.is_file():
        raise StoreNotFoundError(f"Database file not found: {db_path}")
    return AsyncSQLiteAdapter(db_path)


@asynccontextmanager
async def open_store(
    db_path: str | Path, must_exist: bool = True
) -> AsyncIterator[DatabaseClient]:
    """Open a store for the duration of an ``async with`` block.

    Example:
        async with open_store(config.paths.db_path) as store:
            await store.checkpoint()
        # file released here, safe to copy
    """
    adapter = get_adapter(db_path, must_exist=must_exist)
    try:
        yield adapter
    finally:
        await adapter.close()


# ============================================================================
# Connection and Validation
# ============================================================================


async def connect_and_validate(
    db_path: str | Path,
    expected_columns: dict[str, set[str]] | None = None,
) -> ConnectionResult:
    """Open the store and validate its schema.

    Args:
        db_path: Path to the live database file.
        expected_columns: Table -> required columns.  Defaults to the
            billing system's required tables and columns.

    Returns:
        ConnectionResult with success status and validation report

    Example:
        >>> result = await connect_and_validate("data/billing.db")
        >>> if not result.success:
        ...     print(result.schema_report.format_report())
    """
    db_path = Path(db_path)
    expected = expected_columns if expected_columns is not None else expected_schema()

    try:
        async with open_store(db_path) as store:
            actual_columns = await SchemaIntrospector(store).get_column_names()
    except StoreNotFoundError as e:
        return ConnectionResult(success=False, db_path=str(db_path), error=str(e))
    except DBAPIError as e:
        logger.error("Failed to read schema of %s: %s", db_path, e.orig)
        return ConnectionResult(
            success=False,
            db_path=str(db_path),
            error=f"Failed to connect to database: {e.orig}",
        )

    validation = validate_schema(actual_columns, expected)

    if validation.valid:
        return ConnectionResult(
            success=True,
            db_path=str(db_path),
            schema_valid=True,
            schema_report=validation,
        )

    return ConnectionResult(
        success=False,
        db_path=str(db_path),
        schema_valid=False,
        schema_report=validation,
        error=f"Schema validation failed: {validation.error_count} errors",
    )
