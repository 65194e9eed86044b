"""Schema migrations -- idempotent column, index and table upgrades.

Two kinds of migration are supported:

- Declarative ``TableMigration`` steps: add missing columns with
  ``ALTER TABLE ... ADD COLUMN``, create missing indexes, and backfill
  NULLs left behind in existing rows.  Every step checks for existence
  first, so running the same migrations twice changes nothing.
- Plain ``*.sql`` files run in filename order by ``run_sql_migrations()``.
  Applied files are recorded in ``schema_migrations`` and skipped later.

Usage:
    from billing_admin.schema.migrations import BILLING_MIGRATIONS, apply_migrations

    async with open_store(db_path) as store:
        result = await apply_migrations(store, BILLING_MIGRATIONS)
        sql_results = await run_sql_migrations(store, Path("migrations"))
"""

import logging
import re
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field
from sqlalchemy.exc import DBAPIError

from billing_admin.adapters.sqlite import is_identifier, quote_identifier
from billing_admin.schema.introspector import SchemaIntrospector

if TYPE_CHECKING:
    from billing_admin.adapters.base import DatabaseClient

logger = logging.getLogger(__name__)

MIGRATIONS_TABLE = "schema_migrations"

# SQLite refuses ADD COLUMN with a non-constant default.
_NON_CONSTANT_DEFAULT_RE = re.compile(
    r"\s+DEFAULT\s+(CURRENT_TIMESTAMP|CURRENT_DATE|CURRENT_TIME)\b", re.IGNORECASE
)


def _require_identifier(kind: str, name: str) -> None:
    if not is_identifier(name):
        raise ValueError(f"Invalid {kind} name: {name!r}")


# ------------------------------------------------------------------
# Migration data classes
# ------------------------------------------------------------------


@dataclass
class ColumnMigration:
    """A column to be added via ALTER TABLE.

    Example:
        step = ColumnMigration("packages", "status", "TEXT DEFAULT 'active'")
        step.to_sql()
        # 'ALTER TABLE "packages" ADD COLUMN "status" TEXT DEFAULT \\'active\\';'
    """

    table: str
    column: str
    definition: str

    def __post_init__(self) -> None:
        _require_identifier("table", self.table)
        _require_identifier("column", self.column)

    def to_sql(self) -> str:
        """Generate ALTER TABLE ADD COLUMN statement.

        Strips what SQLite cannot add to an existing table: PRIMARY KEY /
        AUTOINCREMENT, NOT NULL without a default, and non-constant defaults
        such as ``CURRENT_TIMESTAMP`` (backfills fill those values instead).
        """
        definition = self.definition
        definition = re.sub(r"\s+PRIMARY KEY(\s+AUTOINCREMENT)?", "", definition, flags=re.IGNORECASE)
        definition = _NON_CONSTANT_DEFAULT_RE.sub("", definition)
        if "DEFAULT" not in definition.upper():
            definition = re.sub(r"\s+NOT NULL", "", definition, flags=re.IGNORECASE)

        return (
            f"ALTER TABLE {quote_identifier(self.table)} "
            f"ADD COLUMN {quote_identifier(self.column)} {definition.strip()};"
        )


@dataclass
class IndexMigration:
    """An index to be created if no index of that name exists."""

    name: str
    table: str
    columns: list[str]

    def __post_init__(self) -> None:
        _require_identifier("index", self.name)
        _require_identifier("table", self.table)
        for column in self.columns:
            _require_identifier("column", column)

    def to_sql(self) -> str:
        cols = ", ".join(quote_identifier(c) for c in self.columns)
        return (
            f"CREATE INDEX IF NOT EXISTS {quote_identifier(self.name)} "
            f"ON {quote_identifier(self.table)}({cols});"
        )


@dataclass
class TableMigration:
    """Everything one table needs to be current.

    Attributes:
        table: Table name.
        columns: ``(column, definition)`` pairs the table must have.
        indexes: ``(index_name, [columns])`` pairs.
        backfill: Column -> SQL expression used to replace NULLs in
            existing rows (``SET col = COALESCE(col, expr)``).
        create_if_missing: Create the table from ``columns`` when it does
            not exist.  Otherwise a missing table is skipped.
    """

    table: str
    columns: list[tuple[str, str]] = field(default_factory=list)
    indexes: list[tuple[str, list[str]]] = field(default_factory=list)
    backfill: dict[str, str] = field(default_factory=dict)
    create_if_missing: bool = False

    def __post_init__(self) -> None:
        _require_identifier("table", self.table)
        for column in self.backfill:
            _require_identifier("column", column)

    def column_steps(self) -> list[ColumnMigration]:
        return [ColumnMigration(self.table, name, d) for name, d in self.columns]

    def index_steps(self) -> list[IndexMigration]:
        return [IndexMigration(name, self.table, cols) for name, cols in self.indexes]

    def create_sql(self) -> str:
        """CREATE TABLE statement built from the full column definitions."""
        body = ",\n    ".join(
            f"{quote_identifier(name)} {definition}" for name, definition in self.columns
        )
        return f"CREATE TABLE IF NOT EXISTS {quote_identifier(self.table)} (\n    {body}\n);"

    def backfill_sql(self, existing_columns: set[str]) -> str | None:
        """UPDATE statement replacing NULLs, limited to columns that exist."""
        targets = {
            col: expr
            for col, expr in self.backfill.items()
            if col.lower() in existing_columns
        }
        if not targets:
            return None
        set_clause = ",\n    ".join(
            f"{quote_identifier(col)} = COALESCE({quote_identifier(col)}, {expr})"
            for col, expr in targets.items()
        )
        where_clause = " OR ".join(f"{quote_identifier(col)} IS NULL" for col in targets)
        return f"UPDATE {quote_identifier(self.table)}\nSET {set_clause}\nWHERE {where_clause}"


class MigrationResult(BaseModel):
    """Result of applying declarative migrations.

    Attributes:
        success: True if no step failed.
        tables_created: Number of missing tables created.
        columns_added: Number of columns added via ALTER TABLE.
        indexes_created: Number of indexes created.
        rows_backfilled: Rows touched by backfill UPDATEs.
        skipped_tables: Tables that don't exist and weren't created.
        errors: One message per failed step.
    """

    success: bool = False
    tables_created: int = 0
    columns_added: int = 0
    indexes_created: int = 0
    rows_backfilled: int = 0
    skipped_tables: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class SqlMigrationResult(BaseModel):
    """Outcome of one ``.sql`` migration file."""

    filename: str
    success: bool
    skipped: bool = False  # already recorded in schema_migrations
    statements: int = 0
    error: str | None = None


# ------------------------------------------------------------------
# Idempotent steps
# ------------------------------------------------------------------


async def column_exists(client: "DatabaseClient", table: str, column: str) -> bool:
    """True if ``table`` has ``column`` (case-insensitive)."""
    columns = await SchemaIntrospector(client).get_columns(table)
    return any(c.name.lower() == column.lower() for c in columns)


async def add_column_if_not_exists(
    client: "DatabaseClient",
    step: ColumnMigration,
) -> bool:
    """Add a column unless it is already there.

    Returns:
        True if the column was added, False if it already existed.

    Raises:
        DBAPIError: If ALTER TABLE fails for a reason other than a
            duplicate column.
    """
    if await column_exists(client, step.table, step.column):
        logger.debug("Column %s.%s already exists, skipping", step.table, step.column)
        return False

    try:
        await client.execute(step.to_sql())
    except DBAPIError as e:
        if "duplicate column name" in str(e.orig).lower():
            logger.info(
                "Column %s.%s already exists (caught during add attempt)",
                step.table,
                step.column,
            )
            return False
        raise

    logger.info("Added column %s.%s", step.table, step.column)
    return True


async def create_index_if_not_exists(
    client: "DatabaseClient",
    step: IndexMigration,
) -> bool:
    """Create an index unless one with the same name exists.

    Returns:
        True if the index was created, False if it already existed.

    Raises:
        ValueError: If any indexed column is missing from the table.
            SQLite would otherwise index the quoted name as a string
            constant.
    """
    introspector = SchemaIntrospector(client)
    if await introspector.index_exists(step.name):
        logger.debug("Index %s already exists, skipping", step.name)
        return False

    existing = {c.name.lower() for c in await introspector.get_columns(step.table)}
    missing = [c for c in step.columns if c.lower() not in existing]
    if missing:
        raise ValueError(
            f"Index {step.name} references missing columns on {step.table}: "
            f"{', '.join(missing)}"
        )

    await client.execute(step.to_sql())
    logger.info("Created index %s on %s(%s)", step.name, step.table, ", ".join(step.columns))
    return True


# ------------------------------------------------------------------
# Migration application
# ------------------------------------------------------------------


async def apply_migrations(
    client: "DatabaseClient",
    migrations: list[TableMigration],
    dry_run: bool = False,
) -> MigrationResult:
    """Bring each table up to date with its ``TableMigration``.

    Failed steps are recorded in ``MigrationResult.errors`` and the
    remaining steps still run -- one bad index does not block the columns
    of the next table.

    Args:
        client: Open ``DatabaseClient`` for the store.
        migrations: Table migrations, applied in order.
        dry_run: If True, count what would change without executing DDL.

    Returns:
        ``MigrationResult`` with per-kind counts.

    Example:
        result = await apply_migrations(store, BILLING_MIGRATIONS)
        if not result.success:
            for error in result.errors:
                print(error)
    """
    result = MigrationResult()
    introspector = SchemaIntrospector(client)

    for migration in migrations:
        table = migration.table

        if not await introspector.table_exists(table):
            if not migration.create_if_missing:
                logger.warning("Table %s does not exist, skipping its migration", table)
                result.skipped_tables.append(table)
                continue
            if not dry_run:
                try:
                    await client.execute(migration.create_sql())
                except DBAPIError as e:
                    result.errors.append(f"Error creating table {table}: {e.orig}")
                    continue
                logger.info("Created table %s", table)
            result.tables_created += 1
            if dry_run:
                result.indexes_created += len(migration.indexes)
                continue

        for step in migration.column_steps():
            try:
                if dry_run:
                    if not await column_exists(client, step.table, step.column):
                        result.columns_added += 1
                elif await add_column_if_not_exists(client, step):
                    result.columns_added += 1
            except DBAPIError as e:
                result.errors.append(
                    f"Error adding column {step.column} to {step.table}: {e.orig}"
                )

        for step in migration.index_steps():
            try:
                if dry_run:
                    if not await introspector.index_exists(step.name):
                        result.indexes_created += 1
                elif await create_index_if_not_exists(client, step):
                    result.indexes_created += 1
            except DBAPIError as e:
                result.errors.append(f"Error creating index {step.name} on {table}: {e.orig}")
            except ValueError as e:
                result.errors.append(f"Error creating index {step.name} on {table}: {e}")

        if dry_run:
            continue

        existing = {c.name.lower() for c in await introspector.get_columns(table)}
        update_sql = migration.backfill_sql(existing)
        if update_sql:
            try:
                changed = await client.execute(update_sql)
            except DBAPIError as e:
                result.errors.append(f"Error updating {table}: {e.orig}")
            else:
                result.rows_backfilled += max(changed, 0)
                if changed > 0:
                    logger.info("Updated %d %s records with default values", changed, table)

    result.success = not result.errors
    return result


# ------------------------------------------------------------------
# SQL file migrations
# ------------------------------------------------------------------


def split_sql_statements(script: str) -> list[str]:
    """Split a SQL script into complete statements.

    Uses ``sqlite3.complete_statement`` so semicolons inside string
    literals or triggers don't end a statement.  Chunks holding only
    comments or whitespace are dropped.
    """
    statements: list[str] = []
    buffer = ""
    for char in script:
        buffer += char
        if char == ";" and sqlite3.complete_statement(buffer):
            statements.append(buffer.strip())
            buffer = ""
    if buffer.strip():
        statements.append(buffer.strip())

    def _has_code(statement: str) -> bool:
        lines = [ln for ln in statement.splitlines() if not ln.strip().startswith("--")]
        return bool("".join(lines).strip(" \t\n;"))

    return [s for s in statements if _has_code(s)]


async def _applied_migrations(client: "DatabaseClient") -> set[str]:
    await client.execute(
        f"CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} ("
        "filename TEXT PRIMARY KEY, applied_at TEXT NOT NULL)"
    )
    rows = await client.select(MIGRATIONS_TABLE, "filename")
    return {r["filename"] for r in rows}


async def run_sql_migrations(
    client: "DatabaseClient",
    migrations_dir: Path,
) -> list[SqlMigrationResult]:
    """Run every ``*.sql`` file in ``migrations_dir`` in filename order.

    Each file runs in its own transaction and is recorded in
    ``schema_migrations`` on success; recorded files are skipped.  A
    failing file is reported and the next file still runs.

    Args:
        client: Open ``DatabaseClient`` for the store.
        migrations_dir: Directory containing ``.sql`` files.

    Returns:
        One ``SqlMigrationResult`` per file found (empty if the directory
        doesn't exist).
    """
    migrations_dir = Path(migrations_dir)
    if not migrations_dir.is_dir():
        logger.info("No migrations directory at %s", migrations_dir)
        return []

    files = sorted(p for p in migrations_dir.iterdir() if p.suffix == ".sql" and p.is_file())
    logger.info("Found %d migration files", len(files))

    applied = await _applied_migrations(client)
    results: list[SqlMigrationResult] = []

    for path in files:
        if path.name in applied:
            results.append(SqlMigrationResult(filename=path.name, success=True, skipped=True))
            continue

        try:
            statements = split_sql_statements(path.read_text(encoding="utf-8"))
        except OSError as e:
            logger.error("Error reading migration %s: %s", path.name, e)
            results.append(SqlMigrationResult(filename=path.name, success=False, error=str(e)))
            continue

        record = (
            f"INSERT INTO {MIGRATIONS_TABLE} (filename, applied_at) VALUES "
            f"('{path.name.replace(chr(39), chr(39) * 2)}', "
            f"'{datetime.now(timezone.utc).isoformat()}')"
        )
        try:
            await client.execute_script([*statements, record])
        except DBAPIError as e:
            logger.error("Error running migration %s: %s", path.name, e.orig)
            results.append(
                SqlMigrationResult(
                    filename=path.name,
                    success=False,
                    statements=len(statements),
                    error=str(e.orig),
                )
            )
            continue

        logger.info("Successfully ran migration %s", path.name)
        results.append(
            SqlMigrationResult(filename=path.name, success=True, statements=len(statements))
        )

    return results


# ------------------------------------------------------------------
# Billing system migrations
# ------------------------------------------------------------------

_TIMESTAMP = "DATETIME DEFAULT CURRENT_TIMESTAMP"

BILLING_MIGRATIONS: list[TableMigration] = [
    TableMigration(
        table="trouble_reports",
        columns=[
            ("id", "INTEGER PRIMARY KEY AUTOINCREMENT"),
            ("phone", "TEXT"),
            ("name", "TEXT"),
            ("location", "TEXT"),
            ("category", "TEXT"),
            ("description", "TEXT"),
            ("status", "TEXT DEFAULT 'pending'"),
            ("assigned_to", "INTEGER"),
            ("resolution", "TEXT"),
            ("created_at", _TIMESTAMP),
            ("updated_at", _TIMESTAMP),
        ],
        indexes=[
            ("idx_trouble_reports_status", ["status"]),
            ("idx_trouble_reports_category", ["category"]),
            ("idx_trouble_reports_assigned_to", ["assigned_to"]),
            ("idx_trouble_reports_created_at", ["created_at"]),
        ],
        backfill={
            "status": "'pending'",
            "created_at": "CURRENT_TIMESTAMP",
            "updated_at": "CURRENT_TIMESTAMP",
        },
        create_if_missing=True,
    ),
    TableMigration(
        table="packages",
        columns=[
            ("status", "TEXT DEFAULT 'active'"),
            ("updated_at", _TIMESTAMP),
        ],
        indexes=[
            ("idx_packages_status", ["status"]),
            ("idx_packages_updated_at", ["updated_at"]),
        ],
        backfill={"status": "'active'", "updated_at": "CURRENT_TIMESTAMP"},
    ),
    TableMigration(
        table="voucher_pricing",
        columns=[
            ("package_id", "INTEGER"),
            ("duration_hours", "INTEGER DEFAULT 24"),
            ("price", "DECIMAL(10,2)"),
            ("commission", "DECIMAL(10,2)"),
        ],
        indexes=[
            ("idx_voucher_pricing_package_id", ["package_id"]),
            ("idx_voucher_pricing_duration", ["duration_hours"]),
        ],
    ),
    TableMigration(
        table="customers",
        columns=[("created_at", _TIMESTAMP), ("updated_at", _TIMESTAMP)],
        indexes=[
            ("idx_customers_created_at", ["created_at"]),
            ("idx_customers_updated_at", ["updated_at"]),
        ],
        backfill={"created_at": "CURRENT_TIMESTAMP", "updated_at": "CURRENT_TIMESTAMP"},
    ),
    TableMigration(
        table="voucher_settings",
        columns=[
            ("id", "INTEGER PRIMARY KEY AUTOINCREMENT"),
            ("name", "TEXT"),
            ("header_text", "TEXT"),
            ("footer_text", "TEXT"),
            ("validity_days", "INTEGER DEFAULT 30"),
            ("created_at", _TIMESTAMP),
            ("updated_at", _TIMESTAMP),
        ],
        indexes=[
            ("idx_voucher_settings_name", ["name"]),
            ("idx_voucher_settings_created_at", ["created_at"]),
        ],
        backfill={
            "validity_days": "30",
            "created_at": "CURRENT_TIMESTAMP",
            "updated_at": "CURRENT_TIMESTAMP",
        },
        create_if_missing=True,
    ),
    TableMigration(
        table="payments",
        columns=[("created_at", _TIMESTAMP)],
        indexes=[("idx_payments_created_at", ["created_at"])],
        backfill={"created_at": "CURRENT_TIMESTAMP"},
    ),
    TableMigration(
        table="invoices",
        columns=[
            ("base_amount", "DECIMAL(10,2)"),
            ("tax_rate", "DECIMAL(5,2)"),
            ("description", "TEXT"),
            ("invoice_type", "TEXT DEFAULT 'monthly'"),
            ("package_name", "TEXT"),
        ],
        indexes=[
            ("idx_invoices_base_amount", ["base_amount"]),
            ("idx_invoices_tax_rate", ["tax_rate"]),
            ("idx_invoices_invoice_type", ["invoice_type"]),
            ("idx_invoices_package_name", ["package_name"]),
        ],
        backfill={
            "base_amount": '"amount"',
            "tax_rate": "0.00",
            "description": "''",
            "invoice_type": "'monthly'",
            "package_name": "''",
        },
    ),
]
