"""Schema introspection, validation, and migrations.

Provides schema comparison (``validate_schema``, ``column_intersection``),
live database introspection (``SchemaIntrospector``), and idempotent
upgrades (``apply_migrations``, ``run_sql_migrations``).

Usage:
    from billing_admin.schema import validate_schema, SchemaIntrospector
    from billing_admin.schema import BILLING_MIGRATIONS, apply_migrations
"""

from billing_admin.schema.billing import REQUIRED_COLUMNS, REQUIRED_TABLES, expected_schema
from billing_admin.schema.comparator import (
    column_intersection,
    columns_only_in_source,
    validate_schema,
)
from billing_admin.schema.introspector import SchemaIntrospector
from billing_admin.schema.migrations import (
    BILLING_MIGRATIONS,
    ColumnMigration,
    IndexMigration,
    MigrationResult,
    SqlMigrationResult,
    TableMigration,
    add_column_if_not_exists,
    apply_migrations,
    create_index_if_not_exists,
    run_sql_migrations,
)
from billing_admin.schema.models import (
    ColumnDiff,
    ColumnSchema,
    ConnectionResult,
    DatabaseSchema,
    IndexSchema,
    SchemaValidationResult,
    TableSchema,
)

__all__ = [
    "validate_schema",
    "column_intersection",
    "columns_only_in_source",
    "SchemaIntrospector",
    "SchemaValidationResult",
    "ColumnDiff",
    "ConnectionResult",
    "ColumnSchema",
    "IndexSchema",
    "TableSchema",
    "DatabaseSchema",
    "REQUIRED_TABLES",
    "REQUIRED_COLUMNS",
    "expected_schema",
    "BILLING_MIGRATIONS",
    "ColumnMigration",
    "IndexMigration",
    "TableMigration",
    "MigrationResult",
    "SqlMigrationResult",
    "add_column_if_not_exists",
    "create_index_if_not_exists",
    "apply_migrations",
    "run_sql_migrations",
]
