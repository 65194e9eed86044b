"""Schema comparison using set operations.

Compares expected columns against actual columns from the database, and
computes the column intersection used to project rows between two
schema versions of the same table.  SQLite identifiers are
case-insensitive, so every comparison here is too.

Pure logic -- no I/O, no database connections.

Usage:
    from billing_admin.schema.comparator import validate_schema
    from billing_admin.schema.introspector import SchemaIntrospector

    actual_columns = await SchemaIntrospector(store).get_column_names()
    result = validate_schema(actual_columns, REQUIRED_COLUMNS)
    if not result.valid:
        print(result.format_report())
"""

from collections.abc import Iterable

from billing_admin.schema.models import ColumnDiff, SchemaValidationResult


def _fold(names: Iterable[str]) -> dict[str, str]:
    """Map lower-cased name -> original spelling (first occurrence wins)."""
    folded: dict[str, str] = {}
    for name in names:
        folded.setdefault(name.lower(), name)
    return folded


def validate_schema(
    actual_columns: dict[str, set[str]],
    expected_columns: dict[str, set[str]],
) -> SchemaValidationResult:
    """Validate actual database schema against expected columns.

    Performs case-insensitive set operations to find:
    - Missing tables: Tables in *expected_columns* but not in *actual_columns*
    - Missing columns: Columns in *expected_columns* but not in the actual table
    - Extra tables: Tables in *actual_columns* but not in *expected_columns*
      (warning only -- does not affect ``valid`` status)

    An expected table with an empty column set only has to exist.

    Args:
        actual_columns: Dict mapping table name to set of column names,
            as returned by ``SchemaIntrospector.get_column_names()``.
        expected_columns: Dict mapping table name to set of expected column
            names.

    Returns:
        ``SchemaValidationResult``; names are reported in the spelling of
        *expected_columns* (missing) or *actual_columns* (extra).

    Examples:
        >>> result = validate_schema(
        ...     {"Customers": {"ID", "name"}},
        ...     {"customers": {"id", "name"}},
        ... )
        >>> result.valid
        True

        >>> result = validate_schema(
        ...     {"customers": {"id"}},
        ...     {"customers": {"id", "name"}},
        ... )
        >>> result.missing_columns[0].column
        'name'
    """
    actual_tables = _fold(actual_columns.keys())
    expected_tables = _fold(expected_columns.keys())

    missing_tables: list[str] = sorted(
        expected_tables[key] for key in expected_tables.keys() - actual_tables.keys()
    )
    extra_tables: list[str] = sorted(
        actual_tables[key] for key in actual_tables.keys() - expected_tables.keys()
    )

    missing_columns: list[ColumnDiff] = []
    for key in sorted(expected_tables.keys() & actual_tables.keys()):
        table_name = expected_tables[key]
        expected_cols = _fold(expected_columns[table_name])
        actual_cols = _fold(actual_columns[actual_tables[key]])

        for col_key in sorted(expected_cols.keys() - actual_cols.keys()):
            col_name = expected_cols[col_key]
            missing_columns.append(
                ColumnDiff(
                    table=table_name,
                    column=col_name,
                    message=f"Column '{col_name}' missing from table '{table_name}'",
                )
            )

    is_valid = not missing_tables and not missing_columns

    return SchemaValidationResult(
        valid=is_valid,
        missing_tables=missing_tables,
        missing_columns=missing_columns,
        extra_tables=extra_tables,
    )


def column_intersection(
    source_columns: list[str],
    destination_columns: list[str],
) -> list[tuple[str, str]]:
    """Columns present in both schemas, compared case-insensitively.

    Order follows *source_columns*.

    Returns:
        ``(source_name, destination_name)`` pairs -- the source spelling is
        the key to read from a source row, the destination spelling is the
        column to write.

    Example:
        >>> column_intersection(["id", "Name", "old_col"], ["ID", "name", "price"])
        [('id', 'ID'), ('Name', 'name')]
    """
    destination = _fold(destination_columns)
    pairs: list[tuple[str, str]] = []
    seen: set[str] = set()
    for name in source_columns:
        key = name.lower()
        if key in destination and key not in seen:
            pairs.append((name, destination[key]))
            seen.add(key)
    return pairs


def columns_only_in_source(
    source_columns: list[str],
    destination_columns: list[str],
) -> list[str]:
    """Source columns with no case-insensitive match in the destination."""
    destination = {c.lower() for c in destination_columns}
    return [c for c in source_columns if c.lower() not in destination]
