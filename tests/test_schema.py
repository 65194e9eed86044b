"""Tests for schema introspection, comparison, and store validation."""

import inspect
import sqlite3

import pytest

from billing_admin.factory import connect_and_validate, open_store
from billing_admin.schema.billing import REQUIRED_COLUMNS, REQUIRED_TABLES, expected_schema
from billing_admin.schema.comparator import (
    column_intersection,
    columns_only_in_source,
    validate_schema,
)
from billing_admin.schema.introspector import SchemaIntrospector
from billing_admin.schema.models import SchemaValidationResult


# ------------------------------------------------------------------
# Comparator (pure logic)
# ------------------------------------------------------------------


class TestValidateSchema:
    """Set-based validation of actual vs expected columns."""

    def test_valid_when_everything_present(self):
        """Extra columns don't matter."""
        result = validate_schema(
            {"customers": {"id", "name", "email"}},
            {"customers": {"id", "name"}},
        )
        assert result.valid
        assert result.error_count == 0
        assert result.format_report() == "Schema valid"

    def test_case_insensitive(self):
        """Table and column names match regardless of case."""
        result = validate_schema({"Customers": {"ID", "Name"}}, {"customers": {"id", "name"}})
        assert result.valid

    def test_missing_table_and_column(self):
        """Missing tables and columns are reported in expected spelling."""
        result = validate_schema(
            {"customers": {"id"}},
            {"customers": {"id", "name"}, "invoices": {"id"}},
        )
        assert not result.valid
        assert result.missing_tables == ["invoices"]
        assert [(d.table, d.column) for d in result.missing_columns] == [("customers", "name")]
        assert result.error_count == 2

    def test_extra_tables_are_warnings(self):
        """Tables nobody expects don't invalidate the schema."""
        result = validate_schema({"customers": {"id"}, "scratch": {"x"}}, {"customers": {"id"}})
        assert result.valid
        assert result.extra_tables == ["scratch"]

    def test_empty_expected_set_checks_existence_only(self):
        """An expected table with no columns only has to exist."""
        assert validate_schema({"odps": {"id"}}, {"odps": set()}).valid
        assert not validate_schema({}, {"odps": set()}).valid

    def test_report_lists_problems(self):
        """format_report() names every missing table and column."""
        report = SchemaValidationResult(
            valid=False,
            missing_tables=["technicians"],
        ).format_report()
        assert "Missing tables (1)" in report
        assert "technicians" in report


class TestColumnIntersection:
    """Column projection between two versions of a table."""

    def test_keeps_source_order_and_spelling(self):
        """Pairs follow the source order with each side's own spelling."""
        pairs = column_intersection(["id", "Name", "old_col", "price"], ["PRICE", "ID", "name", "status"])
        assert pairs == [("id", "ID"), ("Name", "name"), ("price", "PRICE")]

    def test_disjoint(self):
        """No shared columns gives an empty list."""
        assert column_intersection(["a", "b"], ["c"]) == []

    def test_duplicate_case_variants_counted_once(self):
        """Two source spellings of one name produce a single pair."""
        assert column_intersection(["id", "ID"], ["id"]) == [("id", "id")]

    def test_columns_only_in_source(self):
        """Source columns the destination lacks."""
        assert columns_only_in_source(["id", "old_col"], ["ID"]) == ["old_col"]


# ------------------------------------------------------------------
# Introspector
# ------------------------------------------------------------------


class TestSchemaIntrospector:
    """PRAGMA-based introspection over a DatabaseClient."""

    @pytest.mark.parametrize(
        "method_name",
        ["introspect", "get_column_names", "get_tables", "table_exists",
         "index_exists", "get_columns", "get_indexes"],
    )
    def test_method_is_coroutine(self, method_name):
        """Each query method is an async def."""
        assert inspect.iscoroutinefunction(getattr(SchemaIntrospector, method_name))

    @pytest.mark.asyncio
    async def test_get_tables_sorted_and_excluded(self, store):
        """Tables come back sorted; excluded and sqlite_* tables are skipped."""
        async with open_store(store) as db:
            tables = await SchemaIntrospector(db, excluded_tables={"odps"}).get_tables()
        assert tables == ["cable_routes", "customers", "network_segments", "packages"]

    @pytest.mark.asyncio
    async def test_get_columns(self, tmp_path, make_store):
        """Columns carry type, NOT NULL, default and primary-key position."""
        db_path = make_store(
            tmp_path / "s.db",
            tables={
                "invoices": (
                    "CREATE TABLE invoices (id INTEGER PRIMARY KEY, amount decimal(10,2) NOT NULL, "
                    "status TEXT DEFAULT 'unpaid')"
                )
            },
            rows={},
        )
        async with open_store(db_path) as db:
            columns = await SchemaIntrospector(db).get_columns("invoices")

        assert [c.name for c in columns] == ["id", "amount", "status"]
        assert columns[0].primary_key == 1
        assert columns[1].data_type == "DECIMAL(10,2)"
        assert columns[1].not_null
        assert columns[2].default == "'unpaid'"

    @pytest.mark.asyncio
    async def test_get_columns_of_missing_table(self, store):
        """A missing table has no columns."""
        async with open_store(store) as db:
            assert await SchemaIntrospector(db).get_columns("nope") == []

    @pytest.mark.asyncio
    async def test_indexes(self, store):
        """Created indexes are reported with their columns."""
        conn = sqlite3.connect(store)
        conn.execute("CREATE UNIQUE INDEX idx_customers_name ON customers(name, package_id)")
        conn.commit()
        conn.close()

        async with open_store(store) as db:
            introspector = SchemaIntrospector(db)
            indexes = await introspector.get_indexes("customers")
            assert await introspector.index_exists("idx_customers_name")
            assert not await introspector.index_exists("idx_nope")

        [index] = indexes
        assert index.name == "idx_customers_name"
        assert index.columns == ["name", "package_id"]
        assert index.is_unique
        assert index.origin == "c"

    @pytest.mark.asyncio
    async def test_introspect(self, store):
        """introspect() builds the full schema tree."""
        async with open_store(store) as db:
            schema = await SchemaIntrospector(db).introspect()
        assert set(schema.tables) == {
            "packages", "customers", "odps", "cable_routes", "network_segments",
        }
        assert schema.tables["packages"].column_names == ["id", "name", "price"]

    @pytest.mark.asyncio
    async def test_get_column_names(self, store):
        """Column names per table for the comparator."""
        async with open_store(store) as db:
            names = await SchemaIntrospector(db).get_column_names()
        assert names["odps"] == {"id", "name", "capacity"}


# ------------------------------------------------------------------
# Billing requirements and connect_and_validate
# ------------------------------------------------------------------


def _full_billing_store(path):
    conn = sqlite3.connect(path)
    for table in REQUIRED_TABLES:
        columns = sorted(REQUIRED_COLUMNS.get(table, {"id"}))
        conn.execute(f"CREATE TABLE {table} ({', '.join(columns)})")
    conn.commit()
    conn.close()
    return path


class TestConnectAndValidate:
    """Validation of the live store against the billing requirements."""

    def test_expected_schema_covers_required_tables(self):
        """Every required table appears; column sets are copies."""
        expected = expected_schema()
        assert set(expected) == set(REQUIRED_TABLES)
        expected["invoices"].add("mutated")
        assert "mutated" not in REQUIRED_COLUMNS["invoices"]

    @pytest.mark.asyncio
    async def test_valid_store(self, tmp_path):
        """A store with every required table and column passes."""
        db_path = _full_billing_store(tmp_path / "billing.db")
        result = await connect_and_validate(db_path)
        assert result.success
        assert result.schema_valid
        assert result.db_path == str(db_path)

    @pytest.mark.asyncio
    async def test_missing_columns(self, tmp_path):
        """A store missing invoice columns fails with a report."""
        db_path = _full_billing_store(tmp_path / "billing.db")
        conn = sqlite3.connect(db_path)
        conn.execute("DROP TABLE invoices")
        conn.execute("CREATE TABLE invoices (id, amount)")
        conn.commit()
        conn.close()

        result = await connect_and_validate(db_path)

        assert not result.success
        assert not result.schema_valid
        missing = {d.column for d in result.schema_report.missing_columns}
        assert {"base_amount", "tax_rate", "invoice_type"} <= missing
        assert "Schema validation failed" in result.error

    @pytest.mark.asyncio
    async def test_custom_expectations(self, store):
        """Callers can validate against their own expectations."""
        result = await connect_and_validate(store, {"packages": {"id", "name"}})
        assert result.success

    @pytest.mark.asyncio
    async def test_missing_store(self, tmp_path):
        """A missing file is reported, not created."""
        result = await connect_and_validate(tmp_path / "absent.db")
        assert not result.success
        assert "not found" in result.error
        assert not (tmp_path / "absent.db").exists()
