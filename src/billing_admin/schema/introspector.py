"""SQLite schema introspection via ``sqlite_master`` and PRAGMAs.

This module queries a live database to extract schema information:
- Tables (excluding SQLite internal tables)
- Columns, declared types, NOT NULL flags, defaults, primary key positions
- Indexes (name, columns, uniqueness, origin)

Works on top of any ``DatabaseClient`` -- the introspector never opens a
connection of its own.
"""

from billing_admin.adapters.base import DatabaseClient
from billing_admin.adapters.sqlite import quote_identifier
from billing_admin.schema.models import (
    ColumnSchema,
    DatabaseSchema,
    IndexSchema,
    TableSchema,
)


class SchemaIntrospector:
    """Introspects a SQLite database schema.

    Usage:
        async with open_store(db_path) as store:
            introspector = SchemaIntrospector(store)

            # Full schema (tables, columns, indexes)
            schema = await introspector.introspect()

            # Or just column names for validation
            columns = await introspector.get_column_names()
    """

    def __init__(
        self,
        client: DatabaseClient,
        excluded_tables: set[str] | None = None,
    ) -> None:
        """Initialize with a database client.

        Args:
            client: Open ``DatabaseClient`` for the database to inspect.
            excluded_tables: Table names to skip.  ``sqlite_*`` internal
                tables are always skipped.
        """
        self._client = client
        self.excluded_tables: set[str] = excluded_tables or set()

    async def introspect(self) -> DatabaseSchema:
        """Introspect tables, columns and indexes."""
        db_schema = DatabaseSchema()

        for table_name in await self.get_tables():
            table = TableSchema(name=table_name)
            table.columns = {c.name: c for c in await self.get_columns(table_name)}
            table.indexes = {i.name: i for i in await self.get_indexes(table_name)}
            db_schema.tables[table_name] = table

        return db_schema

    async def get_column_names(self) -> dict[str, set[str]]:
        """Get column names for all tables (simplified for comparator).

        Returns:
            Dict mapping table name to set of column names
        """
        result: dict[str, set[str]] = {}
        for table_name in await self.get_tables():
            result[table_name] = {c.name for c in await self.get_columns(table_name)}
        return result

    async def get_tables(self) -> list[str]:
        """Get all user table names, sorted."""
        rows = await self._client.fetch(
            "SELECT name FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' "
            "ORDER BY name"
        )
        return [r["name"] for r in rows if r["name"] not in self.excluded_tables]

    async def table_exists(self, table_name: str) -> bool:
        """True if ``table_name`` is a table in the database."""
        rows = await self._client.fetch(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = :name",
            {"name": table_name},
        )
        return bool(rows)

    async def index_exists(self, index_name: str) -> bool:
        """True if an index named ``index_name`` exists."""
        rows = await self._client.fetch(
            "SELECT name FROM sqlite_master WHERE type = 'index' AND name = :name",
            {"name": index_name},
        )
        return bool(rows)

    async def get_columns(self, table_name: str) -> list[ColumnSchema]:
        """Get columns for a table in declaration order (empty if no table)."""
        rows = await self._client.fetch(
            f"PRAGMA table_info({quote_identifier(table_name)})"
        )
        return [
            ColumnSchema(
                cid=r["cid"],
                name=r["name"],
                data_type=(r["type"] or "").upper(),
                not_null=bool(r["notnull"]),
                default=r["dflt_value"],
                primary_key=r["pk"],
            )
            for r in rows
        ]

    async def get_indexes(self, table_name: str) -> list[IndexSchema]:
        """Get indexes for a table, including automatic ones."""
        index_rows = await self._client.fetch(
            f"PRAGMA index_list({quote_identifier(table_name)})"
        )
        indexes: list[IndexSchema] = []
        for row in index_rows:
            info = await self._client.fetch(
                f"PRAGMA index_info({quote_identifier(row['name'])})"
            )
            indexes.append(
                IndexSchema(
                    name=row["name"],
                    table=table_name,
                    columns=[
                        i["name"]
                        for i in sorted(info, key=lambda i: i["seqno"])
                        if i["name"] is not None  # expression index term
                    ],
                    is_unique=bool(row["unique"]),
                    origin=row["origin"],
                )
            )
        return indexes
