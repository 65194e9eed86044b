"""Database adapters package.

Provides the ``DatabaseClient`` Protocol and the async SQLite adapter
used for the billing store, its backups, and scratch restore copies.

Usage:
    from billing_admin.adapters import DatabaseClient, AsyncSQLiteAdapter
"""

from billing_admin.adapters.base import CheckpointOutcome, DatabaseClient, ReplaceOutcome
from billing_admin.adapters.sqlite import (
    AsyncSQLiteAdapter,
    is_identifier,
    quote_identifier,
)

__all__ = [
    "DatabaseClient",
    "AsyncSQLiteAdapter",
    "CheckpointOutcome",
    "ReplaceOutcome",
    "is_identifier",
    "quote_identifier",
]
