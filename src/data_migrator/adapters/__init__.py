"""Database adapters package.

Provides the ``DatabaseClient`` Protocol and the async PostgreSQL
implementation used by the database endpoint.

Usage:
    from data_migrator.adapters import DatabaseClient, AsyncPostgresAdapter
"""

from data_migrator.adapters.base import DatabaseClient
from data_migrator.adapters.postgres import AsyncPostgresAdapter

__all__ = [
    "DatabaseClient",
    "AsyncPostgresAdapter",
]
