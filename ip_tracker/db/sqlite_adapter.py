"""
SQLite Adapter

The default attribution store: one database file holding the shared
resource-event table plus every partition table.

Behavior that the rest of the service relies on:
- One writer at a time; concurrent writers wait up to the busy timeout
- CREATE TABLE / CREATE INDEX IF NOT EXISTS run under the write lock, so
  racing partition provisioning converges on one table
"""

from typing import Any

from sqlalchemy import Table, inspect, text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import NullPool
from sqlalchemy.schema import CreateIndex, CreateTable

from ip_tracker.db.interface import DatabaseAdapter

# Seconds a connection waits on a locked database before raising
SQLITE_BUSY_TIMEOUT = 15


class SQLiteAdapter(DatabaseAdapter):
    """Attribution store on a local SQLite file through aiosqlite."""

    def create_engine(self, database_url: str, **kwargs) -> AsyncEngine:
        """
        Build an aiosqlite engine.

        - NullPool: every session and DDL call opens its own connection
        - check_same_thread=False: aiosqlite runs the connection in a worker thread
        - timeout: writers queue on the file lock instead of failing at once

        Args:
            database_url: sqlite+aiosqlite:///path/to/file.db
            **kwargs: Engine option overrides
        """
        engine_kwargs = self.get_engine_kwargs()
        engine_kwargs.update(kwargs)

        return create_async_engine(
            database_url,
            poolclass=self.get_pool_class(),
            connect_args=self.get_connect_args(),
            **engine_kwargs
        )

    def get_pool_class(self) -> type[NullPool]:
        return NullPool

    def get_connect_args(self) -> dict[str, Any]:
        return {
            "check_same_thread": False,
            "timeout": SQLITE_BUSY_TIMEOUT,
        }

    def get_engine_kwargs(self) -> dict[str, Any]:
        return {
            "echo": False  # Set to True only for SQL debugging in development
        }

    async def create_table_if_not_exists(
        self,
        connection: AsyncConnection,
        table: Table
    ) -> None:
        """
        Provision a table with IF NOT EXISTS DDL.

        SQLite evaluates IF NOT EXISTS under its write lock, so concurrent
        callers converge on one table.
        """
        await connection.execute(CreateTable(table, if_not_exists=True))
        for index in sorted(table.indexes, key=lambda ix: ix.name):
            await connection.execute(CreateIndex(index, if_not_exists=True))

    async def table_exists(self, connection: AsyncConnection, table_name: str) -> bool:
        return await connection.run_sync(
            lambda sync_conn: inspect(sync_conn).has_table(table_name)
        )

    async def ping(self, session: AsyncSession) -> None:
        await session.execute(text("SELECT 1"))


def get_database_adapter() -> DatabaseAdapter:
    """Adapter for the configured attribution store (SQLite only for now)."""
    return SQLiteAdapter()
