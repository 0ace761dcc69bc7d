"""
Database Abstraction Interface

Adapters own everything dialect-specific about the attribution store:
- Engine configuration (pool class, driver arguments)
- Idempotent partition provisioning
- Table existence checks for read-only partition lookups
- The ready-check the event writer runs before its first write

The rest of the codebase only talks to AsyncEngine, AsyncSession and
these methods, so a new backend means one new adapter class.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from sqlalchemy import Table
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncSession
from sqlalchemy.pool import Pool


class DatabaseAdapter(ABC):
    """
    Contract between the attribution services and a storage backend.

    To add a backend:
    1. Subclass DatabaseAdapter and implement every abstract method
    2. Return the new adapter from get_database_adapter()
    """

    @abstractmethod
    def create_engine(self, database_url: str, **kwargs) -> AsyncEngine:
        """
        Build the async engine for the attribution store.

        Args:
            database_url: Async connection string
            **kwargs: Overrides merged over get_engine_kwargs()
        """

    @abstractmethod
    def get_pool_class(self) -> Optional[type[Pool]]:
        """Pool class for the engine, or None for SQLAlchemy's default."""

    @abstractmethod
    def get_connect_args(self) -> dict[str, Any]:
        """Arguments handed to the DBAPI connect() call."""

    @abstractmethod
    def get_engine_kwargs(self) -> dict[str, Any]:
        """Extra create_async_engine options."""

    @abstractmethod
    async def create_table_if_not_exists(
        self,
        connection: AsyncConnection,
        table: Table
    ) -> None:
        """
        Create a table and its indexes unless they already exist.

        Must be idempotent under concurrent calls: two connections creating
        the same table at the same time must both succeed.

        Args:
            connection: Connection inside an open transaction
            table: Table definition to provision
        """

    @abstractmethod
    async def table_exists(self, connection: AsyncConnection, table_name: str) -> bool:
        """Check whether a partition table exists, without creating it."""

    @abstractmethod
    async def ping(self, session: AsyncSession) -> None:
        """
        Round-trip a trivial statement to prove storage is reachable.

        Raises:
            SQLAlchemyError: If the database cannot be reached
        """
