"""
Database Session Management

This module handles async database connections using SQLAlchemy's async engine.
Uses a database abstraction layer to support different database backends.

The engine and session factory here are the process defaults used when the
tracking context is built from settings. Tests build their own against a
temporary database.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ip_tracker.core.setting import settings
from ip_tracker.db.sqlite_adapter import get_database_adapter

# Get the database adapter (currently SQLite by default)
# To switch databases, just change the adapter returned by get_database_adapter()
db_adapter = get_database_adapter()

# The adapter handles all database-specific configuration
engine = db_adapter.create_engine(
    settings.DATABASE_URL
)


def create_session_maker(bind: AsyncEngine) -> async_sessionmaker:
    """
    Create an async session factory bound to an engine.

    Args:
        bind: Engine the sessions connect through

    Returns:
        Session factory producing async sessions
    """
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,  # Prevents SQLAlchemy from expiring objects after commit
        autoflush=False,
    )


async_session_maker = create_session_maker(engine)
