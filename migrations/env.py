"""
Alembic Environment Configuration

This file configures Alembic for the IP tracker's storage.
It handles:
- Database connection from settings
- Model imports for autogenerate
- Sync engine creation for migrations (Alembic uses sync drivers)

Only the shared resource-event store is migrated; per-path partition
tables are provisioned at runtime by the partition router.
"""

from logging.config import fileConfig
from sqlalchemy import pool, create_engine
from sqlalchemy.engine import Connection

from alembic import context

# Import settings and models
from ip_tracker.core.setting import settings
from sqlmodel import SQLModel
from ip_tracker.db import models  # noqa: F401  registers ResourceEventLog on SQLModel.metadata
from ip_tracker.db.models import PARTITION_TABLE_PREFIX

# this is the Alembic Config object
config = context.config


def to_sync_url(database_url: str) -> str:
    """
    Convert an async SQLite URL to its sync equivalent.

    - sqlite+aiosqlite:///absolute/or/./relative -> sqlite:///...
    - sqlite+aiosqlite://./relative -> sqlite:///./relative
    """
    if database_url.startswith("sqlite+aiosqlite:///"):
        return database_url.replace("sqlite+aiosqlite:///", "sqlite:///", 1)
    if database_url.startswith("sqlite+aiosqlite://"):
        return database_url.replace("sqlite+aiosqlite://", "sqlite:///", 1)
    return database_url


database_url = to_sync_url(settings.DATABASE_URL)
config.set_main_option("sqlalchemy.url", database_url)

# Interpret the config file for Python logging.
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Get SQLModel metadata for autogenerate
target_metadata = SQLModel.metadata


def include_object(obj, name, type_, reflected, compare_to):
    """Keep runtime-provisioned partition tables out of autogenerate."""
    if type_ == "table" and name and name.startswith(PARTITION_TABLE_PREFIX):
        return False
    return True


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode.

    Calls to context.execute() here emit the given string to the
    script output.
    """
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        include_object=include_object,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    """Run migrations with a connection."""
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        include_object=include_object,
        render_as_batch=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    connectable = create_engine(
        database_url,
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        do_run_migrations(connection)

    connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
