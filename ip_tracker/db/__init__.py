"""
Storage layer for attribution events.

- DatabaseAdapter: dialect-specific engine setup, partition DDL and ready-check
- ResourceEventLog: the shared resource-event table
- build_partition_table: the layout every path partition is created with
- engine / async_session_maker: process defaults built from DATABASE_URL
"""

from ip_tracker.db.interface import DatabaseAdapter
from ip_tracker.db.models import ResourceEventLog, build_partition_table
from ip_tracker.db.session import async_session_maker, create_session_maker, db_adapter, engine

__all__ = [
    "DatabaseAdapter",
    "ResourceEventLog",
    "build_partition_table",
    "async_session_maker",
    "create_session_maker",
    "db_adapter",
    "engine",
]
