"""
Database Models for the IP Tracking Service

This module defines the storage schemas for attribution events:
- ResourceEventLog: the shared store for explicit resource events
  (resource_type/resource_id/action), queried by composite filter
- build_partition_table: the table layout of a per-key partition
  (root, catch-all, one per resource), created lazily at runtime

Design Decisions:
- Partitions share one column layout so events read back the same way
  wherever they were stored
- hashed_ip is indexed for unique-visitor counts
- path is indexed on partitions, which are queried by exact path
- The "metadata" column is exposed as event_metadata on the model because
  SQLAlchemy reserves the attribute name
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Column, DateTime, Index, Integer, MetaData, String, Table, Text
from sqlmodel import Field, SQLModel

RESOURCE_EVENTS_TABLE = "ip_resource_logs"
PARTITION_TABLE_PREFIX = "ip_logs_"


class ResourceEventLog(SQLModel, table=True):
    """
    Shared store for explicit resource events.

    Fields:
    - hashed_ip: Salted digest of the canonical client address (nullable)
    - raw_ip: Literal address, only when raw retention was enabled
    - resource_type/resource_id/action: The business entity and what happened
    - event_metadata: Free-form key/value data from the caller
    - created_at: Stamped by the event writer

    Indexes:
    - (resource_type, resource_id, action): composite filter used by stats
    - hashed_ip: distinct counts
    - created_at: newest-first listing
    """
    __tablename__ = RESOURCE_EVENTS_TABLE
    __table_args__ = (
        Index(
            "ix_ip_resource_logs_resource",
            "resource_type",
            "resource_id",
            "action",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    hashed_ip: Optional[str] = Field(
        default=None,
        sa_column=Column(String(64), nullable=True, index=True)
    )
    raw_ip: Optional[str] = Field(
        default=None,
        sa_column=Column(String(45), nullable=True)  # IPv6 max length
    )
    user_agent: Optional[str] = Field(
        default=None,
        sa_column=Column(String(500), nullable=True)
    )
    method: str = Field(sa_column=Column(String(10), nullable=False))
    path: str = Field(sa_column=Column(Text, nullable=False))
    resource_type: str = Field(sa_column=Column(String(50), nullable=False))
    resource_id: str = Field(sa_column=Column(String(100), nullable=False))
    action: str = Field(sa_column=Column(String(50), nullable=False))
    event_metadata: Optional[dict[str, Any]] = Field(
        default=None,
        sa_column=Column("metadata", JSON, nullable=True)
    )
    created_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True)
    )


def build_partition_table(name: str, metadata: MetaData) -> Table:
    """
    Define the table backing one partition.

    Args:
        name: Table name (see PartitionKey.table_name)
        metadata: MetaData collection the table is registered in

    Returns:
        Table definition; nothing is created in storage here
    """
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("hashed_ip", String(64), nullable=True),
        Column("raw_ip", String(45), nullable=True),
        Column("user_agent", String(500), nullable=True),
        Column("method", String(10), nullable=False),
        Column("path", Text, nullable=False),
        Column("resource_type", String(50), nullable=True),
        Column("resource_id", String(100), nullable=True),
        Column("action", String(50), nullable=True),
        Column("metadata", JSON, nullable=True),
        Column("created_at", DateTime(timezone=True), nullable=False),
        Index(f"ix_{name}_hashed_ip", "hashed_ip"),
        Index(f"ix_{name}_path", "path"),
        Index(f"ix_{name}_created_at", "created_at"),
    )
