"""
Partition Router

Classifies attribution events into partitions and hands out the storage
handle (a SQLAlchemy Table) for each partition.

Partitions:
- root: GET requests for "/"
- resource:<type>:<id>: one physical table per resource, e.g. every
  request under /products/<id>
- catch-all: everything else
- the shared resource-event store for explicit resource events, which is
  filtered by (resource_type, resource_id, action) instead of partitioned

Design Decisions:
- Tables are created lazily on the first event for their key
- Creation is delegated to the database adapter as IF NOT EXISTS DDL, so two
  first writers racing on a new key both succeed against one table
- The key -> handle cache is a plain dict without a lock; racing writers
  store the same Table object, so last-writer-wins is harmless
- Reads never create tables: an unknown partition reads as empty

Known limitation: one table per distinct resource id, with no upper bound.
"""

import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import unquote

from sqlalchemy import MetaData, Table
from sqlalchemy.ext.asyncio import AsyncEngine

from ip_tracker.core.exceptions import InvalidQueryParameterError
from ip_tracker.db.interface import DatabaseAdapter
from ip_tracker.db.models import (
    PARTITION_TABLE_PREFIX,
    RESOURCE_EVENTS_TABLE,
    ResourceEventLog,
    build_partition_table,
)

logger = logging.getLogger(__name__)

ROOT = "root"
CATCH_ALL = "catch-all"
RESOURCE = "resource"
RESOURCE_STORE = "resource-events"

PRODUCT_RESOURCE_TYPE = "product"
UNKNOWN_TOKEN = "unknown"
MAX_TOKEN_LENGTH = 48
TOKEN_DIGEST_LENGTH = 10

_RESOURCE_PATH_RE = re.compile(r"^/products?/([^/?#]*)")
_UNSAFE_TOKEN_CHARS = re.compile(r"[^a-z0-9]+")
_PARTITION_TOKEN_RE = re.compile(r"^[a-z0-9]+(?:_[a-z0-9]+)*(?:__[0-9a-f]{%d})?$" % TOKEN_DIGEST_LENGTH)


def _token_digest(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:TOKEN_DIGEST_LENGTH]


def normalize_token(token: Optional[str]) -> str:
    """
    Turn a path token or resource id into a table-safe name fragment.

    Percent-decodes, lowercases and collapses anything outside [a-z0-9]
    into single underscores. When that changes the value (case, punctuation,
    truncation), "__" plus a digest of the decoded value is appended, so
    distinct ids never share a fragment. An empty token becomes "unknown".

    Example:
        normalize_token("abc_123") -> "abc_123"
        normalize_token("ABC-123") -> "abc_123__<digest>"
        normalize_token("") -> "unknown"
    """
    raw = unquote(token or "")
    if not raw:
        return UNKNOWN_TOKEN

    cleaned = _UNSAFE_TOKEN_CHARS.sub("_", raw.lower()).strip("_")
    cleaned = cleaned[:MAX_TOKEN_LENGTH].rstrip("_")
    if cleaned == raw:
        return cleaned
    return f"{cleaned or UNKNOWN_TOKEN}__{_token_digest(raw)}"


def resource_token(path: str) -> Optional[str]:
    """
    The decoded resource id in a /product(s)/<token> path, or None.

    Example:
        resource_token("/products/a%20b?x=1") -> "a b"
    """
    match = _RESOURCE_PATH_RE.match(_route_path(path or ""))
    if match is None:
        return None
    return unquote(match.group(1))


def _key_token(value: str) -> str:
    # Fragments already in partition-name form are taken as they are
    if _PARTITION_TOKEN_RE.match(value):
        return value
    return normalize_token(value)


@dataclass(frozen=True)
class PartitionKey:
    """Identifies one partition; build instances through the classmethods."""

    kind: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None

    @classmethod
    def root(cls) -> "PartitionKey":
        return cls(ROOT)

    @classmethod
    def catch_all(cls) -> "PartitionKey":
        return cls(CATCH_ALL)

    @classmethod
    def resource_store(cls) -> "PartitionKey":
        return cls(RESOURCE_STORE)

    @classmethod
    def resource(cls, resource_type: str, resource_id: Optional[str]) -> "PartitionKey":
        return cls(RESOURCE, normalize_token(resource_type), normalize_token(resource_id))

    @classmethod
    def parse(cls, value: Optional[str]) -> "PartitionKey":
        """
        Rebuild a key from its string form.

        Raises:
            InvalidQueryParameterError: If the value is not a partition key
        """
        if not value:
            raise InvalidQueryParameterError("partition")
        if value == ROOT:
            return cls.root()
        if value == CATCH_ALL:
            return cls.catch_all()
        if value == RESOURCE_STORE:
            return cls.resource_store()
        parts = value.split(":", 2)
        if len(parts) == 3 and parts[0] == RESOURCE and parts[1] and parts[2]:
            return cls(RESOURCE, _key_token(parts[1]), _key_token(parts[2]))
        raise InvalidQueryParameterError("partition", f"is not a partition key: '{value}'")

    @property
    def name(self) -> str:
        if self.kind == RESOURCE:
            return f"{RESOURCE}:{self.resource_type}:{self.resource_id}"
        return self.kind

    @property
    def table_name(self) -> str:
        if self.kind == RESOURCE_STORE:
            return RESOURCE_EVENTS_TABLE
        if self.kind == RESOURCE:
            # Tokens never contain "___" or end in "_", which keeps type and id apart
            return f"{PARTITION_TABLE_PREFIX}{self.resource_type}___{self.resource_id}"
        return PARTITION_TABLE_PREFIX + self.kind.replace("-", "_")

    def __str__(self) -> str:
        return self.name


def _route_path(path: str) -> str:
    return path.split("?", 1)[0].split("#", 1)[0]


def classify(method: str, path: str) -> PartitionKey:
    """
    Classify a request into its partition.

    Rules, in order:
    - GET "/" goes to the root partition
    - /product/<token> and /products/<token> go to that product's partition
    - everything else goes to the catch-all partition

    The query string is ignored for classification.
    """
    route_path = _route_path(path or "")
    if (method or "").upper() == "GET" and route_path == "/":
        return PartitionKey.root()

    match = _RESOURCE_PATH_RE.match(route_path)
    if match:
        return PartitionKey.resource(PRODUCT_RESOURCE_TYPE, match.group(1))

    return PartitionKey.catch_all()


def candidate_keys(path: str) -> list[PartitionKey]:
    """
    Every partition an event for this path could have been written to.

    Only "/" differs by method: GET lands in root, anything else in
    catch-all.
    """
    keys = [classify("GET", path)]
    other = classify("POST", path)
    if other not in keys:
        keys.append(other)
    return keys


class PartitionRouter:
    """
    Get-or-create access to partition tables.

    Holds the in-process key -> Table cache. One router per tracking
    context; single-process semantics only.
    """

    def __init__(self, engine: AsyncEngine, adapter: DatabaseAdapter):
        """
        Args:
            engine: Engine used for provisioning DDL and existence checks
            adapter: Database adapter providing dialect-specific DDL
        """
        self.engine = engine
        self.adapter = adapter
        self.metadata = MetaData()
        self._handles: dict[str, Table] = {}

    def _table_for(self, key: PartitionKey) -> Table:
        if key.kind == RESOURCE_STORE:
            return ResourceEventLog.__table__
        existing = self.metadata.tables.get(key.table_name)
        if existing is not None:
            return existing
        return build_partition_table(key.table_name, self.metadata)

    def cached_keys(self) -> list[str]:
        return sorted(self._handles)

    async def get_or_create(self, key: PartitionKey) -> Table:
        """
        Return the table for a partition, creating it in storage if needed.

        Args:
            key: Partition to resolve

        Returns:
            Table handle for inserts and queries

        Raises:
            SQLAlchemyError: If provisioning fails (the writer retries)
        """
        handle = self._handles.get(key.name)
        if handle is not None:
            return handle

        table = self._table_for(key)
        async with self.engine.begin() as connection:
            await self.adapter.create_table_if_not_exists(connection, table)

        self._handles[key.name] = table
        logger.info(f"Partition '{key}' ready (table {table.name})")
        return table

    async def resolve(self, key: PartitionKey) -> Optional[Table]:
        """
        Return the table for a partition if it exists in storage.

        Unlike get_or_create this never provisions anything.

        Returns:
            Table handle, or None when no event has reached the partition yet
        """
        handle = self._handles.get(key.name)
        if handle is not None:
            return handle

        async with self.engine.connect() as connection:
            exists = await self.adapter.table_exists(connection, key.table_name)
        if not exists:
            return None

        table = self._table_for(key)
        self._handles[key.name] = table
        return table
