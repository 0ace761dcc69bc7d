"""
Statistics Service

This service answers aggregate and listing queries over attribution events.

Design Decisions:
- Reads resolve partitions through the router but never create them;
  a partition nobody wrote to reads as empty
- Path queries look in every partition the path can be classified into
  (for "/" that is root and catch-all) and filter on the exact path
- Resource queries combine the shared resource-event store with the
  resource's own partition
- Unique counts are distinct non-null hashed addresses
- Query errors propagate to the caller; nothing is retried here
"""

from typing import Any, Iterable, Optional, Sequence, Union

from sqlalchemy import Table, distinct, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ip_tracker.core.exceptions import DatabaseError, InvalidQueryParameterError
from ip_tracker.services.events import AttributionEvent
from ip_tracker.services.partition_router import PartitionKey, PartitionRouter, candidate_keys

VIEW_ACTION = "view"
ORDER_ACTION = "order"

# (table, extra WHERE conditions) pairs a query reads from
Source = tuple[Table, list[Any]]


def format_conversion_rate(orders: int, views: int) -> str:
    """
    Orders per view as a percentage string.

    Example:
        format_conversion_rate(1, 3) -> "33.33%"
        format_conversion_rate(5, 0) -> "0%"
    """
    if views == 0:
        return "0%"
    return f"{round(orders / views * 100, 2):.2f}%"


class StatsService:
    """
    Service for attribution statistics.

    Lives for one unit of work (one request), like the session it wraps.
    """

    def __init__(self, session: AsyncSession, router: PartitionRouter):
        """
        Args:
            session: Async database session for queries
            router: Partition router shared with the event writer
        """
        self.session = session
        self.router = router

    async def _execute(self, statement):
        try:
            return await self.session.execute(statement)
        except SQLAlchemyError as e:
            raise DatabaseError(str(e), e) from e

    @staticmethod
    def _key(partition_key: Union[str, PartitionKey]) -> PartitionKey:
        if isinstance(partition_key, PartitionKey):
            return partition_key
        return PartitionKey.parse(partition_key)

    @staticmethod
    def _check_window(offset: int, limit: Optional[int]) -> None:
        if offset < 0:
            raise InvalidQueryParameterError("offset", "must not be negative")
        if limit is not None and limit < 0:
            raise InvalidQueryParameterError("limit", "must not be negative")

    @staticmethod
    def _require(name: str, value: Optional[str]) -> str:
        if not value:
            raise InvalidQueryParameterError(name)
        return value

    async def _path_sources(self, path: str) -> list[Source]:
        sources = []
        for key in candidate_keys(path):
            table = await self.router.resolve(key)
            if table is not None:
                sources.append((table, [table.c.path == path]))
        return sources

    async def _resource_sources(
        self,
        resource_type: str,
        resource_id: str,
        action: Optional[str] = None,
    ) -> list[Source]:
        sources = []
        store = await self.router.resolve(PartitionKey.resource_store())
        if store is not None:
            conditions = [
                store.c.resource_type == resource_type,
                store.c.resource_id == resource_id,
            ]
            if action is not None:
                conditions.append(store.c.action == action)
            sources.append((store, conditions))

        # Path-based events carry no action, so only unfiltered listings include them
        if action is None:
            partition = await self.router.resolve(PartitionKey.resource(resource_type, resource_id))
            if partition is not None:
                # Ids that normalize alike still get their own table, but rows are
                # matched on the stored id as well
                sources.append((partition, [partition.c.resource_id == resource_id]))
        return sources

    async def _list(
        self,
        sources: Sequence[Source],
        offset: int,
        limit: Optional[int],
    ) -> list[AttributionEvent]:
        self._check_window(offset, limit)
        end = None if limit is None else offset + limit

        events: list[AttributionEvent] = []
        for table, conditions in sources:
            statement = (
                select(table)
                .where(*conditions)
                .order_by(table.c.created_at.desc(), table.c.id.desc())
            )
            if end is not None:
                statement = statement.limit(end)
            result = await self._execute(statement)
            events.extend(AttributionEvent.from_row(row) for row in result.mappings())

        # Stable sort keeps each source's id order for equal timestamps
        events.sort(key=lambda event: event.created_at, reverse=True)
        return events[offset:end]

    async def _unique_hashes(self, sources: Iterable[Source]) -> list[str]:
        hashes: set[str] = set()
        for table, conditions in sources:
            statement = (
                select(table.c.hashed_ip)
                .where(table.c.hashed_ip.is_not(None), *conditions)
                .distinct()
            )
            result = await self._execute(statement)
            hashes.update(result.scalars())
        return sorted(hashes)

    async def count(self, partition_key: Union[str, PartitionKey]) -> int:
        """Total number of events in a partition."""
        table = await self.router.resolve(self._key(partition_key))
        if table is None:
            return 0
        result = await self._execute(select(func.count()).select_from(table))
        return result.scalar_one()

    async def unique_count(self, partition_key: Union[str, PartitionKey]) -> int:
        """Number of distinct non-null hashed addresses in a partition."""
        table = await self.router.resolve(self._key(partition_key))
        if table is None:
            return 0
        result = await self._execute(select(func.count(distinct(table.c.hashed_ip))))
        return result.scalar_one()

    async def list_events_by_path(
        self,
        path: Optional[str],
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> list[AttributionEvent]:
        """
        Events recorded for an exact request path, newest first.

        Raises:
            InvalidQueryParameterError: If path is missing or empty
        """
        path = self._require("path", path)
        return await self._list(await self._path_sources(path), offset, limit)

    async def count_events_by_path(self, path: Optional[str]) -> int:
        """
        Number of events recorded for an exact request path.

        Raises:
            InvalidQueryParameterError: If path is missing or empty
        """
        path = self._require("path", path)
        total = 0
        for table, conditions in await self._path_sources(path):
            result = await self._execute(select(func.count()).select_from(table).where(*conditions))
            total += result.scalar_one()
        return total

    async def list_unique_hashes_by_path(self, path: Optional[str]) -> list[str]:
        """
        Distinct hashed addresses that requested an exact path.

        Raises:
            InvalidQueryParameterError: If path is missing or empty
        """
        path = self._require("path", path)
        return await self._unique_hashes(await self._path_sources(path))

    async def list_events_by_resource(
        self,
        resource_type: str,
        resource_id: str,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> list[AttributionEvent]:
        """Events tied to a resource, explicit and path-based, newest first."""
        resource_type = self._require("resource_type", resource_type)
        resource_id = self._require("resource_id", resource_id)
        sources = await self._resource_sources(resource_type, resource_id)
        return await self._list(sources, offset, limit)

    async def list_unique_hashes_by_resource(self, resource_type: str, resource_id: str) -> list[str]:
        resource_type = self._require("resource_type", resource_type)
        resource_id = self._require("resource_id", resource_id)
        return await self._unique_hashes(await self._resource_sources(resource_type, resource_id))

    async def list_events_by_resource_action(
        self,
        resource_type: str,
        resource_id: str,
        action: str,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> list[AttributionEvent]:
        """Explicit resource events with one action, newest first."""
        resource_type = self._require("resource_type", resource_type)
        resource_id = self._require("resource_id", resource_id)
        action = self._require("action", action)
        sources = await self._resource_sources(resource_type, resource_id, action)
        return await self._list(sources, offset, limit)

    async def _action_totals(self, store: Optional[Table], resource_type: str, resource_id: str, action: str) -> dict:
        if store is None:
            return {"total": 0, "unique": 0}
        statement = select(
            func.count(),
            func.count(distinct(store.c.hashed_ip)),
        ).where(
            store.c.resource_type == resource_type,
            store.c.resource_id == resource_id,
            store.c.action == action,
        )
        result = await self._execute(statement)
        total, unique = result.one()
        return {"total": total, "unique": unique}

    async def resource_stats(self, resource_type: str, resource_id: str) -> dict:
        """
        View/order totals and conversion rate for a resource.

        Returns:
            Dictionary with:
            - views: {"total", "unique"} for action "view"
            - orders: {"total", "unique"} for action "order"
            - conversion_rate: orders per view, e.g. "12.50%", or "0%" without views
        """
        resource_type = self._require("resource_type", resource_type)
        resource_id = self._require("resource_id", resource_id)

        store = await self.router.resolve(PartitionKey.resource_store())
        views = await self._action_totals(store, resource_type, resource_id, VIEW_ACTION)
        orders = await self._action_totals(store, resource_type, resource_id, ORDER_ACTION)

        return {
            "views": views,
            "orders": orders,
            "conversion_rate": format_conversion_rate(orders["total"], views["total"]),
        }
