"""
Tracking Context

Bundles everything attribution needs into one object that is passed
around explicitly: hashing secret, raw-retention default, the address
resolver, the partition router (and its handle cache) and the event
writer (and its ready flag).

The application builds one from settings on startup; tests build their
own against a temporary database.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from ip_tracker.core.address import AddressResolver
from ip_tracker.core.setting import Settings
from ip_tracker.db.interface import DatabaseAdapter
from ip_tracker.db.session import create_session_maker
from ip_tracker.db.sqlite_adapter import get_database_adapter
from ip_tracker.services.event_writer import EventWriter
from ip_tracker.services.partition_router import PartitionRouter

logger = logging.getLogger(__name__)


@dataclass
class TrackingContext:
    session_maker: async_sessionmaker
    hash_secret: str
    store_raw_ip: bool
    path_logging_enabled: bool
    resolver: AddressResolver
    router: PartitionRouter
    writer: EventWriter

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        engine: AsyncEngine,
        adapter: Optional[DatabaseAdapter] = None,
        session_maker: Optional[async_sessionmaker] = None,
    ) -> "TrackingContext":
        """
        Wire up a context from settings.

        Args:
            settings: Application settings
            engine: Engine the partitions live in
            adapter: Database adapter (defaults to get_database_adapter())
            session_maker: Session factory (defaults to one bound to engine)

        Returns:
            A context whose writer has not been started yet
        """
        adapter = adapter or get_database_adapter()
        session_maker = session_maker or create_session_maker(engine)

        router = PartitionRouter(engine, adapter)
        writer = EventWriter(
            router,
            session_maker,
            adapter,
            max_retries=settings.WRITE_MAX_RETRIES,
            base_delay=settings.WRITE_RETRY_BASE_DELAY,
            warmup_timeout=settings.DB_WARMUP_TIMEOUT,
            queue_size=settings.WRITE_QUEUE_SIZE,
            workers=settings.WRITE_WORKERS,
        )
        resolver = AddressResolver(
            trust_policy=settings.trust_proxy_policy,
            filter_private=settings.FILTER_PRIVATE_IPS,
        )

        return cls(
            session_maker=session_maker,
            hash_secret=settings.IP_HASH_SECRET,
            store_raw_ip=settings.STORE_RAW_IP,
            path_logging_enabled=settings.ENABLE_PATH_LOGGING,
            resolver=resolver,
            router=router,
            writer=writer,
        )

    async def start(self) -> None:
        await self.writer.start()

    async def shutdown(self) -> None:
        """Write out everything still queued, then stop the writer."""
        await self.writer.stop()
