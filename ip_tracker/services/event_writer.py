"""
Event Writer

Persists attribution events in the background with bounded retry.

Architecture:
- Ingestion calls submit(), which only enqueues; the request path never
  waits on storage
- A pool of worker tasks consumes the bounded queue and calls write()
- write() makes up to max_retries + 1 attempts with linear backoff
  (base_delay * attempt_number) and drops the event after the last failure
- Every attempt warms storage up first; a successful warmup is remembered

Delivery is best-effort: at most max_retries + 1 attempts per event and
no deduplication, so an attempt that fails after the insert committed can
lead to a second copy on retry.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from sqlalchemy import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ip_tracker.core.exceptions import StorageUnavailableError
from ip_tracker.db.interface import DatabaseAdapter
from ip_tracker.services.events import AttributionEvent
from ip_tracker.services.partition_router import PartitionKey, PartitionRouter

logger = logging.getLogger(__name__)


class EventWriter:
    """
    Background writer for attribution events.

    Lifecycle: start() spawns the workers, drain() waits for everything
    queued so far, stop() drains and then shuts the workers down.
    """

    def __init__(
        self,
        router: PartitionRouter,
        session_maker: async_sessionmaker,
        adapter: DatabaseAdapter,
        *,
        max_retries: int = 2,
        base_delay: float = 0.2,
        warmup_timeout: float = 5.0,
        queue_size: int = 10000,
        workers: int = 4,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            router: Resolves (and lazily creates) the target partition
            session_maker: Factory for the sessions events are written with
            adapter: Database adapter providing the ready-check
            max_retries: Additional attempts after the first failure
            base_delay: Backoff unit in seconds
            warmup_timeout: Seconds before a storage ready-check gives up
            queue_size: Maximum number of events waiting to be written
            workers: Number of consumer tasks
            sleep: Backoff sleep, replaceable in tests
        """
        self.router = router
        self.session_maker = session_maker
        self.adapter = adapter
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.warmup_timeout = warmup_timeout
        self.queue_size = queue_size
        self.worker_count = workers
        self._sleep = sleep

        self._queue: Optional[asyncio.Queue] = None
        self._workers: list[asyncio.Task] = []
        self._stopping = False
        self._ready = False
        self._ready_lock = asyncio.Lock()

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def start(self) -> None:
        """Spawn the worker tasks. Calling it twice is a no-op."""
        if self._workers:
            logger.warning("Event writer already started")
            return

        self._stopping = False
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"event-writer-{n}")
            for n in range(self.worker_count)
        ]
        logger.info(
            f"Event writer started: workers={self.worker_count}, "
            f"queue_size={self.queue_size}, max_retries={self.max_retries}"
        )

    def submit(self, event: AttributionEvent, key: PartitionKey) -> bool:
        """
        Queue an event for writing without waiting.

        Never raises.

        Returns:
            True if the event was queued, False if it was dropped
        """
        if self._queue is None or not self._workers:
            logger.warning(f"Event writer not running, dropping event for partition '{key}'")
            return False
        if self._stopping:
            logger.warning(f"Event writer stopping, dropping event for partition '{key}'")
            return False
        try:
            self._queue.put_nowait((event, key))
        except asyncio.QueueFull:
            logger.warning(
                f"Event queue full ({self.queue_size}), dropping event for partition '{key}'"
            )
            return False
        return True

    async def drain(self) -> None:
        """Wait until every queued event has been written or dropped."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self) -> None:
        """
        Drain the queue, then stop the workers.

        New events are refused from the moment stop() is called.
        """
        if not self._workers or self._stopping:
            return

        self._stopping = True
        try:
            await self.drain()
            for task in self._workers:
                task.cancel()
            await asyncio.gather(*self._workers, return_exceptions=True)
            left = self._queue.qsize()
            if left:
                logger.warning(f"Event writer stopped with {left} unwritten events")
        finally:
            self._workers = []
            self._queue = None
            self._stopping = False
        logger.info("Event writer stopped")

    async def _worker(self, number: int) -> None:
        while True:
            event, key = await self._queue.get()
            try:
                await self.write(event, key)
            finally:
                self._queue.task_done()

    async def write(self, event: AttributionEvent, key: PartitionKey) -> bool:
        """
        Persist one event, retrying with linear backoff.

        Args:
            event: Event to persist (created_at is stamped here if unset)
            key: Target partition

        Returns:
            True if the event was persisted, False if it was dropped
        """
        event = event.stamped()
        attempts = self.max_retries + 1

        for attempt in range(1, attempts + 1):
            try:
                await self._persist(event, key)
                if attempt > 1:
                    logger.info(f"Event for partition '{key}' written on attempt {attempt}")
                return True
            except Exception as e:
                if attempt >= attempts:
                    logger.warning(
                        f"Dropping event for partition '{key}' after {attempt} attempts: {str(e)}",
                        exc_info=True
                    )
                    return False

                delay = self.base_delay * attempt
                logger.debug(
                    f"Write attempt {attempt} for partition '{key}' failed ({str(e)}), "
                    f"retrying in {delay:.2f}s"
                )
                await self._sleep(delay)

        return False

    async def _persist(self, event: AttributionEvent, key: PartitionKey) -> None:
        await self.ensure_ready()
        table = await self.router.get_or_create(key)

        async with self.session_maker() as session:
            await session.execute(insert(table).values(**event.to_row()))
            await session.commit()

    async def ensure_ready(self) -> None:
        """
        Make sure storage answers before the first write.

        Memoized: once a ready-check succeeds it is never repeated. A failed
        or timed-out check leaves the writer unready, so the next attempt
        tries again.

        Raises:
            StorageUnavailableError: If the ready-check fails or times out
        """
        if self._ready:
            return

        async with self._ready_lock:
            if self._ready:
                return
            try:
                await asyncio.wait_for(self._ping(), timeout=self.warmup_timeout)
            except asyncio.TimeoutError as e:
                raise StorageUnavailableError(
                    f"ready-check timed out after {self.warmup_timeout}s", e
                ) from e
            except SQLAlchemyError as e:
                raise StorageUnavailableError(str(e), e) from e

            self._ready = True
            logger.info("Storage ready for attribution events")

    async def _ping(self) -> None:
        async with self.session_maker() as session:
            await self.adapter.ping(session)
