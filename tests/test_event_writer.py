"""
Tests for the background event writer: retry, backoff, warmup and queueing.
"""

import asyncio
import logging

import pytest

from ip_tracker.db.session import create_session_maker
from ip_tracker.db.sqlite_adapter import SQLiteAdapter
from ip_tracker.services.event_writer import EventWriter
from ip_tracker.services.events import AttributionEvent
from ip_tracker.services.partition_router import PartitionKey, PartitionRouter
from ip_tracker.services.stats_service import StatsService


class FlakyRouter:
    """Router whose first `failures` provisioning calls raise."""

    def __init__(self, router: PartitionRouter, failures: int):
        self.router = router
        self.failures = failures
        self.calls = 0

    async def get_or_create(self, key):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"transient failure {self.calls}")
        return await self.router.get_or_create(key)


class CountingAdapter(SQLiteAdapter):
    """SQLite adapter counting ready-checks; the first `slow` ones hang."""

    def __init__(self, slow: int = 0):
        self.pings = 0
        self.slow = slow

    async def ping(self, session):
        self.pings += 1
        if self.pings <= self.slow:
            await asyncio.sleep(10)
        await super().ping(session)


def make_event(ip="198.51.100.1", path="/about"):
    return AttributionEvent.from_request(ip, secret="s", store_raw=False, method="GET", path=path)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


async def count_rows(engine, router, key):
    async with create_session_maker(engine)() as session:
        return await StatsService(session, router).count(key)


class TestWrite:
    """Test a single write with retries."""

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, engine):
        adapter = SQLiteAdapter()
        router = PartitionRouter(engine, adapter)
        sleep = RecordingSleep()
        writer = EventWriter(
            FlakyRouter(router, failures=2),
            create_session_maker(engine),
            adapter,
            max_retries=2,
            base_delay=0.2,
            sleep=sleep,
        )

        assert await writer.write(make_event(), PartitionKey.catch_all()) is True

        assert sleep.delays == [0.2, 0.4]
        assert await count_rows(engine, router, PartitionKey.catch_all()) == 1

    @pytest.mark.asyncio
    async def test_event_dropped_after_last_attempt(self, engine, caplog):
        adapter = SQLiteAdapter()
        flaky = FlakyRouter(PartitionRouter(engine, adapter), failures=100)
        sleep = RecordingSleep()
        writer = EventWriter(
            flaky, create_session_maker(engine), adapter, max_retries=2, base_delay=0.2, sleep=sleep
        )

        with caplog.at_level(logging.WARNING):
            result = await writer.write(make_event(), PartitionKey.catch_all())

        assert result is False
        assert flaky.calls == 3
        assert sleep.delays == [0.2, 0.4]
        assert "after 3 attempts" in caplog.text

    @pytest.mark.asyncio
    async def test_no_retries_configured(self, engine):
        adapter = SQLiteAdapter()
        flaky = FlakyRouter(PartitionRouter(engine, adapter), failures=1)
        writer = EventWriter(
            flaky, create_session_maker(engine), adapter, max_retries=0, sleep=RecordingSleep()
        )

        assert await writer.write(make_event(), PartitionKey.catch_all()) is False
        assert flaky.calls == 1

    @pytest.mark.asyncio
    async def test_created_at_stamped(self, engine):
        adapter = SQLiteAdapter()
        router = PartitionRouter(engine, adapter)
        writer = EventWriter(router, create_session_maker(engine), adapter)

        await writer.write(make_event(path="/stamped"), PartitionKey.catch_all())

        async with create_session_maker(engine)() as session:
            events = await StatsService(session, router).list_events_by_path("/stamped")
        assert len(events) == 1
        assert events[0].created_at is not None
        assert events[0].created_at.tzinfo is not None


class TestWarmup:
    """Test the memoized storage ready-check."""

    @pytest.mark.asyncio
    async def test_warmup_runs_once(self, engine):
        adapter = CountingAdapter()
        writer = EventWriter(PartitionRouter(engine, adapter), create_session_maker(engine), adapter)

        await writer.write(make_event(), PartitionKey.catch_all())
        await writer.write(make_event(), PartitionKey.catch_all())

        assert writer.is_ready
        assert adapter.pings == 1

    @pytest.mark.asyncio
    async def test_concurrent_warmup_runs_once(self, engine):
        adapter = CountingAdapter()
        writer = EventWriter(PartitionRouter(engine, adapter), create_session_maker(engine), adapter)

        await asyncio.gather(*(writer.ensure_ready() for _ in range(5)))

        assert adapter.pings == 1

    @pytest.mark.asyncio
    async def test_timed_out_warmup_deferred_to_retry(self, engine):
        adapter = CountingAdapter(slow=1)
        router = PartitionRouter(engine, adapter)
        sleep = RecordingSleep()
        writer = EventWriter(
            router, create_session_maker(engine), adapter,
            warmup_timeout=0.05, base_delay=0.2, sleep=sleep,
        )

        assert await writer.write(make_event(), PartitionKey.catch_all()) is True

        assert adapter.pings == 2
        assert sleep.delays == [0.2]
        assert writer.is_ready
        assert await count_rows(engine, router, PartitionKey.catch_all()) == 1


class TestQueue:
    """Test fire-and-forget submission through the worker pool."""

    @pytest.mark.asyncio
    async def test_submit_before_start_drops(self, engine):
        adapter = SQLiteAdapter()
        writer = EventWriter(PartitionRouter(engine, adapter), create_session_maker(engine), adapter)

        assert writer.submit(make_event(), PartitionKey.catch_all()) is False
        assert not writer.is_running

    @pytest.mark.asyncio
    async def test_full_queue_drops(self, engine):
        adapter = SQLiteAdapter()
        router = PartitionRouter(engine, adapter)
        writer = EventWriter(router, create_session_maker(engine), adapter, queue_size=1, workers=1)
        await writer.start()

        # Workers have not run yet: nothing awaited between the two submits
        assert writer.submit(make_event(), PartitionKey.catch_all()) is True
        assert writer.submit(make_event(), PartitionKey.catch_all()) is False

        await writer.stop()
        assert await count_rows(engine, router, PartitionKey.catch_all()) == 1

    @pytest.mark.asyncio
    async def test_stop_writes_out_queued_events(self, engine):
        adapter = SQLiteAdapter()
        router = PartitionRouter(engine, adapter)
        writer = EventWriter(router, create_session_maker(engine), adapter, workers=3)
        await writer.start()

        for n in range(10):
            writer.submit(make_event(ip=f"198.51.100.{n}"), PartitionKey.root())
        await writer.stop()

        assert not writer.is_running
        assert writer.pending == 0
        assert await count_rows(engine, router, PartitionKey.root()) == 10

    @pytest.mark.asyncio
    async def test_submit_during_stop_is_refused(self, engine, caplog):
        adapter = SQLiteAdapter()
        router = PartitionRouter(engine, adapter)
        writer = EventWriter(router, create_session_maker(engine), adapter, workers=2)
        await writer.start()

        stopping = asyncio.create_task(writer.stop())
        # Let stop() begin waiting on its cancelled workers
        await asyncio.sleep(0)

        with caplog.at_level(logging.WARNING):
            assert writer.submit(make_event(), PartitionKey.catch_all()) is False
        await stopping

        assert "stopping" in caplog.text
        assert not writer.is_running
        assert await count_rows(engine, router, PartitionKey.catch_all()) == 0
