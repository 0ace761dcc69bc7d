"""
Tests for the ingestion facade: classification, dispatch and fire-and-forget
recording through the tracking context.
"""

import pytest

from ip_tracker.services.ip_logger import IpLoggerService
from ip_tracker.services.partition_router import PartitionKey


class TestRecording:
    """Test that recorded events land in the right partition."""

    @pytest.mark.asyncio
    async def test_concurrent_first_events_for_new_product(self, tracking_context, stats):
        """Both first writers for a brand-new partition are persisted."""
        service = IpLoggerService(tracking_context)
        service.record_resource_typed_event("999", "198.51.100.1")
        service.record_resource_typed_event("999", "198.51.100.2")
        await tracking_context.writer.drain()

        events = await stats.list_events_by_resource("product", "999")

        assert len(events) == 2
        assert {e.path for e in events} == {"/products/999"}
        assert {e.resource_id for e in events} == {"999"}
        assert await stats.unique_count("resource:product:999") == 2

    @pytest.mark.asyncio
    async def test_record_request_dispatches_by_path(self, tracking_context, stats):
        service = IpLoggerService(tracking_context)
        service.record_request("198.51.100.1", method="GET", path="/")
        service.record_request("198.51.100.1", method="GET", path="/products/ABC-1?ref=mail")
        service.record_request("198.51.100.1", method="GET", path="/about")
        await tracking_context.writer.drain()

        assert await stats.count(PartitionKey.root()) == 1
        assert await stats.count(PartitionKey.catch_all()) == 1
        assert await stats.count(PartitionKey.resource("product", "ABC-1")) == 1

        events = await stats.list_events_by_path("/products/ABC-1?ref=mail")
        assert len(events) == 1
        assert events[0].resource_type == "product"
        assert events[0].resource_id == "ABC-1"

    @pytest.mark.asyncio
    async def test_ids_that_normalize_alike_stay_separate(self, tracking_context, stats):
        service = IpLoggerService(tracking_context)
        long_a = "x" * 48 + "aa"
        long_b = "x" * 48 + "bb"
        ids = ["ABC", "abc", "a.b.c", "a-b-c", long_a, long_b]
        for product_id in ids:
            service.record_request("198.51.100.1", method="GET", path=f"/products/{product_id}")
        await tracking_context.writer.drain()

        for product_id in ids:
            events = await stats.list_events_by_resource("product", product_id)
            assert [e.path for e in events] == [f"/products/{product_id}"], product_id
            assert await stats.count(PartitionKey.resource("product", product_id)) == 1, product_id

    @pytest.mark.asyncio
    async def test_explicit_resource_event(self, tracking_context, stats):
        service = IpLoggerService(tracking_context)
        service.record_explicit_resource_event(
            "198.51.100.1",
            resource_type="product",
            resource_id="7",
            action="order",
            metadata={"quantity": 1},
        )
        await tracking_context.writer.drain()

        events = await stats.list_events_by_resource_action("product", "7", "order")

        assert len(events) == 1
        assert events[0].path == "/product/7/order"
        assert events[0].method == "POST"
        assert events[0].metadata == {"quantity": 1}

    @pytest.mark.asyncio
    async def test_store_raw_override(self, tracking_context, stats):
        service = IpLoggerService(tracking_context)
        service.record_other_event("::ffff:198.51.100.5", store_raw=True, path="/raw")
        service.record_other_event("198.51.100.6", path="/raw")
        await tracking_context.writer.drain()

        events = await stats.list_events_by_path("/raw")

        assert sorted(e.raw_ip or "" for e in events) == ["", "198.51.100.5"]

    @pytest.mark.asyncio
    async def test_event_without_address_is_still_recorded(self, tracking_context, stats):
        IpLoggerService(tracking_context).record_root_event(None)
        await tracking_context.writer.drain()

        assert await stats.count("root") == 1
        assert await stats.unique_count("root") == 0


class TestNeverRaises:

    @pytest.mark.asyncio
    async def test_recording_after_shutdown_is_dropped_quietly(self, tracking_context):
        await tracking_context.shutdown()

        # Returns normally even though nothing will be written
        IpLoggerService(tracking_context).record_root_event("198.51.100.1")

        assert tracking_context.writer.pending == 0
