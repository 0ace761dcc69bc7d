"""
Tests for partition classification and lazy partition provisioning.
"""

import asyncio

import pytest

from ip_tracker.core.exceptions import InvalidQueryParameterError
from ip_tracker.db.sqlite_adapter import get_database_adapter
from ip_tracker.services.partition_router import (
    PartitionKey,
    PartitionRouter,
    candidate_keys,
    classify,
    normalize_token,
)


class TestClassify:
    """Test method/path to partition mapping."""

    def test_root(self):
        assert classify("GET", "/") == PartitionKey.root()
        assert classify("get", "/?utm=x") == PartitionKey.root()

    def test_non_get_root_is_catch_all(self):
        assert classify("POST", "/") == PartitionKey.catch_all()

    def test_product_paths(self):
        assert classify("GET", "/products/123") == PartitionKey.resource("product", "123")
        assert classify("GET", "/product/123") == PartitionKey.resource("product", "123")
        assert classify("POST", "/products/123/reviews") == PartitionKey.resource("product", "123")
        assert classify("GET", "/products/ABC-9?ref=mail") == PartitionKey.resource("product", "ABC-9")
        assert classify("GET", "/products/ABC-9") != classify("GET", "/products/abc-9")

    def test_product_without_token_is_unknown(self):
        assert classify("GET", "/products/").name == "resource:product:unknown"

    def test_everything_else_is_catch_all(self):
        for path in ["/about", "/productsx/1", "/api/products/1", "/products"]:
            assert classify("GET", path) == PartitionKey.catch_all(), path

    def test_candidate_keys(self):
        assert candidate_keys("/") == [PartitionKey.root(), PartitionKey.catch_all()]
        assert candidate_keys("/products/1") == [PartitionKey.resource("product", "1")]
        assert candidate_keys("/about") == [PartitionKey.catch_all()]


class TestPartitionKey:

    def test_normalize_token(self):
        assert normalize_token("abc_123") == "abc_123"
        assert normalize_token("ABC-123").startswith("abc_123__")
        assert normalize_token("a%20b") == normalize_token("a b")
        assert normalize_token("%20").startswith("unknown__")
        assert normalize_token(None) == "unknown"
        assert normalize_token("") == "unknown"

    def test_long_tokens_are_truncated(self):
        token = normalize_token("x" * 200)
        assert token.startswith("x" * 48 + "__")
        assert len(token) == 48 + 2 + 10

    def test_distinct_ids_get_distinct_tables(self):
        pairs = [
            ("ABC", "abc"),
            ("a.b.c", "a-b-c"),
            ("x" * 48 + "aa", "x" * 48 + "bb"),
        ]
        for first, second in pairs:
            first_key = PartitionKey.resource("product", first)
            second_key = PartitionKey.resource("product", second)
            assert first_key != second_key, (first, second)
            assert first_key.table_name != second_key.table_name, (first, second)

    def test_type_and_id_stay_apart_in_table_names(self):
        first = PartitionKey.resource("product", "a_b")
        second = PartitionKey.resource("product_a", "b")
        assert first.table_name != second.table_name

    def test_table_names(self):
        assert PartitionKey.root().table_name == "ip_logs_root"
        assert PartitionKey.catch_all().table_name == "ip_logs_catch_all"
        assert PartitionKey.resource("product", "42").table_name == "ip_logs_product___42"
        assert PartitionKey.resource_store().table_name == "ip_resource_logs"

    def test_parse_round_trips_names(self):
        for key in [
            PartitionKey.root(),
            PartitionKey.catch_all(),
            PartitionKey.resource("product", "42"),
            PartitionKey.resource("product", "ABC-9"),
        ]:
            assert PartitionKey.parse(key.name) == key

    def test_parse_rejects_garbage(self):
        for value in [None, "", "resource:product", "resource::1", "nope"]:
            with pytest.raises(InvalidQueryParameterError):
                PartitionKey.parse(value)


class TestPartitionRouter:
    """Test get-or-create against a real SQLite database."""

    @pytest.mark.asyncio
    async def test_get_or_create_is_idempotent(self, engine):
        router = PartitionRouter(engine, get_database_adapter())
        key = PartitionKey.resource("product", "7")

        first = await router.get_or_create(key)
        second = await router.get_or_create(key)

        assert first is second
        assert first.name == "ip_logs_product___7"
        assert router.cached_keys() == ["resource:product:7"]

    @pytest.mark.asyncio
    async def test_concurrent_first_access_converges(self, engine):
        """Two routers (separate caches) racing on a new key both succeed."""
        adapter = get_database_adapter()
        routers = [PartitionRouter(engine, adapter) for _ in range(2)]
        key = PartitionKey.resource("product", "race")

        tables = await asyncio.gather(*(router.get_or_create(key) for router in routers))

        assert {table.name for table in tables} == {"ip_logs_product___race"}
        async with engine.connect() as connection:
            assert await adapter.table_exists(connection, "ip_logs_product___race")

    @pytest.mark.asyncio
    async def test_resolve_never_creates(self, engine):
        adapter = get_database_adapter()
        router = PartitionRouter(engine, adapter)
        key = PartitionKey.resource("product", "missing")

        assert await router.resolve(key) is None
        async with engine.connect() as connection:
            assert not await adapter.table_exists(connection, key.table_name)

    @pytest.mark.asyncio
    async def test_resolve_finds_table_created_elsewhere(self, engine):
        adapter = get_database_adapter()
        await PartitionRouter(engine, adapter).get_or_create(PartitionKey.root())

        fresh = PartitionRouter(engine, adapter)
        table = await fresh.resolve(PartitionKey.root())

        assert table is not None
        assert table.name == "ip_logs_root"
