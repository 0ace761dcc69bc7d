"""
Shared fixtures: a throwaway SQLite database per test and a tracking
context wired against it.
"""

import pytest
import pytest_asyncio

from ip_tracker.core.setting import Settings, TrustProxyPolicy
from ip_tracker.db.sqlite_adapter import get_database_adapter
from ip_tracker.services.stats_service import StatsService
from ip_tracker.services.tracking_context import TrackingContext

TEST_SECRET = "test-secret"


@pytest.fixture
def test_settings():
    """Settings isolated from the environment's .env file."""
    return Settings(
        _env_file=None,
        IP_HASH_SECRET=TEST_SECRET,
        TRUST_PROXY=TrustProxyPolicy.none,
        STORE_RAW_IP=False,
        WRITE_RETRY_BASE_DELAY=0,
        WRITE_WORKERS=2,
        DB_WARMUP_TIMEOUT=5.0,
    )


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = get_database_adapter().create_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'iptracker-test.db'}"
    )
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def tracking_context(test_settings, engine):
    context = TrackingContext.from_settings(test_settings, engine)
    await context.start()
    yield context
    await context.shutdown()


@pytest_asyncio.fixture
async def stats(tracking_context):
    async with tracking_context.session_maker() as session:
        yield StatsService(session, tracking_context.router)
