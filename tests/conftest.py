"""
Test infrastructure for the widget services.

Strategy
--------
- ``fakeredis.FakeAsyncRedis`` stands in for the Redis server.  It speaks
  the same command set the repositories use (SET NX EX, INCRBY, LPUSH,
  ZADD, WATCH/MULTI, SCAN), so service logic runs unmodified and no Redis
  instance is needed in CI.
- Fake clients that point at the same host share one in-memory server,
  so the store is flushed after every test.
- Services are built with an explicit ``Settings`` (sweep disabled, no
  ``.env``) and a ``FakeClock`` that tests can move to exercise day
  buckets and inactivity cutoffs.
- ASGITransport does not run the lifespan, so ``async_client`` puts the
  test ``Services`` on ``app.state`` itself.
"""
from datetime import datetime, timedelta, timezone

import fakeredis
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from nostalgic.config import Settings
from nostalgic.main import app
from nostalgic.services import Services, build_services

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock returning a settable, timezone-aware ``now``."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def test_settings() -> Settings:
    return Settings(_env_file=None, CLEANUP_PROBABILITY=0.0, ROLLBACK_ATTEMPTS=2)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def services(redis_client, test_settings, clock) -> Services:
    return build_services(redis_client, test_settings, clock)


@pytest_asyncio.fixture
async def async_client(services) -> AsyncClient:
    """
    Yield an httpx.AsyncClient wired to the FastAPI app via ASGITransport,
    with the fake-store ``Services`` installed on ``app.state``.
    """
    app.state.services = services
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    del app.state.services
