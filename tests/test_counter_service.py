"""
Counter service tests: visit deduplication, rolling day views, owner
overrides and rollback of a half-finished increment.
"""
import asyncio
from datetime import timedelta

import pytest

from nostalgic.result import Err, NotFoundError, StorageError, UnauthorizedError, ValidationError

URL = "https://a.example"
OWNER_TOKEN = "owner-token-1"


async def _create(services) -> str:
    return (await services.counter.create(URL, OWNER_TOKEN)).data.id


# ---------------------------------------------------------------------------
# increment
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_first_visit_counts(services):
    public_id = await _create(services)
    result = await services.counter.increment(public_id, "viewer-1")
    assert result.success
    assert result.data.total == 1
    assert result.data.today == 1
    assert result.data.week == 1
    assert result.data.month == 1
    assert result.data.last_visit is not None


@pytest.mark.asyncio
async def test_repeat_visit_within_window_is_ignored(services):
    public_id = await _create(services)
    await services.counter.increment(public_id, "viewer-1")
    again = await services.counter.increment(public_id, "viewer-1")
    assert again.success
    assert again.data.total == 1
    assert again.data.today == 1


@pytest.mark.asyncio
async def test_distinct_viewers_each_count(services):
    public_id = await _create(services)
    for n in range(3):
        await services.counter.increment(public_id, f"viewer-{n}")
    assert (await services.counter.get_counter_data(public_id)).data.total == 3


@pytest.mark.asyncio
async def test_concurrent_visits_from_one_viewer_count_once(services):
    public_id = await _create(services)
    results = await asyncio.gather(
        *(services.counter.increment(public_id, "viewer-1") for _ in range(20))
    )
    assert all(r.success for r in results)
    data = (await services.counter.get_counter_data(public_id)).data
    assert data.total == 1
    assert data.today == 1


@pytest.mark.asyncio
async def test_visit_marker_and_daily_bucket_expire(services, redis_client, clock, test_settings):
    public_id = await _create(services)
    await services.counter.increment(public_id, "viewer-1")
    marker_ttl = await redis_client.ttl(f"counter:{public_id}:visit:viewer-1")
    daily_ttl = await redis_client.ttl(f"counter:{public_id}:daily:{clock.now.date().isoformat()}")
    assert 0 < marker_ttl <= test_settings.COUNTER_VISIT_TTL
    assert 0 < daily_ttl <= test_settings.COUNTER_DAILY_RETENTION_DAYS * 86400


@pytest.mark.asyncio
async def test_increment_unknown_or_malformed_id(services):
    assert isinstance((await services.counter.increment("ghost-deadbeef", "v")).error, NotFoundError)
    assert isinstance((await services.counter.increment("NOT AN ID", "v")).error, ValidationError)


@pytest.mark.asyncio
async def test_failed_daily_write_rolls_back_total_and_claim(services, redis_client, monkeypatch):
    public_id = await _create(services)
    real_increment = services.counter.counters.increment

    async def flaky_increment(key, by=1, ttl=None):
        if ttl is not None:
            return Err(StorageError("increment", "down"))
        return await real_increment(key, by, ttl)

    monkeypatch.setattr(services.counter.counters, "increment", flaky_increment)
    result = await services.counter.increment(public_id, "viewer-1")
    assert isinstance(result.error, StorageError)
    assert await redis_client.get(f"counter:{public_id}:total") == "0"
    assert await redis_client.exists(f"counter:{public_id}:visit:viewer-1") == 0

    monkeypatch.setattr(services.counter.counters, "increment", real_increment)
    retried = await services.counter.increment(public_id, "viewer-1")
    assert retried.data.total == 1


# ---------------------------------------------------------------------------
# Rolling views
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_rolling_windows_sum_day_buckets(services, redis_client, clock):
    public_id = await _create(services)
    today = clock.now.date()
    buckets = {0: 4, 1: 3, 6: 2, 7: 5, 29: 1, 30: 100}
    for days_ago, count in buckets.items():
        day = (today - timedelta(days=days_ago)).isoformat()
        await redis_client.set(f"counter:{public_id}:daily:{day}", count)

    data = (await services.counter.get_counter_data(public_id)).data
    assert data.today == 4
    assert data.yesterday == 3
    assert data.week == 4 + 3 + 2
    assert data.month == 4 + 3 + 2 + 5 + 1


@pytest.mark.asyncio
async def test_day_rollover(services, clock):
    public_id = await _create(services)
    await services.counter.increment(public_id, "viewer-1")
    clock.advance(days=1)
    data = (await services.counter.increment(public_id, "viewer-2")).data
    assert data.total == 2
    assert data.today == 1
    assert data.yesterday == 1
    assert data.week == 2


# ---------------------------------------------------------------------------
# Owner override / display
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_set_counter_value(services, test_settings):
    public_id = await _create(services)
    result = await services.counter.set_counter_value(URL, OWNER_TOKEN, 500)
    assert result.data.total == 500
    clamped = await services.counter.set_counter_value(URL, OWNER_TOKEN, test_settings.COUNTER_MAX_VALUE + 10)
    assert clamped.data.total == test_settings.COUNTER_MAX_VALUE
    assert (await services.counter.get_counter_data(public_id)).data.total == test_settings.COUNTER_MAX_VALUE


@pytest.mark.asyncio
async def test_set_counter_value_rejects_bad_calls(services):
    await _create(services)
    assert isinstance((await services.counter.set_counter_value(URL, OWNER_TOKEN, -1)).error, ValidationError)
    assert isinstance((await services.counter.set_counter_value(URL, "someone-else", 5)).error, UnauthorizedError)


@pytest.mark.asyncio
async def test_increment_never_passes_ceiling(services, test_settings):
    public_id = await _create(services)
    await services.counter.set_counter_value(URL, OWNER_TOKEN, test_settings.COUNTER_MAX_VALUE)
    data = (await services.counter.increment(public_id, "viewer-1")).data
    assert data.total == test_settings.COUNTER_MAX_VALUE


@pytest.mark.asyncio
async def test_get_display_value(services):
    public_id = await _create(services)
    await services.counter.increment(public_id, "viewer-1")
    assert (await services.counter.get_display_value(public_id, "total")).data == 1
    assert (await services.counter.get_display_value(public_id, "yesterday")).data == 0
    assert (await services.counter.get_display_value("ghost-deadbeef", "total")).data == 0
    assert isinstance((await services.counter.get_display_value(public_id, "decade")).error, ValidationError)


# ---------------------------------------------------------------------------
# Activity
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_last_activity_prefers_newest_day_bucket(services, clock):
    public_id = await _create(services)
    entity = (await services.counter.get_by_id(public_id)).data
    assert (await services.counter.last_activity(entity)).data == entity.created

    clock.advance(days=3)
    await services.counter.increment(public_id, "viewer-1")
    entity = (await services.counter.get_by_id(public_id)).data
    activity = (await services.counter.last_activity(entity)).data
    assert activity.date() == clock.now.date()
