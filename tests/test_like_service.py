"""
Like service tests: toggle symmetry, per-viewer state, owner adjustments
and compensation when the total cannot be written.
"""
import asyncio

import pytest

from nostalgic.result import Err, StorageError, UnauthorizedError, ValidationError

URL = "https://likes.example"
OWNER_TOKEN = "owner-token-1"


async def _create(services) -> str:
    return (await services.like.create(URL, OWNER_TOKEN)).data.id


@pytest.mark.asyncio
async def test_toggle_on_off_on(services):
    public_id = await _create(services)
    first = await services.like.toggle(public_id, "viewer-1")
    second = await services.like.toggle(public_id, "viewer-1")
    third = await services.like.toggle(public_id, "viewer-1")
    assert (first.data.total, first.data.user_liked) == (1, True)
    assert (second.data.total, second.data.user_liked) == (0, False)
    assert (third.data.total, third.data.user_liked) == (1, True)


@pytest.mark.asyncio
async def test_marker_tracks_user_liked(services, redis_client):
    public_id = await _create(services)
    marker = f"like:{public_id}:users:viewer-1"
    await services.like.toggle(public_id, "viewer-1")
    assert await redis_client.exists(marker) == 1
    assert (await services.like.get_like_data(public_id, "viewer-1")).data.user_liked is True
    await services.like.toggle(public_id, "viewer-1")
    assert await redis_client.exists(marker) == 0
    assert (await services.like.get_like_data(public_id, "viewer-1")).data.user_liked is False


@pytest.mark.asyncio
async def test_like_state_is_per_viewer(services):
    public_id = await _create(services)
    await services.like.toggle(public_id, "viewer-1")
    other = await services.like.get_like_data(public_id, "viewer-2")
    anonymous = await services.like.get_like_data(public_id)
    assert other.data.total == 1
    assert other.data.user_liked is False
    assert anonymous.data.user_liked is False


@pytest.mark.asyncio
async def test_concurrent_likes_from_many_viewers(services):
    public_id = await _create(services)
    await asyncio.gather(*(services.like.toggle(public_id, f"viewer-{n}") for n in range(10)))
    assert (await services.like.get_like_data(public_id)).data.total == 10


@pytest.mark.asyncio
async def test_failed_like_releases_marker(services, redis_client, monkeypatch):
    public_id = await _create(services)

    async def broken(key, by=1):
        return Err(StorageError("increment", "down"))

    monkeypatch.setattr(services.like.total, "increment", broken)
    result = await services.like.toggle(public_id, "viewer-1")
    assert isinstance(result.error, StorageError)
    assert await redis_client.exists(f"like:{public_id}:users:viewer-1") == 0


@pytest.mark.asyncio
async def test_failed_unlike_restores_marker(services, redis_client, monkeypatch):
    public_id = await _create(services)
    await services.like.toggle(public_id, "viewer-1")

    async def broken(key, by=1):
        return Err(StorageError("increment", "down"))

    monkeypatch.setattr(services.like.total, "increment", broken)
    result = await services.like.toggle(public_id, "viewer-1")
    assert isinstance(result.error, StorageError)
    assert await redis_client.exists(f"like:{public_id}:users:viewer-1") == 1
    monkeypatch.undo()
    assert (await services.like.get_like_data(public_id, "viewer-1")).data.total == 1


@pytest.mark.asyncio
async def test_total_never_goes_negative(services, redis_client):
    public_id = await _create(services)
    await services.like.toggle(public_id, "viewer-1")
    await redis_client.set(f"like:{public_id}:total", 0)
    data = (await services.like.toggle(public_id, "viewer-1")).data
    assert data.total == 0
    assert await redis_client.get(f"like:{public_id}:total") == "0"


@pytest.mark.asyncio
async def test_owner_increment_and_set(services, test_settings):
    public_id = await _create(services)
    bumped = await services.like.increment_like(URL, OWNER_TOKEN, 5)
    assert bumped.data.total == 5
    assert (await services.like.set_like_value(URL, OWNER_TOKEN, 42)).data.total == 42
    clamped = await services.like.set_like_value(URL, OWNER_TOKEN, test_settings.LIKE_MAX_VALUE + 1)
    assert clamped.data.total == test_settings.LIKE_MAX_VALUE
    assert (await services.like.get_like_data(public_id)).data.total == test_settings.LIKE_MAX_VALUE


@pytest.mark.asyncio
async def test_owner_operations_reject_bad_calls(services):
    await _create(services)
    assert isinstance((await services.like.increment_like(URL, OWNER_TOKEN, 0)).error, ValidationError)
    assert isinstance((await services.like.set_like_value(URL, OWNER_TOKEN, -3)).error, ValidationError)
    assert isinstance((await services.like.increment_like(URL, "someone-else", 1)).error, UnauthorizedError)


@pytest.mark.asyncio
async def test_delete_removes_markers(services, redis_client):
    public_id = await _create(services)
    await services.like.toggle(public_id, "viewer-1")
    assert (await services.like.delete(URL, OWNER_TOKEN)).success
    assert [k async for k in redis_client.scan_iter(match=f"like:{public_id}*")] == []
