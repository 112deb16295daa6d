"""
Primitive repository tests against the fake store.

Each repository is exercised for its happy path, its "missing key"
behaviour and the mapping of store failures to ``StorageError``.
"""
from datetime import datetime, timezone

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from nostalgic.keys import CounterKeys
from nostalgic.repositories import (
    CounterRepository,
    EntityRepository,
    KeyspaceRepository,
    ListRepository,
    SortedSetRepository,
    UrlMappingRepository,
)
from nostalgic.result import NotFoundError, StorageError
from nostalgic.schemas import BBSMessage, ClaimRecord, CounterEntity

CREATED = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _entity(public_id: str = "example-1a2b3c4d") -> CounterEntity:
    return CounterEntity(id=public_id, url="https://example.com", created=CREATED)


def _message(n: int) -> BBSMessage:
    return BBSMessage(
        id=f"m{n}",
        author="ann",
        message=f"hello {n}",
        timestamp=CREATED,
        author_hash="abc123",
    )


# ---------------------------------------------------------------------------
# EntityRepository
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_entity_save_and_get(redis_client):
    repo = EntityRepository(redis_client, CounterEntity)
    assert (await repo.save("counter:example-1a2b3c4d", _entity())).success
    result = await repo.get("counter:example-1a2b3c4d")
    assert result.success
    assert result.data == _entity()
    assert (await repo.exists("counter:example-1a2b3c4d")).data is True


@pytest.mark.asyncio
async def test_entity_missing_is_not_found(redis_client):
    repo = EntityRepository(redis_client, CounterEntity)
    result = await repo.get("counter:nothing-00000000")
    assert not result.success
    assert isinstance(result.error, NotFoundError)
    assert (await repo.exists("counter:nothing-00000000")).data is False


@pytest.mark.asyncio
async def test_entity_corrupt_record_is_not_found(redis_client):
    repo = EntityRepository(redis_client, CounterEntity)
    await redis_client.set("counter:example-1a2b3c4d", '{"id": 5}')
    result = await repo.get("counter:example-1a2b3c4d")
    assert isinstance(result.error, NotFoundError)


@pytest.mark.asyncio
async def test_set_if_not_exists_claims_once(redis_client):
    repo = EntityRepository(redis_client, ClaimRecord)
    record = ClaimRecord(claimed_at=CREATED)
    first = await repo.set_if_not_exists("claim:x", record, ttl=60)
    second = await repo.set_if_not_exists("claim:x", record, ttl=60)
    assert first.data is True
    assert second.data is False
    assert 0 < await redis_client.ttl("claim:x") <= 60


@pytest.mark.asyncio
async def test_save_if_exists_only_overwrites(redis_client):
    repo = EntityRepository(redis_client, CounterEntity)
    assert (await repo.save_if_exists("counter:x", _entity())).data is False
    assert await redis_client.exists("counter:x") == 0
    await repo.save("counter:x", _entity())
    updated = _entity().model_copy(update={"total_count": 7})
    assert (await repo.save_if_exists("counter:x", updated)).data is True
    assert (await repo.get("counter:x")).data.total_count == 7


@pytest.mark.asyncio
async def test_save_with_ttl_and_delete(redis_client):
    repo = EntityRepository(redis_client, ClaimRecord)
    await repo.save_with_ttl("claim:y", ClaimRecord(claimed_at=CREATED), 30)
    assert 0 < await redis_client.ttl("claim:y") <= 30
    assert (await repo.delete("claim:y")).data is True
    assert (await repo.delete("claim:y")).data is False


@pytest.mark.asyncio
async def test_store_failure_becomes_storage_error(redis_client, monkeypatch):
    async def broken(*args, **kwargs):
        raise RedisConnectionError("connection refused")

    monkeypatch.setattr(redis_client, "get", broken)
    result = await EntityRepository(redis_client, CounterEntity).get("counter:example-1a2b3c4d")
    assert not result.success
    assert isinstance(result.error, StorageError)


# ---------------------------------------------------------------------------
# CounterRepository
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_counter_increment_decrement(redis_client):
    repo = CounterRepository(redis_client)
    assert (await repo.get("c")).data == 0
    assert (await repo.increment("c")).data == 1
    assert (await repo.increment("c", 4)).data == 5
    assert (await repo.decrement("c", 2)).data == 3
    await repo.set("c", 10)
    assert (await repo.get("c")).data == 10


@pytest.mark.asyncio
async def test_counter_increment_with_ttl(redis_client):
    repo = CounterRepository(redis_client)
    assert (await repo.increment("daily", ttl=3600)).data == 1
    assert (await repo.increment("daily", ttl=3600)).data == 2
    assert 0 < await redis_client.ttl("daily") <= 3600


@pytest.mark.asyncio
async def test_counter_get_many_treats_missing_and_corrupt_as_zero(redis_client):
    repo = CounterRepository(redis_client)
    await redis_client.set("a", 3)
    await redis_client.set("b", "garbage")
    result = await repo.get_many(["a", "b", "missing"])
    assert result.data == [3, 0, 0]
    assert (await repo.get_many([])).data == []


# ---------------------------------------------------------------------------
# ListRepository
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_push_is_newest_first(redis_client):
    repo = ListRepository(redis_client, BBSMessage)
    for n in range(3):
        assert (await repo.push("log", _message(n))).data == n + 1
    items = (await repo.range("log", 0, -1)).data
    assert [m.id for m in items] == ["m2", "m1", "m0"]
    assert (await repo.length("log")).data == 3


@pytest.mark.asyncio
async def test_list_trim_and_clear(redis_client):
    repo = ListRepository(redis_client, BBSMessage)
    for n in range(5):
        await repo.push("log", _message(n))
    await repo.trim("log", 0, 1)
    assert [m.id for m in (await repo.range("log")).data] == ["m4", "m3"]
    await repo.clear("log")
    assert (await repo.length("log")).data == 0


@pytest.mark.asyncio
async def test_list_skips_corrupt_items(redis_client):
    repo = ListRepository(redis_client, BBSMessage)
    await repo.push("log", _message(0))
    await redis_client.lpush("log", "{broken")
    await repo.push("log", _message(1))
    assert [m.id for m in (await repo.range("log")).data] == ["m1", "m0"]


@pytest.mark.asyncio
async def test_list_locate_replace_remove(redis_client):
    repo = ListRepository(redis_client, BBSMessage)
    for n in range(3):
        await repo.push("log", _message(n))

    found = (await repo.locate("log", lambda m: m.id == "m1")).data
    assert found.index == 1
    edited = found.item.model_copy(update={"message": "edited"})
    assert (await repo.replace("log", found.index, found.raw, edited)).data is True
    assert (await repo.range("log", 1, 1)).data[0].message == "edited"

    # The slot no longer holds the raw value we located first.
    assert (await repo.replace("log", found.index, found.raw, edited)).data is False

    current = (await repo.locate("log", lambda m: m.id == "m1")).data
    assert (await repo.remove("log", current.raw)).data is True
    assert (await repo.remove("log", current.raw)).data is False
    assert (await repo.locate("log", lambda m: m.id == "m1")).data is None


# ---------------------------------------------------------------------------
# SortedSetRepository
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_sorted_set_upsert_and_order(redis_client):
    repo = SortedSetRepository(redis_client)
    assert (await repo.add("z", "ann", 10)).data is True
    assert (await repo.add("z", "bob", 30)).data is True
    assert (await repo.add("z", "ann", 50)).data is False
    members = (await repo.get_range_with_scores("z")).data
    assert [(m.member, m.score) for m in members] == [("ann", 50.0), ("bob", 30.0)]
    assert (await repo.count("z")).data == 2
    assert (await repo.get_score("z", "bob")).data == 30.0
    assert (await repo.get_score("z", "nobody")).data is None


@pytest.mark.asyncio
async def test_sorted_set_remove_range_drops_lowest(redis_client):
    repo = SortedSetRepository(redis_client)
    for name, score in [("a", 1), ("b", 2), ("c", 3), ("d", 4)]:
        await repo.add("z", name, score)
    assert (await repo.remove_range("z", 0, 1)).data == 2
    assert [m.member for m in (await repo.get_range_with_scores("z")).data] == ["d", "c"]
    assert (await repo.remove("z", "d")).data is True
    assert (await repo.remove("z", "d")).data is False
    await repo.clear("z")
    assert (await repo.count("z")).data == 0


@pytest.mark.asyncio
async def test_sorted_set_update_never_inserts(redis_client):
    repo = SortedSetRepository(redis_client)
    await repo.add("z", "ann", 10)
    assert (await repo.update("z", "ann", 20)).success
    assert (await repo.update("z", "ghost", 99)).success
    assert (await repo.get_score("z", "ann")).data == 20.0
    assert (await repo.get_score("z", "ghost")).data is None
    assert (await repo.count("z")).data == 1


# ---------------------------------------------------------------------------
# UrlMappingRepository / KeyspaceRepository
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_url_mapping(redis_client):
    repo = UrlMappingRepository(redis_client, CounterKeys())
    assert (await repo.get("https://a.example")).data is None
    await repo.set("https://a.example", "a-12345678")
    assert (await repo.get("https://a.example")).data == "a-12345678"
    assert await redis_client.get("url:counter:https%3A%2F%2Fa.example") == "a-12345678"
    assert (await repo.delete("https://a.example")).data is True
    assert (await repo.get("https://a.example")).data is None


@pytest.mark.asyncio
async def test_delete_pattern_respects_exclude(redis_client):
    for key in ("counter:x:total", "counter:x:owner", "counter:x:daily:2026-01-01", "counter:y:total"):
        await redis_client.set(key, 1)
    repo = KeyspaceRepository(redis_client)
    deleted = await repo.delete_pattern("counter:x:*", exclude={"counter:x:owner"})
    assert deleted.data == 2
    remaining = sorted((await repo.scan("counter:*")).data)
    assert remaining == ["counter:x:owner", "counter:y:total"]
