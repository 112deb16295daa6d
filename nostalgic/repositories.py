"""
Primitive repositories over the shared Redis store.

Each repository wraps exactly one store data shape and never spans two
keys atomically.  Every method is a single round trip (``replace`` uses a
single-key WATCH/MULTI check-and-set) and returns a ``Result``: Redis
failures come back as ``StorageError`` and stored records that fail
validation come back as ``NotFoundError``, so no raw store exception
reaches the service layer.

``EntityRepository.set_if_not_exists`` is the one conditional write the
services build deduplication, cooldowns and like markers on.
"""
import logging
from typing import Awaitable, Callable, Collection, Generic, NamedTuple, TypeVar

import redis.asyncio as redis
from pydantic import BaseModel
from redis.exceptions import RedisError, WatchError

from nostalgic.keys import ServiceKeys
from nostalgic.middleware import increment_store_calls
from nostalgic.result import Err, NotFoundError, Ok, Result, StorageError
from nostalgic.validation import from_storage, parse_count, to_storage

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)
T = TypeVar("T")

_DELETE_CHUNK = 500


class ScoredMember(NamedTuple):
    member: str
    score: float


class Located(NamedTuple):
    index: int
    item: BaseModel
    raw: str


class _RedisRepository:
    def __init__(self, client: redis.Redis) -> None:
        self._redis = client

    async def _run(self, operation: str, command: Callable[[], Awaitable[T]]) -> Result:
        increment_store_calls()
        try:
            return Ok(await command())
        except RedisError as exc:
            logger.debug("Redis %s failed: %s", operation, exc)
            return Err(StorageError(operation, str(exc)))


# ---------------------------------------------------------------------------
# String records
# ---------------------------------------------------------------------------

class EntityRepository(_RedisRepository, Generic[M]):
    """JSON records of one pydantic *model*, one record per key."""

    def __init__(self, client: redis.Redis, model: type[M]) -> None:
        super().__init__(client)
        self.model = model

    async def get(self, key: str) -> Result:
        raw = await self._run("get", lambda: self._redis.get(key))
        if not raw.success:
            return raw
        if raw.data is None:
            return Err(NotFoundError(self.model.__name__, key))
        parsed = from_storage(self.model, raw.data)
        if not parsed.success:
            return Err(NotFoundError(self.model.__name__, key))
        return parsed

    async def save(self, key: str, record: M) -> Result:
        serialised = to_storage(record)
        if not serialised.success:
            return serialised
        result = await self._run("save", lambda: self._redis.set(key, serialised.data))
        return Ok(None) if result.success else result

    async def save_with_ttl(self, key: str, record: M, ttl: int) -> Result:
        serialised = to_storage(record)
        if not serialised.success:
            return serialised
        result = await self._run(
            "save_with_ttl", lambda: self._redis.set(key, serialised.data, ex=ttl)
        )
        return Ok(None) if result.success else result

    async def set_if_not_exists(self, key: str, record: M, ttl: int | None = None) -> Result:
        """
        Write *record* only if *key* is absent (``SET NX``, with ``EX`` when *ttl* is given).

        Returns ``Ok(True)`` when this call created the key and
        ``Ok(False)`` when it already existed.
        """
        serialised = to_storage(record)
        if not serialised.success:
            return serialised
        result = await self._run(
            "set_if_not_exists",
            lambda: self._redis.set(key, serialised.data, nx=True, ex=ttl),
        )
        if not result.success:
            return result
        return Ok(bool(result.data))

    async def save_if_exists(self, key: str, record: M) -> Result:
        """
        Overwrite *key* only if it is still present (``SET XX``).

        ``Ok(False)`` means the key was gone and nothing was written.
        """
        serialised = to_storage(record)
        if not serialised.success:
            return serialised
        result = await self._run(
            "save_if_exists", lambda: self._redis.set(key, serialised.data, xx=True)
        )
        if not result.success:
            return result
        return Ok(bool(result.data))

    async def delete(self, key: str) -> Result:
        result = await self._run("delete", lambda: self._redis.delete(key))
        if not result.success:
            return result
        return Ok(result.data == 1)

    async def exists(self, key: str) -> Result:
        result = await self._run("exists", lambda: self._redis.exists(key))
        if not result.success:
            return result
        return Ok(result.data == 1)


# ---------------------------------------------------------------------------
# Integer counters
# ---------------------------------------------------------------------------

class CounterRepository(_RedisRepository):
    async def get(self, key: str) -> Result:
        raw = await self._run("counter get", lambda: self._redis.get(key))
        if not raw.success:
            return raw
        return parse_count(raw.data)

    async def get_many(self, keys: list[str]) -> Result:
        """Read several counters in one ``MGET``; unreadable values count as zero."""
        if not keys:
            return Ok([])
        raw = await self._run("counter get_many", lambda: self._redis.mget(keys))
        if not raw.success:
            return raw
        values = []
        for key, value in zip(keys, raw.data):
            parsed = parse_count(value)
            if not parsed.success:
                logger.warning("Ignoring unreadable counter %s: %s", key, parsed.error)
            values.append(parsed.data if parsed.success else 0)
        return Ok(values)

    async def set(self, key: str, value: int) -> Result:
        result = await self._run("counter set", lambda: self._redis.set(key, value))
        return Ok(None) if result.success else result

    async def increment(self, key: str, by: int = 1, ttl: int | None = None) -> Result:
        """
        ``INCRBY`` *key* and return the new value.

        With *ttl* the increment and the expiry refresh travel in one
        MULTI/EXEC pipeline, still a single round trip.
        """
        if ttl is None:
            return await self._run("increment", lambda: self._redis.incrby(key, by))

        async def _incr_with_ttl() -> int:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.incrby(key, by)
                pipe.expire(key, ttl)
                value, _ = await pipe.execute()
            return value

        return await self._run("increment", _incr_with_ttl)

    async def decrement(self, key: str, by: int = 1) -> Result:
        return await self._run("decrement", lambda: self._redis.decrby(key, by))


# ---------------------------------------------------------------------------
# Lists (newest first)
# ---------------------------------------------------------------------------

class ListRepository(_RedisRepository, Generic[M]):
    def __init__(self, client: redis.Redis, model: type[M]) -> None:
        super().__init__(client)
        self.model = model

    def _parse_all(self, key: str, raws: list[str]) -> list[M]:
        items = []
        for raw in raws:
            parsed = from_storage(self.model, raw)
            if parsed.success:
                items.append(parsed.data)
            else:
                logger.warning("Skipping unreadable %s in %s", self.model.__name__, key)
        return items

    async def push(self, key: str, *items: M) -> Result:
        """``LPUSH`` *items*; the last item given ends up at the head.  Returns the new length."""
        serialised = []
        for item in items:
            checked = to_storage(item)
            if not checked.success:
                return checked
            serialised.append(checked.data)
        return await self._run("list push", lambda: self._redis.lpush(key, *serialised))

    async def range(self, key: str, start: int = 0, end: int = -1) -> Result:
        raw = await self._run("list range", lambda: self._redis.lrange(key, start, end))
        if not raw.success:
            return raw
        return Ok(self._parse_all(key, raw.data))

    async def length(self, key: str) -> Result:
        return await self._run("list length", lambda: self._redis.llen(key))

    async def trim(self, key: str, start: int, end: int) -> Result:
        result = await self._run("list trim", lambda: self._redis.ltrim(key, start, end))
        return Ok(None) if result.success else result

    async def clear(self, key: str) -> Result:
        result = await self._run("list clear", lambda: self._redis.delete(key))
        return Ok(None) if result.success else result

    async def locate(self, key: str, predicate: Callable[[M], bool]) -> Result:
        """Return the first ``Located`` item matching *predicate*, or ``Ok(None)``."""
        raw = await self._run("list locate", lambda: self._redis.lrange(key, 0, -1))
        if not raw.success:
            return raw
        for index, value in enumerate(raw.data):
            parsed = from_storage(self.model, value)
            if parsed.success and predicate(parsed.data):
                return Ok(Located(index, parsed.data, value))
        return Ok(None)

    async def replace(self, key: str, index: int, expected_raw: str, item: M) -> Result:
        """
        Overwrite position *index* with *item* if it still holds *expected_raw*.

        Returns ``Ok(False)`` when the element moved or changed under us,
        letting the caller re-locate and retry.
        """
        checked = to_storage(item)
        if not checked.success:
            return checked

        async def _check_and_set() -> bool:
            async with self._redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    current = await pipe.lindex(key, index)
                    if current != expected_raw:
                        return False
                    pipe.multi()
                    pipe.lset(key, index, checked.data)
                    await pipe.execute()
                except WatchError:
                    return False
            return True

        return await self._run("list replace", _check_and_set)

    async def remove(self, key: str, raw: str) -> Result:
        """Remove one occurrence of the stored value *raw* (``LREM``)."""
        result = await self._run("list remove", lambda: self._redis.lrem(key, 1, raw))
        if not result.success:
            return result
        return Ok(result.data > 0)


# ---------------------------------------------------------------------------
# Sorted sets (ranked high to low)
# ---------------------------------------------------------------------------

class SortedSetRepository(_RedisRepository):
    async def add(self, key: str, member: str, score: float) -> Result:
        """Upsert *member*; ``Ok(True)`` when it was not present before."""
        result = await self._run("zset add", lambda: self._redis.zadd(key, {member: score}))
        if not result.success:
            return result
        return Ok(result.data == 1)

    async def update(self, key: str, member: str, score: float) -> Result:
        """Set the score of an existing *member* (``ZADD XX``); never inserts."""
        result = await self._run(
            "zset update", lambda: self._redis.zadd(key, {member: score}, xx=True)
        )
        return Ok(None) if result.success else result

    async def remove(self, key: str, member: str) -> Result:
        result = await self._run("zset remove", lambda: self._redis.zrem(key, member))
        if not result.success:
            return result
        return Ok(result.data == 1)

    async def get_score(self, key: str, member: str) -> Result:
        return await self._run("zset score", lambda: self._redis.zscore(key, member))

    async def get_range_with_scores(self, key: str, start: int = 0, end: int = -1) -> Result:
        """Members from rank *start* to *end* inclusive, highest score first."""
        raw = await self._run(
            "zset range",
            lambda: self._redis.zrevrange(key, start, end, withscores=True),
        )
        if not raw.success:
            return raw
        return Ok([ScoredMember(member, float(score)) for member, score in raw.data])

    async def count(self, key: str) -> Result:
        return await self._run("zset count", lambda: self._redis.zcard(key))

    async def remove_range(self, key: str, start: int, end: int) -> Result:
        """Remove by ascending rank, so ``(0, n - 1)`` drops the *n* lowest scores."""
        return await self._run(
            "zset remove range", lambda: self._redis.zremrangebyrank(key, start, end)
        )

    async def clear(self, key: str) -> Result:
        result = await self._run("zset clear", lambda: self._redis.delete(key))
        return Ok(None) if result.success else result


# ---------------------------------------------------------------------------
# URL -> public id index
# ---------------------------------------------------------------------------

class UrlMappingRepository(_RedisRepository):
    def __init__(self, client: redis.Redis, keys: ServiceKeys) -> None:
        super().__init__(client)
        self.keys = keys

    async def set(self, url: str, public_id: str) -> Result:
        key = self.keys.url_mapping(url)
        result = await self._run("url mapping set", lambda: self._redis.set(key, public_id))
        return Ok(None) if result.success else result

    async def get(self, url: str) -> Result:
        """``Ok(public_id)`` or ``Ok(None)`` when the URL is not registered."""
        key = self.keys.url_mapping(url)
        return await self._run("url mapping get", lambda: self._redis.get(key))

    async def delete(self, url: str) -> Result:
        key = self.keys.url_mapping(url)
        result = await self._run("url mapping delete", lambda: self._redis.delete(key))
        if not result.success:
            return result
        return Ok(result.data == 1)


# ---------------------------------------------------------------------------
# Keyspace scans
# ---------------------------------------------------------------------------

class KeyspaceRepository(_RedisRepository):
    """SCAN-based helpers (never the blocking ``KEYS``)."""

    async def scan(self, pattern: str) -> Result:
        async def _collect() -> list[str]:
            return [key async for key in self._redis.scan_iter(match=pattern, count=500)]

        return await self._run("scan", _collect)

    async def delete_pattern(self, pattern: str, exclude: Collection[str] = ()) -> Result:
        """Delete every key matching *pattern* except *exclude*; returns how many were removed."""
        found = await self.scan(pattern)
        if not found.success:
            return found
        # SCAN may report a key more than once.
        keys = [key for key in dict.fromkeys(found.data) if key not in exclude]
        deleted = 0
        for start in range(0, len(keys), _DELETE_CHUNK):
            chunk = keys[start:start + _DELETE_CHUNK]
            result = await self._run("delete pattern", lambda chunk=chunk: self._redis.delete(*chunk))
            if not result.success:
                return result
            deleted += result.data
        if deleted:
            logger.debug("Deleted %d key(s) matching %r", deleted, pattern)
        return Ok(deleted)
