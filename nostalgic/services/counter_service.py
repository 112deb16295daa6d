"""
Counter service: a deduplicated visit counter with rolling views.

Design notes
------------
- A visit is counted only by the caller that wins the per-viewer visit
  claim, so any number of concurrent increments from one viewer inside
  the dedup window add exactly one.
- The running total lives at ``counter:{id}:total`` and each UTC day at
  ``counter:{id}:daily:{date}``.  Today, yesterday, week (7 days) and
  month (30 days) are summed from the day buckets at read time with a
  single ``MGET``.
- If a counter write fails after the claim, earlier writes are undone
  and the claim released so the viewer can be counted on retry.
"""
import logging
from datetime import datetime, time, timedelta, timezone

import redis.asyncio as redis

from nostalgic.claims import compensate
from nostalgic.config import Settings
from nostalgic.keys import CounterKeys
from nostalgic.repositories import CounterRepository
from nostalgic.result import Err, NotFoundError, Ok, Result, ValidationError
from nostalgic.schemas import (
    CounterCreateParams,
    CounterData,
    CounterEntity,
    CounterKind,
)
from nostalgic.services.base import BaseService, BoundedCounter, Clock, utcnow
from nostalgic.validation import validate_output

logger = logging.getLogger(__name__)

_WINDOW_DAYS = 30
_COUNTER_KINDS = frozenset({"total", "today", "yesterday", "week", "month"})


class CounterService(BaseService[CounterEntity, CounterData, CounterCreateParams]):
    service_name = "counter"
    entity_model = CounterEntity
    data_model = CounterData
    params_model = CounterCreateParams
    activity_field = "last_visit"

    keys: CounterKeys

    def __init__(self, client: redis.Redis, settings: Settings, clock: Clock = utcnow) -> None:
        super().__init__(client, settings, CounterKeys(), clock)
        self.counters = CounterRepository(client)
        self.total = BoundedCounter(self.counters, settings.COUNTER_MAX_VALUE)

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def build_entity(self, public_id: str, url: str, params: CounterCreateParams) -> Result:
        return Ok(CounterEntity(id=public_id, url=url, created=self.clock()))

    async def to_data(self, entity: CounterEntity) -> Result:
        today = self.clock().date()
        keys = [self.keys.total(entity.id)]
        keys += [self.keys.daily(entity.id, today - timedelta(days=n)) for n in range(_WINDOW_DAYS)]
        values = await self.counters.get_many(keys)
        if not values.success:
            return values
        total, daily = values.data[0], values.data[1:]
        return validate_output(CounterData, {
            "id": entity.id,
            "url": entity.url,
            "total": min(total, self.settings.COUNTER_MAX_VALUE),
            "today": daily[0],
            "yesterday": daily[1],
            "week": sum(daily[:7]),
            "month": sum(daily),
            "last_visit": entity.last_visit,
        })

    async def cleanup(self, entity: CounterEntity) -> Result:
        return await self.keyspace.delete_pattern(self.keys.daily_pattern(entity.id))

    async def last_activity(self, entity: CounterEntity) -> Result:
        """Newest day bucket, else the last recorded visit, else creation time."""
        keys = await self.keyspace.scan(self.keys.daily_pattern(entity.id))
        if not keys.success:
            return keys
        days = []
        for key in keys.data:
            try:
                days.append(datetime.fromisoformat(self.keys.split(key)[-1]).date())
            except ValueError:
                logger.warning("Ignoring malformed daily key %s", key)
        if days:
            newest = datetime.combine(max(days), time.min, tzinfo=timezone.utc)
            return Ok(max(newest, entity.created))
        return await super().last_activity(entity)

    # ------------------------------------------------------------------
    # Visits
    # ------------------------------------------------------------------

    async def increment(self, public_id: str, viewer_hash: str) -> Result:
        """
        Count one visit from *viewer_hash*.

        A repeat visit inside ``COUNTER_VISIT_TTL`` returns the current
        data unchanged.
        """
        entity = await self.get_by_id(public_id)
        if not entity.success:
            return entity

        claim = await self.claims.acquire(
            self.keys.visit_marker(public_id, viewer_hash), self.settings.COUNTER_VISIT_TTL
        )
        if not claim.success:
            return claim
        if not claim.data.acquired:
            logger.debug("counter.increment: repeat visit to %s ignored", public_id)
            return await self.to_data(entity.data)

        total_key = self.keys.total(public_id)
        total = await self.total.increment(total_key)
        if not total.success:
            await self.claims.release(claim.data)
            return total

        now = self.clock()
        daily = await self.counters.increment(
            self.keys.daily(public_id, now.date()),
            ttl=self.settings.COUNTER_DAILY_RETENTION_DAYS * 86400,
        )
        if not daily.success:
            await compensate(
                f"counter total {total_key}",
                lambda: self.total.increment(total_key, -1),
                self.settings.ROLLBACK_ATTEMPTS,
            )
            await self.claims.release(claim.data)
            return daily

        updated = entity.data.model_copy(update={"total_count": total.data, "last_visit": now})
        refreshed = await self._refresh(updated, fallback=entity.data)
        if not refreshed.success:
            return refreshed
        return await self.to_data(refreshed.data)

    async def set_counter_value(self, url: str, token: str, value: int) -> Result:
        """Owner-only override of the running total (clamped to the ceiling)."""
        return await self._timed("set_value", self._set_counter_value(url, token, value))

    async def _set_counter_value(self, url: str, token: str, value: int) -> Result:
        entity = await self.require_owner(url, token)
        if not entity.success:
            return entity
        stored = await self.total.set(self.keys.total(entity.data.id), value)
        if not stored.success:
            return stored
        updated = await self._refresh(entity.data.model_copy(update={"total_count": stored.data}))
        if not updated.success:
            return updated
        return await self.to_data(updated.data)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_counter_data(self, public_id: str) -> Result:
        return await self.get(public_id)

    async def get_display_value(self, public_id: str, kind: CounterKind = "total") -> Result:
        """One number for display; an unknown counter shows 0."""
        if kind not in _COUNTER_KINDS:
            return Err(ValidationError(f"Unknown counter type: {kind!r}"))
        data = await self.get_counter_data(public_id)
        if not data.success:
            if isinstance(data.error, NotFoundError):
                return Ok(0)
            return data
        return Ok(getattr(data.data, kind))
