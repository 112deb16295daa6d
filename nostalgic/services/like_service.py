"""
Like service: a per-viewer toggle over a bounded total.

The viewer's "has liked" state is a claim at ``like:{id}:users:{hash}``
that expires after ``LIKE_USER_STATE_TTL``.  Liking acquires it and
unliking removes it; whichever move loses a race re-reads and returns
the current state instead of touching the total.
"""
import redis.asyncio as redis

from nostalgic.claims import ClaimState
from nostalgic.config import Settings
from nostalgic.keys import LikeKeys
from nostalgic.repositories import CounterRepository
from nostalgic.result import Err, Ok, Result, ValidationError
from nostalgic.schemas import LikeCreateParams, LikeData, LikeEntity
from nostalgic.services.base import BaseService, BoundedCounter, Clock, utcnow
from nostalgic.validation import validate_output


class LikeService(BaseService[LikeEntity, LikeData, LikeCreateParams]):
    service_name = "like"
    entity_model = LikeEntity
    data_model = LikeData
    params_model = LikeCreateParams
    activity_field = "last_like"

    keys: LikeKeys

    def __init__(self, client: redis.Redis, settings: Settings, clock: Clock = utcnow) -> None:
        super().__init__(client, settings, LikeKeys(), clock)
        self.counters = CounterRepository(client)
        self.total = BoundedCounter(self.counters, settings.LIKE_MAX_VALUE)

    def build_entity(self, public_id: str, url: str, params: LikeCreateParams) -> Result:
        return Ok(LikeEntity(id=public_id, url=url, created=self.clock()))

    async def to_data(self, entity: LikeEntity, viewer_hash: str | None = None) -> Result:
        total = await self.total.get(self.keys.total(entity.id))
        if not total.success:
            return total
        user_liked = False
        if viewer_hash:
            state = await self.claims.probe(self.keys.user_marker(entity.id, viewer_hash))
            if not state.success:
                return state
            user_liked = state.data is ClaimState.CLAIMED
        return validate_output(LikeData, {
            "id": entity.id,
            "url": entity.url,
            "total": total.data,
            "user_liked": user_liked,
            "last_like": entity.last_like,
        })

    async def get_like_data(self, public_id: str, viewer_hash: str | None = None) -> Result:
        entity = await self.get_by_id(public_id)
        if not entity.success:
            return entity
        return await self.to_data(entity.data, viewer_hash)

    async def toggle(self, public_id: str, viewer_hash: str) -> Result:
        """Like if *viewer_hash* has not liked yet, otherwise unlike."""
        entity = await self.get_by_id(public_id)
        if not entity.success:
            return entity

        marker = self.keys.user_marker(public_id, viewer_hash)
        ttl = self.settings.LIKE_USER_STATE_TTL
        total_key = self.keys.total(public_id)

        state = await self.claims.probe(marker)
        if not state.success:
            return state

        if state.data is ClaimState.CLAIMED:
            removed = await self.claims.remove(marker, ttl)
            if not removed.success:
                return removed
            if not removed.data.acquired:
                # A concurrent toggle already unliked.
                return await self.to_data(entity.data, viewer_hash)
            total = await self.total.increment(total_key, -1)
            if not total.success:
                await self.claims.restore(removed.data)
                return total
            return await self._record(entity.data, total.data, viewer_hash)

        claim = await self.claims.acquire(marker, ttl)
        if not claim.success:
            return claim
        if not claim.data.acquired:
            # A concurrent toggle already liked.
            return await self.to_data(entity.data, viewer_hash)
        total = await self.total.increment(total_key, 1)
        if not total.success:
            await self.claims.release(claim.data)
            return total
        return await self._record(entity.data, total.data, viewer_hash)

    async def increment_like(
        self, url: str, token: str, by: int = 1, viewer_hash: str | None = None
    ) -> Result:
        """Owner-only bump of the total by *by*, without touching viewer state."""
        return await self._timed("increment", self._increment_like(url, token, by, viewer_hash))

    async def _increment_like(self, url, token, by, viewer_hash) -> Result:
        if isinstance(by, bool) or not isinstance(by, int) or by < 1:
            return Err(ValidationError(f"by must be a positive integer, got {by!r}"))
        entity = await self.require_owner(url, token)
        if not entity.success:
            return entity
        total = await self.total.increment(self.keys.total(entity.data.id), by)
        if not total.success:
            return total
        return await self._record(entity.data, total.data, viewer_hash)

    async def set_like_value(
        self, url: str, token: str, value: int, viewer_hash: str | None = None
    ) -> Result:
        return await self._timed("set_value", self._set_like_value(url, token, value, viewer_hash))

    async def _set_like_value(self, url, token, value, viewer_hash) -> Result:
        entity = await self.require_owner(url, token)
        if not entity.success:
            return entity
        total = await self.total.set(self.keys.total(entity.data.id), value)
        if not total.success:
            return total
        return await self._record(entity.data, total.data, viewer_hash)

    async def _record(self, entity: LikeEntity, total: int, viewer_hash: str | None) -> Result:
        updated = entity.model_copy(update={"total_likes": total, "last_like": self.clock()})
        refreshed = await self._refresh(updated, fallback=entity)
        if not refreshed.success:
            return refreshed
        return await self.to_data(refreshed.data, viewer_hash)
