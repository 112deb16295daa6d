"""
Ranking service: a bounded high-score table.

Design notes
------------
- Scores live in the sorted set ``ranking:{id}:scores``.  Submitting a
  name that is already present overwrites its score.
- After each submit the set is trimmed back to ``max_entries`` with one
  rank-range removal of the lowest scores.
- Ranks are never stored; they are the 1-based position in a fresh
  descending read.
"""
import logging

import redis.asyncio as redis

from nostalgic.config import Settings
from nostalgic.keys import RankingKeys
from nostalgic.repositories import SortedSetRepository
from nostalgic.result import Err, NotFoundError, Ok, Result, ValidationError
from nostalgic.schemas import (
    RankingCreateParams,
    RankingData,
    RankingEntity,
    RankingScore,
)
from nostalgic.services.base import BaseService, Clock, utcnow
from nostalgic.validation import parse_input, validate_output

logger = logging.getLogger(__name__)


class RankingService(BaseService[RankingEntity, RankingData, RankingCreateParams]):
    service_name = "ranking"
    entity_model = RankingEntity
    data_model = RankingData
    params_model = RankingCreateParams
    activity_field = "last_update"

    keys: RankingKeys

    def __init__(self, client: redis.Redis, settings: Settings, clock: Clock = utcnow) -> None:
        super().__init__(client, settings, RankingKeys(), clock)
        self.scores = SortedSetRepository(client)

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def build_entity(self, public_id: str, url: str, params: RankingCreateParams) -> Result:
        max_entries = params.max_entries or self.settings.RANKING_MAX_ENTRIES
        if max_entries > self.settings.RANKING_MAX_ENTRIES:
            return Err(ValidationError(
                f"max_entries must not exceed {self.settings.RANKING_MAX_ENTRIES}"
            ))
        return Ok(RankingEntity(
            id=public_id, url=url, created=self.clock(), max_entries=max_entries
        ))

    async def to_data(self, entity: RankingEntity, limit: int | None = None) -> Result:
        limit = limit or self.settings.RANKING_DEFAULT_LIMIT
        limit = max(1, min(limit, entity.max_entries))
        key = self.keys.scores(entity.id)
        members = await self.scores.get_range_with_scores(key, 0, limit - 1)
        if not members.success:
            return members
        count = await self.scores.count(key)
        if not count.success:
            return count
        return validate_output(RankingData, {
            "id": entity.id,
            "url": entity.url,
            "entries": [
                {"rank": position, "name": member.member, "score": int(member.score)}
                for position, member in enumerate(members.data, start=1)
            ],
            "total_entries": min(count.data, entity.max_entries),
            "max_entries": entity.max_entries,
            "last_update": entity.last_update,
        })

    async def cleanup(self, entity: RankingEntity) -> Result:
        return await self.scores.clear(self.keys.scores(entity.id))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _parse_score(self, name: str, score: int) -> Result:
        parsed = parse_input(RankingScore, {"name": name, "score": score})
        if not parsed.success:
            return parsed
        if len(parsed.data.name) > self.settings.RANKING_MAX_NAME_LENGTH:
            return Err(ValidationError(
                f"name exceeds maximum length of {self.settings.RANKING_MAX_NAME_LENGTH}"
            ))
        if parsed.data.score > self.settings.RANKING_MAX_SCORE:
            return Err(ValidationError(
                f"score exceeds maximum of {self.settings.RANKING_MAX_SCORE}"
            ))
        return parsed

    async def _evict(self, entity: RankingEntity) -> Result:
        """Drop the lowest scores beyond ``max_entries``; returns the retained count."""
        key = self.keys.scores(entity.id)
        count = await self.scores.count(key)
        if not count.success:
            return count
        surplus = count.data - entity.max_entries
        if surplus > 0:
            removed = await self.scores.remove_range(key, 0, surplus - 1)
            if not removed.success:
                return removed
            logger.debug("ranking %s: evicted %d entries", entity.id, removed.data)
            return Ok(entity.max_entries)
        return count

    async def _touch(self, entity: RankingEntity, total_entries: int) -> Result:
        updated = entity.model_copy(
            update={"total_entries": total_entries, "last_update": self.clock()}
        )
        return await self._refresh(updated, fallback=entity)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def submit_score(
        self,
        url: str,
        token: str,
        name: str,
        score: int,
        viewer_hash: str | None = None,
    ) -> Result:
        """
        Upsert *name* with *score*, then evict down to ``max_entries``.

        With *viewer_hash*, a second submit from that viewer inside
        ``RANKING_SUBMIT_COOLDOWN`` returns the current table unchanged.
        """
        return await self._timed(
            "submit", self._submit_score(url, token, name, score, viewer_hash)
        )

    async def _submit_score(self, url, token, name, score, viewer_hash) -> Result:
        entity = await self.require_owner(url, token)
        if not entity.success:
            return entity
        entry = self._parse_score(name, score)
        if not entry.success:
            return entry

        claim = None
        if viewer_hash:
            claim = await self.claims.acquire(
                self.keys.cooldown(entity.data.id, viewer_hash),
                self.settings.RANKING_SUBMIT_COOLDOWN,
            )
            if not claim.success:
                return claim
            if not claim.data.acquired:
                logger.debug("ranking.submit: cooldown active for %s", entity.data.id)
                return await self.to_data(entity.data)

        added = await self.scores.add(
            self.keys.scores(entity.data.id), entry.data.name, entry.data.score
        )
        if not added.success:
            if claim is not None:
                await self.claims.release(claim.data)
            return added

        retained = await self._evict(entity.data)
        if not retained.success:
            return retained
        updated = await self._touch(entity.data, retained.data)
        if not updated.success:
            return updated
        return await self.to_data(updated.data)

    async def update_score(self, url: str, token: str, name: str, score: int) -> Result:
        """Change the score of an existing *name*."""
        return await self._timed("update", self._update_score(url, token, name, score))

    async def _update_score(self, url, token, name, score) -> Result:
        entity = await self.require_owner(url, token)
        if not entity.success:
            return entity
        entry = self._parse_score(name, score)
        if not entry.success:
            return entry
        key = self.keys.scores(entity.data.id)
        current = await self.scores.get_score(key, entry.data.name)
        if not current.success:
            return current
        if current.data is None:
            return Err(NotFoundError("Ranking entry", entry.data.name))
        # Update-only: an entry evicted or removed meanwhile stays gone.
        changed = await self.scores.update(key, entry.data.name, entry.data.score)
        if not changed.success:
            return changed
        count = await self.scores.count(key)
        if not count.success:
            return count
        updated = await self._touch(entity.data, min(count.data, entity.data.max_entries))
        if not updated.success:
            return updated
        return await self.to_data(updated.data)

    async def remove_entry(self, url: str, token: str, name: str) -> Result:
        return await self._timed("remove", self._remove_entry(url, token, name))

    async def _remove_entry(self, url, token, name) -> Result:
        entity = await self.require_owner(url, token)
        if not entity.success:
            return entity
        key = self.keys.scores(entity.data.id)
        removed = await self.scores.remove(key, name)
        if not removed.success:
            return removed
        if not removed.data:
            return Err(NotFoundError("Ranking entry", name))
        count = await self.scores.count(key)
        if not count.success:
            return count
        updated = await self._touch(entity.data, min(count.data, entity.data.max_entries))
        if not updated.success:
            return updated
        return await self.to_data(updated.data)

    async def clear_ranking(self, url: str, token: str) -> Result:
        return await self._timed("clear", self._clear_ranking(url, token))

    async def _clear_ranking(self, url, token) -> Result:
        entity = await self.require_owner(url, token)
        if not entity.success:
            return entity
        cleared = await self.scores.clear(self.keys.scores(entity.data.id))
        if not cleared.success:
            return cleared
        updated = await self._touch(entity.data, 0)
        if not updated.success:
            return updated
        return await self.to_data(updated.data)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_ranking_data(self, public_id: str, limit: int | None = None) -> Result:
        entity = await self.get_by_id(public_id)
        if not entity.success:
            return entity
        return await self.to_data(entity.data, limit)
