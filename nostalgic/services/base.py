"""
Base service shared by the four widgets.

Design notes
------------
- ``BaseService[E, D, P]`` is parameterised over the stored entity, the
  projected data and the create params.  A domain service supplies three
  hooks (``build_entity``, ``to_data``, ``cleanup``) and composes any
  extra repositories it needs; there is no deeper inheritance chain.
- The owner record is claimed with the store's conditional write before
  anything else is written, so two concurrent creates for one URL can
  never end up with two owners.  A create interrupted after that claim is
  repaired by the next create from the same owner.
- ``delete`` removes the entity, then the owner record, then the URL
  mapping.  A failure part-way is not rolled back: a deleted entity with
  a leftover owner record or mapping is harmless, an entity without an
  owner is not.
- Entity snapshots are refreshed with a write that only succeeds over a
  stored entity (``_refresh``), so a mutation racing a delete cannot
  bring the record back.
- ``BoundedCounter`` is the clamp-aware numeric helper used by the
  counter and like services.
"""
import hmac
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, ClassVar, Generic, TypeVar

import redis.asyncio as redis
from pydantic import BaseModel

from nostalgic.claims import Claims, compensate
from nostalgic.config import Settings
from nostalgic.ids import generate_public_id, hash_token
from nostalgic.keys import ServiceKeys
from nostalgic.repositories import (
    CounterRepository,
    EntityRepository,
    KeyspaceRepository,
    UrlMappingRepository,
)
from nostalgic.result import (
    Err,
    NotFoundError,
    Ok,
    Result,
    UnauthorizedError,
    ValidationError,
)
from nostalgic.schemas import BaseEntity, ClaimRecord, OwnerRecord
from nostalgic.validation import (
    parse_input,
    validate_public_id,
    validate_token,
    validate_url,
)

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=BaseEntity)
D = TypeVar("D", bound=BaseModel)
P = TypeVar("P", bound=BaseModel)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class OwnershipResult(Generic[E]):
    is_owner: bool
    entity: E


@dataclass(frozen=True)
class Created(Generic[D]):
    id: str
    data: D
    existing: bool = False


# ---------------------------------------------------------------------------
# Bounded numeric value
# ---------------------------------------------------------------------------

class BoundedCounter:
    """
    An integer key kept within ``[0, max_value]``.

    Increments go through the store's atomic ``INCRBY``; when the new
    value lands outside the bounds a second atomic adjustment takes back
    at most this call's own *by*, so overlapping calls never undo each
    other's share.
    """

    def __init__(self, counters: CounterRepository, max_value: int) -> None:
        self.counters = counters
        self.max_value = max_value

    async def get(self, key: str) -> Result:
        value = await self.counters.get(key)
        if not value.success:
            return value
        return Ok(min(value.data, self.max_value))

    async def increment(self, key: str, by: int = 1) -> Result:
        """Add *by* (which may be negative) and return the clamped value."""
        value = await self.counters.increment(key, by)
        if not value.success:
            return value
        if by > 0 and value.data > self.max_value:
            adjusted = await self.counters.decrement(key, min(by, value.data - self.max_value))
        elif by < 0 and value.data < 0:
            adjusted = await self.counters.increment(key, min(-by, -value.data))
        else:
            return value
        if not adjusted.success:
            return adjusted
        return Ok(min(max(adjusted.data, 0), self.max_value))

    async def set(self, key: str, value: int) -> Result:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            return Err(ValidationError(f"value must be a non-negative integer, got {value!r}"))
        clamped = min(value, self.max_value)
        stored = await self.counters.set(key, clamped)
        if not stored.success:
            return stored
        return Ok(clamped)


# ---------------------------------------------------------------------------
# Base service
# ---------------------------------------------------------------------------

class BaseService(ABC, Generic[E, D, P]):
    service_name: ClassVar[str]
    entity_model: ClassVar[type[BaseEntity]]
    data_model: ClassVar[type[BaseModel]]
    params_model: ClassVar[type[BaseModel]]
    # Entity field holding the latest activity timestamp, if any.
    activity_field: ClassVar[str | None] = None

    def __init__(
        self,
        client: redis.Redis,
        settings: Settings,
        keys: ServiceKeys,
        clock: Clock = utcnow,
    ) -> None:
        self.settings = settings
        self.keys = keys
        self.clock = clock
        self.entities: EntityRepository = EntityRepository(client, self.entity_model)
        self.owners: EntityRepository[OwnerRecord] = EntityRepository(client, OwnerRecord)
        self.urls = UrlMappingRepository(client, keys)
        self.keyspace = KeyspaceRepository(client)
        self.claims = Claims(
            EntityRepository(client, ClaimRecord), clock, settings.ROLLBACK_ATTEMPTS
        )

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def build_entity(self, public_id: str, url: str, params: P) -> Result:
        """Return ``Ok(entity)`` for a brand-new widget."""

    @abstractmethod
    async def to_data(self, entity: E) -> Result:
        """Project *entity* (plus its live sub-resources) to the public data model."""

    async def cleanup(self, entity: E) -> Result:
        """Clear domain collections before the entity itself is deleted."""
        return Ok(None)

    async def last_activity(self, entity: E) -> Result:
        if self.activity_field:
            stamp = getattr(entity, self.activity_field)
            if stamp is not None:
                return Ok(max(stamp, entity.created))
        return Ok(entity.created)

    # ------------------------------------------------------------------
    # Logging helpers
    # ------------------------------------------------------------------

    def _log_operation(self, operation: str, result: Result, elapsed_ms: float) -> None:
        label = f"{self.service_name}.{operation}"
        if result.success:
            logger.info("%s: SUCCESS", label)
        else:
            logger.warning("%s: FAILED %s", label, result.error)
        if elapsed_ms > self.settings.SLOW_OPERATION_MS:
            logger.warning("%s: slow operation took %.1f ms", label, elapsed_ms)

    async def _timed(self, operation: str, pending: Awaitable[Result]) -> Result:
        start = time.perf_counter()
        result = await pending
        self._log_operation(operation, result, (time.perf_counter() - start) * 1000)
        return result

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_by_id(self, public_id: str) -> Result:
        checked = validate_public_id(public_id)
        if not checked.success:
            return checked
        entity = await self.entities.get(self.keys.entity(public_id))
        if not entity.success and isinstance(entity.error, NotFoundError):
            return Err(NotFoundError(self.service_name.capitalize(), public_id))
        return entity

    async def get_by_url(self, url: str) -> Result:
        checked = validate_url(url, self.settings.MAX_URL_LENGTH)
        if not checked.success:
            return checked
        public_id = await self.urls.get(url)
        if not public_id.success:
            return public_id
        if public_id.data is None:
            return Err(NotFoundError(self.service_name.capitalize(), url))
        return await self.get_by_id(public_id.data)

    async def get(self, public_id: str) -> Result:
        entity = await self.get_by_id(public_id)
        if not entity.success:
            return entity
        return await self.to_data(entity.data)

    async def list_ids(self) -> Result:
        """Public ids of every stored entity of this service."""
        keys = await self.keyspace.scan(self.keys.entity_scan_pattern())
        if not keys.success:
            return keys
        ids = {}
        for key in keys.data:
            parts = self.keys.split(key)
            if len(parts) == 1:
                ids.setdefault(parts[0], None)
        return Ok(list(ids))

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def _refresh(self, updated: E, fallback: E | None = None) -> Result:
        """
        Write the entity snapshot *updated*, but only over a stored entity.

        ``Ok(entity)`` is the snapshot now in effect.  When the entity was
        deleted while the caller was mutating it, whatever the caller wrote
        under its prefix is swept and ``NotFoundError`` is returned.  With
        *fallback*, a store failure is logged and ``Ok(fallback)`` returned.
        """
        saved = await self.entities.save_if_exists(self.keys.entity(updated.id), updated)
        if not saved.success:
            if fallback is None:
                return saved
            logger.warning(
                "%s: snapshot of %s not saved: %s", self.service_name, updated.id, saved.error
            )
            return Ok(fallback)
        if not saved.data:
            logger.warning(
                "%s: %s was deleted mid-operation; sweeping its keys", self.service_name, updated.id
            )
            swept = await self.keyspace.delete_pattern(
                self.keys.children_pattern(updated.id), exclude={self.keys.owner(updated.id)}
            )
            if not swept.success:
                logger.error(
                    "%s: keys of deleted %s left behind: %s",
                    self.service_name, updated.id, swept.error,
                )
            return Err(NotFoundError(self.service_name.capitalize(), updated.id))
        return Ok(updated)

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    async def verify_ownership(self, url: str, token: str) -> Result:
        """
        Compare *token* with the stored owner hash of the entity at *url*.

        ``Ok(OwnershipResult)`` whether or not the token matches; an
        ``Err`` means there is no such entity (or the store failed).
        """
        entity = await self.get_by_url(url)
        if not entity.success:
            return entity
        owner = await self.owners.get(self.keys.owner(entity.data.id))
        if not owner.success:
            if isinstance(owner.error, NotFoundError):
                return Ok(OwnershipResult(False, entity.data))
            return owner
        is_owner = hmac.compare_digest(owner.data.token_hash, hash_token(token))
        return Ok(OwnershipResult(is_owner, entity.data))

    async def require_owner(self, url: str, token: str) -> Result:
        """``Ok(entity)`` when *token* owns *url*, otherwise an ``Err``."""
        checked = validate_token(
            token, self.settings.TOKEN_MIN_LENGTH, self.settings.TOKEN_MAX_LENGTH
        )
        if not checked.success:
            return checked
        ownership = await self.verify_ownership(url, token)
        if not ownership.success:
            return ownership
        if not ownership.data.is_owner:
            return Err(UnauthorizedError())
        return Ok(ownership.data.entity)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(self, url: str, token: str, params: P | dict | None = None) -> Result:
        """
        Create the widget for *url*, or return the existing one to its owner.

        Returns ``Ok(Created)``; ``existing`` is true on the idempotent path.
        """
        return await self._timed("create", self._create(url, token, params))

    async def _create(self, url: str, token: str, params: P | dict | None) -> Result:
        checked = validate_url(url, self.settings.MAX_URL_LENGTH)
        if not checked.success:
            return checked
        checked = validate_token(
            token, self.settings.TOKEN_MIN_LENGTH, self.settings.TOKEN_MAX_LENGTH
        )
        if not checked.success:
            return checked
        if isinstance(params, BaseModel):
            params = params.model_dump(exclude_unset=True)
        parsed = parse_input(self.params_model, params or {})
        if not parsed.success:
            return parsed

        mapped = await self.urls.get(url)
        if not mapped.success:
            return mapped
        if mapped.data is not None:
            ownership = await self.verify_ownership(url, token)
            if ownership.success:
                if not ownership.data.is_owner:
                    return Err(UnauthorizedError())
                return await self._existing(ownership.data.entity)
            if not isinstance(ownership.error, NotFoundError):
                return ownership
            logger.warning("%s: mapping for %s points nowhere; recreating", self.service_name, url)

        public_id = generate_public_id(url)
        token_hash = hash_token(token)
        owner_key = self.keys.owner(public_id)
        claimed = await self.owners.set_if_not_exists(owner_key, OwnerRecord(token_hash=token_hash))
        if not claimed.success:
            return claimed
        if not claimed.data:
            stored = await self.owners.get(owner_key)
            if not stored.success:
                return stored
            if not hmac.compare_digest(stored.data.token_hash, token_hash):
                return Err(UnauthorizedError())
            # Same owner: a concurrent create won, or an earlier one was interrupted.
            current = await self.get_by_id(public_id)
            if current.success:
                linked = await self.urls.set(url, public_id)
                if not linked.success:
                    return linked
                return await self._existing(current.data)

        entity = self.build_entity(public_id, url, parsed.data)
        if not entity.success:
            await self._undo_owner(claimed.data, owner_key)
            return entity
        saved = await self.entities.save(self.keys.entity(public_id), entity.data)
        if not saved.success:
            await self._undo_owner(claimed.data, owner_key)
            return saved
        linked = await self.urls.set(url, public_id)
        if not linked.success:
            await compensate(
                f"{self.service_name} entity {public_id}",
                lambda: self.entities.delete(self.keys.entity(public_id)),
                self.settings.ROLLBACK_ATTEMPTS,
            )
            await self._undo_owner(claimed.data, owner_key)
            return linked

        data = await self.to_data(entity.data)
        if not data.success:
            return data
        return Ok(Created(public_id, data.data, existing=False))

    async def _existing(self, entity: E) -> Result:
        data = await self.to_data(entity)
        if not data.success:
            return data
        return Ok(Created(entity.id, data.data, existing=True))

    async def _undo_owner(self, claimed: bool, owner_key: str) -> None:
        if claimed:
            await compensate(
                f"{self.service_name} owner {owner_key}",
                lambda: self.owners.delete(owner_key),
                self.settings.ROLLBACK_ATTEMPTS,
            )

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete(self, url: str, token: str) -> Result:
        """Owner-authenticated cascading delete.  ``Ok(True)`` on success."""
        return await self._timed("delete", self._delete(url, token))

    async def _delete(self, url: str, token: str) -> Result:
        entity = await self.require_owner(url, token)
        if not entity.success:
            return entity
        return await self._destroy(entity.data)

    async def purge(self, url: str, owner_hash: str) -> Result:
        """Cascading delete authorised by the stored owner hash itself."""
        return await self._timed("purge", self._purge(url, owner_hash))

    async def _purge(self, url: str, owner_hash: str) -> Result:
        entity = await self.get_by_url(url)
        if not entity.success:
            return entity
        owner = await self.owners.get(self.keys.owner(entity.data.id))
        if not owner.success:
            return owner
        if not hmac.compare_digest(owner.data.token_hash, owner_hash):
            return Err(UnauthorizedError())
        return await self._destroy(entity.data)

    async def discard(self, entity: E) -> Result:
        """Cascading delete of an entity whose owner record or URL mapping is gone."""
        return await self._timed("discard", self._destroy(entity))

    async def _destroy(self, entity: E) -> Result:
        cleaned = await self.cleanup(entity)
        if not cleaned.success:
            return cleaned
        owner_key = self.keys.owner(entity.id)
        swept = await self.keyspace.delete_pattern(
            self.keys.children_pattern(entity.id), exclude={owner_key}
        )
        if not swept.success:
            return swept
        for step in (
            lambda: self.entities.delete(self.keys.entity(entity.id)),
            lambda: self.owners.delete(owner_key),
            lambda: self.urls.delete(entity.url),
        ):
            done = await step()
            if not done.success:
                return done
        return Ok(True)
