"""
Claims: TTL-bounded markers whose presence blocks a repeated action.

Design notes
------------
- A claim moves through three phases: UNCLAIMED -> CLAIMED (for ``ttl``
  seconds) -> EXPIRED.  Only ``acquire`` moves it forward, and it does so
  with the store's conditional write, so exactly one concurrent caller
  wins a given key.
- ``release`` and ``restore`` are the compensating moves.  Both are
  idempotent, so a crash between a claim and its compensation leaves at
  worst a stale claim that the store expires on its own, never a stale
  total.
- Compensations are retried ``ROLLBACK_ATTEMPTS`` times.  A final failure
  is logged at ERROR with the key left behind.
"""
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable

from nostalgic.repositories import EntityRepository
from nostalgic.result import Ok, Result
from nostalgic.schemas import ClaimRecord

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class ClaimState(str, Enum):
    UNCLAIMED = "unclaimed"
    CLAIMED = "claimed"
    EXPIRED = "expired"


@dataclass(frozen=True)
class Claim:
    key: str
    ttl: int
    acquired_at: datetime | None = None

    @property
    def acquired(self) -> bool:
        return self.acquired_at is not None

    def state(self, now: datetime) -> ClaimState:
        if self.acquired_at is None:
            return ClaimState.UNCLAIMED
        if now >= self.acquired_at + timedelta(seconds=self.ttl):
            return ClaimState.EXPIRED
        return ClaimState.CLAIMED


async def compensate(
    label: str,
    action: Callable[[], Awaitable[Result]],
    attempts: int = 2,
) -> Result:
    """Run the rollback *action* up to *attempts* times until it succeeds."""
    attempts = max(attempts, 1)
    result: Result | None = None
    for attempt in range(1, attempts + 1):
        result = await action()
        if result.success:
            if attempt > 1:
                logger.info("Rollback %s succeeded on attempt %d", label, attempt)
            return result
        logger.warning(
            "Rollback %s failed (attempt %d/%d): %s", label, attempt, attempts, result.error
        )
    logger.error("Rollback %s abandoned; state stays stale until its TTL expires", label)
    return result


class Claims:
    def __init__(
        self,
        records: EntityRepository[ClaimRecord],
        clock: Clock,
        rollback_attempts: int = 2,
    ) -> None:
        self.records = records
        self.clock = clock
        self.rollback_attempts = rollback_attempts

    async def acquire(self, key: str, ttl: int) -> Result:
        """
        Try to move *key* from UNCLAIMED to CLAIMED.

        ``Ok(claim)`` either way; ``claim.acquired`` tells whether this
        caller won.  Only a store failure is an ``Err``.
        """
        now = self.clock()
        created = await self.records.set_if_not_exists(key, ClaimRecord(claimed_at=now), ttl)
        if not created.success:
            return created
        return Ok(Claim(key, ttl, now if created.data else None))

    async def release(self, claim: Claim) -> Result:
        """Drop a claim this caller acquired.  Releasing an unacquired claim is a no-op."""
        if not claim.acquired:
            return Ok(claim)
        deleted = await compensate(
            f"release {claim.key}",
            lambda: self.records.delete(claim.key),
            self.rollback_attempts,
        )
        if not deleted.success:
            return deleted
        return Ok(replace(claim, acquired_at=None))

    async def restore(self, claim: Claim) -> Result:
        """Put back a claim that this caller removed, with a fresh TTL."""
        now = self.clock()
        saved = await compensate(
            f"restore {claim.key}",
            lambda: self.records.save_with_ttl(claim.key, ClaimRecord(claimed_at=now), claim.ttl),
            self.rollback_attempts,
        )
        if not saved.success:
            return saved
        return Ok(replace(claim, acquired_at=now))

    async def remove(self, key: str, ttl: int) -> Result:
        """
        Delete a claim held by anyone.

        ``Ok(claim)`` with ``acquired_at`` set when this call removed it,
        so the caller can ``restore`` it, or unset when it was already gone.
        """
        deleted = await self.records.delete(key)
        if not deleted.success:
            return deleted
        return Ok(Claim(key, ttl, self.clock() if deleted.data else None))

    async def probe(self, key: str) -> Result:
        present = await self.records.exists(key)
        if not present.success:
            return present
        return Ok(ClaimState.CLAIMED if present.data else ClaimState.UNCLAIMED)
