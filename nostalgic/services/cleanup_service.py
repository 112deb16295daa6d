"""
Probabilistic sweep of widgets nobody has used for a long time.

Each service is scanned for entity records; anything whose last activity
is older than ``CLEANUP_RETENTION_DAYS`` is removed through that
service's own ``purge``, the same cascading delete an owner triggers,
authorised with the stored owner hash.  An entity whose owner record or
URL mapping has gone missing is discarded by id instead.
"""
import logging
import random
from datetime import timedelta
from typing import Sequence

from nostalgic.config import Settings
from nostalgic.result import NotFoundError, Result
from nostalgic.schemas import CleanupReport, CleanupTarget
from nostalgic.services.base import BaseService, Clock, utcnow

logger = logging.getLogger(__name__)


class CleanupService:
    def __init__(
        self,
        services: Sequence[BaseService],
        settings: Settings,
        clock: Clock = utcnow,
    ) -> None:
        self.services = services
        self.settings = settings
        self.clock = clock

    async def maybe_run(self, rng: random.Random | None = None) -> CleanupReport | None:
        """Run the sweep with probability ``CLEANUP_PROBABILITY``; ``None`` when skipped."""
        roll = (rng or random).random()
        if roll >= self.settings.CLEANUP_PROBABILITY:
            return None
        return await self.run()

    async def run(self) -> CleanupReport:
        cutoff = self.clock() - timedelta(days=self.settings.CLEANUP_RETENTION_DAYS)
        report = CleanupReport()
        logger.info("Cleanup sweep started (cutoff %s)", cutoff.isoformat())
        for service in self.services:
            await self._sweep(service, cutoff, report)
        logger.info(
            "Cleanup sweep finished: %d deleted, %d error(s)",
            len(report.deleted), len(report.errors),
        )
        return report

    async def _remove(self, service: BaseService, entity) -> Result:
        """Purge with the stored owner hash; discard by id when the owner or mapping is gone."""
        owner = await service.owners.get(service.keys.owner(entity.id))
        if owner.success:
            purged = await service.purge(entity.url, owner.data.token_hash)
            if purged.success or not isinstance(purged.error, NotFoundError):
                return purged
        elif not isinstance(owner.error, NotFoundError):
            return owner
        logger.warning(
            "Cleanup found orphaned %s:%s; discarding by id", service.service_name, entity.id
        )
        return await service.discard(entity)

    async def _sweep(self, service: BaseService, cutoff, report: CleanupReport) -> None:
        name = service.service_name
        ids = await service.list_ids()
        if not ids.success:
            report.errors.append(f"{name}: {ids.error.message}")
            logger.error("Cleanup could not scan %s: %s", name, ids.error)
            return

        for public_id in ids.data:
            entity = await service.get_by_id(public_id)
            if not entity.success:
                if not isinstance(entity.error, NotFoundError):
                    report.errors.append(f"{name}:{public_id}: {entity.error.message}")
                continue
            activity = await service.last_activity(entity.data)
            if not activity.success:
                report.errors.append(f"{name}:{public_id}: {activity.error.message}")
                continue
            if activity.data >= cutoff:
                continue

            purged = await self._remove(service, entity.data)
            if not purged.success:
                report.errors.append(f"{name}:{public_id}: {purged.error.message}")
                logger.warning("Cleanup failed for %s:%s: %s", name, public_id, purged.error)
                continue
            logger.info(
                "Cleanup deleted %s:%s (last activity %s)",
                name, public_id, activity.data.isoformat(),
            )
            report.deleted.append(CleanupTarget(
                service=name,
                id=public_id,
                url=entity.data.url,
                last_activity=activity.data,
            ))
