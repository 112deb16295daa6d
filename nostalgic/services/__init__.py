# Services package.
#
# One module per widget, each a BaseService over its own key builder and
# repositories:
#
#   counter_service  : deduplicated visit counter with rolling views
#   like_service     : per-viewer like toggle
#   ranking_service  : bounded score table
#   bbs_service      : bounded, paginated message board
#   cleanup_service  : sweep of long-inactive widgets
#
# ``build_services`` wires them to one store client and one Settings
# instance at startup; nothing here is a module-level singleton.
from dataclasses import dataclass

import redis.asyncio as redis

from nostalgic.config import Settings
from nostalgic.services.base import Clock, utcnow
from nostalgic.services.bbs_service import BBSService
from nostalgic.services.cleanup_service import CleanupService
from nostalgic.services.counter_service import CounterService
from nostalgic.services.like_service import LikeService
from nostalgic.services.ranking_service import RankingService


@dataclass(frozen=True)
class Services:
    counter: CounterService
    like: LikeService
    ranking: RankingService
    bbs: BBSService
    cleanup: CleanupService


def build_services(client: redis.Redis, settings: Settings, clock: Clock = utcnow) -> Services:
    counter = CounterService(client, settings, clock)
    like = LikeService(client, settings, clock)
    ranking = RankingService(client, settings, clock)
    bbs = BBSService(client, settings, clock)
    return Services(
        counter=counter,
        like=like,
        ranking=ranking,
        bbs=bbs,
        cleanup=CleanupService([counter, like, ranking, bbs], settings, clock),
    )
