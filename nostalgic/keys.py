"""
Key layout for every widget service.

All keys owned by one entity live under ``{service}:{id}:`` so that a
single pattern sweep reaches every sub-resource during a cascading
delete.  The URL index is the only per-entity key outside that prefix.
"""
from datetime import date
from urllib.parse import quote

# Characters left unescaped by JavaScript's encodeURIComponent.
_URL_SAFE = "-_.!~*'()"


class ServiceKeys:
    def __init__(self, service: str) -> None:
        self.service = service

    # ------------------------------------------------------------------
    # Shared by every service
    # ------------------------------------------------------------------

    def entity(self, public_id: str) -> str:
        return f"{self.service}:{public_id}"

    def owner(self, public_id: str) -> str:
        return f"{self.service}:{public_id}:owner"

    def url_mapping(self, url: str) -> str:
        return f"url:{self.service}:{quote(url, safe=_URL_SAFE)}"

    def total(self, public_id: str) -> str:
        return f"{self.service}:{public_id}:total"

    def cooldown(self, public_id: str, viewer_hash: str) -> str:
        return f"{self.service}:{public_id}:cooldown:{viewer_hash}"

    def children_pattern(self, public_id: str) -> str:
        return f"{self.service}:{public_id}:*"

    def entity_scan_pattern(self) -> str:
        return f"{self.service}:*"

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def split(self, key: str) -> list[str]:
        """Return the ``:``-separated parts of *key* after the service prefix."""
        prefix = f"{self.service}:"
        if not key.startswith(prefix):
            return []
        return key[len(prefix):].split(":")


class CounterKeys(ServiceKeys):
    def __init__(self) -> None:
        super().__init__("counter")

    def daily(self, public_id: str, day: date) -> str:
        return f"{self.service}:{public_id}:daily:{day.isoformat()}"

    def daily_pattern(self, public_id: str) -> str:
        return f"{self.service}:{public_id}:daily:*"

    def visit_marker(self, public_id: str, viewer_hash: str) -> str:
        return f"{self.service}:{public_id}:visit:{viewer_hash}"


class LikeKeys(ServiceKeys):
    def __init__(self) -> None:
        super().__init__("like")

    def user_marker(self, public_id: str, viewer_hash: str) -> str:
        return f"{self.service}:{public_id}:users:{viewer_hash}"


class RankingKeys(ServiceKeys):
    def __init__(self) -> None:
        super().__init__("ranking")

    def scores(self, public_id: str) -> str:
        return f"{self.service}:{public_id}:scores"


class BBSKeys(ServiceKeys):
    def __init__(self) -> None:
        super().__init__("bbs")

    def messages(self, public_id: str) -> str:
        return f"{self.service}:{public_id}:messages"
