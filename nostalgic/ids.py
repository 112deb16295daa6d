"""
Identity helpers: public ids, owner-token hashes and viewer fingerprints.
"""
import hashlib
import re
from datetime import date, datetime, timezone
from urllib.parse import urlsplit

PUBLIC_ID_PATTERN = re.compile(r"^[a-z0-9-]+-[a-f0-9]{8}$")

_LABEL_INVALID_RE = re.compile(r"[^a-z0-9-]+")


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def generate_public_id(url: str) -> str:
    """
    Return the public id for *url*: ``{domain}-{hash8}``.

    ``domain`` is the first label of the host with a leading ``www.``
    removed; ``hash8`` is the first 8 hex digits of the SHA-256 of the
    full URL string, so the same URL always maps to the same id.
    """
    host = (urlsplit(url).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    label = _LABEL_INVALID_RE.sub("-", host.split(".")[0]).strip("-") or "site"
    return f"{label}-{_sha256(url)[:8]}"


def hash_token(token: str) -> str:
    return _sha256(token)


def generate_user_hash(ip: str, user_agent: str) -> str:
    """Stable viewer fingerprint (like state)."""
    return _sha256(f"{ip}:{user_agent}")[:16]


def generate_daily_user_hash(ip: str, user_agent: str, day: date | None = None) -> str:
    """Viewer fingerprint that rotates every UTC day (visit dedup)."""
    day = day or datetime.now(timezone.utc).date()
    return _sha256(f"{ip}:{user_agent}:{day.isoformat()}")[:16]


def generate_author_hash(ip: str, user_agent: str) -> str:
    """Author identity attached to BBS messages for self-edit / self-delete."""
    return _sha256(f"author:{ip}:{user_agent}")[:12]
