"""
Validation at the three boundaries of the core.

- **input**: untrusted caller data -> typed params (``parse_input`` and the
  ``validate_*`` shape checks).
- **output**: service data -> response model (``validate_output``).
- **storage**: typed record <-> JSON string (``to_storage`` /
  ``from_storage``).  A stored record that no longer validates is never
  served; repositories report it as not found.
"""
import logging
from functools import lru_cache
from typing import Any, TypeVar

from pydantic import BaseModel, HttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from nostalgic.ids import PUBLIC_ID_PATTERN
from nostalgic.result import Err, Ok, Result, ValidationError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_URL_ADAPTER: TypeAdapter[HttpUrl] = TypeAdapter(HttpUrl)


@lru_cache(maxsize=None)
def _adapter(schema: Any) -> TypeAdapter:
    return TypeAdapter(schema)


def _describe(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors(include_url=False):
        location = ".".join(str(p) for p in error["loc"]) or "value"
        parts.append(f"{location}: {error['msg']}")
    return ", ".join(parts)


# ---------------------------------------------------------------------------
# Input / output
# ---------------------------------------------------------------------------

def parse_input(schema: Any, data: Any) -> Result:
    """Validate untrusted *data* against *schema* (model class or type)."""
    try:
        return Ok(_adapter(schema).validate_python(data))
    except PydanticValidationError as exc:
        return Err(ValidationError(f"Input validation failed: {_describe(exc)}"))


def validate_output(model: type[M], data: Any) -> Result:
    """Re-validate service data against the response *model*."""
    if isinstance(data, BaseModel):
        data = data.model_dump()
    try:
        return Ok(model.model_validate(data))
    except PydanticValidationError as exc:
        return Err(ValidationError(f"Output validation failed: {_describe(exc)}"))


# ---------------------------------------------------------------------------
# Storage round trip
# ---------------------------------------------------------------------------

def to_storage(record: BaseModel) -> Result:
    """Serialise *record* to JSON after checking it still satisfies its model."""
    checked = validate_output(type(record), record)
    if not checked.success:
        return checked
    return Ok(checked.data.model_dump_json())


def from_storage(model: type[M], raw: str | bytes) -> Result:
    try:
        return Ok(model.model_validate_json(raw))
    except PydanticValidationError as exc:
        logger.warning("Stored %s failed validation: %s", model.__name__, _describe(exc))
        return Err(ValidationError(f"Stored {model.__name__} failed validation"))


def parse_count(raw: str | None) -> Result:
    """Parse a stored counter value; a missing key counts as zero."""
    if raw is None:
        return Ok(0)
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return Err(ValidationError(f"Stored counter is not an integer: {raw!r}"))
    if value < 0:
        return Err(ValidationError(f"Stored counter is negative: {value}"))
    return Ok(value)


# ---------------------------------------------------------------------------
# Shape checks
# ---------------------------------------------------------------------------

def validate_url(url: Any, max_length: int = 2048) -> Result:
    """Accept an absolute http(s) URL; the original string is returned untouched."""
    if not isinstance(url, str) or not url:
        return Err(ValidationError("url is required"))
    if len(url) > max_length:
        return Err(ValidationError(f"url exceeds maximum length of {max_length}"))
    try:
        _URL_ADAPTER.validate_python(url)
    except PydanticValidationError:
        return Err(ValidationError(f"Invalid url: {url!r}"))
    return Ok(url)


def validate_token(token: Any, min_length: int = 8, max_length: int = 16) -> Result:
    if not isinstance(token, str):
        return Err(ValidationError("token is required"))
    if not min_length <= len(token) <= max_length:
        return Err(ValidationError(f"token must be {min_length}-{max_length} characters"))
    return Ok(token)


def validate_public_id(public_id: Any) -> Result:
    if not isinstance(public_id, str) or not PUBLIC_ID_PATTERN.match(public_id):
        return Err(ValidationError(f"Invalid public id: {public_id!r}"))
    return Ok(public_id)
