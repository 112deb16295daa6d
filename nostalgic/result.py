"""
Result type and the closed error taxonomy shared by the whole core.

Fallible operations return ``Ok(data)`` or ``Err(error)`` instead of
raising.  Callers branch on ``result.success``; only the HTTP layer turns
an ``AppError`` into a status code.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Generic, TypeVar, Union

T = TypeVar("T")
U = TypeVar("U")
E = TypeVar("E", bound="AppError")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class AppError(Exception):
    code: str = "APP_ERROR"
    status_code: int = 500

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class ValidationError(AppError):
    """Malformed input, or a record that fails the storage round trip."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(AppError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, ident: str | None = None) -> None:
        suffix = f" with id '{ident}'" if ident else ""
        super().__init__(f"{resource}{suffix} not found", {"resource": resource, "id": ident})


class UnauthorizedError(AppError):
    code = "UNAUTHORIZED"
    status_code = 403

    def __init__(self, message: str = "Unauthorized access") -> None:
        super().__init__(message)


class StorageError(AppError):
    code = "STORAGE_ERROR"
    status_code = 500

    def __init__(self, operation: str, details: str | None = None) -> None:
        message = f"Storage operation failed: {operation}"
        if details:
            message = f"{message} - {details}"
        super().__init__(message, {"operation": operation})


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Ok(Generic[T]):
    data: T
    success: ClassVar[bool] = True


@dataclass(frozen=True)
class Err(Generic[E]):
    error: E
    success: ClassVar[bool] = False


Result = Union[Ok[T], Err[AppError]]


def map_result(result: Result, fn: Callable[[Any], U]) -> Result:
    """Apply *fn* to the payload of a successful result."""
    if result.success:
        return Ok(fn(result.data))
    return result


def unwrap_or(result: Result, default: T) -> T:
    return result.data if result.success else default
