from fastapi import BackgroundTasks, Depends, Request

from nostalgic.ids import generate_author_hash, generate_daily_user_hash, generate_user_hash
from nostalgic.result import Result
from nostalgic.services import Services


def get_services(request: Request) -> Services:
    """The ``Services`` container built at startup (see ``nostalgic.main``)."""
    return request.app.state.services


class Viewer:
    """
    Anonymous fingerprint of the caller, derived from client IP and
    User-Agent.

    Usage in a router::

        @router.post("/{public_id}/toggle")
        async def toggle(public_id: str, viewer: Viewer = Depends(Viewer)):
            ...

    Attributes
    ----------
    ip:
        First address in ``X-Forwarded-For`` when present, otherwise the
        socket peer.
    user_agent:
        Raw ``User-Agent`` header, empty when missing.
    """

    def __init__(self, request: Request) -> None:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            self.ip = forwarded.split(",")[0].strip()
        else:
            self.ip = request.client.host if request.client else "unknown"
        self.user_agent = request.headers.get("user-agent", "")

    @property
    def user_hash(self) -> str:
        return generate_user_hash(self.ip, self.user_agent)

    @property
    def author_hash(self) -> str:
        return generate_author_hash(self.ip, self.user_agent)

    def daily_hash(self, services: Services) -> str:
        return generate_daily_user_hash(self.ip, self.user_agent, services.counter.clock().date())


async def schedule_cleanup(
    background: BackgroundTasks,
    services: Services = Depends(get_services),
) -> None:
    """Give every request a ``CLEANUP_PROBABILITY`` chance to run the sweep after responding."""
    background.add_task(services.cleanup.maybe_run)


def unwrap(result: Result):
    """Return the payload of *result*, or raise its ``AppError`` for the exception handler."""
    if result.success:
        return result.data
    raise result.error


def created_response(created) -> dict:
    return {"id": created.id, "existing": created.existing, "data": created.data}
