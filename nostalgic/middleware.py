import time
from contextvars import ContextVar

from starlette.types import ASGIApp, Receive, Scope, Send

# ---------------------------------------------------------------------------
# Per-request context variable
# ---------------------------------------------------------------------------

store_call_count_var: ContextVar[int] = ContextVar("store_call_count", default=0)


def increment_store_calls() -> None:
    """
    Count one store round trip for the current request.

    Called by every repository method right before it awaits Redis, so the
    ``X-Store-Calls`` header reflects all round trips a request caused,
    including compensating writes.
    """
    store_call_count_var.set(store_call_count_var.get() + 1)


# ---------------------------------------------------------------------------
# Middleware (pure ASGI; avoids BaseHTTPMiddleware ContextVar isolation)
# ---------------------------------------------------------------------------

class TimingMiddleware:
    """
    Pure ASGI middleware that adds two diagnostic response headers:

    - ``X-Response-Time-Ms``: wall-clock time for the entire request.
    - ``X-Store-Calls``: Redis round trips issued while serving the request.

    Unlike ``BaseHTTPMiddleware``, this does NOT spawn a child asyncio
    task for the inner application, so ``ContextVar`` mutations are
    visible when we read the counter after the response has been sent.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        store_call_count_var.set(0)
        start = time.perf_counter()

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                duration_ms = round((time.perf_counter() - start) * 1000, 2)
                headers = list(message.get("headers", []))
                headers.append((b"x-response-time-ms", str(duration_ms).encode()))
                headers.append((b"x-store-calls", str(store_call_count_var.get()).encode()))
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_wrapper)
