from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from nostalgic.config import settings
from nostalgic.logging_config import setup_logging
from nostalgic.middleware import TimingMiddleware
from nostalgic.result import AppError
from nostalgic.routers import bbs, counters, likes, rankings
from nostalgic.services import build_services
from nostalgic.store import RedisStore


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging(settings.LOG_LEVEL, settings.LOG_FILE)
    store = RedisStore(settings.REDIS_URL)
    client = await store.connect()
    app.state.store = store
    app.state.services = build_services(client, settings)
    yield
    # Shutdown
    await store.disconnect()


app = FastAPI(
    title="Nostalgic - retro web widgets",
    description="Visit counters, like buttons, rankings and message boards backed by Redis",
    version="1.0.0",
    lifespan=lifespan,
)

# Middleware
app.add_middleware(TimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(counters.router)
app.include_router(likes.router)
app.include_router(rankings.router)
app.include_router(bbs.router)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.get("/health")
async def health(request: Request):
    store: RedisStore | None = getattr(request.app.state, "store", None)
    connected = await store.ping() if store else False
    return {
        "status": "healthy" if connected else "degraded",
        "store": connected,
        "version": "1.0.0",
    }
