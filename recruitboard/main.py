import asyncio
import datetime
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from recruitboard.api import leaderboard, participants, submissions
from recruitboard.core.config import Settings, get_settings
from recruitboard.core.logging_config import setup_logging
from recruitboard.core.metrics import init_fastapi_instrumentation
from recruitboard.services.leaderboard import LeaderboardProjector
from recruitboard.services.snapshot_cache import RedisSnapshotMirror
from recruitboard.stores import SubmissionStore, create_store

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, store: Optional[SubmissionStore] = None) -> FastAPI:
    """Build the API around one ranking engine.

    ``store`` overrides the backend named in settings; the engine owns
    whichever store it ends up with and closes it on shutdown.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.store = store or await create_store(settings)
        projector = LeaderboardProjector(app.state.store)
        app.state.projector = projector

        app.state.mirror = None
        if settings.SNAPSHOT_MIRROR_ENABLED:
            mirror = RedisSnapshotMirror(
                settings.REDIS_URL,
                settings.LEADERBOARD_REDIS_KEY,
                settings.LEADERBOARD_CACHE_TTL_SECONDS,
            )
            try:
                await asyncio.to_thread(mirror.connect)
                mirror.attach(projector.gateway)
                app.state.mirror = mirror
            except Exception as e:
                logger.exception("Redis snapshot mirror disabled", extra={"error": str(e)})

        await projector.start()
        logger.info("Leaderboard projector started", extra={"generation": projector.generation})

        yield

        await projector.stop()
        if app.state.mirror is not None:
            await app.state.mirror.drain()
        await app.state.store.close()

    app = FastAPI(
        title="Recruitboard",
        description="Live leaderboard for recruitment tasks graded by mentors",
        version="1.0.0",
        lifespan=lifespan,
    )

    init_fastapi_instrumentation(app)

    cors_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if "*" in cors_origins else cors_origins,
        allow_credentials=False if "*" in cors_origins else True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        request_logger = logging.getLogger("request")
        start = time.perf_counter()
        extra = {
            "request_id": str(uuid4()),
            "method": request.method,
            "path": request.url.path,
            "client": request.client.host if request.client else "-",
        }
        try:
            response = await call_next(request)
        except Exception:
            extra.update(status_code=500, duration_ms=int((time.perf_counter() - start) * 1000))
            request_logger.exception("request_failed", extra=extra)
            raise
        extra.update(
            status_code=getattr(response, "status_code", 0),
            duration_ms=int((time.perf_counter() - start) * 1000),
        )
        request_logger.info("request_completed", extra=extra)
        return response

    app.include_router(leaderboard.router, prefix="/api/leaderboard", tags=["leaderboard"])
    app.include_router(submissions.router, prefix="/api", tags=["submissions"])
    app.include_router(participants.router, prefix="/api", tags=["participants"])

    @app.get("/metrics")
    def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/health")
    async def health_check(request: Request):
        """Liveness + readiness: the store answers and, when enabled, Redis does too."""
        statuses: dict[str, str] = {}
        try:
            await request.app.state.store.list_participants()
            statuses["store"] = "ok"
        except Exception as e:
            statuses["store"] = f"error: {e}"

        mirror = request.app.state.mirror
        if mirror is not None:
            statuses["redis"] = "ok" if await asyncio.to_thread(mirror.ping) else "error: ping failed"

        statuses["projector"] = request.app.state.projector.state.value
        healthy = statuses["store"] == "ok" and statuses.get("redis", "ok") == "ok"
        if not healthy:
            logger.error("health_check_failed", extra={"components": statuses})
        return {
            "status": "healthy" if healthy else "unhealthy",
            "components": statuses,
            "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        }

    return app


def build_app() -> FastAPI:
    """Entry point for ``uvicorn --factory recruitboard.main:build_app``."""
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, settings.SERVICE_NAME)
    return create_app(settings)
