import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from app.settings import settings
from app.api.v1.jobs import router as jobs_router
from app.api.v1.quota import router as quota_router
from app.api.v1.queue import router as queue_router
from app.api.v1.admin import router as admin_router
from app.api.v1.metrics import router as metrics_router
from app.context import QueueContext, build_context
from app.db.session import create_schema
from app.domain.errors import AdmissionRejected, RateLimitedError
from app.scheduler.service import SchedulerService

logger = logging.getLogger(__name__)


async def bootstrap_schema(ctx: QueueContext, attempts: int = 10, delay: float = 2.0) -> None:
    """Create tables, retrying while the database is still coming up."""
    for i in range(attempts):
        try:
            await create_schema(ctx.engine)
            return
        except OperationalError as e:
            logger.warning(f"Bootstrap: database not ready, retrying in {delay}s... ({i + 1}/{attempts}): {e}")
            await asyncio.sleep(delay)
    raise RuntimeError("Database not reachable, giving up on schema bootstrap")


def create_app(context: Optional[QueueContext] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logging.basicConfig(level=settings.LOG_LEVEL)

        ctx = context or build_context(settings)
        app.state.context = ctx
        await bootstrap_schema(ctx)

        scheduler = None
        if ctx.settings.SCHEDULER_ENABLED:
            scheduler = SchedulerService(
                ctx.session_factory,
                ctx.dispatcher,
                interval=ctx.settings.SCHEDULER_INTERVAL_SECONDS,
                max_jobs_per_tick=ctx.settings.SCHEDULER_MAX_JOBS_PER_TICK,
            )
            await scheduler.start()

        yield

        # Shutdown
        if scheduler:
            await scheduler.stop()
        if context is None:
            await ctx.aclose()
        else:
            await ctx.telemetry.flush()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        lifespan=lifespan
    )
    if context is not None:
        # Available before lifespan runs (ASGI test transports skip it)
        app.state.context = context

    @app.exception_handler(AdmissionRejected)
    async def admission_rejected_handler(request: Request, exc: AdmissionRejected):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RateLimitedError)
    async def rate_limited_handler(request: Request, exc: RateLimitedError):
        content = {"error": "Too many requests, try again later", "code": "RATE_LIMITED"}
        if exc.retry_after is not None:
            content["retryAfter"] = exc.retry_after
        return JSONResponse(status_code=429, content=content)

    app.include_router(jobs_router, prefix="/api/v1/jobs", tags=["jobs"])
    app.include_router(quota_router, prefix="/api/v1/quota", tags=["quota"])
    app.include_router(queue_router, prefix="/api/v1/queue", tags=["queue"])
    app.include_router(admin_router, prefix="/api/v1/admin", tags=["admin"])
    app.include_router(metrics_router, tags=["metrics"])

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
