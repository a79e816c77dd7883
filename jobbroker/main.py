"""FastAPI application entry point."""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from jobbroker.config import settings
from jobbroker.errors import install_error_handlers
from jobbroker.middleware import BodySizeLimitMiddleware, RequestContextMiddleware, SecurityHeadersMiddleware
from jobbroker.routers import actors, bids, disputes, jobs, payments, scheduler

logger = logging.getLogger(__name__)


async def _recover_deadlines() -> None:
    """Re-enqueue live job deadlines and pending hold releases after a restart."""
    from jobbroker.database import async_session_factory
    from jobbroker.redis import redis_client
    from jobbroker.services.deadline_queue import recover_deadlines

    try:
        async with async_session_factory() as db:
            redis = redis_client()
            try:
                await recover_deadlines(db, redis)
            finally:
                await redis.aclose()
    except Exception:
        logger.exception("Deadline recovery failed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown."""
    deadline_task = None
    if settings.deadline_consumer_enabled:
        from jobbroker.services.deadline_queue import run_deadline_consumer
        deadline_task = asyncio.create_task(run_deadline_consumer())
        await _recover_deadlines()

    yield

    if deadline_task is not None:
        deadline_task.cancel()
        try:
            await deadline_task
        except asyncio.CancelledError:
            pass


app = FastAPI(
    title="Job Broker",
    description="On-demand service job brokering with escrow-style settlement",
    version="0.1.0",
    lifespan=lifespan,
)

install_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Middleware (last added runs outermost)
app.add_middleware(BodySizeLimitMiddleware, max_bytes=settings.max_request_body_bytes)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(SecurityHeadersMiddleware)

app.include_router(jobs.router)
app.include_router(bids.router)
app.include_router(payments.router)
app.include_router(disputes.router)
app.include_router(actors.router)
app.include_router(scheduler.router)


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}
