"""Deadline queue using a Redis sorted set.

Members are ``job:<uuid>`` (soft lock, negotiation or payment deadline) and
``hold:<uuid>`` (warranty window end), scored by unix timestamp. A single
async consumer sleeps until the earliest entry is due, removes it and drives
the job or hold through the same entry points the scheduler sweep uses.

The queue only triggers work early; lazy expiry on every mutating operation
and the sweep endpoint stay authoritative, so scheduling is best-effort.
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime

import redis.asyncio as aioredis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from jobbroker.config import settings
from jobbroker.errors import CoreError
from jobbroker.models.job import Job, JobStatus
from jobbroker.models.warranty import HoldStatus, WarrantyHold

logger = logging.getLogger(__name__)

DEADLINE_KEY = "broker:deadlines"
JOB_PREFIX = "job:"
HOLD_PREFIX = "hold:"
IDLE_SLEEP_SECONDS = 10.0


def job_member(job_id: uuid.UUID) -> str:
    return f"{JOB_PREFIX}{job_id}"


def hold_member(hold_id: uuid.UUID) -> str:
    return f"{HOLD_PREFIX}{hold_id}"


async def enqueue_deadline(redis: aioredis.Redis, member: str, due_at: datetime) -> None:
    await redis.zadd(DEADLINE_KEY, {member: due_at.timestamp()})
    logger.info("Enqueued deadline %s at %s", member, due_at.isoformat())


async def cancel_deadline(redis: aioredis.Redis, member: str) -> None:
    await redis.zrem(DEADLINE_KEY, member)


async def schedule_job(redis: aioredis.Redis, job: Job) -> None:
    """Track the job's current deadline, or drop it if it has none."""
    from jobbroker.services.job import next_deadline

    due_at = next_deadline(job)
    try:
        if due_at is None:
            await cancel_deadline(redis, job_member(job.job_id))
        else:
            await enqueue_deadline(redis, job_member(job.job_id), due_at)
    except aioredis.RedisError as exc:
        logger.warning("Could not schedule deadline for job %s: %s", job.job_id, exc)


async def schedule_hold(redis: aioredis.Redis, hold: WarrantyHold) -> None:
    """Track the hold's release date while it is LOCKED."""
    try:
        if hold.status == HoldStatus.LOCKED:
            await enqueue_deadline(redis, hold_member(hold.hold_id), hold.effective_end_date)
        else:
            await cancel_deadline(redis, hold_member(hold.hold_id))
    except aioredis.RedisError as exc:
        logger.warning("Could not schedule release for hold %s: %s", hold.hold_id, exc)


async def pop_due(redis: aioredis.Redis, now: float | None = None) -> str | None | float:
    """Claim the earliest entry if it is due.

    Returns the member when one was claimed, the seconds until the next entry
    is due when it is not, or None when the queue is empty.
    """
    entries = await redis.zrange(DEADLINE_KEY, 0, 0, withscores=True)
    if not entries:
        return None
    member, due_ts = entries[0]
    now = time.time() if now is None else now
    if due_ts > now:
        return due_ts - now
    if not await redis.zrem(DEADLINE_KEY, member):
        # Another consumer got it
        return 0.0
    return member.decode() if isinstance(member, bytes) else member


async def process_member(db: AsyncSession, redis: aioredis.Redis, member: str) -> None:
    """Run the expiry or release entry point for one claimed queue member."""
    from jobbroker.services.job import expire_job
    from jobbroker.services.lookups import get_hold, get_job
    from jobbroker.services.warranty import release_warranty_hold

    try:
        if member.startswith(JOB_PREFIX):
            job = await expire_job(db, uuid.UUID(member[len(JOB_PREFIX):]))
            await schedule_job(redis, job)
        elif member.startswith(HOLD_PREFIX):
            hold_id = uuid.UUID(member[len(HOLD_PREFIX):])
            hold = await get_hold(db, hold_id)
            job = await get_job(db, hold.job_id)
            if job.status != JobStatus.COMPLETED:
                logger.info("Hold %s not released, job %s is %s", hold_id, job.job_id, job.status.value)
                return
            await release_warranty_hold(db, hold_id, actor=None)
            logger.info("Auto-released warranty hold %s", hold_id)
        else:
            logger.warning("Dropping unknown deadline member %r", member)
    except CoreError as exc:
        logger.info("Deadline %s not applied: %s", member, exc.message)


async def run_deadline_consumer() -> None:
    """Sleep until the next deadline is due, then process it."""
    from jobbroker.database import async_session_factory
    from jobbroker.redis import redis_client

    redis = redis_client()
    while True:
        try:
            claimed = await pop_due(redis)
            if claimed is None:
                await asyncio.sleep(IDLE_SLEEP_SECONDS)
                continue
            if isinstance(claimed, float):
                # Wake up at most every N seconds to pick up new earlier deadlines
                await asyncio.sleep(min(claimed, settings.deadline_poll_max_seconds))
                continue
            async with async_session_factory() as db:
                await process_member(db, redis, claimed)
        except asyncio.CancelledError:
            logger.info("Deadline consumer shutting down")
            break
        except Exception:
            logger.exception("Deadline consumer error, retrying in 5s")
            await asyncio.sleep(5)

    await redis.aclose()


async def recover_deadlines(db: AsyncSession, redis: aioredis.Redis) -> int:
    """Re-enqueue every live deadline after a restart. ZADD is idempotent."""
    jobs = list((await db.execute(
        select(Job).where(Job.status.in_([
            JobStatus.SOFT_LOCKED,
            JobStatus.NEGOTIATION_PENDING,
            JobStatus.WAITING_FOR_PAYMENT,
        ]))
    )).scalars().all())
    holds = list((await db.execute(
        select(WarrantyHold)
        .join(Job, Job.job_id == WarrantyHold.job_id)
        .where(WarrantyHold.status == HoldStatus.LOCKED, Job.status == JobStatus.COMPLETED)
    )).scalars().all())

    for job in jobs:
        await schedule_job(redis, job)
    for hold in holds:
        await schedule_hold(redis, hold)
    logger.info("Deadline recovery: %d jobs, %d holds re-enqueued", len(jobs), len(holds))
    return len(jobs) + len(holds)
