"""Row loaders shared by the services."""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from jobbroker.errors import NotFoundError
from jobbroker.models.bid import Bid
from jobbroker.models.job import Job
from jobbroker.models.payment import Payment
from jobbroker.models.warranty import WarrantyHold


async def get_job(db: AsyncSession, job_id: uuid.UUID) -> Job:
    result = await db.execute(select(Job).where(Job.job_id == job_id))
    job = result.scalar_one_or_none()
    if job is None:
        raise NotFoundError("Job not found")
    return job


async def get_job_for_update(db: AsyncSession, job_id: uuid.UUID) -> Job:
    """Lock the job row for the rest of the transaction.

    populate_existing makes sure we act on the row as it is now, not on a
    copy cached in the session's identity map.
    """
    result = await db.execute(
        select(Job)
        .where(Job.job_id == job_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    job = result.scalar_one_or_none()
    if job is None:
        raise NotFoundError("Job not found")
    return job


async def get_bid(db: AsyncSession, job_id: uuid.UUID, bid_id: uuid.UUID) -> Bid:
    result = await db.execute(
        select(Bid)
        .where(Bid.bid_id == bid_id, Bid.job_id == job_id)
        .execution_options(populate_existing=True)
    )
    bid = result.scalar_one_or_none()
    if bid is None:
        raise NotFoundError("Bid not found")
    return bid


async def find_payment(db: AsyncSession, job_id: uuid.UUID) -> Payment | None:
    result = await db.execute(select(Payment).where(Payment.job_id == job_id))
    return result.scalar_one_or_none()


async def find_hold_for_job(db: AsyncSession, job_id: uuid.UUID) -> WarrantyHold | None:
    result = await db.execute(
        select(WarrantyHold)
        .where(WarrantyHold.job_id == job_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_hold(db: AsyncSession, hold_id: uuid.UUID, for_update: bool = False) -> WarrantyHold:
    query = select(WarrantyHold).where(WarrantyHold.hold_id == hold_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    hold = result.scalar_one_or_none()
    if hold is None:
        raise NotFoundError("Warranty hold not found")
    return hold
