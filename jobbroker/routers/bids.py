"""Bidding and negotiation endpoints."""

import uuid

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from jobbroker.auth.identity import Actor, verify_request
from jobbroker.auth.rate_limit import check_rate_limit
from jobbroker.database import get_db
from jobbroker.redis import get_redis
from jobbroker.schemas.bid import BidResponse, CounterOffer, PlaceBid
from jobbroker.schemas.job import JobResponse
from jobbroker.services import bidding
from jobbroker.services.deadline_queue import schedule_job
from jobbroker.services.lookups import get_job

router = APIRouter(prefix="/jobs/{job_id}/bids", tags=["bids"])


@router.post("", response_model=BidResponse, status_code=201, dependencies=[Depends(check_rate_limit)])
async def place_bid(
    job_id: uuid.UUID,
    data: PlaceBid,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> BidResponse:
    """Provider makes an offer on an open job."""
    bid = await bidding.place_bid(db, job_id, actor, data)
    await schedule_job(redis, await get_job(db, job_id))
    return BidResponse.model_validate(bid)


@router.get("", response_model=list[BidResponse], dependencies=[Depends(check_rate_limit)])
async def list_bids(
    job_id: uuid.UUID,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[BidResponse]:
    bids = await bidding.list_bids(db, job_id, actor)
    return [BidResponse.model_validate(b) for b in bids]


@router.post("/{bid_id}/counter", response_model=BidResponse, status_code=201, dependencies=[Depends(check_rate_limit)])
async def counter_offer(
    job_id: uuid.UUID,
    bid_id: uuid.UUID,
    data: CounterOffer,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> BidResponse:
    """Receiving party answers the current offer with a new price."""
    bid = await bidding.counter_offer(db, job_id, bid_id, actor, data)
    await schedule_job(redis, await get_job(db, job_id))
    return BidResponse.model_validate(bid)


@router.post("/{bid_id}/accept", response_model=JobResponse, dependencies=[Depends(check_rate_limit)])
async def accept_bid(
    job_id: uuid.UUID,
    bid_id: uuid.UUID,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> JobResponse:
    """Client accepts a provider's offer. Competing offers are rejected."""
    job = await bidding.accept_bid(db, job_id, bid_id, actor)
    await schedule_job(redis, job)
    return JobResponse.model_validate(job)


@router.post("/{bid_id}/accept-counter", response_model=JobResponse, dependencies=[Depends(check_rate_limit)])
async def accept_counter_offer(
    job_id: uuid.UUID,
    bid_id: uuid.UUID,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> JobResponse:
    """Provider accepts the client's counter-offer."""
    job = await bidding.accept_counter_offer(db, job_id, bid_id, actor)
    await schedule_job(redis, job)
    return JobResponse.model_validate(job)


@router.post("/{bid_id}/reject", response_model=BidResponse, dependencies=[Depends(check_rate_limit)])
async def reject_bid(
    job_id: uuid.UUID,
    bid_id: uuid.UUID,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> BidResponse:
    bid = await bidding.reject_bid(db, job_id, bid_id, actor)
    await schedule_job(redis, await get_job(db, job_id))
    return BidResponse.model_validate(bid)
