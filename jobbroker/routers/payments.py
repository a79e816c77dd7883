"""Payment split and warranty hold endpoints."""

import uuid

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from jobbroker.auth.identity import Actor, verify_request
from jobbroker.auth.rate_limit import check_rate_limit
from jobbroker.database import get_db
from jobbroker.models.job import JobStatus
from jobbroker.redis import get_redis
from jobbroker.schemas.payment import (
    CreatePaymentSplit,
    ForfeitHold,
    FreezeHold,
    PaymentDetailsResponse,
    PaymentResponse,
    ReleaseHold,
    WarrantyHoldResponse,
)
from jobbroker.services import payment_split
from jobbroker.services import warranty as warranty_service
from jobbroker.services.deadline_queue import schedule_hold, schedule_job
from jobbroker.services.lookups import get_job

router = APIRouter(tags=["payments"])


@router.post(
    "/jobs/{job_id}/payment-split",
    response_model=PaymentResponse,
    status_code=201,
    dependencies=[Depends(check_rate_limit)],
)
async def create_payment_split(
    job_id: uuid.UUID,
    data: CreatePaymentSplit | None = None,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> PaymentResponse:
    """Record the cleared payment and split it into commission, payout and hold."""
    payment = await payment_split.create_payment_split(db, job_id, actor, data or CreatePaymentSplit())
    await schedule_job(redis, await get_job(db, job_id))
    return PaymentResponse.model_validate(payment)


@router.get("/jobs/{job_id}/payment", response_model=PaymentDetailsResponse, dependencies=[Depends(check_rate_limit)])
async def get_payment_details(
    job_id: uuid.UUID,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> PaymentDetailsResponse:
    details = await payment_split.get_payment_details(db, job_id, actor)
    return PaymentDetailsResponse.model_validate(details, from_attributes=True)


@router.get("/warranty-holds/{hold_id}", response_model=WarrantyHoldResponse, dependencies=[Depends(check_rate_limit)])
async def get_warranty_hold(
    hold_id: uuid.UUID,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> WarrantyHoldResponse:
    hold = await warranty_service.get_warranty_hold(db, hold_id, actor)
    return WarrantyHoldResponse.model_validate(hold)


@router.post("/warranty-holds/{hold_id}/release", response_model=WarrantyHoldResponse, dependencies=[Depends(check_rate_limit)])
async def release_warranty_hold(
    hold_id: uuid.UUID,
    data: ReleaseHold | None = None,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> WarrantyHoldResponse:
    """Operator releases a hold; ``override`` allows frozen or early holds."""
    data = data or ReleaseHold()
    hold = await warranty_service.release_warranty_hold(
        db, hold_id, actor, override=data.override, reason=data.reason
    )
    await schedule_hold(redis, hold)
    return WarrantyHoldResponse.model_validate(hold)


@router.post("/warranty-holds/{hold_id}/freeze", response_model=WarrantyHoldResponse, dependencies=[Depends(check_rate_limit)])
async def freeze_warranty_hold(
    hold_id: uuid.UUID,
    data: FreezeHold,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> WarrantyHoldResponse:
    hold = await warranty_service.freeze_warranty_hold(db, hold_id, actor, data.reason)
    await schedule_hold(redis, hold)
    return WarrantyHoldResponse.model_validate(hold)


@router.post("/warranty-holds/{hold_id}/unfreeze", response_model=WarrantyHoldResponse, dependencies=[Depends(check_rate_limit)])
async def unfreeze_warranty_hold(
    hold_id: uuid.UUID,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> WarrantyHoldResponse:
    """Operator unfreezes; the window is extended by the time spent frozen."""
    hold = await warranty_service.unfreeze_warranty_hold(db, hold_id, actor)
    job = await get_job(db, hold.job_id)
    if job.status == JobStatus.COMPLETED:
        await schedule_hold(redis, hold)
    return WarrantyHoldResponse.model_validate(hold)


@router.post("/warranty-holds/{hold_id}/forfeit", response_model=WarrantyHoldResponse, dependencies=[Depends(check_rate_limit)])
async def forfeit_warranty_hold(
    hold_id: uuid.UUID,
    data: ForfeitHold | None = None,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> WarrantyHoldResponse:
    """Operator refunds the hold to the client, typically after a client-favoured dispute."""
    data = data or ForfeitHold()
    hold = await warranty_service.forfeit_warranty_hold(db, hold_id, actor, data.reason)
    await schedule_hold(redis, hold)
    return WarrantyHoldResponse.model_validate(hold)
