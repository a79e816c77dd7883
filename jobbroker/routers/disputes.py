"""Dispute endpoints."""

import uuid

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from jobbroker.auth.identity import Actor, verify_request
from jobbroker.auth.rate_limit import check_rate_limit
from jobbroker.database import get_db
from jobbroker.models.dispute import DisputeStatus
from jobbroker.models.job import JobStatus
from jobbroker.redis import get_redis
from jobbroker.schemas.dispute import DisputeResponse, RaiseDispute, ResolveDispute
from jobbroker.services import dispute as dispute_service
from jobbroker.services.deadline_queue import schedule_hold
from jobbroker.services.lookups import find_hold_for_job, get_job

router = APIRouter(prefix="/disputes", tags=["disputes"])


@router.post("", response_model=DisputeResponse, status_code=201, dependencies=[Depends(check_rate_limit)])
async def raise_dispute(
    data: RaiseDispute,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> DisputeResponse:
    """A party to a paid job opens a dispute; the warranty hold is frozen."""
    dispute = await dispute_service.raise_dispute(db, actor, data)
    hold = await find_hold_for_job(db, dispute.job_id)
    if hold is not None:
        await schedule_hold(redis, hold)
    return DisputeResponse.model_validate(dispute)


@router.get("", response_model=list[DisputeResponse], dependencies=[Depends(check_rate_limit)])
async def list_disputes(
    status: DisputeStatus | None = Query(None),
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[DisputeResponse]:
    disputes = await dispute_service.list_disputes(db, actor, status=status)
    return [DisputeResponse.model_validate(d) for d in disputes]


@router.get("/{dispute_id}", response_model=DisputeResponse, dependencies=[Depends(check_rate_limit)])
async def get_dispute(
    dispute_id: uuid.UUID,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> DisputeResponse:
    dispute = await dispute_service.get_dispute(db, dispute_id, actor)
    return DisputeResponse.model_validate(dispute)


@router.post("/{dispute_id}/review", response_model=DisputeResponse, dependencies=[Depends(check_rate_limit)])
async def review_dispute(
    dispute_id: uuid.UUID,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> DisputeResponse:
    dispute = await dispute_service.review_dispute(db, dispute_id, actor)
    return DisputeResponse.model_validate(dispute)


@router.post("/{dispute_id}/resolve", response_model=DisputeResponse, dependencies=[Depends(check_rate_limit)])
async def resolve_dispute(
    dispute_id: uuid.UUID,
    data: ResolveDispute,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> DisputeResponse:
    """Operator resolves; provider-favoured or settled outcomes unfreeze the hold."""
    dispute = await dispute_service.resolve_dispute(db, dispute_id, actor, data)
    hold = await find_hold_for_job(db, dispute.job_id)
    job = await get_job(db, dispute.job_id)
    if hold is not None and job.status == JobStatus.COMPLETED:
        await schedule_hold(redis, hold)
    return DisputeResponse.model_validate(dispute)
