"""Job lifecycle endpoints."""

import uuid

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from jobbroker.auth.identity import Actor, verify_request
from jobbroker.auth.rate_limit import check_rate_limit
from jobbroker.database import get_db
from jobbroker.models.job import JobStatus
from jobbroker.redis import get_redis
from jobbroker.schemas.job import CancelJob, JobResponse, PostJob
from jobbroker.services import job as job_service
from jobbroker.services.deadline_queue import schedule_hold, schedule_job
from jobbroker.services.lookups import find_hold_for_job

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("", response_model=JobResponse, status_code=201, dependencies=[Depends(check_rate_limit)])
async def post_job(
    data: PostJob,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    """Client posts a job to the open pool."""
    job = await job_service.post_job(db, actor, data)
    return JobResponse.model_validate(job)


@router.get("", response_model=list[JobResponse], dependencies=[Depends(check_rate_limit)])
async def list_jobs(
    status: JobStatus | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[JobResponse]:
    jobs = await job_service.list_jobs(db, actor, status=status, limit=limit)
    return [JobResponse.model_validate(j) for j in jobs]


@router.get("/{job_id}", response_model=JobResponse, dependencies=[Depends(check_rate_limit)])
async def get_job(
    job_id: uuid.UUID,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    """Get job details. Open jobs are visible to providers; others only to parties."""
    job = await job_service.get_job_for_actor(db, job_id, actor)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/soft-lock", response_model=JobResponse, dependencies=[Depends(check_rate_limit)])
async def soft_lock(
    job_id: uuid.UUID,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> JobResponse:
    """Provider reserves the job at its posted price."""
    job = await job_service.soft_lock(db, job_id, actor)
    await schedule_job(redis, job)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/confirm-soft-lock", response_model=JobResponse, dependencies=[Depends(check_rate_limit)])
async def confirm_soft_lock(
    job_id: uuid.UUID,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> JobResponse:
    """Client confirms the reservation; the job then awaits payment."""
    job = await job_service.confirm_soft_lock(db, job_id, actor)
    await schedule_job(redis, job)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/repost", response_model=JobResponse, dependencies=[Depends(check_rate_limit)])
async def repost(
    job_id: uuid.UUID,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> JobResponse:
    """Put the job back in the pool. May cancel it once reposts are exhausted."""
    job = await job_service.repost(db, job_id, actor)
    await schedule_job(redis, job)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/start", response_model=JobResponse, dependencies=[Depends(check_rate_limit)])
async def start_job(
    job_id: uuid.UUID,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    job = await job_service.start_job(db, job_id, actor)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/complete", response_model=JobResponse, dependencies=[Depends(check_rate_limit)])
async def complete_job(
    job_id: uuid.UUID,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    job = await job_service.complete_job(db, job_id, actor)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/approve", response_model=JobResponse, dependencies=[Depends(check_rate_limit)])
async def approve_completion(
    job_id: uuid.UUID,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> JobResponse:
    """Client approves the work; the warranty hold release is scheduled."""
    job = await job_service.approve_completion(db, job_id, actor)
    hold = await find_hold_for_job(db, job_id)
    if hold is not None:
        await schedule_hold(redis, hold)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/reject-completion", response_model=JobResponse, dependencies=[Depends(check_rate_limit)])
async def reject_completion(
    job_id: uuid.UUID,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    job = await job_service.reject_completion(db, job_id, actor)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/cancel", response_model=JobResponse, dependencies=[Depends(check_rate_limit)])
async def cancel_job(
    job_id: uuid.UUID,
    data: CancelJob | None = None,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> JobResponse:
    job = await job_service.cancel_job(db, job_id, actor, data.reason if data else None)
    await schedule_job(redis, job)
    return JobResponse.model_validate(job)
