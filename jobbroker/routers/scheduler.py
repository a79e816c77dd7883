"""Scheduler entry points for an external cron or operator."""

import uuid

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from jobbroker.auth.identity import Actor, require_operator
from jobbroker.database import get_db
from jobbroker.services import job as job_service
from jobbroker.services import warranty as warranty_service

router = APIRouter(prefix="/scheduler", tags=["scheduler"])


class SweepResponse(BaseModel):
    expired_jobs: list[uuid.UUID]
    released_holds: list[uuid.UUID]


@router.post("/sweep", response_model=SweepResponse)
async def sweep(
    actor: Actor = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
) -> SweepResponse:
    """Apply every due timeout, then release every eligible warranty hold."""
    expired = await job_service.sweep_expired_jobs(db)
    released = await warranty_service.release_due_holds(db)
    return SweepResponse(expired_jobs=expired, released_holds=released)
