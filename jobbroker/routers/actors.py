"""Actor profile, trust score and rating endpoints."""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from jobbroker.auth.identity import Actor, verify_request
from jobbroker.auth.rate_limit import check_rate_limit
from jobbroker.database import get_db
from jobbroker.schemas.actor import (
    ProfileResponse,
    RatingResponse,
    SubmitRating,
    TrustProfileResponse,
    UpdateProfile,
)
from jobbroker.services import actor as actor_service
from jobbroker.services import rating as rating_service
from jobbroker.services import trust as trust_service

router = APIRouter(tags=["actors"])


@router.post("/actors/me", response_model=ProfileResponse, dependencies=[Depends(check_rate_limit)])
async def upsert_my_profile(
    data: UpdateProfile,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    """Register or update the caller's profile."""
    profile = await actor_service.upsert_my_profile(db, actor, data)
    return ProfileResponse.model_validate(profile)


@router.get("/actors/{actor_id}", response_model=ProfileResponse, dependencies=[Depends(check_rate_limit)])
async def get_actor_profile(
    actor_id: uuid.UUID,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    profile = await actor_service.get_actor_profile(db, actor_id)
    return ProfileResponse.model_validate(profile)


@router.post("/actors/{actor_id}/suspend", response_model=ProfileResponse, dependencies=[Depends(check_rate_limit)])
async def suspend_actor(
    actor_id: uuid.UUID,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    profile = await actor_service.set_suspension(db, actor_id, actor, suspended=True)
    return ProfileResponse.model_validate(profile)


@router.post("/actors/{actor_id}/reinstate", response_model=ProfileResponse, dependencies=[Depends(check_rate_limit)])
async def reinstate_actor(
    actor_id: uuid.UUID,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    profile = await actor_service.set_suspension(db, actor_id, actor, suspended=False)
    return ProfileResponse.model_validate(profile)


@router.get("/actors/{actor_id}/trust-score", response_model=TrustProfileResponse, dependencies=[Depends(check_rate_limit)])
async def get_trust_profile(
    actor_id: uuid.UUID,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> TrustProfileResponse:
    """Score, status, risk level and the auto-rules derived from it."""
    profile = await trust_service.get_trust_profile(db, actor_id, actor.actor_id, actor.role)
    return TrustProfileResponse.model_validate(profile)


@router.post(
    "/actors/{actor_id}/trust-score/recalculate",
    response_model=TrustProfileResponse,
    dependencies=[Depends(check_rate_limit)],
)
async def recalculate_trust_score(
    actor_id: uuid.UUID,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> TrustProfileResponse:
    profile = await trust_service.recalculate_trust_score(db, actor_id, actor.actor_id, actor.role)
    return TrustProfileResponse.model_validate(profile)


@router.post("/jobs/{job_id}/ratings", response_model=RatingResponse, status_code=201, dependencies=[Depends(check_rate_limit)])
async def submit_rating(
    job_id: uuid.UUID,
    data: SubmitRating,
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> RatingResponse:
    """Either party rates the other once per completed job."""
    rating = await rating_service.submit_rating(db, job_id, actor, data)
    return RatingResponse.model_validate(rating)


@router.get("/actors/{actor_id}/ratings", response_model=list[RatingResponse], dependencies=[Depends(check_rate_limit)])
async def list_ratings(
    actor_id: uuid.UUID,
    limit: int = Query(50, ge=1, le=200),
    actor: Actor = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[RatingResponse]:
    ratings = await rating_service.list_ratings(db, actor_id, limit=limit)
    return [RatingResponse.model_validate(r) for r in ratings]
