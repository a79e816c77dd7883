"""Ratings between the parties of a completed job."""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from jobbroker.auth.identity import Actor
from jobbroker.database import atomic
from jobbroker.errors import AuthorizationError, ConflictError, StateError
from jobbroker.models.actor import ActorRole
from jobbroker.models.job import JobStatus
from jobbroker.models.rating import Rating
from jobbroker.models.trust import TrustChangeType
from jobbroker.schemas.actor import SubmitRating
from jobbroker.services import trust
from jobbroker.services.lookups import get_job


async def submit_rating(
    db: AsyncSession, job_id: uuid.UUID, actor: Actor, data: SubmitRating
) -> Rating:
    """Submit a rating for a completed job. Each party can rate the other once."""
    job = await get_job(db, job_id)
    if job.status != JobStatus.COMPLETED:
        raise StateError(job.status.value, "rate", "Can only rate completed jobs")

    if actor.actor_id == job.client_id:
        ratee_id, ratee_role = job.assigned_provider_id, ActorRole.PROVIDER
    elif actor.actor_id == job.assigned_provider_id:
        ratee_id, ratee_role = job.client_id, ActorRole.CLIENT
    else:
        raise AuthorizationError("Only parties to the job can leave ratings")

    existing = await db.execute(
        select(Rating.rating_id).where(Rating.job_id == job_id, Rating.rater_id == actor.actor_id)
    )
    if existing.first() is not None:
        raise ConflictError("You have already rated this job")

    async with atomic(db):
        rating = Rating(
            rating_id=uuid.uuid4(),
            job_id=job_id,
            rater_id=actor.actor_id,
            ratee_id=ratee_id,
            score=data.score,
            comment=data.comment,
        )
        db.add(rating)
        await db.flush()
        await trust.ensure_profile(db, ratee_id, ratee_role)
        await trust.recalculate(
            db, ratee_id, TrustChangeType.RATING_IMPACT,
            f"Rated {data.score}/5 on job {job_id}", job_id=job_id,
        )
    return rating


async def list_ratings(db: AsyncSession, ratee_id: uuid.UUID, limit: int = 50) -> list[Rating]:
    result = await db.execute(
        select(Rating)
        .where(Rating.ratee_id == ratee_id)
        .order_by(Rating.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
