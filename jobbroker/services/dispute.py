"""Dispute resolution.

Raising a dispute freezes the job's warranty hold; resolving it either
unfreezes the hold (window extended by the frozen time) or leaves it frozen
for operator settlement. Both parties' trust scores are re-derived on
resolution.
"""

import logging
import uuid

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from jobbroker.auth.identity import Actor, require_role
from jobbroker.database import atomic
from jobbroker.errors import AuthorizationError, ConflictError, NotFoundError, StateError
from jobbroker.models.actor import ActorRole
from jobbroker.models.dispute import (
    UNRESOLVED_DISPUTE_STATUSES,
    Dispute,
    DisputeOutcome,
    DisputeStatus,
)
from jobbroker.models.job import Job
from jobbroker.models.trust import TrustChangeType
from jobbroker.models.types import utcnow
from jobbroker.models.warranty import HoldStatus
from jobbroker.schemas.dispute import RaiseDispute, ResolveDispute
from jobbroker.services import trust
from jobbroker.services.lookups import find_hold_for_job, get_job_for_update
from jobbroker.services.notifications import NotificationMessage, dispatch
from jobbroker.services.warranty import apply_freeze, apply_unfreeze, has_open_dispute

logger = logging.getLogger(__name__)

# Client-favoured outcomes leave the hold frozen for an operator to forfeit
UNFREEZING_OUTCOMES = (DisputeOutcome.PROVIDER_FAVOURED, DisputeOutcome.SETTLED)


def _message(actor_id: uuid.UUID, dispute: Dispute, type_: str, title: str, text: str) -> NotificationMessage:
    return NotificationMessage(
        actor_id=actor_id,
        job_id=dispute.job_id,
        type=type_,
        title=title,
        message=text,
        metadata={"dispute_id": str(dispute.dispute_id), "status": dispute.status.value},
    )


async def _get_dispute(db: AsyncSession, dispute_id: uuid.UUID) -> Dispute:
    result = await db.execute(
        select(Dispute)
        .where(Dispute.dispute_id == dispute_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    dispute = result.scalar_one_or_none()
    if dispute is None:
        raise NotFoundError("Dispute not found")
    return dispute


async def raise_dispute(db: AsyncSession, actor: Actor, data: RaiseDispute) -> Dispute:
    """Client or assigned provider opens a dispute on a paid job."""
    now = utcnow()
    async with atomic(db):
        job = await get_job_for_update(db, data.job_id)
        if actor.actor_id not in (job.client_id, job.assigned_provider_id):
            raise AuthorizationError("Only parties to the job can raise a dispute")

        hold = await find_hold_for_job(db, job.job_id)
        if hold is None:
            raise StateError(job.status.value, "raise_dispute", "Job has no payment to dispute")
        if await has_open_dispute(db, job.job_id):
            raise ConflictError("Job already has an open dispute")

        dispute = Dispute(
            dispute_id=uuid.uuid4(),
            job_id=job.job_id,
            raised_by=actor.actor_id,
            raised_by_role=actor.role,
            dispute_type=data.dispute_type,
            severity=data.severity,
            title=data.title,
            description=data.description,
            evidence=list(data.evidence),
            status=DisputeStatus.OPEN,
        )
        db.add(dispute)
        if hold.status == HoldStatus.LOCKED:
            apply_freeze(hold, f"Dispute raised: {data.title}", actor.actor_id, now)

    logger.info("Dispute %s raised on job %s by %s", dispute.dispute_id, job.job_id, actor.actor_id)
    other_party = job.assigned_provider_id if actor.actor_id == job.client_id else job.client_id
    await dispatch(db, [_message(
        other_party, dispute, "DISPUTE_RAISED", "Dispute raised",
        f"A dispute was raised on your job: {dispute.title}. The warranty hold is frozen.",
    )])
    return dispute


async def review_dispute(db: AsyncSession, dispute_id: uuid.UUID, actor: Actor) -> Dispute:
    require_role(actor, ActorRole.OPERATOR)
    async with atomic(db):
        dispute = await _get_dispute(db, dispute_id)
        if dispute.status != DisputeStatus.OPEN:
            raise StateError(dispute.status.value, DisputeStatus.UNDER_REVIEW.value)
        dispute.status = DisputeStatus.UNDER_REVIEW
        dispute.reviewed_by = actor.actor_id
    return dispute


async def resolve_dispute(
    db: AsyncSession, dispute_id: uuid.UUID, actor: Actor, data: ResolveDispute
) -> Dispute:
    """Operator closes a dispute with an outcome."""
    require_role(actor, ActorRole.OPERATOR)
    now = utcnow()
    async with atomic(db):
        dispute = await _get_dispute(db, dispute_id)
        job = await get_job_for_update(db, dispute.job_id)
        if dispute.status not in UNRESOLVED_DISPUTE_STATUSES:
            raise StateError(dispute.status.value, DisputeStatus.RESOLVED.value)

        dispute.status = DisputeStatus.RESOLVED
        dispute.outcome = data.outcome
        dispute.resolution_notes = data.resolution_notes
        dispute.resolved_by = actor.actor_id
        dispute.resolved_at = now
        await db.flush()

        hold = await find_hold_for_job(db, job.job_id)
        if (
            hold is not None
            and hold.status == HoldStatus.FROZEN
            and data.outcome in UNFREEZING_OUTCOMES
            and not await has_open_dispute(db, job.job_id)
        ):
            apply_unfreeze(hold, now)

        for party in (job.client_id, job.assigned_provider_id):
            if party is not None:
                await trust.recalculate(
                    db, party, TrustChangeType.DISPUTE_RESOLUTION,
                    f"Dispute resolved: {data.outcome.value}", job_id=job.job_id,
                )

    logger.info("Dispute %s resolved: %s", dispute_id, data.outcome.value)
    await dispatch(db, [
        _message(
            party, dispute, "DISPUTE_RESOLVED", "Dispute resolved",
            f"The dispute on your job was resolved ({data.outcome.value}).",
        )
        for party in (job.client_id, job.assigned_provider_id)
        if party is not None
    ])
    return dispute


async def get_dispute(db: AsyncSession, dispute_id: uuid.UUID, actor: Actor) -> Dispute:
    result = await db.execute(select(Dispute).where(Dispute.dispute_id == dispute_id))
    dispute = result.scalar_one_or_none()
    if dispute is None:
        raise NotFoundError("Dispute not found")
    if not actor.is_operator:
        job = (await db.execute(select(Job).where(Job.job_id == dispute.job_id))).scalar_one()
        if actor.actor_id not in (job.client_id, job.assigned_provider_id):
            raise AuthorizationError("Not a party to this dispute")
    return dispute


async def list_disputes(
    db: AsyncSession, actor: Actor, status: DisputeStatus | None = None
) -> list[Dispute]:
    """Parties see disputes on their own jobs; operators see all."""
    query = select(Dispute)
    if not actor.is_operator:
        query = query.join(Job, Job.job_id == Dispute.job_id).where(
            or_(Job.client_id == actor.actor_id, Job.assigned_provider_id == actor.actor_id)
        )
    if status is not None:
        query = query.where(Dispute.status == status)
    result = await db.execute(query.order_by(Dispute.created_at.desc()))
    return list(result.scalars().all())
