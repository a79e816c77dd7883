"""Job lifecycle business logic: posting, soft locks, execution, timeouts, reposts."""

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobbroker.auth.identity import Actor, require_role
from jobbroker.config import settings
from jobbroker.database import atomic
from jobbroker.errors import AuthorizationError, ConflictError
from jobbroker.models.actor import ActorRole
from jobbroker.models.bid import OPEN_BID_STATUSES, Bid, BidStatus
from jobbroker.models.job import Job, JobStatus, TimeoutReason
from jobbroker.models.types import utcnow
from jobbroker.models.warranty import HoldStatus
from jobbroker.schemas.job import PostJob
from jobbroker.services import trust
from jobbroker.services.lookups import find_hold_for_job, find_payment, get_job, get_job_for_update
from jobbroker.services.notifications import NotificationMessage, dispatch
from jobbroker.services.state_machine import JobOperation, assert_operation_allowed, transition
from jobbroker.services.warranty import apply_freeze

logger = logging.getLogger(__name__)

OPEN_POOL_STATUSES = (JobStatus.PENDING, JobStatus.SOFT_LOCKED, JobStatus.NEGOTIATION_PENDING)

MAX_REPOSTS_REASON = "max reposts exceeded"
MAX_RECIRCULATIONS_REASON = "max re-circulations exceeded"


def _assert_client(job: Job, actor: Actor) -> None:
    if actor.actor_id != job.client_id:
        raise AuthorizationError("Only the client who posted this job can perform this action")


def _assert_client_or_operator(job: Job, actor: Actor) -> None:
    if not actor.is_operator:
        _assert_client(job, actor)


def _assert_assigned_provider(job: Job, actor: Actor) -> None:
    if job.assigned_provider_id is None or actor.actor_id != job.assigned_provider_id:
        raise AuthorizationError("Only the assigned provider can perform this action")


def _message(actor_id: uuid.UUID, job: Job, type_: str, title: str, text: str) -> NotificationMessage:
    return NotificationMessage(
        actor_id=actor_id,
        job_id=job.job_id,
        type=type_,
        title=title,
        message=text,
        metadata={"status": job.status.value},
    )


def _append_reason(job: Job, reason: TimeoutReason) -> None:
    # Reassign so the JSON column is flagged dirty
    job.timeout_reasons = [*(job.timeout_reasons or []), reason.value]


def _clear_assignment(job: Job) -> None:
    job.assigned_provider_id = None
    job.final_price = None
    job.price_locked = False
    job.locked_by_provider_id = None
    job.lock_expires_at = None
    job.negotiation_deadline = None
    job.payment_deadline = None
    job.negotiation_rounds = 0


async def reject_open_bids(
    db: AsyncSession, job_id: uuid.UUID, keep: set[uuid.UUID] | None = None
) -> int:
    """Reject every PENDING/COUNTERED bid on the job except ``keep``."""
    query = (
        update(Bid)
        .where(Bid.job_id == job_id, Bid.status.in_(OPEN_BID_STATUSES))
        .values(status=BidStatus.REJECTED, updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    if keep:
        query = query.where(Bid.bid_id.not_in(keep))
    result = await db.execute(query)
    return result.rowcount or 0


async def _cancel(
    db: AsyncSession, job: Job, reason: str, now: datetime
) -> list[NotificationMessage]:
    transition(job, JobStatus.CANCELLED)
    await reject_open_bids(db, job.job_id)
    job.cancelled_at = now
    job.rejection_reason = reason
    job.locked_by_provider_id = None
    job.lock_expires_at = None
    job.negotiation_deadline = None
    job.payment_deadline = None
    logger.info("Cancelled job %s: %s", job.job_id, reason)

    messages = [_message(
        job.client_id, job, "JOB_CANCELLED", "Job cancelled", f"Job was cancelled: {reason}"
    )]
    if job.assigned_provider_id:
        messages.append(_message(
            job.assigned_provider_id, job, "JOB_CANCELLED", "Job cancelled",
            f"A job assigned to you was cancelled: {reason}",
        ))
    return messages


async def recirculate(
    db: AsyncSession,
    job: Job,
    reason: TimeoutReason,
    now: datetime,
) -> list[NotificationMessage]:
    """Return a timed-out or reposted job to the open pool, or retire it.

    A job that has already used all of its reposts is cancelled instead and
    the posting client takes a fixed trust penalty. The global re-circulation
    ceiling cancels without a penalty.
    """
    if job.repost_count >= job.max_reposts:
        messages = await _cancel(db, job, MAX_REPOSTS_REASON, now)
        await trust.apply_repost_penalty(db, job.client_id, job.job_id)
        messages.append(_message(
            job.client_id, job, "JOB_REJECTED", "Job permanently rejected",
            f"The job exceeded its repost limit ({job.max_reposts}). "
            f"Your trust score was reduced by {settings.repost_trust_penalty} points.",
        ))
        return messages
    if job.recirculation_count >= settings.max_recirculations:
        return await _cancel(db, job, MAX_RECIRCULATIONS_REASON, now)

    previous_provider = job.assigned_provider_id
    await reject_open_bids(db, job.job_id)
    if job.status != JobStatus.PENDING:
        transition(job, JobStatus.PENDING)
    _clear_assignment(job)
    _append_reason(job, reason)
    job.repost_count += 1
    job.recirculation_count += 1
    logger.info(
        "Job %s back in pool (%s), repost %d/%d",
        job.job_id, reason.value, job.repost_count, job.max_reposts,
    )

    messages = [_message(
        job.client_id, job, "JOB_REPOSTED", "Job reposted",
        f"Job returned to the pool ({job.repost_count}/{job.max_reposts} reposts used).",
    )]
    if previous_provider:
        messages.append(_message(
            previous_provider, job, "JOB_RETURNED_TO_POOL", "Job returned to pool",
            "The job was returned to the pool before payment was completed.",
        ))
    return messages


async def return_to_pool(db: AsyncSession, job: Job, now: datetime) -> list[NotificationMessage]:
    """Negotiation ran out of live offers: reopen the job for bidding."""
    if job.recirculation_count >= settings.max_recirculations:
        return await _cancel(db, job, MAX_RECIRCULATIONS_REASON, now)
    transition(job, JobStatus.PENDING)
    _clear_assignment(job)
    job.rejection_count += 1
    job.last_rejected_at = now
    job.recirculation_count += 1
    return [_message(
        job.client_id, job, "JOB_BACK_IN_POOL", "Job back in pool",
        "All offers on your job were rejected. It is open for new bids.",
    )]


# ---------------------------------------------------------------------------
# Lazy expiry
# ---------------------------------------------------------------------------

def _due_timeout(job: Job, now: datetime) -> TimeoutReason | None:
    if job.status == JobStatus.SOFT_LOCKED and job.lock_expires_at and job.lock_expires_at <= now:
        return TimeoutReason.SOFT_LOCK
    if (
        job.status == JobStatus.NEGOTIATION_PENDING
        and job.negotiation_deadline
        and job.negotiation_deadline <= now
    ):
        return TimeoutReason.NEGOTIATION
    if (
        job.status == JobStatus.WAITING_FOR_PAYMENT
        and job.payment_deadline
        and job.payment_deadline <= now
    ):
        return TimeoutReason.PAYMENT
    return None


def next_deadline(job: Job) -> datetime | None:
    """The timestamp at which this job's current state times out, if any."""
    return {
        JobStatus.SOFT_LOCKED: job.lock_expires_at,
        JobStatus.NEGOTIATION_PENDING: job.negotiation_deadline,
        JobStatus.WAITING_FOR_PAYMENT: job.payment_deadline,
    }.get(job.status)


async def _apply_timeout(
    db: AsyncSession, job: Job, reason: TimeoutReason, now: datetime
) -> list[NotificationMessage]:
    if reason == TimeoutReason.SOFT_LOCK:
        provider_id = job.locked_by_provider_id
        transition(job, JobStatus.PENDING)
        job.locked_by_provider_id = None
        job.lock_expires_at = None
        _append_reason(job, reason)
        logger.info("Soft lock on job %s expired", job.job_id)
        if provider_id is None:
            return []
        return [_message(
            provider_id, job, "JOB_SOFT_LOCK_EXPIRED", "Soft lock expired",
            "Your soft lock expired and the job is back in the pool.",
        )]
    return await recirculate(db, job, reason, now)


async def expire_if_due(db: AsyncSession, job_id: uuid.UUID) -> Job:
    """Evaluate the job's deadlines and apply any timeout that has passed.

    Called before every mutating job operation and by the scheduler. The
    timeout commits on its own so a caller that then fails its own state
    check does not roll it back.
    """
    now = utcnow()
    job = await get_job(db, job_id)
    if _due_timeout(job, now) is None:
        return job

    messages: list[NotificationMessage] = []
    async with atomic(db):
        job = await get_job_for_update(db, job_id)
        reason = _due_timeout(job, now)
        if reason is not None:
            messages = await _apply_timeout(db, job, reason, now)
    await dispatch(db, messages)
    return job


async def expire_job(db: AsyncSession, job_id: uuid.UUID) -> Job:
    """Scheduler entry point for a single job."""
    return await expire_if_due(db, job_id)


async def sweep_expired_jobs(db: AsyncSession, now: datetime | None = None) -> list[uuid.UUID]:
    """Scheduler entry point: apply every timeout that is due."""
    now = now or utcnow()
    result = await db.execute(
        select(Job.job_id).where(or_(
            and_(Job.status == JobStatus.SOFT_LOCKED, Job.lock_expires_at <= now),
            and_(Job.status == JobStatus.NEGOTIATION_PENDING, Job.negotiation_deadline <= now),
            and_(Job.status == JobStatus.WAITING_FOR_PAYMENT, Job.payment_deadline <= now),
        ))
    )
    expired = list(result.scalars().all())
    for job_id in expired:
        await expire_if_due(db, job_id)
    if expired:
        logger.info("Sweep applied timeouts to %d jobs", len(expired))
    return expired


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

async def post_job(db: AsyncSession, actor: Actor, data: PostJob) -> Job:
    """Client posts a job to the open pool."""
    require_role(actor, ActorRole.CLIENT)
    async with atomic(db):
        await trust.ensure_profile(db, actor.actor_id, ActorRole.CLIENT)
        job = Job(
            job_id=uuid.uuid4(),
            title=data.title,
            description=data.description,
            category_id=data.category_id,
            region=data.region,
            status=JobStatus.PENDING,
            client_id=actor.actor_id,
            estimated_cost=data.estimated_cost,
            price_locked=False,
            max_negotiation_rounds=settings.max_negotiation_rounds,
            max_reposts=data.max_reposts if data.max_reposts is not None else settings.max_reposts,
            warranty_days=(
                data.warranty_days if data.warranty_days is not None
                else settings.default_warranty_days
            ),
            timeout_reasons=[],
        )
        db.add(job)

    logger.info("Job %s posted by %s at %s", job.job_id, actor.actor_id, job.estimated_cost)
    await dispatch(db, [_message(
        actor.actor_id, job, "JOB_POSTED", "Job posted",
        f"Your job '{job.title}' is open for bids.",
    )])
    return job


def _can_view(job: Job, actor: Actor) -> bool:
    if actor.is_operator or actor.actor_id == job.client_id:
        return True
    if actor.role != ActorRole.PROVIDER:
        return False
    return (
        job.status in OPEN_POOL_STATUSES
        or actor.actor_id in (job.assigned_provider_id, job.locked_by_provider_id)
    )


async def get_job_for_actor(db: AsyncSession, job_id: uuid.UUID, actor: Actor) -> Job:
    job = await expire_if_due(db, job_id)
    if not _can_view(job, actor):
        raise AuthorizationError("Not allowed to view this job")
    return job


async def list_jobs(
    db: AsyncSession, actor: Actor, status: JobStatus | None = None, limit: int = 50
) -> list[Job]:
    """Clients see their own jobs, providers the open pool plus their assignments."""
    query = select(Job)
    if actor.role == ActorRole.CLIENT:
        query = query.where(Job.client_id == actor.actor_id)
    elif actor.role == ActorRole.PROVIDER:
        query = query.where(or_(
            Job.status.in_([JobStatus.PENDING, JobStatus.NEGOTIATION_PENDING]),
            Job.assigned_provider_id == actor.actor_id,
            Job.locked_by_provider_id == actor.actor_id,
        ))
    if status is not None:
        query = query.where(Job.status == status)
    result = await db.execute(query.order_by(Job.created_at.desc()).limit(limit))
    return list(result.scalars().all())


async def assert_provider_eligible(db: AsyncSession, job: Job, provider_id: uuid.UUID) -> None:
    """Trust auto-rules and the post-rejection cooldown."""
    rules = await trust.rules_for(db, provider_id)
    if rules.auto_reject_bids:
        raise AuthorizationError("Provider is not eligible to take new jobs")

    result = await db.execute(
        select(Bid.updated_at)
        .where(
            Bid.job_id == job.job_id,
            Bid.provider_id == provider_id,
            Bid.status == BidStatus.REJECTED,
        )
        .order_by(Bid.updated_at.desc())
        .limit(1)
    )
    last_rejected = result.scalar_one_or_none()
    if last_rejected is not None:
        cooldown_ends = last_rejected + timedelta(seconds=settings.rejection_cooldown_seconds)
        if cooldown_ends > utcnow():
            raise ConflictError(
                f"Provider is cooling down after a rejection on this job until {cooldown_ends.isoformat()}"
            )


async def soft_lock(db: AsyncSession, job_id: uuid.UUID, actor: Actor) -> Job:
    """Provider reserves an open job at its posted price."""
    require_role(actor, ActorRole.PROVIDER)
    await expire_if_due(db, job_id)

    now = utcnow()
    async with atomic(db):
        job = await get_job_for_update(db, job_id)
        assert_operation_allowed(job.status, JobOperation.SOFT_LOCK)
        await trust.ensure_profile(db, actor.actor_id, ActorRole.PROVIDER)
        await assert_provider_eligible(db, job, actor.actor_id)

        transition(job, JobStatus.SOFT_LOCKED)
        job.locked_by_provider_id = actor.actor_id
        job.lock_expires_at = now + timedelta(seconds=settings.soft_lock_seconds)

    await dispatch(db, [_message(
        job.client_id, job, "JOB_SOFT_LOCKED", "Provider interested",
        f"A provider reserved your job at {job.estimated_cost}. Confirm to assign it.",
    )])
    return job


async def confirm_soft_lock(db: AsyncSession, job_id: uuid.UUID, actor: Actor) -> Job:
    """Client turns the soft lock into an assignment at the posted price."""
    await expire_if_due(db, job_id)

    now = utcnow()
    async with atomic(db):
        job = await get_job_for_update(db, job_id)
        _assert_client(job, actor)
        assert_operation_allowed(job.status, JobOperation.CONFIRM_SOFT_LOCK)

        transition(job, JobStatus.WAITING_FOR_PAYMENT)
        job.assigned_provider_id = job.locked_by_provider_id
        job.final_price = job.estimated_cost
        job.price_locked = True
        job.locked_by_provider_id = None
        job.lock_expires_at = None
        job.payment_deadline = now + timedelta(minutes=settings.payment_window_minutes)

    await dispatch(db, [_message(
        job.assigned_provider_id, job, "JOB_ASSIGNED", "Job confirmed",
        f"The client confirmed your reservation at {job.final_price}. Awaiting payment.",
    )])
    return job


async def start_job(db: AsyncSession, job_id: uuid.UUID, actor: Actor) -> Job:
    """Provider begins work. Job must be assigned and paid."""
    async with atomic(db):
        job = await get_job_for_update(db, job_id)
        _assert_assigned_provider(job, actor)
        assert_operation_allowed(job.status, JobOperation.START)
        transition(job, JobStatus.IN_PROGRESS)
        job.started_at = utcnow()

    await dispatch(db, [_message(
        job.client_id, job, "JOB_STARTED", "Work started", "The provider has started work.",
    )])
    return job


async def complete_job(db: AsyncSession, job_id: uuid.UUID, actor: Actor) -> Job:
    """Provider marks the work done; the client must approve."""
    async with atomic(db):
        job = await get_job_for_update(db, job_id)
        _assert_assigned_provider(job, actor)
        assert_operation_allowed(job.status, JobOperation.COMPLETE)
        transition(job, JobStatus.COMPLETION_PENDING_APPROVAL)
        job.completed_at = utcnow()

    await dispatch(db, [_message(
        job.client_id, job, "JOB_COMPLETION_SUBMITTED", "Completion submitted",
        "The provider marked the job complete. Please review and approve.",
    )])
    return job


async def approve_completion(db: AsyncSession, job_id: uuid.UUID, actor: Actor) -> Job:
    """Client (or operator) approves; the warranty hold then runs out its window."""
    async with atomic(db):
        job = await get_job_for_update(db, job_id)
        _assert_client_or_operator(job, actor)
        assert_operation_allowed(job.status, JobOperation.APPROVE)
        transition(job, JobStatus.COMPLETED)
        job.approved_at = utcnow()

    await dispatch(db, [_message(
        job.assigned_provider_id, job, "JOB_COMPLETED", "Job approved",
        "The client approved your work. The warranty hold is released when its window ends.",
    )])
    return job


async def reject_completion(db: AsyncSession, job_id: uuid.UUID, actor: Actor) -> Job:
    """Client sends the job back to the provider for more work."""
    async with atomic(db):
        job = await get_job_for_update(db, job_id)
        _assert_client(job, actor)
        assert_operation_allowed(job.status, JobOperation.REJECT_COMPLETION)
        transition(job, JobStatus.IN_PROGRESS)
        job.completed_at = None

    await dispatch(db, [_message(
        job.assigned_provider_id, job, "JOB_COMPLETION_REJECTED", "Completion rejected",
        "The client asked for more work before approving.",
    )])
    return job


async def cancel_job(
    db: AsyncSession, job_id: uuid.UUID, actor: Actor, reason: str | None = None
) -> Job:
    """Cancel from any non-terminal state.

    Once a payment exists only an operator may cancel, and the warranty hold
    is frozen for manual settlement.
    """
    await expire_if_due(db, job_id)

    now = utcnow()
    async with atomic(db):
        job = await get_job_for_update(db, job_id)
        _assert_client_or_operator(job, actor)
        assert_operation_allowed(job.status, JobOperation.CANCEL)

        payment = await find_payment(db, job_id)
        if payment is not None:
            if not actor.is_operator:
                raise AuthorizationError("Paid jobs can only be cancelled by an operator")
            hold = await find_hold_for_job(db, job_id)
            if hold is not None and hold.status == HoldStatus.LOCKED:
                apply_freeze(hold, "Job cancelled after payment", actor.actor_id, now)

        by = "operator" if actor.is_operator else "client"
        messages = await _cancel(db, job, reason or f"Cancelled by {by}", now)

    await dispatch(db, messages)
    return job


async def repost(db: AsyncSession, job_id: uuid.UUID, actor: Actor) -> Job:
    """Put a job back into the pool by hand. Counts against the repost limit."""
    await expire_if_due(db, job_id)

    now = utcnow()
    async with atomic(db):
        job = await get_job_for_update(db, job_id)
        _assert_client_or_operator(job, actor)
        assert_operation_allowed(job.status, JobOperation.REPOST)
        messages = await recirculate(db, job, TimeoutReason.MANUAL_REPOST, now)

    await dispatch(db, messages)
    return job
