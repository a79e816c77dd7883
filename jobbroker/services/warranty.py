"""Warranty hold lifecycle: create, freeze, unfreeze, release, forfeit.

LOCKED -> FROZEN | RELEASED | FORFEITED, FROZEN -> LOCKED | RELEASED | FORFEITED.
Release is a ledger movement (DEBIT warranty_hold, CREDIT provider_payable),
never a bare status flip. Forfeit moves the hold the other way, to
client_receivable, once a dispute has gone the client's way. Time spent
frozen is added to the effective end date when the hold is unfrozen.
"""

import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from jobbroker.auth.identity import Actor
from jobbroker.database import atomic
from jobbroker.errors import AuthorizationError, StateError
from jobbroker.models.actor import ActorRole
from jobbroker.models.dispute import UNRESOLVED_DISPUTE_STATUSES, Dispute
from jobbroker.models.job import Job, JobStatus
from jobbroker.models.ledger import AccountType, EntryCategory
from jobbroker.models.payment import Payment, PaymentStatus
from jobbroker.models.types import utcnow
from jobbroker.models.warranty import HOLD_TRANSITIONS, HoldStatus, WarrantyHold
from jobbroker.services import ledger
from jobbroker.services.lookups import get_hold, get_job, get_job_for_update
from jobbroker.services.notifications import NotificationMessage, dispatch

logger = logging.getLogger(__name__)


def _assert_hold_transition(hold: WarrantyHold, target: HoldStatus, attempted: str) -> None:
    if target not in HOLD_TRANSITIONS[hold.status]:
        raise StateError(
            hold.status.value,
            attempted,
            f"Cannot {attempted} a warranty hold in status {hold.status.value}",
        )


def new_hold(
    job: Job,
    payment: Payment,
    amount: Decimal,
    hold_percentage: Decimal,
    warranty_days: int,
    now: datetime,
) -> WarrantyHold:
    end_date = now + timedelta(days=warranty_days)
    return WarrantyHold(
        hold_id=uuid.uuid4(),
        job_id=job.job_id,
        payment_id=payment.payment_id,
        provider_id=payment.provider_id,
        hold_amount=amount,
        hold_percentage=hold_percentage,
        warranty_days=warranty_days,
        start_date=now,
        end_date=end_date,
        effective_end_date=end_date,
        paused_seconds=0,
        status=HoldStatus.LOCKED,
        is_frozen=False,
    )


def apply_freeze(
    hold: WarrantyHold, reason: str, frozen_by: uuid.UUID | None, now: datetime
) -> None:
    _assert_hold_transition(hold, HoldStatus.FROZEN, "freeze")
    hold.status = HoldStatus.FROZEN
    hold.is_frozen = True
    hold.frozen_at = now
    hold.freeze_reason = reason
    hold.frozen_by = frozen_by
    logger.info("Froze warranty hold %s: %s", hold.hold_id, reason)


def apply_unfreeze(hold: WarrantyHold, now: datetime) -> None:
    _assert_hold_transition(hold, HoldStatus.LOCKED, "unfreeze")
    paused = now - hold.frozen_at if hold.frozen_at else timedelta(0)
    hold.paused_seconds += int(paused.total_seconds())
    hold.effective_end_date = hold.effective_end_date + paused
    hold.status = HoldStatus.LOCKED
    hold.is_frozen = False
    hold.frozen_at = None
    logger.info(
        "Unfroze warranty hold %s, window extended by %s to %s",
        hold.hold_id, paused, hold.effective_end_date.isoformat(),
    )


async def has_open_dispute(db: AsyncSession, job_id: uuid.UUID) -> bool:
    result = await db.execute(
        select(Dispute.dispute_id).where(
            Dispute.job_id == job_id,
            Dispute.status.in_(UNRESOLVED_DISPUTE_STATUSES),
        ).limit(1)
    )
    return result.first() is not None


async def _release(
    db: AsyncSession,
    hold: WarrantyHold,
    released_by: uuid.UUID | None,
    reason: str,
    override: bool,
    now: datetime,
) -> None:
    """Move the held amount to provider payable. Caller holds the job lock."""
    _assert_hold_transition(hold, HoldStatus.RELEASED, "release")
    if not override:
        if hold.status == HoldStatus.FROZEN:
            raise StateError(
                hold.status.value, "release",
                "Frozen warranty hold can only be released by operator override",
            )
        if hold.effective_end_date > now:
            raise StateError(
                hold.status.value, "release",
                f"Warranty window runs until {hold.effective_end_date.isoformat()}",
            )
        if await has_open_dispute(db, hold.job_id):
            raise StateError(
                hold.status.value, "release", "Job has an unresolved dispute",
            )

    await ledger.post_entries(
        db,
        hold.job_id,
        [
            ledger.debit(
                AccountType.WARRANTY_HOLD, hold.hold_amount,
                EntryCategory.WARRANTY_RELEASE, "Warranty hold released",
            ),
            ledger.credit(
                AccountType.PROVIDER_PAYABLE, hold.hold_amount,
                EntryCategory.WARRANTY_RELEASE, "Warranty hold paid out to provider",
            ),
        ],
        payment_id=hold.payment_id,
        hold_id=hold.hold_id,
        created_by=released_by,
    )

    hold.status = HoldStatus.RELEASED
    hold.is_frozen = False
    hold.released_at = now
    hold.release_reason = reason
    hold.released_by = released_by

    payment = (await db.execute(
        select(Payment).where(Payment.payment_id == hold.payment_id)
    )).scalar_one()
    payment.status = PaymentStatus.RELEASED
    payment.released_at = now
    logger.info("Released warranty hold %s (%s) for job %s", hold.hold_id, hold.hold_amount, hold.job_id)


def _release_message(hold: WarrantyHold) -> NotificationMessage:
    return NotificationMessage(
        actor_id=hold.provider_id,
        job_id=hold.job_id,
        type="WARRANTY_HOLD_RELEASED",
        title="Warranty hold released",
        message=f"{hold.hold_amount} has been released to your payable balance.",
        metadata={"hold_id": str(hold.hold_id)},
    )


async def release_warranty_hold(
    db: AsyncSession,
    hold_id: uuid.UUID,
    actor: Actor | None,
    override: bool = False,
    reason: str | None = None,
) -> WarrantyHold:
    """Release a hold. ``actor=None`` is the scheduler."""
    if actor is not None and not actor.is_operator:
        raise AuthorizationError("Only operators can release warranty holds")
    if override and actor is None:
        raise AuthorizationError("Override release requires an operator")

    hold = await get_hold(db, hold_id)
    async with atomic(db):
        await get_job_for_update(db, hold.job_id)
        hold = await get_hold(db, hold_id, for_update=True)
        await _release(
            db,
            hold,
            actor.actor_id if actor else None,
            reason or ("Operator override" if override else "Warranty period elapsed"),
            override,
            utcnow(),
        )
    await dispatch(db, [_release_message(hold)])
    return hold


async def _forfeit(
    db: AsyncSession, hold: WarrantyHold, forfeited_by: uuid.UUID, reason: str, now: datetime
) -> None:
    """Move the held amount to client receivable. Caller holds the job lock."""
    _assert_hold_transition(hold, HoldStatus.FORFEITED, "forfeit")
    if await has_open_dispute(db, hold.job_id):
        raise StateError(hold.status.value, "forfeit", "Job has an unresolved dispute")

    await ledger.post_entries(
        db,
        hold.job_id,
        [
            ledger.debit(
                AccountType.WARRANTY_HOLD, hold.hold_amount,
                EntryCategory.WARRANTY_FORFEIT, "Warranty hold forfeited",
            ),
            ledger.credit(
                AccountType.CLIENT_RECEIVABLE, hold.hold_amount,
                EntryCategory.WARRANTY_FORFEIT, "Warranty hold refunded to client",
            ),
        ],
        payment_id=hold.payment_id,
        hold_id=hold.hold_id,
        created_by=forfeited_by,
    )

    hold.status = HoldStatus.FORFEITED
    hold.is_frozen = False
    hold.frozen_at = None
    hold.forfeited_at = now
    hold.forfeit_reason = reason
    hold.forfeited_by = forfeited_by

    payment = (await db.execute(
        select(Payment).where(Payment.payment_id == hold.payment_id)
    )).scalar_one()
    payment.status = PaymentStatus.HOLD_FORFEITED
    logger.info("Forfeited warranty hold %s (%s) for job %s: %s", hold.hold_id, hold.hold_amount, hold.job_id, reason)


async def forfeit_warranty_hold(
    db: AsyncSession, hold_id: uuid.UUID, actor: Actor, reason: str | None = None
) -> WarrantyHold:
    """Operator pays a hold back to the client instead of the provider.

    Allowed from LOCKED or FROZEN once every dispute on the job is resolved.
    """
    if not actor.is_operator:
        raise AuthorizationError("Only operators can forfeit warranty holds")

    hold = await get_hold(db, hold_id)
    async with atomic(db):
        job = await get_job_for_update(db, hold.job_id)
        hold = await get_hold(db, hold_id, for_update=True)
        await _forfeit(db, hold, actor.actor_id, reason or "Operator forfeit", utcnow())

    metadata = {"hold_id": str(hold.hold_id)}
    await dispatch(db, [
        NotificationMessage(
            actor_id=hold.provider_id,
            job_id=hold.job_id,
            type="WARRANTY_HOLD_FORFEITED",
            title="Warranty hold forfeited",
            message=f"Your warranty hold of {hold.hold_amount} was forfeited: {hold.forfeit_reason}",
            metadata=metadata,
        ),
        NotificationMessage(
            actor_id=job.client_id,
            job_id=hold.job_id,
            type="WARRANTY_HOLD_REFUNDED",
            title="Warranty hold refunded",
            message=f"{hold.hold_amount} from the warranty hold is owed back to you.",
            metadata=metadata,
        ),
    ])
    return hold


async def _assert_can_freeze(db: AsyncSession, hold: WarrantyHold, actor: Actor) -> None:
    if actor.is_operator:
        return
    job = await get_job(db, hold.job_id)
    if actor.role == ActorRole.CLIENT and job.client_id == actor.actor_id:
        return
    raise AuthorizationError("Only the job's client or an operator can freeze this hold")


async def freeze_warranty_hold(
    db: AsyncSession, hold_id: uuid.UUID, actor: Actor, reason: str
) -> WarrantyHold:
    hold = await get_hold(db, hold_id)
    await _assert_can_freeze(db, hold, actor)
    async with atomic(db):
        await get_job_for_update(db, hold.job_id)
        hold = await get_hold(db, hold_id, for_update=True)
        apply_freeze(hold, reason, actor.actor_id, utcnow())
    await dispatch(db, [NotificationMessage(
        actor_id=hold.provider_id,
        job_id=hold.job_id,
        type="WARRANTY_HOLD_FROZEN",
        title="Warranty hold frozen",
        message=f"Your warranty hold was frozen: {reason}",
        metadata={"hold_id": str(hold.hold_id)},
    )])
    return hold


async def unfreeze_warranty_hold(
    db: AsyncSession, hold_id: uuid.UUID, actor: Actor
) -> WarrantyHold:
    if not actor.is_operator:
        raise AuthorizationError("Only operators can unfreeze warranty holds")
    hold = await get_hold(db, hold_id)
    async with atomic(db):
        await get_job_for_update(db, hold.job_id)
        hold = await get_hold(db, hold_id, for_update=True)
        if await has_open_dispute(db, hold.job_id):
            raise StateError(hold.status.value, "unfreeze", "Job has an unresolved dispute")
        apply_unfreeze(hold, utcnow())
    return hold


async def get_warranty_hold(db: AsyncSession, hold_id: uuid.UUID, actor: Actor) -> WarrantyHold:
    hold = await get_hold(db, hold_id)
    if actor.is_operator or actor.actor_id == hold.provider_id:
        return hold
    job = await get_job(db, hold.job_id)
    if actor.actor_id != job.client_id:
        raise AuthorizationError("Not a party to this job")
    return hold


async def release_due_holds(db: AsyncSession, now: datetime | None = None) -> list[uuid.UUID]:
    """Scheduler entry point: release every eligible hold on a completed job."""
    now = now or utcnow()
    result = await db.execute(
        select(WarrantyHold.hold_id)
        .join(Job, Job.job_id == WarrantyHold.job_id)
        .where(
            WarrantyHold.status == HoldStatus.LOCKED,
            WarrantyHold.effective_end_date <= now,
            Job.status == JobStatus.COMPLETED,
        )
    )
    released: list[uuid.UUID] = []
    for hold_id in list(result.scalars().all()):
        try:
            await release_warranty_hold(db, hold_id, actor=None)
        except StateError as exc:
            logger.info("Skipping warranty hold %s: %s", hold_id, exc.message)
            continue
        released.append(hold_id)
    return released
