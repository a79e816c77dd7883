"""Payment split engine.

For a job whose payment has cleared:

    commission = total * rate
    net        = total - commission
    hold       = net * hold_percentage / 100
    immediate  = net - hold

Each amount is rounded to the cent (half-up) and ``immediate`` absorbs the
rounding, so commission + immediate + hold == total exactly. The Payment,
its three ledger credits, the WarrantyHold and the job's move to ASSIGNED are
written in one transaction.
"""

import logging
import uuid
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from jobbroker.auth.identity import Actor
from jobbroker.config import settings
from jobbroker.database import atomic
from jobbroker.errors import AuthorizationError, ConflictError, NotFoundError, StateError, ValidationError
from jobbroker.models.job import Job, JobStatus
from jobbroker.models.ledger import AccountType, EntryCategory
from jobbroker.models.payment import Payment, PaymentStatus
from jobbroker.models.types import utcnow
from jobbroker.schemas.payment import CreatePaymentSplit
from jobbroker.services import ledger, trust
from jobbroker.services.commission import (
    CENT,
    CommissionContext,
    CommissionRule,
    calculate_commission,
    get_commission_lookup,
)
from jobbroker.services.job import expire_if_due
from jobbroker.services.lookups import find_hold_for_job, find_payment, get_job, get_job_for_update
from jobbroker.services.notifications import NotificationMessage, dispatch
from jobbroker.services.state_machine import JobOperation, assert_operation_allowed, transition
from jobbroker.services.warranty import apply_freeze, new_hold

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SplitBreakdown:
    total_amount: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    net_amount: Decimal
    hold_percentage: Decimal
    warranty_hold_amount: Decimal
    immediate_amount: Decimal

    def ledger_credits(self) -> list[ledger.EntrySpec]:
        return [
            ledger.credit(
                AccountType.PLATFORM_COMMISSION, self.commission_amount,
                EntryCategory.COMMISSION, f"Platform commission at {self.commission_rate}",
            ),
            ledger.credit(
                AccountType.PROVIDER_PAYABLE, self.immediate_amount,
                EntryCategory.JOB_PAYMENT, "Immediate provider payout",
            ),
            ledger.credit(
                AccountType.WARRANTY_HOLD, self.warranty_hold_amount,
                EntryCategory.WARRANTY_HOLD, f"Warranty hold at {self.hold_percentage}%",
            ),
        ]


def calculate_split(
    total_amount: Decimal,
    commission_rate: Decimal,
    hold_percentage: Decimal,
) -> SplitBreakdown:
    if hold_percentage < 0 or hold_percentage > 100:
        raise ValidationError(f"Hold percentage must be between 0 and 100, got {hold_percentage}")
    commission = calculate_commission(total_amount, CommissionRule(rate=commission_rate))
    hold = (commission.net_amount * hold_percentage / Decimal("100")).quantize(
        CENT, rounding=ROUND_HALF_UP
    )
    return SplitBreakdown(
        total_amount=total_amount,
        commission_rate=commission.rate,
        commission_amount=commission.commission_amount,
        net_amount=commission.net_amount,
        hold_percentage=hold_percentage,
        warranty_hold_amount=hold,
        immediate_amount=commission.net_amount - hold,
    )


def _assert_can_pay(job: Job, actor: Actor) -> None:
    if actor.is_operator:
        return
    if actor.actor_id != job.client_id:
        raise AuthorizationError("Only the job's client or an operator can record its payment")


async def create_payment_split(
    db: AsyncSession,
    job_id: uuid.UUID,
    actor: Actor,
    data: CreatePaymentSplit,
) -> Payment:
    """Record a cleared payment for a job awaiting payment and split it."""
    await expire_if_due(db, job_id)

    async with atomic(db):
        job = await get_job_for_update(db, job_id)
        _assert_can_pay(job, actor)

        # Exactly one payment per job: a repeat call is an error, never an upsert
        if await find_payment(db, job_id) is not None:
            raise ConflictError("Payment already split for this job")

        assert_operation_allowed(job.status, JobOperation.LOCK_PAYMENT)
        if job.assigned_provider_id is None:
            raise StateError(job.status.value, JobOperation.LOCK_PAYMENT.value, "Job has no assigned provider")

        provider_rules = await trust.rules_for(db, job.assigned_provider_id)
        hold_percentage = (
            data.hold_percentage if data.hold_percentage is not None
            else provider_rules.hold_percentage
        )
        warranty_days = data.warranty_days if data.warranty_days is not None else job.warranty_days
        if warranty_days < 0:
            raise ValidationError("Warranty days must be non-negative")

        rule = await get_commission_lookup().lookup(CommissionContext(
            job_id=job.job_id,
            category_id=job.category_id,
            region=job.region,
            client_id=job.client_id,
        ))
        total = job.payable_amount
        commission = calculate_commission(total, rule, settings.min_commission_amount)
        split = calculate_split(total, commission.rate, hold_percentage)

        now = utcnow()
        payment = Payment(
            payment_id=uuid.uuid4(),
            job_id=job.job_id,
            client_id=job.client_id,
            provider_id=job.assigned_provider_id,
            total_amount=split.total_amount,
            commission_rate=split.commission_rate,
            commission_amount=split.commission_amount,
            net_amount=split.net_amount,
            hold_percentage=split.hold_percentage,
            immediate_amount=split.immediate_amount,
            warranty_hold_amount=split.warranty_hold_amount,
            status=PaymentStatus.ESCROW_HOLD,
            payment_method=data.payment_method,
            requires_approval=commission.requires_approval,
            external_reference=data.external_reference,
            created_by=actor.actor_id,
        )
        db.add(payment)
        hold = new_hold(job, payment, split.warranty_hold_amount, hold_percentage, warranty_days, now)
        db.add(hold)

        await ledger.post_entries(
            db,
            job.job_id,
            split.ledger_credits(),
            payment_id=payment.payment_id,
            hold_id=hold.hold_id,
            created_by=actor.actor_id,
        )

        if provider_rules.auto_freeze:
            apply_freeze(hold, "Provider risk is critical", None, now)

        transition(job, JobStatus.ASSIGNED)
        job.payment_deadline = None

    logger.info(
        "Split payment %s for job %s: total=%s commission=%s immediate=%s hold=%s",
        payment.payment_id, job_id, split.total_amount, split.commission_amount,
        split.immediate_amount, split.warranty_hold_amount,
    )
    await dispatch(db, [
        NotificationMessage(
            actor_id=payment.provider_id,
            job_id=job_id,
            type="PAYMENT_RECEIVED",
            title="Payment received",
            message=(
                f"{split.immediate_amount} is payable now; {split.warranty_hold_amount} "
                f"is held for {warranty_days} days."
            ),
        ),
        NotificationMessage(
            actor_id=payment.client_id,
            job_id=job_id,
            type="PAYMENT_CONFIRMED",
            title="Payment confirmed",
            message=f"Payment of {split.total_amount} confirmed. The job is now assigned.",
        ),
    ])
    return payment


async def get_payment_details(db: AsyncSession, job_id: uuid.UUID, actor: Actor) -> dict:
    job = await get_job(db, job_id)
    if not actor.is_operator and actor.actor_id not in (job.client_id, job.assigned_provider_id):
        raise AuthorizationError("Not a party to this job")

    payment = await find_payment(db, job_id)
    if payment is None:
        raise NotFoundError("No payment recorded for this job")
    hold = await find_hold_for_job(db, job_id)
    entries = await ledger.list_entries(db, job_id)
    balances = ledger.balances_from_entries(entries)
    return {
        "payment": payment,
        "warranty_hold": hold,
        "ledger_entries": entries,
        "balances": {account.value: amount for account, amount in balances.items()},
    }
