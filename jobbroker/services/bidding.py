"""Bid and negotiation engine.

Each provider holds at most one open chain per job: an original bid, then
alternating counter-offers linked through previous_bid_id. Only the newest
bid of a chain is PENDING; the bids it answered are COUNTERED.
"""

import logging
import uuid
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from jobbroker.auth.identity import Actor, require_role
from jobbroker.config import settings
from jobbroker.database import atomic
from jobbroker.errors import AuthorizationError, ConflictError, StateError, ValidationError
from jobbroker.models.actor import ActorRole
from jobbroker.models.bid import OPEN_BID_STATUSES, Bid, BidParty, BidStatus
from jobbroker.models.job import Job, JobStatus
from jobbroker.models.types import utcnow
from jobbroker.schemas.bid import CounterOffer, PlaceBid
from jobbroker.services import trust
from jobbroker.services.job import (
    assert_provider_eligible,
    expire_if_due,
    reject_open_bids,
    return_to_pool,
)
from jobbroker.services.lookups import get_bid, get_job, get_job_for_update
from jobbroker.services.notifications import NotificationMessage, dispatch
from jobbroker.services.state_machine import JobOperation, assert_operation_allowed, transition

logger = logging.getLogger(__name__)


def _notify(actor_id: uuid.UUID, job: Job, bid: Bid, type_: str, title: str, text: str) -> NotificationMessage:
    return NotificationMessage(
        actor_id=actor_id,
        job_id=job.job_id,
        type=type_,
        title=title,
        message=text,
        metadata={"bid_id": str(bid.bid_id), "offered_price": str(bid.offered_price)},
    )


def _receiver(job: Job, bid: Bid) -> uuid.UUID:
    """The party that has to answer this bid."""
    return job.client_id if bid.proposed_by == BidParty.PROVIDER else bid.provider_id


def _assert_receiver(job: Job, bid: Bid, actor: Actor) -> None:
    if actor.actor_id != _receiver(job, bid):
        raise AuthorizationError("Only the receiving party can answer this offer")


def _assert_bid_open(bid: Bid) -> None:
    if bid.status != BidStatus.PENDING:
        raise ConflictError(
            f"Bid is {bid.status.value}, only the current pending offer can be answered",
            details={"bid_status": bid.status.value},
        )


async def _chain(db: AsyncSession, bid: Bid) -> list[Bid]:
    """The bid and every bid it answers, newest first."""
    result = await db.execute(
        select(Bid).where(Bid.job_id == bid.job_id, Bid.provider_id == bid.provider_id)
    )
    by_id = {b.bid_id: b for b in result.scalars().all()}
    chain = [bid]
    while chain[-1].previous_bid_id is not None:
        chain.append(by_id[chain[-1].previous_bid_id])
    return chain


def _extend_negotiation(job: Job) -> None:
    job.negotiation_deadline = utcnow() + timedelta(minutes=settings.negotiation_window_minutes)


async def place_bid(db: AsyncSession, job_id: uuid.UUID, actor: Actor, data: PlaceBid) -> Bid:
    """Provider makes an original offer on an open job."""
    require_role(actor, ActorRole.PROVIDER)
    await expire_if_due(db, job_id)

    async with atomic(db):
        job = await get_job_for_update(db, job_id)
        assert_operation_allowed(job.status, JobOperation.BID)
        await trust.ensure_profile(db, actor.actor_id, ActorRole.PROVIDER)

        result = await db.execute(
            select(Bid.bid_id).where(
                Bid.job_id == job_id,
                Bid.provider_id == actor.actor_id,
                Bid.is_counter_offer.is_(False),
                Bid.status.in_(OPEN_BID_STATUSES),
            )
        )
        if result.first() is not None:
            raise ConflictError("Provider already has an active bid on this job")
        await assert_provider_eligible(db, job, actor.actor_id)

        bid = Bid(
            bid_id=uuid.uuid4(),
            job_id=job_id,
            provider_id=actor.actor_id,
            proposed_by=BidParty.PROVIDER,
            offered_price=data.offered_price,
            message=data.message,
            status=BidStatus.PENDING,
            is_counter_offer=False,
            round_number=1,
        )
        db.add(bid)
        if job.status == JobStatus.PENDING:
            transition(job, JobStatus.NEGOTIATION_PENDING)
        _extend_negotiation(job)

    logger.info("Bid %s on job %s: %s", bid.bid_id, job_id, bid.offered_price)
    await dispatch(db, [_notify(
        job.client_id, job, bid, "BID_RECEIVED", "New bid",
        f"A provider offered {bid.offered_price} for '{job.title}'.",
    )])
    return bid


async def counter_offer(
    db: AsyncSession, job_id: uuid.UUID, bid_id: uuid.UUID, actor: Actor, data: CounterOffer
) -> Bid:
    """Answer the current offer of a chain with a new price."""
    await expire_if_due(db, job_id)

    async with atomic(db):
        job = await get_job_for_update(db, job_id)
        bid = await get_bid(db, job_id, bid_id)
        _assert_receiver(job, bid, actor)
        assert_operation_allowed(job.status, JobOperation.BID)
        _assert_bid_open(bid)
        if job.negotiation_rounds >= job.max_negotiation_rounds:
            raise ValidationError(
                f"Maximum negotiation rounds ({job.max_negotiation_rounds}) reached",
                details={"negotiation_rounds": job.negotiation_rounds},
            )

        counter = Bid(
            bid_id=uuid.uuid4(),
            job_id=job_id,
            provider_id=bid.provider_id,
            proposed_by=(
                BidParty.CLIENT if bid.proposed_by == BidParty.PROVIDER else BidParty.PROVIDER
            ),
            offered_price=data.offered_price,
            message=data.message,
            status=BidStatus.PENDING,
            is_counter_offer=True,
            previous_bid_id=bid.bid_id,
            round_number=bid.round_number + 1,
        )
        db.add(counter)
        bid.status = BidStatus.COUNTERED
        job.negotiation_rounds += 1
        _extend_negotiation(job)

    logger.info(
        "Counter %s on job %s: %s -> %s", counter.bid_id, job_id, bid.offered_price, counter.offered_price
    )
    await dispatch(db, [_notify(
        _receiver(job, counter), job, counter, "BID_COUNTERED", "Counter-offer",
        f"You received a counter-offer of {counter.offered_price}.",
    )])
    return counter


async def _accept(
    db: AsyncSession, job_id: uuid.UUID, bid_id: uuid.UUID, actor: Actor, proposed_by: BidParty
) -> Job:
    """Accept one offer and reject every competing one in the same commit."""
    await expire_if_due(db, job_id)

    async with atomic(db):
        job = await get_job_for_update(db, job_id)
        if job.is_terminal:
            raise StateError(job.status.value, JobStatus.WAITING_FOR_PAYMENT.value)
        bid = await get_bid(db, job_id, bid_id)
        if bid.proposed_by != proposed_by:
            raise ValidationError(
                f"Bid was proposed by the {bid.proposed_by.value}; "
                f"use the matching accept operation"
            )
        _assert_receiver(job, bid, actor)
        if job.price_locked:
            raise ConflictError("Price for this job has already been locked by another acceptance")
        assert_operation_allowed(job.status, JobOperation.ACCEPT)
        _assert_bid_open(bid)

        chain = await _chain(db, bid)
        rejected = await reject_open_bids(db, job_id, keep={bid.bid_id})
        for accepted in chain:
            accepted.status = BidStatus.ACCEPTED

        transition(job, JobStatus.WAITING_FOR_PAYMENT)
        job.assigned_provider_id = bid.provider_id
        job.final_price = bid.offered_price
        job.price_locked = True
        job.negotiation_deadline = None
        job.payment_deadline = utcnow() + timedelta(minutes=settings.payment_window_minutes)

    logger.info(
        "Job %s accepted at %s (bid %s, %d competing bids rejected)",
        job_id, job.final_price, bid_id, rejected,
    )
    await dispatch(db, [
        _notify(
            bid.provider_id, job, bid, "BID_ACCEPTED", "Offer accepted",
            f"Your job was agreed at {job.final_price}. Awaiting payment.",
        ),
        _notify(
            job.client_id, job, bid, "PRICE_LOCKED", "Price locked",
            f"The price is locked at {job.final_price}. Please complete payment.",
        ),
    ])
    return job


async def accept_bid(db: AsyncSession, job_id: uuid.UUID, bid_id: uuid.UUID, actor: Actor) -> Job:
    """Client accepts a provider's offer."""
    return await _accept(db, job_id, bid_id, actor, BidParty.PROVIDER)


async def accept_counter_offer(
    db: AsyncSession, job_id: uuid.UUID, bid_id: uuid.UUID, actor: Actor
) -> Job:
    """Provider accepts the client's counter-offer."""
    return await _accept(db, job_id, bid_id, actor, BidParty.CLIENT)


async def reject_bid(db: AsyncSession, job_id: uuid.UUID, bid_id: uuid.UUID, actor: Actor) -> Bid:
    """Reject the current offer, closing its whole chain.

    When no open bid remains the job goes back to the pool.
    """
    await expire_if_due(db, job_id)

    messages: list[NotificationMessage] = []
    async with atomic(db):
        job = await get_job_for_update(db, job_id)
        bid = await get_bid(db, job_id, bid_id)
        _assert_receiver(job, bid, actor)
        _assert_bid_open(bid)

        for rejected in await _chain(db, bid):
            rejected.status = BidStatus.REJECTED
        await db.flush()

        result = await db.execute(
            select(Bid.bid_id).where(Bid.job_id == job_id, Bid.status.in_(OPEN_BID_STATUSES))
        )
        if result.first() is None and job.status == JobStatus.NEGOTIATION_PENDING:
            messages = await return_to_pool(db, job, utcnow())

    other_party = job.client_id if actor.actor_id == bid.provider_id else bid.provider_id
    messages.insert(0, _notify(
        other_party, job, bid, "BID_REJECTED", "Offer rejected",
        f"The offer of {bid.offered_price} was rejected.",
    ))
    await dispatch(db, messages)
    return bid


async def list_bids(db: AsyncSession, job_id: uuid.UUID, actor: Actor) -> list[Bid]:
    """Clients and operators see every bid; a provider sees only their own chain."""
    job = await get_job(db, job_id)
    query = select(Bid).where(Bid.job_id == job_id)
    if not actor.is_operator and actor.actor_id != job.client_id:
        if actor.role != ActorRole.PROVIDER:
            raise AuthorizationError("Not allowed to view bids on this job")
        query = query.where(Bid.provider_id == actor.actor_id)
    result = await db.execute(query.order_by(Bid.created_at, Bid.round_number))
    return list(result.scalars().all())
