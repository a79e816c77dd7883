"""Trust and risk scoring.

One scoring function for every role. A profile's score is only ever written by
``recalculate``, which derives it from ratings, job outcomes, disputes and
penalty points and appends a TrustScoreEvent.
"""

import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from jobbroker.config import settings
from jobbroker.database import atomic
from jobbroker.errors import AuthorizationError, NotFoundError
from jobbroker.models.actor import ActorProfile, ActorRole, TrustStatus
from jobbroker.models.dispute import Dispute, DisputeOutcome, DisputeStatus
from jobbroker.models.job import Job, JobStatus
from jobbroker.models.rating import Rating
from jobbroker.models.trust import TrustChangeType, TrustScoreEvent
from jobbroker.models.types import utcnow

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = Decimal("50")
SUSPENDED_SCORE_CAP = Decimal("20")
RECENT_WINDOW = timedelta(days=30)


class RiskLevel(enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class TrustFactors:
    total_ratings: int = 0
    average_rating: Decimal = Decimal("0")
    recent_low_ratings: int = 0
    total_jobs: int = 0
    completed_jobs: int = 0
    total_disputes: int = 0
    resolved_disputes: int = 0
    adverse_outcomes: int = 0
    penalty_points: int = 0
    is_suspended: bool = False


@dataclass(frozen=True)
class AutoRules:
    hold_percentage: Decimal
    auto_freeze: bool
    auto_reject_bids: bool

    def to_dict(self) -> dict:
        return {
            "hold_percentage": str(self.hold_percentage),
            "auto_freeze": self.auto_freeze,
            "auto_reject_bids": self.auto_reject_bids,
        }


def _clamp(value: Decimal, low: Decimal, high: Decimal) -> Decimal:
    return max(low, min(high, value))


def compute_trust_score(factors: TrustFactors) -> Decimal:
    """Score in [0, 100], starting from a neutral 50.

    ratings        (avg - 3) * 4, capped at +/-20; -2 per recent 1-2 star rating (max -10)
    completion     (completed / total - 0.8) * 30
    adverse        -4 per dispute lost (max -20)
    disputes       -(unresolved share) * 15
    penalties      -1 per penalty point
    suspension     score capped at 20
    """
    score = NEUTRAL_SCORE

    if factors.total_ratings > 0:
        impact = (Decimal(factors.average_rating) - 3) * 4
        score += _clamp(impact, Decimal("-20"), Decimal("20"))
        score -= min(Decimal("10"), Decimal(factors.recent_low_ratings * 2))

    if factors.total_jobs > 0:
        completion_rate = Decimal(factors.completed_jobs) / Decimal(factors.total_jobs)
        score += (completion_rate - Decimal("0.8")) * 30

    if factors.adverse_outcomes > 0:
        score -= min(Decimal("20"), Decimal(factors.adverse_outcomes * 4))

    if factors.total_disputes > 0:
        resolved_rate = Decimal(factors.resolved_disputes) / Decimal(factors.total_disputes)
        score -= (1 - resolved_rate) * 15

    score -= Decimal(factors.penalty_points)
    score = _clamp(score, Decimal("0"), Decimal("100"))
    if factors.is_suspended:
        score = min(score, SUSPENDED_SCORE_CAP)
    return score.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def trust_status(score: Decimal) -> TrustStatus:
    if score >= 80:
        return TrustStatus.GOOD
    if score >= 60:
        return TrustStatus.NORMAL
    if score >= 40:
        return TrustStatus.RISK
    return TrustStatus.CRITICAL


def risk_score(trust: Decimal) -> Decimal:
    return Decimal("100") - trust


def risk_level(trust: Decimal) -> RiskLevel:
    risk = risk_score(trust)
    if risk >= 80:
        return RiskLevel.CRITICAL
    if risk >= 60:
        return RiskLevel.HIGH
    if risk >= 40:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def auto_rules(
    trust: Decimal,
    is_suspended: bool = False,
    default_hold_percentage: Decimal = Decimal("20"),
) -> AutoRules:
    level = risk_level(trust)
    if level == RiskLevel.CRITICAL:
        hold = Decimal("40")
    elif level == RiskLevel.HIGH:
        hold = Decimal("30")
    elif risk_score(trust) > 50:
        hold = Decimal("25")
    elif risk_score(trust) < 15:
        hold = Decimal("15")
    else:
        hold = Decimal(default_hold_percentage)
    return AutoRules(
        hold_percentage=hold,
        auto_freeze=level == RiskLevel.CRITICAL,
        auto_reject_bids=level == RiskLevel.CRITICAL or is_suspended,
    )


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

async def get_profile(db: AsyncSession, actor_id: uuid.UUID) -> ActorProfile | None:
    result = await db.execute(select(ActorProfile).where(ActorProfile.actor_id == actor_id))
    return result.scalar_one_or_none()


async def ensure_profile(
    db: AsyncSession, actor_id: uuid.UUID, role: ActorRole
) -> ActorProfile:
    """Fetch the profile, creating a neutral one on first contact."""
    profile = await get_profile(db, actor_id)
    if profile is None:
        profile = ActorProfile(
            actor_id=actor_id,
            role=role,
            trust_score=NEUTRAL_SCORE,
            trust_status=trust_status(NEUTRAL_SCORE),
        )
        db.add(profile)
        await db.flush()
    return profile


async def gather_factors(db: AsyncSession, profile: ActorProfile) -> TrustFactors:
    actor_id = profile.actor_id
    since = utcnow() - RECENT_WINDOW

    rating_row = (await db.execute(
        select(func.count(Rating.rating_id), func.avg(Rating.score))
        .where(Rating.ratee_id == actor_id)
    )).one()
    total_ratings = int(rating_row[0] or 0)
    average_rating = Decimal(str(rating_row[1])) if rating_row[1] is not None else Decimal("0")
    recent_low = (await db.execute(
        select(func.count(Rating.rating_id)).where(
            Rating.ratee_id == actor_id,
            Rating.score <= 2,
            Rating.created_at >= since,
        )
    )).scalar_one()

    if profile.role == ActorRole.PROVIDER:
        party_clause = Job.assigned_provider_id == actor_id
    else:
        party_clause = Job.client_id == actor_id
    job_rows = (await db.execute(
        select(Job.status, func.count(Job.job_id))
        .where(party_clause, Job.status.in_([JobStatus.COMPLETED, JobStatus.CANCELLED]))
        .group_by(Job.status)
    )).all()
    by_status = {status: count for status, count in job_rows}
    completed = by_status.get(JobStatus.COMPLETED, 0)
    total_jobs = completed + by_status.get(JobStatus.CANCELLED, 0)

    # Disputes raised against this actor on jobs they are party to
    disputes = list((await db.execute(
        select(Dispute)
        .join(Job, Job.job_id == Dispute.job_id)
        .where(
            or_(Job.client_id == actor_id, Job.assigned_provider_id == actor_id),
            Dispute.raised_by != actor_id,
        )
    )).scalars().all())
    lost_outcome = (
        DisputeOutcome.CLIENT_FAVOURED
        if profile.role == ActorRole.PROVIDER
        else DisputeOutcome.PROVIDER_FAVOURED
    )

    return TrustFactors(
        total_ratings=total_ratings,
        average_rating=average_rating,
        recent_low_ratings=int(recent_low or 0),
        total_jobs=total_jobs,
        completed_jobs=completed,
        total_disputes=len(disputes),
        resolved_disputes=sum(1 for d in disputes if d.status == DisputeStatus.RESOLVED),
        adverse_outcomes=sum(1 for d in disputes if d.outcome == lost_outcome),
        penalty_points=profile.penalty_points,
        is_suspended=profile.is_suspended,
    )


async def recalculate(
    db: AsyncSession,
    actor_id: uuid.UUID,
    change_type: TrustChangeType,
    reason: str,
    job_id: uuid.UUID | None = None,
    ceiling: Decimal | None = None,
) -> ActorProfile | None:
    """Re-derive and store the actor's score. Does not commit.

    ``ceiling`` bounds the derived score from above, so a penalty lands even
    when the stored score lagged behind the actor's history.
    """
    profile = await get_profile(db, actor_id)
    if profile is None:
        return None

    factors = await gather_factors(db, profile)
    old_score = profile.trust_score
    new_score = compute_trust_score(factors)
    if ceiling is not None:
        new_score = min(new_score, ceiling)

    profile.trust_score = new_score
    profile.trust_status = trust_status(new_score)
    profile.last_trust_update = utcnow()
    db.add(TrustScoreEvent(
        event_id=uuid.uuid4(),
        actor_id=actor_id,
        old_score=old_score,
        new_score=new_score,
        change_type=change_type,
        reason=reason,
        job_id=job_id,
    ))
    logger.info(
        "Trust score for %s: %s -> %s (%s)", actor_id, old_score, new_score, change_type.value
    )
    return profile


async def apply_repost_penalty(
    db: AsyncSession, actor_id: uuid.UUID, job_id: uuid.UUID
) -> ActorProfile:
    """Fixed penalty on the posting actor when a job exhausts its reposts.

    The score always drops by at least the penalty, floored at 0.
    """
    profile = await ensure_profile(db, actor_id, ActorRole.CLIENT)
    penalty = Decimal(settings.repost_trust_penalty)
    ceiling = max(Decimal("0"), profile.trust_score - penalty)
    profile.penalty_points += settings.repost_trust_penalty
    profile.rejected_jobs_count += 1
    await db.flush()
    await recalculate(
        db,
        actor_id,
        TrustChangeType.REPOST_PENALTY,
        f"Job exceeded maximum reposts (-{settings.repost_trust_penalty} points)",
        job_id=job_id,
        ceiling=ceiling,
    )
    return profile


async def rules_for(db: AsyncSession, actor_id: uuid.UUID) -> AutoRules:
    profile = await get_profile(db, actor_id)
    if profile is None:
        return auto_rules(NEUTRAL_SCORE, default_hold_percentage=settings.default_hold_percentage)
    return auto_rules(
        profile.trust_score,
        is_suspended=profile.is_suspended,
        default_hold_percentage=settings.default_hold_percentage,
    )


def describe(profile: ActorProfile) -> dict:
    rules = auto_rules(
        profile.trust_score,
        is_suspended=profile.is_suspended,
        default_hold_percentage=settings.default_hold_percentage,
    )
    return {
        "actor_id": profile.actor_id,
        "role": profile.role.value,
        "trust_score": profile.trust_score,
        "trust_status": profile.trust_status.value,
        "risk_score": risk_score(profile.trust_score),
        "risk_level": risk_level(profile.trust_score).value,
        "auto_rules": rules.to_dict(),
        "last_trust_update": profile.last_trust_update,
    }


def _assert_can_view(actor_id: uuid.UUID, requester_id: uuid.UUID, requester_role: ActorRole) -> None:
    if requester_role != ActorRole.OPERATOR and requester_id != actor_id:
        raise AuthorizationError("Only operators can view another actor's trust profile")


async def get_trust_profile(
    db: AsyncSession,
    actor_id: uuid.UUID,
    requester_id: uuid.UUID,
    requester_role: ActorRole,
) -> dict:
    _assert_can_view(actor_id, requester_id, requester_role)
    profile = await get_profile(db, actor_id)
    if profile is None:
        raise NotFoundError("Actor profile not found")
    return describe(profile)


async def recalculate_trust_score(
    db: AsyncSession,
    actor_id: uuid.UUID,
    requester_id: uuid.UUID,
    requester_role: ActorRole,
) -> dict:
    """Explicit re-derivation. There is no way to set a score directly."""
    _assert_can_view(actor_id, requester_id, requester_role)
    async with atomic(db):
        profile = await recalculate(
            db, actor_id, TrustChangeType.SYSTEM_RECALCULATION, "Trust score recalculation"
        )
        if profile is None:
            raise NotFoundError("Actor profile not found")
    return describe(profile)

