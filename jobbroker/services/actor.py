"""Actor profile business logic."""

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from jobbroker.auth.identity import Actor, require_role
from jobbroker.database import atomic
from jobbroker.errors import NotFoundError, ValidationError
from jobbroker.models.actor import ActorProfile, ActorRole
from jobbroker.models.trust import TrustChangeType
from jobbroker.schemas.actor import UpdateProfile
from jobbroker.services import trust

logger = logging.getLogger(__name__)


async def upsert_my_profile(db: AsyncSession, actor: Actor, data: UpdateProfile) -> ActorProfile:
    """Create the caller's profile on first use, then apply display fields."""
    async with atomic(db):
        profile = await trust.ensure_profile(db, actor.actor_id, actor.role)
        if profile.role != actor.role:
            raise ValidationError(
                f"Profile is registered as {profile.role.value}, session role is {actor.role.value}"
            )
        if data.display_name is not None:
            profile.display_name = data.display_name
        if data.region is not None:
            profile.region = data.region
    return profile


async def get_actor_profile(db: AsyncSession, actor_id: uuid.UUID) -> ActorProfile:
    profile = await trust.get_profile(db, actor_id)
    if profile is None:
        raise NotFoundError("Actor profile not found")
    return profile


async def set_suspension(
    db: AsyncSession, actor_id: uuid.UUID, operator: Actor, suspended: bool
) -> ActorProfile:
    """Operator suspends or reinstates an actor. Suspended providers cannot take jobs."""
    require_role(operator, ActorRole.OPERATOR)
    async with atomic(db):
        profile = await trust.get_profile(db, actor_id)
        if profile is None:
            raise NotFoundError("Actor profile not found")
        profile.is_suspended = suspended
        await db.flush()
        await trust.recalculate(
            db, actor_id, TrustChangeType.SYSTEM_RECALCULATION,
            "Suspended by operator" if suspended else "Reinstated by operator",
        )
    logger.info("Actor %s suspended=%s by %s", actor_id, suspended, operator.actor_id)
    return profile
