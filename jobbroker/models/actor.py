"""Actor profile: role plus the embedded, derived trust score."""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from jobbroker.database import Base
from jobbroker.models.types import UTCDateTime, enum_column, utcnow


class ActorRole(enum.Enum):
    CLIENT = "client"
    PROVIDER = "provider"
    OPERATOR = "operator"


class TrustStatus(enum.Enum):
    GOOD = "good"
    NORMAL = "normal"
    RISK = "risk"
    CRITICAL = "critical"


class ActorProfile(Base):
    __tablename__ = "actor_profiles"

    actor_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    role: Mapped[ActorRole] = mapped_column(enum_column(ActorRole), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    region: Mapped[str | None] = mapped_column(String(64), nullable=True)
    # Written only by services.trust
    trust_score: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal("50.00")
    )
    trust_status: Mapped[TrustStatus] = mapped_column(
        enum_column(TrustStatus), nullable=False, default=TrustStatus.RISK
    )
    penalty_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rejected_jobs_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_suspended: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_trust_update: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
