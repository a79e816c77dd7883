"""Trust score history. Every recomputation appends one row."""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from jobbroker.database import Base
from jobbroker.models.types import UTCDateTime, enum_column, utcnow


class TrustChangeType(enum.Enum):
    RATING_IMPACT = "rating_impact"
    DISPUTE_RESOLUTION = "dispute_resolution"
    REPOST_PENALTY = "repost_penalty"
    SYSTEM_RECALCULATION = "system_recalculation"


class TrustScoreEvent(Base):
    __tablename__ = "trust_score_events"

    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    actor_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    old_score: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    new_score: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    change_type: Mapped[TrustChangeType] = mapped_column(
        enum_column(TrustChangeType), nullable=False
    )
    reason: Mapped[str] = mapped_column(String(256), nullable=False)
    job_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
