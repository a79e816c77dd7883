"""Dispute model."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from jobbroker.database import Base
from jobbroker.models.actor import ActorRole
from jobbroker.models.types import JSONType, UTCDateTime, enum_column, utcnow


class DisputeType(enum.Enum):
    QUALITY = "quality"
    INCOMPLETE_WORK = "incomplete_work"
    PAYMENT = "payment"
    DAMAGE = "damage"
    OTHER = "other"


class DisputeSeverity(enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DisputeStatus(enum.Enum):
    OPEN = "open"
    UNDER_REVIEW = "under_review"
    RESOLVED = "resolved"


UNRESOLVED_DISPUTE_STATUSES = (DisputeStatus.OPEN, DisputeStatus.UNDER_REVIEW)


class DisputeOutcome(enum.Enum):
    PROVIDER_FAVOURED = "provider_favoured"
    CLIENT_FAVOURED = "client_favoured"
    SETTLED = "settled"


class Dispute(Base):
    __tablename__ = "disputes"

    dispute_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("jobs.job_id", ondelete="RESTRICT"), nullable=False, index=True
    )
    raised_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    raised_by_role: Mapped[ActorRole] = mapped_column(enum_column(ActorRole), nullable=False)
    dispute_type: Mapped[DisputeType] = mapped_column(enum_column(DisputeType), nullable=False)
    severity: Mapped[DisputeSeverity] = mapped_column(
        enum_column(DisputeSeverity), nullable=False, default=DisputeSeverity.MEDIUM
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    evidence: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    status: Mapped[DisputeStatus] = mapped_column(
        enum_column(DisputeStatus), nullable=False, default=DisputeStatus.OPEN
    )
    outcome: Mapped[DisputeOutcome | None] = mapped_column(
        enum_column(DisputeOutcome), nullable=True
    )
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    resolved_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
