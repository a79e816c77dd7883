"""Job SQLAlchemy model: the entity driven by the lifecycle state machine."""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from jobbroker.database import Base
from jobbroker.models.types import JSONType, UTCDateTime, enum_column, utcnow


class JobStatus(enum.Enum):
    PENDING = "pending"
    SOFT_LOCKED = "soft_locked"
    NEGOTIATION_PENDING = "negotiation_pending"
    WAITING_FOR_PAYMENT = "waiting_for_payment"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETION_PENDING_APPROVAL = "completion_pending_approval"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.CANCELLED})

# Valid state transitions
VALID_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({
        JobStatus.SOFT_LOCKED,
        JobStatus.NEGOTIATION_PENDING,
        JobStatus.WAITING_FOR_PAYMENT,
        JobStatus.CANCELLED,
    }),
    JobStatus.SOFT_LOCKED: frozenset({
        JobStatus.WAITING_FOR_PAYMENT, JobStatus.PENDING, JobStatus.CANCELLED,
    }),
    JobStatus.NEGOTIATION_PENDING: frozenset({
        JobStatus.WAITING_FOR_PAYMENT, JobStatus.PENDING, JobStatus.CANCELLED,
    }),
    JobStatus.WAITING_FOR_PAYMENT: frozenset({
        JobStatus.ASSIGNED, JobStatus.PENDING, JobStatus.CANCELLED,
    }),
    JobStatus.ASSIGNED: frozenset({JobStatus.IN_PROGRESS, JobStatus.CANCELLED}),
    JobStatus.IN_PROGRESS: frozenset({
        JobStatus.COMPLETION_PENDING_APPROVAL, JobStatus.CANCELLED,
    }),
    JobStatus.COMPLETION_PENDING_APPROVAL: frozenset({
        JobStatus.COMPLETED, JobStatus.IN_PROGRESS, JobStatus.CANCELLED,
    }),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


class TimeoutReason(enum.Enum):
    SOFT_LOCK = "soft_lock_timeout"
    NEGOTIATION = "negotiation_timeout"
    PAYMENT = "payment_deadline_timeout"
    MANUAL_REPOST = "manual_repost"


class Job(Base):
    __tablename__ = "jobs"

    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    region: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[JobStatus] = mapped_column(
        enum_column(JobStatus), nullable=False, default=JobStatus.PENDING, index=True
    )
    client_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    assigned_provider_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, nullable=True, index=True
    )

    estimated_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    final_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    price_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    negotiation_rounds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_negotiation_rounds: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    repost_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_reposts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    recirculation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rejection_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_rejected_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Soft lock
    locked_by_provider_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    lock_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    negotiation_deadline: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    payment_deadline: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    warranty_days: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    timeout_reasons: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    rejection_reason: Mapped[str | None] = mapped_column(String(256), nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Bumped on every UPDATE; a stale writer gets StaleDataError
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow,
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def payable_amount(self) -> Decimal:
        """Final price, falling back to the posted estimate."""
        return self.final_price if self.final_price is not None else self.estimated_cost
