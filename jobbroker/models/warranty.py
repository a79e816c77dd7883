"""Warranty hold model."""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Index, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from jobbroker.database import Base
from jobbroker.models.types import UTCDateTime, enum_column, utcnow


class HoldStatus(enum.Enum):
    LOCKED = "locked"
    FROZEN = "frozen"
    RELEASED = "released"
    FORFEITED = "forfeited"


HOLD_TRANSITIONS: dict[HoldStatus, frozenset[HoldStatus]] = {
    HoldStatus.LOCKED: frozenset({HoldStatus.FROZEN, HoldStatus.RELEASED, HoldStatus.FORFEITED}),
    HoldStatus.FROZEN: frozenset({HoldStatus.LOCKED, HoldStatus.RELEASED, HoldStatus.FORFEITED}),
    HoldStatus.RELEASED: frozenset(),
    HoldStatus.FORFEITED: frozenset(),
}


class WarrantyHold(Base):
    __tablename__ = "warranty_holds"
    __table_args__ = (
        Index("ix_warranty_holds_status_effective_end", "status", "effective_end_date"),
    )

    hold_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("jobs.job_id", ondelete="RESTRICT"), unique=True, nullable=False
    )
    payment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("payments.payment_id", ondelete="RESTRICT"), nullable=False
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    hold_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    hold_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    warranty_days: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    end_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    # end_date pushed out by every completed freeze
    effective_end_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    paused_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[HoldStatus] = mapped_column(
        enum_column(HoldStatus), nullable=False, default=HoldStatus.LOCKED
    )
    is_frozen: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    frozen_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    freeze_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    frozen_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    release_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    released_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    forfeited_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    forfeit_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    forfeited_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
