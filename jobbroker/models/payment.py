"""Payment model: one row per job, written once by the split engine."""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from jobbroker.database import Base
from jobbroker.models.types import UTCDateTime, enum_column, utcnow


class PaymentStatus(enum.Enum):
    ESCROW_HOLD = "escrow_hold"
    RELEASED = "released"
    HOLD_FORFEITED = "hold_forfeited"


class PaymentMethod(enum.Enum):
    ONLINE = "online"
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    OTHER = "other"


class Payment(Base):
    __tablename__ = "payments"

    payment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("jobs.job_id", ondelete="RESTRICT"), unique=True, nullable=False
    )
    client_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    provider_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    commission_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    hold_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    immediate_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    warranty_hold_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        enum_column(PaymentStatus), nullable=False, default=PaymentStatus.ESCROW_HOLD
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        enum_column(PaymentMethod), nullable=False, default=PaymentMethod.ONLINE
    )
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    external_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    released_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
