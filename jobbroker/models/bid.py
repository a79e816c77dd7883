"""Bid model. Counter-offers are Bid rows chained through previous_bid_id."""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Integer, Numeric, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from jobbroker.database import Base
from jobbroker.models.types import UTCDateTime, enum_column, utcnow


class BidStatus(enum.Enum):
    PENDING = "pending"
    COUNTERED = "countered"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


# Statuses that still take part in negotiation
OPEN_BID_STATUSES = (BidStatus.PENDING, BidStatus.COUNTERED)


class BidParty(enum.Enum):
    PROVIDER = "provider"
    CLIENT = "client"


class Bid(Base):
    __tablename__ = "bids"

    bid_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("jobs.job_id", ondelete="RESTRICT"), nullable=False, index=True
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    proposed_by: Mapped[BidParty] = mapped_column(enum_column(BidParty), nullable=False)
    offered_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[BidStatus] = mapped_column(
        enum_column(BidStatus), nullable=False, default=BidStatus.PENDING
    )
    is_counter_offer: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    previous_bid_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("bids.bid_id", ondelete="RESTRICT"), nullable=True
    )
    round_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow,
    )
