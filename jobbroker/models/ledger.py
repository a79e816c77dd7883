"""Per-job ledger entries."""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, ForeignKey, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from jobbroker.database import Base
from jobbroker.models.types import UTCDateTime, enum_column, utcnow


class AccountType(enum.Enum):
    PLATFORM_COMMISSION = "platform_commission"
    PROVIDER_PAYABLE = "provider_payable"
    WARRANTY_HOLD = "warranty_hold"
    CLIENT_RECEIVABLE = "client_receivable"


class EntryType(enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class EntryCategory(enum.Enum):
    COMMISSION = "commission"
    JOB_PAYMENT = "job_payment"
    WARRANTY_HOLD = "warranty_hold"
    WARRANTY_RELEASE = "warranty_release"
    WARRANTY_FORFEIT = "warranty_forfeit"


class LedgerEntry(Base):
    """Append-only. Never update or delete rows."""
    __tablename__ = "ledger_entries"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_ledger_amount_positive"),)

    entry_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("jobs.job_id", ondelete="RESTRICT"), nullable=False, index=True
    )
    account_type: Mapped[AccountType] = mapped_column(enum_column(AccountType), nullable=False)
    entry_type: Mapped[EntryType] = mapped_column(enum_column(EntryType), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    category: Mapped[EntryCategory] = mapped_column(enum_column(EntryCategory), nullable=False)
    description: Mapped[str] = mapped_column(String(256), nullable=False)
    payment_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("payments.payment_id", ondelete="RESTRICT"), nullable=True
    )
    hold_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("warranty_holds.hold_id", ondelete="RESTRICT"), nullable=True
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
