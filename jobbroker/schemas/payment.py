"""Pydantic v2 schemas for payment splitting and warranty holds."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from jobbroker.models.payment import PaymentMethod


def _enum_value(v: object) -> object:
    return v.value if hasattr(v, "value") else v


class CreatePaymentSplit(BaseModel):
    """Payment cleared for a job awaiting payment.

    hold_percentage and warranty_days override the provider's risk-derived
    hold and the job's warranty window when given.
    """
    model_config = ConfigDict(extra="forbid")

    payment_method: PaymentMethod = PaymentMethod.ONLINE
    hold_percentage: Decimal | None = Field(None, ge=0, le=100, max_digits=5, decimal_places=2)
    warranty_days: int | None = Field(None, ge=0, le=365)
    external_reference: str | None = Field(None, max_length=128)


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    payment_id: uuid.UUID
    job_id: uuid.UUID
    client_id: uuid.UUID
    provider_id: uuid.UUID
    total_amount: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    net_amount: Decimal
    hold_percentage: Decimal
    immediate_amount: Decimal
    warranty_hold_amount: Decimal
    status: str
    payment_method: str
    requires_approval: bool
    external_reference: str | None
    created_at: datetime
    released_at: datetime | None

    @field_validator("status", "payment_method", mode="before")
    @classmethod
    def serialize_enum(cls, v: object) -> object:
        return _enum_value(v)


class WarrantyHoldResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    hold_id: uuid.UUID
    job_id: uuid.UUID
    payment_id: uuid.UUID
    provider_id: uuid.UUID
    hold_amount: Decimal
    hold_percentage: Decimal
    warranty_days: int
    start_date: datetime
    end_date: datetime
    effective_end_date: datetime
    paused_seconds: int
    status: str
    is_frozen: bool
    frozen_at: datetime | None
    freeze_reason: str | None
    released_at: datetime | None
    release_reason: str | None
    forfeited_at: datetime | None
    forfeit_reason: str | None

    @field_validator("status", mode="before")
    @classmethod
    def serialize_status(cls, v: object) -> object:
        return _enum_value(v)


class LedgerEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entry_id: uuid.UUID
    account_type: str
    entry_type: str
    amount: Decimal
    category: str
    description: str
    created_at: datetime

    @field_validator("account_type", "entry_type", "category", mode="before")
    @classmethod
    def serialize_enum(cls, v: object) -> object:
        return _enum_value(v)


class PaymentDetailsResponse(BaseModel):
    payment: PaymentResponse
    warranty_hold: WarrantyHoldResponse | None
    ledger_entries: list[LedgerEntryResponse]
    balances: dict[str, Decimal]


class FreezeHold(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: str = Field(..., min_length=1, max_length=512)


class ReleaseHold(BaseModel):
    model_config = ConfigDict(extra="forbid")

    override: bool = False
    reason: str | None = Field(None, max_length=512)


class ForfeitHold(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: str | None = Field(None, max_length=512)
