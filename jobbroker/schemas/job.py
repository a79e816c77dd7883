"""Pydantic v2 schemas for job lifecycle endpoints.

Commands forbid unknown fields: a misspelled field is a 422, not a silently
ignored input.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_PRICE = Decimal("10000000")


class PostJob(BaseModel):
    """Client posts a job to the open pool."""
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(None, max_length=4096)
    category_id: str | None = Field(None, max_length=64)
    region: str | None = Field(None, max_length=64)
    estimated_cost: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    warranty_days: int | None = Field(None, ge=0, le=365)
    max_reposts: int | None = Field(None, ge=0, le=10)

    @field_validator("estimated_cost")
    @classmethod
    def validate_cost(cls, v: Decimal) -> Decimal:
        if v > MAX_PRICE:
            raise ValueError("Maximum estimated cost is 10,000,000")
        return v


class CancelJob(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: str | None = Field(None, max_length=256)


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    job_id: uuid.UUID
    title: str
    description: str | None
    category_id: str | None
    region: str | None
    status: str
    client_id: uuid.UUID
    assigned_provider_id: uuid.UUID | None
    estimated_cost: Decimal
    final_price: Decimal | None
    price_locked: bool
    negotiation_rounds: int
    max_negotiation_rounds: int
    repost_count: int
    max_reposts: int
    recirculation_count: int
    rejection_count: int
    last_rejected_at: datetime | None
    locked_by_provider_id: uuid.UUID | None
    lock_expires_at: datetime | None
    negotiation_deadline: datetime | None
    payment_deadline: datetime | None
    warranty_days: int
    timeout_reasons: list[str]
    rejection_reason: str | None
    cancelled_at: datetime | None
    started_at: datetime | None
    completed_at: datetime | None
    approved_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @field_validator("status", mode="before")
    @classmethod
    def serialize_status(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)
