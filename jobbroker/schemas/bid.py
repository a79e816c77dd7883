"""Pydantic v2 schemas for bidding and negotiation."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from jobbroker.schemas.job import MAX_PRICE


class PlaceBid(BaseModel):
    model_config = ConfigDict(extra="forbid")

    offered_price: Decimal = Field(..., gt=0, le=MAX_PRICE, max_digits=12, decimal_places=2)
    message: str | None = Field(None, max_length=2048)


class CounterOffer(BaseModel):
    """Answer the current offer on a chain with a new price."""
    model_config = ConfigDict(extra="forbid")

    offered_price: Decimal = Field(..., gt=0, le=MAX_PRICE, max_digits=12, decimal_places=2)
    message: str | None = Field(None, max_length=2048)


class BidResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    bid_id: uuid.UUID
    job_id: uuid.UUID
    provider_id: uuid.UUID
    proposed_by: str
    offered_price: Decimal
    message: str | None
    status: str
    is_counter_offer: bool
    previous_bid_id: uuid.UUID | None
    round_number: int
    created_at: datetime

    @field_validator("status", "proposed_by", mode="before")
    @classmethod
    def serialize_enum(cls, v: object) -> object:
        return v.value if hasattr(v, "value") else v
