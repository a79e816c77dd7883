"""Pydantic v2 schemas for actor profiles, trust and ratings."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UpdateProfile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    display_name: str | None = Field(None, min_length=1, max_length=128)
    region: str | None = Field(None, max_length=64)


class ProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    actor_id: uuid.UUID
    role: str
    display_name: str | None
    region: str | None
    trust_score: Decimal
    trust_status: str
    rejected_jobs_count: int
    is_suspended: bool
    created_at: datetime

    @field_validator("role", "trust_status", mode="before")
    @classmethod
    def serialize_enum(cls, v: object) -> object:
        return v.value if hasattr(v, "value") else v


class AutoRulesResponse(BaseModel):
    hold_percentage: Decimal
    auto_freeze: bool
    auto_reject_bids: bool


class TrustProfileResponse(BaseModel):
    actor_id: uuid.UUID
    role: str
    trust_score: Decimal
    trust_status: str
    risk_score: Decimal
    risk_level: str
    auto_rules: AutoRulesResponse
    last_trust_update: datetime | None


class SubmitRating(BaseModel):
    model_config = ConfigDict(extra="forbid")

    score: int = Field(..., ge=1, le=5)
    comment: str | None = Field(None, max_length=2048)


class RatingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rating_id: uuid.UUID
    job_id: uuid.UUID
    rater_id: uuid.UUID
    ratee_id: uuid.UUID
    score: int
    comment: str | None
    created_at: datetime
