"""Pydantic v2 schemas for disputes."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from jobbroker.models.dispute import DisputeOutcome, DisputeSeverity, DisputeType


class RaiseDispute(BaseModel):
    model_config = ConfigDict(extra="forbid")

    job_id: uuid.UUID
    dispute_type: DisputeType
    severity: DisputeSeverity = DisputeSeverity.MEDIUM
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=4096)
    # References to evidence held by the document store
    evidence: list[str] = Field(default_factory=list, max_length=20)


class ResolveDispute(BaseModel):
    model_config = ConfigDict(extra="forbid")

    outcome: DisputeOutcome
    resolution_notes: str = Field(..., min_length=1, max_length=4096)


class DisputeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    dispute_id: uuid.UUID
    job_id: uuid.UUID
    raised_by: uuid.UUID
    raised_by_role: str
    dispute_type: str
    severity: str
    title: str
    description: str
    evidence: list[str]
    status: str
    outcome: str | None
    resolution_notes: str | None
    resolved_by: uuid.UUID | None
    resolved_at: datetime | None
    created_at: datetime

    @field_validator(
        "raised_by_role", "dispute_type", "severity", "status", "outcome", mode="before"
    )
    @classmethod
    def serialize_enum(cls, v: object) -> object:
        return v.value if hasattr(v, "value") else v
