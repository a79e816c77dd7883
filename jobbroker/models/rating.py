"""Rating model."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, ForeignKey, Integer, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from jobbroker.database import Base
from jobbroker.models.types import UTCDateTime, utcnow


class Rating(Base):
    __tablename__ = "ratings"
    __table_args__ = (
        UniqueConstraint("job_id", "rater_id", name="uq_rating_job_rater"),
        CheckConstraint("score >= 1 AND score <= 5", name="ck_rating_score_range"),
    )

    rating_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("jobs.job_id", ondelete="RESTRICT"), nullable=False
    )
    rater_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    ratee_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
