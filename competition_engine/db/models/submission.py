# db/models/submission.py
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from competition_engine.db.models._base import Base
from competition_engine.db.enums import Level, SubmissionStatus
from competition_engine.db.column_types import LevelType, SubmissionStatusType
from competition_engine.utils.clock import utc_now

class Submission(Base):
    __tablename__ = "submission"
    __table_args__ = (
        Index("ix_submission_board", "year", "level", "area_of_focus", "region", "council"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    teacher_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("user.id", ondelete="SET NULL"), nullable=True)
    teacher_name: Mapped[str] = mapped_column(String(256), nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    area_of_focus: Mapped[str] = mapped_column(String(128), nullable=False)
    level: Mapped[Level] = mapped_column(LevelType, nullable=False)
    region: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    council: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    round_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("competition_round.id", ondelete="SET NULL"), nullable=True)
    # the lower-tier entry this one was promoted from
    promoted_from_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("submission.id", ondelete="SET NULL"), nullable=True, unique=True)
    average_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    status: Mapped[SubmissionStatus] = mapped_column(SubmissionStatusType, nullable=False, default=SubmissionStatus.PENDING)
    disqualified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    disqualification_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    disqualified_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    disqualified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utc_now, onupdate=utc_now)
