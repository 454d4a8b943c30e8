# db/models/submission_assignment.py
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from competition_engine.db.models._base import Base
from competition_engine.db.enums import Level
from competition_engine.db.column_types import LevelType
from competition_engine.utils.clock import utc_now

class SubmissionAssignment(Base):
    __tablename__ = "submission_assignment"
    __table_args__ = (
        Index("ix_submission_assignment_scope", "level", "region", "council", "judge_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # at most one judge per submission, enforced by the store
    submission_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("submission.id", ondelete="CASCADE"), nullable=False, unique=True)
    judge_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("user.id", ondelete="CASCADE"), nullable=False)
    level: Mapped[Level] = mapped_column(LevelType, nullable=False)
    region: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    council: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    judge_notified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utc_now)
