# db/models/leaderboard.py
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from competition_engine.db.models._base import Base
from competition_engine.db.enums import Level, SubmissionStatus
from competition_engine.db.column_types import LevelType, SubmissionStatusType
from competition_engine.utils.clock import utc_now

class Leaderboard(Base):
    __tablename__ = "leaderboard"
    __table_args__ = (
        UniqueConstraint("year", "area_of_focus", "level", "location_key", name="uq_leaderboard_location"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    area_of_focus: Mapped[str] = mapped_column(String(128), nullable=False)
    level: Mapped[Level] = mapped_column(LevelType, nullable=False)
    location_key: Mapped[str] = mapped_column(String(300), nullable=False)
    quota: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_submissions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_finalized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utc_now)

    entries = relationship(
        "LeaderboardEntry",
        order_by="LeaderboardEntry.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class LeaderboardEntry(Base):
    __tablename__ = "leaderboard_entry"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    leaderboard_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("leaderboard.id", ondelete="CASCADE"), nullable=False, index=True)
    submission_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    teacher_name: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    average_score: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[SubmissionStatus] = mapped_column(SubmissionStatusType, nullable=False)
