# db/models/competition_round.py
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import Boolean, DateTime, Enum as SAEnum, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from competition_engine.db.models._base import Base
from competition_engine.db.enums import Level, LeaderboardVisibility, RoundStatus, TimingType
from competition_engine.db.column_types import LevelType, UniversalJSON
from competition_engine.utils.clock import utc_now

class CompetitionRound(Base):
    __tablename__ = "competition_round"
    __table_args__ = (
        Index("ix_competition_round_scope", "year", "level", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    level: Mapped[Level] = mapped_column(LevelType, nullable=False)
    region: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    council: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    status: Mapped[RoundStatus] = mapped_column(SAEnum(RoundStatus, name="round_status"), nullable=False, default=RoundStatus.PENDING)
    timing_type: Mapped[TimingType] = mapped_column(SAEnum(TimingType, name="round_timing_type"), nullable=False, default=TimingType.FIXED_TIME)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    start_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    # seconds
    countdown_duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    auto_advance: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    wait_for_all_judges: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reminder_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reminder_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    leaderboard_visibility: Mapped[LeaderboardVisibility] = mapped_column(
        SAEnum(LeaderboardVisibility, name="leaderboard_visibility"),
        nullable=False,
        default=LeaderboardVisibility.LIVE,
    )
    frozen_leaderboard_snapshot: Mapped[Optional[dict]] = mapped_column(UniversalJSON, nullable=True)
    pending_submissions_snapshot: Mapped[list] = mapped_column(UniversalJSON, nullable=False, default=list)
    snapshot_created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    closed_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utc_now, onupdate=utc_now)
