# db/models/tie_break.py
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import DateTime, Enum as SAEnum, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from competition_engine.db.models._base import Base
from competition_engine.db.enums import Level, TieBreakStatus
from competition_engine.db.column_types import LevelType, UniversalJSON
from competition_engine.utils.clock import utc_now

class TieBreak(Base):
    __tablename__ = "tie_break"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    area_of_focus: Mapped[str] = mapped_column(String(128), nullable=False)
    level: Mapped[Level] = mapped_column(LevelType, nullable=False)
    location_key: Mapped[str] = mapped_column(String(300), nullable=False)
    # ordered list of tied submission ids (as strings)
    submission_ids: Mapped[list] = mapped_column(UniversalJSON, nullable=False, default=list)
    quota: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[TieBreakStatus] = mapped_column(SAEnum(TieBreakStatus, name="tie_break_status"), nullable=False, default=TieBreakStatus.OPEN)
    winners: Mapped[list] = mapped_column(UniversalJSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utc_now)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    votes = relationship(
        "TieBreakVote",
        order_by="TieBreakVote.voted_at",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class TieBreakVote(Base):
    __tablename__ = "tie_break_vote"
    __table_args__ = (
        UniqueConstraint("tie_break_id", "judge_id", name="uq_tie_break_vote_judge"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tie_break_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("tie_break.id", ondelete="CASCADE"), nullable=False, index=True)
    judge_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("user.id", ondelete="CASCADE"), nullable=False)
    submission_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    voted_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utc_now)
