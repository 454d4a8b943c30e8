# db/schemas/competition_round.py
import uuid
from datetime import datetime
from typing import Optional
from pydantic import field_validator
from competition_engine.db.schemas._base import OrmModel, strip_or_none
from competition_engine.db.schemas.leaderboard import LeaderboardSnapshot
from competition_engine.db.enums import Level, LeaderboardVisibility, RoundStatus, TimingType
from competition_engine.utils.sentinels import Missing
from competition_engine.utils.clock import as_naive_utc

class CompetitionRoundBase(OrmModel):
    year: int
    level: Level
    region: Optional[str] = None
    council: Optional[str] = None
    timing_type: TimingType = TimingType.FIXED_TIME
    end_time: Optional[datetime] = None
    start_time: Optional[datetime] = None
    countdown_duration: Optional[int] = None
    auto_advance: bool = False
    wait_for_all_judges: bool = True
    reminder_enabled: bool = True

    @field_validator("region", "council")
    @classmethod
    def _strip(cls, value: Optional[str]) -> Optional[str]:
        return strip_or_none(value)

    @field_validator("end_time", "start_time")
    @classmethod
    def _naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_naive_utc(value)

class CompetitionRoundCreate(CompetitionRoundBase): ...

class CompetitionRoundUpdate(OrmModel):
    id: uuid.UUID
    timing_type: TimingType | Missing = Missing()
    end_time: datetime | Missing | None = Missing()
    start_time: datetime | Missing | None = Missing()
    countdown_duration: int | Missing | None = Missing()
    auto_advance: bool | Missing = Missing()
    wait_for_all_judges: bool | Missing = Missing()
    reminder_enabled: bool | Missing = Missing()

    @field_validator("end_time", "start_time")
    @classmethod
    def _naive_utc(cls, value):
        if isinstance(value, datetime):
            return as_naive_utc(value)
        return value

class CompetitionRoundRead(CompetitionRoundBase):
    id: uuid.UUID
    status: RoundStatus = RoundStatus.PENDING
    leaderboard_visibility: LeaderboardVisibility = LeaderboardVisibility.LIVE
    frozen_leaderboard_snapshot: Optional[LeaderboardSnapshot] = None
    pending_submissions_snapshot: list[uuid.UUID] = []
    snapshot_created_at: Optional[datetime] = None
    reminder_sent_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    closed_by: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: datetime
