# db/schemas/leaderboard.py
import uuid
from datetime import datetime
from typing import Literal, Optional
from competition_engine.db.schemas._base import OrmModel
from competition_engine.db.enums import Level, LeaderboardVisibility, SubmissionStatus

class LeaderboardEntryRead(OrmModel):
    submission_id: uuid.UUID
    teacher_name: Optional[str] = None
    position: int
    rank: int
    average_score: float
    status: SubmissionStatus

class LeaderboardRead(OrmModel):
    id: uuid.UUID
    year: int
    area_of_focus: str
    level: Level
    location_key: str
    quota: int = 0
    total_submissions: int = 0
    is_finalized: bool = False
    last_updated: datetime
    entries: list[LeaderboardEntryRead] = []

class LeaderboardSnapshot(OrmModel):
    """Point-in-time rankings captured when a round's leaderboard is frozen."""
    kind: Literal["leaderboard_snapshot"] = "leaderboard_snapshot"
    captured_at: datetime
    year: int
    level: Level
    # area_of_focus -> location_key -> ordered entries
    areas: dict[str, dict[str, list[LeaderboardEntryRead]]] = {}

    def entries_for(self, area_of_focus: str, location_key: str) -> list[LeaderboardEntryRead]:
        return list(self.areas.get(area_of_focus, {}).get(location_key, []))

class LeaderboardView(OrmModel):
    year: int
    level: Level
    area_of_focus: str
    location_key: str
    visibility: LeaderboardVisibility
    entries: list[LeaderboardEntryRead] = []
    captured_at: Optional[datetime] = None
    round_id: Optional[uuid.UUID] = None
