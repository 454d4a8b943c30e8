# db/schemas/tie_break.py
import uuid
from datetime import datetime
from typing import Optional
from competition_engine.db.schemas._base import OrmModel
from competition_engine.db.enums import Level, TieBreakStatus

class TieBreakVoteRead(OrmModel):
    id: uuid.UUID
    tie_break_id: uuid.UUID
    judge_id: uuid.UUID
    submission_id: uuid.UUID
    voted_at: datetime

class TieBreakCreate(OrmModel):
    year: int
    area_of_focus: str
    level: Level
    location_key: str
    submission_ids: list[uuid.UUID]
    quota: int = 1

class TieBreakRead(TieBreakCreate):
    id: uuid.UUID
    status: TieBreakStatus = TieBreakStatus.OPEN
    winners: list[uuid.UUID] = []
    votes: list[TieBreakVoteRead] = []
    created_at: datetime
    resolved_at: Optional[datetime] = None
