# db/schemas/submission.py
import uuid
from datetime import datetime
from typing import Optional
from pydantic import field_validator
from competition_engine.db.schemas._base import OrmModel, strip_or_none
from competition_engine.db.enums import Level, SubmissionStatus
from competition_engine.utils.sentinels import Missing

class SubmissionBase(OrmModel):
    teacher_id: Optional[uuid.UUID] = None
    teacher_name: str
    title: str = ""
    year: int
    area_of_focus: str
    level: Level
    region: Optional[str] = None
    council: Optional[str] = None
    round_id: Optional[uuid.UUID] = None

    @field_validator("region", "council")
    @classmethod
    def _strip(cls, value: Optional[str]) -> Optional[str]:
        return strip_or_none(value)

    @field_validator("area_of_focus")
    @classmethod
    def _strip_area(cls, value: str) -> str:
        return value.strip()

class SubmissionCreate(SubmissionBase): ...

class SubmissionRead(SubmissionBase):
    id: uuid.UUID
    promoted_from_id: Optional[uuid.UUID] = None
    average_score: float = 0.0
    status: SubmissionStatus = SubmissionStatus.PENDING
    disqualified: bool = False
    disqualification_reason: Optional[str] = None
    disqualified_by: Optional[uuid.UUID] = None
    disqualified_at: Optional[datetime] = None
    created_at: datetime

class SubmissionUpdate(OrmModel):
    id: uuid.UUID
    title: str | Missing = Missing()
    round_id: uuid.UUID | Missing | None = Missing()
    disqualified: bool | Missing = Missing()
    disqualification_reason: str | Missing | None = Missing()
    disqualified_by: uuid.UUID | Missing | None = Missing()
    disqualified_at: datetime | Missing | None = Missing()
