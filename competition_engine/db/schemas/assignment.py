# db/schemas/assignment.py
import uuid
from datetime import datetime
from typing import Optional
from competition_engine.db.schemas._base import OrmModel
from competition_engine.db.enums import Level

class SubmissionAssignmentBase(OrmModel):
    submission_id: uuid.UUID
    judge_id: uuid.UUID
    level: Level
    region: Optional[str] = None
    council: Optional[str] = None

class SubmissionAssignmentCreate(SubmissionAssignmentBase): ...
class SubmissionAssignmentRead(SubmissionAssignmentBase):
    id: uuid.UUID
    judge_notified: bool = False
    assigned_at: datetime
