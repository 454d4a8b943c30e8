# db/schemas/evaluation.py
import uuid
from datetime import datetime
from typing import Optional
from competition_engine.db.schemas._base import OrmModel

class EvaluationBase(OrmModel):
    submission_id: uuid.UUID
    judge_id: uuid.UUID
    scores: dict[str, float] = {}
    total_score: float = 0.0
    average_score: float = 0.0
    comments: Optional[str] = None

class EvaluationCreate(EvaluationBase): ...
class EvaluationRead(EvaluationBase):
    id: uuid.UUID
    created_at: datetime
    updated_at: datetime
