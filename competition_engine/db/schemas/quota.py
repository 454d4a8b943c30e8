# db/schemas/quota.py
import uuid
from datetime import datetime
from competition_engine.db.schemas._base import OrmModel
from competition_engine.db.enums import Level

class QuotaRead(OrmModel):
    id: uuid.UUID
    year: int
    level: Level
    quota: int
    updated_at: datetime
