# db/models/quota.py
import uuid
from datetime import datetime
from sqlalchemy import DateTime, Integer, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from competition_engine.db.models._base import Base
from competition_engine.db.enums import Level
from competition_engine.db.column_types import LevelType
from competition_engine.utils.clock import utc_now

class Quota(Base):
    __tablename__ = "quota"
    __table_args__ = (
        UniqueConstraint("year", "level", name="uq_quota_year_level"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    level: Mapped[Level] = mapped_column(LevelType, nullable=False)
    quota: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utc_now, onupdate=utc_now)
