# db/models/user.py
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import BigInteger, DateTime, Enum as SAEnum, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from competition_engine.db.models._base import Base
from competition_engine.db.enums import Level, UserRole, UserStatus
from competition_engine.db.column_types import LevelType
from competition_engine.utils.clock import utc_now

class User(Base):
    __tablename__ = "user"
    __table_args__ = (
        Index("ix_user_judge_scope", "role", "status", "assigned_level", "assigned_region", "assigned_council"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tg_id: Mapped[Optional[int]] = mapped_column(BigInteger, unique=True, nullable=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(254), nullable=True)
    role: Mapped[UserRole] = mapped_column(SAEnum(UserRole, name="user_role"), nullable=False, default=UserRole.TEACHER)
    status: Mapped[UserStatus] = mapped_column(SAEnum(UserStatus, name="user_status"), nullable=False, default=UserStatus.PENDING)
    assigned_level: Mapped[Optional[Level]] = mapped_column(LevelType, nullable=True)
    assigned_region: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    assigned_council: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utc_now)
