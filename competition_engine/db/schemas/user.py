# db/schemas/user.py
import uuid
from datetime import datetime
from typing import Optional
from pydantic import EmailStr, field_validator
from competition_engine.db.schemas._base import OrmModel, strip_or_none
from competition_engine.db.enums import Level, UserRole, UserStatus
from competition_engine.utils.sentinels import Missing

class UserBase(OrmModel):
    tg_id: Optional[int] = None
    name: str
    email: Optional[EmailStr] = None
    role: UserRole = UserRole.TEACHER
    status: UserStatus = UserStatus.PENDING
    assigned_level: Optional[Level] = None
    assigned_region: Optional[str] = None
    assigned_council: Optional[str] = None

    @field_validator("assigned_region", "assigned_council")
    @classmethod
    def _strip(cls, value: Optional[str]) -> Optional[str]:
        return strip_or_none(value)

class UserCreate(UserBase): ...

class UserUpdate(OrmModel):
    id: uuid.UUID
    tg_id: int | Missing | None = Missing()
    name: str | Missing = Missing()
    email: EmailStr | Missing | None = Missing()
    role: UserRole | Missing = Missing()
    status: UserStatus | Missing = Missing()
    assigned_level: Level | Missing | None = Missing()
    assigned_region: str | Missing | None = Missing()
    assigned_council: str | Missing | None = Missing()

class UserRead(UserBase):
    id: uuid.UUID
    created_at: datetime

    @property
    def is_active_judge(self) -> bool:
        return self.role == UserRole.JUDGE and self.status == UserStatus.ACTIVE
