# db/schemas/notification.py
import uuid
from datetime import datetime
from competition_engine.db.schemas._base import OrmModel
from competition_engine.db.enums import NotificationType

class NotificationBase(OrmModel):
    user_id: uuid.UUID
    type: NotificationType
    title: str
    message: str
    payload: dict = {}

class NotificationCreate(NotificationBase): ...
class NotificationRead(NotificationBase):
    id: uuid.UUID
    read: bool = False
    created_at: datetime
