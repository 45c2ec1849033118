from datetime import datetime

from pydantic import Field

from app.schemas.base import CamelModel


class NotificationOut(CamelModel):
    id: int
    message: str
    category: str = Field(..., serialization_alias="type")
    read: bool
    created_at: datetime


class NotificationListOut(CamelModel):
    notifications: list[NotificationOut]
    unread_count: int
    total: int


class MarkReadOut(CamelModel):
    notification_id: int
    read: bool = True


class MarkAllReadOut(CamelModel):
    updated_count: int
