from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String

from app.db.base import Base


class NotificationCategory(str, Enum):
    PURCHASE = "purchase"
    SALE = "sale"
    RATING = "rating"
    COMMENT = "comment"
    SYSTEM = "system"


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_created", "user_id", "created_at"),
        Index("ix_notifications_user_read", "user_id", "is_read"),
    )

    # Autoincrement id doubles as the creation-order tiebreaker
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    message = Column(String(500), nullable=False)
    category = Column(String, nullable=False, default=NotificationCategory.SYSTEM.value)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
