"""
NotificationService — создание уведомлений и состояние прочтения.

Ответственности:
- notify(): запись уведомления + retention (не больше N на пользователя)
- mark_read / mark_all_read только для собственных уведомлений
- обработчики доменных событий: покупка, оценка, комментарий
"""
import logging

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import ValidationError
from app.models.notification import Notification, NotificationCategory
from app.models.user import User
from app.utils.metrics import notifications_created_total, notifications_pruned_total

logger = logging.getLogger(__name__)

# Signed 64-bit column: larger ids cannot exist and would overflow the driver
MAX_NOTIFICATION_ID = 2**63 - 1


class NotificationService:
    def __init__(self, db: Session, retention_cap: int | None = None):
        self.db = db
        self.retention_cap = retention_cap if retention_cap is not None else settings.notification_retention_cap

    # ------------------------------------------------------------------
    # Creation & retention
    # ------------------------------------------------------------------

    def notify(self, user_id: str, message: str, category: NotificationCategory) -> Notification | None:
        """Create a notification. Failures are logged, never raised to the caller's flow."""
        notification = Notification(
            user_id=user_id,
            message=message[:500],
            category=NotificationCategory(category).value,
        )
        try:
            self.db.add(notification)
            self.db.commit()
            self.db.refresh(notification)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                "notification_create_failed",
                extra={"user_id": user_id, "category": notification.category, "error": str(e)},
            )
            return None

        notifications_created_total.labels(category=notification.category).inc()
        logger.info(
            "notification_created",
            extra={"user_id": user_id, "notification_id": notification.id, "category": notification.category},
        )
        self.enforce_retention(user_id)
        return notification

    def enforce_retention(self, user_id: str) -> int:
        """Delete the oldest notifications beyond the cap. Best-effort housekeeping."""
        try:
            total = self.db.query(func.count(Notification.id)).filter(Notification.user_id == user_id).scalar() or 0
            excess = total - self.retention_cap
            if excess <= 0:
                return 0
            oldest_ids = [
                row[0]
                for row in (
                    self.db.query(Notification.id)
                    .filter(Notification.user_id == user_id)
                    .order_by(Notification.created_at.asc(), Notification.id.asc())
                    .limit(excess)
                    .all()
                )
            ]
            deleted = (
                self.db.query(Notification)
                .filter(Notification.id.in_(oldest_ids))
                .delete(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("notification_retention_skipped", extra={"user_id": user_id, "error": str(e)})
            return 0
        notifications_pruned_total.inc(deleted)
        logger.info("notification_retention_applied", extra={"user_id": user_id, "deleted": deleted})
        return deleted

    # ------------------------------------------------------------------
    # Read state
    # ------------------------------------------------------------------

    def mark_read(self, notification_id: int | str, user_id: str) -> bool:
        """True if the notification exists and belongs to user_id."""
        try:
            notification_id = int(notification_id)
        except (TypeError, ValueError):
            return False
        if not 1 <= notification_id <= MAX_NOTIFICATION_ID:
            return False
        result = self.db.execute(
            update(Notification)
            .where(Notification.id == notification_id, Notification.user_id == user_id)
            .values(is_read=True)
        )
        self.db.commit()
        return result.rowcount > 0

    def mark_all_read(self, user_id: str) -> int:
        result = self.db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True)
        )
        self.db.commit()
        return result.rowcount

    def unread_count(self, user_id: str) -> int:
        return (
            self.db.query(func.count(Notification.id))
            .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
            .scalar()
            or 0
        )

    def list_for_user(self, user_id: str, limit: int | None = None) -> tuple[list[Notification], int]:
        """Newest first, plus the unread count."""
        if limit is None:
            limit = settings.notification_list_max
        elif not 1 <= limit <= settings.notification_list_max:
            raise ValidationError(
                f"limit must be between 1 and {settings.notification_list_max}",
                field="limit",
            )
        notifications = (
            self.db.query(Notification)
            .filter(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
            .all()
        )
        return notifications, self.unread_count(user_id)

    # ------------------------------------------------------------------
    # Domain events
    # ------------------------------------------------------------------

    def handle_purchase_event(self, buyer: User, seller_id: str, product_name: str) -> None:
        self.notify(buyer.id, f"You purchased {product_name}", NotificationCategory.PURCHASE)
        self.notify(
            seller_id,
            f"Woohh! You made a sale @{buyer.display_name} bought {product_name}",
            NotificationCategory.SALE,
        )

    def handle_rating_event(self, rater: User, creator_id: str, product_name: str, rating: int) -> None:
        if rater.id == creator_id:
            return
        stars = "⭐" * rating
        plural = "s" if rating > 1 else ""
        self.notify(
            creator_id,
            f'{stars} @{rater.display_name} rated your product "{product_name}" {rating} star{plural}!',
            NotificationCategory.RATING,
        )

    def handle_comment_event(self, commenter: User, creator_id: str, product_name: str) -> None:
        if commenter.id == creator_id:
            return
        self.notify(
            creator_id,
            f'💬 @{commenter.display_name} commented on your product "{product_name}"',
            NotificationCategory.COMMENT,
        )
