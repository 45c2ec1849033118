from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError
from app.db.session import get_db
from app.models.user import User
from app.schemas.notifications import MarkAllReadOut, MarkReadOut, NotificationListOut, NotificationOut
from app.services.notifications.service import NotificationService
from app.services.users.service import current_user


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationListOut)
def list_notifications(
    limit: int | None = Query(None),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
) -> NotificationListOut:
    notifications, unread_count = NotificationService(db).list_for_user(user.id, limit)
    return NotificationListOut(
        notifications=[
            NotificationOut(
                id=n.id,
                message=n.message,
                category=n.category,
                read=n.is_read,
                created_at=n.created_at,
            )
            for n in notifications
        ],
        unread_count=unread_count,
        total=len(notifications),
    )


@router.put("/read-all", response_model=MarkAllReadOut)
def mark_all_read(
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
) -> MarkAllReadOut:
    return MarkAllReadOut(updated_count=NotificationService(db).mark_all_read(user.id))


@router.put("/{notification_id}/read", response_model=MarkReadOut)
def mark_read(
    notification_id: str,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
) -> MarkReadOut:
    # Someone else's notification is indistinguishable from a missing one
    if not NotificationService(db).mark_read(notification_id, user.id):
        raise NotFoundError("Notification not found")
    return MarkReadOut(notification_id=int(notification_id))
