from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from eduhub.db import get_db
from eduhub.exceptions import NotFoundError
from eduhub.models import User, Notification
from eduhub.deps import get_current_active_user
from eduhub.schemas import NotificationListResponse, NotificationResponse
from uuid import UUID

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationListResponse)
def get_notifications(
    skip: int = 0,
    limit: int = 50,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Notifications for the current user, newest first, with the unread count"""
    notifications = db.query(Notification).filter(
        Notification.user_id == current_user.id
    ).order_by(Notification.created_at.desc()).offset(skip).limit(limit).all()
    unread_count = db.query(Notification).filter(
        Notification.user_id == current_user.id,
        Notification.read == False  # noqa: E712
    ).count()
    return NotificationListResponse(
        notifications=[NotificationResponse.model_validate(n) for n in notifications],
        unread_count=unread_count,
    )


@router.put("/{notification_id}/read")
def mark_notification_read(
    notification_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Mark a notification as read"""
    notif = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == current_user.id
    ).first()

    if not notif:
        raise NotFoundError("Notification", str(notification_id))

    notif.read = True
    db.commit()
    return {"success": True}


@router.put("/read-all")
def mark_all_read(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Mark all notifications as read"""
    updated = db.query(Notification).filter(
        Notification.user_id == current_user.id,
        Notification.read == False  # noqa: E712
    ).update({"read": True}, synchronize_session=False)
    db.commit()
    return {"success": True, "updated": updated}


@router.delete("/clear-all")
def clear_all(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Delete every notification belonging to the current user"""
    deleted = db.query(Notification).filter(
        Notification.user_id == current_user.id
    ).delete(synchronize_session=False)
    db.commit()
    return {"success": True, "deleted": deleted}
