from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from smartmess.api.dependencies import get_current_user, require_owner
from smartmess.api.responses import envelope
from smartmess.database import get_db
from smartmess.models import User
from smartmess.schemas.billing import NotificationCreate
from smartmess.services import notification_service

router = APIRouter()


@router.get("")
async def list_notifications(
    type: Optional[str] = None,
    status: Optional[str] = None,
    is_read: Optional[bool] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rows, total = notification_service.list_notifications(
        db, user.id, type=type, status=status, is_read=is_read, limit=limit, offset=offset
    )
    return envelope(
        "Notifications",
        {
            "notifications": [notification_service.serialize_notification(row) for row in rows],
            "total": total,
            "limit": limit,
            "offset": offset,
        },
    )


@router.get("/unread-count")
async def unread_count(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return envelope("Unread count", {"count": notification_service.unread_count(db, user.id)})


@router.put("/read-all")
async def mark_all_read(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    updated = notification_service.mark_all_read(db, user)
    return envelope("All notifications marked as read", {"updated": updated})


@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_notification(
    payload: NotificationCreate,
    user: User = Depends(require_owner),
    db: Session = Depends(get_db),
):
    notification = notification_service.send_direct_notification(
        db,
        user,
        user_id=payload.user_id,
        type=payload.type,
        title=payload.title,
        message=payload.message,
        mess_id=payload.mess_id,
        data=payload.data,
    )
    await notification_service.push_notifications([notification])
    return envelope("Notification sent", notification_service.serialize_notification(notification))


@router.put("/{notification_id}/read")
async def mark_read(notification_id: UUID, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    notification = notification_service.mark_read(db, user, notification_id)
    return envelope("Notification marked as read", notification_service.serialize_notification(notification))


@router.get("/{notification_id}")
async def get_notification(
    notification_id: UUID,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    notification = notification_service.get_own_notification(db, user, notification_id)
    return envelope("Notification", notification_service.serialize_notification(notification))


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: UUID,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    notification_service.delete_notification(db, user, notification_id)
    return envelope("Notification deleted")
