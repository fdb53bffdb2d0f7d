from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable

from sqlalchemy import func
from sqlalchemy.orm import Session

from smartmess.core.exceptions import (
    AlreadyProcessedError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from smartmess.core.logger import get_logger
from smartmess.core.utils import iso, utcnow
from smartmess.models import NOTIFICATION_STATUSES, NOTIFICATION_TYPES, Notification, User
from smartmess.websockets.connection_manager import manager

logger = get_logger(__name__)

HIGH_PRIORITY_TYPES = {"payment_overdue", "payment_reminder", "critical_credit_alert"}
URGENT_PRIORITY_TYPES = {"payment_failed", "bill_due"}
MEDIUM_PRIORITY_TYPES = {"join_request", "payment_request", "low_credit_warning"}

EXPIRY_BY_TYPE = {
    "payment_reminder": timedelta(days=7),
    "payment_overdue": timedelta(days=30),
}


@dataclass
class Outcome:
    """Result of a committed workflow plus the notifications to push afterwards."""

    data: dict[str, Any]
    notifications: list[Notification] = field(default_factory=list)


def derive_priority(notification_type: str) -> str:
    if notification_type in HIGH_PRIORITY_TYPES:
        return "high"
    if notification_type in URGENT_PRIORITY_TYPES:
        return "urgent"
    if notification_type in MEDIUM_PRIORITY_TYPES:
        return "medium"
    return "low"


def derive_expiry(notification_type: str, now: datetime | None = None) -> datetime | None:
    ttl = EXPIRY_BY_TYPE.get(notification_type)
    if ttl is None:
        return None
    return (now or utcnow()) + ttl


def create_notification(
    db: Session,
    *,
    user_id: uuid.UUID,
    type: str,
    title: str,
    message: str,
    mess_id: uuid.UUID | None = None,
    status: str = "pending",
    data: dict[str, Any] | None = None,
    is_read: bool = False,
) -> Notification:
    """Add a notification to the session and flush it. The caller commits."""
    if type not in NOTIFICATION_TYPES:
        raise ValidationError(f"Unknown notification type: {type}")
    if status not in NOTIFICATION_STATUSES:
        raise ValidationError(f"Unknown notification status: {status}")

    notification = Notification(
        user_id=user_id,
        mess_id=mess_id,
        type=type,
        title=title,
        message=message,
        status=status,
        priority=derive_priority(type),
        data=data or {},
        is_read=is_read,
        expires_at=derive_expiry(type),
    )
    db.add(notification)
    db.flush()
    return notification


def serialize_notification(notification: Notification) -> dict[str, Any]:
    return {
        "id": str(notification.id),
        "user_id": str(notification.user_id),
        "mess_id": str(notification.mess_id) if notification.mess_id else None,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "status": notification.status,
        "priority": notification.priority,
        "data": notification.data or {},
        "is_read": notification.is_read,
        "expires_at": iso(notification.expires_at),
        "created_at": iso(notification.created_at),
        "updated_at": iso(notification.updated_at),
    }


async def push_notifications(notifications: Iterable[Notification]) -> None:
    """Deliver committed notifications to their recipients' open sockets."""
    for notification in notifications:
        try:
            await manager.send_to_user(
                str(notification.user_id), "notification", serialize_notification(notification)
            )
        except Exception:
            logger.exception("Notification push failed for %s", notification.id)


def list_notifications(
    db: Session,
    user_id: uuid.UUID,
    *,
    type: str | None = None,
    status: str | None = None,
    is_read: bool | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Notification], int]:
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if type:
        query = query.filter(Notification.type == type)
    if status:
        query = query.filter(Notification.status == status)
    if is_read is not None:
        query = query.filter(Notification.is_read.is_(is_read))
    total = query.count()
    rows = query.order_by(Notification.created_at.desc()).offset(offset).limit(limit).all()
    return rows, total


def unread_count(db: Session, user_id: uuid.UUID) -> int:
    return (
        db.query(func.count(Notification.id))
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .scalar()
        or 0
    )


def get_own_notification(db: Session, user: User, notification_id: uuid.UUID) -> Notification:
    notification = db.get(Notification, notification_id)
    if notification is None:
        raise NotFoundError("Notification not found")
    if notification.user_id != user.id:
        raise PermissionDeniedError("You do not have access to this notification")
    return notification


def mark_read(db: Session, user: User, notification_id: uuid.UUID) -> Notification:
    notification = get_own_notification(db, user, notification_id)
    notification.is_read = True
    db.commit()
    db.refresh(notification)
    return notification


def mark_all_read(db: Session, user: User) -> int:
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user.id, Notification.is_read.is_(False))
        .update({Notification.is_read: True, Notification.updated_at: utcnow()}, synchronize_session=False)
    )
    db.commit()
    return updated


def delete_notification(db: Session, user: User, notification_id: uuid.UUID) -> None:
    notification = get_own_notification(db, user, notification_id)
    db.delete(notification)
    db.commit()
    logger.info("Notification %s deleted by %s", notification_id, user.id)


def send_direct_notification(
    db: Session,
    sender: User,
    *,
    user_id: uuid.UUID,
    type: str,
    title: str,
    message: str,
    mess_id: uuid.UUID | None = None,
    data: dict[str, Any] | None = None,
) -> Notification:
    """Admin or mess-owner notification addressed to a single user."""
    if db.get(User, user_id) is None:
        raise NotFoundError("Recipient not found")
    notification = create_notification(
        db,
        user_id=user_id,
        mess_id=mess_id,
        type=type,
        title=title,
        message=message,
        status="completed",
        data={**(data or {}), "sent_by": str(sender.id)},
    )
    db.commit()
    db.refresh(notification)
    logger.info("Notification %s sent by %s to %s", notification.id, sender.id, user_id)
    return notification


def resolve_pending(db: Session, notification: Notification, status: str, message: str) -> None:
    """
    Move a pending request notification to ``status``.

    The UPDATE only matches while the row is still pending, so of two racing
    decisions exactly one wins and the other gets AlreadyProcessedError.
    """
    updated = (
        db.query(Notification)
        .filter(Notification.id == notification.id, Notification.status == "pending")
        .update(
            {Notification.status: status, Notification.is_read: True, Notification.updated_at: utcnow()},
            synchronize_session=False,
        )
    )
    if updated != 1:
        raise AlreadyProcessedError(message)
    db.refresh(notification)
