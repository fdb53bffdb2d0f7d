from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from smartmess.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from smartmess.core.logger import get_logger
from smartmess.core.utils import add_months, iso, utcnow
from smartmess.database import atomic
from smartmess.models import (
    PAYMENT_METHODS,
    PAYMENT_STATUSES,
    MealPlan,
    MessMembership,
    MessProfile,
    User,
)
from smartmess.services.notification_service import Outcome, create_notification

logger = get_logger(__name__)

DAY_PERIODS = {"daily": 1, "weekly": 7, "15days": 15}
MONTH_PERIODS = {"monthly": 1, "3months": 3, "6months": 6, "yearly": 12}


def subscription_end(start: datetime, period: str | None) -> datetime:
    """End of a subscription that starts at ``start``. Unknown periods count as monthly."""
    if period in DAY_PERIODS:
        return start + timedelta(days=DAY_PERIODS[period])
    return add_months(start, MONTH_PERIODS.get(period or "", 1))


def get_owned_mess(db: Session, user: User, mess_id: uuid.UUID) -> MessProfile:
    mess = db.get(MessProfile, mess_id)
    if mess is None:
        raise NotFoundError("Mess not found")
    if user.role != "admin" and mess.owner_id != user.id:
        raise PermissionDeniedError("You do not own this mess")
    return mess


def get_mess_of_owner(db: Session, owner: User) -> MessProfile:
    mess = db.query(MessProfile).filter(MessProfile.owner_id == owner.id).first()
    if mess is None:
        raise NotFoundError("Mess profile not found")
    return mess


def refresh_overdue(db: Session, memberships: list[MessMembership]) -> None:
    now = utcnow()
    changed = [m for m in memberships if m.refresh_payment_state(now)]
    if changed:
        db.commit()
        logger.info("Marked %s membership(s) overdue", len(changed))


def list_user_memberships(db: Session, user: User) -> list[MessMembership]:
    rows = (
        db.query(MessMembership)
        .filter(MessMembership.user_id == user.id)
        .order_by(MessMembership.created_at.desc())
        .all()
    )
    refresh_overdue(db, rows)
    return rows


def list_mess_memberships(
    db: Session,
    actor: User,
    mess_id: uuid.UUID,
    *,
    status: str | None = None,
    payment_status: str | None = None,
) -> list[MessMembership]:
    get_owned_mess(db, actor, mess_id)
    query = db.query(MessMembership).filter(MessMembership.mess_id == mess_id)
    if status:
        query = query.filter(MessMembership.status == status)
    rows = query.order_by(MessMembership.created_at.desc()).all()
    refresh_overdue(db, rows)
    if payment_status:
        rows = [m for m in rows if m.payment_status == payment_status]
    return rows


def _owned_membership(db: Session, actor: User, membership_id: uuid.UUID) -> MessMembership:
    membership = db.get(MessMembership, membership_id)
    if membership is None:
        raise NotFoundError("Membership not found")
    get_owned_mess(db, actor, membership.mess_id)
    return membership


def update_payment_status(
    db: Session,
    actor: User,
    membership_id: uuid.UUID,
    *,
    payment_status: str,
    payment_method: str = "cash",
    notes: str | None = None,
) -> MessMembership:
    """Owner override of a member's payment status. ``paid`` records a payment entry."""
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationError(f"Invalid payment status: {payment_status}")
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {payment_method}")

    with atomic(db):
        membership = _owned_membership(db, actor, membership_id)
        now = utcnow()
        if payment_status == "paid":
            plan = db.get(MealPlan, membership.meal_plan_id)
            amount = float(membership.payment_amount or 0) or float(plan.pricing_amount if plan else 0)
            membership.add_payment(amount, payment_method, "success", notes=notes, now=now)
            if plan is not None:
                membership.next_payment_date = subscription_end(now, plan.pricing_period)
        else:
            membership.payment_status = payment_status
    db.refresh(membership)
    logger.info("Membership %s payment status set to %s by %s", membership_id, payment_status, actor.id)
    return membership


def send_payment_reminder(db: Session, actor: User, membership_id: uuid.UUID) -> Outcome:
    with atomic(db):
        membership = _owned_membership(db, actor, membership_id)
        membership.refresh_payment_state()
        if membership.payment_status == "paid":
            raise ValidationError("This membership is already paid")

        now = utcnow()
        membership.reminder_sent_count = (membership.reminder_sent_count or 0) + 1
        membership.last_reminder_sent = now
        amount = float(membership.payment_amount or 0) + float(membership.late_fees or 0)
        notice_type = "payment_overdue" if membership.payment_status == "overdue" else "payment_reminder"
        notification = create_notification(
            db,
            user_id=membership.user_id,
            mess_id=membership.mess_id,
            type=notice_type,
            title="Payment reminder",
            message=f"Your payment of {amount:.2f} is due. Please pay at the earliest.",
            status="pending",
            data={
                "membership_id": str(membership.id),
                "amount": amount,
                "due_date": iso(membership.payment_due_date),
                "reminder_count": membership.reminder_sent_count,
            },
        )
    logger.info("Payment reminder %s sent for membership %s", notification.id, membership_id)
    return Outcome(
        data={"reminder_sent_count": membership.reminder_sent_count},
        notifications=[notification],
    )


def serialize_payment(entry) -> dict[str, Any]:
    return {
        "date": iso(entry.date),
        "amount": float(entry.amount),
        "method": entry.method,
        "status": entry.status,
        "transaction_id": entry.transaction_id,
        "notes": entry.notes,
    }


def serialize_membership(membership: MessMembership, *, with_history: bool = False) -> dict[str, Any]:
    body: dict[str, Any] = {
        "id": str(membership.id),
        "user_id": str(membership.user_id),
        "mess_id": str(membership.mess_id),
        "meal_plan_id": str(membership.meal_plan_id),
        "status": membership.status,
        "join_date": iso(membership.join_date),
        "subscription_start_date": iso(membership.subscription_start_date),
        "subscription_end_date": iso(membership.subscription_end_date),
        "leave_extension_meals": membership.leave_extension_meals,
        "payment_status": membership.payment_status,
        "payment_request_status": membership.payment_request_status,
        "payment_type": membership.payment_type,
        "payment_amount": float(membership.payment_amount or 0),
        "late_fees": float(membership.late_fees or 0),
        "last_payment_date": iso(membership.last_payment_date),
        "next_payment_date": iso(membership.next_payment_date),
        "payment_due_date": iso(membership.payment_due_date),
        "reminder_sent_count": membership.reminder_sent_count,
        "auto_renewal": membership.auto_renewal,
    }
    if with_history:
        body["payment_history"] = [serialize_payment(p) for p in membership.payment_history]
    return body
