"""
Join requests: a user asks to subscribe to a meal plan and the mess owner
approves or rejects the request.

Approval charges the mess platform credits, activates the membership and
resolves the request notification inside one transaction. Chat auto-join
runs afterwards and never undoes an approval.
"""
from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Any

from sqlalchemy.orm import Session

from smartmess.config import settings
from smartmess.core.exceptions import (
    AlreadyProcessedError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from smartmess.core.logger import get_logger
from smartmess.core.utils import utcnow
from smartmess.database import atomic
from smartmess.models import (
    PAYMENT_TYPES,
    MealPlan,
    MessMembership,
    MessProfile,
    Notification,
    User,
)
from smartmess.services import chat_service, credit_service
from smartmess.services.membership_service import subscription_end
from smartmess.services.notification_service import (
    Outcome,
    create_notification,
    resolve_pending,
    serialize_notification,
)

logger = get_logger(__name__)

ALREADY_MESSAGES = {
    "approved": "This join request has already been approved",
    "rejected": "This join request has already been rejected",
}


def create_join_request(
    db: Session,
    user: User,
    *,
    mess_id: uuid.UUID,
    meal_plan_id: uuid.UUID,
    payment_type: str = "pay_later",
) -> Outcome:
    if payment_type not in PAYMENT_TYPES:
        raise ValidationError(f"Invalid payment type: {payment_type}")

    with atomic(db):
        mess = db.get(MessProfile, mess_id)
        if mess is None:
            raise NotFoundError("Mess not found")
        plan = db.get(MealPlan, meal_plan_id)
        if plan is None or plan.mess_id != mess.id or not plan.is_active:
            raise ValidationError("Meal plan not found for this mess")

        existing = (
            db.query(MessMembership)
            .filter(
                MessMembership.user_id == user.id,
                MessMembership.mess_id == mess.id,
                MessMembership.meal_plan_id == plan.id,
                MessMembership.status.in_(("pending", "active")),
            )
            .first()
        )
        if existing is not None and existing.status == "active":
            raise ValidationError("You are already subscribed to this meal plan")
        if existing is not None:
            raise ValidationError("You already have a pending request for this meal plan")

        now = utcnow()
        amount = float(plan.pricing_amount)
        membership = MessMembership(
            user_id=user.id,
            mess_id=mess.id,
            meal_plan_id=plan.id,
            status="pending",
            payment_status="pending",
            payment_request_status="sent",
            payment_type=payment_type,
            payment_amount=amount,
            request_expiry_date=now + timedelta(days=settings.join_request_expiry_days),
        )
        db.add(membership)
        db.flush()

        notification = create_notification(
            db,
            user_id=mess.owner_id,
            mess_id=mess.id,
            type="join_request",
            title="New join request",
            message=f"{user.name} wants to join {mess.name} on the {plan.name} plan.",
            status="pending",
            data={
                "requesting_user_id": str(user.id),
                "requesting_user_name": user.name,
                "membership_id": str(membership.id),
                "meal_plan_id": str(plan.id),
                "payment_type": payment_type,
                "amount": amount,
                "plan": plan.name,
            },
        )
    logger.info("Join request %s created by user %s for mess %s", notification.id, user.id, mess_id)
    return Outcome(
        data={"membership_id": str(membership.id), "notification_id": str(notification.id)},
        notifications=[notification],
    )


def _load_request(db: Session, actor: User, notification_id: uuid.UUID) -> Notification:
    if actor.role not in ("mess-owner", "admin"):
        raise PermissionDeniedError(
            "Access denied. Only mess owners and admins can act on join requests."
        )
    query = db.query(Notification).filter(
        Notification.id == notification_id, Notification.type == "join_request"
    )
    if actor.role != "admin":
        query = query.filter(Notification.user_id == actor.id)
    notification = query.first()
    if notification is None:
        raise NotFoundError("Join request not found")
    if notification.status in ALREADY_MESSAGES:
        raise AlreadyProcessedError(ALREADY_MESSAGES[notification.status])
    if notification.status != "pending":
        raise ValidationError(f"This join request is {notification.status}")
    return notification


def approve_join_request(
    db: Session, actor: User, notification_id: uuid.UUID, remarks: str | None = None
) -> Outcome:
    with atomic(db):
        notification = _load_request(db, actor, notification_id)
        data = notification.data or {}
        requesting_user_id = data.get("requesting_user_id")
        meal_plan_id = data.get("meal_plan_id")
        payment_type = data.get("payment_type") or "pay_later"

        if not requesting_user_id or not notification.mess_id:
            raise ValidationError("Missing required data for membership creation")
        if not meal_plan_id:
            raise ValidationError("Missing meal plan ID for membership creation")
        requester = db.get(User, uuid.UUID(requesting_user_id))
        if requester is None:
            raise ValidationError("Requesting user not found")
        plan = db.get(MealPlan, uuid.UUID(meal_plan_id))
        if plan is None:
            raise ValidationError("Meal plan not found")

        now = utcnow()
        membership = None
        if data.get("membership_id"):
            membership = db.get(MessMembership, uuid.UUID(data["membership_id"]))
            if membership is not None and membership.status not in ("pending", "active", "inactive"):
                membership = None
        if membership is None:
            membership = (
                db.query(MessMembership)
                .filter(
                    MessMembership.user_id == requester.id,
                    MessMembership.mess_id == notification.mess_id,
                    MessMembership.meal_plan_id == plan.id,
                    MessMembership.status.in_(("pending", "active", "inactive")),
                )
                .first()
            )
        if membership is None:
            membership = MessMembership(
                user_id=requester.id,
                mess_id=notification.mess_id,
                meal_plan_id=plan.id,
                reminder_sent_count=0,
                auto_renewal=True,
            )
            db.add(membership)

        deduction: dict[str, Any] = {"credits_deducted": 0, "remaining_credits": None}
        if membership.status != "active":
            deduction = credit_service.deduct_credits_for_new_user(db, notification.mess_id, requester.id)
        else:
            deduction["remaining_credits"] = credit_service.get_mess_credits(
                db, notification.mess_id
            ).available_credits

        membership.status = "active"
        membership.payment_type = payment_type
        membership.payment_amount = plan.pricing_amount
        membership.payment_request_status = "approved"
        membership.request_expiry_date = None
        membership.subscription_start_date = now
        membership.subscription_end_date = subscription_end(now, plan.pricing_period)
        if payment_type == "pay_now":
            membership.payment_status = "paid"
            membership.last_payment_date = now
        else:
            membership.payment_status = "pending"
        if payment_type == "pay_later":
            membership.payment_due_date = now + timedelta(days=settings.pay_later_due_days)

        resolve_pending(db, notification, "approved", ALREADY_MESSAGES["approved"])

        suffix = f" Remarks: {remarks}" if remarks else ""
        if payment_type == "pay_later":
            text = (
                "Your 'Pay Later' plan request has been approved! Welcome to the community. "
                f"Payment status: Pending - please complete your payment.{suffix}"
            )
        else:
            text = f"Your request to join the mess has been approved! Welcome to the community.{suffix}"
        reply = create_notification(
            db,
            user_id=requester.id,
            mess_id=notification.mess_id,
            type="join_request",
            title="Join Request Approved",
            message=text,
            status="completed",
            data={
                "mess_id": str(notification.mess_id),
                "approved_by": str(actor.id),
                "approved_at": now.isoformat(),
                "payment_type": payment_type,
                "remarks": remarks,
            },
        )
        mess_id = notification.mess_id
        requester_id = requester.id

    logger.info(
        "Join request %s approved by %s: user %s, %s credits deducted",
        notification_id,
        actor.id,
        requester_id,
        deduction["credits_deducted"],
    )
    chat_service.join_after_approval(db, requester_id, mess_id)

    body = serialize_notification(notification)
    body["membership_id"] = str(membership.id)
    body["credit_deduction"] = {
        "credits_deducted": deduction["credits_deducted"],
        "remaining_credits": deduction["remaining_credits"],
    }
    return Outcome(data=body, notifications=[reply] + deduction.get("alerts", []))


def reject_join_request(
    db: Session, actor: User, notification_id: uuid.UUID, remarks: str | None = None
) -> Outcome:
    with atomic(db):
        notification = _load_request(db, actor, notification_id)
        data = notification.data or {}
        resolve_pending(db, notification, "rejected", ALREADY_MESSAGES["rejected"])

        reply = None
        requesting_user_id = data.get("requesting_user_id")
        if requesting_user_id:
            pending = (
                db.query(MessMembership)
                .filter(
                    MessMembership.user_id == uuid.UUID(requesting_user_id),
                    MessMembership.mess_id == notification.mess_id,
                    MessMembership.status == "pending",
                )
                .all()
            )
            for membership in pending:
                if not data.get("meal_plan_id") or str(membership.meal_plan_id) == data["meal_plan_id"]:
                    membership.payment_request_status = "rejected"
                    membership.status = "inactive"

            reason = (
                f" Reason: {remarks}" if remarks else " Please contact the mess owner for more details."
            )
            reply = create_notification(
                db,
                user_id=uuid.UUID(requesting_user_id),
                mess_id=notification.mess_id,
                type="join_request",
                title="Join Request Rejected",
                message=f"Your request to join the mess has been rejected.{reason}",
                status="rejected",
                data={
                    "mess_id": str(notification.mess_id) if notification.mess_id else None,
                    "rejected_by": str(actor.id),
                    "rejected_at": utcnow().isoformat(),
                    "remarks": remarks,
                },
            )
    logger.info("Join request %s rejected by %s", notification_id, actor.id)
    return Outcome(
        data=serialize_notification(notification),
        notifications=[reply] if reply is not None else [],
    )


def expire_stale_requests(db: Session) -> dict[str, Any]:
    """Drop pending memberships whose request window has lapsed and expire their requests."""
    now = utcnow()
    with atomic(db):
        stale = (
            db.query(MessMembership)
            .filter(
                MessMembership.status == "pending",
                MessMembership.request_expiry_date.isnot(None),
                MessMembership.request_expiry_date < now,
            )
            .all()
        )
        expired_notifications = 0
        for membership in stale:
            pending = (
                db.query(Notification)
                .filter(
                    Notification.mess_id == membership.mess_id,
                    Notification.type.in_(("join_request", "payment_request")),
                    Notification.status == "pending",
                )
                .all()
            )
            for notification in pending:
                data = notification.data or {}
                if data.get("requesting_user_id") != str(membership.user_id):
                    continue
                if data.get("meal_plan_id") and data["meal_plan_id"] != str(membership.meal_plan_id):
                    continue
                notification.status = "expired"
                expired_notifications += 1
            db.delete(membership)
        removed = len(stale)
    if removed:
        logger.info(
            "Expired %s stale join request(s) and %s notification(s)", removed, expired_notifications
        )
    return {"expired_memberships": removed, "expired_notifications": expired_notifications}
