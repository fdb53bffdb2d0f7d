"""
Payment requests: a member has paid (or promises to pay) for a membership
and the mess owner confirms or refuses it.

Approval charges credits when the member is new to the mess, marks the
membership paid, logs exactly one Transaction and closes the newest
pending PaymentVerification, all in one commit.
"""
from __future__ import annotations

import secrets
import string
import time
import uuid
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
from smartmess.core.utils import iso, utcnow
from smartmess.database import atomic
from smartmess.models import (
    PAYMENT_METHODS,
    MealPlan,
    MessMembership,
    MessProfile,
    Notification,
    PaymentVerification,
    Transaction,
    User,
)
from smartmess.services import chat_service, credit_service
from smartmess.services.membership_service import subscription_end
from smartmess.services.notification_service import Outcome, create_notification

logger = get_logger(__name__)

ALREADY_MESSAGES = {
    "approved": "This payment request has already been approved",
    "rejected": "This payment request has already been rejected",
}

GATEWAY_NAMES = {"upi": "UPI", "online": "Online"}

_TXN_ALPHABET = string.ascii_lowercase + string.digits


def generate_transaction_id() -> str:
    suffix = "".join(secrets.choice(_TXN_ALPHABET) for _ in range(6))
    return f"TXN_{int(time.time() * 1000)}_{suffix}"


def gateway_name(payment_method: str) -> str:
    return GATEWAY_NAMES.get(payment_method, "Cash")


def _load_membership(db: Session, actor: User, membership_id: uuid.UUID) -> MessMembership:
    if actor.role not in ("mess-owner", "admin"):
        raise PermissionDeniedError(
            "Access denied. Only mess owners and admins can act on payment requests."
        )
    membership = db.get(MessMembership, membership_id)
    if membership is None:
        raise NotFoundError("Membership not found")
    if actor.role != "admin":
        mess = db.get(MessProfile, membership.mess_id)
        if mess is None or mess.owner_id != actor.id:
            raise PermissionDeniedError("You do not own this mess")
    if membership.payment_request_status in ALREADY_MESSAGES:
        raise AlreadyProcessedError(ALREADY_MESSAGES[membership.payment_request_status])
    return membership


def newest_pending_verification(db: Session, membership_id: uuid.UUID) -> PaymentVerification | None:
    return (
        db.query(PaymentVerification)
        .filter(
            PaymentVerification.membership_id == membership_id,
            PaymentVerification.status == "pending",
        )
        .order_by(PaymentVerification.created_at.desc())
        .first()
    )


def _pick_verification(
    db: Session, membership_id: uuid.UUID, verification_id: uuid.UUID | None
) -> PaymentVerification | None:
    if verification_id is None:
        return newest_pending_verification(db, membership_id)
    verification = db.get(PaymentVerification, verification_id)
    if verification is None or verification.membership_id != membership_id:
        raise NotFoundError("Payment verification not found")
    if verification.status != "pending":
        raise AlreadyProcessedError(f"This payment verification has already been {verification.status}")
    return verification


def _close_request_notifications(db: Session, membership: MessMembership, status: str) -> None:
    pending = (
        db.query(Notification)
        .filter(
            Notification.mess_id == membership.mess_id,
            Notification.type.in_(("payment_request", "join_request")),
            Notification.status == "pending",
        )
        .all()
    )
    for notification in pending:
        if (notification.data or {}).get("membership_id") == str(membership.id):
            notification.status = status
            notification.is_read = True


def approve_payment_request(
    db: Session,
    actor: User,
    membership_id: uuid.UUID,
    payment_method: str | None = None,
    verification_id: uuid.UUID | None = None,
) -> Outcome:
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {payment_method}")

    with atomic(db):
        membership = _load_membership(db, actor, membership_id)
        plan = db.get(MealPlan, membership.meal_plan_id)

        deduction: dict[str, Any] = {"credits_deducted": 0, "remaining_credits": None}
        is_new_member = membership.status != "active"
        if is_new_member:
            deduction = credit_service.deduct_credits_for_new_user(
                db, membership.mess_id, membership.user_id
            )

        now = utcnow()
        end = subscription_end(now, plan.pricing_period if plan else None)
        membership.status = "active"
        membership.payment_request_status = "approved"
        membership.request_expiry_date = None
        membership.subscription_start_date = now
        membership.subscription_end_date = end
        if not membership.payment_amount and plan is not None:
            membership.payment_amount = plan.pricing_amount
        membership.payment_due_date = end
        membership.next_payment_date = end

        verification = _pick_verification(db, membership.id, verification_id)
        amount = float(membership.payment_amount or 0)
        transaction_id = (verification.transaction_id if verification else None) or generate_transaction_id()
        if db.query(Transaction.id).filter(Transaction.transaction_id == transaction_id).first():
            transaction_id = generate_transaction_id()
        method = (verification.payment_method if verification else None) or payment_method or "cash"

        membership.add_payment(
            amount,
            method if method in PAYMENT_METHODS else "cash",
            "success",
            transaction_id=transaction_id,
            notes="Approved payment request",
            now=now,
        )

        transaction = Transaction(
            transaction_id=transaction_id,
            user_id=membership.user_id,
            mess_id=membership.mess_id,
            membership_id=membership.id,
            type="payment",
            amount=amount,
            currency=settings.currency,
            status="success",
            payment_method=method,
            gateway_name=gateway_name(method),
            gateway_transaction_id=transaction_id,
            description=f"Payment for {plan.name if plan else 'Meal Plan'} - Approved payment request",
            meta={
                "payment_request_id": str(verification.id) if verification else None,
                "approved_by": str(actor.id),
            },
        )
        db.add(transaction)

        if verification is not None:
            verification.status = "approved"
            verification.verified_by = actor.id
            verification.verified_at = now

        _close_request_notifications(db, membership, "approved")
        reply = create_notification(
            db,
            user_id=membership.user_id,
            mess_id=membership.mess_id,
            type="payment_success",
            title="Payment Approved",
            message=f"Your payment of {amount:.2f} has been approved. Your subscription is active.",
            status="completed",
            data={
                "membership_id": str(membership.id),
                "transaction_id": transaction_id,
                "amount": amount,
            },
        )

        if deduction["remaining_credits"] is None:
            deduction["remaining_credits"] = credit_service.get_mess_credits(
                db, membership.mess_id
            ).available_credits
        user_id, mess_id = membership.user_id, membership.mess_id

    logger.info(
        "Payment request for membership %s approved by %s: transaction %s, %s credits deducted",
        membership_id,
        actor.id,
        transaction_id,
        deduction["credits_deducted"],
    )
    if is_new_member:
        chat_service.join_after_approval(db, user_id, mess_id)

    return Outcome(
        data={
            "credits_deducted": deduction["credits_deducted"],
            "remaining_credits": deduction["remaining_credits"],
            "transaction_id": transaction_id,
        },
        notifications=[reply] + deduction.get("alerts", []),
    )


def reject_payment_request(
    db: Session,
    actor: User,
    membership_id: uuid.UUID,
    remarks: str | None = None,
    verification_id: uuid.UUID | None = None,
) -> Outcome:
    with atomic(db):
        membership = _load_membership(db, actor, membership_id)
        membership.payment_request_status = "rejected"

        verification = _pick_verification(db, membership.id, verification_id)
        if verification is not None:
            verification.status = "rejected"
            if remarks:
                verification.rejection_reason = remarks
            verification.verified_by = actor.id
            verification.verified_at = utcnow()

        _close_request_notifications(db, membership, "rejected")
        reason = f" Reason: {remarks}" if remarks else ""
        reply = create_notification(
            db,
            user_id=membership.user_id,
            mess_id=membership.mess_id,
            type="payment_failed",
            title="Payment Rejected",
            message=f"Your payment request has been rejected.{reason}",
            status="rejected",
            data={
                "membership_id": str(membership.id),
                "payment_verification_id": str(verification.id) if verification else None,
                "remarks": remarks,
            },
        )
    logger.info("Payment request for membership %s rejected by %s", membership_id, actor.id)
    return Outcome(data={"membership_id": str(membership_id)}, notifications=[reply])


def list_user_transactions(db: Session, user: User, limit: int = 100) -> list[Transaction]:
    return (
        db.query(Transaction)
        .filter(Transaction.user_id == user.id)
        .order_by(Transaction.created_at.desc())
        .limit(limit)
        .all()
    )


def list_mess_transactions(db: Session, mess_id: uuid.UUID, limit: int = 200) -> list[Transaction]:
    return (
        db.query(Transaction)
        .filter(Transaction.mess_id == mess_id)
        .order_by(Transaction.created_at.desc())
        .limit(limit)
        .all()
    )


def serialize_transaction(row: Transaction) -> dict[str, Any]:
    return {
        "id": str(row.id),
        "transaction_id": row.transaction_id,
        "user_id": str(row.user_id),
        "mess_id": str(row.mess_id),
        "membership_id": str(row.membership_id) if row.membership_id else None,
        "type": row.type,
        "amount": float(row.amount),
        "currency": row.currency,
        "status": row.status,
        "payment_method": row.payment_method,
        "gateway": {"name": row.gateway_name, "transaction_id": row.gateway_transaction_id},
        "description": row.description,
        "metadata": row.meta or {},
        "created_at": iso(row.created_at),
    }
