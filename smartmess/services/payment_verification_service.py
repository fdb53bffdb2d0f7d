from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from smartmess.config import settings
from smartmess.core.exceptions import NotFoundError, ValidationError
from smartmess.core.logger import get_logger
from smartmess.core.utils import iso, utcnow
from smartmess.database import atomic
from smartmess.models import MealPlan, MessMembership, MessProfile, PaymentVerification, User
from smartmess.services import payment_request_service
from smartmess.services.membership_service import get_owned_mess
from smartmess.services.notification_service import Outcome, create_notification

logger = get_logger(__name__)

VERIFICATION_METHODS = ("upi", "online", "cash")
SCREENSHOT_SUFFIXES = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


@dataclass
class Screenshot:
    filename: str
    content_type: str
    content: bytes


def _store_screenshot(screenshot: Screenshot) -> Path:
    if not screenshot.content_type.startswith("image/"):
        raise ValidationError("Payment screenshot must be an image")
    if len(screenshot.content) > settings.upload_max_bytes:
        raise ValidationError(
            f"Payment screenshot exceeds the {settings.upload_max_bytes // (1024 * 1024)}MB limit"
        )
    if not screenshot.content:
        raise ValidationError("Payment screenshot is empty")

    suffix = SCREENSHOT_SUFFIXES.get(screenshot.content_type) or Path(screenshot.filename).suffix or ".img"
    target_dir = Path(settings.upload_dir) / "payment-screenshots"
    target_dir.mkdir(parents=True, exist_ok=True)
    target = target_dir / f"{uuid.uuid4().hex}{suffix}"
    target.write_bytes(screenshot.content)
    return target


def create_payment_verification(
    db: Session,
    user: User,
    *,
    mess_id: uuid.UUID,
    meal_plan_id: uuid.UUID,
    amount: float,
    payment_method: str,
    transaction_id: str | None = None,
    screenshot: Screenshot | None = None,
) -> Outcome:
    if payment_method not in VERIFICATION_METHODS:
        raise ValidationError(f"Invalid payment method: {payment_method}")
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero")

    stored: Path | None = None
    try:
        with atomic(db):
            mess = db.get(MessProfile, mess_id)
            if mess is None:
                raise NotFoundError("Mess not found")
            plan = db.get(MealPlan, meal_plan_id)
            if plan is None or plan.mess_id != mess.id:
                raise ValidationError("Meal plan not found for this mess")

            existing = (
                db.query(PaymentVerification)
                .filter(
                    PaymentVerification.user_id == user.id,
                    PaymentVerification.mess_id == mess.id,
                    PaymentVerification.status == "pending",
                )
                .first()
            )
            if existing is not None:
                raise ValidationError("You already have a pending payment verification for this mess")

            membership = (
                db.query(MessMembership)
                .filter(
                    MessMembership.user_id == user.id,
                    MessMembership.mess_id == mess.id,
                    MessMembership.meal_plan_id == plan.id,
                    MessMembership.status.in_(("pending", "active", "inactive")),
                )
                .order_by(MessMembership.created_at.desc())
                .first()
            )
            if membership is None:
                membership = MessMembership(
                    user_id=user.id,
                    mess_id=mess.id,
                    meal_plan_id=plan.id,
                    status="pending",
                    payment_status="pending",
                    payment_type="pay_now",
                    request_expiry_date=utcnow() + timedelta(days=settings.join_request_expiry_days),
                )
                db.add(membership)
            membership.payment_amount = amount
            membership.payment_request_status = "sent"
            db.flush()

            if screenshot is not None:
                stored = _store_screenshot(screenshot)

            verification = PaymentVerification(
                user_id=user.id,
                mess_id=mess.id,
                membership_id=membership.id,
                meal_plan_id=plan.id,
                amount=amount,
                payment_method=payment_method,
                transaction_id=transaction_id,
                screenshot_path=str(stored) if stored else None,
                status="pending",
            )
            db.add(verification)
            db.flush()

            notification = create_notification(
                db,
                user_id=mess.owner_id,
                mess_id=mess.id,
                type="payment_request",
                title="New payment request",
                message=f"{user.name} submitted a payment of {amount:.2f} for {plan.name}.",
                status="pending",
                data={
                    "requesting_user_id": str(user.id),
                    "membership_id": str(membership.id),
                    "meal_plan_id": str(plan.id),
                    "payment_verification_id": str(verification.id),
                    "amount": amount,
                    "payment_method": payment_method,
                },
            )
    except Exception:
        if stored is not None:
            stored.unlink(missing_ok=True)
        raise

    logger.info("Payment verification %s submitted by %s for mess %s", verification.id, user.id, mess_id)
    return Outcome(data=serialize_verification(verification), notifications=[notification])


def list_for_mess(
    db: Session, actor: User, mess_id: uuid.UUID, status: str | None = None
) -> list[PaymentVerification]:
    get_owned_mess(db, actor, mess_id)
    query = db.query(PaymentVerification).filter(PaymentVerification.mess_id == mess_id)
    if status:
        query = query.filter(PaymentVerification.status == status)
    return query.order_by(PaymentVerification.created_at.desc()).all()


def list_for_user(db: Session, user: User) -> list[PaymentVerification]:
    return (
        db.query(PaymentVerification)
        .filter(PaymentVerification.user_id == user.id)
        .order_by(PaymentVerification.updated_at.desc())
        .all()
    )


def stats_for_mess(db: Session, actor: User, mess_id: uuid.UUID) -> dict[str, Any]:
    get_owned_mess(db, actor, mess_id)
    counts = dict(
        db.query(PaymentVerification.status, func.count(PaymentVerification.id))
        .filter(PaymentVerification.mess_id == mess_id)
        .group_by(PaymentVerification.status)
        .all()
    )
    approved_amount = (
        db.query(func.coalesce(func.sum(PaymentVerification.amount), 0))
        .filter(PaymentVerification.mess_id == mess_id, PaymentVerification.status == "approved")
        .scalar()
    )
    return {
        "total": sum(counts.values()),
        "pending": counts.get("pending", 0),
        "approved": counts.get("approved", 0),
        "rejected": counts.get("rejected", 0),
        "total_approved_amount": float(approved_amount or 0),
    }


def update_verification(
    db: Session,
    actor: User,
    verification_id: uuid.UUID,
    *,
    status: str,
    rejection_reason: str | None = None,
) -> Outcome:
    verification = db.get(PaymentVerification, verification_id)
    if verification is None:
        raise NotFoundError("Payment verification not found")
    get_owned_mess(db, actor, verification.mess_id)
    if verification.membership_id is None:
        raise ValidationError("Payment verification has no membership attached")

    if status == "approved":
        return payment_request_service.approve_payment_request(
            db, actor, verification.membership_id, verification_id=verification.id
        )
    if status == "rejected":
        if not rejection_reason:
            raise ValidationError("Rejection reason is required")
        return payment_request_service.reject_payment_request(
            db, actor, verification.membership_id, remarks=rejection_reason, verification_id=verification.id
        )
    raise ValidationError("Status must be approved or rejected")


def serialize_verification(row: PaymentVerification) -> dict[str, Any]:
    return {
        "id": str(row.id),
        "user_id": str(row.user_id),
        "mess_id": str(row.mess_id),
        "membership_id": str(row.membership_id) if row.membership_id else None,
        "meal_plan_id": str(row.meal_plan_id),
        "amount": float(row.amount),
        "payment_method": row.payment_method,
        "payment_screenshot": row.screenshot_path,
        "transaction_id": row.transaction_id,
        "status": row.status,
        "rejection_reason": row.rejection_reason,
        "verified_by": str(row.verified_by) if row.verified_by else None,
        "verified_at": iso(row.verified_at),
        "created_at": iso(row.created_at),
        "updated_at": iso(row.updated_at),
    }
