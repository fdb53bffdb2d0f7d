"""
Platform credit ledger.

Mess owners pay the platform in credits for every member they admit. The
per-member price is tiered by active member count through ``CreditSlab``
rows. Functions that only flush leave the commit to the caller so a
deduction shares the caller's transaction.

Besides the per-member charge, a mess is billed monthly for every active
member. Owners are warned through notifications when the balance drops
below ``low_credit_threshold`` and again when it becomes critical.
"""
from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Any

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from smartmess.core.exceptions import (
    InsufficientCreditsError,
    NotFoundError,
    ValidationError,
)
from smartmess.core.logger import get_logger
from smartmess.core.utils import iso, utcnow
from smartmess.database import atomic
from smartmess.models import (
    CreditPurchasePlan,
    CreditSlab,
    CreditTransaction,
    FreeTrialSettings,
    MessCredits,
    MessMembership,
    MessProfile,
    Notification,
    User,
)
from smartmess.services.notification_service import Outcome, create_notification

logger = get_logger(__name__)

BILLING_PERIOD = timedelta(days=30)
LOW_CREDIT_REPEAT = timedelta(hours=24)
CRITICAL_CREDIT_REPEAT = timedelta(hours=12)
CRITICAL_FRACTION = 0.2
PLATFORM_SUBSCRIPTION_PATH = "/mess-owner/platform-subscription"


def active_slabs(db: Session) -> list[CreditSlab]:
    return (
        db.query(CreditSlab)
        .filter(CreditSlab.is_active.is_(True))
        .order_by(CreditSlab.min_users.asc())
        .all()
    )


def calculate_tiered_credits(db: Session, user_count: int) -> dict[str, Any]:
    if user_count <= 0:
        return {"total_credits": 0, "breakdown": []}

    slabs = active_slabs(db)
    if not slabs:
        raise ValidationError("No active credit slabs found. Please contact admin.")

    total = 0
    breakdown: list[dict[str, int]] = []
    for slab in slabs:
        if user_count < slab.min_users:
            break
        users_in_range = min(user_count, slab.max_users) - slab.min_users + 1
        if users_in_range <= 0:
            continue
        subtotal = users_in_range * slab.credits_per_user
        total += subtotal
        breakdown.append(
            {
                "min_users": slab.min_users,
                "max_users": slab.max_users,
                "users": users_in_range,
                "credits_per_user": slab.credits_per_user,
                "subtotal": subtotal,
            }
        )
    return {"total_credits": total, "breakdown": breakdown}


def active_member_count(db: Session, mess_id: uuid.UUID) -> int:
    return (
        db.query(func.count(MessMembership.id))
        .filter(MessMembership.mess_id == mess_id, MessMembership.status == "active")
        .scalar()
        or 0
    )


def get_mess_credits(db: Session, mess_id: uuid.UUID) -> MessCredits:
    credits = db.query(MessCredits).filter(MessCredits.mess_id == mess_id).first()
    if credits is None:
        raise NotFoundError("Mess credits account not found")
    if credits.refresh_trial_state():
        logger.info("Trial expired for mess %s, status is now %s", mess_id, credits.status)
    return credits


def get_trial_settings(db: Session) -> FreeTrialSettings:
    trial_settings = db.query(FreeTrialSettings).first()
    if trial_settings is None:
        trial_settings = FreeTrialSettings(
            is_globally_enabled=True,
            trial_duration_days=7,
            trial_credits=100,
            max_trials_per_mess=1,
        )
        db.add(trial_settings)
        db.flush()
    return trial_settings


def check_credits_sufficient_for_new_user(db: Session, mess_id: uuid.UUID) -> dict[str, Any]:
    credits = get_mess_credits(db, mess_id)
    current = active_member_count(db, mess_id)

    if credits.in_active_trial():
        return {
            "sufficient": True,
            "required_credits": 0,
            "available_credits": credits.available_credits,
            "current_user_count": current,
            "new_user_count": current + 1,
        }

    required = (
        calculate_tiered_credits(db, current + 1)["total_credits"]
        - calculate_tiered_credits(db, current)["total_credits"]
    )
    return {
        "sufficient": credits.available_credits >= required,
        "required_credits": required,
        "available_credits": credits.available_credits,
        "current_user_count": current,
        "new_user_count": current + 1,
    }


def deduct_credits_for_new_user(db: Session, mess_id: uuid.UUID, user_id: uuid.UUID) -> dict[str, Any]:
    """Charge the mess for admitting one more member. Flushes, never commits."""
    check = check_credits_sufficient_for_new_user(db, mess_id)
    if not check["sufficient"]:
        raise InsufficientCreditsError(check["required_credits"], check["available_credits"])

    credits = get_mess_credits(db, mess_id)
    if credits.in_active_trial():
        return {
            "credits_deducted": 0,
            "remaining_credits": credits.available_credits,
            "transaction_id": None,
            "alerts": [],
        }

    required = check["required_credits"]
    credits.deduct_credits(required)
    entry = CreditTransaction(
        mess_id=mess_id,
        type="deduction",
        amount=-required,
        description=(
            f"User added: credits for user count {check['current_user_count']} -> "
            f"{check['new_user_count']}"
        ),
        meta={
            "user_id": str(user_id),
            "previous_user_count": check["current_user_count"],
            "new_user_count": check["new_user_count"],
        },
        status="completed",
    )
    db.add(entry)
    db.flush()

    logger.info("Deducted %s credits from mess %s for user %s", required, mess_id, user_id)
    return {
        "credits_deducted": required,
        "remaining_credits": credits.available_credits,
        "transaction_id": str(entry.id),
        "alerts": credit_alerts(db, credits),
    }


def _recently_alerted(db: Session, owner_id: uuid.UUID, mess_id: uuid.UUID, type: str, window: timedelta) -> bool:
    return (
        db.query(Notification.id)
        .filter(
            Notification.user_id == owner_id,
            Notification.mess_id == mess_id,
            Notification.type == type,
            Notification.created_at >= utcnow() - window,
        )
        .first()
        is not None
    )


def credit_alerts(db: Session, credits: MessCredits) -> list[Notification]:
    """Warn the owner about a low or exhausted balance. Flushes, never commits."""
    mess = db.get(MessProfile, credits.mess_id)
    if mess is None:
        return []

    available = credits.available_credits
    threshold = credits.low_credit_threshold
    alerts: list[Notification] = []

    if available < threshold and not _recently_alerted(
        db, mess.owner_id, mess.id, "low_credit_warning", LOW_CREDIT_REPEAT
    ):
        monthly = calculate_tiered_credits(db, active_member_count(db, mess.id))["total_credits"]
        months_left = available // monthly if monthly > 0 else None
        runway = (
            f" You have approximately {months_left} month(s) of service remaining."
            if months_left is not None
            else ""
        )
        alerts.append(
            create_notification(
                db,
                user_id=mess.owner_id,
                mess_id=mess.id,
                type="low_credit_warning",
                title="Low Credit Balance",
                message=(
                    f"Your credit balance ({available} credits) is below the threshold "
                    f"({threshold} credits).{runway} Please purchase more credits to avoid service interruption."
                ),
                data={
                    "available_credits": available,
                    "threshold": threshold,
                    "estimated_months_remaining": months_left,
                    "redirect_to": PLATFORM_SUBSCRIPTION_PATH,
                },
            )
        )

    if available <= threshold * CRITICAL_FRACTION and not _recently_alerted(
        db, mess.owner_id, mess.id, "critical_credit_alert", CRITICAL_CREDIT_REPEAT
    ):
        if available == 0:
            title = "Credit Balance Exhausted"
            text = "Your credit balance is zero! You cannot accept new user requests until you purchase more credits."
        else:
            title = "Critical: Low Credit Balance"
            text = (
                f"URGENT: Your credit balance ({available} credits) is critically low! "
                "Service may be interrupted. Please purchase credits immediately."
            )
        alerts.append(
            create_notification(
                db,
                user_id=mess.owner_id,
                mess_id=mess.id,
                type="critical_credit_alert",
                title=title,
                message=text,
                data={
                    "available_credits": available,
                    "threshold": threshold,
                    "redirect_to": PLATFORM_SUBSCRIPTION_PATH,
                },
            )
        )

    if alerts:
        logger.warning("Mess %s is low on credits: %s available", mess.id, available)
    return alerts


def initialize_mess_credits(
    db: Session, mess_id: uuid.UUID, *, start_trial: bool = True, initial_credits: int = 0
) -> MessCredits:
    """Create the credit account for a new mess. Flushes, never commits."""
    existing = db.query(MessCredits).filter(MessCredits.mess_id == mess_id).first()
    if existing is not None:
        return existing

    trial_settings = get_trial_settings(db)
    trial = start_trial and trial_settings.is_globally_enabled
    trial_start, trial_end = trial_settings.trial_window(utcnow())
    credits = MessCredits(
        mess_id=mess_id,
        total_credits=initial_credits + (trial_settings.trial_credits if trial else 0),
        used_credits=0,
        is_trial_active=trial,
        trial_start_date=trial_start if trial else None,
        trial_end_date=trial_end if trial else None,
        status="trial" if trial else "active",
    )
    credits.recompute()
    db.add(credits)
    if trial:
        db.add(
            CreditTransaction(
                mess_id=mess_id,
                type="trial",
                amount=trial_settings.trial_credits,
                description=f"Free trial activated - {trial_settings.trial_duration_days} days",
                status="completed",
            )
        )
    db.flush()
    return credits


def activate_free_trial(db: Session, mess_id: uuid.UUID) -> MessCredits:
    with atomic(db):
        trial_settings = get_trial_settings(db)
        if not trial_settings.is_globally_enabled:
            raise ValidationError("Free trials are currently disabled")

        credits = get_mess_credits(db, mess_id)
        if credits.in_active_trial():
            raise ValidationError("Trial is already active")

        previous_trials = (
            db.query(func.count(CreditTransaction.id))
            .filter(CreditTransaction.mess_id == mess_id, CreditTransaction.type == "trial")
            .scalar()
            or 0
        )
        if previous_trials >= trial_settings.max_trials_per_mess:
            raise ValidationError("Maximum trial limit reached")

        credits.is_trial_active = True
        credits.trial_start_date, credits.trial_end_date = trial_settings.trial_window(utcnow())
        credits.status = "trial"
        credits.add_credits(trial_settings.trial_credits)
        db.add(
            CreditTransaction(
                mess_id=mess_id,
                type="trial",
                amount=trial_settings.trial_credits,
                description=f"Free trial activated - {trial_settings.trial_duration_days} days",
                status="completed",
            )
        )
    db.refresh(credits)
    logger.info("Free trial activated for mess %s", mess_id)
    return credits


def purchase_credits(
    db: Session, mess_id: uuid.UUID, plan_id: uuid.UUID, payment_reference: str | None = None
) -> MessCredits:
    with atomic(db):
        plan = db.get(CreditPurchasePlan, plan_id)
        if plan is None or not plan.is_active:
            raise ValidationError("Invalid or inactive credit plan")

        credits = get_mess_credits(db, mess_id)
        credits.add_credits(plan.total_credits)
        if credits.status == "expired":
            credits.status = "active"
        db.add(
            CreditTransaction(
                mess_id=mess_id,
                plan_id=plan.id,
                type="purchase",
                amount=plan.total_credits,
                description=f"Credit purchase - {plan.name}",
                reference_id=payment_reference,
                status="completed",
            )
        )
    db.refresh(credits)
    logger.info("Mess %s purchased %s credits (plan %s)", mess_id, plan.total_credits, plan.id)
    return credits


def adjust_credits(
    db: Session, mess_id: uuid.UUID, amount: int, description: str, processed_by: User
) -> MessCredits:
    if amount == 0:
        raise ValidationError("Adjustment amount must not be zero")
    with atomic(db):
        credits = get_mess_credits(db, mess_id)
        if amount > 0:
            credits.add_credits(amount)
        else:
            try:
                credits.deduct_credits(abs(amount))
            except ValueError:
                raise ValidationError("Adjustment exceeds available credits")
        db.add(
            CreditTransaction(
                mess_id=mess_id,
                type="adjustment",
                amount=amount,
                description=description,
                processed_by=processed_by.id,
                status="completed",
            )
        )
    db.refresh(credits)
    logger.info("Admin %s adjusted credits of mess %s by %s", processed_by.id, mess_id, amount)
    return credits


def mess_credits_details(db: Session, mess_id: uuid.UUID) -> dict[str, Any]:
    with atomic(db):
        credits = get_mess_credits(db, mess_id)
    recent = (
        db.query(CreditTransaction)
        .filter(CreditTransaction.mess_id == mess_id)
        .order_by(CreditTransaction.created_at.desc())
        .limit(10)
        .all()
    )
    user_count = active_member_count(db, mess_id)
    try:
        next_billing_amount = calculate_tiered_credits(db, user_count)["total_credits"]
    except ValidationError:
        logger.warning("Could not price the next bill for mess %s", mess_id)
        next_billing_amount = 0
    return {
        "credits": serialize_credits(credits),
        "recent_transactions": [serialize_credit_transaction(row) for row in recent],
        "current_user_count": user_count,
        "next_billing_amount": next_billing_amount,
        "is_low_credit": credits.available_credits < credits.low_credit_threshold,
    }


def calculate_monthly_bill(db: Session, mess_id: uuid.UUID) -> dict[str, Any]:
    """Price a month of service for every member active right now."""
    credits = get_mess_credits(db, mess_id)
    user_count = active_member_count(db, mess_id)
    tiers = calculate_tiered_credits(db, user_count)
    return {
        "mess_id": str(mess_id),
        "user_count": user_count,
        "total_credits": tiers["total_credits"],
        "breakdown": tiers["breakdown"],
        "can_afford": credits.available_credits >= tiers["total_credits"],
        "available_credits": credits.available_credits,
    }


def generate_pending_bill(db: Session, mess_id: uuid.UUID) -> dict[str, Any]:
    with atomic(db):
        bill = calculate_monthly_bill(db, mess_id)
        credits = get_mess_credits(db, mess_id)
        credits.pending_bill_amount = bill["total_credits"]
        credits.monthly_user_count = bill["user_count"]
    db.refresh(credits)
    logger.info("Pending bill generated for mess %s: %s credits", mess_id, bill["total_credits"])
    return {"bill": bill, "credits": serialize_credits(credits)}


def _close_billing_cycle(db: Session, credits: MessCredits, amount: int) -> None:
    now = utcnow()
    credits.last_billing_date = now
    credits.next_billing_date = now + BILLING_PERIOD
    credits.last_billing_amount = amount
    credits.pending_bill_amount = 0
    # baseline for the next cycle
    credits.monthly_user_count = active_member_count(db, credits.mess_id)
    credits.status = "active"


def pay_pending_bill(db: Session, mess_id: uuid.UUID) -> Outcome:
    with atomic(db):
        credits = get_mess_credits(db, mess_id)
        amount = credits.pending_bill_amount or 0
        if amount <= 0:
            raise ValidationError("No pending bill to pay")
        if credits.available_credits < amount:
            raise InsufficientCreditsError(
                amount,
                credits.available_credits,
                message=(
                    f"Insufficient credits to pay bill. You need {amount} credits "
                    f"but only have {credits.available_credits} available."
                ),
            )

        credits.deduct_credits(amount)
        entry = CreditTransaction(
            mess_id=mess_id,
            type="deduction",
            amount=-amount,
            description=f"Monthly billing for {credits.monthly_user_count} users",
            meta={
                "user_count": credits.monthly_user_count,
                "billing_period": {
                    "start_date": iso(credits.last_billing_date or utcnow()),
                    "end_date": iso(utcnow()),
                },
            },
            status="completed",
        )
        db.add(entry)
        _close_billing_cycle(db, credits, amount)
        db.flush()
        alerts = credit_alerts(db, credits)
    db.refresh(credits)
    logger.info("Pending bill of %s credits paid for mess %s", amount, mess_id)
    return Outcome(
        data={
            "credits_deducted": amount,
            "credits": serialize_credits(credits),
            "transaction": serialize_credit_transaction(entry),
        },
        notifications=alerts,
    )


def process_monthly_bill(db: Session, mess_id: uuid.UUID) -> Outcome:
    """Charge the current monthly bill straight away."""
    with atomic(db):
        credits = get_mess_credits(db, mess_id)
        if credits.in_active_trial():
            raise ValidationError("Cannot process bill during active trial period")

        bill = calculate_monthly_bill(db, mess_id)
        amount = bill["total_credits"]
        if credits.available_credits < amount:
            raise InsufficientCreditsError(
                amount,
                credits.available_credits,
                message=f"Insufficient credits. Need {amount}, have {credits.available_credits}",
            )

        credits.deduct_credits(amount)
        entry = CreditTransaction(
            mess_id=mess_id,
            type="deduction",
            amount=-amount,
            description="Monthly billing: "
            + "; ".join(f"{row['users']} users @ {row['credits_per_user']} credits" for row in bill["breakdown"]),
            meta={
                "breakdown": bill["breakdown"],
                "user_count": bill["user_count"],
                "billing_period": "monthly",
            },
            status="completed",
        )
        db.add(entry)
        _close_billing_cycle(db, credits, amount)
        db.flush()
        alerts = credit_alerts(db, credits)
    db.refresh(credits)
    logger.info(
        "Monthly bill processed for mess %s: %s credits for %s members", mess_id, amount, bill["user_count"]
    )
    return Outcome(
        data={
            "credits_deducted": amount,
            "remaining_credits": credits.available_credits,
            "user_count": bill["user_count"],
            "transaction": serialize_credit_transaction(entry),
        },
        notifications=alerts,
    )


def _check_slab_overlap(
    db: Session, min_users: int, max_users: int, exclude_id: uuid.UUID | None = None
) -> None:
    if min_users < 1 or max_users < min_users:
        raise ValidationError("Slab range must satisfy 1 <= min_users <= max_users")
    query = db.query(CreditSlab).filter(
        CreditSlab.is_active.is_(True),
        and_(CreditSlab.min_users <= max_users, CreditSlab.max_users >= min_users),
    )
    if exclude_id is not None:
        query = query.filter(CreditSlab.id != exclude_id)
    if query.first() is not None:
        raise ValidationError("Credit slab range overlaps with existing slab")


def create_slab(
    db: Session, *, min_users: int, max_users: int, credits_per_user: int, created_by: User
) -> CreditSlab:
    with atomic(db):
        _check_slab_overlap(db, min_users, max_users)
        slab = CreditSlab(
            min_users=min_users,
            max_users=max_users,
            credits_per_user=credits_per_user,
            is_active=True,
            created_by=created_by.id,
        )
        db.add(slab)
    db.refresh(slab)
    return slab


def update_slab(db: Session, slab_id: uuid.UUID, changes: dict[str, Any]) -> CreditSlab:
    with atomic(db):
        slab = db.get(CreditSlab, slab_id)
        if slab is None:
            raise NotFoundError("Credit slab not found")
        for key in ("min_users", "max_users", "credits_per_user", "is_active"):
            if changes.get(key) is not None:
                setattr(slab, key, changes[key])
        if slab.is_active:
            _check_slab_overlap(db, slab.min_users, slab.max_users, exclude_id=slab.id)
    db.refresh(slab)
    return slab


def delete_slab(db: Session, slab_id: uuid.UUID) -> None:
    slab = db.get(CreditSlab, slab_id)
    if slab is None:
        raise NotFoundError("Credit slab not found")
    db.delete(slab)
    db.commit()


def list_purchase_plans(db: Session, *, active_only: bool = True) -> list[CreditPurchasePlan]:
    query = db.query(CreditPurchasePlan)
    if active_only:
        query = query.filter(CreditPurchasePlan.is_active.is_(True))
    return query.order_by(CreditPurchasePlan.price.asc()).all()


def save_purchase_plan(
    db: Session, values: dict[str, Any], plan_id: uuid.UUID | None = None
) -> CreditPurchasePlan:
    if plan_id is None:
        plan = CreditPurchasePlan()
        db.add(plan)
    else:
        plan = db.get(CreditPurchasePlan, plan_id)
        if plan is None:
            raise NotFoundError("Credit purchase plan not found")
    for key, value in values.items():
        if value is not None:
            setattr(plan, key, value)
    db.commit()
    db.refresh(plan)
    return plan


def delete_purchase_plan(db: Session, plan_id: uuid.UUID) -> None:
    plan = db.get(CreditPurchasePlan, plan_id)
    if plan is None:
        raise NotFoundError("Credit purchase plan not found")
    db.delete(plan)
    db.commit()


def serialize_credits(credits: MessCredits) -> dict[str, Any]:
    return {
        "id": str(credits.id),
        "mess_id": str(credits.mess_id),
        "total_credits": credits.total_credits,
        "used_credits": credits.used_credits,
        "available_credits": credits.available_credits,
        "is_trial_active": credits.is_trial_active,
        "trial_start_date": iso(credits.trial_start_date),
        "trial_end_date": iso(credits.trial_end_date),
        "is_trial_expired": credits.is_trial_expired(),
        "status": credits.status,
        "low_credit_threshold": credits.low_credit_threshold,
        "monthly_user_count": credits.monthly_user_count,
        "last_billing_date": iso(credits.last_billing_date),
        "next_billing_date": iso(credits.next_billing_date),
        "last_billing_amount": credits.last_billing_amount,
        "pending_bill_amount": credits.pending_bill_amount,
        "can_access_paid_features": credits.can_access_paid_features(),
    }


def serialize_credit_transaction(row: CreditTransaction) -> dict[str, Any]:
    return {
        "id": str(row.id),
        "mess_id": str(row.mess_id),
        "plan_id": str(row.plan_id) if row.plan_id else None,
        "type": row.type,
        "amount": row.amount,
        "description": row.description,
        "reference_id": row.reference_id,
        "metadata": row.meta or {},
        "status": row.status,
        "created_at": iso(row.created_at),
    }


def serialize_slab(slab: CreditSlab) -> dict[str, Any]:
    return {
        "id": str(slab.id),
        "min_users": slab.min_users,
        "max_users": slab.max_users,
        "credits_per_user": slab.credits_per_user,
        "is_active": slab.is_active,
    }


def serialize_purchase_plan(plan: CreditPurchasePlan) -> dict[str, Any]:
    return {
        "id": str(plan.id),
        "name": plan.name,
        "description": plan.description,
        "base_credits": plan.base_credits,
        "bonus_credits": plan.bonus_credits,
        "total_credits": plan.total_credits,
        "price": float(plan.price),
        "currency": plan.currency,
        "is_active": plan.is_active,
        "is_popular": plan.is_popular,
    }
