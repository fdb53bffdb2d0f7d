"""
Leave credits. Meals a member skips while on leave are paid back by pushing
the subscription end date out, one day per ``meals_per_day`` missed meals.
"""
from __future__ import annotations

import math
import uuid
from datetime import date, timedelta
from typing import Any

from sqlalchemy.orm import Session

from smartmess.config import settings
from smartmess.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from smartmess.core.logger import get_logger
from smartmess.core.utils import iso, local_now
from smartmess.database import atomic
from smartmess.models import MEAL_TYPES, MealPlan, MessMembership, Transaction, User, UserLeave
from smartmess.services.payment_request_service import generate_transaction_id
from smartmess.services.qr_service import MEAL_WINDOWS

logger = get_logger(__name__)


def _validate_request(start_date: date, end_date: date, meal_types: list[str]) -> list[str]:
    if end_date < start_date:
        raise ValidationError("End date must not be before start date")
    today = local_now().date()
    if start_date < today:
        raise ValidationError("Leave cannot start in the past")

    requested = list(dict.fromkeys(meal_types))
    unknown = [t for t in requested if t not in MEAL_TYPES]
    if unknown or not requested:
        raise ValidationError("meal_types must be a non-empty subset of breakfast, lunch, dinner")

    if start_date == today:
        hour = local_now().hour
        closed = [t for t in requested if hour >= MEAL_WINDOWS[t][1]]
        if closed:
            raise ValidationError(
                f"Leave cannot be applied for today's {', '.join(closed)}: the meal window has ended"
            )
    return requested


def _plan_breakdown(
    db: Session, user: User, meal_plan_ids: list[uuid.UUID], start_date: date, end_date: date, meal_types: list[str]
) -> list[tuple[MessMembership, MealPlan, int, int]]:
    if not meal_plan_ids:
        raise ValidationError("At least one meal plan is required")
    days = (end_date - start_date).days + 1
    rows = []
    for plan_id in dict.fromkeys(meal_plan_ids):
        membership = (
            db.query(MessMembership)
            .filter(
                MessMembership.user_id == user.id,
                MessMembership.meal_plan_id == plan_id,
                MessMembership.status == "active",
            )
            .first()
        )
        if membership is None:
            raise ValidationError("No active subscription found for one of the selected meal plans")
        plan = db.get(MealPlan, plan_id)
        plan_types = set(plan.meal_types or MEAL_TYPES)
        meals_missed = days * len(plan_types.intersection(meal_types))
        per_day = max(plan.meals_per_day or 1, 1)
        extension_days = math.ceil(meals_missed / per_day) if meals_missed else 0
        rows.append((membership, plan, meals_missed, extension_days))
    return rows


def preview_leave(
    db: Session, user: User, *, meal_plan_ids: list[uuid.UUID], start_date: date, end_date: date, meal_types: list[str]
) -> dict[str, Any]:
    requested = _validate_request(start_date, end_date, meal_types)
    rows = _plan_breakdown(db, user, meal_plan_ids, start_date, end_date, requested)
    return {
        "start_date": start_date.isoformat(),
        "end_date": end_date.isoformat(),
        "meal_types": requested,
        "plans": [
            {
                "meal_plan_id": str(plan.id),
                "meal_plan_name": plan.name,
                "meals_missed": meals_missed,
                "extension_days": extension_days,
                "current_end_date": iso(membership.subscription_end_date),
                "new_end_date": iso(
                    membership.subscription_end_date + timedelta(days=extension_days)
                    if membership.subscription_end_date
                    else None
                ),
            }
            for membership, plan, meals_missed, extension_days in rows
        ],
        "total_meals_missed": sum(row[2] for row in rows),
    }


def apply_leave(
    db: Session,
    user: User,
    *,
    meal_plan_ids: list[uuid.UUID],
    start_date: date,
    end_date: date,
    meal_types: list[str],
    reason: str | None = None,
) -> list[UserLeave]:
    requested = _validate_request(start_date, end_date, meal_types)
    with atomic(db):
        rows = _plan_breakdown(db, user, meal_plan_ids, start_date, end_date, requested)
        leaves = []
        for membership, plan, meals_missed, extension_days in rows:
            overlapping = (
                db.query(UserLeave.id)
                .filter(
                    UserLeave.membership_id == membership.id,
                    UserLeave.status == "approved",
                    UserLeave.start_date <= end_date,
                    UserLeave.end_date >= start_date,
                )
                .first()
            )
            if overlapping is not None:
                raise ValidationError(f"A leave already covers part of these dates for {plan.name}")

            leave = UserLeave(
                user_id=user.id,
                mess_id=membership.mess_id,
                membership_id=membership.id,
                meal_plan_id=plan.id,
                start_date=start_date,
                end_date=end_date,
                meal_types=requested,
                meals_missed=meals_missed,
                extension_days=extension_days,
                status="approved",
                reason=reason,
            )
            db.add(leave)
            if membership.subscription_end_date:
                membership.subscription_end_date += timedelta(days=extension_days)
            membership.leave_extension_meals = (membership.leave_extension_meals or 0) + meals_missed
            db.add(
                Transaction(
                    transaction_id=generate_transaction_id(),
                    user_id=user.id,
                    mess_id=membership.mess_id,
                    membership_id=membership.id,
                    type="leave_credit",
                    amount=0,
                    currency=settings.currency,
                    status="success",
                    payment_method="adjustment",
                    gateway_name="Leave",
                    description=(
                        f"Leave credit: {meals_missed} meal(s) from {start_date.isoformat()} "
                        f"to {end_date.isoformat()}, subscription extended by {extension_days} day(s)"
                    ),
                    meta={"meals_missed": meals_missed, "extension_days": extension_days},
                )
            )
            leaves.append(leave)
    for leave in leaves:
        db.refresh(leave)
    logger.info("User %s applied %s leave(s) from %s to %s", user.id, len(leaves), start_date, end_date)
    return leaves


def list_leaves(db: Session, user: User) -> list[UserLeave]:
    return (
        db.query(UserLeave)
        .filter(UserLeave.user_id == user.id)
        .order_by(UserLeave.start_date.desc())
        .all()
    )


def cancel_leave(db: Session, user: User, leave_id: uuid.UUID) -> UserLeave:
    with atomic(db):
        leave = db.get(UserLeave, leave_id)
        if leave is None:
            raise NotFoundError("Leave not found")
        if leave.user_id != user.id:
            raise PermissionDeniedError("You can only cancel your own leaves")
        if leave.status != "approved":
            raise ValidationError("This leave is already cancelled")
        if leave.start_date <= local_now().date():
            raise ValidationError("Only leaves that have not started can be cancelled")

        membership = db.get(MessMembership, leave.membership_id)
        if membership is not None:
            if membership.subscription_end_date:
                membership.subscription_end_date -= timedelta(days=leave.extension_days)
            membership.leave_extension_meals = max(
                0, (membership.leave_extension_meals or 0) - leave.meals_missed
            )
        leave.status = "cancelled"
    db.refresh(leave)
    logger.info("Leave %s cancelled by %s", leave_id, user.id)
    return leave


def serialize_leave(leave: UserLeave) -> dict[str, Any]:
    return {
        "id": str(leave.id),
        "mess_id": str(leave.mess_id),
        "membership_id": str(leave.membership_id),
        "meal_plan_id": str(leave.meal_plan_id),
        "start_date": leave.start_date.isoformat(),
        "end_date": leave.end_date.isoformat(),
        "meal_types": leave.meal_types or [],
        "meals_missed": leave.meals_missed,
        "extension_days": leave.extension_days,
        "status": leave.status,
        "reason": leave.reason,
        "created_at": iso(leave.created_at),
    }
