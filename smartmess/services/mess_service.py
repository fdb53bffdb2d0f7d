from __future__ import annotations

import uuid
from datetime import date
from typing import Any

from sqlalchemy.orm import Session

from smartmess.core.exceptions import NotFoundError, ValidationError
from smartmess.core.logger import get_logger
from smartmess.core.utils import iso
from smartmess.database import atomic
from smartmess.models import MEAL_TYPES, PLAN_PERIODS, Meal, MealPlan, MessProfile, User
from smartmess.services import chat_service, credit_service
from smartmess.services.membership_service import get_mess_of_owner, get_owned_mess

logger = get_logger(__name__)

MESS_FIELDS = ("name", "address", "city", "phone", "upi_id")
PLAN_FIELDS = ("name", "description", "pricing_amount", "pricing_period", "meals_per_day", "meal_types", "leave_rules")


def create_mess(db: Session, owner: User, values: dict[str, Any]) -> MessProfile:
    if db.query(MessProfile.id).filter(MessProfile.owner_id == owner.id).first():
        raise ValidationError("You already have a mess profile")
    with atomic(db):
        mess = MessProfile(owner_id=owner.id, **{k: values.get(k) for k in MESS_FIELDS})
        db.add(mess)
        db.flush()
        credit_service.initialize_mess_credits(db, mess.id)
        chat_service.ensure_default_room(db, mess)
    db.refresh(mess)
    logger.info("Mess %s created by owner %s", mess.id, owner.id)
    return mess


def update_mess(db: Session, owner: User, values: dict[str, Any]) -> MessProfile:
    mess = get_mess_of_owner(db, owner)
    for key in MESS_FIELDS:
        if values.get(key) is not None:
            setattr(mess, key, values[key])
    db.commit()
    db.refresh(mess)
    return mess


def get_mess(db: Session, mess_id: uuid.UUID) -> MessProfile:
    mess = db.get(MessProfile, mess_id)
    if mess is None:
        raise NotFoundError("Mess not found")
    return mess


def list_messes(db: Session, city: str | None = None) -> list[MessProfile]:
    query = db.query(MessProfile)
    if city:
        query = query.filter(MessProfile.city.ilike(f"%{city}%"))
    return query.order_by(MessProfile.name.asc()).all()


def _validate_plan_values(values: dict[str, Any]) -> None:
    period = values.get("pricing_period")
    if period is not None and period not in PLAN_PERIODS:
        raise ValidationError(f"Invalid pricing period: {period}")
    meal_types = values.get("meal_types")
    if meal_types is not None and (not meal_types or any(t not in MEAL_TYPES for t in meal_types)):
        raise ValidationError("meal_types must be a non-empty subset of breakfast, lunch, dinner")
    amount = values.get("pricing_amount")
    if amount is not None and amount < 0:
        raise ValidationError("Price must not be negative")


def create_meal_plan(db: Session, owner: User, values: dict[str, Any]) -> MealPlan:
    _validate_plan_values(values)
    mess = get_mess_of_owner(db, owner)
    plan = MealPlan(mess_id=mess.id, is_active=True)
    for key in PLAN_FIELDS:
        if values.get(key) is not None:
            setattr(plan, key, values[key])
    db.add(plan)
    db.commit()
    db.refresh(plan)
    logger.info("Meal plan %s created for mess %s", plan.id, mess.id)
    return plan


def _owned_plan(db: Session, owner: User, plan_id: uuid.UUID) -> MealPlan:
    plan = db.get(MealPlan, plan_id)
    if plan is None:
        raise NotFoundError("Meal plan not found")
    get_owned_mess(db, owner, plan.mess_id)
    return plan


def update_meal_plan(db: Session, owner: User, plan_id: uuid.UUID, values: dict[str, Any]) -> MealPlan:
    _validate_plan_values(values)
    plan = _owned_plan(db, owner, plan_id)
    for key in PLAN_FIELDS + ("is_active",):
        if values.get(key) is not None:
            setattr(plan, key, values[key])
    db.commit()
    db.refresh(plan)
    return plan


def deactivate_meal_plan(db: Session, owner: User, plan_id: uuid.UUID) -> MealPlan:
    plan = _owned_plan(db, owner, plan_id)
    plan.is_active = False
    db.commit()
    db.refresh(plan)
    logger.info("Meal plan %s deactivated", plan_id)
    return plan


def list_meal_plans(db: Session, mess_id: uuid.UUID, include_inactive: bool = False) -> list[MealPlan]:
    query = db.query(MealPlan).filter(MealPlan.mess_id == mess_id)
    if not include_inactive:
        query = query.filter(MealPlan.is_active.is_(True))
    return query.order_by(MealPlan.pricing_amount.asc()).all()


def _plans_for_mess(db: Session, mess: MessProfile, plan_ids: list[uuid.UUID]) -> list[MealPlan]:
    plans = db.query(MealPlan).filter(MealPlan.id.in_(plan_ids)).all() if plan_ids else []
    if len(plans) != len(set(plan_ids)) or any(p.mess_id != mess.id for p in plans):
        raise ValidationError("Every meal plan must belong to your mess")
    return plans


def create_meal(db: Session, owner: User, values: dict[str, Any]) -> Meal:
    if values.get("meal_type") not in MEAL_TYPES:
        raise ValidationError(f"Invalid meal type: {values.get('meal_type')}")
    mess = get_mess_of_owner(db, owner)
    meal = Meal(
        mess_id=mess.id,
        name=values["name"],
        description=values.get("description"),
        meal_type=values["meal_type"],
        date=values["date"],
        is_available=values.get("is_available", True),
        image_url=values.get("image_url"),
    )
    meal.meal_plans = _plans_for_mess(db, mess, values.get("meal_plan_ids") or [])
    db.add(meal)
    db.commit()
    db.refresh(meal)
    logger.info("Meal %s (%s on %s) created for mess %s", meal.id, meal.meal_type, meal.date, mess.id)
    return meal


def update_meal(db: Session, owner: User, meal_id: uuid.UUID, values: dict[str, Any]) -> Meal:
    meal = db.get(Meal, meal_id)
    if meal is None:
        raise NotFoundError("Meal not found")
    mess = get_owned_mess(db, owner, meal.mess_id)
    if values.get("meal_type") is not None and values["meal_type"] not in MEAL_TYPES:
        raise ValidationError(f"Invalid meal type: {values['meal_type']}")
    for key in ("name", "description", "meal_type", "date", "is_available", "image_url"):
        if values.get(key) is not None:
            setattr(meal, key, values[key])
    if values.get("meal_plan_ids") is not None:
        meal.meal_plans = _plans_for_mess(db, mess, values["meal_plan_ids"])
    db.commit()
    db.refresh(meal)
    return meal


def delete_meal(db: Session, owner: User, meal_id: uuid.UUID) -> None:
    meal = db.get(Meal, meal_id)
    if meal is None:
        raise NotFoundError("Meal not found")
    get_owned_mess(db, owner, meal.mess_id)
    db.delete(meal)
    db.commit()


def list_meals(
    db: Session, mess_id: uuid.UUID, day: date | None = None, meal_type: str | None = None
) -> list[Meal]:
    query = db.query(Meal).filter(Meal.mess_id == mess_id)
    if day:
        query = query.filter(Meal.date == day)
    if meal_type:
        query = query.filter(Meal.meal_type == meal_type)
    return query.order_by(Meal.date.asc(), Meal.meal_type.asc()).all()


def serialize_mess(mess: MessProfile) -> dict[str, Any]:
    return {
        "id": str(mess.id),
        "owner_id": str(mess.owner_id),
        "name": mess.name,
        "address": mess.address,
        "city": mess.city,
        "phone": mess.phone,
        "upi_id": mess.upi_id,
        "created_at": iso(mess.created_at),
    }


def serialize_meal_plan(plan: MealPlan) -> dict[str, Any]:
    return {
        "id": str(plan.id),
        "mess_id": str(plan.mess_id),
        "name": plan.name,
        "description": plan.description,
        "pricing": {"amount": float(plan.pricing_amount), "period": plan.pricing_period},
        "meals_per_day": plan.meals_per_day,
        "meal_types": plan.meal_types or [],
        "leave_rules": plan.leave_rules or {},
        "is_active": plan.is_active,
    }


def serialize_meal(meal: Meal) -> dict[str, Any]:
    return {
        "id": str(meal.id),
        "mess_id": str(meal.mess_id),
        "name": meal.name,
        "description": meal.description,
        "meal_type": meal.meal_type,
        "date": meal.date.isoformat(),
        "is_available": meal.is_available,
        "image_url": meal.image_url,
        "meal_plan_ids": [str(plan.id) for plan in meal.meal_plans],
    }
