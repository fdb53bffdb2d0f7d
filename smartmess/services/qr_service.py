"""
Signed QR codes for meal activation.

A code covers one (user, meal, meal type, day). Its payload is a JSON
document signed with HMAC-SHA256, and the stored activation moves from
``generated`` to ``activated`` or ``expired`` exactly once.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
import uuid
from datetime import date, datetime
from io import BytesIO
from typing import Any

import qrcode
from sqlalchemy import func
from sqlalchemy.orm import Session

from smartmess.config import settings
from smartmess.core.exceptions import (
    AlreadyProcessedError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from smartmess.core.logger import get_logger
from smartmess.core.utils import iso, local_now, local_to_utc, utcnow
from smartmess.models import (
    MEAL_TYPES,
    Meal,
    MealActivation,
    MessMembership,
    MessProfile,
    User,
    meal_plan_meals,
)

logger = get_logger(__name__)

SCANNER_TYPES = ("user", "mess_owner")

# Local hour at which a day's code for the meal type stops being valid.
EXPIRY_HOURS = {"breakfast": 11, "lunch": 16, "dinner": 22}

# Local [start, end) hours in which a mess owner may scan the meal type.
MEAL_WINDOWS = {"breakfast": (6, 11), "lunch": (11, 16), "dinner": (16, 22)}

SIGNED_FIELDS = ("user_id", "mess_id", "meal_id", "meal_plan_id", "meal_type", "date", "timestamp")


def _secret() -> bytes:
    return settings.qr_secret_key.get_secret_value().encode("utf-8")


def sign_payload(payload: dict[str, Any]) -> str:
    message = ":".join(str(payload[key]) for key in SIGNED_FIELDS)
    return hmac.new(_secret(), message.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature(payload: dict[str, Any]) -> bool:
    signature = payload.get("signature")
    if not isinstance(signature, str):
        return False
    return hmac.compare_digest(sign_payload(payload), signature)


def build_payload(
    *,
    user_id: uuid.UUID,
    mess_id: uuid.UUID,
    meal_id: uuid.UUID,
    meal_plan_id: uuid.UUID,
    meal_type: str,
    day: date,
    timestamp: int | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "user_id": str(user_id),
        "mess_id": str(mess_id),
        "meal_id": str(meal_id),
        "meal_plan_id": str(meal_plan_id),
        "meal_type": meal_type,
        "date": day.isoformat(),
        "timestamp": timestamp if timestamp is not None else int(time.time() * 1000),
    }
    payload["signature"] = sign_payload(payload)
    return payload


def render_qr_data_url(data: str) -> str:
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=8,
        border=1,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffer = BytesIO()
    img.save(buffer, "PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def expiration_time(meal_type: str, day: date) -> datetime:
    """Naive UTC instant at which a code for ``meal_type`` on ``day`` expires."""
    hour = EXPIRY_HOURS.get(meal_type)
    if hour is None:
        local = datetime.combine(day, datetime.max.time())
    else:
        local = datetime(day.year, day.month, day.day, hour)
    return local_to_utc(local)


def is_valid_meal_time(meal_type: str, now: datetime | None = None) -> bool:
    window = MEAL_WINDOWS.get(meal_type)
    if window is None:
        return False
    hour = (now or local_now()).hour
    return window[0] <= hour < window[1]


def generate(
    db: Session, user: User, *, meal_id: uuid.UUID, meal_type: str, day: date | None = None
) -> dict[str, Any]:
    if meal_type not in MEAL_TYPES:
        raise ValidationError(f"Invalid meal type: {meal_type}")
    day = day or local_now().date()

    meal = db.get(Meal, meal_id)
    if meal is None:
        raise NotFoundError("Meal not found")

    plan_ids = [plan.id for plan in meal.meal_plans]
    subscription = None
    if plan_ids:
        subscription = (
            db.query(MessMembership)
            .filter(
                MessMembership.user_id == user.id,
                MessMembership.mess_id == meal.mess_id,
                MessMembership.status == "active",
                MessMembership.meal_plan_id.in_(plan_ids),
            )
            .first()
        )
    if subscription is None:
        raise PermissionDeniedError("No active subscription found for this meal")
    if not meal.is_available or meal.meal_type != meal_type:
        raise ValidationError("Meal not found or not available for your subscription")

    now = utcnow()
    existing = (
        db.query(MealActivation)
        .filter(
            MealActivation.user_id == user.id,
            MealActivation.meal_id == meal.id,
            MealActivation.meal_type == meal_type,
            MealActivation.activation_date == day,
            MealActivation.status.in_(("generated", "activated")),
        )
        .first()
    )
    if existing is not None:
        if existing.status == "activated":
            raise ValidationError("You have already activated this meal today")
        if existing.expires_at > now:
            return serialize_generated(existing)
        existing.status = "expired"
        db.commit()

    expires_at = expiration_time(meal_type, day)
    if expires_at <= now:
        raise ValidationError(f"The {meal_type} window for {day.isoformat()} has closed")

    payload = build_payload(
        user_id=user.id,
        mess_id=meal.mess_id,
        meal_id=meal.id,
        meal_plan_id=subscription.meal_plan_id,
        meal_type=meal_type,
        day=day,
    )
    encoded = json.dumps(payload, separators=(",", ":"))
    activation = MealActivation(
        user_id=user.id,
        mess_id=meal.mess_id,
        meal_id=meal.id,
        meal_plan_id=subscription.meal_plan_id,
        meal_type=meal_type,
        activation_date=day,
        qr_code=render_qr_data_url(encoded),
        qr_payload=encoded,
        status="generated",
        expires_at=expires_at,
    )
    db.add(activation)
    db.commit()
    db.refresh(activation)
    logger.info("QR code %s generated for user %s meal %s (%s)", activation.id, user.id, meal.id, meal_type)
    return serialize_generated(activation)


def _parse_payload(qr_data: str) -> tuple[dict[str, Any], dict[str, Any]]:
    try:
        payload = json.loads(qr_data)
        if not isinstance(payload, dict):
            raise TypeError("payload must be an object")
        keys = {
            "user_id": uuid.UUID(payload["user_id"]),
            "mess_id": uuid.UUID(payload["mess_id"]),
            "meal_id": uuid.UUID(payload["meal_id"]),
            "meal_type": str(payload["meal_type"]),
            "date": date.fromisoformat(payload["date"]),
        }
        if any(key not in payload for key in SIGNED_FIELDS):
            raise KeyError("signed field missing")
    except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError):
        raise ValidationError("Invalid QR code format")
    return payload, keys


def activate(db: Session, qr_data: str, scanner: User, scanner_type: str = "mess_owner") -> dict[str, Any]:
    if scanner_type not in SCANNER_TYPES:
        raise ValidationError(f"Invalid scanner type: {scanner_type}")

    payload, keys = _parse_payload(qr_data)
    if not verify_signature(payload):
        raise ValidationError("Invalid QR code signature")

    if scanner_type == "mess_owner":
        mess = db.get(MessProfile, keys["mess_id"])
        if scanner.role != "admin" and (mess is None or mess.owner_id != scanner.id):
            raise PermissionDeniedError("You can only scan QR codes for your own mess")
    elif scanner.id != keys["user_id"]:
        raise PermissionDeniedError("You can only activate your own QR codes")

    activation = (
        db.query(MealActivation)
        .filter(
            MealActivation.user_id == keys["user_id"],
            MealActivation.mess_id == keys["mess_id"],
            MealActivation.meal_id == keys["meal_id"],
            MealActivation.meal_type == keys["meal_type"],
            MealActivation.activation_date == keys["date"],
            MealActivation.status == "generated",
        )
        .first()
    )
    if activation is None:
        raise ValidationError("QR code not found or already used")

    now = utcnow()
    if activation.expires_at < now:
        activation.status = "expired"
        db.commit()
        raise ValidationError("QR code has expired")

    if scanner_type == "mess_owner" and not is_valid_meal_time(keys["meal_type"]):
        raise ValidationError(f"It's not the right time for {keys['meal_type']}")

    updated = (
        db.query(MealActivation)
        .filter(MealActivation.id == activation.id, MealActivation.status == "generated")
        .update(
            {
                MealActivation.status: "activated",
                MealActivation.scanned_by: scanner.id,
                MealActivation.scanned_at: now,
                MealActivation.scanner_type: scanner_type,
                MealActivation.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    if updated != 1:
        db.rollback()
        raise AlreadyProcessedError("QR code not found or already used")
    db.commit()
    db.refresh(activation)

    logger.info(
        "Meal activation %s activated by %s (%s)", activation.id, scanner.id, scanner_type
    )
    meal = activation.meal
    return {
        "activation": {
            "id": str(activation.id),
            "user_id": str(activation.user_id),
            "meal_type": activation.meal_type,
            "activated_at": iso(activation.scanned_at),
            "scanned_by": str(activation.scanned_by),
            "scanner_type": activation.scanner_type,
        },
        "meal_info": {
            "name": meal.name,
            "type": meal.meal_type,
            "description": meal.description,
            "image_url": meal.image_url,
        }
        if meal
        else None,
    }


def history(db: Session, user: User, limit: int = 50) -> list[dict[str, Any]]:
    rows = (
        db.query(MealActivation)
        .filter(MealActivation.user_id == user.id, MealActivation.status == "activated")
        .order_by(MealActivation.scanned_at.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "id": str(row.id),
            "meal_type": row.meal_type,
            "activated_at": iso(row.scanned_at),
            "meal": _meal_summary(row.meal),
            "mess_id": str(row.mess_id),
            "scanned_by": str(row.scanned_by) if row.scanned_by else None,
        }
        for row in rows
    ]


def active_for_day(db: Session, user: User, day: date | None = None) -> list[dict[str, Any]]:
    day = day or local_now().date()
    rows = (
        db.query(MealActivation)
        .filter(
            MealActivation.user_id == user.id,
            MealActivation.activation_date == day,
            MealActivation.status.in_(("generated", "activated")),
        )
        .order_by(MealActivation.created_at.desc())
        .all()
    )
    return [
        {
            "id": str(row.id),
            "meal_type": row.meal_type,
            "status": row.status,
            "qr_code": row.qr_code,
            "expires_at": iso(row.expires_at),
            "activated_at": iso(row.scanned_at),
            "meal": _meal_summary(row.meal),
            "mess_id": str(row.mess_id),
        }
        for row in rows
    ]


def stats(db: Session, owner: User, day: date | None = None, meal_type: str | None = None) -> dict[str, Any]:
    mess = db.query(MessProfile).filter(MessProfile.owner_id == owner.id).first()
    if mess is None:
        raise PermissionDeniedError("Only mess owners can view activation statistics")
    day = day or local_now().date()

    query = db.query(MealActivation.meal_type, MealActivation.status, func.count(MealActivation.id)).filter(
        MealActivation.mess_id == mess.id, MealActivation.activation_date == day
    )
    if meal_type:
        query = query.filter(MealActivation.meal_type == meal_type)
    rows = query.group_by(MealActivation.meal_type, MealActivation.status).all()

    by_status: dict[str, int] = {}
    breakdown: list[dict[str, Any]] = []
    for row_type, row_status, count in rows:
        by_status[row_status] = by_status.get(row_status, 0) + count
        breakdown.append({"meal_type": row_type, "status": row_status, "count": count})

    total = sum(by_status.values())
    activated = by_status.get("activated", 0)
    return {
        "summary": {
            "total_generated": total,
            "total_activated": activated,
            "total_expired": by_status.get("expired", 0),
            "pending": by_status.get("generated", 0),
            "activation_rate": round(activated / total * 100, 2) if total else 0,
        },
        "meal_type_breakdown": breakdown,
    }


def today_meals(db: Session, user: User, day: date | None = None) -> list[dict[str, Any]]:
    day = day or local_now().date()
    subscriptions = (
        db.query(MessMembership)
        .filter(MessMembership.user_id == user.id, MessMembership.status == "active")
        .all()
    )
    if not subscriptions:
        return []

    mess_ids = {sub.mess_id for sub in subscriptions}
    plan_ids = {sub.meal_plan_id for sub in subscriptions}
    meals = (
        db.query(Meal)
        .join(meal_plan_meals, meal_plan_meals.c.meal_id == Meal.id)
        .filter(
            Meal.mess_id.in_(mess_ids),
            Meal.date == day,
            Meal.is_available.is_(True),
            meal_plan_meals.c.meal_plan_id.in_(plan_ids),
        )
        .distinct()
        .all()
    )
    taken = {
        row.meal_id
        for row in db.query(MealActivation.meal_id).filter(
            MealActivation.user_id == user.id,
            MealActivation.activation_date == day,
            MealActivation.status.in_(("generated", "activated")),
        )
    }
    mess_names = dict(
        db.query(MessProfile.id, MessProfile.name).filter(MessProfile.id.in_(mess_ids)).all()
    )
    return [
        {
            **_meal_summary(meal),
            "mess_id": str(meal.mess_id),
            "mess_name": mess_names.get(meal.mess_id),
            "has_qr_code": meal.id in taken,
            "can_generate": meal.id not in taken,
        }
        for meal in meals
    ]


def _meal_summary(meal: Meal | None) -> dict[str, Any] | None:
    if meal is None:
        return None
    return {
        "id": str(meal.id),
        "name": meal.name,
        "type": meal.meal_type,
        "description": meal.description,
        "image_url": meal.image_url,
    }


def serialize_generated(activation: MealActivation) -> dict[str, Any]:
    return {
        "activation_id": str(activation.id),
        "qr_code": activation.qr_code,
        "qr_code_data": activation.qr_payload,
        "status": activation.status,
        "expires_at": iso(activation.expires_at),
    }
