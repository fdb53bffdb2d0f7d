import json
import uuid
from datetime import date, datetime, timedelta

import pytest

from smartmess.core.exceptions import PermissionDeniedError, ValidationError
from smartmess.core.utils import utcnow
from smartmess.models import MealActivation, MessMembership
from smartmess.services import qr_service


@pytest.fixture()
def subscribed(db, mess, plan, member):
    membership = MessMembership(
        user_id=member.id, mess_id=mess.id, meal_plan_id=plan.id, status="active", payment_amount=3000
    )
    db.add(membership)
    db.commit()
    return membership


def test_signature_detects_tampering():
    payload = qr_service.build_payload(
        user_id="u1", mess_id="m1", meal_id="meal1", meal_plan_id="p1", meal_type="lunch",
        day=date(2026, 3, 4), timestamp=1700000000000,
    )
    assert qr_service.verify_signature(payload)

    tampered = dict(payload, meal_type="dinner")
    assert not qr_service.verify_signature(tampered)
    assert not qr_service.verify_signature({k: v for k, v in payload.items() if k != "signature"})


def test_expiration_uses_local_meal_cutoff():
    # 16:00 at UTC+05:30 is 10:30 UTC
    assert qr_service.expiration_time("lunch", date(2026, 3, 4)) == datetime(2026, 3, 4, 10, 30)
    assert qr_service.expiration_time("breakfast", date(2026, 3, 4)) == datetime(2026, 3, 4, 5, 30)


def test_meal_windows():
    assert qr_service.is_valid_meal_time("breakfast", datetime(2026, 3, 4, 6, 0))
    assert not qr_service.is_valid_meal_time("breakfast", datetime(2026, 3, 4, 11, 0))
    assert qr_service.is_valid_meal_time("dinner", datetime(2026, 3, 4, 21, 59))
    assert not qr_service.is_valid_meal_time("snacks", datetime(2026, 3, 4, 12, 0))


def test_generate_requires_subscription(db, member, make_meal, tomorrow):
    meal = make_meal("lunch", tomorrow)
    with pytest.raises(PermissionDeniedError):
        qr_service.generate(db, member, meal_id=meal.id, meal_type="lunch", day=tomorrow)


def test_generate_reuses_open_code(db, member, subscribed, make_meal, tomorrow):
    meal = make_meal("lunch", tomorrow)
    first = qr_service.generate(db, member, meal_id=meal.id, meal_type="lunch", day=tomorrow)
    second = qr_service.generate(db, member, meal_id=meal.id, meal_type="lunch", day=tomorrow)

    assert first["activation_id"] == second["activation_id"]
    assert first["qr_code"].startswith("data:image/png;base64,")
    payload = json.loads(first["qr_code_data"])
    assert payload["meal_type"] == "lunch"
    assert payload["date"] == tomorrow.isoformat()


def test_code_activates_only_once(db, member, subscribed, make_meal, tomorrow):
    meal = make_meal("dinner", tomorrow)
    generated = qr_service.generate(db, member, meal_id=meal.id, meal_type="dinner", day=tomorrow)

    result = qr_service.activate(db, generated["qr_code_data"], member, scanner_type="user")
    assert result["activation"]["scanner_type"] == "user"
    assert result["meal_info"]["type"] == "dinner"

    with pytest.raises(ValidationError, match="not found or already used"):
        qr_service.activate(db, generated["qr_code_data"], member, scanner_type="user")
    with pytest.raises(ValidationError, match="already activated"):
        qr_service.generate(db, member, meal_id=meal.id, meal_type="dinner", day=tomorrow)


def test_owner_scan_checks_window_and_ownership(
    db, monkeypatch, owner, member, make_user, subscribed, make_meal, tomorrow
):
    meal = make_meal("breakfast", tomorrow)
    generated = qr_service.generate(db, member, meal_id=meal.id, meal_type="breakfast", day=tomorrow)

    stranger = make_user("mess-owner")
    with pytest.raises(PermissionDeniedError):
        qr_service.activate(db, generated["qr_code_data"], stranger)

    monkeypatch.setattr(qr_service, "is_valid_meal_time", lambda meal_type, now=None: False)
    with pytest.raises(ValidationError, match="not the right time for breakfast"):
        qr_service.activate(db, generated["qr_code_data"], owner)

    monkeypatch.setattr(qr_service, "is_valid_meal_time", lambda meal_type, now=None: True)
    result = qr_service.activate(db, generated["qr_code_data"], owner)
    assert result["activation"]["scanned_by"] == str(owner.id)


def test_expired_code_is_marked_expired(db, member, subscribed, make_meal, tomorrow):
    meal = make_meal("lunch", tomorrow)
    generated = qr_service.generate(db, member, meal_id=meal.id, meal_type="lunch", day=tomorrow)
    activation = db.get(MealActivation, uuid.UUID(generated["activation_id"]))
    activation.expires_at = utcnow() - timedelta(minutes=1)
    db.commit()

    with pytest.raises(ValidationError, match="expired"):
        qr_service.activate(db, generated["qr_code_data"], member, scanner_type="user")
    db.refresh(activation)
    assert activation.status == "expired"


def test_forged_payload_is_rejected(db, member, subscribed, make_meal, tomorrow):
    meal = make_meal("lunch", tomorrow)
    generated = qr_service.generate(db, member, meal_id=meal.id, meal_type="lunch", day=tomorrow)
    payload = json.loads(generated["qr_code_data"])
    payload["signature"] = "0" * 64

    with pytest.raises(ValidationError, match="Invalid QR code signature"):
        qr_service.activate(db, json.dumps(payload), member, scanner_type="user")
    with pytest.raises(ValidationError, match="Invalid QR code format"):
        qr_service.activate(db, "not-json", member, scanner_type="user")
