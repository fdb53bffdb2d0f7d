from datetime import datetime, timedelta

import pytest

from smartmess.core.exceptions import PermissionDeniedError, ValidationError
from smartmess.models import MessMembership, Notification
from smartmess.services import membership_service, notification_service


def test_subscription_end_follows_plan_period():
    start = datetime(2026, 1, 31, 9, 0)
    assert membership_service.subscription_end(start, "daily") == datetime(2026, 2, 1, 9, 0)
    assert membership_service.subscription_end(start, "weekly") == datetime(2026, 2, 7, 9, 0)
    assert membership_service.subscription_end(start, "15days") == datetime(2026, 2, 15, 9, 0)
    assert membership_service.subscription_end(start, "monthly") == datetime(2026, 2, 28, 9, 0)
    assert membership_service.subscription_end(start, "3months") == datetime(2026, 4, 30, 9, 0)
    assert membership_service.subscription_end(start, "yearly") == datetime(2027, 1, 31, 9, 0)
    assert membership_service.subscription_end(start, "fortnightly") == datetime(2026, 2, 28, 9, 0)


def test_overdue_membership_accrues_weekly_late_fee():
    now = datetime(2026, 5, 20)
    membership = MessMembership(
        payment_status="pending", payment_amount=3000, payment_due_date=now - timedelta(days=10)
    )
    assert membership.refresh_payment_state(now) is True
    assert membership.payment_status == "overdue"
    assert membership.late_fees == 300


def test_membership_not_yet_due_stays_pending():
    now = datetime(2026, 5, 20)
    membership = MessMembership(
        payment_status="pending", payment_amount=3000, payment_due_date=now + timedelta(days=1)
    )
    assert membership.refresh_payment_state(now) is False
    assert membership.payment_status == "pending"


def test_successful_payment_clears_late_fees():
    membership = MessMembership(payment_status="overdue", payment_amount=3000, late_fees=150)
    membership.add_payment(3150, "upi", "success", transaction_id="TXN_1")
    assert membership.payment_status == "paid"
    assert membership.late_fees == 0
    assert len(membership.payment_history) == 1


def test_manual_paid_override_records_payment(db, owner, mess, plan, member):
    membership = MessMembership(
        user_id=member.id, mess_id=mess.id, meal_plan_id=plan.id, status="active", payment_amount=3000
    )
    db.add(membership)
    db.commit()

    updated = membership_service.update_payment_status(
        db, owner, membership.id, payment_status="paid", payment_method="cash", notes="Paid at counter"
    )
    assert updated.payment_status == "paid"
    assert updated.payment_history[-1].notes == "Paid at counter"

    with pytest.raises(ValidationError):
        membership_service.update_payment_status(db, owner, membership.id, payment_status="lost")


def test_reminder_increments_count_and_notifies(db, owner, mess, plan, member, make_user):
    membership = MessMembership(
        user_id=member.id,
        mess_id=mess.id,
        meal_plan_id=plan.id,
        status="active",
        payment_status="pending",
        payment_amount=3000,
    )
    db.add(membership)
    db.commit()

    outcome = membership_service.send_payment_reminder(db, owner, membership.id)
    assert outcome.data["reminder_sent_count"] == 1
    notification = db.query(Notification).filter(Notification.user_id == member.id).one()
    assert notification.type == "payment_reminder"
    assert notification.priority == "high"
    assert notification.expires_at is not None

    with pytest.raises(PermissionDeniedError):
        membership_service.send_payment_reminder(db, make_user("mess-owner"), membership.id)


def test_notification_priority_by_type():
    assert notification_service.derive_priority("payment_overdue") == "high"
    assert notification_service.derive_priority("payment_failed") == "urgent"
    assert notification_service.derive_priority("bill_due") == "urgent"
    assert notification_service.derive_priority("join_request") == "medium"
    assert notification_service.derive_priority("general") == "low"
