from datetime import timedelta

import pytest

from smartmess.core.utils import local_now, utcnow
from smartmess.models import MessMembership, Transaction


@pytest.fixture()
def active_membership(db, member, mess, plan):
    start = utcnow()
    membership = MessMembership(
        user_id=member.id,
        mess_id=mess.id,
        meal_plan_id=plan.id,
        status="active",
        payment_status="paid",
        payment_amount=3000,
        subscription_start_date=start,
        subscription_end_date=start + timedelta(days=30),
    )
    db.add(membership)
    db.commit()
    db.refresh(membership)
    return membership


def _leave(plan, start, days=2, meal_types=("lunch", "dinner")):
    return {
        "meal_plan_ids": [str(plan.id)],
        "start_date": start.isoformat(),
        "end_date": (start + timedelta(days=days - 1)).isoformat(),
        "meal_types": list(meal_types),
    }


def test_preview_counts_missed_meals(client, auth_headers, member, plan, active_membership, tomorrow):
    response = client.post("/api/leave-requests/preview", json=_leave(plan, tomorrow), headers=auth_headers(member))
    assert response.status_code == 200
    row = response.json()["data"]["plans"][0]
    assert row["meals_missed"] == 4
    assert row["extension_days"] == 2


def test_leave_extends_subscription(client, db, auth_headers, member, plan, active_membership, tomorrow):
    original_end = active_membership.subscription_end_date

    response = client.post("/api/leave-requests", json=_leave(plan, tomorrow), headers=auth_headers(member))
    assert response.status_code == 201

    db.expire_all()
    membership = db.get(MessMembership, active_membership.id)
    assert membership.subscription_end_date == original_end + timedelta(days=2)
    assert membership.leave_extension_meals == 4
    credit = db.query(Transaction).one()
    assert credit.type == "leave_credit"
    assert float(credit.amount) == 0

    overlap = client.post("/api/leave-requests", json=_leave(plan, tomorrow), headers=auth_headers(member))
    assert overlap.status_code == 400


def test_cancel_reverses_extension(client, db, auth_headers, member, plan, active_membership, tomorrow):
    original_end = active_membership.subscription_end_date
    created = client.post("/api/leave-requests", json=_leave(plan, tomorrow), headers=auth_headers(member))
    leave_id = created.json()["data"][0]["id"]

    response = client.delete(f"/api/leave-requests/{leave_id}", headers=auth_headers(member))
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "cancelled"

    db.expire_all()
    membership = db.get(MessMembership, active_membership.id)
    assert membership.subscription_end_date == original_end
    assert membership.leave_extension_meals == 0

    listed = client.get("/api/leave-requests", headers=auth_headers(member))
    assert [row["status"] for row in listed.json()["data"]] == ["cancelled"]


def test_leave_in_the_past_is_refused(client, auth_headers, member, plan, active_membership):
    yesterday = local_now().date() - timedelta(days=1)
    response = client.post("/api/leave-requests", json=_leave(plan, yesterday), headers=auth_headers(member))
    assert response.status_code == 400


def test_leave_requires_active_subscription(client, auth_headers, make_user, plan, tomorrow):
    response = client.post("/api/leave-requests", json=_leave(plan, tomorrow), headers=auth_headers(make_user()))
    assert response.status_code == 400
