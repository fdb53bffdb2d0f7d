import uuid

import pytest

from smartmess.core.exceptions import AlreadyProcessedError, ConcurrencyConflictError
from smartmess.models import ChatRoomMember, CreditTransaction, MessMembership, Notification
from smartmess.services import credit_service, join_request_service


@pytest.fixture()
def join_request(client, auth_headers, member, mess, plan):
    response = client.post(
        "/api/join-requests",
        json={"mess_id": str(mess.id), "meal_plan_id": str(plan.id), "payment_type": "pay_later"},
        headers=auth_headers(member),
    )
    assert response.status_code == 201
    return response.json()["data"]


def test_join_request_notifies_owner(db, owner, join_request):
    notification = db.query(Notification).filter(Notification.user_id == owner.id).one()
    assert notification.type == "join_request"
    assert notification.status == "pending"
    assert notification.priority == "medium"
    assert notification.data["membership_id"] == join_request["membership_id"]
    assert notification.data["plan"] == "Full Board"


def test_duplicate_join_request_is_rejected(client, auth_headers, member, mess, plan, join_request):
    response = client.post(
        "/api/join-requests",
        json={"mess_id": str(mess.id), "meal_plan_id": str(plan.id)},
        headers=auth_headers(member),
    )
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_approve_deducts_credits_once(client, db, auth_headers, owner, member, mess, paid_credits, join_request):
    url = f"/api/join-requests/{join_request['notification_id']}/approve"

    first = client.post(url, json={"remarks": "Welcome"}, headers=auth_headers(owner))
    assert first.status_code == 200
    body = first.json()
    assert body["success"] is True
    assert body["data"]["credit_deduction"] == {"credits_deducted": 10, "remaining_credits": 90}

    second = client.post(url, headers=auth_headers(owner))
    assert second.status_code == 400
    assert second.json()["message"] == "This join request has already been approved"

    db.expire_all()
    assert db.query(CreditTransaction).filter(CreditTransaction.type == "deduction").count() == 1
    membership = db.query(MessMembership).filter(MessMembership.user_id == member.id).one()
    assert membership.status == "active"
    assert membership.payment_status == "pending"
    assert membership.payment_request_status == "approved"
    assert membership.payment_due_date is not None
    assert membership.subscription_end_date > membership.subscription_start_date
    assert db.query(ChatRoomMember).filter(ChatRoomMember.user_id == member.id).count() == 1

    reply = (
        db.query(Notification)
        .filter(Notification.user_id == member.id, Notification.type == "join_request")
        .one()
    )
    assert reply.status == "completed"


def test_insufficient_credits_block_approval(client, db, auth_headers, owner, member, paid_credits, join_request):
    paid_credits.total_credits = 0
    paid_credits.recompute()
    db.commit()

    response = client.post(
        f"/api/join-requests/{join_request['notification_id']}/approve", headers=auth_headers(owner)
    )
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "INSUFFICIENT_CREDITS"
    assert body["data"]["required_credits"] == 10
    assert body["data"]["available_credits"] == 0

    db.expire_all()
    membership = db.query(MessMembership).filter(MessMembership.user_id == member.id).one()
    assert membership.status == "pending"
    request = db.query(Notification).filter(Notification.user_id == owner.id).one()
    assert request.status == "pending"
    assert db.query(CreditTransaction).filter(CreditTransaction.type == "deduction").count() == 0


def test_reject_then_approve_fails(client, db, auth_headers, owner, member, join_request):
    base = f"/api/join-requests/{join_request['notification_id']}"

    rejected = client.post(f"{base}/reject", json={"remarks": "Plan is full"}, headers=auth_headers(owner))
    assert rejected.status_code == 200

    approved = client.post(f"{base}/approve", headers=auth_headers(owner))
    assert approved.status_code == 400
    assert approved.json()["message"] == "This join request has already been rejected"

    db.expire_all()
    membership = db.query(MessMembership).filter(MessMembership.user_id == member.id).one()
    assert membership.status == "inactive"
    reply = db.query(Notification).filter(Notification.user_id == member.id).one()
    assert reply.status == "rejected"
    assert "Plan is full" in reply.message


def test_other_owner_cannot_approve(client, auth_headers, make_user, join_request):
    stranger = make_user("mess-owner")
    response = client.post(
        f"/api/join-requests/{join_request['notification_id']}/approve", headers=auth_headers(stranger)
    )
    assert response.status_code == 404


def test_member_cannot_approve(client, auth_headers, member, join_request):
    response = client.post(
        f"/api/join-requests/{join_request['notification_id']}/approve", headers=auth_headers(member)
    )
    assert response.status_code == 403


def test_admin_expires_stale_requests(client, db, auth_headers, admin, owner, member, join_request):
    membership = db.query(MessMembership).filter(MessMembership.user_id == member.id).one()
    membership.request_expiry_date = membership.created_at.replace(year=2000)
    db.commit()

    response = client.post("/api/credits/expire-requests", headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json()["data"] == {"expired_memberships": 1, "expired_notifications": 1}

    db.expire_all()
    assert db.query(MessMembership).count() == 0
    assert db.query(Notification).filter(Notification.user_id == owner.id).one().status == "expired"


def test_racing_approvals_commit_once(session_factory, db, owner, member, mess, paid_credits, join_request):
    notification_id = uuid.UUID(join_request["notification_id"])
    first, second = session_factory(), session_factory()
    try:
        for session in (first, second):
            session.get(Notification, notification_id)
            session.query(MessMembership).filter(MessMembership.user_id == member.id).one()
            credit_service.get_mess_credits(session, mess.id)

        join_request_service.approve_join_request(first, owner, notification_id)
        with pytest.raises((AlreadyProcessedError, ConcurrencyConflictError)):
            join_request_service.approve_join_request(second, owner, notification_id)
    finally:
        first.close()
        second.close()

    db.expire_all()
    assert db.query(CreditTransaction).filter(CreditTransaction.type == "deduction").count() == 1
    assert credit_service.get_mess_credits(db, mess.id).available_credits == 90
    assert db.query(MessMembership).filter(MessMembership.user_id == member.id).one().status == "active"


def test_approval_below_threshold_warns_owner(client, db, auth_headers, owner, paid_credits, join_request):
    response = client.post(
        f"/api/join-requests/{join_request['notification_id']}/approve", headers=auth_headers(owner)
    )
    assert response.status_code == 200

    db.expire_all()
    warning = (
        db.query(Notification)
        .filter(Notification.user_id == owner.id, Notification.type == "low_credit_warning")
        .one()
    )
    assert warning.data["available_credits"] == 90
    assert warning.data["threshold"] == 100
    assert warning.priority == "medium"
