import uuid

import pytest

from smartmess.core.exceptions import NotFoundError
from smartmess.models import CreditTransaction, MessMembership, Notification, PaymentVerification, Transaction
from smartmess.services import credit_service, payment_request_service

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture()
def verification(client, auth_headers, member, mess, plan):
    response = client.post(
        "/api/payment-verification",
        data={
            "mess_id": str(mess.id),
            "meal_plan_id": str(plan.id),
            "amount": "3000",
            "payment_method": "upi",
            "transaction_id": "UPI-778812",
        },
        files={"payment_screenshot": ("receipt.png", PNG_BYTES, "image/png")},
        headers=auth_headers(member),
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


def test_submission_stores_screenshot_and_notifies_owner(db, owner, upload_dir, verification):
    stored = list((upload_dir / "payment-screenshots").iterdir())
    assert len(stored) == 1
    assert stored[0].suffix == ".png"
    assert verification["status"] == "pending"

    notification = db.query(Notification).filter(Notification.user_id == owner.id).one()
    assert notification.type == "payment_request"
    assert notification.data["payment_verification_id"] == verification["id"]
    membership = db.query(MessMembership).one()
    assert membership.payment_request_status == "sent"


def test_non_image_screenshot_is_rejected(client, db, auth_headers, member, mess, plan, upload_dir):
    response = client.post(
        "/api/payment-verification",
        data={"mess_id": str(mess.id), "meal_plan_id": str(plan.id), "amount": "3000", "payment_method": "upi"},
        files={"payment_screenshot": ("receipt.pdf", b"%PDF-1.4", "application/pdf")},
        headers=auth_headers(member),
    )
    assert response.status_code == 400
    assert db.query(PaymentVerification).count() == 0
    assert not (upload_dir / "payment-screenshots").exists() or not any(
        (upload_dir / "payment-screenshots").iterdir()
    )


def test_second_pending_verification_is_rejected(client, auth_headers, member, mess, plan, verification):
    response = client.post(
        "/api/payment-verification",
        data={"mess_id": str(mess.id), "meal_plan_id": str(plan.id), "amount": "3000", "payment_method": "cash"},
        headers=auth_headers(member),
    )
    assert response.status_code == 400


def test_approval_creates_exactly_one_transaction(
    client, db, auth_headers, owner, member, paid_credits, verification
):
    response = client.put(
        f"/api/payment-verification/{verification['id']}",
        json={"status": "approved"},
        headers=auth_headers(owner),
    )
    assert response.status_code == 200, response.text
    data = response.json()["data"]
    assert data["transaction_id"] == "UPI-778812"
    assert data["credits_deducted"] == 10
    assert data["remaining_credits"] == 90

    membership_id = verification["membership_id"]
    again = client.post(f"/api/payment-requests/{membership_id}/approve", headers=auth_headers(owner))
    assert again.status_code == 400
    assert again.json()["message"] == "This payment request has already been approved"

    db.expire_all()
    transactions = db.query(Transaction).all()
    assert len(transactions) == 1
    assert transactions[0].gateway_name == "UPI"
    assert transactions[0].payment_method == "upi"
    assert db.query(CreditTransaction).filter(CreditTransaction.type == "deduction").count() == 1

    membership = db.query(MessMembership).one()
    assert membership.status == "active"
    assert membership.payment_status == "paid"
    assert len(membership.payment_history) == 1
    row = db.query(PaymentVerification).one()
    assert row.status == "approved"
    assert row.verified_by == owner.id

    success = db.query(Notification).filter(Notification.user_id == member.id).one()
    assert success.type == "payment_success"


def test_direct_approval_generates_transaction_id(client, db, auth_headers, owner, member, mess, plan):
    created = client.post(
        "/api/join-requests",
        json={"mess_id": str(mess.id), "meal_plan_id": str(plan.id), "payment_type": "pay_now"},
        headers=auth_headers(member),
    ).json()["data"]

    response = client.post(
        f"/api/payment-requests/{created['membership_id']}/approve",
        json={"payment_method": "cash"},
        headers=auth_headers(owner),
    )
    assert response.status_code == 200
    transaction_id = response.json()["data"]["transaction_id"]
    assert transaction_id.startswith("TXN_")

    db.expire_all()
    transaction = db.query(Transaction).one()
    assert transaction.gateway_name == "Cash"
    assert float(transaction.amount) == 3000


def test_rejection_requires_reason(client, db, auth_headers, owner, member, verification):
    url = f"/api/payment-verification/{verification['id']}"

    missing = client.put(url, json={"status": "rejected"}, headers=auth_headers(owner))
    assert missing.status_code == 400

    response = client.put(
        url, json={"status": "rejected", "rejection_reason": "Amount does not match"}, headers=auth_headers(owner)
    )
    assert response.status_code == 200

    db.expire_all()
    row = db.query(PaymentVerification).one()
    assert row.status == "rejected"
    assert row.rejection_reason == "Amount does not match"
    assert db.query(Transaction).count() == 0
    failed = db.query(Notification).filter(Notification.user_id == member.id).one()
    assert failed.type == "payment_failed"
    assert failed.priority == "urgent"


def test_owner_views_and_stats(client, auth_headers, owner, member, mess, verification):
    listed = client.get(f"/api/payment-verification/mess/{mess.id}?status=pending", headers=auth_headers(owner))
    assert listed.status_code == 200
    assert [row["id"] for row in listed.json()["data"]] == [verification["id"]]

    stats = client.get(f"/api/payment-verification/stats/{mess.id}", headers=auth_headers(owner))
    assert stats.json()["data"] == {
        "total": 1,
        "pending": 1,
        "approved": 0,
        "rejected": 0,
        "total_approved_amount": 0.0,
    }

    mine = client.get("/api/payment-verification/user", headers=auth_headers(member))
    assert len(mine.json()["data"]) == 1

    forbidden = client.get(f"/api/payment-verification/stats/{mess.id}", headers=auth_headers(member))
    assert forbidden.status_code == 403


def test_transactions_listing(client, auth_headers, owner, member, mess, verification):
    client.put(
        f"/api/payment-verification/{verification['id']}",
        json={"status": "approved"},
        headers=auth_headers(owner),
    )
    mine = client.get("/api/transactions", headers=auth_headers(member))
    assert mine.status_code == 200
    assert mine.json()["data"][0]["gateway"]["name"] == "UPI"

    view = client.get(f"/api/transactions/mess/{mess.id}", headers=auth_headers(owner))
    assert len(view.json()["data"]) == 1


def test_failed_approval_rolls_back_deduction(client, db, auth_headers, owner, member, mess, plan, paid_credits):
    created = client.post(
        "/api/join-requests",
        json={"mess_id": str(mess.id), "meal_plan_id": str(plan.id), "payment_type": "pay_now"},
        headers=auth_headers(member),
    ).json()["data"]

    with pytest.raises(NotFoundError):
        payment_request_service.approve_payment_request(
            db, owner, uuid.UUID(created["membership_id"]), verification_id=uuid.uuid4()
        )

    db.expire_all()
    assert db.query(CreditTransaction).filter(CreditTransaction.type == "deduction").count() == 0
    assert credit_service.get_mess_credits(db, mess.id).available_credits == 100
    assert db.query(MessMembership).one().status == "pending"
    assert db.query(Transaction).count() == 0
    assert db.query(Notification).filter(Notification.type == "low_credit_warning").count() == 0
