import pytest

from smartmess.services.notification_service import create_notification


@pytest.fixture()
def inbox(db, member, mess):
    rows = [
        create_notification(db, user_id=member.id, mess_id=mess.id, type="general", title="Hello", message="Welcome"),
        create_notification(
            db, user_id=member.id, mess_id=mess.id, type="payment_reminder", title="Due", message="Pay soon"
        ),
    ]
    db.commit()
    return [str(row.id) for row in rows]


def test_list_and_filter(client, auth_headers, member, inbox):
    response = client.get("/api/notifications", headers=auth_headers(member))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 2

    filtered = client.get("/api/notifications?type=payment_reminder", headers=auth_headers(member))
    rows = filtered.json()["data"]["notifications"]
    assert len(rows) == 1
    assert rows[0]["priority"] == "high"
    assert rows[0]["expires_at"] is not None


def test_read_flow(client, auth_headers, member, inbox):
    headers = auth_headers(member)
    assert client.get("/api/notifications/unread-count", headers=headers).json()["data"]["count"] == 2

    read = client.put(f"/api/notifications/{inbox[0]}/read", headers=headers)
    assert read.json()["data"]["is_read"] is True
    assert client.get("/api/notifications/unread-count", headers=headers).json()["data"]["count"] == 1

    everything = client.put("/api/notifications/read-all", headers=headers)
    assert everything.json()["data"]["updated"] == 1
    assert client.get("/api/notifications?is_read=false", headers=headers).json()["data"]["total"] == 0


def test_notifications_are_private(client, auth_headers, make_user, inbox):
    other = make_user()
    assert client.get(f"/api/notifications/{inbox[0]}", headers=auth_headers(other)).status_code == 403
    assert client.delete(f"/api/notifications/{inbox[0]}", headers=auth_headers(other)).status_code == 403


def test_delete_own_notification(client, auth_headers, member, inbox):
    headers = auth_headers(member)
    assert client.delete(f"/api/notifications/{inbox[0]}", headers=headers).status_code == 200
    assert client.get(f"/api/notifications/{inbox[0]}", headers=headers).status_code == 404


def test_owner_sends_direct_notification(client, auth_headers, owner, member, mess):
    payload = {
        "user_id": str(member.id),
        "type": "mess_off_day",
        "title": "Closed on Sunday",
        "message": "The mess is closed this Sunday.",
        "mess_id": str(mess.id),
    }
    response = client.post("/api/notifications/create", json=payload, headers=auth_headers(owner))
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["data"]["sent_by"] == str(owner.id)
    assert data["status"] == "completed"

    denied = client.post("/api/notifications/create", json=payload, headers=auth_headers(member))
    assert denied.status_code == 403


def test_requires_authentication(client):
    response = client.get("/api/notifications")
    assert response.status_code == 401
    assert response.json()["success"] is False
