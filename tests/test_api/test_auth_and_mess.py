from smartmess.models import ChatRoom, MessCredits


def test_register_login_and_me(client):
    registered = client.post(
        "/api/auth/register",
        json={"name": "Ravi", "email": "Ravi@Example.com", "password": "longpassword", "role": "mess-owner"},
    )
    assert registered.status_code == 201
    assert registered.json()["data"]["user"]["email"] == "ravi@example.com"

    duplicate = client.post(
        "/api/auth/register",
        json={"name": "Ravi", "email": "ravi@example.com", "password": "longpassword"},
    )
    assert duplicate.status_code == 400

    bad = client.post("/api/auth/login", json={"email": "ravi@example.com", "password": "wrong"})
    assert bad.status_code == 401

    login = client.post("/api/auth/login", json={"email": "ravi@example.com", "password": "longpassword"})
    token = login.json()["data"]["access_token"]
    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.json()["data"]["role"] == "mess-owner"


def test_admin_role_cannot_self_register(client):
    response = client.post(
        "/api/auth/register",
        json={"name": "Eve", "email": "eve@example.com", "password": "longpassword", "role": "admin"},
    )
    assert response.status_code == 422
    assert response.json()["data"]["errors"][0]["field"] == "role"


def test_invalid_token_is_rejected(client):
    response = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_create_mess_initialises_credits_and_chat(client, db, auth_headers, owner):
    response = client.post(
        "/api/mess", json={"name": "Green Leaf", "city": "Nagpur"}, headers=auth_headers(owner)
    )
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["credits"]["is_trial_active"] is True

    db.expire_all()
    assert db.query(MessCredits).count() == 1
    assert db.query(ChatRoom).one().name == "Green Leaf Community"

    again = client.post("/api/mess", json={"name": "Second"}, headers=auth_headers(owner))
    assert again.status_code == 400


def test_member_cannot_create_mess(client, auth_headers, member):
    response = client.post("/api/mess", json={"name": "Nope"}, headers=auth_headers(member))
    assert response.status_code == 403


def test_meal_plan_and_meal_crud(client, auth_headers, owner, member, mess, tomorrow):
    headers = auth_headers(owner)
    created = client.post(
        "/api/meal-plans",
        json={"name": "Lunch Only", "pricing_amount": 1500, "pricing_period": "monthly",
              "meals_per_day": 1, "meal_types": ["lunch"]},
        headers=headers,
    )
    assert created.status_code == 201
    plan = created.json()["data"]
    assert plan["pricing"] == {"amount": 1500.0, "period": "monthly"}

    invalid = client.post(
        "/api/meal-plans",
        json={"name": "Odd", "pricing_amount": 10, "pricing_period": "hourly"},
        headers=headers,
    )
    assert invalid.status_code == 400

    meal = client.post(
        "/api/meals",
        json={"name": "Veg thali", "meal_type": "lunch", "date": tomorrow.isoformat(),
              "meal_plan_ids": [plan["id"]]},
        headers=headers,
    )
    assert meal.status_code == 201
    assert meal.json()["data"]["meal_plan_ids"] == [plan["id"]]

    listed = client.get(f"/api/meals/mess/{mess.id}?date={tomorrow.isoformat()}", headers=auth_headers(member))
    assert len(listed.json()["data"]) == 1

    deleted = client.delete(f"/api/meal-plans/{plan['id']}", headers=headers)
    assert deleted.json()["data"]["is_active"] is False
    public = client.get(f"/api/meal-plans/mess/{mess.id}", headers=auth_headers(member))
    assert public.json()["data"] == []


def test_credit_endpoints(client, auth_headers, owner, admin, mess):
    details = client.get("/api/credits/mess", headers=auth_headers(owner))
    assert details.status_code == 200
    assert details.json()["data"]["credits"]["available_credits"] == 100

    calc = client.get("/api/credits/calculate?user_count=60", headers=auth_headers(owner))
    assert calc.json()["data"]["total_credits"] == 580

    plans = client.get("/api/credits/plans", headers=auth_headers(owner)).json()["data"]
    assert {p["name"] for p in plans} == {"Starter", "Growth", "Pro"}

    denied = client.post(
        "/api/credits/slabs",
        json={"min_users": 1001, "max_users": 5000, "credits_per_user": 5},
        headers=auth_headers(owner),
    )
    assert denied.status_code == 403
    slab = client.post(
        "/api/credits/slabs",
        json={"min_users": 1001, "max_users": 5000, "credits_per_user": 5},
        headers=auth_headers(admin),
    )
    assert slab.status_code == 201

    adjusted = client.post(
        f"/api/credits/mess/{mess.id}/adjust",
        json={"amount": 50, "description": "Goodwill"},
        headers=auth_headers(admin),
    )
    assert adjusted.json()["data"]["available_credits"] == 150


def test_bill_endpoints(client, auth_headers, owner, member, mess, paid_credits):
    headers = auth_headers(owner)

    empty = client.post("/api/credits/bill/pay", headers=headers)
    assert empty.status_code == 400
    assert empty.json()["message"] == "No pending bill to pay"

    bill = client.get("/api/credits/bill", headers=headers)
    assert bill.status_code == 200
    assert bill.json()["data"]["user_count"] == 0

    generated = client.post("/api/credits/bill/generate", headers=headers)
    assert generated.json()["data"]["credits"]["pending_bill_amount"] == 0

    processed = client.post("/api/credits/bill/process", headers=headers)
    assert processed.status_code == 200
    assert processed.json()["data"]["credits_deducted"] == 0

    details = client.get("/api/credits/mess", headers=headers).json()["data"]
    assert details["credits"]["next_billing_date"] is not None
    assert details["next_billing_amount"] == 0

    assert client.get("/api/credits/bill", headers=auth_headers(member)).status_code == 403
