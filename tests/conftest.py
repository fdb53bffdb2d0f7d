import os
import sys
from datetime import date, timedelta
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault('APP_ENV', 'test')
os.environ.setdefault('DATABASE_URL', 'sqlite:///./smartmess-test.db')
os.environ.setdefault('SECRET_KEY', 'test-secret-key')
os.environ.setdefault('QR_SECRET_KEY', 'test-qr-secret')

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from smartmess.config import settings  # noqa: E402
from smartmess.core.security import create_access_token, hash_password  # noqa: E402
from smartmess.core.utils import local_now  # noqa: E402
from smartmess.database import get_db, init_db  # noqa: E402
from smartmess.main import app  # noqa: E402
from smartmess.models import Meal, MealPlan, User  # noqa: E402
from smartmess.services import credit_service, mess_service  # noqa: E402


@pytest.fixture()
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'smartmess.db'}",
        connect_args={"check_same_thread": False},
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def upload_dir(tmp_path, monkeypatch):
    target = tmp_path / "uploads"
    monkeypatch.setattr(settings, "upload_dir", target)
    return target


@pytest.fixture()
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def make_user(db):
    counter = {"n": 0}

    def _make(role="user", name=None):
        counter["n"] += 1
        user = User(
            name=name or f"{role.title()} {counter['n']}",
            email=f"{role}{counter['n']}@example.com",
            role=role,
            password_hash=hash_password("secret-pass", iterations=1000),
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture()
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token(user)}"}

    return _headers


@pytest.fixture()
def owner(make_user):
    return make_user("mess-owner", name="Owner")


@pytest.fixture()
def member(make_user):
    return make_user("user", name="Asha")


@pytest.fixture()
def admin(make_user):
    return make_user("admin", name="Admin")


@pytest.fixture()
def mess(db, owner):
    return mess_service.create_mess(db, owner, {"name": "Sunrise Mess", "city": "Pune"})


@pytest.fixture()
def plan(db, mess):
    plan = MealPlan(
        mess_id=mess.id,
        name="Full Board",
        pricing_amount=3000,
        pricing_period="monthly",
        meals_per_day=3,
        meal_types=["breakfast", "lunch", "dinner"],
    )
    db.add(plan)
    db.commit()
    db.refresh(plan)
    return plan


@pytest.fixture()
def tomorrow():
    return local_now().date() + timedelta(days=1)


@pytest.fixture()
def make_meal(db, mess, plan):
    def _make(meal_type="lunch", day: date = None, plans=None):
        meal = Meal(
            mess_id=mess.id,
            name=f"{meal_type.title()} thali",
            meal_type=meal_type,
            date=day or local_now().date(),
        )
        meal.meal_plans = plans if plans is not None else [plan]
        db.add(meal)
        db.commit()
        db.refresh(meal)
        return meal

    return _make


@pytest.fixture()
def paid_credits(db, mess):
    """Take the mess out of its free trial with a fixed balance of 100 credits."""
    credits = credit_service.get_mess_credits(db, mess.id)
    credits.is_trial_active = False
    credits.status = "active"
    credits.total_credits = 100
    credits.used_credits = 0
    credits.recompute()
    db.commit()
    db.refresh(credits)
    return credits
