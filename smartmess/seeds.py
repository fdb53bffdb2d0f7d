from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from smartmess.models import CreditPurchasePlan, CreditSlab, FreeTrialSettings

CREDIT_SLAB_SEED_DATA: list[dict[str, Any]] = [
    {"min_users": 1, "max_users": 50, "credits_per_user": 10},
    {"min_users": 51, "max_users": 200, "credits_per_user": 8},
    {"min_users": 201, "max_users": 1000, "credits_per_user": 6},
]

PURCHASE_PLAN_SEED_DATA: list[dict[str, Any]] = [
    {"name": "Starter", "description": "Enough for a small mess", "base_credits": 500, "bonus_credits": 0, "price": 499, "is_popular": False},
    {"name": "Growth", "description": "Most messes pick this one", "base_credits": 1500, "bonus_credits": 150, "price": 1299, "is_popular": True},
    {"name": "Pro", "description": "For large kitchens", "base_credits": 5000, "bonus_credits": 750, "price": 3999, "is_popular": False},
]


def seed_billing_defaults(db: Session) -> int:
    """Insert default slabs, purchase plans and trial settings when the tables are empty."""
    inserted = 0

    if db.query(CreditSlab).count() == 0:
        for item in CREDIT_SLAB_SEED_DATA:
            db.add(CreditSlab(is_active=True, **item))
            inserted += 1

    if db.query(CreditPurchasePlan).count() == 0:
        for item in PURCHASE_PLAN_SEED_DATA:
            db.add(CreditPurchasePlan(is_active=True, **item))
            inserted += 1

    if db.query(FreeTrialSettings).first() is None:
        db.add(
            FreeTrialSettings(
                is_globally_enabled=True,
                trial_duration_days=7,
                trial_credits=100,
                max_trials_per_mess=1,
            )
        )
        inserted += 1

    db.commit()
    return inserted
