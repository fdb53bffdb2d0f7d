"""
Reseed credit slabs, credit purchase plans and free trial settings.
Existing rows are left alone; only empty tables are filled.

Usage:
  python scripts/reseed_billing_defaults.py
"""
from __future__ import annotations

from sqlalchemy import func

from smartmess.database import SessionLocal
from smartmess.models import CreditPurchasePlan, CreditSlab, FreeTrialSettings
from smartmess.seeds import seed_billing_defaults


def main() -> None:
    db = SessionLocal()
    try:
        inserted = seed_billing_defaults(db)
        slabs = db.query(func.count(CreditSlab.id)).scalar()
        plans = db.query(func.count(CreditPurchasePlan.id)).scalar()
        trials = db.query(func.count(FreeTrialSettings.id)).scalar()
        print(
            f"seed_billing_defaults inserted={inserted} "
            f"slabs={int(slabs or 0)} plans={int(plans or 0)} trial_settings={int(trials or 0)}"
        )
    finally:
        db.close()


if __name__ == "__main__":
    main()
