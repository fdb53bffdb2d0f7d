"""
Expire pending join requests whose request_expiry_date has passed.
Meant to run from cron.

Usage:
  python scripts/expire_join_requests.py
"""
from __future__ import annotations

from smartmess.core.logger import configure_logging
from smartmess.database import SessionLocal
from smartmess.services.join_request_service import expire_stale_requests


def main() -> None:
    configure_logging()
    db = SessionLocal()
    try:
        result = expire_stale_requests(db)
        print(
            f"expired_notifications={result['expired_notifications']} "
            f"expired_memberships={result['expired_memberships']}"
        )
    finally:
        db.close()


if __name__ == "__main__":
    main()
