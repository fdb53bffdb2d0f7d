from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from smartmess.api.dependencies import get_current_user, require_owner
from smartmess.api.responses import envelope
from smartmess.database import get_db
from smartmess.models import User
from smartmess.schemas.billing import PaymentStatusUpdate
from smartmess.services import membership_service
from smartmess.services.notification_service import push_notifications

router = APIRouter()


@router.get("/mine")
async def my_memberships(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    rows = membership_service.list_user_memberships(db, user)
    return envelope(
        "Memberships",
        [membership_service.serialize_membership(row, with_history=True) for row in rows],
    )


@router.get("/mess/{mess_id}")
async def mess_memberships(
    mess_id: UUID,
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    user: User = Depends(require_owner),
    db: Session = Depends(get_db),
):
    rows = membership_service.list_mess_memberships(
        db, user, mess_id, status=status, payment_status=payment_status
    )
    return envelope("Memberships", [membership_service.serialize_membership(row) for row in rows])


@router.put("/{membership_id}/payment-status")
async def update_payment_status(
    membership_id: UUID,
    payload: PaymentStatusUpdate,
    user: User = Depends(require_owner),
    db: Session = Depends(get_db),
):
    membership = membership_service.update_payment_status(
        db,
        user,
        membership_id,
        payment_status=payload.payment_status,
        payment_method=payload.payment_method,
        notes=payload.notes,
    )
    return envelope(
        "Payment status updated",
        membership_service.serialize_membership(membership, with_history=True),
    )


@router.post("/{membership_id}/reminder")
async def send_reminder(
    membership_id: UUID,
    user: User = Depends(require_owner),
    db: Session = Depends(get_db),
):
    outcome = membership_service.send_payment_reminder(db, user, membership_id)
    await push_notifications(outcome.notifications)
    return envelope("Payment reminder sent", outcome.data)
