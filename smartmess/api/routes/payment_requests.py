from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from smartmess.api.dependencies import require_owner
from smartmess.api.responses import envelope
from smartmess.database import get_db
from smartmess.models import User
from smartmess.schemas.billing import DecisionRequest, PaymentApproval
from smartmess.services import payment_request_service
from smartmess.services.notification_service import push_notifications

router = APIRouter()


@router.post("/{membership_id}/approve")
async def approve_payment_request(
    membership_id: UUID,
    payload: Optional[PaymentApproval] = Body(default=None),
    user: User = Depends(require_owner),
    db: Session = Depends(get_db),
):
    outcome = payment_request_service.approve_payment_request(
        db, user, membership_id, payment_method=payload.payment_method if payload else None
    )
    await push_notifications(outcome.notifications)
    return envelope("Payment request approved successfully", outcome.data)


@router.post("/{membership_id}/reject")
async def reject_payment_request(
    membership_id: UUID,
    payload: Optional[DecisionRequest] = Body(default=None),
    user: User = Depends(require_owner),
    db: Session = Depends(get_db),
):
    outcome = payment_request_service.reject_payment_request(
        db, user, membership_id, remarks=payload.remarks if payload else None
    )
    await push_notifications(outcome.notifications)
    return envelope("Payment request rejected", outcome.data)
