"""
Payment verification API Routes

Members upload proof of payment (multipart, optional screenshot); mess
owners review it.
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from sqlalchemy.orm import Session

from smartmess.api.dependencies import get_current_user, require_member, require_owner
from smartmess.api.responses import envelope
from smartmess.database import get_db
from smartmess.models import User
from smartmess.schemas.billing import VerificationUpdate
from smartmess.services import payment_verification_service
from smartmess.services.notification_service import push_notifications
from smartmess.services.payment_verification_service import Screenshot

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def submit_verification(
    mess_id: UUID = Form(...),
    meal_plan_id: UUID = Form(...),
    amount: float = Form(...),
    payment_method: str = Form(...),
    transaction_id: Optional[str] = Form(default=None),
    payment_screenshot: Optional[UploadFile] = File(default=None),
    user: User = Depends(require_member),
    db: Session = Depends(get_db),
):
    screenshot = None
    if payment_screenshot is not None and payment_screenshot.filename:
        screenshot = Screenshot(
            filename=payment_screenshot.filename,
            content_type=payment_screenshot.content_type or "",
            content=await payment_screenshot.read(),
        )
    outcome = payment_verification_service.create_payment_verification(
        db,
        user,
        mess_id=mess_id,
        meal_plan_id=meal_plan_id,
        amount=amount,
        payment_method=payment_method,
        transaction_id=transaction_id,
        screenshot=screenshot,
    )
    await push_notifications(outcome.notifications)
    return envelope("Payment verification submitted", outcome.data)


@router.get("/mess/{mess_id}")
async def mess_verifications(
    mess_id: UUID,
    status: Optional[str] = None,
    user: User = Depends(require_owner),
    db: Session = Depends(get_db),
):
    rows = payment_verification_service.list_for_mess(db, user, mess_id, status=status)
    return envelope(
        "Payment verifications",
        [payment_verification_service.serialize_verification(row) for row in rows],
    )


@router.get("/user")
async def my_verifications(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    rows = payment_verification_service.list_for_user(db, user)
    return envelope(
        "Payment verifications",
        [payment_verification_service.serialize_verification(row) for row in rows],
    )


@router.get("/stats/{mess_id}")
async def verification_stats(mess_id: UUID, user: User = Depends(require_owner), db: Session = Depends(get_db)):
    return envelope("Payment verification stats", payment_verification_service.stats_for_mess(db, user, mess_id))


@router.put("/{verification_id}")
async def update_verification(
    verification_id: UUID,
    payload: VerificationUpdate,
    user: User = Depends(require_owner),
    db: Session = Depends(get_db),
):
    outcome = payment_verification_service.update_verification(
        db, user, verification_id, status=payload.status, rejection_reason=payload.rejection_reason
    )
    await push_notifications(outcome.notifications)
    return envelope(f"Payment verification {payload.status}", outcome.data)
