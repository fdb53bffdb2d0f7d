"""
Join request API Routes

A member asks to join a meal plan; the mess owner approves or rejects the
request from the join_request notification it produced.
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.orm import Session

from smartmess.api.dependencies import require_member, require_owner
from smartmess.api.responses import envelope
from smartmess.database import get_db
from smartmess.models import User
from smartmess.schemas.billing import DecisionRequest, JoinRequestCreate
from smartmess.services import join_request_service
from smartmess.services.notification_service import push_notifications

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_join_request(
    payload: JoinRequestCreate,
    user: User = Depends(require_member),
    db: Session = Depends(get_db),
):
    outcome = join_request_service.create_join_request(
        db,
        user,
        mess_id=payload.mess_id,
        meal_plan_id=payload.meal_plan_id,
        payment_type=payload.payment_type,
    )
    await push_notifications(outcome.notifications)
    return envelope("Join request sent", outcome.data)


@router.post("/{notification_id}/approve")
async def approve_join_request(
    notification_id: UUID,
    payload: Optional[DecisionRequest] = Body(default=None),
    user: User = Depends(require_owner),
    db: Session = Depends(get_db),
):
    remarks = payload.remarks if payload else None
    outcome = join_request_service.approve_join_request(db, user, notification_id, remarks=remarks)
    await push_notifications(outcome.notifications)
    return envelope("Join request approved successfully", outcome.data)


@router.post("/{notification_id}/reject")
async def reject_join_request(
    notification_id: UUID,
    payload: Optional[DecisionRequest] = Body(default=None),
    user: User = Depends(require_owner),
    db: Session = Depends(get_db),
):
    remarks = payload.remarks if payload else None
    outcome = join_request_service.reject_join_request(db, user, notification_id, remarks=remarks)
    await push_notifications(outcome.notifications)
    return envelope("Join request rejected", outcome.data)
