from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from smartmess.api.dependencies import get_current_user
from smartmess.api.responses import envelope
from smartmess.database import get_db
from smartmess.models import User
from smartmess.schemas.billing import LeaveRequest
from smartmess.services import leave_service

router = APIRouter()


@router.post("/preview")
async def preview_leave(payload: LeaveRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    data = leave_service.preview_leave(
        db,
        user,
        meal_plan_ids=payload.meal_plan_ids,
        start_date=payload.start_date,
        end_date=payload.end_date,
        meal_types=payload.meal_types,
    )
    return envelope("Leave preview", data)


@router.post("", status_code=status.HTTP_201_CREATED)
async def apply_leave(payload: LeaveRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    leaves = leave_service.apply_leave(
        db,
        user,
        meal_plan_ids=payload.meal_plan_ids,
        start_date=payload.start_date,
        end_date=payload.end_date,
        meal_types=payload.meal_types,
        reason=payload.reason,
    )
    return envelope("Leave applied", [leave_service.serialize_leave(leave) for leave in leaves])


@router.get("")
async def list_leaves(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return envelope("Leaves", [leave_service.serialize_leave(leave) for leave in leave_service.list_leaves(db, user)])


@router.delete("/{leave_id}")
async def cancel_leave(leave_id: UUID, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    leave = leave_service.cancel_leave(db, user, leave_id)
    return envelope("Leave cancelled", leave_service.serialize_leave(leave))
