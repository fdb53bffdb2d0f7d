from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from smartmess.api.dependencies import get_current_user, require_owner
from smartmess.api.responses import envelope
from smartmess.database import get_db
from smartmess.models import User
from smartmess.schemas.mess import MealPlanCreate, MealPlanUpdate
from smartmess.services import mess_service
from smartmess.services.membership_service import get_mess_of_owner

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_meal_plan(
    payload: MealPlanCreate,
    user: User = Depends(require_owner),
    db: Session = Depends(get_db),
):
    plan = mess_service.create_meal_plan(db, user, payload.model_dump())
    return envelope("Meal plan created", mess_service.serialize_meal_plan(plan))


@router.get("")
async def list_my_meal_plans(
    include_inactive: bool = False,
    user: User = Depends(require_owner),
    db: Session = Depends(get_db),
):
    mess = get_mess_of_owner(db, user)
    plans = mess_service.list_meal_plans(db, mess.id, include_inactive=include_inactive)
    return envelope("Meal plans", [mess_service.serialize_meal_plan(plan) for plan in plans])


@router.get("/mess/{mess_id}")
async def list_mess_meal_plans(
    mess_id: UUID,
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    mess_service.get_mess(db, mess_id)
    plans = mess_service.list_meal_plans(db, mess_id)
    return envelope("Meal plans", [mess_service.serialize_meal_plan(plan) for plan in plans])


@router.put("/{plan_id}")
async def update_meal_plan(
    plan_id: UUID,
    payload: MealPlanUpdate,
    user: User = Depends(require_owner),
    db: Session = Depends(get_db),
):
    plan = mess_service.update_meal_plan(db, user, plan_id, payload.model_dump(exclude_unset=True))
    return envelope("Meal plan updated", mess_service.serialize_meal_plan(plan))


@router.delete("/{plan_id}")
async def delete_meal_plan(
    plan_id: UUID,
    user: User = Depends(require_owner),
    db: Session = Depends(get_db),
):
    plan = mess_service.deactivate_meal_plan(db, user, plan_id)
    return envelope("Meal plan deactivated", mess_service.serialize_meal_plan(plan))
