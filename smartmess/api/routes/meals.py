import datetime as dt
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from smartmess.api.dependencies import get_current_user, require_owner
from smartmess.api.responses import envelope
from smartmess.database import get_db
from smartmess.models import User
from smartmess.schemas.mess import MealCreate, MealUpdate
from smartmess.services import mess_service

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_meal(payload: MealCreate, user: User = Depends(require_owner), db: Session = Depends(get_db)):
    meal = mess_service.create_meal(db, user, payload.model_dump())
    return envelope("Meal created", mess_service.serialize_meal(meal))


@router.get("/mess/{mess_id}")
async def list_meals(
    mess_id: UUID,
    date: Optional[dt.date] = None,
    meal_type: Optional[str] = None,
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    meals = mess_service.list_meals(db, mess_id, day=date, meal_type=meal_type)
    return envelope("Meals", [mess_service.serialize_meal(meal) for meal in meals])


@router.put("/{meal_id}")
async def update_meal(
    meal_id: UUID,
    payload: MealUpdate,
    user: User = Depends(require_owner),
    db: Session = Depends(get_db),
):
    meal = mess_service.update_meal(db, user, meal_id, payload.model_dump(exclude_unset=True))
    return envelope("Meal updated", mess_service.serialize_meal(meal))


@router.delete("/{meal_id}")
async def delete_meal(meal_id: UUID, user: User = Depends(require_owner), db: Session = Depends(get_db)):
    mess_service.delete_meal(db, user, meal_id)
    return envelope("Meal deleted")
