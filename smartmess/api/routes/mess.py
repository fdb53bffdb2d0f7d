"""
Mess profile API Routes
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from smartmess.api.dependencies import get_current_user, require_owner
from smartmess.api.responses import envelope
from smartmess.database import get_db
from smartmess.models import User
from smartmess.schemas.mess import MessCreate, MessUpdate
from smartmess.services import credit_service, mess_service
from smartmess.services.membership_service import get_mess_of_owner

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_mess(
    payload: MessCreate,
    user: User = Depends(require_owner),
    db: Session = Depends(get_db),
):
    mess = mess_service.create_mess(db, user, payload.model_dump())
    return envelope(
        "Mess profile created",
        {
            "mess": mess_service.serialize_mess(mess),
            "credits": credit_service.serialize_credits(credit_service.get_mess_credits(db, mess.id)),
        },
    )


@router.get("")
async def get_my_mess(user: User = Depends(require_owner), db: Session = Depends(get_db)):
    return envelope("Mess profile", mess_service.serialize_mess(get_mess_of_owner(db, user)))


@router.put("")
async def update_my_mess(
    payload: MessUpdate,
    user: User = Depends(require_owner),
    db: Session = Depends(get_db),
):
    mess = mess_service.update_mess(db, user, payload.model_dump(exclude_unset=True))
    return envelope("Mess profile updated", mess_service.serialize_mess(mess))


@router.get("/list")
async def list_messes(
    city: Optional[str] = None,
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rows = mess_service.list_messes(db, city=city)
    return envelope("Messes", [mess_service.serialize_mess(row) for row in rows])


@router.get("/{mess_id}")
async def get_mess(mess_id: UUID, _: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return envelope("Mess profile", mess_service.serialize_mess(mess_service.get_mess(db, mess_id)))
