from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from smartmess.api.dependencies import get_current_user, require_owner
from smartmess.api.responses import envelope
from smartmess.database import get_db
from smartmess.models import User
from smartmess.services import payment_request_service
from smartmess.services.membership_service import get_owned_mess

router = APIRouter()


@router.get("")
async def my_transactions(
    limit: int = Query(default=100, ge=1, le=500),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rows = payment_request_service.list_user_transactions(db, user, limit=limit)
    return envelope("Transactions", [payment_request_service.serialize_transaction(row) for row in rows])


@router.get("/mess/{mess_id}")
async def mess_transactions(
    mess_id: UUID,
    limit: int = Query(default=200, ge=1, le=1000),
    user: User = Depends(require_owner),
    db: Session = Depends(get_db),
):
    get_owned_mess(db, user, mess_id)
    rows = payment_request_service.list_mess_transactions(db, mess_id, limit=limit)
    return envelope("Transactions", [payment_request_service.serialize_transaction(row) for row in rows])
