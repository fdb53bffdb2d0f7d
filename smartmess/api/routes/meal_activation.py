"""
Meal activation API Routes

QR codes are generated per member, meal and day, then scanned once by the
mess owner (or redeemed by the member on a self-service kiosk).
"""
import datetime as dt
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from smartmess.api.dependencies import get_current_user, require_owner
from smartmess.api.responses import envelope
from smartmess.database import get_db
from smartmess.models import User
from smartmess.schemas.billing import QRGenerateRequest, QRScanRequest
from smartmess.services import qr_service

router = APIRouter()


@router.post("/generate")
async def generate_qr(
    payload: QRGenerateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    data = qr_service.generate(db, user, meal_id=payload.meal_id, meal_type=payload.meal_type, day=payload.date)
    return envelope("QR code generated", data)


@router.post("/scan")
async def scan_qr(payload: QRScanRequest, user: User = Depends(require_owner), db: Session = Depends(get_db)):
    data = qr_service.activate(db, payload.qr_code_data, user, scanner_type="mess_owner")
    return envelope("Meal activated successfully", data)


@router.post("/user-scan")
async def user_scan_qr(
    payload: QRScanRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    data = qr_service.activate(db, payload.qr_code_data, user, scanner_type="user")
    return envelope("Meal activated successfully", data)


@router.get("/history")
async def activation_history(
    limit: int = Query(default=50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return envelope("Activation history", qr_service.history(db, user, limit=limit))


@router.get("/active")
async def active_codes(
    date: Optional[dt.date] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return envelope("Active QR codes", qr_service.active_for_day(db, user, day=date))


@router.get("/stats")
async def activation_stats(
    date: Optional[dt.date] = None,
    meal_type: Optional[str] = None,
    user: User = Depends(require_owner),
    db: Session = Depends(get_db),
):
    return envelope("Activation statistics", qr_service.stats(db, user, day=date, meal_type=meal_type))


@router.get("/today-meals")
async def today_meals(
    date: Optional[dt.date] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return envelope("Today's meals", qr_service.today_meals(db, user, day=date))
