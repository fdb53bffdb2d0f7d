from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from smartmess.api.responses import envelope
from smartmess.core.exceptions import AuthenticationError, ValidationError
from smartmess.core.logger import get_logger
from smartmess.core.security import create_access_token, get_current_user, hash_password, verify_password
from smartmess.database import get_db
from smartmess.models import User
from smartmess.schemas.auth import LoginRequest, LoginResponse, RegisterRequest, UserOut

router = APIRouter()
logger = get_logger(__name__)


def _user_out(user: User) -> UserOut:
    return UserOut(id=str(user.id), name=user.name, email=user.email, phone=user.phone, role=user.role)


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(payload: RegisterRequest, db: Session = Depends(get_db)) -> dict:
    if db.query(User.id).filter(User.email == payload.email).first():
        raise ValidationError("An account with this email already exists")
    user = User(
        name=payload.name.strip(),
        email=payload.email,
        phone=payload.phone,
        role=payload.role,
        password_hash=hash_password(payload.password),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered %s account %s", user.role, user.id)
    token = create_access_token(user)
    return envelope(
        "Registration successful",
        LoginResponse(access_token=token, user=_user_out(user)).model_dump(),
    )


@router.post("/login")
async def login(payload: LoginRequest, db: Session = Depends(get_db)) -> dict:
    email = payload.email.strip().lower()
    user = db.query(User).filter(User.email == email).first()
    if user is None or not user.is_active or not verify_password(payload.password, user.password_hash):
        raise AuthenticationError("Invalid credentials")

    token = create_access_token(user)
    return envelope("Login successful", LoginResponse(access_token=token, user=_user_out(user)).model_dump())


@router.get("/me")
async def me(user: User = Depends(get_current_user)) -> dict:
    return envelope("Current user", _user_out(user).model_dump())
