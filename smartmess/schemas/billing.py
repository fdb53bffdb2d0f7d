from __future__ import annotations

import uuid
import datetime as dt
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class JoinRequestCreate(BaseModel):
    mess_id: uuid.UUID
    meal_plan_id: uuid.UUID
    payment_type: Literal["pay_now", "pay_later", "subscription"] = "pay_later"


class DecisionRequest(BaseModel):
    remarks: Optional[str] = None


class PaymentApproval(BaseModel):
    payment_method: Optional[str] = None


class VerificationUpdate(BaseModel):
    status: Literal["approved", "rejected"]
    rejection_reason: Optional[str] = None


class PaymentStatusUpdate(BaseModel):
    payment_status: str
    payment_method: str = "cash"
    notes: Optional[str] = None


class NotificationCreate(BaseModel):
    user_id: uuid.UUID
    type: str = "general"
    title: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1)
    mess_id: Optional[uuid.UUID] = None
    data: dict[str, Any] = Field(default_factory=dict)


class QRGenerateRequest(BaseModel):
    meal_id: uuid.UUID
    meal_type: Literal["breakfast", "lunch", "dinner"]
    date: Optional[dt.date] = None


class QRScanRequest(BaseModel):
    qr_code_data: str = Field(min_length=1)


class LeaveRequest(BaseModel):
    meal_plan_ids: list[uuid.UUID] = Field(min_length=1)
    start_date: dt.date
    end_date: dt.date
    meal_types: list[str] = Field(min_length=1)
    reason: Optional[str] = None


class CreditSlabCreate(BaseModel):
    min_users: int = Field(ge=1)
    max_users: int = Field(ge=1)
    credits_per_user: int = Field(ge=0)


class CreditSlabUpdate(BaseModel):
    min_users: Optional[int] = Field(default=None, ge=1)
    max_users: Optional[int] = Field(default=None, ge=1)
    credits_per_user: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


class PurchasePlanCreate(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    base_credits: int = Field(ge=1)
    bonus_credits: int = Field(default=0, ge=0)
    price: float = Field(ge=0)
    is_active: bool = True
    is_popular: bool = False


class PurchasePlanUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    base_credits: Optional[int] = Field(default=None, ge=1)
    bonus_credits: Optional[int] = Field(default=None, ge=0)
    price: Optional[float] = Field(default=None, ge=0)
    is_active: Optional[bool] = None
    is_popular: Optional[bool] = None


class CreditPurchaseRequest(BaseModel):
    plan_id: uuid.UUID
    payment_reference: Optional[str] = None


class CreditAdjustment(BaseModel):
    amount: int
    description: str = Field(min_length=1)
