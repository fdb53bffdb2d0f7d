from __future__ import annotations

import uuid
import datetime as dt
from typing import Any, Optional

from pydantic import BaseModel, Field


class MessCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    address: Optional[str] = None
    city: Optional[str] = None
    phone: Optional[str] = None
    upi_id: Optional[str] = None


class MessUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    phone: Optional[str] = None
    upi_id: Optional[str] = None


class MealPlanCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    pricing_amount: float = Field(ge=0)
    pricing_period: str = "monthly"
    meals_per_day: int = Field(default=3, ge=1, le=3)
    meal_types: list[str] = Field(default_factory=lambda: ["breakfast", "lunch", "dinner"])
    leave_rules: dict[str, Any] = Field(default_factory=dict)


class MealPlanUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    pricing_amount: Optional[float] = Field(default=None, ge=0)
    pricing_period: Optional[str] = None
    meals_per_day: Optional[int] = Field(default=None, ge=1, le=3)
    meal_types: Optional[list[str]] = None
    leave_rules: Optional[dict[str, Any]] = None
    is_active: Optional[bool] = None


class MealCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    meal_type: str
    date: dt.date
    is_available: bool = True
    image_url: Optional[str] = None
    meal_plan_ids: list[uuid.UUID] = Field(default_factory=list)


class MealUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    meal_type: Optional[str] = None
    date: Optional[dt.date] = None
    is_available: Optional[bool] = None
    image_url: Optional[str] = None
    meal_plan_ids: Optional[list[uuid.UUID]] = None
