"""
SQLAlchemy models for SmartMess.
"""
from __future__ import annotations

import math
import uuid
from datetime import datetime, timedelta

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DECIMAL,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

from smartmess.core.utils import utcnow

Base = declarative_base()

JSONType = JSON().with_variant(JSONB(), "postgresql")

USER_ROLES = ("user", "mess-owner", "admin")
PLAN_PERIODS = ("daily", "weekly", "15days", "monthly", "3months", "6months", "yearly")
MEAL_TYPES = ("breakfast", "lunch", "dinner")
MEMBERSHIP_STATUSES = ("active", "inactive", "suspended", "pending")
PAYMENT_STATUSES = ("paid", "pending", "overdue", "failed", "refunded")
PAYMENT_REQUEST_STATUSES = ("none", "sent", "approved", "rejected")
PAYMENT_TYPES = ("pay_now", "pay_later", "subscription")
PAYMENT_METHODS = ("upi", "online", "cash", "bank_transfer", "cheque")
NOTIFICATION_TYPES = (
    "join_request",
    "payment_request",
    "payment_received",
    "payment_reminder",
    "payment_overdue",
    "payment_success",
    "payment_failed",
    "leave_request",
    "leave_extension",
    "bill_due",
    "meal_plan_change",
    "general",
    "subscription_renewal",
    "payment_method_update",
    "mess_off_day",
    "low_credit_warning",
    "critical_credit_alert",
)
NOTIFICATION_STATUSES = ("pending", "approved", "rejected", "completed", "failed", "cancelled", "expired")
TRANSACTION_TYPES = ("payment", "refund", "adjustment", "subscription", "leave_credit")
TRANSACTION_STATUSES = ("pending", "success", "failed", "cancelled", "refunded")
ACTIVATION_STATUSES = ("generated", "activated", "expired")


def _uuid_pk() -> Column:
    return Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)


def _created_at() -> Column:
    return Column(DateTime, default=utcnow, nullable=False)


def _updated_at() -> Column:
    return Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class User(Base):
    __tablename__ = "users"

    id = _uuid_pk()
    name = Column(Text, nullable=False)
    email = Column(Text, nullable=False, unique=True)
    phone = Column(Text)
    role = Column(Text, nullable=False, default="user")
    password_hash = Column(Text, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = _created_at()
    updated_at = _updated_at()


class MessProfile(Base):
    __tablename__ = "mess_profiles"

    id = _uuid_pk()
    owner_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    name = Column(Text, nullable=False)
    address = Column(Text)
    city = Column(Text)
    phone = Column(Text)
    upi_id = Column(Text)
    created_at = _created_at()
    updated_at = _updated_at()

    owner = relationship("User")


meal_plan_meals = Table(
    "meal_plan_meals",
    Base.metadata,
    Column("meal_id", Uuid(as_uuid=True), ForeignKey("meals.id", ondelete="CASCADE"), primary_key=True),
    Column("meal_plan_id", Uuid(as_uuid=True), ForeignKey("meal_plans.id", ondelete="CASCADE"), primary_key=True),
)


class MealPlan(Base):
    __tablename__ = "meal_plans"

    id = _uuid_pk()
    mess_id = Column(Uuid(as_uuid=True), ForeignKey("mess_profiles.id", ondelete="CASCADE"), nullable=False)
    name = Column(Text, nullable=False)
    description = Column(Text)
    pricing_amount = Column(DECIMAL(10, 2), nullable=False)
    pricing_period = Column(Text, nullable=False, default="monthly")
    meals_per_day = Column(Integer, nullable=False, default=3)
    meal_types = Column(JSONType, default=lambda: list(MEAL_TYPES))
    leave_rules = Column(JSONType, default=dict)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = _created_at()
    updated_at = _updated_at()


class Meal(Base):
    __tablename__ = "meals"

    id = _uuid_pk()
    mess_id = Column(Uuid(as_uuid=True), ForeignKey("mess_profiles.id", ondelete="CASCADE"), nullable=False)
    name = Column(Text, nullable=False)
    description = Column(Text)
    meal_type = Column(Text, nullable=False)
    date = Column(Date, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)
    image_url = Column(Text)
    created_at = _created_at()
    updated_at = _updated_at()

    meal_plans = relationship("MealPlan", secondary=meal_plan_meals, lazy="selectin")

    __table_args__ = (Index("ix_meals_mess_date", "mess_id", "date"),)


class MessMembership(Base):
    __tablename__ = "mess_memberships"

    id = _uuid_pk()
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    mess_id = Column(Uuid(as_uuid=True), ForeignKey("mess_profiles.id", ondelete="CASCADE"), nullable=False)
    meal_plan_id = Column(Uuid(as_uuid=True), ForeignKey("meal_plans.id"), nullable=False)
    join_date = Column(DateTime, default=utcnow, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    subscription_start_date = Column(DateTime)
    subscription_end_date = Column(DateTime)
    leave_extension_meals = Column(Integer, default=0, nullable=False)
    request_expiry_date = Column(DateTime)
    payment_status = Column(Text, nullable=False, default="pending")
    payment_request_status = Column(Text, nullable=False, default="none")
    payment_type = Column(Text, nullable=False, default="pay_later")
    last_payment_date = Column(DateTime)
    next_payment_date = Column(DateTime)
    payment_due_date = Column(DateTime)
    payment_amount = Column(DECIMAL(10, 2), nullable=False, default=0)
    late_fees = Column(DECIMAL(10, 2), nullable=False, default=0)
    reminder_sent_count = Column(Integer, default=0, nullable=False)
    last_reminder_sent = Column(DateTime)
    auto_renewal = Column(Boolean, default=False, nullable=False)
    version = Column(Integer, nullable=False)
    created_at = _created_at()
    updated_at = _updated_at()

    user = relationship("User")
    mess = relationship("MessProfile")
    meal_plan = relationship("MealPlan")
    payment_history = relationship(
        "MembershipPayment",
        order_by="MembershipPayment.date",
        cascade="all, delete-orphan",
        back_populates="membership",
    )

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index("ix_memberships_lookup", "user_id", "mess_id", "meal_plan_id", "status"),
        Index("ix_memberships_mess_status", "mess_id", "status"),
    )

    def add_payment(
        self,
        amount: float,
        method: str,
        status: str,
        transaction_id: str | None = None,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> "MembershipPayment":
        now = now or utcnow()
        entry = MembershipPayment(
            date=now,
            amount=amount,
            method=method,
            status=status,
            transaction_id=transaction_id,
            notes=notes,
        )
        self.payment_history.append(entry)
        if status == "success":
            self.payment_status = "paid"
            self.last_payment_date = now
            self.late_fees = 0
        elif status == "failed":
            self.payment_status = "failed"
        return entry

    def refresh_payment_state(self, now: datetime | None = None) -> bool:
        """Move a pending membership past its due date to overdue and charge late fees."""
        now = now or utcnow()
        if self.payment_status != "pending" or not self.payment_due_date or now <= self.payment_due_date:
            return False
        days_overdue = (now - self.payment_due_date).days
        weeks_overdue = math.ceil(days_overdue / 7)
        self.payment_status = "overdue"
        self.late_fees = round(float(self.payment_amount or 0) * 0.05 * weeks_overdue)
        return True


class MembershipPayment(Base):
    __tablename__ = "membership_payments"

    id = _uuid_pk()
    membership_id = Column(
        Uuid(as_uuid=True), ForeignKey("mess_memberships.id", ondelete="CASCADE"), nullable=False
    )
    date = Column(DateTime, default=utcnow, nullable=False)
    amount = Column(DECIMAL(10, 2), nullable=False)
    method = Column(Text, nullable=False)
    status = Column(Text, nullable=False)
    transaction_id = Column(Text)
    notes = Column(Text)

    membership = relationship("MessMembership", back_populates="payment_history")


class Notification(Base):
    __tablename__ = "notifications"

    id = _uuid_pk()
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    mess_id = Column(Uuid(as_uuid=True), ForeignKey("mess_profiles.id", ondelete="SET NULL"))
    type = Column(Text, nullable=False)
    title = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    priority = Column(Text, nullable=False, default="low")
    data = Column(JSONType, default=dict)
    is_read = Column(Boolean, default=False, nullable=False)
    expires_at = Column(DateTime)
    created_at = _created_at()
    updated_at = _updated_at()

    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "is_read"),
        Index("ix_notifications_mess_type", "mess_id", "type"),
    )


class Transaction(Base):
    __tablename__ = "transactions"

    id = _uuid_pk()
    transaction_id = Column(Text, nullable=False, unique=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    mess_id = Column(Uuid(as_uuid=True), ForeignKey("mess_profiles.id"), nullable=False)
    membership_id = Column(Uuid(as_uuid=True), ForeignKey("mess_memberships.id", ondelete="SET NULL"))
    type = Column(Text, nullable=False)
    amount = Column(DECIMAL(10, 2), nullable=False)
    currency = Column(Text, nullable=False, default="INR")
    status = Column(Text, nullable=False, default="pending")
    payment_method = Column(Text, nullable=False)
    gateway_name = Column(Text, nullable=False)
    gateway_transaction_id = Column(Text)
    description = Column(Text, nullable=False)
    meta = Column("metadata", JSONType, default=dict)
    created_at = _created_at()


class PaymentVerification(Base):
    __tablename__ = "payment_verifications"

    id = _uuid_pk()
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    mess_id = Column(Uuid(as_uuid=True), ForeignKey("mess_profiles.id", ondelete="CASCADE"), nullable=False)
    membership_id = Column(Uuid(as_uuid=True), ForeignKey("mess_memberships.id", ondelete="SET NULL"))
    meal_plan_id = Column(Uuid(as_uuid=True), ForeignKey("meal_plans.id"), nullable=False)
    amount = Column(DECIMAL(10, 2), nullable=False)
    payment_method = Column(Text, nullable=False)
    screenshot_path = Column(Text)
    transaction_id = Column(Text)
    status = Column(Text, nullable=False, default="pending")
    rejection_reason = Column(Text)
    verified_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"))
    verified_at = Column(DateTime)
    created_at = _created_at()
    updated_at = _updated_at()


class MessCredits(Base):
    __tablename__ = "mess_credits"

    id = _uuid_pk()
    mess_id = Column(Uuid(as_uuid=True), ForeignKey("mess_profiles.id", ondelete="CASCADE"), nullable=False, unique=True)
    total_credits = Column(Integer, default=0, nullable=False)
    used_credits = Column(Integer, default=0, nullable=False)
    available_credits = Column(Integer, default=0, nullable=False)
    is_trial_active = Column(Boolean, default=False, nullable=False)
    trial_start_date = Column(DateTime)
    trial_end_date = Column(DateTime)
    monthly_user_count = Column(Integer, default=0, nullable=False)
    last_billing_date = Column(DateTime)
    next_billing_date = Column(DateTime)
    last_billing_amount = Column(Integer, default=0, nullable=False)
    pending_bill_amount = Column(Integer, default=0, nullable=False)
    status = Column(Text, nullable=False, default="trial")
    low_credit_threshold = Column(Integer, default=100, nullable=False)
    version = Column(Integer, nullable=False)
    created_at = _created_at()
    updated_at = _updated_at()

    __mapper_args__ = {"version_id_col": version}

    def recompute(self) -> None:
        self.available_credits = max(0, (self.total_credits or 0) - (self.used_credits or 0))

    def is_trial_expired(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        return bool(self.trial_end_date and now >= self.trial_end_date)

    def in_active_trial(self, now: datetime | None = None) -> bool:
        return bool(self.is_trial_active) and not self.is_trial_expired(now)

    def refresh_trial_state(self, now: datetime | None = None) -> bool:
        """End a trial whose end date has passed. Returns True when the state changed."""
        if not (self.is_trial_active and self.is_trial_expired(now)):
            return False
        self.is_trial_active = False
        self.status = "active" if (self.available_credits or 0) > 0 else "expired"
        return True

    def can_access_paid_features(self, now: datetime | None = None) -> bool:
        return (self.available_credits or 0) > 0 or self.in_active_trial(now)

    def add_credits(self, amount: int) -> None:
        self.total_credits = (self.total_credits or 0) + amount
        self.recompute()

    def deduct_credits(self, amount: int) -> None:
        self.recompute()
        if self.available_credits < amount:
            raise ValueError("Insufficient credits")
        self.used_credits = (self.used_credits or 0) + amount
        self.recompute()


class CreditSlab(Base):
    __tablename__ = "credit_slabs"

    id = _uuid_pk()
    min_users = Column(Integer, nullable=False)
    max_users = Column(Integer, nullable=False)
    credits_per_user = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    created_at = _created_at()
    updated_at = _updated_at()


class CreditPurchasePlan(Base):
    __tablename__ = "credit_purchase_plans"

    id = _uuid_pk()
    name = Column(Text, nullable=False)
    description = Column(Text)
    base_credits = Column(Integer, nullable=False)
    bonus_credits = Column(Integer, default=0, nullable=False)
    price = Column(DECIMAL(10, 2), nullable=False)
    currency = Column(Text, nullable=False, default="INR")
    is_active = Column(Boolean, default=True, nullable=False)
    is_popular = Column(Boolean, default=False, nullable=False)
    created_at = _created_at()
    updated_at = _updated_at()

    @property
    def total_credits(self) -> int:
        return (self.base_credits or 0) + (self.bonus_credits or 0)


class CreditTransaction(Base):
    __tablename__ = "credit_transactions"

    id = _uuid_pk()
    mess_id = Column(Uuid(as_uuid=True), ForeignKey("mess_profiles.id", ondelete="CASCADE"), nullable=False)
    plan_id = Column(Uuid(as_uuid=True), ForeignKey("credit_purchase_plans.id", ondelete="SET NULL"))
    type = Column(Text, nullable=False)
    amount = Column(Integer, nullable=False)
    description = Column(Text, nullable=False)
    reference_id = Column(Text)
    processed_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    meta = Column("metadata", JSONType, default=dict)
    status = Column(Text, nullable=False, default="completed")
    created_at = _created_at()


class FreeTrialSettings(Base):
    __tablename__ = "free_trial_settings"

    id = _uuid_pk()
    is_globally_enabled = Column(Boolean, default=True, nullable=False)
    trial_duration_days = Column(Integer, default=7, nullable=False)
    trial_credits = Column(Integer, default=100, nullable=False)
    max_trials_per_mess = Column(Integer, default=1, nullable=False)
    updated_at = _updated_at()

    def trial_window(self, start: datetime) -> tuple[datetime, datetime]:
        return start, start + timedelta(days=self.trial_duration_days)


class MealActivation(Base):
    __tablename__ = "meal_activations"

    id = _uuid_pk()
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    mess_id = Column(Uuid(as_uuid=True), ForeignKey("mess_profiles.id", ondelete="CASCADE"), nullable=False)
    meal_id = Column(Uuid(as_uuid=True), ForeignKey("meals.id", ondelete="CASCADE"), nullable=False)
    meal_plan_id = Column(Uuid(as_uuid=True), ForeignKey("meal_plans.id"), nullable=False)
    meal_type = Column(Text, nullable=False)
    activation_date = Column(Date, nullable=False)
    qr_code = Column(Text)
    qr_payload = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="generated")
    expires_at = Column(DateTime, nullable=False)
    scanned_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    scanned_at = Column(DateTime)
    scanner_type = Column(Text)
    created_at = _created_at()
    updated_at = _updated_at()

    meal = relationship("Meal")

    __table_args__ = (
        Index("ix_activations_user_day", "user_id", "activation_date"),
        Index("ix_activations_mess_day", "mess_id", "activation_date"),
    )


class UserLeave(Base):
    __tablename__ = "user_leaves"

    id = _uuid_pk()
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    mess_id = Column(Uuid(as_uuid=True), ForeignKey("mess_profiles.id", ondelete="CASCADE"), nullable=False)
    membership_id = Column(Uuid(as_uuid=True), ForeignKey("mess_memberships.id", ondelete="CASCADE"), nullable=False)
    meal_plan_id = Column(Uuid(as_uuid=True), ForeignKey("meal_plans.id"), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    meal_types = Column(JSONType, default=list)
    meals_missed = Column(Integer, default=0, nullable=False)
    extension_days = Column(Integer, default=0, nullable=False)
    status = Column(Text, nullable=False, default="approved")
    reason = Column(Text)
    created_at = _created_at()
    updated_at = _updated_at()


class ChatRoom(Base):
    __tablename__ = "chat_rooms"

    id = _uuid_pk()
    mess_id = Column(Uuid(as_uuid=True), ForeignKey("mess_profiles.id", ondelete="CASCADE"), nullable=False)
    name = Column(Text, nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)
    created_at = _created_at()


class ChatRoomMember(Base):
    __tablename__ = "chat_room_members"

    id = _uuid_pk()
    room_id = Column(Uuid(as_uuid=True), ForeignKey("chat_rooms.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role = Column(Text, nullable=False, default="member")
    joined_at = _created_at()

    __table_args__ = (UniqueConstraint("room_id", "user_id", name="uq_chat_room_member"),)
