"""
Credits API Routes

Mess owners spend credits to onboard members and to settle the monthly
bill. Admins manage the pricing slabs, the purchase plans and manual
adjustments.
"""
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from smartmess.api.dependencies import get_current_user, require_admin, require_owner
from smartmess.api.responses import envelope
from smartmess.database import get_db
from smartmess.models import User
from smartmess.schemas.billing import (
    CreditAdjustment,
    CreditPurchaseRequest,
    CreditSlabCreate,
    CreditSlabUpdate,
    PurchasePlanCreate,
    PurchasePlanUpdate,
)
from smartmess.services import credit_service, join_request_service
from smartmess.services.membership_service import get_mess_of_owner
from smartmess.services.notification_service import push_notifications

router = APIRouter()


# Slabs

@router.get("/slabs")
async def list_slabs(_: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return envelope("Credit slabs", [credit_service.serialize_slab(s) for s in credit_service.active_slabs(db)])


@router.post("/slabs", status_code=status.HTTP_201_CREATED)
async def create_slab(payload: CreditSlabCreate, user: User = Depends(require_admin), db: Session = Depends(get_db)):
    slab = credit_service.create_slab(
        db,
        min_users=payload.min_users,
        max_users=payload.max_users,
        credits_per_user=payload.credits_per_user,
        created_by=user,
    )
    return envelope("Credit slab created", credit_service.serialize_slab(slab))


@router.put("/slabs/{slab_id}")
async def update_slab(
    slab_id: UUID,
    payload: CreditSlabUpdate,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    slab = credit_service.update_slab(db, slab_id, payload.model_dump(exclude_unset=True))
    return envelope("Credit slab updated", credit_service.serialize_slab(slab))


@router.delete("/slabs/{slab_id}")
async def delete_slab(slab_id: UUID, _: User = Depends(require_admin), db: Session = Depends(get_db)):
    credit_service.delete_slab(db, slab_id)
    return envelope("Credit slab deleted")


# Purchase plans

@router.get("/plans")
async def list_plans(
    include_inactive: bool = False,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    active_only = not (include_inactive and user.role == "admin")
    plans = credit_service.list_purchase_plans(db, active_only=active_only)
    return envelope("Credit purchase plans", [credit_service.serialize_purchase_plan(p) for p in plans])


@router.post("/plans", status_code=status.HTTP_201_CREATED)
async def create_plan(payload: PurchasePlanCreate, _: User = Depends(require_admin), db: Session = Depends(get_db)):
    plan = credit_service.save_purchase_plan(db, payload.model_dump())
    return envelope("Credit purchase plan created", credit_service.serialize_purchase_plan(plan))


@router.put("/plans/{plan_id}")
async def update_plan(
    plan_id: UUID,
    payload: PurchasePlanUpdate,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    plan = credit_service.save_purchase_plan(db, payload.model_dump(exclude_unset=True), plan_id=plan_id)
    return envelope("Credit purchase plan updated", credit_service.serialize_purchase_plan(plan))


@router.delete("/plans/{plan_id}")
async def delete_plan(plan_id: UUID, _: User = Depends(require_admin), db: Session = Depends(get_db)):
    credit_service.delete_purchase_plan(db, plan_id)
    return envelope("Credit purchase plan deleted")


# Mess owner

@router.get("/mess")
async def my_credits(user: User = Depends(require_owner), db: Session = Depends(get_db)):
    mess = get_mess_of_owner(db, user)
    return envelope("Mess credits", credit_service.mess_credits_details(db, mess.id))


@router.post("/purchase")
async def purchase_credits(
    payload: CreditPurchaseRequest,
    user: User = Depends(require_owner),
    db: Session = Depends(get_db),
):
    mess = get_mess_of_owner(db, user)
    credits = credit_service.purchase_credits(db, mess.id, payload.plan_id, payload.payment_reference)
    return envelope("Credits purchased successfully", credit_service.serialize_credits(credits))


@router.post("/activate-trial")
async def activate_trial(user: User = Depends(require_owner), db: Session = Depends(get_db)):
    mess = get_mess_of_owner(db, user)
    credits = credit_service.activate_free_trial(db, mess.id)
    return envelope("Free trial activated", credit_service.serialize_credits(credits))


@router.get("/bill")
async def monthly_bill(user: User = Depends(require_owner), db: Session = Depends(get_db)):
    mess = get_mess_of_owner(db, user)
    return envelope("Monthly bill", credit_service.calculate_monthly_bill(db, mess.id))


@router.post("/bill/generate")
async def generate_bill(user: User = Depends(require_owner), db: Session = Depends(get_db)):
    mess = get_mess_of_owner(db, user)
    return envelope("Pending bill generated", credit_service.generate_pending_bill(db, mess.id))


@router.post("/bill/pay")
async def pay_bill(user: User = Depends(require_owner), db: Session = Depends(get_db)):
    mess = get_mess_of_owner(db, user)
    outcome = credit_service.pay_pending_bill(db, mess.id)
    await push_notifications(outcome.notifications)
    return envelope("Bill paid successfully", outcome.data)


@router.post("/bill/process")
async def process_bill(user: User = Depends(require_owner), db: Session = Depends(get_db)):
    mess = get_mess_of_owner(db, user)
    outcome = credit_service.process_monthly_bill(db, mess.id)
    await push_notifications(outcome.notifications)
    return envelope("Monthly bill processed successfully", outcome.data)


@router.get("/calculate")
async def calculate_credits(
    user_count: int = Query(ge=0),
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return envelope("Credit calculation", credit_service.calculate_tiered_credits(db, user_count))


@router.get("/check")
async def check_credits(user: User = Depends(require_owner), db: Session = Depends(get_db)):
    mess = get_mess_of_owner(db, user)
    return envelope("Credit check", credit_service.check_credits_sufficient_for_new_user(db, mess.id))


# Admin

@router.get("/mess/{mess_id}")
async def mess_credits(mess_id: UUID, _: User = Depends(require_admin), db: Session = Depends(get_db)):
    return envelope("Mess credits", credit_service.mess_credits_details(db, mess_id))


@router.post("/mess/{mess_id}/adjust")
async def adjust_credits(
    mess_id: UUID,
    payload: CreditAdjustment,
    user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    credits = credit_service.adjust_credits(db, mess_id, payload.amount, payload.description, user)
    return envelope("Credits adjusted", credit_service.serialize_credits(credits))


@router.post("/expire-requests")
async def expire_requests(_: User = Depends(require_admin), db: Session = Depends(get_db)):
    return envelope("Expired join requests cleaned up", join_request_service.expire_stale_requests(db))
