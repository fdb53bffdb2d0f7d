"""
API Routes Package
"""
from . import (
    health,
    auth,
    mess,
    meal_plans,
    meals,
    memberships,
    join_requests,
    payment_requests,
    payment_verification,
    transactions,
    meal_activation,
    notifications,
    credits,
    leave_requests,
)
