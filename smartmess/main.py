"""
SmartMess - FastAPI Application
Billing, subscription and meal activation API for mess services
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from smartmess import __version__
from smartmess.api import websocket
from smartmess.api.routes import (
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
from smartmess.config import settings
from smartmess.core.exceptions import register_exception_handlers
from smartmess.core.logger import configure_logging, get_logger
from smartmess.core.utils import utcnow
from smartmess.database import init_db

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    configure_logging()
    logger.info("Starting %s...", settings.app_name)

    try:
        init_db()
        logger.info("Database initialized")
    except SQLAlchemyError:
        logger.exception("Database initialization failed")

    logger.info("API running on %s environment", settings.app_env)
    yield
    logger.info("Shutting down %s...", settings.app_name)


app = FastAPI(
    title=settings.app_name,
    description="Billing and subscription API for mess services",
    version=__version__,
    lifespan=lifespan,
)

# Respect forwarded proto/host behind a reverse proxy.
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.get("/")
async def root() -> dict:
    return {
        "name": settings.app_name,
        "version": __version__,
        "environment": settings.app_env,
        "timestamp": utcnow().isoformat(),
    }


prefix = settings.api_prefix
app.include_router(health.router, prefix=prefix, tags=["Health"])
app.include_router(auth.router, prefix=f"{prefix}/auth", tags=["Auth"])
app.include_router(mess.router, prefix=f"{prefix}/mess", tags=["Mess"])
app.include_router(meal_plans.router, prefix=f"{prefix}/meal-plans", tags=["Meal Plans"])
app.include_router(meals.router, prefix=f"{prefix}/meals", tags=["Meals"])
app.include_router(memberships.router, prefix=f"{prefix}/memberships", tags=["Memberships"])
app.include_router(join_requests.router, prefix=f"{prefix}/join-requests", tags=["Join Requests"])
app.include_router(payment_requests.router, prefix=f"{prefix}/payment-requests", tags=["Payment Requests"])
app.include_router(
    payment_verification.router,
    prefix=f"{prefix}/payment-verification",
    tags=["Payment Verification"],
)
app.include_router(transactions.router, prefix=f"{prefix}/transactions", tags=["Transactions"])
app.include_router(meal_activation.router, prefix=f"{prefix}/meal-activation", tags=["Meal Activation"])
app.include_router(notifications.router, prefix=f"{prefix}/notifications", tags=["Notifications"])
app.include_router(credits.router, prefix=f"{prefix}/credits", tags=["Credits"])
app.include_router(leave_requests.router, prefix=f"{prefix}/leave-requests", tags=["Leave Requests"])
app.include_router(websocket.router, tags=["WebSocket"])
