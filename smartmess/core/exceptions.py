"""Custom exception types and the JSON error envelope for the API layer."""
from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm.exc import StaleDataError
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base app exception."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    error_code: str | None = None

    def __init__(
        self,
        message: str,
        *,
        data: dict[str, Any] | None = None,
        error_code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.data = data
        if error_code:
            self.error_code = error_code


class ValidationError(AppError):
    """Validation failure for user input."""


class AuthenticationError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED


class PermissionDeniedError(AppError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND


class AlreadyProcessedError(AppError):
    """A request was already approved or rejected."""


class InsufficientCreditsError(AppError):
    """The mess does not hold enough credits to admit another member."""

    error_code = "INSUFFICIENT_CREDITS"

    def __init__(self, required_credits: int, available_credits: int, message: str | None = None) -> None:
        super().__init__(
            message
            or (
                f"Insufficient credits to approve this user. You need {required_credits} credits "
                f"but only have {available_credits} available. Please purchase more credits to continue."
            ),
            data={
                "required_credits": required_credits,
                "available_credits": available_credits,
                "redirect_to": "/mess-owner/platform-subscription",
            },
        )
        self.required_credits = required_credits
        self.available_credits = available_credits


class ConcurrencyConflictError(AppError):
    """Another request modified the same record first."""

    status_code = status.HTTP_409_CONFLICT
    error_code = "CONCURRENT_MODIFICATION"


def error_envelope(message: str, data: Any = None, error: str | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "message": message}
    if data is not None:
        body["data"] = data
    if error:
        body["error"] = error
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """Translate every failure into the ``{success, message}`` envelope."""

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_envelope(exc.message, exc.data, exc.error_code),
        )

    @app.exception_handler(StaleDataError)
    async def handle_stale_data(request: Request, exc: StaleDataError) -> JSONResponse:
        logger.warning("Concurrent update rejected on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=error_envelope(
                "This record was modified by another request. Please retry.",
                error=ConcurrencyConflictError.error_code,
            ),
        )

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=error_envelope(str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "message": err.get("msg")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=422,
            content=error_envelope("Invalid request", data={"errors": errors}),
        )
