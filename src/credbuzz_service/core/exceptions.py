"""Service error type and handlers for consistent error responses."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from credbuzz_service.logging import get_logger

if TYPE_CHECKING:
    from fastapi import FastAPI, Request
    from starlette.types import ExceptionHandler

__all__ = [
    "ServiceError",
    "account_not_found",
    "forbidden",
    "insufficient_credits",
    "invalid_state",
    "register_exception_handlers",
    "task_not_found",
    "unauthenticated",
    "validation_error",
]


class ServiceError(Exception):
    """Domain error carrying a stable error code and an HTTP status."""

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error = error
        self.message = message
        self.status_code = status_code
        self.details: dict[str, Any] = details if details is not None else {}


def validation_error(message: str, details: dict[str, Any] | None = None) -> ServiceError:
    return ServiceError("VALIDATION_ERROR", message, 400, details)


def insufficient_credits(message: str = "Insufficient credits") -> ServiceError:
    return ServiceError("INSUFFICIENT_CREDITS", message, 400, {})


def invalid_state(message: str) -> ServiceError:
    return ServiceError("INVALID_STATE", message, 400, {})


def unauthenticated(message: str = "Not authorized to access this route") -> ServiceError:
    return ServiceError("UNAUTHENTICATED", message, 401, {})


def forbidden(message: str) -> ServiceError:
    return ServiceError("FORBIDDEN", message, 403, {})


def task_not_found() -> ServiceError:
    return ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})


def account_not_found() -> ServiceError:
    return ServiceError("ACCOUNT_NOT_FOUND", "Account not found", 404, {})


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Handle ServiceError exceptions."""
    logger = get_logger(__name__)
    logger.warning(
        "Service error",
        extra={
            "error_code": exc.error,
            "status_code": exc.status_code,
            "path": str(request.url.path),
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "message": exc.message, "details": exc.details},
    )


async def unhandled_exception_handler(request: Request, _exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger = get_logger(__name__)
    logger.exception("Unhandled exception", extra={"path": str(request.url.path)})
    return JSONResponse(
        status_code=500,
        content={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred",
            "details": {},
        },
    )


async def http_exception_handler(
    _request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """Handle Starlette HTTP exceptions (e.g., 404/405 from router)."""
    if exc.status_code == 405:
        return JSONResponse(
            status_code=405,
            content={
                "error": "METHOD_NOT_ALLOWED",
                "message": "Method not allowed",
                "details": {},
            },
        )
    if exc.status_code == 404:
        return JSONResponse(
            status_code=404,
            content={
                "error": "NOT_FOUND",
                "message": "Resource not found",
                "details": {},
            },
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "HTTP_ERROR",
            "message": str(exc.detail),
            "details": {},
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the app."""
    app.add_exception_handler(ServiceError, cast("ExceptionHandler", service_error_handler))
    app.add_exception_handler(Exception, unhandled_exception_handler)
    app.add_exception_handler(
        StarletteHTTPException,
        cast("ExceptionHandler", http_exception_handler),
    )
