"""Domain exceptions and the FastAPI handlers that render them."""
from typing import Any, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from app.utils.logger import get_logger
from app.config.sentry import capture_exception, add_breadcrumb, settings

logger = get_logger(__name__)


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Optional[Any] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code or "APP_ERROR"
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AppError):
    """Input is incomplete or malformed (claim fields, upload checks)."""

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            code="VALIDATION_ERROR",
            details=details or {},
        )


class NotFoundError(AppError):
    """Resource not found error."""

    def __init__(self, resource: str, identifier: Optional[str] = None):
        message = f"{resource} not found"
        if identifier:
            message += f" (id: {identifier})"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            code="NOT_FOUND",
        )


class ConflictError(AppError):
    """Operation is not allowed in the entity's current state."""

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            code="CONFLICT",
            details=details or {},
        )


class ImportParseError(AppError):
    """A remittance file produced no usable records."""

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            code="IMPORT_PARSE_ERROR",
            details=details or {},
        )


class MatchAmbiguityError(AppError):
    """More than one candidate scored within the tie margin of the best match."""

    def __init__(self, message: str, candidates: Optional[list] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            code="MATCH_AMBIGUOUS",
            details={"candidates": candidates or []},
        )


class ExternalSubmissionFailure(AppError):
    """The claim submission gateway refused or could not be reached."""

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            code="SUBMISSION_FAILED",
            details=details or {},
        )


def _request_context(request: Request) -> dict:
    return {
        "path": request.url.path,
        "method": request.method,
        "query_params": dict(request.query_params),
    }


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle application errors."""
    add_breadcrumb(
        message=f"Application error: {exc.code}",
        category="error",
        level="warning" if exc.status_code < 500 else "error",
        data={
            "path": request.url.path,
            "method": request.method,
            "status_code": exc.status_code,
        },
    )

    logger.warning(
        "Application error",
        error=exc.code,
        message=exc.message,
        path=request.url.path,
        status_code=exc.status_code,
    )

    # Server errors always alert; client errors only when alert_on_errors is set
    should_alert = settings.enable_alerts and (
        exc.status_code >= 500 or settings.alert_on_errors
    )
    if should_alert:
        capture_exception(
            exc,
            level="error" if exc.status_code >= 500 else "warning",
            context={
                "request": _request_context(request),
                "error": {
                    "code": exc.code,
                    "message": exc.message,
                    "status_code": exc.status_code,
                },
            },
            tags={
                "error_type": exc.code,
                "status_code": str(exc.status_code),
                "path": request.url.path,
            },
        )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.code,
            "message": exc.message,
            "details": exc.details,
        },
    )


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request body / query validation errors raised by FastAPI."""
    errors = exc.errors()
    add_breadcrumb(
        message="Request validation failed",
        category="validation",
        level="warning",
        data={"path": request.url.path, "method": request.method},
    )

    logger.warning("Request validation error", path=request.url.path, errors=errors)

    if settings.enable_alerts and settings.alert_on_warnings:
        capture_exception(
            exc,
            level="warning",
            context={"request": _request_context(request)},
            tags={"error_type": "VALIDATION_ERROR", "path": request.url.path},
        )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": [
                {"loc": list(err.get("loc", [])), "msg": err.get("msg"), "type": err.get("type")}
                for err in errors
            ],
        },
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    add_breadcrumb(
        message=f"Unexpected error: {type(exc).__name__}",
        category="exception",
        level="error",
        data={
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
        },
    )

    logger.error(
        "Unexpected error",
        error=str(exc),
        path=request.url.path,
        exc_info=True,
    )

    if settings.enable_alerts:
        capture_exception(
            exc,
            level="error",
            context={"request": {**_request_context(request), "url": str(request.url)}},
            tags={"error_type": type(exc).__name__, "path": request.url.path},
        )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred",
        },
    )
