"""
Application factory and setup functions.

Builds the FastAPI application: lifespan, CORS, error handlers and the
`/api/v1` routers.
"""
import os
from contextlib import asynccontextmanager
from typing import Callable, List

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.config.database import init_db
from app.utils.errors import (
    AppError,
    app_error_handler,
    general_exception_handler,
    validation_error_handler,
)
from app.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://localhost:8000"


def get_cors_origins() -> List[str]:
    """Allowed origins from CORS_ORIGINS (comma-separated)."""
    raw = os.getenv("CORS_ORIGINS", DEFAULT_CORS_ORIGINS)
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def create_lifespan() -> Callable:
    """
    Create application lifespan context manager.

    Returns:
        Async context manager for application startup and shutdown events.
    """
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting application...")
        await init_db()
        logger.info("Application started successfully")
        yield
        logger.info("Shutting down application...")

    return lifespan


def setup_middleware(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )
    logger.info("Middleware configured successfully")


def setup_error_handlers(app: FastAPI) -> None:
    """
    Register all application error handlers.

    Error handlers are registered in order of specificity:
    1. AppError (domain errors: validation, not found, conflict, import, gateway)
    2. RequestValidationError (FastAPI validation errors)
    3. Exception (catch-all for unexpected errors)
    """
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    logger.info("Error handlers registered successfully")


def register_routes(app: FastAPI) -> None:
    """Register the API routers under /api/v1."""
    from app.api.routes import claims, era, health, invoices, payments

    app.include_router(health.router, prefix="/api/v1", tags=["health"])
    app.include_router(claims.router, prefix="/api/v1", tags=["claims"])
    app.include_router(era.router, prefix="/api/v1", tags=["remittance"])
    app.include_router(invoices.router, prefix="/api/v1", tags=["invoices"])
    app.include_router(payments.router, prefix="/api/v1", tags=["payments"])

    logger.info("Routes registered successfully")


def create_application() -> FastAPI:
    """
    Create and configure FastAPI application instance.

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title="Claims Reconciliation Engine",
        description="Claim lifecycle, remittance import and payment reconciliation for medical billing",
        version="1.0.0",
        lifespan=create_lifespan(),
    )

    setup_middleware(app)
    setup_error_handlers(app)
    register_routes(app)

    return app
