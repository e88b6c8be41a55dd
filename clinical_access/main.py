"""FastAPI application entry point."""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from clinical_access import __version__
from clinical_access.api.v1.router import api_router
from clinical_access.core.config import settings
from clinical_access.core.exceptions import AccessControlError, InternalError
from clinical_access.core.logging import setup_logging
from clinical_access.db.init_db import create_tables
from clinical_access.tasks.expiration_sweep import sweep_loop

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown events."""
    # Startup
    logger.info(f"Starting Clinical Access API (env={settings.env})")

    if settings.init_db_on_startup and settings.is_dev:
        logger.info("Initializing database...")
        await create_tables()

    sweep_task = None
    if settings.expiration_sweep_enabled:
        sweep_task = asyncio.create_task(sweep_loop())

    yield

    # Shutdown
    if sweep_task is not None:
        sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweep_task
    logger.info("Shutting down Clinical Access API")


# Create FastAPI application
app = FastAPI(
    title="Clinical Access API",
    description="Patient-controlled access to clinical documents",
    version=__version__,
    docs_url="/docs" if settings.is_dev else None,
    redoc_url="/redoc" if settings.is_dev else None,
    openapi_url="/openapi.json" if settings.is_dev else None,
    lifespan=lifespan,
)

# CORS middleware (configure appropriately for production)
if settings.is_dev:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:3001"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(AccessControlError)
async def access_control_error_handler(request: Request, exc: AccessControlError) -> JSONResponse:
    """Translate domain errors to their HTTP status."""
    if exc.http_status >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.http_status,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Store failures are internal errors, never a decision."""
    logger.exception(f"Database error on {request.url.path}: {exc}")
    error = InternalError("Policy store unavailable")
    return JSONResponse(
        status_code=error.http_status,
        content={"detail": error.message, "error": type(error).__name__},
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions."""
    logger.exception(f"Unhandled exception: {exc}")

    # Don't expose internal errors in production
    if settings.is_prod:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc)},
    )


# Include API router
app.include_router(api_router, prefix="/api/v1")


# Root endpoint
@app.get("/", include_in_schema=False)
async def root() -> dict:
    """Root endpoint redirect to docs."""
    return {
        "service": "Clinical Access API",
        "version": __version__,
        "docs": "/docs" if settings.is_dev else "Disabled in production",
    }
