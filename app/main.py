"""
Main FastAPI application.

This is the entry point for the API server:

    uvicorn app.main:app
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from app.core.config import settings
from app.core.logging_config import configure_logging
from app.core.middleware import RequestLoggingMiddleware
from app.db.session import engine
from app.errors import AppError, app_error_handler, request_validation_error_handler
from app.routers import health, identify

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for the FastAPI app.

    On shutdown the connection pool is disposed.
    """
    logger.info("Starting %s", settings.APP_NAME)

    yield

    logger.info("Shutting down %s", settings.APP_NAME)
    await engine.dispose()


# Create the FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="Resolves email/phone observations into consolidated contact identities",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)
app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_error_handler)

# Include routers (API endpoints)
app.include_router(health.router, tags=["Health"])
app.include_router(identify.router)
