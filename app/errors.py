"""Structured error types and helpers for API responses."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def build_error_payload(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    payload = {"error": {"code": code, "message": message}}
    if details is not None:
        payload["error"]["details"] = details
    return payload


class AppError(Exception):
    """Application-scoped error for standardized API responses."""

    def __init__(self, status_code: int, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.payload = build_error_payload(code, message, details)


class ValidationError(AppError):
    """The observation cannot be resolved as submitted (client error, never retried)."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(400, "validation_error", message, details)


class NotFoundError(AppError):
    """Resolution reached no determinable identity."""

    def __init__(self, message: str = "Contact not found", details: Optional[Dict[str, Any]] = None):
        super().__init__(404, "not_found", message, details)


class StorageError(AppError):
    """The contact store failed."""

    def __init__(
        self,
        message: str = "Contact store unavailable",
        details: Optional[Dict[str, Any]] = None,
        code: str = "storage_error",
    ):
        super().__init__(503, code, message, details)


class ConflictError(StorageError):
    """
    Retryable storage failure.

    Raised for unique-constraint races, serialization failures, deadlocks and
    identities that changed between read and lock. The whole read-decide-write
    sequence must be re-run from scratch.
    """

    def __init__(self, message: str = "Concurrent update to contact graph", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="storage_conflict")


async def app_error_handler(_: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.payload)


async def request_validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    payload = build_error_payload(
        "invalid_request",
        "Request body is malformed",
        {"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(status_code=400, content=payload)
