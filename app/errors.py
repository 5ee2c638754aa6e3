"""
Exception hierarchy for the workstreams backend.

Every error carries an HTTP status and a machine-readable ``error`` string,
rendered by the handlers below as ``{"error": ..., "message": ...}``.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exception classes
# ---------------------------------------------------------------------------

class WorkstreamError(Exception):
    """Base class for all application-level errors."""

    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.error
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.error, "message": self.message}
        payload.update(self.details)
        return payload


class UnauthorizedError(WorkstreamError):
    http_status = status.HTTP_401_UNAUTHORIZED
    error = "Unauthorized"


class NotFoundError(WorkstreamError):
    http_status = status.HTTP_404_NOT_FOUND
    error = "Not found"


class ValidationError(WorkstreamError):
    http_status = status.HTTP_400_BAD_REQUEST
    error = "Validation Error"


class InsufficientDataError(ValidationError):
    error = "Insufficient achievements"

    def __init__(self, found: int, required: int):
        super().__init__(
            message=(
                f"At least {required} achievements are required to generate "
                f"workstreams; found {found}."
            ),
            details={"found": found, "required": required},
        )


class EmptyContentError(ValidationError):
    error = "Empty content"

    def __init__(self, achievement_id: str):
        super().__init__(message=f"Achievement {achievement_id} has no text to embed.")


class DimensionMismatchError(WorkstreamError):
    error = "Embedding dimension mismatch"

    def __init__(self, expected: int, received: int):
        super().__init__(
            message=f"Expected a {expected}-dimensional embedding, received {received}.",
            details={"expected": expected, "received": received},
        )


class UpstreamFailureError(WorkstreamError):
    error = "Upstream failure"


class GenerationFailedError(WorkstreamError):
    error = "Failed to generate workstreams"


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

async def workstream_exception_handler(request: Request, exc: WorkstreamError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return a structured 400 with per-field errors."""
    field_errors = []
    for error in exc.errors():
        field_errors.append({
            "field": ".".join(str(loc) for loc in error["loc"] if loc != "body"),
            "message": error["msg"],
            "type": error["type"],
        })
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "Validation Error",
            "message": "Request validation failed.",
            "details": field_errors,
        },
    )
