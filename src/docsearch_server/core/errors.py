"""
Error Taxonomy & Global Error Handling

This module defines the service-level exception hierarchy and the
application-wide exception handlers that convert it into HTTP responses.

Design Goals
------------
- One exception type per caller-visible condition
- Never leak internal exception details to clients
- Expected conditions (validation, not-found) are not logged as errors
- Dependency failures are logged with the dependency name
"""

from __future__ import annotations

import logging
from typing import Dict, Any, Optional

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger("docsearch.errors")


# ---------------------------------------------------------------------
# Exception Hierarchy
# ---------------------------------------------------------------------

class ServiceError(Exception):
    """Base class for all errors the service reports to callers."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "service_error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(ServiceError):
    """A required field is missing or blank. Raised before any I/O."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "validation_error"


class NotFoundError(ServiceError):
    """
    The (id, tenant) pair does not resolve.

    Deliberately carries no hint whether the id exists under another tenant.
    """

    status_code = status.HTTP_404_NOT_FOUND
    error_code = "not_found"


class RateLimitedError(ServiceError):
    """The tenant exceeded its request quota for the current window."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error_code = "rate_limited"

    def __init__(self, detail: str, retry_after: Optional[int] = None) -> None:
        super().__init__(detail)
        self.retry_after = retry_after


class DependencyUnavailableError(ServiceError):
    """The record store, index engine, cache or channel is unreachable."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "dependency_unavailable"

    def __init__(self, dependency: str, detail: str) -> None:
        super().__init__(detail)
        self.dependency = dependency


class IndexingFailureError(ServiceError):
    """The index engine is reachable but rejected the write."""

    status_code = status.HTTP_502_BAD_GATEWAY
    error_code = "indexing_failure"


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

async def service_error_handler(
    request: Request,
    exc: ServiceError,
) -> JSONResponse:
    """
    Convert a ServiceError into its caller-visible JSON response.

    Validation and not-found are expected conditions and logged at debug
    level only. Dependency and indexing failures are logged as warnings or
    errors with enough context to locate the failing collaborator.
    """
    headers: Dict[str, str] = {}

    if isinstance(exc, (ValidationError, NotFoundError)):
        logger.debug("%s %s -> %s", request.method, request.url.path, exc.error_code)
    elif isinstance(exc, RateLimitedError):
        if exc.retry_after is not None:
            headers["Retry-After"] = str(exc.retry_after)
    elif isinstance(exc, DependencyUnavailableError):
        logger.warning(
            "Dependency '%s' unavailable during %s %s: %s",
            exc.dependency,
            request.method,
            request.url.path,
            exc.detail,
        )
    else:
        logger.error(
            "Service error during %s %s: %s",
            request.method,
            request.url.path,
            exc.detail,
        )

    payload: Dict[str, Any] = {
        "error": exc.error_code,
        "detail": exc.detail,
    }

    return JSONResponse(
        status_code=exc.status_code,
        content=payload,
        headers=headers or None,
    )


async def request_validation_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """
    Report malformed requests (bad path ids, non-integer paging, invalid
    JSON bodies) as validation errors, like blank required fields.
    """
    logger.debug("%s %s -> validation_error", request.method, request.url.path)

    problems = [
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', 'invalid')}"
        for err in exc.errors()
    ]
    payload: Dict[str, Any] = {
        "error": ValidationError.error_code,
        "detail": "; ".join(problems) or "Invalid request",
    }

    return JSONResponse(
        status_code=ValidationError.status_code,
        content=payload,
    )


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Catch-all handler for uncaught exceptions.

    Logs the full stack trace internally and returns a generic 500 with no
    internal details.
    """

    # Log full traceback internally (never returned to client)
    logger.exception(
        "Unhandled exception during request: %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )

    # Deterministic, minimal external error surface
    payload: Dict[str, Any] = {
        "error": "internal_server_error",
        "detail": "Internal server error",
    }

    return JSONResponse(
        status_code=500,
        content=payload,
    )
