"""RFC 7807 Problem Details exception handlers for FastAPI.

Translates gate exceptions into ``application/problem+json`` responses.
Every response carries a machine-readable ``error_code``; a client never
receives a bare "unauthorized" without the reason.

Usage:
    from tessera.infra.fastapi.error_handlers import register_exception_handlers

    app = FastAPI()
    register_exception_handlers(app)
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from tessera.foundation.application.context import NoSessionContextError
from tessera.foundation.domain.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    DomainError,
    QuotaExceededError,
    ResolutionError,
    StorageUnavailableError,
    TenantNotFoundError,
)
from tessera.infra.fastapi.middleware.request_id import get_request_id

if TYPE_CHECKING:
    from fastapi import FastAPI, Request

logger = logging.getLogger(__name__)

PROBLEM_MEDIA_TYPE = "application/problem+json"

# Seconds clients should wait before retrying after a store outage.
STORAGE_RETRY_AFTER = 5


class ProblemDetail(BaseModel):
    """RFC 7807 Problem Details response model.

    Extension fields:
    - error_code: Machine-readable error code for client handling
    - context: Structured debugging information
    - correlation_id: Request correlation ID (5xx errors only)
    """

    type: str = Field(
        ...,
        description="URI reference identifying problem type",
        examples=["/errors/expired", "/errors/limit-exceeded"],
    )
    title: str = Field(..., description="Short human-readable summary")
    status: int = Field(..., ge=400, le=599, description="HTTP status code")
    detail: str = Field(..., description="Human-readable explanation")
    instance: str | None = Field(
        default=None,
        description="URI reference to specific occurrence (request path)",
    )
    error_code: str | None = Field(
        default=None,
        description="Machine-readable error code",
        examples=["EXPIRED", "ALREADY_IMPERSONATING", "LIMIT_EXCEEDED"],
    )
    context: dict[str, Any] | None = Field(
        default=None,
        description="Structured debugging information",
    )
    correlation_id: str | None = Field(
        default=None,
        description="Request correlation ID for support requests",
    )


# Patterns for sensitive data
_SENSITIVE_PATTERNS = [
    (
        re.compile(r"postgresql(\+\w+)?://[^@]*@[^/\s]*"),
        "postgresql://[REDACTED]@[REDACTED]",
    ),
    (
        re.compile(r"password\s*=\s*['\"]?[^'\"\s]+['\"]?", re.IGNORECASE),
        "password=[REDACTED]",
    ),
    (
        re.compile(r"secret\s*=\s*['\"]?[^'\"\s]+['\"]?", re.IGNORECASE),
        "secret=[REDACTED]",
    ),
    (
        re.compile(r"\beyJ[\w-]*\.[\w-]*\.[\w-]*"),
        "[REDACTED_JWT]",
    ),
]

_SENSITIVE_KEYS = frozenset({"password", "secret", "token", "credential", "shared_secret"})


def _create_problem_response(
    problem: ProblemDetail,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=problem.status,
        content=problem.model_dump(exclude_none=True),
        media_type=PROBLEM_MEDIA_TYPE,
        headers=headers,
    )


def _get_correlation_id() -> str:
    """Request ID set by RequestIdMiddleware, or "unknown" outside a request."""
    return get_request_id() or "unknown"


def _sanitize_context(context: dict[str, Any] | None) -> dict[str, Any] | None:
    """Sanitize context dictionary for safe inclusion in responses.

    - Converts UUIDs and datetimes to strings
    - Drops sensitive keys and redacts sensitive string patterns
    - Handles non-serializable types gracefully
    """
    if context is None:
        return None

    sanitized = {}
    for key, value in context.items():
        if key.lower() in _SENSITIVE_KEYS:
            continue
        sanitized[key] = _sanitize_value(value)

    return sanitized if sanitized else None


def _sanitize_value(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, str):
        return _redact_sensitive_strings(value)
    if isinstance(value, dict):
        return _sanitize_context(value)
    if isinstance(value, (list, tuple)):
        return [_sanitize_value(v) for v in value]
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


def _redact_sensitive_strings(text: str) -> str:
    result = text
    for pattern, replacement in _SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def _problem_type(error_code: str) -> str:
    return f"/errors/{error_code.lower().replace('_', '-')}"


async def authentication_error_handler(
    request: Request,
    exc: AuthenticationError,
) -> JSONResponse:
    """Translate AuthenticationError (and CredentialError) to 401.

    Per RFC 6750 Section 3, all 401 responses for Bearer token errors
    MUST include a WWW-Authenticate header.
    """
    problem = ProblemDetail(
        type=_problem_type(exc.error_code),
        title="Unauthorized",
        status=401,
        detail=exc.message,
        instance=str(request.url.path),
        error_code=exc.error_code,
    )
    return _create_problem_response(
        problem,
        headers={"WWW-Authenticate": f'Bearer realm="API", error="{exc.auth_error}"'},
    )


async def missing_session_handler(
    request: Request,
    exc: NoSessionContextError,
) -> JSONResponse:
    """Translate a handler reached without a session to 401."""
    problem = ProblemDetail(
        type="/errors/missing-credential",
        title="Unauthorized",
        status=401,
        detail="Authentication is required",
        instance=str(request.url.path),
        error_code="MISSING_CREDENTIAL",
    )
    return _create_problem_response(problem, headers={"WWW-Authenticate": 'Bearer realm="API"'})


async def authorization_error_handler(
    request: Request,
    exc: AuthorizationError,
) -> JSONResponse:
    """Translate AuthorizationError to 403 Forbidden."""
    problem = ProblemDetail(
        type=_problem_type(exc.error_code),
        title="Forbidden",
        status=403,
        detail=exc.message,
        instance=str(request.url.path),
        error_code=exc.error_code,
        context=_sanitize_context(exc.context) if exc.context else None,
    )
    return _create_problem_response(problem)


async def tenant_not_found_handler(
    request: Request,
    exc: TenantNotFoundError,
) -> JSONResponse:
    """Translate TenantNotFoundError to 404."""
    problem = ProblemDetail(
        type=_problem_type(exc.error_code),
        title="Tenant Not Found",
        status=404,
        detail=exc.message,
        instance=str(request.url.path),
        error_code=exc.error_code,
        context=_sanitize_context(exc.context),
    )
    return _create_problem_response(problem)


async def quota_exceeded_handler(
    request: Request,
    exc: QuotaExceededError,
) -> JSONResponse:
    """Translate QuotaExceededError to 429 with rate-limit headers.

    Response includes:
    - RFC 7807 body with ``current_usage`` and ``limit`` in the context
    - X-RateLimit-Limit header: the plan limit
    - X-RateLimit-Remaining header: remaining units (always 0 on 429)
    """
    problem = ProblemDetail(
        type="/errors/limit-exceeded",
        title="Usage Limit Exceeded",
        status=429,
        detail=exc.message,
        instance=str(request.url.path),
        error_code=exc.error_code,
        context=_sanitize_context(exc.context),
    )
    return _create_problem_response(
        problem,
        headers={
            "X-RateLimit-Limit": str(exc.limit),
            "X-RateLimit-Remaining": str(max(0, exc.limit - exc.current_usage)),
        },
    )


async def conflict_error_handler(
    request: Request,
    exc: ConflictError,
) -> JSONResponse:
    """Translate ConflictError to 409."""
    problem = ProblemDetail(
        type="/errors/conflict",
        title="Conflict",
        status=409,
        detail=exc.message,
        instance=str(request.url.path),
        error_code=exc.error_code,
        context=_sanitize_context(exc.context),
    )
    return _create_problem_response(problem)


async def resolution_error_handler(
    request: Request,
    exc: ResolutionError,
) -> JSONResponse:
    """Translate ResolutionError (missing reference data) to 500."""
    correlation_id = _get_correlation_id()
    logger.error(
        "reference_data_missing",
        extra={"correlation_id": correlation_id, "context": exc.context},
    )
    problem = ProblemDetail(
        type=_problem_type(exc.error_code),
        title="Internal Server Error",
        status=500,
        detail="Required reference data is missing. Please contact support.",
        instance=str(request.url.path),
        error_code=exc.error_code,
        correlation_id=correlation_id,
    )
    return _create_problem_response(problem)


async def storage_unavailable_handler(
    request: Request,
    exc: StorageUnavailableError,
) -> JSONResponse:
    """Translate StorageUnavailableError to 503. The operation was denied."""
    correlation_id = _get_correlation_id()
    logger.error(
        "request_denied_storage_unavailable",
        extra={
            "correlation_id": correlation_id,
            "operation": exc.operation,
            "path": str(request.url.path),
        },
    )
    problem = ProblemDetail(
        type=_problem_type(exc.error_code),
        title="Service Unavailable",
        status=503,
        detail="The service is temporarily unavailable. Please retry shortly.",
        instance=str(request.url.path),
        error_code=exc.error_code,
        correlation_id=correlation_id,
    )
    return _create_problem_response(problem, headers={"Retry-After": str(STORAGE_RETRY_AFTER)})


async def domain_error_handler(
    request: Request,
    exc: DomainError,
) -> JSONResponse:
    """Fallback: translate any other DomainError to 400 Bad Request."""
    problem = ProblemDetail(
        type="/errors/domain-error",
        title="Bad Request",
        status=400,
        detail=exc.message,
        instance=str(request.url.path),
        error_code=exc.error_code,
        context=_sanitize_context(exc.context),
    )
    return _create_problem_response(problem)


async def request_validation_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Translate Pydantic RequestValidationError to 422."""
    errors = [
        {
            "loc": list(error.get("loc", [])),
            "msg": error.get("msg", ""),
            "type": error.get("type", ""),
        }
        for error in exc.errors()
    ]
    problem = ProblemDetail(
        type="/errors/request-validation-error",
        title="Request Validation Error",
        status=422,
        detail="Request validation failed",
        instance=str(request.url.path),
        error_code="REQUEST_VALIDATION_ERROR",
        context={"errors": errors},
    )
    return _create_problem_response(problem)


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Catch-all handler for unhandled exceptions.

    Logs full exception details but returns a sanitized response.
    """
    correlation_id = _get_correlation_id()
    logger.exception(
        "unhandled_exception",
        extra={
            "correlation_id": correlation_id,
            "path": str(request.url.path),
            "method": request.method,
            "exception_type": type(exc).__name__,
        },
    )

    problem = ProblemDetail(
        type="/errors/internal-error",
        title="Internal Server Error",
        status=500,
        detail="An internal error occurred. Please contact support with the correlation ID.",
        instance=str(request.url.path),
        error_code="INTERNAL_ERROR",
        correlation_id=correlation_id,
    )
    return _create_problem_response(problem)


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the application.

    Starlette resolves handlers along the exception MRO, so subclasses
    (CredentialError, TenantNotFoundError) reach their own handler first:
    1. AuthenticationError -> 401
    2. NoSessionContextError -> 401
    3. AuthorizationError -> 403, TenantNotFoundError -> 404
    4. QuotaExceededError -> 429
    5. ConflictError -> 409
    6. ResolutionError -> 500
    7. StorageUnavailableError -> 503
    8. DomainError -> 400 (base class fallback)
    9. RequestValidationError -> 422 (Pydantic)
    10. Exception -> 500 (catch-all)
    """
    # Starlette's handler typing is stricter than the per-exception handlers.
    app.add_exception_handler(AuthenticationError, authentication_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(NoSessionContextError, missing_session_handler)  # type: ignore[arg-type]
    app.add_exception_handler(AuthorizationError, authorization_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(TenantNotFoundError, tenant_not_found_handler)  # type: ignore[arg-type]
    app.add_exception_handler(QuotaExceededError, quota_exceeded_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ConflictError, conflict_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ResolutionError, resolution_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StorageUnavailableError, storage_unavailable_handler)  # type: ignore[arg-type]
    app.add_exception_handler(DomainError, domain_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, request_validation_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)
