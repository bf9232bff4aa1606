"""Bearer authentication middleware.

Extracts ``Authorization: Bearer <credential>``, runs the access gate
pipeline (verify -> resolve -> build) and publishes the resulting
``SessionContext`` for the duration of the request.

Middleware position in stack (LIFO registration order):
  Request -> RequestId -> BearerAuth -> CORS -> Route

Return JSONResponse directly for auth errors (not raise HTTPException)
because BaseHTTPMiddleware dispatch cannot propagate exceptions through
the ASGI stack.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from tessera.foundation.application.context import clear_session_context, set_session_context
from tessera.foundation.domain.exceptions import (
    AuthorizationError,
    CredentialError,
    DomainError,
    ResolutionError,
    StorageUnavailableError,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from starlette.requests import Request
    from starlette.responses import Response

    from tessera.domain.identity.gate import AccessGate

logger = logging.getLogger(__name__)

# Default paths excluded from bearer authentication.
_DEFAULT_EXCLUDED_PREFIXES = (
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
)

_PROBLEM_MEDIA_TYPE = "application/problem+json"

_TITLE_MAP = {
    401: "Unauthorized",
    403: "Forbidden",
    500: "Internal Server Error",
    503: "Service Unavailable",
}

_SESSION_LOG_KEYS = ("principal_id", "tenant_id", "actor_id", "impersonating")


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """Authenticates requests through the ``AccessGate`` on ``app.state``.

    Request flow:
    1. Check if path is excluded -> skip auth
    2. Extract Authorization: Bearer <credential> header. On an optional-auth
       path a request without a bearer header continues anonymously.
    3. ``AccessGate.authenticate`` -> SessionContext
    4. Publish the session (ContextVar, request.state, structlog context)
    5. Call next middleware/handler

    Error flow:
    - Missing header -> 401 (MISSING_CREDENTIAL)
    - Malformed header -> 401 (MALFORMED)
    - Rejected credential -> 401 with the verifier reason code
    - Elevated credential not usable -> 403 (NOT_AUTHORIZED)
    - Missing reference data -> 500 (REFERENCE_DATA_MISSING)
    - Store unavailable or gate not wired -> 503

    All 401 responses include WWW-Authenticate: Bearer header per RFC 6750.
    """

    def __init__(
        self,
        app: Any,
        excluded_prefixes: tuple[str, ...] | None = None,
        optional_prefixes: tuple[str, ...] = (),
    ) -> None:
        super().__init__(app)
        self._excluded_prefixes = (
            excluded_prefixes if excluded_prefixes is not None else _DEFAULT_EXCLUDED_PREFIXES
        )
        self._optional_prefixes = optional_prefixes

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        # 1. Skip excluded paths
        path = request.url.path
        if any(path.startswith(prefix) for prefix in self._excluded_prefixes):
            return await call_next(request)

        # 2. Extract Bearer credential
        auth_header = request.headers.get("Authorization", "")
        if not auth_header.lower().startswith("bearer ") and any(
            path.startswith(prefix) for prefix in self._optional_prefixes
        ):
            return await call_next(request)
        if not auth_header:
            return self._auth_error(
                request, 401, "missing_credential", "Authorization header is required"
            )
        scheme, _, credential = auth_header.partition(" ")
        credential = credential.strip()
        if scheme.lower() != "bearer" or not credential:
            return self._auth_error(
                request, 401, "malformed", "Authorization header must use Bearer scheme"
            )

        gate: AccessGate | None = getattr(request.app.state, "access_gate", None)
        if gate is None:
            return self._auth_error(
                request, 503, "service_unavailable", "Authentication service not configured"
            )

        # 3. Authenticate
        try:
            session = await gate.authenticate(credential)
        except CredentialError as exc:
            return self._auth_error(request, 401, exc.error_code, exc.message)
        except AuthorizationError as exc:
            return self._auth_error(request, 403, exc.error_code, exc.message)
        except ResolutionError as exc:
            logger.error("auth_reference_data_missing", extra={"context": exc.context})
            return self._auth_error(request, 500, exc.error_code, "Reference data is missing")
        except StorageUnavailableError as exc:
            logger.error("auth_storage_unavailable", extra={"operation": exc.operation})
            return self._auth_error(request, 503, exc.error_code, "Authentication store unavailable")
        except DomainError as exc:
            return self._auth_error(request, 401, exc.error_code, exc.message)

        # 4. Publish session and continue
        request.state.session = session
        session_token = set_session_context(session)
        structlog.contextvars.bind_contextvars(
            principal_id=str(session.principal.id),
            tenant_id=session.tenant_id,
            actor_id=str(session.audit_actor_id),
            impersonating=session.impersonating,
        )
        try:
            return await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars(*_SESSION_LOG_KEYS)
            clear_session_context(session_token)

    def _auth_error(
        self,
        request: Request,
        status_code: int,
        error_code: str,
        message: str,
    ) -> JSONResponse:
        """Build RFC 7807 + RFC 6750 compliant error response."""
        logger.info(
            "auth_validation_failed",
            extra={
                "error_code": error_code,
                "path": request.url.path,
                "method": request.method,
            },
        )

        headers: dict[str, str] = {}
        if status_code == 401:
            headers["WWW-Authenticate"] = (
                f'Bearer realm="API", error="invalid_token", error_description="{message}"'
            )

        return JSONResponse(
            status_code=status_code,
            content={
                "type": f"/errors/{error_code.lower().replace('_', '-')}",
                "title": _TITLE_MAP.get(status_code, "Error"),
                "status": status_code,
                "detail": message,
                "error_code": error_code.upper(),
                "instance": str(request.url.path),
            },
            media_type=_PROBLEM_MEDIA_TYPE,
            headers=headers,
        )
