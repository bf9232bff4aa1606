"""FastAPI dependency functions for authentication, authorization and metering.

Provides Depends()-compatible functions for injecting the session context
and the access gate into endpoint handlers.

Usage:
    from tessera.infra.auth.dependencies import (
        CurrentSession,
        metered,
        require_platform_role,
    )

    @router.post("/generate", dependencies=[Depends(metered())])
    async def generate(session: CurrentSession):
        # session.principal, session.tenant_id available
        ...
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, Request

from tessera.domain.identity.gate import AccessGate
from tessera.foundation.application.context import SessionContext
from tessera.foundation.application.context import (
    get_current_session as _get_session_from_context,
)
from tessera.foundation.application.usage_gate import UsageDecision
from tessera.foundation.domain.exceptions import AuthorizationError, StorageUnavailableError

if TYPE_CHECKING:
    from collections.abc import Callable

    from tessera.foundation.domain.principal import Role


def get_current_session() -> SessionContext:
    """FastAPI dependency that returns the authenticated session.

    Reads from the session ContextVar set by BearerAuthMiddleware.

    Raises:
        NoSessionContextError: If called outside an authenticated request.
    """
    return _get_session_from_context()


# Type alias for cleaner endpoint signatures
CurrentSession = Annotated[SessionContext, Depends(get_current_session)]


def get_access_gate(request: Request) -> AccessGate:
    """Return the access gate wired on ``app.state``.

    Raises:
        StorageUnavailableError: If the gate was never wired.
    """
    gate: AccessGate | None = getattr(request.app.state, "access_gate", None)
    if gate is None:
        raise StorageUnavailableError("access_gate_lookup")
    return gate


def require_platform_role() -> Callable[..., SessionContext]:
    """Factory returning a dependency that admits platform operators only.

    An impersonating session never carries a platform role, so platform
    endpoints are unreachable with an elevated credential.
    """

    def _check(session: CurrentSession) -> SessionContext:
        if not session.role.is_platform_role:
            raise AuthorizationError(
                "Platform role required",
                context={"principal_id": str(session.principal.id), "role": session.role.value},
            )
        return session

    return _check


def require_tenant_role(*roles: Role) -> Callable[..., SessionContext]:
    """Factory returning a dependency that enforces a tenant-scoped role.

    When the route carries a ``tenant_id`` path parameter it must name the
    session tenant, so an admin of one tenant cannot reach another tenant's
    resources. An impersonating operator acts in the impersonated tenant.

    Usage:
        @router.delete("/members/{member_id}")
        def remove_member(
            session: Annotated[SessionContext, Depends(require_tenant_role(Role.OWNER))],
        ):
            ...
    """
    allowed = frozenset(roles)

    def _check(request: Request, session: CurrentSession) -> SessionContext:
        if session.tenant_id is None or session.role not in allowed:
            raise AuthorizationError(
                "Required tenant role not held",
                context={
                    "required_roles": sorted(r.value for r in allowed),
                    "principal_id": str(session.principal.id),
                },
            )
        path_tenant = request.path_params.get("tenant_id")
        if path_tenant is not None and path_tenant != session.tenant_id:
            raise AuthorizationError(
                "Tenant mismatch",
                context={
                    "tenant_id": path_tenant,
                    "principal_id": str(session.principal.id),
                },
            )
        return session

    return _check


def metered(units: int = 1) -> Callable[..., AsyncIterator[UsageDecision]]:
    """Factory returning a dependency that meters the endpoint.

    Usage is checked before the handler runs and recorded after it returns
    without raising. Usage is charged to the authenticated principal, which
    is the operator when impersonating.

    Raises:
        QuotaExceededError: If the quota for the billing period is exhausted.
    """

    async def _meter(
        session: CurrentSession,
        gate: Annotated[AccessGate, Depends(get_access_gate)],
    ) -> AsyncIterator[UsageDecision]:
        async with gate.usage.metered(session.principal, units) as decision:
            yield decision

    return _meter
