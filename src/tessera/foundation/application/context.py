"""Per-request session context: construction and propagation.

``SessionContextBuilder.build`` turns verified claims plus the resolved
principal into the ``SessionContext`` every downstream operation consumes.
It is a pure function: identical inputs always yield identical contexts,
so it is safe to call from both request handling and diagnostic endpoints.

Privilege boundary: an impersonating operator receives a tenant-scoped
role inside the target tenant, never their platform-level role.

Propagation uses a ContextVar managed by the bearer auth middleware, so
handlers and services can read the current session without explicit
parameter passing.

Usage:
    from tessera.foundation.application.context import get_current_session

    session = get_current_session()  # Raises if no session context
    audit_actor = session.audit_actor_id
"""

from __future__ import annotations

from contextvars import ContextVar
from dataclasses import dataclass
from typing import TYPE_CHECKING

from tessera.foundation.domain.exceptions import AuthorizationError
from tessera.foundation.domain.principal import Role

if TYPE_CHECKING:
    from contextvars import Token
    from datetime import datetime
    from uuid import UUID

    from tessera.foundation.domain.claims import Claims
    from tessera.foundation.domain.principal import Principal


@dataclass(frozen=True, slots=True)
class SessionContext:
    """Immutable per-request session context.

    Attributes:
        principal: The resolved principal (the operator, when impersonating).
        tenant_id: Effective tenant scope. The target tenant when impersonating.
        role: Effective role for authorization decisions.
        impersonating: True when acting through an elevated credential.
        acting_principal_id: The real operator's principal id when impersonating.
        impersonation_session_id: Pairs audit entries of one impersonation session.
        impersonation_expires_at: Hard expiry of the elevated credential.
    """

    principal: Principal
    tenant_id: str | None
    role: Role
    impersonating: bool = False
    acting_principal_id: UUID | None = None
    impersonation_session_id: str | None = None
    impersonation_expires_at: datetime | None = None

    @property
    def audit_actor_id(self) -> UUID:
        """Principal id every write-path audit log must attribute actions to."""
        if self.acting_principal_id is not None:
            return self.acting_principal_id
        return self.principal.id


class SessionContextBuilder:
    """Builds ``SessionContext`` values from claims and a principal.

    Args:
        impersonation_role: Tenant-scoped role granted to impersonating
            operators when the credential does not name a valid tenant role.

    Raises:
        ValueError: If ``impersonation_role`` is a platform role.
    """

    def __init__(self, impersonation_role: Role = Role.ADMIN) -> None:
        if impersonation_role.is_platform_role:
            msg = f"Impersonation role must be tenant-scoped, got {impersonation_role}"
            raise ValueError(msg)
        self._impersonation_role = impersonation_role

    def build(self, claims: Claims, principal: Principal) -> SessionContext:
        """Assemble the session context for one request.

        Args:
            claims: Verified claims from the bearer credential.
            principal: Principal resolved from ``claims.subject_id``.

        Returns:
            The session context.

        Raises:
            AuthorizationError: If an elevated credential names a different
                operator than the resolved principal, or the principal no
                longer holds a platform role.
        """
        if not claims.impersonating:
            return SessionContext(
                principal=principal,
                tenant_id=principal.tenant_id,
                role=principal.role,
            )

        if claims.acting_as != principal.id:
            raise AuthorizationError(
                "Elevated credential does not belong to the authenticated operator",
                context={"principal_id": str(principal.id), "acting_as": str(claims.acting_as)},
            )
        if not principal.role.is_platform_role:
            raise AuthorizationError(
                "Elevated credential requires a platform role",
                context={"principal_id": str(principal.id), "role": principal.role.value},
            )

        return SessionContext(
            principal=principal,
            tenant_id=claims.tenant_id,
            role=self._tenant_role(claims.tenant_role),
            impersonating=True,
            acting_principal_id=principal.id,
            impersonation_session_id=claims.session_id,
            impersonation_expires_at=claims.expires_at,
        )

    def _tenant_role(self, requested: str | None) -> Role:
        if requested is None:
            return self._impersonation_role
        try:
            role = Role(requested)
        except ValueError:
            return self._impersonation_role
        return self._impersonation_role if role.is_platform_role else role


# ---------------------------------------------------------------------------
# Session context propagation
# ---------------------------------------------------------------------------


class NoSessionContextError(RuntimeError):
    """Raised when the session context is accessed outside an authenticated request."""

    def __init__(self) -> None:
        super().__init__(
            "No session context available. "
            "Ensure this code runs within a request handled by BearerAuthMiddleware."
        )


_session_context: ContextVar[SessionContext | None] = ContextVar("session_context", default=None)


def set_session_context(session: SessionContext) -> Token[SessionContext | None]:
    """Publish the session for the current task. Returns a reset token."""
    return _session_context.set(session)


def clear_session_context(token: Token[SessionContext | None]) -> None:
    """Reset the session context using the token from ``set_session_context``."""
    _session_context.reset(token)


def get_current_session() -> SessionContext:
    """Get the authenticated session for the current request.

    Raises:
        NoSessionContextError: If called outside an authenticated request.
    """
    session = _session_context.get()
    if session is None:
        raise NoSessionContextError()
    return session


def get_optional_session() -> SessionContext | None:
    """Get the authenticated session if available, or None."""
    return _session_context.get()
