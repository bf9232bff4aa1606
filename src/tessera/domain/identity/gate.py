"""Access gate facade composing the per-request pipeline.

``authenticate`` runs verify -> resolve -> build for one bearer credential.
The gate also exposes the impersonation manager and usage gate so that the
HTTP layer reaches every component through one object on ``app.state``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tessera.domain.identity.audit_retry import AuditRetryQueue
    from tessera.domain.identity.impersonation import ImpersonationManager
    from tessera.domain.identity.principal_resolver import PrincipalResolver
    from tessera.foundation.application.context import SessionContext, SessionContextBuilder
    from tessera.foundation.application.usage_gate import UsageGate
    from tessera.foundation.domain.ports.credential_verifier import CredentialVerifierPort

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AccessGate:
    """Wiring of the gate components.

    Attributes:
        verifier: Credential verifier.
        resolver: Principal resolver.
        context_builder: Session context builder.
        impersonation: Impersonation manager.
        usage: Usage gate.
        audit_retry: Background audit retry queue, drained on shutdown.
    """

    verifier: CredentialVerifierPort
    resolver: PrincipalResolver
    context_builder: SessionContextBuilder
    impersonation: ImpersonationManager
    usage: UsageGate
    audit_retry: AuditRetryQueue | None = None

    async def authenticate(self, raw_credential: str) -> SessionContext:
        """Turn a raw bearer credential into a session context.

        Raises:
            CredentialError: If the credential is rejected.
            ResolutionError: If reference data is missing.
            AuthorizationError: If an elevated credential is not usable by its operator.
            StorageUnavailableError: If the store fails.
        """
        claims = await self.verifier.verify(raw_credential)
        principal = await self.resolver.resolve(claims)
        session = self.context_builder.build(claims, principal)
        logger.debug(
            "session_authenticated",
            extra={
                "principal_id": str(principal.id),
                "tenant_id": session.tenant_id,
                "impersonating": session.impersonating,
            },
        )
        return session
