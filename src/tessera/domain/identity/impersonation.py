"""Time-boxed, audited impersonation of a tenant by a platform operator.

State machine per operator session::

    Normal --start_impersonation--> Impersonating --end_impersonation--> Normal

Nesting is rejected. The elevated credential carries its own hard expiry
fixed at issuance; it is never extended. Leaving impersonation is
client-driven: the caller discards the elevated credential and restores the
operator credential it held before, guided by the returned ``ResumeHint``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from uuid import uuid4

from tessera.foundation.domain.audit import AuditAction, AuditEntry
from tessera.foundation.domain.claims import Claims
from tessera.foundation.domain.exceptions import (
    AuthorizationError,
    AuthorizationFailure,
    StorageUnavailableError,
    TenantNotFoundError,
)
from tessera.foundation.domain.principal import Role

if TYPE_CHECKING:
    from collections.abc import Callable

    from tessera.domain.identity.audit_retry import AuditRetryQueue
    from tessera.foundation.application.context import SessionContext
    from tessera.foundation.domain.ports.credential_issuer import CredentialIssuer
    from tessera.foundation.domain.ports.gate_store import GateStore
    from tessera.foundation.domain.ports.tenant_directory import TenantDirectory

logger = logging.getLogger(__name__)

MAX_IMPERSONATION_TTL = timedelta(minutes=30)
DEFAULT_RESUME_LOCATION = "/saas-admin"


@dataclass(frozen=True, slots=True)
class ImpersonationGrant:
    """Result of a successful elevation.

    Attributes:
        credential: Signed elevated credential. Never logged.
        expires_at: Hard expiry of the credential.
        session_id: Identifier pairing the start and end audit entries.
        tenant_id: The impersonated tenant.
    """

    credential: str = field(repr=False)
    expires_at: datetime
    session_id: str
    tenant_id: str


@dataclass(frozen=True, slots=True)
class ResumeHint:
    """Where the caller should go after leaving impersonation."""

    location: str
    restore_operator_session: bool = True


@dataclass(frozen=True, slots=True)
class ImpersonationExit:
    """Result of ``end_impersonation``."""

    redirect_hint: ResumeHint
    was_impersonating: bool = False


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ImpersonationManager:
    """Grants and ends tenant impersonation for platform operators.

    Args:
        store: Persistent store port (audit log).
        tenants: Tenant directory used to validate targets.
        issuer: Signs elevated credentials.
        audit_retry: Background retry for end-of-session audit writes.
        ttl: Lifetime of elevated credentials. At most 30 minutes.
        impersonation_role: Tenant-scoped role stamped on elevated credentials.
        resume_location: Location returned in the resume hint.
        clock: Returns the current UTC time. Injectable for tests.

    Raises:
        ValueError: If ``ttl`` is not positive or exceeds 30 minutes, or
            ``impersonation_role`` is a platform role.
    """

    def __init__(
        self,
        store: GateStore,
        tenants: TenantDirectory,
        issuer: CredentialIssuer,
        *,
        audit_retry: AuditRetryQueue | None = None,
        ttl: timedelta = MAX_IMPERSONATION_TTL,
        impersonation_role: Role = Role.ADMIN,
        resume_location: str = DEFAULT_RESUME_LOCATION,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if ttl <= timedelta(0) or ttl > MAX_IMPERSONATION_TTL:
            msg = f"Impersonation ttl must be within (0, {MAX_IMPERSONATION_TTL}], got {ttl}"
            raise ValueError(msg)
        if impersonation_role.is_platform_role:
            msg = f"Impersonation role must be tenant-scoped, got {impersonation_role}"
            raise ValueError(msg)
        self._store = store
        self._tenants = tenants
        self._issuer = issuer
        self._audit_retry = audit_retry
        self._ttl = ttl
        self._impersonation_role = impersonation_role
        self._resume_location = resume_location
        self._clock = clock

    async def start_impersonation(
        self,
        operator: SessionContext,
        target_tenant_id: str,
    ) -> ImpersonationGrant:
        """Issue an elevated credential scoped to ``target_tenant_id``.

        Checks run in this order: nesting, operator role, target existence.
        The start audit entry is written before the grant is returned; if it
        cannot be written the credential is discarded and the error raised.

        Args:
            operator: Session of the requesting operator.
            target_tenant_id: Tenant to impersonate.

        Returns:
            The elevated credential with its expiry and session id.

        Raises:
            AuthorizationError: ``ALREADY_IMPERSONATING`` or ``NOT_AUTHORIZED``.
            TenantNotFoundError: If the tenant is missing or decommissioned.
            StorageUnavailableError: If the start audit entry cannot be written.
        """
        principal = operator.principal
        log_extra = {"operator_id": str(principal.id), "target_tenant_id": target_tenant_id}

        if operator.impersonating:
            logger.warning("impersonation_rejected_nested", extra=log_extra)
            raise AuthorizationError(
                "Already impersonating a tenant; end the current session first",
                reason=AuthorizationFailure.ALREADY_IMPERSONATING,
                context={"tenant_id": operator.tenant_id},
            )
        if not principal.role.is_platform_role:
            logger.warning("impersonation_rejected_role", extra=log_extra)
            raise AuthorizationError(
                "Platform role required to impersonate a tenant",
                context={"role": principal.role.value},
            )

        tenant = await self._tenants.find_tenant(target_tenant_id)
        if tenant is None or not tenant.permits_access:
            logger.warning("impersonation_rejected_tenant", extra=log_extra)
            raise TenantNotFoundError(target_tenant_id)

        now = self._clock()
        expires_at = now + self._ttl
        session_id = str(uuid4())
        credential = self._issuer.issue(
            Claims(
                subject_id=principal.external_identity_id,
                email=principal.email,
                expires_at=expires_at,
                tenant_id=target_tenant_id,
                acting_as=principal.id,
                impersonating=True,
                display_name=principal.display_name,
                tenant_role=self._impersonation_role.value,
                session_id=session_id,
            )
        )

        entry = AuditEntry(
            actor_principal_id=principal.id,
            target_tenant_id=target_tenant_id,
            action=AuditAction.IMPERSONATION_START,
            timestamp=now,
            metadata={
                "session_id": session_id,
                "expires_at": expires_at.isoformat(),
                "operator_email": principal.email,
                "tenant_name": tenant.name,
            },
        )
        try:
            await self._store.append_audit_entry(entry)
        except StorageUnavailableError:
            logger.error(
                "impersonation_start_audit_failed",
                extra={**log_extra, "session_id": session_id},
            )
            raise

        logger.info(
            "impersonation_started",
            extra={**log_extra, "session_id": session_id, "expires_at": expires_at.isoformat()},
        )
        return ImpersonationGrant(
            credential=credential,
            expires_at=expires_at,
            session_id=session_id,
            tenant_id=target_tenant_id,
        )

    async def end_impersonation(self, context: SessionContext) -> ImpersonationExit:
        """Leave impersonation and return the resume hint.

        Not impersonating: a no-op without an audit entry. Impersonating:
        writes the end audit entry; if that write fails the entry is
        scheduled for background retry and the call still succeeds.
        """
        hint = ResumeHint(location=self._resume_location, restore_operator_session=True)
        if not context.impersonating or context.tenant_id is None:
            logger.debug(
                "impersonation_end_noop",
                extra={"principal_id": str(context.principal.id)},
            )
            return ImpersonationExit(redirect_hint=hint, was_impersonating=False)

        entry = AuditEntry(
            actor_principal_id=context.audit_actor_id,
            target_tenant_id=context.tenant_id,
            action=AuditAction.IMPERSONATION_END,
            timestamp=self._clock(),
            metadata={"session_id": context.impersonation_session_id},
        )
        log_extra = {
            "operator_id": str(context.audit_actor_id),
            "target_tenant_id": context.tenant_id,
            "session_id": context.impersonation_session_id,
        }
        try:
            await self._store.append_audit_entry(entry)
        except StorageUnavailableError:
            logger.error("impersonation_end_audit_failed", extra=log_extra)
            if self._audit_retry is not None:
                self._audit_retry.schedule(entry)
        else:
            logger.info("impersonation_ended", extra=log_extra)

        return ImpersonationExit(redirect_hint=hint, was_impersonating=True)
