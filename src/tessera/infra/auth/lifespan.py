"""Gate lifespan hook: wires the AccessGate onto ``app.state``.

Priority 100 ensures the gate starts AFTER observability (50) and
persistence (75), so the store is available when the gate is built.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from tessera.domain.identity.audit_retry import AuditRetryQueue
from tessera.domain.identity.gate import AccessGate
from tessera.domain.identity.impersonation import ImpersonationManager
from tessera.domain.identity.principal_resolver import PrincipalResolver
from tessera.foundation.application.context import SessionContextBuilder
from tessera.foundation.application.contributions import (
    LIFESPAN_PRIORITY_GATE,
    LifespanContribution,
)
from tessera.foundation.application.usage_gate import UsageGate
from tessera.infra.auth.issuer import SharedSecretCredentialIssuer
from tessera.infra.auth.jwks import KeySetCache
from tessera.infra.auth.settings import get_auth_settings, get_gate_settings
from tessera.infra.auth.verifier import CredentialVerifier

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    import httpx

    from tessera.foundation.domain.ports import CredentialIssuer, GateStore, TenantDirectory
    from tessera.infra.auth.settings import AuthSettings, GateSettings

logger = logging.getLogger(__name__)

_AUDIT_DRAIN_TIMEOUT = 10.0


def build_access_gate(
    store: GateStore,
    tenants: TenantDirectory,
    *,
    auth_settings: AuthSettings,
    gate_settings: GateSettings,
    http_client: httpx.AsyncClient | None = None,
    issuer: CredentialIssuer | None = None,
) -> AccessGate:
    """Assemble every gate component from settings.

    Args:
        store: Persistent store port.
        tenants: Tenant directory port.
        auth_settings: Credential verification settings.
        gate_settings: Provisioning, impersonation and quota settings.
        http_client: Client for JWKS fetches. The cache owns one when omitted.
        issuer: Credential issuer. Defaults to the shared-secret issuer.

    Raises:
        ValueError: If no issuer is given and no shared secret is configured.
    """
    key_cache: KeySetCache | None = None
    if auth_settings.has_asymmetric_path():
        key_cache = KeySetCache(
            jwks_url=auth_settings.jwks_url,
            issuer=auth_settings.issuer,
            http_client=http_client,
            ttl=auth_settings.jwks_cache_ttl,
            fetch_timeout=auth_settings.jwks_fetch_timeout,
            min_refresh_interval=auth_settings.jwks_min_refresh_interval,
        )

    if issuer is None:
        if not auth_settings.has_symmetric_path():
            raise ValueError("AUTH_SHARED_SECRET is required to issue impersonation credentials")
        issuer = SharedSecretCredentialIssuer(
            auth_settings.shared_secret,
            issuer=auth_settings.credential_issuer,
            audience=auth_settings.audience,
        )

    audit_retry = AuditRetryQueue(store)
    return AccessGate(
        verifier=CredentialVerifier(
            key_cache=key_cache,
            issuer=auth_settings.issuer,
            audience=auth_settings.audience,
            shared_secret=auth_settings.shared_secret,
            symmetric_fallback=auth_settings.symmetric_fallback,
            leeway=auth_settings.leeway,
        ),
        resolver=PrincipalResolver(
            store,
            default_plan_code=gate_settings.default_plan_code,
            default_role=gate_settings.default_role,
        ),
        context_builder=SessionContextBuilder(impersonation_role=gate_settings.impersonation_role),
        impersonation=ImpersonationManager(
            store,
            tenants,
            issuer,
            audit_retry=audit_retry,
            ttl=timedelta(minutes=gate_settings.impersonation_ttl_minutes),
            impersonation_role=gate_settings.impersonation_role,
            resume_location=gate_settings.impersonation_resume_location,
        ),
        usage=UsageGate(
            store,
            default_plan_code=gate_settings.default_plan_code,
            reference_timezone=gate_settings.reference_timezone,
        ),
        audit_retry=audit_retry,
    )


@asynccontextmanager
async def _gate_lifespan(app: Any) -> AsyncIterator[None]:
    """Manage the access gate across the application lifecycle.

    Startup:
        1. Build the gate from the store placed on app.state by persistence.
        2. Pre-warm the key set cache if the asymmetric path is configured.

    Shutdown:
        1. Drain pending audit retries.
        2. Close the key set cache.
    """
    if getattr(app.state, "access_gate", None) is not None:
        logger.info("gate_lifespan: access gate injected, skipping wiring")
        yield
        return

    store = app.state.gate_store
    gate = build_access_gate(
        store,
        store,
        auth_settings=get_auth_settings(),
        gate_settings=get_gate_settings(),
    )
    app.state.access_gate = gate

    key_cache = gate.verifier.key_cache if isinstance(gate.verifier, CredentialVerifier) else None
    if key_cache is not None and not await key_cache.refresh():
        logger.warning("gate_lifespan: JWKS pre-warming failed, keys load on first request")
    logger.info("gate_lifespan: access gate initialized")

    try:
        yield
    finally:
        if gate.audit_retry is not None and gate.audit_retry.pending:
            try:
                async with asyncio.timeout(_AUDIT_DRAIN_TIMEOUT):
                    await gate.audit_retry.drain()
            except TimeoutError:
                logger.error(
                    "gate_lifespan: audit retries still pending at shutdown",
                    extra={"pending": gate.audit_retry.pending},
                )
        if key_cache is not None:
            await key_cache.aclose()
        app.state.access_gate = None
        logger.info("gate_lifespan: shutdown complete")


lifespan_contribution = LifespanContribution(
    hook=_gate_lifespan,
    priority=LIFESPAN_PRIORITY_GATE,
)
