"""Tessera Infra Auth -- credential verification, issuance and auth middleware.

Provides the JWKS key set cache, the JWT credential verifier, the HS256
credential issuer, bearer authentication middleware and FastAPI dependency
injection for authentication, authorization and metering.
"""

from tessera.infra.auth.dependencies import (
    CurrentSession,
    get_access_gate,
    get_current_session,
    metered,
    require_platform_role,
    require_tenant_role,
)
from tessera.infra.auth.issuer import SharedSecretCredentialIssuer
from tessera.infra.auth.jwks import KeySetCache, KeyUnavailableError
from tessera.infra.auth.lifespan import build_access_gate, lifespan_contribution
from tessera.infra.auth.middleware.bearer_auth import BearerAuthMiddleware
from tessera.infra.auth.settings import (
    AuthSettings,
    GateSettings,
    get_auth_settings,
    get_gate_settings,
)
from tessera.infra.auth.verifier import CredentialVerifier

__all__ = [
    "AuthSettings",
    "BearerAuthMiddleware",
    "CredentialVerifier",
    "CurrentSession",
    "GateSettings",
    "KeySetCache",
    "KeyUnavailableError",
    "SharedSecretCredentialIssuer",
    "build_access_gate",
    "get_access_gate",
    "get_auth_settings",
    "get_current_session",
    "get_gate_settings",
    "lifespan_contribution",
    "metered",
    "require_platform_role",
    "require_tenant_role",
]
