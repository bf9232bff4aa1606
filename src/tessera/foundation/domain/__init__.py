"""Tessera Foundation Domain -- pure Python gate primitives.

Records (principal, claims, plans, subscriptions, usage, audit, tenants),
the exception hierarchy and port interfaces. No framework dependencies.
"""

from tessera.foundation.domain.audit import AuditAction, AuditEntry
from tessera.foundation.domain.billing import (
    UNLIMITED,
    BillingPeriod,
    Plan,
    Subscription,
    SubscriptionStatus,
    UnitLimit,
    Unlimited,
    UsageRecord,
)
from tessera.foundation.domain.claims import Claims
from tessera.foundation.domain.exceptions import (
    AuthenticationError,
    AuthorizationError,
    AuthorizationFailure,
    ConflictError,
    CredentialError,
    CredentialFailure,
    DomainError,
    QuotaExceededError,
    ResolutionError,
    StorageUnavailableError,
    TenantNotFoundError,
)
from tessera.foundation.domain.ports import (
    CredentialIssuer,
    CredentialVerifierPort,
    GateStore,
    TenantDirectory,
)
from tessera.foundation.domain.principal import Principal, Role
from tessera.foundation.domain.tenant import TenantRecord, TenantStatus

__all__ = [
    "UNLIMITED",
    "AuditAction",
    "AuditEntry",
    "AuthenticationError",
    "AuthorizationError",
    "AuthorizationFailure",
    "BillingPeriod",
    "Claims",
    "ConflictError",
    "CredentialError",
    "CredentialFailure",
    "CredentialIssuer",
    "CredentialVerifierPort",
    "DomainError",
    "GateStore",
    "Plan",
    "Principal",
    "QuotaExceededError",
    "ResolutionError",
    "Role",
    "StorageUnavailableError",
    "Subscription",
    "SubscriptionStatus",
    "TenantDirectory",
    "TenantNotFoundError",
    "TenantRecord",
    "TenantStatus",
    "UnitLimit",
    "Unlimited",
    "UsageRecord",
]
