"""Tessera identity domain: principal resolution, impersonation and the access gate."""

from tessera.domain.identity.audit_retry import AuditRetryQueue
from tessera.domain.identity.gate import AccessGate
from tessera.domain.identity.impersonation import (
    ImpersonationExit,
    ImpersonationGrant,
    ImpersonationManager,
    ResumeHint,
)
from tessera.domain.identity.principal_resolver import PrincipalResolver

__all__ = [
    "AccessGate",
    "AuditRetryQueue",
    "ImpersonationExit",
    "ImpersonationGrant",
    "ImpersonationManager",
    "PrincipalResolver",
    "ResumeHint",
]
