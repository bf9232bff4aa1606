"""Verified claims extracted from a bearer credential.

Claims are ephemeral: produced by the credential verifier, consumed by the
session context builder and discarded after the request. They are never
persisted as-is.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID


@dataclass(frozen=True, slots=True)
class Claims:
    """Verified claim set.

    Attributes:
        subject_id: Identity provider subject (JWT ``sub``).
        email: Email claim.
        expires_at: Credential expiry (UTC).
        tenant_id: Tenant claim. For impersonation, the target tenant.
        acting_as: Operator principal id (JWT ``act``). Impersonation only.
        impersonating: True for elevated, tenant-scoped operator credentials.
        display_name: Optional name claim.
        tenant_role: Tenant-scoped role granted by an elevated credential.
        session_id: Impersonation session id (JWT ``jti``), pairs audit entries.

    Raises:
        ValueError: If the impersonation invariants are violated.
    """

    subject_id: str
    email: str
    expires_at: datetime
    tenant_id: str | None = None
    acting_as: UUID | None = None
    impersonating: bool = False
    display_name: str | None = None
    tenant_role: str | None = None
    session_id: str | None = None

    def __post_init__(self) -> None:
        if not self.subject_id:
            msg = "Claims require a subject"
            raise ValueError(msg)
        if self.impersonating:
            if self.acting_as is None:
                msg = "Impersonating claims must carry the acting operator (act)"
                raise ValueError(msg)
            if not self.tenant_id:
                msg = "Impersonating claims must carry the target tenant_id"
                raise ValueError(msg)
        elif self.acting_as is not None:
            msg = "Non-impersonating claims must not carry an acting operator (act)"
            raise ValueError(msg)
