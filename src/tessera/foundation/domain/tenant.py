"""Tenant lifecycle state as seen by the access gate.

The gate only reads tenants (to validate impersonation targets); tenant
management lives outside this package.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class TenantStatus(StrEnum):
    """Tenant lifecycle states.

        PROVISIONING -> ACTIVE <-> SUSPENDED -> DECOMMISSIONED

    DECOMMISSIONED is the hard-deleted terminal state.
    """

    PROVISIONING = "PROVISIONING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    DECOMMISSIONED = "DECOMMISSIONED"


@dataclass(frozen=True, slots=True)
class TenantRecord:
    """Read model of a tenant.

    Attributes:
        tenant_id: Tenant slug identifier.
        name: Display name.
        status: Lifecycle state.
    """

    tenant_id: str
    name: str
    status: TenantStatus

    @property
    def permits_access(self) -> bool:
        """Operators may enter any tenant that has not been hard-deleted."""
        return self.status != TenantStatus.DECOMMISSIONED
