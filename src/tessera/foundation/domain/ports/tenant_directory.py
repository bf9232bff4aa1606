"""Port interface for tenant lookups."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from tessera.foundation.domain.tenant import TenantRecord


@runtime_checkable
class TenantDirectory(Protocol):
    """Read-only access to tenant lifecycle state."""

    async def find_tenant(self, tenant_id: str) -> TenantRecord | None:
        """Return the tenant, or None if it does not exist."""
        ...
