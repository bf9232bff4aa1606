"""Port interface for the gate's persistent store.

The store owns principals, plans, subscriptions, usage records and audit
entries. Every method is a coroutine that either completes within the
store's timeout or raises ``StorageUnavailableError``; implementations must
offer read-your-writes consistency for a single caller.

Example:
    >>> from tessera.foundation.domain.ports import GateStore
    >>> async def current_usage(store: GateStore, principal_id, since) -> int:
    ...     return await store.sum_usage_since(principal_id, since)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from tessera.foundation.domain.audit import AuditEntry
    from tessera.foundation.domain.billing import Plan, Subscription, UsageRecord
    from tessera.foundation.domain.principal import Principal


@runtime_checkable
class GateStore(Protocol):
    """Persistence contract consumed by the resolver, usage gate and impersonation manager."""

    async def find_principal_by_external_id(self, external_identity_id: str) -> Principal | None:
        """Look up a principal by identity provider subject."""
        ...

    async def get_principal(self, principal_id: UUID) -> Principal | None:
        """Look up a principal by internal id."""
        ...

    async def create_principal(
        self,
        principal: Principal,
        subscription: Subscription,
    ) -> Principal:
        """Insert a principal and its initial subscription atomically.

        Raises:
            ConflictError: If a principal already exists for the external identity.
        """
        ...

    async def update_principal_profile(
        self,
        principal_id: UUID,
        *,
        email: str | None = None,
        display_name: str | None = None,
    ) -> Principal | None:
        """Explicit profile update; the only way email/display name change."""
        ...

    async def find_active_subscription(self, principal_id: UUID) -> Subscription | None:
        """Return the principal's single active subscription, if any."""
        ...

    async def find_plan(self, code: str) -> Plan | None:
        """Return reference plan data, or None when the plan is not seeded."""
        ...

    async def sum_usage_since(
        self,
        principal_id: UUID,
        since: datetime,
        until: datetime | None = None,
    ) -> int:
        """Sum usage units with ``since <= timestamp < until``."""
        ...

    async def append_usage_record(self, record: UsageRecord) -> None:
        """Append a usage record."""
        ...

    async def list_usage_records(self, principal_id: UUID, limit: int = 50) -> list[UsageRecord]:
        """Most recent usage records first."""
        ...

    async def append_audit_entry(self, entry: AuditEntry) -> None:
        """Append an audit entry."""
        ...

    async def list_audit_entries(
        self,
        *,
        target_tenant_id: str | None = None,
        limit: int = 100,
    ) -> list[AuditEntry]:
        """Most recent audit entries first, optionally for one tenant."""
        ...
