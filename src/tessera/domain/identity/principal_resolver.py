"""Principal resolution with just-in-time provisioning.

Orchestrates the idempotent resolution flow:
1. Fast-path: Return the principal already bound to the claim subject
2. Slow-path: Require the default plan -> create principal + subscription
3. Race condition handling: Retry lookup on ConflictError

Creation of the principal and its first subscription is a single store
transaction, so a principal never exists without a subscription.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from tessera.foundation.domain.billing import Subscription, SubscriptionStatus, add_calendar_months
from tessera.foundation.domain.exceptions import ConflictError, ResolutionError
from tessera.foundation.domain.principal import Principal, Role

if TYPE_CHECKING:
    from collections.abc import Callable

    from tessera.foundation.domain.claims import Claims
    from tessera.foundation.domain.ports.gate_store import GateStore

logger = logging.getLogger(__name__)

_CONFLICT_RETRY_ATTEMPTS = 5


def _utcnow() -> datetime:
    return datetime.now(UTC)


class PrincipalResolver:
    """Maps verified claims to exactly one persisted principal.

    Args:
        store: Persistent store port.
        default_plan_code: Plan every new principal is subscribed to.
        default_role: Role assigned to new principals.
        clock: Returns the current UTC time. Injectable for tests.
    """

    def __init__(
        self,
        store: GateStore,
        *,
        default_plan_code: str = "free",
        default_role: Role = Role.MEMBER,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._default_plan_code = default_plan_code
        self._default_role = default_role
        self._clock = clock

    async def resolve(self, claims: Claims) -> Principal:
        """Return the principal for ``claims.subject_id``, provisioning on first sight.

        An existing principal is returned unchanged: repeated sign-ins never
        overwrite profile fields.

        Args:
            claims: Verified claims.

        Returns:
            The existing or newly created principal.

        Raises:
            ResolutionError: If the default plan is not seeded.
            ConflictError: If a concurrent creation won but never became visible.
            StorageUnavailableError: If the store fails.
        """
        subject = claims.subject_id

        # 1. Fast-path
        existing = await self._store.find_principal_by_external_id(subject)
        if existing is not None:
            logger.debug(
                "principal_resolution_skipped",
                extra={"subject_id": subject, "principal_id": str(existing.id)},
            )
            return existing

        # 2. Slow-path
        plan = await self._store.find_plan(self._default_plan_code)
        if plan is None:
            logger.error(
                "principal_resolution_plan_missing",
                extra={"subject_id": subject, "plan_code": self._default_plan_code},
            )
            raise ResolutionError(
                "Free plan not found",
                context={"plan_code": self._default_plan_code},
            )

        now = self._clock()
        principal = Principal(
            id=uuid4(),
            external_identity_id=subject,
            email=claims.email,
            display_name=claims.display_name,
            tenant_id=None if claims.impersonating else claims.tenant_id,
            role=self._default_role,
            created_at=now,
            updated_at=now,
        )
        subscription = Subscription(
            principal_id=principal.id,
            plan_code=plan.code,
            status=SubscriptionStatus.ACTIVE,
            period_start=now,
            period_end=add_calendar_months(now, 1),
        )

        try:
            created = await self._store.create_principal(principal, subscription)
        except ConflictError:
            # 3. Another request provisioned the same subject first
            logger.warning(
                "principal_resolution_race_condition",
                extra={"subject_id": subject},
            )
            for attempt in range(_CONFLICT_RETRY_ATTEMPTS):
                winner = await self._store.find_principal_by_external_id(subject)
                if winner is not None:
                    return winner
                await asyncio.sleep(0.05 * (attempt + 1))
            raise

        logger.info(
            "principal_provisioned",
            extra={
                "subject_id": subject,
                "principal_id": str(created.id),
                "tenant_id": created.tenant_id,
                "plan_code": plan.code,
            },
        )
        return created
