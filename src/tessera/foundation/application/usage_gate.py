"""Usage quota enforcement for metered operations.

Resolves a principal's entitlement (plan + billing window) and decides
whether another metered operation may start. Used by endpoint-level
dependencies to enforce quotas at request boundaries.

Check and record are separate store calls. Two concurrent requests can both
observe ``current_usage = limit - 1`` and both proceed, so a finite limit
may be overshot by at most the number of in-flight requests per principal.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from tessera.foundation.domain.billing import (
    UNLIMITED,
    BillingPeriod,
    UsageRecord,
    add_calendar_months,
    calendar_month_period,
)
from tessera.foundation.domain.exceptions import (
    QuotaExceededError,
    ResolutionError,
    StorageUnavailableError,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from tessera.foundation.domain.billing import Plan, Subscription, UnitLimit
    from tessera.foundation.domain.ports.gate_store import GateStore
    from tessera.foundation.domain.principal import Principal

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Entitlement:
    """Plan and billing window governing a principal's usage right now."""

    plan: Plan
    period: BillingPeriod


@dataclass(frozen=True, slots=True)
class UsageDecision:
    """Outcome of a quota check.

    Attributes:
        allowed: Whether the metered operation may proceed.
        reason: Human-readable denial reason. None when allowed.
        current_usage: Units consumed in the billing window so far.
        limit: The plan limit, or ``UNLIMITED``.
        period: The billing window the usage was summed over.
    """

    allowed: bool
    reason: str | None
    current_usage: int
    limit: UnitLimit
    period: BillingPeriod


@dataclass(frozen=True, slots=True)
class UsageSummary:
    """Usage statistics for display."""

    plan_code: str
    current_usage: int
    limit: UnitLimit
    remaining: UnitLimit
    period: BillingPeriod


def denial_reason(current_usage: int, limit: int) -> str:
    return (
        f"Monthly limit reached. You've used {current_usage}/{limit} requests. "
        "Upgrade your plan for more."
    )


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UsageGate:
    """Checks and records per-principal usage against plan limits.

    Entitlement resolution chain:
    1. The principal's active subscription (plan + subscription window,
       rolled forward month by month once the stored window has elapsed)
    2. The default plan over the calendar month of the reference time zone

    Args:
        store: Persistent store port.
        default_plan_code: Plan applied when no active subscription exists.
        reference_timezone: IANA zone that defines calendar-month windows.
        clock: Returns the current UTC time. Injectable for tests.
    """

    def __init__(
        self,
        store: GateStore,
        *,
        default_plan_code: str = "free",
        reference_timezone: str = "UTC",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._default_plan_code = default_plan_code
        self._tz = ZoneInfo(reference_timezone)
        self._clock = clock

    async def resolve_entitlement(self, principal: Principal) -> Entitlement:
        """Resolve the plan and billing window for ``principal``.

        Raises:
            ResolutionError: If the subscribed or default plan is not seeded.
            StorageUnavailableError: If the store fails.
        """
        now = self._clock()
        subscription = await self._store.find_active_subscription(principal.id)
        if subscription is not None:
            window = _subscription_window(subscription, now)
            if window is not None:
                plan = await self._require_plan(subscription.plan_code)
                return Entitlement(plan=plan, period=window)

        plan = await self._require_plan(self._default_plan_code)
        return Entitlement(plan=plan, period=calendar_month_period(now, self._tz))

    async def check_and_reserve(self, principal: Principal) -> UsageDecision:
        """Decide whether one more metered operation may start.

        Unlimited plans are always allowed. Finite plans are allowed while
        ``current_usage < limit``.

        Raises:
            ResolutionError: If plan reference data is missing.
            StorageUnavailableError: If the store fails. The gate fails closed.
        """
        try:
            entitlement = await self.resolve_entitlement(principal)
            period = entitlement.period
            current = await self._store.sum_usage_since(principal.id, period.start, period.end)
        except StorageUnavailableError:
            logger.error(
                "usage_check_storage_unavailable",
                extra={"principal_id": str(principal.id)},
            )
            raise

        if entitlement.plan.is_unlimited:
            return UsageDecision(
                allowed=True, reason=None, current_usage=current, limit=UNLIMITED, period=period
            )

        limit = int(entitlement.plan.monthly_unit_limit)
        if current >= limit:
            logger.warning(
                "usage_limit_reached",
                extra={
                    "principal_id": str(principal.id),
                    "plan_code": entitlement.plan.code,
                    "limit": limit,
                    "current": current,
                },
            )
            return UsageDecision(
                allowed=False,
                reason=denial_reason(current, limit),
                current_usage=current,
                limit=limit,
                period=period,
            )

        logger.debug(
            "usage_limit_checked",
            extra={
                "principal_id": str(principal.id),
                "limit": limit,
                "remaining": limit - current,
            },
        )
        return UsageDecision(
            allowed=True, reason=None, current_usage=current, limit=limit, period=period
        )

    async def record(self, principal: Principal, units: int = 1) -> UsageRecord:
        """Append a usage record after a metered operation succeeded."""
        record = UsageRecord(principal_id=principal.id, timestamp=self._clock(), units=units)
        try:
            await self._store.append_usage_record(record)
        except StorageUnavailableError:
            logger.error(
                "usage_record_storage_unavailable",
                extra={"principal_id": str(principal.id), "units": units},
            )
            raise
        return record

    @asynccontextmanager
    async def metered(self, principal: Principal, units: int = 1) -> AsyncIterator[UsageDecision]:
        """Guard a metered operation.

        Checks the quota on entry and records usage only when the block
        exits normally. Exceptions and cancellation record nothing.

        Raises:
            QuotaExceededError: If the quota is exhausted.
        """
        decision = await self.check_and_reserve(principal)
        if not decision.allowed:
            assert isinstance(decision.limit, int)
            raise QuotaExceededError(
                decision.reason or denial_reason(decision.current_usage, decision.limit),
                current_usage=decision.current_usage,
                limit=decision.limit,
                principal_id=str(principal.id),
            )
        yield decision
        await self.record(principal, units)

    async def summary(self, principal: Principal) -> UsageSummary:
        """Current usage, limit and remaining units for ``principal``."""
        entitlement = await self.resolve_entitlement(principal)
        period = entitlement.period
        current = await self._store.sum_usage_since(principal.id, period.start, period.end)
        plan = entitlement.plan
        remaining: UnitLimit = (
            UNLIMITED if plan.is_unlimited else max(0, int(plan.monthly_unit_limit) - current)
        )
        return UsageSummary(
            plan_code=plan.code,
            current_usage=current,
            limit=plan.monthly_unit_limit,
            remaining=remaining,
            period=period,
        )

    async def history(self, principal: Principal, limit: int = 50) -> list[UsageRecord]:
        """Most recent usage records first."""
        return await self._store.list_usage_records(principal.id, limit=limit)

    async def _require_plan(self, code: str) -> Plan:
        plan = await self._store.find_plan(code)
        if plan is None:
            logger.error("plan_not_found", extra={"plan_code": code})
            raise ResolutionError(f"Plan not found: {code}", context={"plan_code": code})
        return plan


def _subscription_window(subscription: Subscription, now: datetime) -> BillingPeriod | None:
    """Billing window of ``subscription`` that contains ``now``.

    Elapsed windows roll forward by whole calendar months from the
    subscription's period start. Returns None for subscriptions that have
    not started yet.
    """
    period = subscription.period
    if period.contains(now):
        return period
    start = subscription.period_start
    if now < start:
        return None

    months = (now.year - start.year) * 12 + (now.month - start.month)
    while months > 0 and add_calendar_months(start, months) > now:
        months -= 1
    while add_calendar_months(start, months + 1) <= now:
        months += 1
    return BillingPeriod(
        start=add_calendar_months(start, months),
        end=add_calendar_months(start, months + 1),
    )
