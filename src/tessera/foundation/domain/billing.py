"""Plans, subscriptions, usage records and billing periods.

Plans are read-only reference data. ``UNLIMITED`` is a dedicated sentinel so
that "no limit" can never be confused with "no plan found" (which is simply
``None`` from the store) or with a large number.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from uuid import UUID
    from zoneinfo import ZoneInfo


class Unlimited:
    """Type of the ``UNLIMITED`` sentinel. Only one instance exists."""

    _instance: Unlimited | None = None

    def __new__(cls) -> Unlimited:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNLIMITED"


UNLIMITED: Final = Unlimited()

UnitLimit = int | Unlimited


class SubscriptionStatus(StrEnum):
    """Subscription lifecycle states. Only ACTIVE defines a billing window."""

    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


@dataclass(frozen=True, slots=True)
class Plan:
    """Reference plan data.

    Attributes:
        code: Stable plan code (e.g., "free", "pro", "business").
        name: Display name.
        monthly_unit_limit: Finite unit limit per period, or ``UNLIMITED``.
    """

    code: str
    name: str
    monthly_unit_limit: UnitLimit

    @property
    def is_unlimited(self) -> bool:
        return self.monthly_unit_limit is UNLIMITED


@dataclass(frozen=True, slots=True)
class BillingPeriod:
    """Half-open billing window ``[start, end)``."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.end <= self.start:
            msg = f"Billing period end {self.end} must be after start {self.start}"
            raise ValueError(msg)

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


@dataclass(frozen=True, slots=True)
class Subscription:
    """A principal's subscription to a plan."""

    principal_id: UUID
    plan_code: str
    status: SubscriptionStatus
    period_start: datetime
    period_end: datetime

    @property
    def period(self) -> BillingPeriod:
        return BillingPeriod(start=self.period_start, end=self.period_end)


@dataclass(frozen=True, slots=True)
class UsageRecord:
    """Append-only record of consumed usage units."""

    principal_id: UUID
    timestamp: datetime
    units: int = 1

    def __post_init__(self) -> None:
        if self.units < 1:
            msg = f"Usage units must be positive, got {self.units}"
            raise ValueError(msg)


def add_calendar_months(moment: datetime, months: int) -> datetime:
    """Shift a datetime by whole calendar months, clamping the day.

    ``2024-01-31 + 1 month`` is ``2024-02-29``.
    """
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def calendar_month_period(moment: datetime, tz: ZoneInfo) -> BillingPeriod:
    """Calendar month containing ``moment`` in the reference time zone."""
    local = moment.astimezone(tz)
    start = datetime.combine(local.date().replace(day=1), time.min, tzinfo=tz)
    days_in_month = calendar.monthrange(start.year, start.month)[1]
    next_first = start.date() + timedelta(days=days_in_month)
    end = datetime.combine(next_first, time.min, tzinfo=tz)
    return BillingPeriod(start=start, end=end)
