"""Tests for UsageGate: limits, billing windows and metered operations."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from tessera.foundation.application.usage_gate import UsageGate, denial_reason
from tessera.foundation.domain.billing import (
    UNLIMITED,
    Plan,
    Subscription,
    SubscriptionStatus,
    UsageRecord,
    add_calendar_months,
)
from tessera.foundation.domain.exceptions import (
    QuotaExceededError,
    ResolutionError,
    StorageUnavailableError,
)

from .conftest import FIXED_NOW, FakeGateStore, FixedClock, make_principal


def _subscribe(store: FakeGateStore, principal, plan_code: str, start: datetime = FIXED_NOW) -> None:
    store.add_principal(
        principal,
        Subscription(
            principal_id=principal.id,
            plan_code=plan_code,
            status=SubscriptionStatus.ACTIVE,
            period_start=start,
            period_end=add_calendar_months(start, 1),
        ),
    )


def _use(store: FakeGateStore, principal, count: int, at: datetime = FIXED_NOW) -> None:
    store.usage.extend(
        UsageRecord(principal_id=principal.id, timestamp=at) for _ in range(count)
    )


@pytest.mark.unit
class TestFiniteLimit:
    @pytest.mark.asyncio
    async def test_allows_below_limit_then_denies_at_limit(
        self, store: FakeGateStore, clock: FixedClock
    ) -> None:
        principal = make_principal()
        _subscribe(store, principal, "free")
        gate = UsageGate(store, clock=clock)

        for expected in range(10):
            decision = await gate.check_and_reserve(principal)
            assert decision.allowed is True
            assert decision.current_usage == expected
            await gate.record(principal)

        decision = await gate.check_and_reserve(principal)
        assert decision.allowed is False
        assert decision.current_usage == 10
        assert decision.limit == 10
        assert decision.reason == denial_reason(10, 10)
        assert "10/10" in decision.reason

    @pytest.mark.asyncio
    async def test_nine_used_allows_one_more(self, store: FakeGateStore, clock: FixedClock) -> None:
        principal = make_principal()
        _subscribe(store, principal, "free")
        _use(store, principal, 9)
        decision = await UsageGate(store, clock=clock).check_and_reserve(principal)
        assert decision.allowed is True
        assert decision.current_usage == 9


@pytest.mark.unit
class TestUnlimited:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("used", [0, 1000, 1_000_000])
    async def test_always_allowed(self, clock: FixedClock, used: int) -> None:
        store = FakeGateStore()
        principal = make_principal()
        _subscribe(store, principal, "business")
        if used:
            store.usage.append(UsageRecord(principal_id=principal.id, timestamp=FIXED_NOW, units=used))

        decision = await UsageGate(store, clock=clock).check_and_reserve(principal)
        assert decision.allowed is True
        assert decision.limit is UNLIMITED
        assert decision.current_usage == used

    def test_plan_reports_unlimited(self) -> None:
        assert Plan(code="business", name="Business", monthly_unit_limit=UNLIMITED).is_unlimited
        assert not Plan(code="free", name="Free", monthly_unit_limit=0).is_unlimited


@pytest.mark.unit
class TestEntitlement:
    @pytest.mark.asyncio
    async def test_no_subscription_uses_default_plan_and_calendar_month(
        self, store: FakeGateStore, clock: FixedClock
    ) -> None:
        principal = make_principal()
        store.add_principal(principal)
        entitlement = await UsageGate(store, clock=clock).resolve_entitlement(principal)

        assert entitlement.plan.code == "free"
        assert entitlement.period.start == datetime(2025, 3, 1, tzinfo=UTC)
        assert entitlement.period.end == datetime(2025, 4, 1, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_reference_timezone_shifts_month_boundary(self, store: FakeGateStore) -> None:
        principal = make_principal()
        store.add_principal(principal)
        # 2025-04-01T02:00Z is still March 31st in New York.
        clock = FixedClock(datetime(2025, 4, 1, 2, 0, tzinfo=UTC))
        gate = UsageGate(store, reference_timezone="America/New_York", clock=clock)

        entitlement = await gate.resolve_entitlement(principal)
        assert entitlement.period.start.astimezone(UTC) == datetime(2025, 3, 1, 5, 0, tzinfo=UTC)
        assert entitlement.period.end.astimezone(UTC) == datetime(2025, 4, 1, 4, 0, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_usage_outside_window_is_not_counted(
        self, store: FakeGateStore, clock: FixedClock
    ) -> None:
        principal = make_principal()
        _subscribe(store, principal, "free")
        _use(store, principal, 10, at=FIXED_NOW - timedelta(days=1))
        decision = await UsageGate(store, clock=clock).check_and_reserve(principal)
        assert decision.allowed is True
        assert decision.current_usage == 0

    @pytest.mark.asyncio
    async def test_elapsed_subscription_window_rolls_forward(self, store: FakeGateStore) -> None:
        principal = make_principal()
        _subscribe(store, principal, "pro", start=datetime(2025, 1, 31, 9, 0, tzinfo=UTC))
        clock = FixedClock(datetime(2025, 3, 15, tzinfo=UTC))

        entitlement = await UsageGate(store, clock=clock).resolve_entitlement(principal)
        assert entitlement.plan.code == "pro"
        assert entitlement.period.start == datetime(2025, 2, 28, 9, 0, tzinfo=UTC)
        assert entitlement.period.end == datetime(2025, 3, 31, 9, 0, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_missing_plan_is_resolution_error(self, clock: FixedClock) -> None:
        store = FakeGateStore(plans=(Plan(code="pro", name="Pro", monthly_unit_limit=100),))
        principal = make_principal()
        store.add_principal(principal)
        with pytest.raises(ResolutionError):
            await UsageGate(store, clock=clock).check_and_reserve(principal)


@pytest.mark.unit
class TestFailClosed:
    @pytest.mark.asyncio
    async def test_store_failure_denies(self, store: FakeGateStore, clock: FixedClock) -> None:
        principal = make_principal()
        _subscribe(store, principal, "business")
        store.failing.add("sum_usage_since")
        with pytest.raises(StorageUnavailableError):
            await UsageGate(store, clock=clock).check_and_reserve(principal)


@pytest.mark.unit
class TestMetered:
    @pytest.mark.asyncio
    async def test_records_on_success(self, store: FakeGateStore, clock: FixedClock) -> None:
        principal = make_principal()
        _subscribe(store, principal, "free")
        gate = UsageGate(store, clock=clock)

        async with gate.metered(principal, units=2) as decision:
            assert decision.allowed is True
        assert [r.units for r in store.usage] == [2]

    @pytest.mark.asyncio
    async def test_failed_operation_records_nothing(
        self, store: FakeGateStore, clock: FixedClock
    ) -> None:
        principal = make_principal()
        _subscribe(store, principal, "free")
        gate = UsageGate(store, clock=clock)

        with pytest.raises(RuntimeError):
            async with gate.metered(principal):
                raise RuntimeError("boom")
        assert store.usage == []

    @pytest.mark.asyncio
    async def test_cancelled_operation_records_nothing(
        self, store: FakeGateStore, clock: FixedClock
    ) -> None:
        principal = make_principal()
        _subscribe(store, principal, "free")
        gate = UsageGate(store, clock=clock)
        started = asyncio.Event()

        async def operation() -> None:
            async with gate.metered(principal):
                started.set()
                await asyncio.sleep(3600)

        task = asyncio.create_task(operation())
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert store.usage == []

    @pytest.mark.asyncio
    async def test_exhausted_quota_raises_with_usage(
        self, store: FakeGateStore, clock: FixedClock
    ) -> None:
        principal = make_principal()
        _subscribe(store, principal, "free")
        _use(store, principal, 10)
        gate = UsageGate(store, clock=clock)

        with pytest.raises(QuotaExceededError) as exc_info:
            async with gate.metered(principal):
                pytest.fail("operation must not run")
        assert exc_info.value.current_usage == 10
        assert exc_info.value.limit == 10
        assert exc_info.value.error_code == "LIMIT_EXCEEDED"
        assert len(store.usage) == 10


@pytest.mark.unit
class TestSummaryAndHistory:
    @pytest.mark.asyncio
    async def test_summary_reports_remaining(self, store: FakeGateStore, clock: FixedClock) -> None:
        principal = make_principal()
        _subscribe(store, principal, "free")
        _use(store, principal, 3)
        summary = await UsageGate(store, clock=clock).summary(principal)
        assert (summary.plan_code, summary.current_usage, summary.limit, summary.remaining) == (
            "free",
            3,
            10,
            7,
        )

    @pytest.mark.asyncio
    async def test_summary_unlimited(self, store: FakeGateStore, clock: FixedClock) -> None:
        principal = make_principal()
        _subscribe(store, principal, "business")
        summary = await UsageGate(store, clock=clock).summary(principal)
        assert summary.remaining is UNLIMITED

    @pytest.mark.asyncio
    async def test_history_newest_first(self, store: FakeGateStore, clock: FixedClock) -> None:
        principal = make_principal()
        _subscribe(store, principal, "free")
        _use(store, principal, 1, at=FIXED_NOW)
        _use(store, principal, 1, at=FIXED_NOW + timedelta(minutes=1))
        history = await UsageGate(store, clock=clock).history(principal, limit=1)
        assert [r.timestamp for r in history] == [FIXED_NOW + timedelta(minutes=1)]
