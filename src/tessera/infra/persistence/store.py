"""SQLAlchemy async implementation of the gate store and tenant directory.

Every public call runs in its own session under ``asyncio.timeout``. Any
database failure or timeout surfaces as ``StorageUnavailableError`` so that
the gate fails closed; uniqueness violations surface as ``ConflictError``.

Datetimes are written and compared in UTC. Backends that drop the offset
(SQLite) return naive values, which are re-tagged as UTC on read.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, TypeVar
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tessera.foundation.domain.audit import AuditAction, AuditEntry
from tessera.foundation.domain.billing import (
    UNLIMITED,
    Plan,
    Subscription,
    SubscriptionStatus,
    UsageRecord,
)
from tessera.foundation.domain.exceptions import ConflictError, StorageUnavailableError
from tessera.foundation.domain.principal import Principal, Role
from tessera.foundation.domain.tenant import TenantRecord, TenantStatus
from tessera.infra.persistence.tables import (
    AuditEntryRow,
    PlanRow,
    PrincipalRow,
    SubscriptionRow,
    TenantRow,
    UsageRecordRow,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PLANS: tuple[Plan, ...] = (
    Plan(code="free", name="Free", monthly_unit_limit=10),
    Plan(code="pro", name="Pro", monthly_unit_limit=100),
    Plan(code="business", name="Business", monthly_unit_limit=UNLIMITED),
)


def _utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


class SqlAlchemyGateStore:
    """Gate store backed by an async SQLAlchemy session factory.

    Implements both ``GateStore`` and ``TenantDirectory``.

    Args:
        session_factory: Async session factory (see ``DatabaseManager``).
        statement_timeout: Seconds before a call fails with ``StorageUnavailableError``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        statement_timeout: float = 5.0,
    ) -> None:
        self._session_factory = session_factory
        self._timeout = statement_timeout

    # -- principals ---------------------------------------------------------

    async def find_principal_by_external_id(self, external_identity_id: str) -> Principal | None:
        async def work(session: AsyncSession) -> Principal | None:
            row = await session.scalar(
                select(PrincipalRow).where(
                    PrincipalRow.external_identity_id == external_identity_id
                )
            )
            return _to_principal(row) if row is not None else None

        return await self._run("find_principal_by_external_id", work)

    async def get_principal(self, principal_id: UUID) -> Principal | None:
        async def work(session: AsyncSession) -> Principal | None:
            row = await session.get(PrincipalRow, principal_id)
            return _to_principal(row) if row is not None else None

        return await self._run("get_principal", work)

    async def create_principal(
        self,
        principal: Principal,
        subscription: Subscription,
    ) -> Principal:
        async def work(session: AsyncSession) -> Principal:
            session.add(
                PrincipalRow(
                    id=principal.id,
                    external_identity_id=principal.external_identity_id,
                    email=principal.email,
                    display_name=principal.display_name,
                    tenant_id=principal.tenant_id,
                    role=principal.role.value,
                    created_at=_utc(principal.created_at),
                    updated_at=_utc(principal.updated_at),
                )
            )
            await session.flush()
            session.add(
                SubscriptionRow(
                    id=uuid4(),
                    principal_id=principal.id,
                    plan_code=subscription.plan_code,
                    status=subscription.status.value,
                    period_start=_utc(subscription.period_start),
                    period_end=_utc(subscription.period_end),
                )
            )
            return principal

        return await self._run("create_principal", work, write=True)

    async def update_principal_profile(
        self,
        principal_id: UUID,
        *,
        email: str | None = None,
        display_name: str | None = None,
    ) -> Principal | None:
        async def work(session: AsyncSession) -> Principal | None:
            row = await session.get(PrincipalRow, principal_id)
            if row is None:
                return None
            if email is not None:
                row.email = email
            if display_name is not None:
                row.display_name = display_name
            row.updated_at = datetime.now(UTC)
            await session.flush()
            return _to_principal(row)

        return await self._run("update_principal_profile", work, write=True)

    # -- plans and subscriptions -------------------------------------------

    async def find_active_subscription(self, principal_id: UUID) -> Subscription | None:
        async def work(session: AsyncSession) -> Subscription | None:
            row = await session.scalar(
                select(SubscriptionRow)
                .where(
                    SubscriptionRow.principal_id == principal_id,
                    SubscriptionRow.status == SubscriptionStatus.ACTIVE.value,
                )
                .order_by(SubscriptionRow.period_start.desc())
                .limit(1)
            )
            if row is None:
                return None
            return Subscription(
                principal_id=row.principal_id,
                plan_code=row.plan_code,
                status=SubscriptionStatus(row.status),
                period_start=_utc(row.period_start),
                period_end=_utc(row.period_end),
            )

        return await self._run("find_active_subscription", work)

    async def find_plan(self, code: str) -> Plan | None:
        async def work(session: AsyncSession) -> Plan | None:
            row = await session.get(PlanRow, code)
            if row is None:
                return None
            limit = UNLIMITED if row.monthly_unit_limit is None else row.monthly_unit_limit
            return Plan(code=row.code, name=row.name, monthly_unit_limit=limit)

        return await self._run("find_plan", work)

    async def add_plans(self, plans: Iterable[Plan] = DEFAULT_PLANS) -> None:
        """Seed plan reference data, replacing plans with the same code."""

        async def work(session: AsyncSession) -> None:
            for plan in plans:
                limit = None if plan.is_unlimited else plan.monthly_unit_limit
                await session.merge(
                    PlanRow(code=plan.code, name=plan.name, monthly_unit_limit=limit)
                )

        await self._run("add_plans", work, write=True)

    # -- usage -------------------------------------------------------------

    async def sum_usage_since(
        self,
        principal_id: UUID,
        since: datetime,
        until: datetime | None = None,
    ) -> int:
        async def work(session: AsyncSession) -> int:
            stmt = select(func.coalesce(func.sum(UsageRecordRow.units), 0)).where(
                UsageRecordRow.principal_id == principal_id,
                UsageRecordRow.timestamp >= _utc(since),
            )
            if until is not None:
                stmt = stmt.where(UsageRecordRow.timestamp < _utc(until))
            total = await session.scalar(stmt)
            return int(total or 0)

        return await self._run("sum_usage_since", work)

    async def append_usage_record(self, record: UsageRecord) -> None:
        async def work(session: AsyncSession) -> None:
            session.add(
                UsageRecordRow(
                    principal_id=record.principal_id,
                    timestamp=_utc(record.timestamp),
                    units=record.units,
                )
            )

        await self._run("append_usage_record", work, write=True)

    async def list_usage_records(self, principal_id: UUID, limit: int = 50) -> list[UsageRecord]:
        async def work(session: AsyncSession) -> list[UsageRecord]:
            rows = await session.scalars(
                select(UsageRecordRow)
                .where(UsageRecordRow.principal_id == principal_id)
                .order_by(UsageRecordRow.timestamp.desc(), UsageRecordRow.id.desc())
                .limit(limit)
            )
            return [
                UsageRecord(
                    principal_id=row.principal_id,
                    timestamp=_utc(row.timestamp),
                    units=row.units,
                )
                for row in rows
            ]

        return await self._run("list_usage_records", work)

    # -- audit -------------------------------------------------------------

    async def append_audit_entry(self, entry: AuditEntry) -> None:
        async def work(session: AsyncSession) -> None:
            session.add(
                AuditEntryRow(
                    id=entry.id,
                    actor_principal_id=entry.actor_principal_id,
                    target_tenant_id=entry.target_tenant_id,
                    action=entry.action.value,
                    timestamp=_utc(entry.timestamp),
                    details=dict(entry.metadata),
                )
            )

        await self._run("append_audit_entry", work, write=True)

    async def list_audit_entries(
        self,
        *,
        target_tenant_id: str | None = None,
        limit: int = 100,
    ) -> list[AuditEntry]:
        async def work(session: AsyncSession) -> list[AuditEntry]:
            stmt = select(AuditEntryRow).order_by(AuditEntryRow.timestamp.desc()).limit(limit)
            if target_tenant_id is not None:
                stmt = stmt.where(AuditEntryRow.target_tenant_id == target_tenant_id)
            rows = await session.scalars(stmt)
            return [
                AuditEntry(
                    id=row.id,
                    actor_principal_id=row.actor_principal_id,
                    target_tenant_id=row.target_tenant_id,
                    action=AuditAction(row.action),
                    timestamp=_utc(row.timestamp),
                    metadata=dict(row.details or {}),
                )
                for row in rows
            ]

        return await self._run("list_audit_entries", work)

    # -- tenants -----------------------------------------------------------

    async def find_tenant(self, tenant_id: str) -> TenantRecord | None:
        async def work(session: AsyncSession) -> TenantRecord | None:
            row = await session.get(TenantRow, tenant_id)
            if row is None:
                return None
            return TenantRecord(
                tenant_id=row.tenant_id, name=row.name, status=TenantStatus(row.status)
            )

        return await self._run("find_tenant", work)

    async def add_tenant(self, tenant: TenantRecord) -> None:
        """Insert or replace a tenant read-model row."""

        async def work(session: AsyncSession) -> None:
            await session.merge(
                TenantRow(tenant_id=tenant.tenant_id, name=tenant.name, status=tenant.status.value)
            )

        await self._run("add_tenant", work, write=True)

    # -- plumbing ----------------------------------------------------------

    async def _run(
        self,
        operation: str,
        work: Callable[[AsyncSession], Awaitable[T]],
        *,
        write: bool = False,
    ) -> T:
        try:
            async with asyncio.timeout(self._timeout):
                async with self._session_factory() as session:
                    if not write:
                        return await work(session)
                    async with session.begin():
                        return await work(session)
        except IntegrityError as exc:
            logger.warning("gate_store_conflict", extra={"operation": operation})
            raise ConflictError(f"duplicate record during {operation}", operation=operation) from exc
        except TimeoutError as exc:
            logger.error(
                "gate_store_timeout",
                extra={"operation": operation, "timeout": self._timeout},
            )
            raise StorageUnavailableError(operation, timeout=self._timeout) from exc
        except (SQLAlchemyError, OSError) as exc:
            logger.error(
                "gate_store_unavailable",
                extra={"operation": operation, "error": type(exc).__name__},
            )
            raise StorageUnavailableError(operation) from exc


def _to_principal(row: PrincipalRow) -> Principal:
    return Principal(
        id=row.id,
        external_identity_id=row.external_identity_id,
        email=row.email,
        display_name=row.display_name,
        tenant_id=row.tenant_id,
        role=Role(row.role),
        created_at=_utc(row.created_at),
        updated_at=_utc(row.updated_at),
    )
