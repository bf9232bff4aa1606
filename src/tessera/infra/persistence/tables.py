"""SQLAlchemy table mappings for the gate store.

Schema migrations are managed outside this package; ``create_schema`` exists
for tests and local development only.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


class Base(DeclarativeBase):
    """Declarative base for gate tables."""


class PrincipalRow(Base):
    __tablename__ = "tessera_principals"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    external_identity_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tenant_id: Mapped[str | None] = mapped_column(String(63), nullable=True, index=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class PlanRow(Base):
    __tablename__ = "tessera_plans"

    code: Mapped[str] = mapped_column(String(32), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    # NULL means unlimited
    monthly_unit_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)


class SubscriptionRow(Base):
    __tablename__ = "tessera_subscriptions"
    __table_args__ = (Index("ix_tessera_subscriptions_principal_status", "principal_id", "status"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    principal_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("tessera_principals.id"), nullable=False
    )
    plan_code: Mapped[str] = mapped_column(
        String(32), ForeignKey("tessera_plans.code"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class UsageRecordRow(Base):
    __tablename__ = "tessera_usage_records"
    __table_args__ = (Index("ix_tessera_usage_principal_timestamp", "principal_id", "timestamp"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    principal_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("tessera_principals.id"), nullable=False
    )
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    units: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class AuditEntryRow(Base):
    __tablename__ = "tessera_audit_entries"
    __table_args__ = (Index("ix_tessera_audit_tenant_timestamp", "target_tenant_id", "timestamp"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    actor_principal_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    target_tenant_id: Mapped[str] = mapped_column(String(63), nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)


class TenantRow(Base):
    __tablename__ = "tessera_tenants"

    tenant_id: Mapped[str] = mapped_column(String(63), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)


async def create_schema(engine: AsyncEngine) -> None:
    """Create all gate tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
