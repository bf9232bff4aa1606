"""Usage endpoints for the authenticated principal.

Unlimited plans report ``limit`` and ``remaining`` as ``null``.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - pydantic needs datetime at runtime
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from tessera.domain.identity.gate import AccessGate  # noqa: TC001 - FastAPI resolves at runtime
from tessera.foundation.domain.billing import UnitLimit, Unlimited
from tessera.infra.auth.dependencies import (  # noqa: TC001 - FastAPI resolves at runtime
    CurrentSession,
    get_access_gate,
)

router = APIRouter(prefix="/usage", tags=["usage"])


class UsageSummaryResponse(BaseModel):
    plan_code: str
    current_usage: int
    limit: int | None
    remaining: int | None
    period_start: datetime
    period_end: datetime


class UsageRecordResponse(BaseModel):
    timestamp: datetime
    units: int


class UsageHistoryResponse(BaseModel):
    records: list[UsageRecordResponse]


@router.get("")
async def usage_summary(
    session: CurrentSession,
    gate: Annotated[AccessGate, Depends(get_access_gate)],
) -> UsageSummaryResponse:
    """Usage of the current billing period against the plan limit."""
    summary = await gate.usage.summary(session.principal)
    return UsageSummaryResponse(
        plan_code=summary.plan_code,
        current_usage=summary.current_usage,
        limit=_as_optional(summary.limit),
        remaining=_as_optional(summary.remaining),
        period_start=summary.period.start,
        period_end=summary.period.end,
    )


@router.get("/history")
async def usage_history(
    session: CurrentSession,
    gate: Annotated[AccessGate, Depends(get_access_gate)],
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
) -> UsageHistoryResponse:
    """Most recent usage records, newest first."""
    records = await gate.usage.history(session.principal, limit=limit)
    return UsageHistoryResponse(
        records=[UsageRecordResponse(timestamp=r.timestamp, units=r.units) for r in records]
    )


def _as_optional(value: UnitLimit) -> int | None:
    return None if isinstance(value, Unlimited) else value
