"""Platform impersonation endpoints.

``POST /platform/impersonation`` issues an elevated credential for a tenant;
``POST /platform/impersonation/end`` leaves impersonation and returns where
the client should resume with its stored operator credential.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - pydantic needs datetime at runtime
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from tessera.domain.identity.gate import AccessGate  # noqa: TC001 - FastAPI resolves at runtime
from tessera.infra.auth.dependencies import (  # noqa: TC001 - FastAPI resolves at runtime
    CurrentSession,
    get_access_gate,
)

router = APIRouter(prefix="/platform/impersonation", tags=["impersonation"])


class StartImpersonationRequest(BaseModel):
    tenant_id: str = Field(..., min_length=1, max_length=255)


class ImpersonationGrantResponse(BaseModel):
    credential: str
    token_type: str = "bearer"
    expires_at: datetime
    session_id: str
    tenant_id: str


class ImpersonationExitResponse(BaseModel):
    was_impersonating: bool
    location: str
    restore_operator_session: bool


@router.post("", status_code=201)
async def start_impersonation(
    body: StartImpersonationRequest,
    session: CurrentSession,
    gate: Annotated[AccessGate, Depends(get_access_gate)],
) -> ImpersonationGrantResponse:
    """Issue a short-lived credential scoped to ``tenant_id``.

    The nesting check runs before the role check, so a caller already
    impersonating gets ``ALREADY_IMPERSONATING``.
    """
    grant = await gate.impersonation.start_impersonation(session, body.tenant_id)
    return ImpersonationGrantResponse(
        credential=grant.credential,
        expires_at=grant.expires_at,
        session_id=grant.session_id,
        tenant_id=grant.tenant_id,
    )


@router.post("/end")
async def end_impersonation(
    session: CurrentSession,
    gate: Annotated[AccessGate, Depends(get_access_gate)],
) -> ImpersonationExitResponse:
    """Leave impersonation. A no-op for sessions that are not impersonating."""
    result = await gate.impersonation.end_impersonation(session)
    return ImpersonationExitResponse(
        was_impersonating=result.was_impersonating,
        location=result.redirect_hint.location,
        restore_operator_session=result.redirect_hint.restore_operator_session,
    )
