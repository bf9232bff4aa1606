"""Session diagnostics endpoint.

``GET /session/status`` reports who the caller is and whether they are
impersonating. The raw credential is never echoed back.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - pydantic needs datetime at runtime

from fastapi import APIRouter
from pydantic import BaseModel

from tessera.infra.auth.dependencies import CurrentSession  # noqa: TC001 - FastAPI resolves at runtime

router = APIRouter(prefix="/session", tags=["session"])


class SessionStatusResponse(BaseModel):
    principal_id: str
    email: str
    display_name: str | None
    tenant_id: str | None
    role: str
    impersonating: bool
    acting_principal_id: str | None = None
    impersonation_session_id: str | None = None
    impersonation_expires_at: datetime | None = None


@router.get("/status")
async def session_status(session: CurrentSession) -> SessionStatusResponse:
    """Describe the authenticated session."""
    principal = session.principal
    return SessionStatusResponse(
        principal_id=str(principal.id),
        email=principal.email,
        display_name=principal.display_name,
        tenant_id=session.tenant_id,
        role=session.role.value,
        impersonating=session.impersonating,
        acting_principal_id=(
            str(session.acting_principal_id) if session.acting_principal_id else None
        ),
        impersonation_session_id=session.impersonation_session_id,
        impersonation_expires_at=session.impersonation_expires_at,
    )
