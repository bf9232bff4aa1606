"""HTTP routers exposing the access gate."""

from tessera.infra.fastapi.routers.health import router as health_router
from tessera.infra.fastapi.routers.impersonation import router as impersonation_router
from tessera.infra.fastapi.routers.session import router as session_router
from tessera.infra.fastapi.routers.usage import router as usage_router

GATE_ROUTERS = (health_router, session_router, impersonation_router, usage_router)

__all__ = [
    "GATE_ROUTERS",
    "health_router",
    "impersonation_router",
    "session_router",
    "usage_router",
]
