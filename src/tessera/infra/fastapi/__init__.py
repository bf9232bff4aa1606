"""FastAPI integration for the access gate.

Exports the app factory, settings, lifespan composition and error handlers.
"""

from tessera.infra.fastapi.app_factory import create_app
from tessera.infra.fastapi.error_handlers import ProblemDetail, register_exception_handlers
from tessera.infra.fastapi.lifespan import compose_lifespan
from tessera.infra.fastapi.middleware import RequestIdMiddleware, get_request_id
from tessera.infra.fastapi.settings import AppSettings, CORSSettings

__all__ = [
    "AppSettings",
    "CORSSettings",
    "ProblemDetail",
    "RequestIdMiddleware",
    "compose_lifespan",
    "create_app",
    "get_request_id",
    "register_exception_handlers",
]
