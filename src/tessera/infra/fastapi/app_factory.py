"""FastAPI application factory with lifespan auto-discovery.

Provides :func:`create_app`, which wires lifespan hooks discovered through
entry points, CORS, request-id and bearer-auth middleware, RFC 7807 error
handlers and the gate routers.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from tessera.foundation.application import LifespanContribution, discover_lifespan_hooks
from tessera.infra.auth.middleware import BearerAuthMiddleware
from tessera.infra.fastapi.error_handlers import register_exception_handlers
from tessera.infra.fastapi.lifespan import compose_lifespan
from tessera.infra.fastapi.middleware.request_id import RequestIdMiddleware
from tessera.infra.fastapi.routers import GATE_ROUTERS
from tessera.infra.fastapi.settings import AppSettings

if TYPE_CHECKING:
    from fastapi import APIRouter

    from tessera.domain.identity.gate import AccessGate

logger = logging.getLogger(__name__)


def create_app(
    settings: AppSettings | None = None,
    *,
    access_gate: AccessGate | None = None,
    extra_routers: list[APIRouter] | None = None,
    extra_lifespan_hooks: list[LifespanContribution] | None = None,
    exclude_names: frozenset[str] | None = None,
    discover_hooks: bool = True,
) -> FastAPI:
    """Create the gate application.

    Args:
        settings: Application settings. If ``None``, loaded from environment.
        access_gate: Pre-built gate. When given, the gate lifespan hook
            leaves it in place instead of building one from settings.
        extra_routers: Routers included after the gate routers.
        extra_lifespan_hooks: Lifespan hooks beyond discovered ones.
        exclude_names: Entry point names to skip during discovery.
        discover_hooks: Set ``False`` to skip entry-point discovery entirely.

    Returns:
        Configured FastAPI application instance.
    """
    settings = settings or AppSettings()
    _exclude_names = exclude_names if exclude_names is not None else settings.exclude_entry_points

    # --- Lifespan hooks ---
    lifespan_hooks: list[LifespanContribution] = list(extra_lifespan_hooks or [])
    if discover_hooks:
        lifespan_hooks.extend(discover_lifespan_hooks(exclude_names=_exclude_names))

    app = FastAPI(
        title=settings.title,
        version=settings.version,
        description=settings.description,
        docs_url=settings.docs_url,
        redoc_url=settings.redoc_url,
        openapi_url=settings.openapi_url,
        debug=settings.debug,
        lifespan=compose_lifespan(lifespan_hooks),
    )
    if access_gate is not None:
        app.state.access_gate = access_gate

    # --- Middleware (LIFO: last added is outermost) ---
    # Request -> RequestId -> BearerAuth -> CORS -> Route
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors.allow_origins,
        allow_credentials=settings.cors.allow_credentials,
        allow_methods=settings.cors.allow_methods,
        allow_headers=settings.cors.allow_headers,
        expose_headers=settings.cors.expose_headers,
    )
    app.add_middleware(
        BearerAuthMiddleware,
        excluded_prefixes=tuple(settings.public_path_prefixes),
        optional_prefixes=tuple(settings.optional_auth_path_prefixes),
    )
    app.add_middleware(RequestIdMiddleware)

    register_exception_handlers(app)

    # --- Routers ---
    routers: list[APIRouter] = [*GATE_ROUTERS, *(extra_routers or [])]
    for router in routers:
        app.include_router(router)
        logger.debug("router_included", extra={"prefix": router.prefix or "/"})

    logger.info(
        "app_created",
        extra={"lifespan_hooks": len(lifespan_hooks), "routers": len(routers)},
    )
    return app
