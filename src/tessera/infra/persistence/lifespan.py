"""Persistence lifespan hook for startup/shutdown resource management.

Handles:
- Database health check on startup (SELECT 1)
- Gate store creation on ``app.state.gate_store``
- Engine disposal on shutdown

Priority 75 ensures persistence starts AFTER observability (50)
but BEFORE the access gate (100).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy import text

from tessera.foundation.application.contributions import (
    LIFESPAN_PRIORITY_PERSISTENCE,
    LifespanContribution,
)
from tessera.infra.persistence.database import get_database_manager
from tessera.infra.persistence.store import SqlAlchemyGateStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _persistence_lifespan(app: Any) -> AsyncIterator[None]:
    """Manage persistence resources across the application lifecycle.

    Startup:
        1. Execute ``SELECT 1`` health check on the async engine.
        2. Publish the gate store on ``app.state.gate_store``.

    Shutdown:
        1. Dispose the engine and its connection pool.

    Args:
        app: The application instance.
    """
    manager = get_database_manager()

    engine = manager.get_engine()
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("persistence_lifespan: database health check passed")

    app.state.gate_store = SqlAlchemyGateStore(
        manager.get_session_factory(),
        statement_timeout=manager.settings.statement_timeout,
    )

    try:
        yield
    finally:
        await manager.dispose()
        logger.info("persistence_lifespan: database engine disposed")


lifespan_contribution = LifespanContribution(
    hook=_persistence_lifespan,
    priority=LIFESPAN_PRIORITY_PERSISTENCE,
)
