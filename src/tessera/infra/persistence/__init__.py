"""Tessera Infra Persistence -- async SQLAlchemy gate store."""

from tessera.infra.persistence.database import (
    DatabaseManager,
    DatabaseSettings,
    get_database_manager,
)
from tessera.infra.persistence.lifespan import lifespan_contribution
from tessera.infra.persistence.store import DEFAULT_PLANS, SqlAlchemyGateStore
from tessera.infra.persistence.tables import Base, create_schema

__all__ = [
    "DEFAULT_PLANS",
    "Base",
    "DatabaseManager",
    "DatabaseSettings",
    "SqlAlchemyGateStore",
    "create_schema",
    "get_database_manager",
    "lifespan_contribution",
]
