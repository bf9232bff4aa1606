"""Lifespan contribution type for startup/shutdown hooks.

Infrastructure packages publish a ``LifespanContribution`` under the
``tessera.lifespan`` entry-point group. The app factory composes them in
priority order. Framework-agnostic: no FastAPI, no SQLAlchemy.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

LIFESPAN_GROUP = "tessera.lifespan"

# Recommended lifespan priorities. Lower starts first and stops last.
LIFESPAN_PRIORITY_OBSERVABILITY = 50
LIFESPAN_PRIORITY_PERSISTENCE = 75
LIFESPAN_PRIORITY_GATE = 100


@dataclass(frozen=True, slots=True)
class LifespanContribution:
    """Describes a lifespan hook to be auto-discovered and registered.

    Attributes:
        hook: An async context manager factory ``(app) -> AsyncContextManager[None]``.
        priority: Ordering priority. Lower priorities start first (and shut down last).
    """

    hook: Any  # Callable[[Any], AsyncContextManager[None]]
    priority: int = 500
