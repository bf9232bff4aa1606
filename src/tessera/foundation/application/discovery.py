"""Entry-point discovery of lifespan contributions."""

from __future__ import annotations

import logging
from importlib.metadata import entry_points

from tessera.foundation.application.contributions import LIFESPAN_GROUP, LifespanContribution

logger = logging.getLogger(__name__)


def discover_lifespan_hooks(
    group: str = LIFESPAN_GROUP,
    *,
    exclude_names: frozenset[str] = frozenset(),
) -> list[LifespanContribution]:
    """Load lifespan contributions published by installed packages.

    Entry points that fail to load, or that do not resolve to a
    ``LifespanContribution``, are logged and skipped.

    Args:
        group: Entry point group name.
        exclude_names: Entry point names to skip.

    Returns:
        Contributions sorted by ascending priority.
    """
    hooks: list[LifespanContribution] = []
    for ep in entry_points(group=group):
        if ep.name in exclude_names:
            logger.debug("Skipping excluded entry point %s:%s", group, ep.name)
            continue
        try:
            loaded = ep.load()
        except Exception:
            logger.exception("Failed to load entry point %s:%s", group, ep.name)
            continue
        if not isinstance(loaded, LifespanContribution):
            logger.warning(
                "Entry point %s:%s is not a LifespanContribution (got %s)",
                group,
                ep.name,
                type(loaded).__name__,
            )
            continue
        hooks.append(loaded)

    hooks.sort(key=lambda c: c.priority)
    logger.info("Discovered %d lifespan hooks in group %r", len(hooks), group)
    return hooks
