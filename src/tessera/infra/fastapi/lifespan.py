"""Lifespan composition for the app factory.

Composes :class:`~tessera.foundation.application.LifespanContribution`
hooks into a single FastAPI-compatible lifespan context manager.
"""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from fastapi import FastAPI

    from tessera.foundation.application import LifespanContribution

logger = logging.getLogger(__name__)


def compose_lifespan(
    hooks: list[LifespanContribution],
) -> Callable[[FastAPI], Any]:
    """Create a composite lifespan from ordered hooks.

    Lower priority hooks start first and shut down last (stack semantics
    via :class:`AsyncExitStack`), so the gate hook can rely on the store
    published by the persistence hook.

    Args:
        hooks: LifespanContribution instances, in any order.

    Returns:
        An async context manager factory for FastAPI's ``lifespan`` parameter.
    """
    sorted_hooks = sorted(hooks, key=lambda h: h.priority)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        async with AsyncExitStack() as stack:
            for hook_contrib in sorted_hooks:
                logger.info(
                    "lifespan_hook_entering",
                    extra={
                        "priority": hook_contrib.priority,
                        "hook": getattr(hook_contrib.hook, "__qualname__", repr(hook_contrib.hook)),
                    },
                )
                await stack.enter_async_context(hook_contrib.hook(app))
            yield

    return lifespan
