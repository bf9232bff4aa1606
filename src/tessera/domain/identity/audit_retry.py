"""Background retry of audit writes that failed on the request path.

Ending an impersonation session must not fail because the audit store is
briefly unavailable. The entry is handed to ``AuditRetryQueue``, which keeps
retrying in a background task with exponential backoff (tenacity).
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from tessera.foundation.domain.exceptions import StorageUnavailableError

if TYPE_CHECKING:
    from tessera.foundation.domain.audit import AuditEntry
    from tessera.foundation.domain.ports.gate_store import GateStore

logger = logging.getLogger(__name__)


class AuditRetryQueue:
    """Schedules background retries of failed audit appends.

    Args:
        store: Persistent store port.
        max_attempts: Total append attempts per entry.
        wait_min: Minimum backoff between attempts, in seconds.
        wait_max: Maximum backoff between attempts, in seconds.
    """

    def __init__(
        self,
        store: GateStore,
        *,
        max_attempts: int = 5,
        wait_min: float = 0.5,
        wait_max: float = 30.0,
    ) -> None:
        self._store = store
        self._max_attempts = max_attempts
        self._wait_min = wait_min
        self._wait_max = wait_max
        self._pending: set[asyncio.Task[bool]] = set()

    @property
    def pending(self) -> int:
        """Number of entries still being retried."""
        return len(self._pending)

    def schedule(self, entry: AuditEntry) -> asyncio.Task[bool]:
        """Start retrying ``entry`` in the background. Must run inside an event loop."""
        task = asyncio.create_task(self._deliver(entry), name=f"audit-retry-{entry.id}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        logger.info(
            "audit_retry_scheduled",
            extra={"audit_entry_id": str(entry.id), "action": entry.action.value},
        )
        return task

    async def drain(self) -> None:
        """Wait for every scheduled retry to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _deliver(self, entry: AuditEntry) -> bool:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=1, min=self._wait_min, max=self._wait_max),
            retry=retry_if_exception_type(StorageUnavailableError),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._store.append_audit_entry(entry)
        except RetryError:
            logger.critical(
                "audit_retry_exhausted",
                extra={
                    "audit_entry_id": str(entry.id),
                    "action": entry.action.value,
                    "actor_principal_id": str(entry.actor_principal_id),
                    "target_tenant_id": entry.target_tenant_id,
                    "attempts": self._max_attempts,
                },
            )
            return False
        except Exception:
            logger.exception(
                "audit_retry_failed",
                extra={"audit_entry_id": str(entry.id), "action": entry.action.value},
            )
            return False

        logger.info(
            "audit_retry_delivered",
            extra={"audit_entry_id": str(entry.id), "action": entry.action.value},
        )
        return True
