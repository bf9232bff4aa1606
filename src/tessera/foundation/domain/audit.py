"""Audit entries for impersonation transitions.

Append-only and write-once. Start and end of an impersonation session are
separate entries, paired through ``metadata["session_id"]``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

if TYPE_CHECKING:
    from datetime import datetime


class AuditAction(StrEnum):
    """Recorded impersonation transitions."""

    IMPERSONATION_START = "impersonation_start"
    IMPERSONATION_END = "impersonation_end"


@dataclass(frozen=True, slots=True)
class AuditEntry:
    """A single audit log entry.

    Attributes:
        actor_principal_id: The real operator. Never the impersonated tenant's principal.
        target_tenant_id: Tenant acted upon.
        action: Transition recorded.
        timestamp: When the transition happened (UTC).
        metadata: Free-form details (session id, expiry, operator email).
        id: Entry identifier.
    """

    actor_principal_id: UUID
    target_tenant_id: str
    action: AuditAction
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict)
    id: UUID = field(default_factory=uuid4)

    @property
    def session_id(self) -> str | None:
        value = self.metadata.get("session_id")
        return str(value) if value is not None else None
