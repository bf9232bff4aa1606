"""Principal record representing a durable authenticated identity.

Pure domain object with no external dependencies. Immutable (frozen
dataclass). Owned by the principal resolver; created at most once per
external identity.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID


class Role(StrEnum):
    """Roles a principal can hold.

    ``PLATFORM_ADMIN`` is platform-level (operators of the SaaS itself).
    The remaining roles are scoped to a single tenant.
    """

    PLATFORM_ADMIN = "platform_admin"
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"

    @property
    def is_platform_role(self) -> bool:
        """True for roles that grant platform-wide operator access."""
        return self in _PLATFORM_ROLES


_PLATFORM_ROLES = frozenset({Role.PLATFORM_ADMIN})


@dataclass(frozen=True, slots=True)
class Principal:
    """The platform's durable record of an authenticated identity.

    Attributes:
        id: Internal principal identifier.
        external_identity_id: Identity provider subject (JWT ``sub``). Unique.
        email: Email address at provisioning time (profile-updatable).
        display_name: Human-readable name (profile-updatable).
        tenant_id: Home tenant. None for operators without a tenant.
        role: Role within the home tenant, or a platform role.
        created_at: Provisioning timestamp (UTC).
        updated_at: Last profile update timestamp (UTC).
    """

    id: UUID
    external_identity_id: str
    email: str
    display_name: str | None
    tenant_id: str | None
    role: Role
    created_at: datetime
    updated_at: datetime
