"""Port interface for issuing signed, time-bound credentials.

The impersonation manager decides *what* an elevated credential says; an
issuer implementation decides *how* it is signed.

Example:
    >>> from tessera.foundation.domain.ports import CredentialIssuer
    >>> def issue(issuer: CredentialIssuer, claims) -> str:
    ...     return issuer.issue(claims)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from tessera.foundation.domain.claims import Claims


@runtime_checkable
class CredentialIssuer(Protocol):
    """Port for signing credentials from a claim set."""

    def issue(self, claims: Claims) -> str:
        """Sign ``claims`` into a bearer credential string.

        The credential must expire at ``claims.expires_at``.
        """
        ...
