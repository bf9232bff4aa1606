"""Port interface for verifying bearer credentials."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from tessera.foundation.domain.claims import Claims


@runtime_checkable
class CredentialVerifierPort(Protocol):
    """Port for turning a raw bearer credential into verified claims."""

    async def verify(self, raw_credential: str) -> Claims:
        """Verify the credential.

        Raises:
            CredentialError: With a reason code when the credential is rejected.
        """
        ...
