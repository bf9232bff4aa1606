"""HS256 credential issuer backed by the shared secret.

Credentials it signs verify on the symmetric path of ``CredentialVerifier``
configured with the same secret and audience.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import jwt as pyjwt

if TYPE_CHECKING:
    from collections.abc import Callable

    from tessera.foundation.domain.claims import Claims


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SharedSecretCredentialIssuer:
    """Signs claim sets with HS256.

    Args:
        shared_secret: HMAC secret. Must match the verifier's secret.
        issuer: ``iss`` claim stamped on every credential.
        audience: ``aud`` claim stamped on every credential.
        clock: Returns the current UTC time (``iat``). Injectable for tests.

    Raises:
        ValueError: If ``shared_secret`` is empty.
    """

    algorithm = "HS256"

    def __init__(
        self,
        shared_secret: str,
        *,
        issuer: str = "tessera",
        audience: str = "authenticated",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not shared_secret:
            raise ValueError("A shared secret is required to issue credentials")
        self._secret = shared_secret
        self._issuer = issuer
        self._audience = audience
        self._clock = clock

    def issue(self, claims: Claims) -> str:
        """Sign ``claims``; the credential expires at ``claims.expires_at``."""
        payload: dict[str, Any] = {
            "sub": claims.subject_id,
            "email": claims.email,
            "iat": int(self._clock().timestamp()),
            "exp": int(claims.expires_at.timestamp()),
        }
        if self._issuer:
            payload["iss"] = self._issuer
        if self._audience:
            payload["aud"] = self._audience
        if claims.display_name:
            payload["name"] = claims.display_name
        if claims.tenant_id:
            payload["tenant_id"] = claims.tenant_id
        if claims.impersonating:
            payload["impersonating"] = True
            payload["act"] = str(claims.acting_as)
        if claims.tenant_role:
            payload["tenant_role"] = claims.tenant_role
        if claims.session_id:
            payload["jti"] = claims.session_id
        return pyjwt.encode(payload, self._secret, algorithm=self.algorithm)
