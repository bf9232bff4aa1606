"""Bearer credential verification.

Validates a raw JWT and returns the verified ``Claims``:

1. Structural decode (no signature) -> ``MALFORMED`` on garbage input
2. Temporal checks against the injected clock -> ``EXPIRED``
3. Asymmetric path: key from ``KeySetCache``, issuer and audience checked
4. Symmetric path: HS256 with the shared secret, audience checked
5. Claim mapping -> ``INVALID_CLAIMS`` when required claims are missing

Temporal checks run before any signature work, so an expired credential is
reported as ``EXPIRED`` whether or not its signature is valid.

Fallback policy between the two paths:
- ``key_unavailable``: the symmetric path is tried only when no asymmetric
  key could be obtained (symmetric ``alg``, missing/unknown ``kid``, key
  set fetch failure).
- ``any_failure``: the symmetric path is tried after any asymmetric failure.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

import jwt as pyjwt

from tessera.foundation.domain.claims import Claims
from tessera.foundation.domain.exceptions import CredentialError, CredentialFailure
from tessera.infra.auth.jwks import KeyUnavailableError

if TYPE_CHECKING:
    from collections.abc import Callable

    from tessera.infra.auth.jwks import KeySetCache
    from tessera.infra.auth.settings import SymmetricFallback

logger = logging.getLogger(__name__)

ASYMMETRIC_ALGORITHMS = frozenset(
    {"RS256", "RS384", "RS512", "PS256", "PS384", "PS512", "ES256", "ES384", "ES512"}
)
SYMMETRIC_ALGORITHM = "HS256"

# exp/nbf/iat are checked against the injected clock before decoding.
_DECODE_OPTIONS: dict[str, Any] = {
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "require": ["sub"],
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CredentialVerifier:
    """Verifies bearer credentials on the asymmetric and symmetric paths.

    Args:
        key_cache: Key set cache enabling the asymmetric path.
        issuer: Expected ``iss`` on the asymmetric path, compared exactly as
            configured. Not checked when empty.
        audience: Expected ``aud`` on both paths. Not checked when empty.
        shared_secret: HS256 secret enabling the symmetric path.
        symmetric_fallback: ``key_unavailable`` or ``any_failure``.
        leeway: Clock skew tolerance for exp/nbf in seconds.
        clock: Returns the current UTC time. Injectable for tests.
    """

    def __init__(
        self,
        *,
        key_cache: KeySetCache | None = None,
        issuer: str = "",
        audience: str = "authenticated",
        shared_secret: str = "",
        symmetric_fallback: SymmetricFallback = "key_unavailable",
        leeway: int = 0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._key_cache = key_cache
        self._issuer = issuer or None
        self._audience = audience or None
        self._shared_secret = shared_secret
        self._symmetric_fallback = symmetric_fallback
        self._leeway = leeway
        self._clock = clock

    @property
    def key_cache(self) -> KeySetCache | None:
        """Key set cache of the asymmetric path, if configured."""
        return self._key_cache

    async def verify(self, raw_credential: str) -> Claims:
        """Verify ``raw_credential`` and return its claims.

        Raises:
            CredentialError: With the failure reason. All reasons are terminal.
        """
        try:
            return await self._verify(raw_credential)
        except CredentialError as exc:
            logger.info(
                "credential_rejected",
                extra={"reason": exc.reason.value, "detail": exc.message},
            )
            raise

    async def _verify(self, raw: str) -> Claims:
        header, unverified = _decode_unverified(raw)
        expires_at = self._check_temporal(unverified)

        if self._key_cache is None and not self._shared_secret:
            raise CredentialError(
                CredentialFailure.NO_VERIFICATION_PATH_CONFIGURED,
                "No credential verification path is configured",
            )

        payload: dict[str, Any] | None = None
        if self._key_cache is not None:
            try:
                payload = await self._verify_asymmetric(raw, header)
            except KeyUnavailableError as exc:
                if not self._shared_secret:
                    raise CredentialError(
                        CredentialFailure.KEY_UNAVAILABLE,
                        "No verification key available for credential",
                        context={"kid": exc.kid},
                    ) from exc
                logger.debug("credential_symmetric_fallback", extra={"cause": exc.detail})
            except CredentialError as exc:
                if not (self._shared_secret and self._symmetric_fallback == "any_failure"):
                    raise
                logger.debug(
                    "credential_symmetric_fallback",
                    extra={"cause": exc.reason.value},
                )

        if payload is None:
            payload = self._verify_symmetric(raw)

        return _to_claims(payload, expires_at)

    def _check_temporal(self, unverified: dict[str, Any]) -> datetime:
        exp = unverified.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, int | float):
            raise CredentialError(
                CredentialFailure.MALFORMED,
                "Credential has no numeric exp claim",
            )

        now = self._clock().timestamp()
        if exp <= now - self._leeway:
            raise CredentialError(
                CredentialFailure.EXPIRED,
                "Credential has expired",
                context={"expired_at": datetime.fromtimestamp(exp, UTC).isoformat()},
            )

        nbf = unverified.get("nbf")
        if isinstance(nbf, int | float) and not isinstance(nbf, bool) and nbf > now + self._leeway:
            raise CredentialError(
                CredentialFailure.INVALID_CLAIMS,
                "Credential is not yet valid",
            )
        return datetime.fromtimestamp(exp, UTC)

    async def _verify_asymmetric(self, raw: str, header: dict[str, Any]) -> dict[str, Any]:
        assert self._key_cache is not None
        alg = header.get("alg")
        if alg not in ASYMMETRIC_ALGORITHMS:
            raise KeyUnavailableError(header.get("kid"), f"algorithm {alg!r} is not asymmetric")

        signing_key = await self._key_cache.get_signing_key(header.get("kid"))
        options = dict(_DECODE_OPTIONS)
        options["verify_aud"] = self._audience is not None
        return _decode(
            raw,
            signing_key.key,
            algorithms=[str(alg)],
            issuer=self._issuer,
            audience=self._audience,
            options=options,
        )

    def _verify_symmetric(self, raw: str) -> dict[str, Any]:
        if not self._shared_secret:
            raise CredentialError(
                CredentialFailure.KEY_UNAVAILABLE,
                "No verification key available for credential",
            )
        options = dict(_DECODE_OPTIONS)
        options["verify_aud"] = self._audience is not None
        options["verify_iss"] = False
        return _decode(
            raw,
            self._shared_secret,
            algorithms=[SYMMETRIC_ALGORITHM],
            issuer=None,
            audience=self._audience,
            options=options,
        )


def _decode_unverified(raw: str) -> tuple[dict[str, Any], dict[str, Any]]:
    if not raw or raw.count(".") != 2:
        raise CredentialError(CredentialFailure.MALFORMED, "Credential is not a JWT")
    try:
        header = pyjwt.get_unverified_header(raw)
        payload = pyjwt.decode(raw, options={"verify_signature": False})
    except pyjwt.InvalidTokenError as exc:
        raise CredentialError(CredentialFailure.MALFORMED, "Credential is malformed") from exc
    return header, payload


def _decode(
    raw: str,
    key: Any,
    *,
    algorithms: list[str],
    issuer: str | None,
    audience: str | None,
    options: dict[str, Any],
) -> dict[str, Any]:
    try:
        return pyjwt.decode(
            raw,
            key,
            algorithms=algorithms,
            issuer=issuer,
            audience=audience,
            options=options,
        )
    except pyjwt.InvalidSignatureError as exc:
        raise CredentialError(
            CredentialFailure.SIGNATURE_INVALID,
            "Credential signature verification failed",
        ) from exc
    except (pyjwt.InvalidAlgorithmError, pyjwt.InvalidKeyError) as exc:
        raise CredentialError(
            CredentialFailure.SIGNATURE_INVALID,
            "Credential algorithm does not match the verification key",
        ) from exc
    except pyjwt.InvalidIssuerError as exc:
        raise CredentialError(CredentialFailure.INVALID_CLAIMS, "Invalid issuer claim") from exc
    except pyjwt.InvalidAudienceError as exc:
        raise CredentialError(CredentialFailure.INVALID_CLAIMS, "Invalid audience claim") from exc
    except pyjwt.MissingRequiredClaimError as exc:
        raise CredentialError(
            CredentialFailure.INVALID_CLAIMS,
            f"Missing required claim: {exc.claim}",
        ) from exc
    except pyjwt.DecodeError as exc:
        raise CredentialError(CredentialFailure.MALFORMED, "Credential is malformed") from exc
    except pyjwt.PyJWTError as exc:
        raise CredentialError(
            CredentialFailure.INVALID_CLAIMS,
            "Credential validation failed",
        ) from exc


def _to_claims(payload: dict[str, Any], expires_at: datetime) -> Claims:
    """Map a verified JWT payload onto ``Claims``.

    Raises:
        CredentialError: ``INVALID_CLAIMS`` if required claims are missing
            or the impersonation claims are inconsistent.
    """
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise CredentialError(CredentialFailure.INVALID_CLAIMS, "Missing required claim: sub")

    email = payload.get("email")
    if not isinstance(email, str) or not email:
        raise CredentialError(CredentialFailure.INVALID_CLAIMS, "Missing required claim: email")

    metadata = payload.get("user_metadata")
    display_name = payload.get("name")
    if not display_name and isinstance(metadata, dict):
        display_name = metadata.get("name") or metadata.get("full_name")

    tenant_id = payload.get("tenant_id")
    tenant_role = payload.get("tenant_role")
    session_id = payload.get("jti")

    try:
        return Claims(
            subject_id=subject,
            email=email,
            expires_at=expires_at,
            tenant_id=str(tenant_id) if tenant_id else None,
            acting_as=_acting_principal(payload.get("act")),
            impersonating=payload.get("impersonating") is True,
            display_name=str(display_name) if display_name else None,
            tenant_role=str(tenant_role) if tenant_role else None,
            session_id=str(session_id) if session_id else None,
        )
    except ValueError as exc:
        raise CredentialError(CredentialFailure.INVALID_CLAIMS, str(exc)) from exc


def _acting_principal(act: Any) -> UUID | None:
    """Parse the ``act`` claim: a principal id string or ``{"sub": id}`` (RFC 8693)."""
    if act is None:
        return None
    if isinstance(act, dict):
        act = act.get("sub")
    try:
        return UUID(str(act))
    except ValueError as exc:
        raise ValueError(f"JWT 'act' claim is not a valid principal id: {act}") from exc
