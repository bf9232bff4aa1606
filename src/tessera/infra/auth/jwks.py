"""Key set cache for asymmetric JWT signature verification.

Provides:
- JWKS URI resolution: explicit URL, else OIDC discovery from the issuer,
  else ``{issuer}/.well-known/jwks.json``
- In-memory key caching with a freshness TTL
- Stale-while-revalidate: a known key id is served immediately while a
  background refresh runs
- Single-flight refresh on unknown key ids (key rotation): concurrent
  callers await one shared fetch
- Graceful degradation: a failed refresh never evicts cached keys

Lifecycle: Created once during app lifespan startup, stored on the gate.
Injectable: tests pass an ``httpx.AsyncClient`` with a mock transport.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any

import httpx
from jwt import PyJWKSet
from jwt.exceptions import PyJWKSetError

if TYPE_CHECKING:
    from collections.abc import Callable

    from jwt import PyJWK

logger = logging.getLogger(__name__)

_MAX_LOOKED_UP_KIDS = 1024


class KeyUnavailableError(Exception):
    """Raised when no verification key can be obtained for a key id."""

    def __init__(self, kid: str | None, detail: str) -> None:
        self.kid = kid
        self.detail = detail
        super().__init__(f"No verification key for kid={kid!r}: {detail}")


class KeySetCache:
    """JWKS key cache with lazy TTL refresh and single-flight fetches.

    Args:
        jwks_url: Explicit JWKS endpoint. Takes precedence over discovery.
        issuer: Issuer base URL used for OIDC discovery.
        http_client: Client used for fetches. Created (and owned) when omitted.
        ttl: Seconds a fetched key set is considered fresh.
        fetch_timeout: Timeout for each HTTP request in seconds.
        min_refresh_interval: Minimum seconds between fetch attempts
            triggered by staleness or by a key id that already missed once.
        clock: Monotonic clock in seconds. Injectable for tests.

    Raises:
        ValueError: If neither ``jwks_url`` nor ``issuer`` is given.

    Example:
        >>> cache = KeySetCache(issuer="https://project.supabase.co/auth/v1")
        >>> key = await cache.get_signing_key(header["kid"])
        >>> claims = jwt.decode(token, key.key, algorithms=["RS256"])
    """

    def __init__(
        self,
        *,
        jwks_url: str = "",
        issuer: str = "",
        http_client: httpx.AsyncClient | None = None,
        ttl: float = 3600.0,
        fetch_timeout: float = 5.0,
        min_refresh_interval: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not jwks_url and not issuer:
            raise ValueError("A JWKS URL or an issuer URL is required for key discovery")

        self._configured_jwks_url = jwks_url
        self._issuer_url = issuer.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=fetch_timeout)
        self._ttl = ttl
        self._fetch_timeout = fetch_timeout
        self._min_refresh_interval = min_refresh_interval
        self._clock = clock

        self._keys: dict[str, PyJWK] = {}
        self._discovered_jwks_uri: str | None = None
        self._fetched_at: float | None = None
        self._last_attempt: float | None = None
        self._refresh_task: asyncio.Task[bool] | None = None
        # Unknown kids that already triggered a fetch; later misses are throttled.
        self._looked_up_kids: set[str] = set()

        logger.info(
            "key_set_cache_initialized",
            extra={
                "issuer": self._issuer_url,
                "jwks_url": jwks_url or None,
                "ttl": ttl,
            },
        )

    @property
    def key_ids(self) -> frozenset[str]:
        """Key ids currently cached."""
        return frozenset(self._keys)

    @property
    def is_stale(self) -> bool:
        """True when the key set was never fetched or is older than the TTL."""
        return self._fetched_at is None or self._clock() - self._fetched_at >= self._ttl

    async def get_signing_key(self, kid: str | None) -> PyJWK:
        """Return the verification key for ``kid``.

        Known keys are returned without waiting, even when stale; a
        background refresh is started in that case. Unknown key ids await
        one shared refresh. The first lookup of an unseen key id always
        fetches; repeated misses are throttled by ``min_refresh_interval``.

        Raises:
            KeyUnavailableError: If the key id is absent after refreshing,
                or the key set could not be fetched.
        """
        if not kid:
            raise KeyUnavailableError(kid, "credential header carries no kid")

        key = self._keys.get(kid)
        if key is not None:
            if self.is_stale:
                self._start_refresh(background=True)
            return key

        task = self._start_refresh(background=False, unseen_kid=kid)
        if task is not None:
            # Shielded: a cancelled caller does not cancel the shared fetch.
            await asyncio.shield(task)

        key = self._keys.get(kid)
        if key is None:
            logger.warning(
                "jwks_kid_not_found",
                extra={"kid": kid, "known_kids": sorted(self._keys)},
            )
            raise KeyUnavailableError(kid, "key id not present in key set")
        return key

    async def refresh(self) -> bool:
        """Fetch the key set now, joining any in-flight fetch.

        Returns:
            True when the fetch succeeded.
        """
        task = self._refresh_task
        if task is None or task.done():
            task = self._spawn_refresh()
        return await asyncio.shield(task)

    async def aclose(self) -> None:
        """Cancel any in-flight refresh and close an owned HTTP client."""
        task = self._refresh_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._owns_client:
            await self._client.aclose()

    def _start_refresh(
        self,
        *,
        background: bool,
        unseen_kid: str | None = None,
    ) -> asyncio.Task[bool] | None:
        task = self._refresh_task
        if task is not None and not task.done():
            return task
        first_sight = unseen_kid is not None and unseen_kid not in self._looked_up_kids
        if not (first_sight or self._refresh_allowed()):
            logger.debug(
                "jwks_refresh_throttled",
                extra={"background": background, "kid": unseen_kid},
            )
            return None
        if unseen_kid is not None:
            if len(self._looked_up_kids) >= _MAX_LOOKED_UP_KIDS:
                self._looked_up_kids.clear()
            self._looked_up_kids.add(unseen_kid)
        return self._spawn_refresh()

    def _spawn_refresh(self) -> asyncio.Task[bool]:
        self._last_attempt = self._clock()
        task = asyncio.get_running_loop().create_task(self._fetch(), name="jwks-refresh")
        self._refresh_task = task
        return task

    def _refresh_allowed(self) -> bool:
        if self._last_attempt is None:
            return True
        return self._clock() - self._last_attempt >= self._min_refresh_interval

    async def _fetch(self) -> bool:
        try:
            jwks_uri = await self._resolve_jwks_uri()
            resp = await self._client.get(jwks_uri, timeout=self._fetch_timeout)
            resp.raise_for_status()
            document = resp.json()
            if not isinstance(document, dict):
                raise PyJWKSetError("JWKS document is not a JSON object")
            jwk_set = PyJWKSet.from_dict(document)
        except (httpx.HTTPError, ValueError, PyJWKSetError):
            logger.warning(
                "jwks_refresh_failed",
                extra={"cached_kids": sorted(self._keys)},
                exc_info=True,
            )
            return False

        # Swap the whole mapping so readers never observe a partial key set.
        self._keys = {jwk.key_id: jwk for jwk in jwk_set.keys if jwk.key_id}
        self._fetched_at = self._clock()
        logger.info(
            "jwks_refreshed",
            extra={"jwks_uri": jwks_uri, "key_count": len(self._keys)},
        )
        return True

    async def _resolve_jwks_uri(self) -> str:
        if self._configured_jwks_url:
            return self._configured_jwks_url
        if self._discovered_jwks_uri:
            return self._discovered_jwks_uri

        discovered = await self._discover_jwks_uri()
        if discovered:
            self._discovered_jwks_uri = discovered
            return discovered
        return f"{self._issuer_url}/.well-known/jwks.json"

    async def _discover_jwks_uri(self) -> str | None:
        """Attempt OIDC discovery to resolve jwks_uri.

        Validates that the discovered issuer matches the configured issuer.

        Returns:
            Discovered JWKS URI, or ``None`` if discovery fails.
        """
        discovery_url = f"{self._issuer_url}/.well-known/openid-configuration"
        try:
            resp = await self._client.get(discovery_url, timeout=self._fetch_timeout)
            resp.raise_for_status()
            doc: Any = resp.json()
        except (httpx.HTTPError, ValueError):
            logger.debug(
                "oidc_discovery_failed",
                extra={"url": discovery_url},
                exc_info=True,
            )
            return None

        if not isinstance(doc, dict):
            logger.warning("oidc_discovery_invalid_document", extra={"url": discovery_url})
            return None

        discovered_issuer = str(doc.get("issuer", "")).rstrip("/")
        if discovered_issuer != self._issuer_url:
            logger.warning(
                "oidc_discovery_issuer_mismatch",
                extra={"expected": self._issuer_url, "discovered": discovered_issuer},
            )
            return None

        jwks_uri = doc.get("jwks_uri")
        if jwks_uri:
            logger.info("oidc_discovery_success", extra={"jwks_uri": jwks_uri})
            return str(jwks_uri)

        logger.warning("oidc_discovery_no_jwks_uri")
        return None
