"""Shared fixtures: in-memory store, signing keys, token factory and clocks."""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from tessera.foundation.domain.billing import UNLIMITED, Plan, Subscription, UsageRecord
from tessera.foundation.domain.exceptions import ConflictError, StorageUnavailableError
from tessera.foundation.domain.principal import Principal, Role
from tessera.foundation.domain.tenant import TenantRecord, TenantStatus

if TYPE_CHECKING:
    from collections.abc import Callable

    from tessera.foundation.domain.audit import AuditEntry

FIXED_NOW = datetime(2025, 3, 15, 12, 0, tzinfo=UTC)
ISSUER = "https://idp.example.com/auth/v1"
JWKS_URL = f"{ISSUER}/.well-known/jwks.json"
AUDIENCE = "authenticated"
SHARED_SECRET = "test-shared-secret-that-is-long-enough-for-hs256"
KID = "key-1"


class FixedClock:
    """Settable UTC clock."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class MonotonicClock:
    """Settable monotonic clock in seconds."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeGateStore:
    """In-memory ``GateStore`` and ``TenantDirectory``.

    Every call yields to the event loop once so that concurrent callers
    interleave. Operations listed in ``failing`` raise ``StorageUnavailableError``;
    ``fail_next[operation] = n`` fails only the next ``n`` calls.
    """

    def __init__(self, plans: tuple[Plan, ...] | None = None) -> None:
        default_plans = (
            Plan(code="free", name="Free", monthly_unit_limit=10),
            Plan(code="pro", name="Pro", monthly_unit_limit=100),
            Plan(code="business", name="Business", monthly_unit_limit=UNLIMITED),
        )
        self.plans: dict[str, Plan] = {p.code: p for p in (plans or default_plans)}
        self.principals: dict[UUID, Principal] = {}
        self.subscriptions: dict[UUID, Subscription] = {}
        self.usage: list[UsageRecord] = []
        self.audit: list[AuditEntry] = []
        self.tenants: dict[str, TenantRecord] = {}
        self.failing: set[str] = set()
        self.fail_next: dict[str, int] = {}
        self.calls: list[str] = []

    async def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        await asyncio.sleep(0)
        if operation in self.failing:
            raise StorageUnavailableError(operation)
        if self.fail_next.get(operation, 0) > 0:
            self.fail_next[operation] -= 1
            raise StorageUnavailableError(operation)

    # -- seeding helpers --

    def add_principal(self, principal: Principal, subscription: Subscription | None = None) -> None:
        self.principals[principal.id] = principal
        if subscription is not None:
            self.subscriptions[principal.id] = subscription

    def add_tenant(self, tenant_id: str, name: str = "", status: TenantStatus = TenantStatus.ACTIVE) -> None:
        self.tenants[tenant_id] = TenantRecord(tenant_id=tenant_id, name=name or tenant_id, status=status)

    # -- GateStore --

    async def find_principal_by_external_id(self, external_identity_id: str) -> Principal | None:
        await self._enter("find_principal_by_external_id")
        for principal in self.principals.values():
            if principal.external_identity_id == external_identity_id:
                return principal
        return None

    async def get_principal(self, principal_id: UUID) -> Principal | None:
        await self._enter("get_principal")
        return self.principals.get(principal_id)

    async def create_principal(self, principal: Principal, subscription: Subscription) -> Principal:
        await self._enter("create_principal")
        if any(
            p.external_identity_id == principal.external_identity_id
            for p in self.principals.values()
        ):
            raise ConflictError(
                "duplicate external identity",
                external_identity_id=principal.external_identity_id,
            )
        self.add_principal(principal, subscription)
        return principal

    async def update_principal_profile(
        self,
        principal_id: UUID,
        *,
        email: str | None = None,
        display_name: str | None = None,
    ) -> Principal | None:
        await self._enter("update_principal_profile")
        return self.principals.get(principal_id)

    async def find_active_subscription(self, principal_id: UUID) -> Subscription | None:
        await self._enter("find_active_subscription")
        return self.subscriptions.get(principal_id)

    async def find_plan(self, code: str) -> Plan | None:
        await self._enter("find_plan")
        return self.plans.get(code)

    async def sum_usage_since(
        self,
        principal_id: UUID,
        since: datetime,
        until: datetime | None = None,
    ) -> int:
        await self._enter("sum_usage_since")
        return sum(
            r.units
            for r in self.usage
            if r.principal_id == principal_id
            and r.timestamp >= since
            and (until is None or r.timestamp < until)
        )

    async def append_usage_record(self, record: UsageRecord) -> None:
        await self._enter("append_usage_record")
        self.usage.append(record)

    async def list_usage_records(self, principal_id: UUID, limit: int = 50) -> list[UsageRecord]:
        await self._enter("list_usage_records")
        records = [r for r in self.usage if r.principal_id == principal_id]
        return sorted(records, key=lambda r: r.timestamp, reverse=True)[:limit]

    async def append_audit_entry(self, entry: AuditEntry) -> None:
        await self._enter("append_audit_entry")
        self.audit.append(entry)

    async def list_audit_entries(
        self,
        *,
        target_tenant_id: str | None = None,
        limit: int = 100,
    ) -> list[AuditEntry]:
        await self._enter("list_audit_entries")
        entries = [
            e for e in self.audit if target_tenant_id is None or e.target_tenant_id == target_tenant_id
        ]
        return entries[:limit]

    # -- TenantDirectory --

    async def find_tenant(self, tenant_id: str) -> TenantRecord | None:
        await self._enter("find_tenant")
        return self.tenants.get(tenant_id)


def make_principal(
    *,
    role: Role = Role.MEMBER,
    tenant_id: str | None = "acme",
    external_identity_id: str | None = None,
    email: str = "user@example.com",
) -> Principal:
    return Principal(
        id=uuid4(),
        external_identity_id=external_identity_id or f"sub-{uuid4()}",
        email=email,
        display_name="Test User",
        tenant_id=tenant_id,
        role=role,
        created_at=FIXED_NOW,
        updated_at=FIXED_NOW,
    )


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture()
def store() -> FakeGateStore:
    return FakeGateStore()


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def public_jwk(private_key: rsa.RSAPrivateKey, kid: str) -> dict[str, Any]:
    jwk = json.loads(RSAAlgorithm.to_jwk(private_key.public_key()))
    jwk.update({"kid": kid, "alg": "RS256", "use": "sig"})
    return jwk


@pytest.fixture(scope="session")
def jwks_document(rsa_private_key: rsa.RSAPrivateKey) -> dict[str, Any]:
    return {"keys": [public_jwk(rsa_private_key, KID)]}


class JwksEndpoint:
    """``httpx.MockTransport`` handler serving a mutable JWKS document."""

    def __init__(self, document: dict[str, Any]) -> None:
        self.document = document
        self.requests: list[str] = []
        self.fail = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(str(request.url))
        if self.fail:
            return httpx.Response(503, json={"error": "unavailable"})
        if str(request.url).endswith("/openid-configuration"):
            return httpx.Response(404)
        return httpx.Response(200, json=self.document)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture()
def jwks_endpoint(jwks_document: dict[str, Any]) -> JwksEndpoint:
    return JwksEndpoint(jwks_document)


@pytest.fixture()
def make_token(rsa_private_key: rsa.RSAPrivateKey) -> Callable[..., str]:
    """Factory for signed test credentials.

    ``algorithm="HS256"`` signs with the shared secret; RS256 tokens are
    signed with ``rsa_private_key`` unless ``key`` is given.
    """

    def _make(
        *,
        sub: str = "user-1",
        email: str | None = "user@example.com",
        expires_in: timedelta = timedelta(hours=1),
        now: datetime = FIXED_NOW,
        algorithm: str = "RS256",
        kid: str | None = KID,
        key: Any = None,
        issuer: str | None = ISSUER,
        audience: str | None = AUDIENCE,
        **extra: Any,
    ) -> str:
        payload: dict[str, Any] = {
            "sub": sub,
            "iat": int(now.timestamp()),
            "exp": int((now + expires_in).timestamp()),
            **extra,
        }
        if email is not None:
            payload["email"] = email
        if issuer is not None:
            payload["iss"] = issuer
        if audience is not None:
            payload["aud"] = audience
        if algorithm == "HS256":
            return jwt.encode(payload, key or SHARED_SECRET, algorithm="HS256")
        headers = {"kid": kid} if kid else None
        return jwt.encode(payload, key or rsa_private_key, algorithm=algorithm, headers=headers)

    return _make
