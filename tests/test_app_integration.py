"""End-to-end tests through create_app: middleware, routers and error mapping."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

import pytest
from fastapi import APIRouter, Depends
from fastapi.testclient import TestClient

from tessera.domain.identity.audit_retry import AuditRetryQueue
from tessera.domain.identity.gate import AccessGate
from tessera.domain.identity.impersonation import ImpersonationManager
from tessera.domain.identity.principal_resolver import PrincipalResolver
from tessera.foundation.application.context import SessionContextBuilder, get_optional_session
from tessera.foundation.application.usage_gate import UsageGate
from tessera.foundation.domain.audit import AuditAction
from tessera.foundation.domain.principal import Role
from tessera.infra.auth.dependencies import (
    CurrentSession,
    metered,
    require_platform_role,
    require_tenant_role,
)
from tessera.infra.auth.issuer import SharedSecretCredentialIssuer
from tessera.infra.auth.verifier import CredentialVerifier
from tessera.infra.fastapi import AppSettings, create_app

from .conftest import SHARED_SECRET, FakeGateStore, FixedClock, make_principal

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from fastapi import FastAPI

OPERATOR_SUB = "operator-sub"

work_router = APIRouter(prefix="/work", tags=["work"])


@work_router.post("/generate", dependencies=[Depends(metered())])
async def generate() -> dict[str, bool]:
    return {"generated": True}


guarded_router = APIRouter(tags=["guarded"])


@guarded_router.get("/saas-admin/tenants", dependencies=[Depends(require_platform_role())])
async def list_all_tenants() -> dict[str, bool]:
    return {"platform": True}


@guarded_router.get(
    "/tenants/{tenant_id}/settings", dependencies=[Depends(require_tenant_role(Role.ADMIN))]
)
async def tenant_settings(tenant_id: str, session: CurrentSession) -> dict[str, str | None]:
    return {"tenant_id": tenant_id, "role": session.role.value}


@guarded_router.get("/catalog")
async def catalog() -> dict[str, str | None]:
    session = get_optional_session()
    return {"viewer": session.principal.external_identity_id if session else None}


def build_gate(store: FakeGateStore, clock: FixedClock) -> AccessGate:
    audit_retry = AuditRetryQueue(store, max_attempts=2, wait_min=0, wait_max=0)
    return AccessGate(
        verifier=CredentialVerifier(shared_secret=SHARED_SECRET, clock=clock),
        resolver=PrincipalResolver(store, clock=clock),
        context_builder=SessionContextBuilder(),
        impersonation=ImpersonationManager(
            store,
            store,
            SharedSecretCredentialIssuer(SHARED_SECRET, clock=clock),
            audit_retry=audit_retry,
            clock=clock,
        ),
        usage=UsageGate(store, clock=clock),
        audit_retry=audit_retry,
    )


@pytest.fixture()
def gate_store() -> FakeGateStore:
    store = FakeGateStore()
    store.add_principal(
        make_principal(
            role=Role.PLATFORM_ADMIN,
            tenant_id=None,
            external_identity_id=OPERATOR_SUB,
            email="ops@example.com",
        )
    )
    store.add_tenant("acme", "Acme Corp")
    return store


@pytest.fixture()
def app(gate_store: FakeGateStore, clock: FixedClock) -> FastAPI:
    return create_app(
        AppSettings(),
        access_gate=build_gate(gate_store, clock),
        extra_routers=[work_router, guarded_router],
        discover_hooks=False,
    )


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture()
def bearer(make_token) -> Callable[..., dict[str, str]]:
    def _bearer(sub: str = "member-sub", **kwargs) -> dict[str, str]:
        token = make_token(sub=sub, algorithm="HS256", **kwargs)
        return {"Authorization": f"Bearer {token}"}

    return _bearer


@pytest.mark.integration
class TestAuthentication:
    def test_health_skips_auth(self, client: TestClient) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["checks"]["gate"]["status"] == "ok"

    def test_missing_header(self, client: TestClient) -> None:
        resp = client.get("/session/status")
        assert resp.status_code == 401
        assert resp.json()["error_code"] == "MISSING_CREDENTIAL"
        assert "WWW-Authenticate" in resp.headers
        assert "application/problem+json" in resp.headers["content-type"]

    def test_non_bearer_scheme(self, client: TestClient) -> None:
        resp = client.get("/session/status", headers={"Authorization": "Basic abc"})
        assert resp.status_code == 401
        assert resp.json()["error_code"] == "MALFORMED"

    def test_expired_credential_reports_reason(self, client: TestClient, bearer) -> None:
        resp = client.get("/session/status", headers=bearer(expires_in=timedelta(seconds=-5)))
        assert resp.status_code == 401
        assert resp.json()["error_code"] == "EXPIRED"

    def test_first_request_provisions_principal(
        self, client: TestClient, bearer, gate_store: FakeGateStore
    ) -> None:
        resp = client.get("/session/status", headers=bearer())
        assert resp.status_code == 200
        body = resp.json()
        assert body["role"] == "member"
        assert body["impersonating"] is False
        assert any(p.external_identity_id == "member-sub" for p in gate_store.principals.values())

    def test_store_outage_is_503(self, client: TestClient, bearer, gate_store: FakeGateStore) -> None:
        gate_store.failing.add("find_principal_by_external_id")
        resp = client.get("/session/status", headers=bearer())
        assert resp.status_code == 503
        assert resp.json()["error_code"] == "STORAGE_UNAVAILABLE"

    def test_missing_plan_is_500(self, client: TestClient, bearer, gate_store: FakeGateStore) -> None:
        gate_store.plans.clear()
        resp = client.get("/session/status", headers=bearer())
        assert resp.status_code == 500
        assert resp.json()["error_code"] == "REFERENCE_DATA_MISSING"

    def test_request_id_echoed(self, client: TestClient) -> None:
        request_id = "9b2f3c1e-8a4d-4e2f-9c6b-1d2e3f4a5b6c"
        resp = client.get("/health", headers={"X-Request-ID": request_id})
        assert resp.headers["X-Request-ID"] == request_id


@pytest.mark.integration
class TestUnwiredGate:
    def test_requests_fail_closed_without_gate(self, bearer) -> None:
        app = create_app(AppSettings(), discover_hooks=False)
        with TestClient(app, raise_server_exceptions=False) as client:
            resp = client.get("/session/status", headers=bearer())
            assert resp.status_code == 503
            health = client.get("/health")
            assert health.status_code == 503


@pytest.mark.integration
class TestImpersonationFlow:
    def test_audit_attributed_to_operator_end_to_end(
        self, client: TestClient, bearer, gate_store: FakeGateStore
    ) -> None:
        operator = next(
            p for p in gate_store.principals.values() if p.external_identity_id == OPERATOR_SUB
        )

        resp = client.post(
            "/platform/impersonation", json={"tenant_id": "acme"}, headers=bearer(OPERATOR_SUB)
        )
        assert resp.status_code == 201
        grant = resp.json()
        elevated = {"Authorization": f"Bearer {grant['credential']}"}

        status = client.get("/session/status", headers=elevated)
        assert status.status_code == 200
        body = status.json()
        assert body["tenant_id"] == "acme"
        assert body["role"] == "admin"
        assert body["impersonating"] is True
        assert body["acting_principal_id"] == str(operator.id)
        assert body["impersonation_session_id"] == grant["session_id"]
        assert grant["credential"] not in status.text

        nested = client.post("/platform/impersonation", json={"tenant_id": "acme"}, headers=elevated)
        assert nested.status_code == 403
        assert nested.json()["error_code"] == "ALREADY_IMPERSONATING"

        end = client.post("/platform/impersonation/end", headers=elevated)
        assert end.status_code == 200
        assert end.json() == {
            "was_impersonating": True,
            "location": "/saas-admin",
            "restore_operator_session": True,
        }

        assert [e.action for e in gate_store.audit] == [
            AuditAction.IMPERSONATION_START,
            AuditAction.IMPERSONATION_END,
        ]
        assert {e.actor_principal_id for e in gate_store.audit} == {operator.id}
        assert {e.session_id for e in gate_store.audit} == {grant["session_id"]}

    def test_member_cannot_impersonate(self, client: TestClient, bearer) -> None:
        resp = client.post("/platform/impersonation", json={"tenant_id": "acme"}, headers=bearer())
        assert resp.status_code == 403
        assert resp.json()["error_code"] == "NOT_AUTHORIZED"

    def test_unknown_tenant_is_404(self, client: TestClient, bearer) -> None:
        resp = client.post(
            "/platform/impersonation", json={"tenant_id": "nope"}, headers=bearer(OPERATOR_SUB)
        )
        assert resp.status_code == 404
        assert resp.json()["error_code"] == "TENANT_NOT_FOUND"

    def test_end_without_impersonation_is_noop(
        self, client: TestClient, bearer, gate_store: FakeGateStore
    ) -> None:
        resp = client.post("/platform/impersonation/end", headers=bearer(OPERATOR_SUB))
        assert resp.status_code == 200
        assert resp.json()["was_impersonating"] is False
        assert gate_store.audit == []

    def test_invalid_body_is_422(self, client: TestClient, bearer) -> None:
        resp = client.post("/platform/impersonation", json={}, headers=bearer(OPERATOR_SUB))
        assert resp.status_code == 422
        assert resp.json()["error_code"] == "REQUEST_VALIDATION_ERROR"


@pytest.mark.integration
class TestRoleGuards:
    @staticmethod
    def _elevated(client: TestClient, bearer) -> dict[str, str]:
        resp = client.post(
            "/platform/impersonation", json={"tenant_id": "acme"}, headers=bearer(OPERATOR_SUB)
        )
        assert resp.status_code == 201
        return {"Authorization": f"Bearer {resp.json()['credential']}"}

    def test_platform_route_admits_operator(self, client: TestClient, bearer) -> None:
        resp = client.get("/saas-admin/tenants", headers=bearer(OPERATOR_SUB))
        assert resp.status_code == 200
        assert resp.json() == {"platform": True}

    def test_platform_route_rejects_elevated_credential(self, client: TestClient, bearer) -> None:
        resp = client.get("/saas-admin/tenants", headers=self._elevated(client, bearer))
        assert resp.status_code == 403
        assert resp.json()["error_code"] == "NOT_AUTHORIZED"

    def test_platform_route_rejects_member(self, client: TestClient, bearer) -> None:
        resp = client.get("/saas-admin/tenants", headers=bearer())
        assert resp.status_code == 403
        assert resp.json()["error_code"] == "NOT_AUTHORIZED"

    def test_tenant_route_admits_impersonating_operator(self, client: TestClient, bearer) -> None:
        resp = client.get("/tenants/acme/settings", headers=self._elevated(client, bearer))
        assert resp.status_code == 200
        assert resp.json() == {"tenant_id": "acme", "role": "admin"}

    def test_tenant_route_rejects_operator_without_impersonation(
        self, client: TestClient, bearer
    ) -> None:
        resp = client.get("/tenants/acme/settings", headers=bearer(OPERATOR_SUB))
        assert resp.status_code == 403

    def test_tenant_route_rejects_member_role(self, client: TestClient, bearer) -> None:
        resp = client.get("/tenants/acme/settings", headers=bearer())
        assert resp.status_code == 403
        assert resp.json()["error_code"] == "NOT_AUTHORIZED"

    def test_tenant_route_rejects_admin_of_other_tenant(
        self, client: TestClient, bearer, gate_store: FakeGateStore
    ) -> None:
        gate_store.add_tenant("globex", "Globex")
        gate_store.add_principal(
            make_principal(role=Role.ADMIN, tenant_id="globex", external_identity_id="globex-admin")
        )

        own = client.get("/tenants/globex/settings", headers=bearer("globex-admin"))
        assert own.status_code == 200

        other = client.get("/tenants/acme/settings", headers=bearer("globex-admin"))
        assert other.status_code == 403
        assert other.json()["error_code"] == "NOT_AUTHORIZED"


@pytest.mark.integration
class TestOptionalAuth:
    @pytest.fixture()
    def optional_client(self, gate_store: FakeGateStore, clock: FixedClock) -> Iterator[TestClient]:
        app = create_app(
            AppSettings(optional_auth_path_prefixes=["/catalog"]),
            access_gate=build_gate(gate_store, clock),
            extra_routers=[guarded_router],
            discover_hooks=False,
        )
        with TestClient(app, raise_server_exceptions=False) as c:
            yield c

    def test_anonymous_request_passes(self, optional_client: TestClient) -> None:
        resp = optional_client.get("/catalog")
        assert resp.status_code == 200
        assert resp.json() == {"viewer": None}

    def test_non_bearer_header_passes_anonymously(self, optional_client: TestClient) -> None:
        resp = optional_client.get("/catalog", headers={"Authorization": "Basic abc"})
        assert resp.status_code == 200
        assert resp.json() == {"viewer": None}

    def test_bearer_credential_publishes_session(self, optional_client: TestClient, bearer) -> None:
        resp = optional_client.get("/catalog", headers=bearer())
        assert resp.status_code == 200
        assert resp.json() == {"viewer": "member-sub"}

    def test_bad_bearer_credential_still_rejected(self, optional_client: TestClient, bearer) -> None:
        resp = optional_client.get("/catalog", headers=bearer(expires_in=timedelta(seconds=-5)))
        assert resp.status_code == 401
        assert resp.json()["error_code"] == "EXPIRED"

    def test_other_paths_still_require_credential(self, optional_client: TestClient) -> None:
        resp = optional_client.get("/session/status")
        assert resp.status_code == 401
        assert resp.json()["error_code"] == "MISSING_CREDENTIAL"

    def test_path_requires_credential_when_not_optional(self, client: TestClient) -> None:
        assert client.get("/catalog").status_code == 401


@pytest.mark.integration
class TestMetering:
    def test_quota_enforced_with_rate_limit_headers(self, client: TestClient, bearer) -> None:
        headers = bearer()
        for _ in range(10):
            assert client.post("/work/generate", headers=headers).status_code == 200

        resp = client.post("/work/generate", headers=headers)
        assert resp.status_code == 429
        body = resp.json()
        assert body["error_code"] == "LIMIT_EXCEEDED"
        assert body["context"]["current_usage"] == 10
        assert body["context"]["limit"] == 10
        assert resp.headers["X-RateLimit-Limit"] == "10"
        assert resp.headers["X-RateLimit-Remaining"] == "0"

        summary = client.get("/usage", headers=headers).json()
        assert summary["current_usage"] == 10
        assert summary["remaining"] == 0

    def test_usage_summary_and_history(self, client: TestClient, bearer) -> None:
        headers = bearer()
        for _ in range(3):
            client.post("/work/generate", headers=headers)

        summary = client.get("/usage", headers=headers).json()
        assert summary["plan_code"] == "free"
        assert (summary["current_usage"], summary["limit"], summary["remaining"]) == (3, 10, 7)

        history = client.get("/usage/history", params={"limit": 2}, headers=headers).json()
        assert len(history["records"]) == 2
