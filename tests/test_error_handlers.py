"""Tests for RFC 7807 exception handlers."""

from __future__ import annotations

from uuid import UUID

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel

from tessera.foundation.application.context import get_current_session
from tessera.foundation.domain.exceptions import (
    AuthorizationError,
    AuthorizationFailure,
    ConflictError,
    CredentialError,
    CredentialFailure,
    DomainError,
    QuotaExceededError,
    ResolutionError,
    StorageUnavailableError,
    TenantNotFoundError,
)
from tessera.infra.fastapi.error_handlers import (
    PROBLEM_MEDIA_TYPE,
    _sanitize_context,
    register_exception_handlers,
)

RAISERS = {
    "expired": lambda: CredentialError(CredentialFailure.EXPIRED, "Credential has expired"),
    "forbidden": lambda: AuthorizationError(
        "Impersonation is already active",
        reason=AuthorizationFailure.ALREADY_IMPERSONATING,
    ),
    "tenant": lambda: TenantNotFoundError("ghost"),
    "quota": lambda: QuotaExceededError("Monthly limit reached", current_usage=10, limit=10),
    "conflict": lambda: ConflictError("duplicate principal"),
    "reference": lambda: ResolutionError("Free plan not found", {"plan_code": "free"}),
    "storage": lambda: StorageUnavailableError("find_plan"),
    "domain": lambda: DomainError("Bad input"),
    "boom": lambda: RuntimeError("password=hunter2 leaked"),
}


class Payload(BaseModel):
    units: int


def _build_app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/raise/{name}")
    async def raise_named(name: str) -> None:
        raise RAISERS[name]()

    @app.get("/session")
    async def session() -> dict[str, str]:
        return {"principal_id": str(get_current_session().principal.id)}

    @app.post("/payload")
    async def payload(body: Payload) -> dict[str, int]:
        return {"units": body.units}

    return app


@pytest.fixture()
def client() -> TestClient:
    return TestClient(_build_app(), raise_server_exceptions=False)


@pytest.mark.unit
class TestSanitizeContext:
    def test_none(self) -> None:
        assert _sanitize_context(None) is None

    def test_drops_sensitive_keys(self) -> None:
        assert _sanitize_context({"shared_secret": "x", "token": "y"}) is None

    def test_converts_values(self) -> None:
        principal_id = UUID("12345678-1234-5678-1234-567812345678")
        result = _sanitize_context({"principal_id": principal_id, "items": (1, 2)})
        assert result == {"principal_id": str(principal_id), "items": [1, 2]}

    def test_redacts_patterns(self) -> None:
        result = _sanitize_context(
            {
                "dsn": "postgresql+psycopg://gate:pw@db.internal/gate",
                "raw": "got eyJhbGciOi.eyJzdWIiOi.c2lnbmF0dXJl",
            }
        )
        assert result is not None
        assert "pw@" not in result["dsn"]
        assert result["raw"] == "got [REDACTED_JWT]"


@pytest.mark.unit
class TestExceptionHandlers:
    def test_credential_error(self, client: TestClient) -> None:
        resp = client.get("/raise/expired")
        assert resp.status_code == 401
        assert resp.headers["content-type"] == PROBLEM_MEDIA_TYPE
        assert 'error="invalid_token"' in resp.headers["www-authenticate"]
        assert resp.json()["error_code"] == "EXPIRED"

    def test_authorization_error(self, client: TestClient) -> None:
        resp = client.get("/raise/forbidden")
        assert resp.status_code == 403
        assert resp.json()["error_code"] == "ALREADY_IMPERSONATING"

    def test_tenant_not_found(self, client: TestClient) -> None:
        resp = client.get("/raise/tenant")
        assert resp.status_code == 404
        body = resp.json()
        assert body["error_code"] == "TENANT_NOT_FOUND"
        assert body["context"] == {"tenant_id": "ghost"}

    def test_quota_exceeded(self, client: TestClient) -> None:
        resp = client.get("/raise/quota")
        assert resp.status_code == 429
        assert resp.headers["x-ratelimit-limit"] == "10"
        assert resp.headers["x-ratelimit-remaining"] == "0"
        body = resp.json()
        assert body["type"] == "/errors/limit-exceeded"
        assert body["context"] == {"current_usage": 10, "limit": 10}

    def test_conflict(self, client: TestClient) -> None:
        assert client.get("/raise/conflict").status_code == 409

    def test_reference_data_missing(self, client: TestClient) -> None:
        resp = client.get("/raise/reference")
        assert resp.status_code == 500
        body = resp.json()
        assert body["error_code"] == "REFERENCE_DATA_MISSING"
        assert body["correlation_id"] == "unknown"
        assert "context" not in body

    def test_storage_unavailable(self, client: TestClient) -> None:
        resp = client.get("/raise/storage")
        assert resp.status_code == 503
        assert resp.headers["retry-after"] == "5"
        assert resp.json()["error_code"] == "STORAGE_UNAVAILABLE"

    def test_domain_error_fallback(self, client: TestClient) -> None:
        resp = client.get("/raise/domain")
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Bad input"

    def test_missing_session(self, client: TestClient) -> None:
        resp = client.get("/session")
        assert resp.status_code == 401
        assert resp.json()["error_code"] == "MISSING_CREDENTIAL"

    def test_request_validation(self, client: TestClient) -> None:
        resp = client.post("/payload", json={"units": "many"})
        assert resp.status_code == 422
        assert resp.json()["error_code"] == "REQUEST_VALIDATION_ERROR"

    def test_unhandled_exception_is_sanitized(self, client: TestClient) -> None:
        resp = client.get("/raise/boom")
        assert resp.status_code == 500
        body = resp.json()
        assert body["error_code"] == "INTERNAL_ERROR"
        assert "hunter2" not in resp.text

