"""Liveness and readiness endpoint.

Reports whether the access gate is wired and whether its store answers.
Excluded from bearer authentication.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from tessera.foundation.domain.exceptions import StorageUnavailableError

router = APIRouter(tags=["health"])
logger = logging.getLogger(__name__)


async def _check_store(request: Request) -> dict[str, str]:
    store = getattr(request.app.state, "gate_store", None)
    if store is None:
        return {"status": "skipped"}
    try:
        await store.find_plan("__health__")
    except StorageUnavailableError as exc:
        logger.warning("health_check_store_unhealthy", extra={"operation": exc.operation})
        return {"status": "error", "detail": "store unavailable"}
    return {"status": "ok"}


@router.get("/health")
async def health(request: Request) -> Any:
    """Return 200 when the gate is wired and its store answers, else 503."""
    checks: dict[str, dict[str, str]] = {
        "gate": {
            "status": "ok" if getattr(request.app.state, "access_gate", None) else "error",
        },
        "store": await _check_store(request),
    }
    all_ok = all(c["status"] in ("ok", "skipped") for c in checks.values())
    return JSONResponse(
        content={"status": "ok" if all_ok else "degraded", "checks": checks},
        status_code=200 if all_ok else 503,
    )
