"""Health and readiness endpoints."""

from __future__ import annotations

import structlog
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from users_api.store import users as user_store

logger = structlog.get_logger()
router = APIRouter()


def _pipeline_ready() -> bool:
    from users_api import main

    return main._pipeline is not None


@router.get("/health")
async def health():
    """Liveness: the process is serving requests."""
    store = user_store._store
    return {
        "status": "healthy",
        "service": "up",
        "users": len(store) if store is not None else 0,
    }


@router.get("/ready")
async def ready():
    """Readiness: 200 only once the user store and request guard are in place."""
    store_ok = user_store._store is not None
    pipeline_ok = _pipeline_ready()

    if store_ok and pipeline_ok:
        return {"status": "ready"}

    logger.warning("not_ready", store=store_ok, pipeline=pipeline_ok)
    return JSONResponse(
        status_code=503,
        content={
            "status": "not_ready",
            "store": "up" if store_ok else "down",
            "pipeline": "up" if pipeline_ok else "down",
        },
    )
