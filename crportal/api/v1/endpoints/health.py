"""
Health Check Endpoints

- /health/live  - Basic liveness (app is running)
- /health/ready - Readiness check (key-value store answers)
"""

import time
from typing import Any, Dict

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from crportal.api.deps import get_kv_store
from crportal.core.kv_store import KeyValueStore
from crportal.core.logging_config import logger


router = APIRouter(prefix="/health", tags=["Health Checks"])


async def check_store(store: KeyValueStore) -> Dict[str, Any]:
    start = time.time()
    healthy = await store.ping()
    latency = (time.time() - start) * 1000
    if not healthy:
        logger.error(f"[HealthCheck] {store.backend_name} store did not answer")
    return {
        "status": "healthy" if healthy else "unhealthy",
        "backend": store.backend_name,
        "latency_ms": round(latency, 2),
    }


@router.get("/live")
async def liveness():
    return {"status": "alive"}


@router.get("/ready")
async def readiness(store: KeyValueStore = Depends(get_kv_store)):
    storage = await check_store(store)
    body = {"status": "ready" if storage["status"] == "healthy" else "not_ready", "storage": storage}
    if storage["status"] != "healthy":
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)
    return body
