"""
Health endpoints for the insight service.

Lightweight checks for operational monitoring; never exposes secrets.
"""

import logging

from fastapi import APIRouter, Response
from fastapi.responses import JSONResponse

from opsight.core.database import check_connection
from opsight.core.metrics import METRICS
from opsight.features.insights.gateway import InMemoryInsightStore, get_store

logger = logging.getLogger("opsight")

root_router = APIRouter(tags=["health"])


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz():
    """Readiness check: datastore reachable (always ready with the in-memory store)."""
    if isinstance(get_store(), InMemoryInsightStore):
        return {"status": "ok", "store": "memory"}
    if not check_connection():
        logger.error("[readyz] datastore unreachable")
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})
    return {"status": "ok", "store": "sql"}


@root_router.get("/metrics", tags=["metrics"])
def metrics_endpoint():
    """Prometheus text exposition of the in-process counters."""
    return Response(content=METRICS.export_prometheus(), media_type="text/plain")
