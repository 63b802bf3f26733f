"""
Health and Metrics API Server

FastAPI app served next to the controller for kubelet probes and scraping.

Endpoints:
- /healthz - Liveness
- /readyz - Readiness (both caches synced)
- /status - Controller status snapshot
- /metrics - Prometheus metrics
"""

from typing import Any, Protocol

from fastapi import FastAPI, HTTPException, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel


class StatusSource(Protocol):
    @property
    def has_synced(self) -> bool: ...

    def status(self) -> dict[str, Any]: ...


class ControllerStatus(BaseModel):
    """Controller status snapshot."""
    name: str
    running: bool
    synced: bool
    workers: int
    queue_depth: int
    clusters: int
    manifestworks: int
    compare_cache_entries: int
    synced_total: int = 0
    failed_total: int = 0
    cancelled_total: int = 0


def create_app(controller: StatusSource) -> FastAPI:
    """Build the FastAPI app for ``controller``."""
    app = FastAPI(
        title="Hub Cluster Controller",
        description="Health and metrics for the hub cluster controller",
        version="0.1.0",
    )

    @app.get("/healthz")
    async def healthz():
        """Liveness probe."""
        return {"status": "ok"}

    @app.get("/readyz")
    async def readyz():
        """Readiness probe: both watch caches have synced."""
        if not controller.has_synced:
            raise HTTPException(status_code=503, detail="caches not synced")
        return {"status": "ready"}

    @app.get("/status", response_model=ControllerStatus)
    async def status():
        """Controller status snapshot."""
        return ControllerStatus(**controller.status())

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app
