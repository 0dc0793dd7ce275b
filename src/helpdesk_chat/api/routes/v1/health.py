"""
Health check endpoints (v1).

Provides health, readiness, and liveness probes plus the Prometheus
scrape endpoint.
"""

from __future__ import annotations

from fastapi import APIRouter, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from helpdesk_chat.api.dependencies import AppSettings, Store, Worker
from helpdesk_chat.models.schemas.health import (
    DatabaseHealth,
    HealthResponse,
    LivenessResponse,
    ReadinessResponse,
    WorkerHealth,
)

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Comprehensive health check with store and worker status.",
    responses={
        200: {
            "description": "System health status",
            "content": {
                "application/json": {
                    "example": {
                        "status": "healthy",
                        "version": "1.0.0",
                        "database": {
                            "healthy": True,
                            "backend": "postgres",
                            "pool_size": 10,
                            "pool_free": 8,
                            "pool_used": 2,
                        },
                        "worker": {
                            "running": True,
                            "interval_seconds": 10.0,
                            "last_batch": {"processed": 1, "completed": 1, "failed": 0},
                        },
                    }
                }
            },
        }
    },
)
async def health_check(store: Store, worker: Worker, settings: AppSettings) -> HealthResponse:
    """Comprehensive health check endpoint."""
    store_health = await store.check_health()
    db_healthy = bool(store_health.get("healthy", False))

    last_batch = None
    if worker.last_batch is not None:
        last_batch = worker.last_batch.model_dump(include={"processed", "completed", "failed"})
    worker_health = WorkerHealth(
        running=worker.is_running,
        interval_seconds=worker.interval_seconds,
        last_batch=last_batch,
    )

    # A stopped worker only degrades the service when it is supposed to be polling
    worker_healthy = worker.is_running or not settings.worker_enabled

    if db_healthy and worker_healthy:
        status = "healthy"
    elif db_healthy:
        status = "degraded"
    else:
        status = "unhealthy"

    return HealthResponse(
        status=status,
        version=settings.app_version,
        database=DatabaseHealth(
            healthy=db_healthy,
            backend=store_health.get("backend", store.backend),
            pool_size=store_health.get("pool_size", 0),
            pool_free=store_health.get("pool_free", 0),
            pool_used=store_health.get("pool_used", 0),
            error=store_health.get("error"),
        ),
        worker=worker_health,
    )


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    summary="Readiness probe",
    description="Kubernetes-style readiness probe for load balancer integration.",
    responses={
        200: {
            "description": "Service ready",
            "content": {"application/json": {"example": {"ready": True}}},
        },
        503: {
            "description": "Service not ready",
            "content": {"application/json": {"example": {"ready": False, "error": "ConnectionRefusedError"}}},
        },
    },
)
async def readiness_check(store: Store) -> ReadinessResponse | JSONResponse:
    """Kubernetes-style readiness probe."""
    health = await store.check_health()
    if health.get("healthy"):
        return ReadinessResponse(ready=True)
    return JSONResponse(
        status_code=503,
        content={"ready": False, "error": health.get("error") or "Store unavailable"},
    )


@router.get(
    "/health/live",
    response_model=LivenessResponse,
    summary="Liveness probe",
    description="Kubernetes-style liveness probe to confirm process is running.",
    responses={
        200: {
            "description": "Process alive",
            "content": {"application/json": {"example": {"alive": True}}},
        }
    },
)
async def liveness_check() -> LivenessResponse:
    """Kubernetes-style liveness probe."""
    return LivenessResponse(alive=True)


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Job, tool call and stream metrics in the Prometheus text format.",
    response_class=Response,
)
async def metrics_endpoint() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
