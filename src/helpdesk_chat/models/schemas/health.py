"""
Health check API schemas.

Provides response models for health, readiness, and liveness probes.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class DatabaseHealth(BaseModel):
    """Chat store health (pool statistics when PostgreSQL backs the store)."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "healthy": True,
                "backend": "postgres",
                "pool_size": 10,
                "pool_free": 8,
                "pool_used": 2,
            }
        }
    )

    healthy: bool = Field(..., description="Store is accessible")
    backend: str = Field(default="postgres", description="Store backend")
    pool_size: int = Field(default=0, ge=0, description="Total pool size")
    pool_free: int = Field(default=0, ge=0, description="Available connections")
    pool_used: int = Field(default=0, ge=0, description="Active connections")
    error: str | None = Field(default=None, description="Error if unhealthy")


class WorkerHealth(BaseModel):
    """Background job worker state."""

    running: bool = Field(..., description="Polling loop is running")
    interval_seconds: float = Field(default=0.0, ge=0, description="Seconds between ticks")
    last_batch: dict[str, int] | None = Field(default=None, description="Counts from the most recent batch")


class HealthResponse(BaseModel):
    """Comprehensive health check response."""

    status: Literal["healthy", "degraded", "unhealthy"] = Field(..., description="Overall system health status")
    version: str = Field(..., description="Application version")
    database: DatabaseHealth = Field(..., description="Store health")
    worker: WorkerHealth = Field(..., description="Job worker health")


class ReadinessResponse(BaseModel):
    """Kubernetes-style readiness probe response."""

    ready: bool = Field(..., description="Service is ready to accept traffic")
    error: str | None = Field(default=None, description="Error message if not ready")


class LivenessResponse(BaseModel):
    """Kubernetes-style liveness probe response."""

    alive: bool = Field(default=True, description="Process is running")
