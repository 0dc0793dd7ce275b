"""Tests for health, readiness, liveness and metrics endpoints."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock

from fastapi.testclient import TestClient


def test_health(client: TestClient) -> None:
    response = client.get("/api/v1/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["database"]["healthy"] is True
    assert data["database"]["backend"] == "memory"
    assert data["worker"]["running"] is False
    assert data["worker"]["last_batch"] is None


def test_health_unhealthy_store(client: TestClient, store: Any) -> None:
    store.check_health = AsyncMock(return_value={"healthy": False, "backend": "postgres", "error": "down"})

    data = client.get("/api/v1/health").json()

    assert data["status"] == "unhealthy"
    assert data["database"]["error"] == "down"


def test_readiness(client: TestClient, store: Any) -> None:
    assert client.get("/api/v1/health/ready").json() == {"ready": True, "error": None}

    store.check_health = AsyncMock(return_value={"healthy": False, "error": "ConnectionRefusedError"})
    response = client.get("/api/v1/health/ready")

    assert response.status_code == 503
    assert response.json() == {"ready": False, "error": "ConnectionRefusedError"}


def test_liveness(client: TestClient) -> None:
    assert client.get("/api/v1/health/live").json() == {"alive": True}


def test_metrics(client: TestClient) -> None:
    response = client.get("/api/v1/metrics")

    assert response.status_code == 200
    assert response.text.startswith("#")
