"""Tests for application startup and shutdown."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from fastapi.testclient import TestClient

from helpdesk_chat.api import main
from helpdesk_chat.api.services.chat_store import InMemoryChatStore
from helpdesk_chat.core.turn_processor import TurnProcessor


class TestLifespan:
    def test_memory_store_startup(self) -> None:
        with TestClient(main.app) as client:
            assert isinstance(main.app.state.store, InMemoryChatStore)
            assert isinstance(main.app.state.turn_processor, TurnProcessor)
            assert main.app.state.worker.is_running is False

            health = client.get("/api/v1/health").json()

        assert health["status"] == "healthy"
        assert health["database"]["backend"] == "memory"

    def test_worker_loop_started_when_enabled(self, settings_factory: Callable[..., Any]) -> None:
        with patch.object(main, "settings", settings_factory(worker_enabled=True, worker_interval_seconds=60.0)):
            with TestClient(main.app):
                assert main.app.state.worker.is_running is True
            assert main.app.state.worker.is_running is False

    def test_openapi_served_under_v1(self) -> None:
        with TestClient(main.app) as client:
            schema = client.get("/api/v1/openapi.json").json()

        assert "/api/v1/chat/turn_response" in schema["paths"]
        assert "/api/v1/chats/{chatId}/active-job" in schema["paths"]


class TestCreateStore:
    @pytest.mark.asyncio
    async def test_unhealthy_database_aborts_startup(self, settings_factory: Callable[..., Any]) -> None:
        pool = AsyncMock()
        with (
            patch.object(main, "create_database_pool", AsyncMock(return_value=pool)),
            patch.object(main, "check_pool_health", AsyncMock(return_value={"healthy": False})),
            pytest.raises(RuntimeError, match="Database connection failed"),
        ):
            await main._create_store(settings_factory(chat_store="postgres"))

        pool.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_postgres_store(self, settings_factory: Callable[..., Any]) -> None:
        pool = AsyncMock()
        with (
            patch.object(main, "create_database_pool", AsyncMock(return_value=pool)) as create,
            patch.object(main, "check_pool_health", AsyncMock(return_value={"healthy": True})),
        ):
            store = await main._create_store(settings_factory(chat_store="postgres", db_pool_max_size=3))

        assert store.backend == "postgres"
        assert create.call_args.kwargs["max_size"] == 3
