"""Fixtures for v1 route tests: an app wired to the in-memory store with auth overridden."""

from __future__ import annotations

from typing import Any

import pytest

from fastapi import FastAPI
from fastapi.testclient import TestClient
from openai import AsyncOpenAI

from helpdesk_chat.api.middleware.auth import get_current_user
from helpdesk_chat.api.middleware.exception_handlers import register_exception_handlers
from helpdesk_chat.api.middleware.request_context import RequestContextMiddleware
from helpdesk_chat.api.routes.v1 import router as v1_router
from helpdesk_chat.core.turn_processor import TurnProcessor
from helpdesk_chat.models.api_models import UserInfo
from helpdesk_chat.tools.registry import ToolDispatcher, ToolRegistry
from helpdesk_chat.workers.chat_job_worker import ChatJobWorker

COMPANY = "acme"


@pytest.fixture
def api_app(store: Any, test_settings: Any) -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)
    app.add_middleware(RequestContextMiddleware)
    app.include_router(v1_router, prefix="/api/v1")

    processor = TurnProcessor(store, ToolDispatcher(ToolRegistry()), AsyncOpenAI(api_key="sk-test"), test_settings)
    app.state.store = store
    app.state.turn_processor = processor
    app.state.worker = ChatJobWorker(store, processor, test_settings)
    app.dependency_overrides[get_current_user] = lambda: UserInfo(id="user-1")
    return app


@pytest.fixture
def client(api_app: FastAPI) -> TestClient:
    return TestClient(api_app)


@pytest.fixture
def chat_id(client: TestClient) -> str:
    response = client.post(
        "/api/v1/chats",
        json={"employeeId": "charlie", "companyId": COMPANY, "title": "Refund questions"},
    )
    assert response.status_code == 201
    chat_id: str = response.json()["chatId"]
    return chat_id

