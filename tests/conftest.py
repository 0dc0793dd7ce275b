"""Shared test fixtures for the helpdesk chat test suite.

Settings are replaced before collection so tests run without .env files or
provider credentials; the in-memory store backs service, worker and turn
processor tests.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Generator
from typing import Any
from unittest.mock import patch

import pytest
import pytest_asyncio

# ============================================================================
# EARLY INITIALIZATION: Runs before test collection
# ============================================================================


def _build_test_settings() -> Any:
    from helpdesk_chat.core.constants import Settings

    return Settings(
        app_env="test",
        api_provider="openai",
        openai_api_key="test-openai-key-123",
        openai_model="gpt-4o",
        chat_store="memory",
        worker_enabled=False,
        worker_interval_seconds=0.05,
        worker_batch_size=10,
        stale_job_timeout_seconds=300.0,
        helpdesk_api_base_url="http://helpdesk.test",
        jwt_secret="test-jwt-secret",
        cron_secret=None,
        allow_localhost_noauth=True,
        debug=False,
    )


def pytest_configure(config: pytest.Config) -> None:
    """Patch get_settings before any test module imports application code.

    Modules that bind ``get_settings`` at import time pick up the patched
    function, so importing ``helpdesk_chat.api.main`` never reads the environment.
    """
    settings = _build_test_settings()

    cfg: Any = config
    cfg._test_settings = settings

    patcher = patch("helpdesk_chat.core.constants.get_settings", return_value=settings)
    patcher.start()
    cfg._settings_patcher = patcher


def pytest_unconfigure(config: pytest.Config) -> None:
    """Clean up settings mock after all tests complete."""
    patcher = getattr(config, "_settings_patcher", None)
    if patcher:
        patcher.stop()


# ============================================================================
# Settings
# ============================================================================


@pytest.fixture
def test_settings(request: pytest.FixtureRequest) -> Any:
    """The settings instance every patched ``get_settings()`` call returns."""
    return request.config._test_settings  # type: ignore[attr-defined]


@pytest.fixture
def settings_factory(test_settings: Any) -> Callable[..., Any]:
    """Copy of the test settings with some fields replaced."""

    def factory(**overrides: Any) -> Any:
        return test_settings.model_copy(update=overrides)

    return factory


# ============================================================================
# Store and domain fixtures
# ============================================================================


@pytest.fixture
def store() -> Any:
    from helpdesk_chat.api.services.chat_store import InMemoryChatStore

    return InMemoryChatStore()


@pytest.fixture
def tenant() -> Any:
    from helpdesk_chat.models.chat_models import TenantContext

    return TenantContext(user_id="user-1", company_id="acme")


@pytest.fixture
def other_tenant() -> Any:
    from helpdesk_chat.models.chat_models import TenantContext

    return TenantContext(user_id="user-2", company_id="globex")


@pytest.fixture
def job_service(store: Any) -> Any:
    from helpdesk_chat.api.services.job_service import JobService

    return JobService(store)


@pytest_asyncio.fixture
async def chat(job_service: Any, tenant: Any) -> Any:
    return await job_service.create_chat(tenant, "charlie", title="Refund questions")


@pytest_asyncio.fixture
async def claimed_job(job_service: Any, store: Any, tenant: Any, chat: Any) -> Any:
    """A job for ``chat`` already moved to processing, with one user message."""
    job, _ = await job_service.submit_turn(tenant, chat.id, message="How many open tickets do we have?")
    claimed = await store.claim_job(job.id)
    assert claimed is not None
    return claimed


# ============================================================================
# Provider stream fakes
# ============================================================================


@pytest.fixture
def fake_stream() -> Generator[Callable[..., list[Any]], None, None]:
    """Patch ``Runner.run_streamed`` in the turn processor with a scripted stream.

    Usage:
        runs = fake_stream(text_events("Hel", "lo"))
        ... run a turn ...
        runs[0].agent.tools
    """
    from fakes import FakeRunResult

    runs: list[Any] = []
    patcher = patch("helpdesk_chat.core.turn_processor.Runner")
    runner = patcher.start()

    def install(script: Callable[[Any], AsyncIterator[Any]], final_output: Any = None) -> list[Any]:
        def run_streamed(agent: Any, **kwargs: Any) -> Any:
            result = FakeRunResult(agent, script, final_output)
            result.kwargs = kwargs
            runs.append(result)
            return result

        runner.run_streamed.side_effect = run_streamed
        return runs

    yield install
    patcher.stop()
