from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from agents import set_tracing_disabled
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from helpdesk_chat.api.middleware.exception_handlers import register_exception_handlers
from helpdesk_chat.api.middleware.request_context import RequestContextMiddleware
from helpdesk_chat.api.routes.v1 import router as v1_router
from helpdesk_chat.api.services.chat_store import ChatStore, InMemoryChatStore
from helpdesk_chat.api.services.postgres_store import PostgresChatStore
from helpdesk_chat.core.constants import Settings, get_settings
from helpdesk_chat.core.turn_processor import TurnProcessor
from helpdesk_chat.tools.helpdesk_tools import build_default_registry
from helpdesk_chat.tools.registry import ToolDispatcher
from helpdesk_chat.utils.client_factory import create_helpdesk_client, create_http_client, create_provider_client
from helpdesk_chat.utils.db_utils import check_pool_health, create_database_pool, graceful_pool_close
from helpdesk_chat.utils.logger import configure_uvicorn_logging, logger
from helpdesk_chat.workers.chat_job_worker import ChatJobWorker

# Settings are loaded via Pydantic Settings with environment-specific file support
# (.env, .env.{APP_ENV}, .env.local) - no manual dotenv loading needed
settings = get_settings()

if settings.debug:
    from helpdesk_chat.core.constants import _get_env_files

    logger.info(f"Env files: {[f.name for f in _get_env_files()]}")
    logger.info(
        f"Settings: app_env={settings.app_env}, chat_store={settings.chat_store}, "
        f"worker=[enabled={settings.worker_enabled}, interval={settings.worker_interval_seconds}s]"
    )

# Configure uvicorn logging at module level to ensure workers use it
configure_uvicorn_logging()


async def _create_store(settings: Settings) -> ChatStore:
    """Open the configured chat store; PostgreSQL must answer a health check."""
    if settings.chat_store == "memory":
        logger.warning("Using in-memory chat store; chats and jobs are lost on restart")
        return InMemoryChatStore()

    pool = await create_database_pool(
        dsn=settings.database_url,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
        command_timeout=settings.db_command_timeout,
        connection_timeout=settings.db_connection_timeout,
    )

    health = await check_pool_health(pool)
    if not health["healthy"]:
        logger.error("Database health check failed during startup")
        await pool.close()
        raise RuntimeError("Database connection failed")
    logger.info(f"Database pool healthy: {health}")
    return PostgresChatStore(pool)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown with graceful handling."""
    # Disable tracing to avoid 401 errors with Azure
    set_tracing_disabled(True)

    store = await _create_store(settings)
    app.state.store = store

    # One client for the LLM provider, one for the helpdesk platform API
    provider_http = create_http_client(
        enable_logging=settings.http_request_logging,
        read_timeout=settings.http_read_timeout,
    )
    openai_client = create_provider_client(settings, provider_http)
    logger.info(f"LLM provider client configured ({settings.api_provider}, model {settings.openai_model})")

    helpdesk_http = create_helpdesk_client(settings)
    dispatcher = ToolDispatcher(build_default_registry(helpdesk_http))

    app.state.turn_processor = TurnProcessor(store, dispatcher, openai_client, settings)
    app.state.worker = ChatJobWorker(store, app.state.turn_processor, settings)
    if settings.worker_enabled:
        await app.state.worker.start()
    else:
        logger.info("Chat job worker loop disabled; batches run only via /api/v1/workers/chat-processor")

    try:
        yield
    finally:
        logger.info("Initiating graceful shutdown sequence")

        # Phase 1: Stop the worker; an in-flight turn is failed with worker_shutdown
        await app.state.worker.stop()

        # Phase 2: Close outbound clients
        await openai_client.close()
        await helpdesk_http.aclose()

        # Phase 3: Gracefully close database pool
        if isinstance(store, PostgresChatStore):
            await graceful_pool_close(store.pool, timeout=settings.shutdown_timeout)


app = FastAPI(
    title="Helpdesk Chat API",
    description="""
## Helpdesk Chat API

Asynchronous chat-turn pipeline for the AI Knowledge Desk helpdesk.

### Features
- **Chats**: Create, list, update, and delete chats with employee personas
- **Turn Streaming**: Server-sent events relayed from the LLM provider as they arrive
- **Jobs**: Background turn processing with at most one active job per chat
- **Tools**: Web search, file search, code interpreter, and helpdesk platform functions

### Authentication
All endpoints except health checks and the worker trigger require a JWT Bearer token.
The worker trigger accepts `Authorization: Bearer <CRON_SECRET>` when one is configured.

### Versioning
API uses URL path versioning: `/api/v1/...`
""",
    version=settings.app_version,
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "Health",
            "description": "Health check endpoints for monitoring and orchestration",
        },
        {
            "name": "Chats",
            "description": "Chat CRUD operations",
        },
        {
            "name": "Messages",
            "description": "Message history, pagination, and stream item replay",
        },
        {
            "name": "Jobs",
            "description": "Turn submission, active-job query, and retries",
        },
        {
            "name": "Turns",
            "description": "Streaming chat turns",
        },
        {
            "name": "Workers",
            "description": "Job worker trigger for external schedulers",
        },
    ],
    openapi_url="/api/v1/openapi.json",
    docs_url="/api/v1/docs",
    redoc_url="/api/v1/redoc",
)

# Register global exception handlers for consistent error responses
register_exception_handlers(app)

# Request context middleware (adds request ID tracking)
# Note: Middleware is executed in reverse order of registration
app.add_middleware(RequestContextMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Chat-Id", "X-Job-Id"],
)

# Routes - API v1
app.include_router(v1_router, prefix="/api/v1")


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "helpdesk_chat.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
        reload_dirs=["src"],
        log_config=None,
    )


if __name__ == "__main__":
    run()
