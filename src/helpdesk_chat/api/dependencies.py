from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from helpdesk_chat.api.middleware.auth import CurrentUser
from helpdesk_chat.api.middleware.exception_handlers import AuthenticationError, InvalidRequestError
from helpdesk_chat.api.middleware.request_context import update_request_context
from helpdesk_chat.api.services.chat_store import ChatStore
from helpdesk_chat.api.services.job_service import JobService
from helpdesk_chat.core.constants import Settings, get_settings
from helpdesk_chat.core.turn_processor import TurnProcessor
from helpdesk_chat.models.chat_models import TenantContext
from helpdesk_chat.workers.chat_job_worker import ChatJobWorker


def get_app_settings() -> Settings:
    """Provide application settings via dependency injection.

    This is the recommended way to access settings in route handlers.
    Settings are validated at startup and cached for performance.

    In development with CONFIG_HOT_RELOAD=true, settings are reloaded
    on each request to pick up .env file changes without restart.

    Usage in routes:
        @router.get("/example")
        async def example(settings: AppSettings):
            return {"debug": settings.debug}
    """
    return get_settings()


async def get_store(request: Request) -> ChatStore:
    """Get the chat store (PostgreSQL or in-memory) from application state."""
    store: ChatStore = request.app.state.store
    return store


def get_job_service(store: Annotated[ChatStore, Depends(get_store)]) -> JobService:
    """Provide the job service over the configured store."""
    return JobService(store)


def get_turn_processor(request: Request) -> TurnProcessor:
    """Get the shared turn processor from application state."""
    processor: TurnProcessor = request.app.state.turn_processor
    return processor


def get_worker(request: Request) -> ChatJobWorker:
    """Get the chat job worker from application state."""
    worker: ChatJobWorker = request.app.state.worker
    return worker


def resolve_tenant(user: CurrentUser, company_id: str | None, user_id: str | None = None) -> TenantContext:
    """Build the tenant for a request from the authenticated user and the named company.

    Raises:
        InvalidRequestError: ``companyId`` is missing.
        AuthenticationError: ``userId`` names someone other than the authenticated user.
    """
    if not company_id:
        raise InvalidRequestError("companyId is required", details={"field": "companyId"})
    try:
        resolved_user = user.resolve_user_id(user_id)
    except ValueError as exc:
        raise AuthenticationError(str(exc)) from exc
    update_request_context(user_id=resolved_user, company_id=company_id)
    return TenantContext(user_id=resolved_user, company_id=company_id)


# Type aliases for cleaner route signatures
Store = Annotated[ChatStore, Depends(get_store)]
Jobs = Annotated[JobService, Depends(get_job_service)]
Processor = Annotated[TurnProcessor, Depends(get_turn_processor)]
Worker = Annotated[ChatJobWorker, Depends(get_worker)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
