from __future__ import annotations

import secrets

from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from helpdesk_chat.api.middleware.request_context import update_request_context
from helpdesk_chat.core import constants
from helpdesk_chat.models.api_models import UserInfo

bearer_scheme = HTTPBearer(auto_error=False)


def decode_access_token(token: str) -> dict[str, Any]:
    """Verify a bearer JWT and return its claims."""
    settings = constants.get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as exc:
        raise ValueError("Invalid token") from exc
    if not payload.get("sub"):
        raise ValueError("Token has no subject")
    return payload


async def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> UserInfo:
    """Authenticate incoming REST requests."""
    settings = constants.get_settings()

    if credentials is None:
        if settings.allow_localhost_noauth and _is_localhost(request):
            update_request_context(user_id=settings.default_user_id)
            return UserInfo(id=settings.default_user_id, is_local=True)
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = decode_access_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    user = UserInfo(id=str(payload["sub"]), email=payload.get("email"))
    update_request_context(user_id=user.id)
    return user


async def verify_cron_secret(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> None:
    """Guard the worker trigger with CRON_SECRET when one is configured."""
    expected = constants.get_settings().cron_secret
    if not expected:
        return
    if credentials is None or not secrets.compare_digest(credentials.credentials, expected):
        raise HTTPException(status_code=401, detail="Invalid worker trigger secret")


def _is_localhost(request: Request) -> bool:
    """Check if the request originates from localhost."""
    host = request.client.host if request.client else ""
    return host in {"127.0.0.1", "localhost", "::1"}


CurrentUser = Annotated[UserInfo, Depends(get_current_user)]
