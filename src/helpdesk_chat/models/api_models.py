"""
API models shared by the HTTP boundary and the tool layer.
Provides the authenticated identity and the standardized tool output envelope.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class UserInfo(BaseModel):
    """Verified user identity produced by the auth boundary."""

    id: str
    email: str | None = None
    # True for the localhost development bypass: the request may name its own user id
    is_local: bool = False

    def resolve_user_id(self, requested: str | None) -> str:
        """Return the tenant user id for a request that may carry its own ``userId``.

        Raises:
            ValueError: A verified token's subject differs from the requested id.
        """
        if not requested or requested == self.id:
            return self.id
        if self.is_local:
            return requested
        raise ValueError("userId does not match the authenticated user")


class FunctionResponse(BaseModel):
    """Standardized response format for named function outputs fed back to the model."""

    success: bool
    data: Any | None = None
    error: str | None = None
    code: str | None = None

    def to_json(self) -> str:
        """Convert to JSON string."""
        json_str: str = self.model_dump_json(exclude_none=True)
        return json_str
