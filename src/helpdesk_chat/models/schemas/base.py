"""
Base API schemas shared by list endpoints.

Paginated responses carry ``{"<items>": [...], "pagination": {...}}`` with
page-based pagination (``page`` starts at 1).
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class PaginationMeta(BaseModel):
    """Pagination metadata for list responses using page/limit."""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "page": 1,
                "limit": 50,
                "total": 42,
                "hasMore": False,
            }
        },
    )

    page: int = Field(..., ge=1, description="Current page (1-based)")
    limit: int = Field(..., ge=1, le=100, description="Maximum items per page")
    total: int = Field(..., ge=0, description="Total number of items")
    has_more: bool = Field(..., alias="hasMore", description="Whether more pages are available")

    @classmethod
    def build(cls, *, page: int, limit: int, total: int) -> PaginationMeta:
        return cls(page=page, limit=limit, total=total, has_more=page * limit < total)


class SuccessResponse(BaseModel):
    """
    Simple success response for operations without meaningful return data.

    Use for DELETE operations or actions that don't return entity data.
    """

    success: bool = Field(default=True, description="Whether the operation succeeded")
    message: str | None = Field(default=None, description="Optional success message")
