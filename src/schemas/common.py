"""Common Pydantic schemas used across API endpoints."""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

# Generic type for paginated responses
T = TypeVar("T")


# =============================================================================
# Pagination
# =============================================================================


class PaginatedResponse(BaseModel, Generic[T]):
    """Generic limit/offset page wrapper."""

    items: list[T]
    total: int = Field(description="Total number of matching items")
    limit: int = Field(description="Page size requested")
    offset: int = Field(description="Number of items skipped")
    has_more: bool = Field(description="Whether more items exist past this page")

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def create(
        cls,
        items: list[T],
        total: int,
        limit: int,
        offset: int,
    ) -> "PaginatedResponse[T]":
        """Factory method to create a page; has_more is offset + len(items) < total."""
        return cls(
            items=items,
            total=total,
            limit=limit,
            offset=offset,
            has_more=offset + len(items) < total,
        )


# =============================================================================
# Error Responses
# =============================================================================


class ErrorDetail(BaseModel):
    """Detailed error information."""

    field: str | None = Field(default=None, description="Field that caused the error")
    message: str = Field(description="Error message")
    code: str | None = Field(default=None, description="Error code")


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str = Field(description="Stable error code, e.g. invalid_state")
    message: str = Field(description="Human-readable error message")
    details: dict[str, Any] | list[ErrorDetail] | None = Field(
        default=None, description="Additional error details"
    )


# =============================================================================
# Health
# =============================================================================


class HealthResponse(BaseModel):
    """Liveness/readiness payload."""

    status: str = Field(description="healthy or degraded")
    version: str
    database: str = Field(description="connected or error")
    llm_provider: str
    storage_provider: str
