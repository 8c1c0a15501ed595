"""
API Request and Response Schemas

This module defines all Pydantic models for API requests and responses.
Separated from endpoints to keep concerns separated and enable reuse.

Field names on the wire keep the camelCase used by existing storefront
clients (postId, currentViewCount).
"""

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class IncrementRequest(BaseModel):
    """Request model for the increment endpoint."""
    model_config = ConfigDict(populate_by_name=True)

    post_id: Optional[Union[str, int]] = Field(
        default=None,
        alias="postId",
        description="Identifier of the viewed post"
    )


class IncrementResponse(BaseModel):
    """Response model for the increment endpoint."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    accepted: bool = True
    post_id: str = Field(..., serialization_alias="postId")
    pending: int = Field(..., description="Views buffered for this post since the last flush")


class ViewCountResponse(BaseModel):
    """Response model for the single count endpoint."""
    success: bool = True
    post_id: str = Field(..., serialization_alias="postId")
    current_view_count: int = Field(..., serialization_alias="currentViewCount")


class AllViewCountsResponse(BaseModel):
    """Response model for the all counts endpoint."""
    success: bool = True
    counts: dict[str, int]


class FlushResponse(BaseModel):
    """Response model for the flush endpoint."""
    status: str
    processed: int
    skipped: int
    errors: int
    dropped_increments: int
    skipped_keys: list[str]
    message: str
    duration_ms: float


class FlushStatusResponse(BaseModel):
    """Response model for the flush status endpoint."""
    buffer: dict[str, Any]
    flush: dict[str, Any]
