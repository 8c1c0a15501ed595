"""
FastAPI Endpoints for the View Counter Service

This module defines all REST API endpoints with minimal logic.
Endpoints only handle:
- Request validation (Pydantic models)
- Rate limiting
- Flush trigger authentication
- Error handling and HTTP responses
- Delegating to service layer

Error mapping:
- InvalidKeyError -> 400
- RecordNotFoundError -> 404
- BackingStoreError -> 502
- anything else -> 500
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from view_counter.api.schemas import (
    AllViewCountsResponse,
    FlushResponse,
    FlushStatusResponse,
    IncrementRequest,
    IncrementResponse,
    ViewCountResponse,
)
from view_counter.core.exceptions import (
    BackingStoreError,
    InvalidKeyError,
    RecordNotFoundError,
)
from view_counter.core.rate_limit import limiter, RATE_LIMITS
from view_counter.core.service_manager import get_active_settings, get_view_count_service
from view_counter.core.setting import Settings
from view_counter.core.validators import sanitize_post_id
from view_counter.services.view_count_service import ViewCountService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def verify_flush_secret(
    x_flush_secret: Optional[str] = Header(default=None),
    config: Settings = Depends(get_active_settings)
) -> None:
    """
    Check the shared secret sent by the flush trigger.

    No secret configured means manual flushes are open (local development).
    """
    expected = config.FLUSH_SECRET
    if not expected:
        return
    if not x_flush_secret or not hmac.compare_digest(x_flush_secret, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing flush secret"
        )


@router.post(
    "/increment-view",
    response_model=IncrementResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Record a post view",
    description="Buffers one view of a post; totals are written by the next flush"
)
@limiter.limit(RATE_LIMITS["increment"])
async def increment_view(
    request: Request,  # Required for rate limiting (slowapi expects parameter named 'request')
    body: IncrementRequest,
    service: ViewCountService = Depends(get_view_count_service)
) -> IncrementResponse:
    """
    Accept one view of a post.

    Returns immediately; the backing store is never contacted here.

    Raises:
        HTTPException 400: If postId is missing or malformed
        HTTPException 429: If rate limit exceeded
    """
    try:
        pending = service.increment(body.post_id)
    except InvalidKeyError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

    return IncrementResponse(post_id=sanitize_post_id(body.post_id), pending=pending)


@router.get(
    "/get-views/{post_id:path}",
    response_model=ViewCountResponse,
    summary="Get the view count of a post",
    description="Reads the stored total of a post, including views not yet flushed"
)
@limiter.limit(RATE_LIMITS["views"])
async def get_views(
    post_id: str,
    request: Request,
    service: ViewCountService = Depends(get_view_count_service)
) -> ViewCountResponse:
    """
    Get the current view count of a post.

    Raises:
        HTTPException 400: If post_id is malformed
        HTTPException 404: If the post has no counter record
        HTTPException 502: If the backing store cannot be read
    """
    try:
        count = await service.get_count(post_id)
    except InvalidKeyError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except BackingStoreError as e:
        logger.error(f"Error fetching views for {post_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(e)
        )
    except RecordNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No view counter found for post '{post_id}'"
        )
    except Exception as e:
        logger.error(f"Error fetching views for {post_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal Server Error"
        )

    return ViewCountResponse(post_id=sanitize_post_id(post_id), current_view_count=count)


@router.get(
    "/views",
    response_model=AllViewCountsResponse,
    summary="Get the view counts of all posts",
    description="One paginated scan of the counter records"
)
@limiter.limit(RATE_LIMITS["all_views"])
async def get_all_views(
    request: Request,
    service: ViewCountService = Depends(get_view_count_service)
) -> AllViewCountsResponse:
    """
    Get the view counts of every post with a counter record.

    Raises:
        HTTPException 502: If the backing store cannot be read
    """
    try:
        counts = await service.get_all_counts()
    except BackingStoreError as e:
        logger.error(f"Error listing view counts: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"Error listing view counts: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal Server Error"
        )

    return AllViewCountsResponse(counts=counts)


@router.post(
    "/flush",
    response_model=FlushResponse,
    summary="Flush buffered views",
    description="Writes buffered views to the backing store now; safe to call concurrently",
    dependencies=[Depends(verify_flush_secret)]
)
@limiter.limit(RATE_LIMITS["flush"])
async def flush_views(
    request: Request,
    service: ViewCountService = Depends(get_view_count_service)
) -> FlushResponse:
    """
    Run one flush cycle.

    Always answers 200 with the outcome; a failed cycle is reported in the
    body (status "failed"), not as an HTTP error.
    """
    result = await service.flush()
    return FlushResponse(**result.to_dict())


@router.get(
    "/flush/status",
    response_model=FlushStatusResponse,
    summary="Buffer and flush statistics",
    dependencies=[Depends(verify_flush_secret)]
)
async def flush_status(
    service: ViewCountService = Depends(get_view_count_service)
) -> FlushStatusResponse:
    """Get buffer and flush coordinator statistics for monitoring."""
    return FlushStatusResponse(**service.stats())
