"""
FastAPI Application Entry Point

This module initializes the FastAPI application and configures:
- API routes
- Middleware (logging, CORS, rate limiting)
- Application lifecycle (view counting components, flush scheduler)
- Application metadata

Design Decisions:
- Clean separation: Routes, middleware, and app config are separate
- Views are buffered in memory and flushed to the backing store periodically
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from view_counter.api import endpoints
from view_counter.middleware.logging import add_logging_middleware
from view_counter.core.rate_limit import limiter
from view_counter.core.service_manager import initialize_services, shutdown_services
from view_counter.core.setting import settings

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

# Initialize FastAPI application
# Title and description are used in auto-generated API documentation
app = FastAPI(
    title="View Counter Service",
    description="Buffered post view counting persisted to Shopify metaobjects",
    version="1.0.0",
    docs_url="/docs",  # Swagger UI documentation
    redoc_url="/redoc",  # ReDoc documentation
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

add_logging_middleware(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", tags=["Health"])
async def root():
    """
    Root endpoint for health checks.

    Returns:
        Simple JSON response indicating service is running
    """
    return {
        "message": "View Counter Service is running",
        "version": "1.0.0",
        "docs": "/docs"
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint for monitoring.

    Returns:
        Health status of the service
    """
    return {"status": "healthy"}


app.include_router(endpoints.router, tags=["Views"])


@app.on_event("startup")
async def startup_event():
    """Build view counting components and start the flush scheduler."""
    await initialize_services()


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the scheduler and flush remaining views."""
    await shutdown_services()
