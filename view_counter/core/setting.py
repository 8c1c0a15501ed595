"""
Configuration Settings

This module defines application configuration using Pydantic Settings.
All configuration is loaded from environment variables or .env file.

Design Decisions:
- Uses pydantic-settings for type-safe configuration
- Supports multiple environments (production, staging, dev)
- Defaults to the in-memory record store for easy local development
- Switched to Shopify metaobjects for production via STORE_BACKEND
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["Settings", "settings", "StoreBackend"]


class EnvSettingsOptions(Enum):
    """Environment options for deployment."""
    production = "production"
    staging = "staging"
    development = "dev"


class StoreBackend(str, Enum):
    """Available backing store implementations."""
    shopify = "shopify"
    memory = "memory"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables or .env file.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Project Configuration
    ENV_SETTING: EnvSettingsOptions = Field(
        default=EnvSettingsOptions.development,
        description="Environment setting (production, staging, dev)"
    )

    # Backing Store Configuration
    STORE_BACKEND: StoreBackend = Field(
        default=StoreBackend.memory,
        description="Record store implementation (shopify for production, memory for local dev)"
    )
    SHOPIFY_SHOP_DOMAIN: Optional[str] = Field(
        default=None,
        description="Shop domain, e.g. my-shop.myshopify.com"
    )
    SHOPIFY_ACCESS_TOKEN: Optional[str] = Field(
        default=None,
        description="Admin API access token with read/write metaobjects scopes"
    )
    SHOPIFY_API_VERSION: str = Field(
        default="2024-10",
        description="Admin GraphQL API version"
    )
    REQUEST_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout applied to every backing store HTTP call"
    )

    # Record Layout
    METAOBJECT_TYPE: str = Field(
        default="custom_post_views",
        description="Record type holding the view counters"
    )
    KEY_FIELD: str = Field(
        default="post_id",
        description="Identifying field used to match a record to a post"
    )
    COUNTER_FIELD: str = Field(
        default="view_count",
        description="String-encoded integer field holding the total"
    )

    # Record Scan Configuration
    PAGE_SIZE: int = Field(
        default=50,
        ge=1,
        le=250,
        description="Records fetched per page while scanning"
    )
    MAX_PAGES: int = Field(
        default=100,
        ge=1,
        description="Hard ceiling on pages fetched by a single scan"
    )

    # Flush Configuration
    FLUSH_INTERVAL_SECONDS: float = Field(
        default=60.0,
        ge=0,
        description="Seconds between scheduled flushes (0 disables the scheduler)"
    )
    FLUSH_SUBMIT_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound on the combined update round trip"
    )
    FLUSH_SECRET: Optional[str] = Field(
        default=None,
        description="Shared secret expected in X-Flush-Secret for manual flushes"
    )
    FLUSH_ON_SHUTDOWN: bool = Field(
        default=True,
        description="Run one best-effort flush when the application stops"
    )
    SHUTDOWN_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        gt=0,
        description="Wait bound for a running flush or update request when stopping"
    )

    # Read Path
    INCLUDE_PENDING_IN_READS: bool = Field(
        default=True,
        description="Add buffered, not yet flushed increments to reported counts"
    )

    # HTTP Configuration
    CORS_ALLOW_ORIGINS: list[str] = Field(
        default=["*"],
        description="Origins allowed by the CORS middleware"
    )


settings = Settings()
