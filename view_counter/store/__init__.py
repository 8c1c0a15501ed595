"""
Backing store module with abstraction layer.

This module provides:
- RecordStore interface: Abstract base class for backing stores
- ShopifyMetaobjectStore: Shopify Admin GraphQL implementation (production)
- InMemoryRecordStore: Dictionary implementation (local dev, tests)
- get_record_store(): Factory choosing the implementation from settings

To add a new backing store:
1. Create a new class inheriting from RecordStore
2. Implement all abstract methods
3. Add a branch to get_record_store()
"""

from typing import Optional

from view_counter.core.exceptions import ConfigurationError
from view_counter.core.setting import Settings, StoreBackend, settings as default_settings
from view_counter.store.interface import RecordStore
from view_counter.store.memory import InMemoryRecordStore
from view_counter.store.shopify import ShopifyMetaobjectStore


def get_record_store(config: Optional[Settings] = None) -> RecordStore:
    """
    Build the record store selected by STORE_BACKEND.

    Raises:
        ConfigurationError: If the Shopify backend is selected without
            a shop domain or access token
    """
    config = config or default_settings

    if config.STORE_BACKEND == StoreBackend.shopify:
        if not config.SHOPIFY_SHOP_DOMAIN:
            raise ConfigurationError("SHOPIFY_SHOP_DOMAIN")
        if not config.SHOPIFY_ACCESS_TOKEN:
            raise ConfigurationError("SHOPIFY_ACCESS_TOKEN")
        return ShopifyMetaobjectStore(
            shop_domain=config.SHOPIFY_SHOP_DOMAIN,
            access_token=config.SHOPIFY_ACCESS_TOKEN,
            api_version=config.SHOPIFY_API_VERSION,
            timeout=config.REQUEST_TIMEOUT_SECONDS,
        )

    return InMemoryRecordStore()


__all__ = [
    "RecordStore",
    "InMemoryRecordStore",
    "ShopifyMetaobjectStore",
    "get_record_store",
]
