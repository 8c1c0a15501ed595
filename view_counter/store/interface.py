"""
Backing Store Abstraction Interface

This module defines the abstraction layer that allows switching between
backing stores (Shopify metaobjects, in-memory) without changing the
services that aggregate and flush view counts.

The store exposes no lookup by field: only a type-scoped paginated listing
and a combined update of several records in one round trip. Retry policy,
if any, belongs to the implementation, never to the callers.
"""

from abc import ABC, abstractmethod
from typing import Optional, Sequence

from view_counter.store.models import RecordPage, RecordUpdate, UpdateOutcome


class RecordStore(ABC):
    """
    Abstract base class for backing store adapters.

    To add a new backing store:
    1. Create a new class inheriting from RecordStore
    2. Implement all abstract methods
    3. Update the factory function to return the new store
    """

    @abstractmethod
    async def list_records(
        self,
        record_type: str,
        page_size: int,
        cursor: Optional[str] = None
    ) -> RecordPage:
        """
        Fetch one page of records of a given type.

        Args:
            record_type: Type scoping the listing
            page_size: Maximum number of records on the page
            cursor: End cursor of the previous page, None for the first page

        Returns:
            RecordPage with the records and pagination info

        Raises:
            BackingStoreError: On transport or API failure
        """
        pass

    @abstractmethod
    async def update_records(
        self,
        updates: Sequence[RecordUpdate]
    ) -> list[UpdateOutcome]:
        """
        Apply several independent record updates in one round trip.

        Sub-operations are independent: one failing does not roll back the
        others. Failures are reported in the matching UpdateOutcome.

        Args:
            updates: Updates to apply

        Returns:
            One UpdateOutcome per update, in the same order

        Raises:
            BackingStoreError: When the combined request as a whole fails
        """
        pass

    async def close(self) -> None:
        """Release any resources (HTTP connections) held by the store."""
        return None

    @abstractmethod
    def get_backend_name(self) -> str:
        """
        Get the name of this backend.

        Returns:
            Backend name (e.g., 'shopify', 'memory')
        """
        pass
