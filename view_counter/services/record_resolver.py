"""
Record Resolver

The backing store has no lookup by field value, only a type-scoped paginated
listing. This service finds records by scanning pages.

Design Decisions:
- find_by_field() stops at the first page containing a match
- list_all() lets a flush resolve a whole batch with one scan instead of
  one scan per key
- A hard page ceiling stops runaway pagination; hitting it raises
  PaginationLimitError, distinct from a plain miss (None)
- Duplicate identifying values: the first record in page order wins
"""

import logging
from typing import Optional

from view_counter.core.exceptions import PaginationLimitError
from view_counter.store.interface import RecordStore
from view_counter.store.models import Record

logger = logging.getLogger(__name__)


def index_by_field(records: list[Record], field_key: str) -> dict[str, Record]:
    """
    Index records by the value of one field.

    Records without the field are left out. When several records share a
    value the first one in list order is kept.
    """
    index: dict[str, Record] = {}
    for record in records:
        value = record.get_field(field_key)
        if value is None or value == "":
            continue
        if value in index:
            logger.warning(
                f"Duplicate {field_key}={value!r}: keeping {index[value].id}, ignoring {record.id}"
            )
            continue
        index[value] = record
    return index


class RecordResolver:
    """
    Locates backing store records by scanning paginated listings.

    Args:
        store: Backing store to scan
        page_size: Records requested per page
        max_pages: Maximum pages fetched by one scan
    """

    def __init__(self, store: RecordStore, page_size: int = 50, max_pages: int = 100):
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        if max_pages < 1:
            raise ValueError("max_pages must be >= 1")
        self.store = store
        self.page_size = page_size
        self.max_pages = max_pages

    async def find_by_field(
        self,
        record_type: str,
        field_key: str,
        field_value: str
    ) -> Optional[Record]:
        """
        Find the first record whose field equals a value.

        Args:
            record_type: Type of records to scan
            field_key: Field to compare
            field_value: Value to match

        Returns:
            Matching Record, or None when pages are exhausted without a match

        Raises:
            PaginationLimitError: If max_pages pages were fetched without
                reaching the end of the listing
            BackingStoreError: If a page fetch fails
        """
        cursor = None
        for page_number in range(1, self.max_pages + 1):
            page = await self.store.list_records(record_type, self.page_size, cursor)

            for record in page.records:
                if record.get_field(field_key) == field_value:
                    logger.debug(
                        f"Resolved {field_key}={field_value!r} to {record.id} on page {page_number}"
                    )
                    return record

            if not page.has_next_page:
                return None
            cursor = page.end_cursor

        logger.error(
            f"Gave up looking for {field_key}={field_value!r} in '{record_type}' "
            f"after {self.max_pages} pages"
        )
        raise PaginationLimitError(record_type, self.max_pages, key=field_value)

    async def list_all(self, record_type: str) -> list[Record]:
        """
        Fetch every record of a type, in page order.

        Raises:
            PaginationLimitError: If the listing has more than max_pages pages
            BackingStoreError: If a page fetch fails
        """
        records: list[Record] = []
        cursor = None
        for _ in range(self.max_pages):
            page = await self.store.list_records(record_type, self.page_size, cursor)
            records.extend(page.records)
            if not page.has_next_page:
                return records
            cursor = page.end_cursor

        logger.error(
            f"Listing of '{record_type}' exceeded {self.max_pages} pages "
            f"({len(records)} records fetched)"
        )
        raise PaginationLimitError(record_type, self.max_pages)
