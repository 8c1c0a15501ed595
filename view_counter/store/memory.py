"""
In-Memory Record Store

This module implements the RecordStore interface with plain dictionaries.

Used for:
- Local development without a Shopify shop
- Tests (page fetch counting and failure injection)

Behaves like the remote store where it matters to callers: listings are
paginated with opaque cursors and combined updates report per-record errors.
"""

import itertools
from typing import Optional, Sequence

from view_counter.core.exceptions import BackingStoreError
from view_counter.store.interface import RecordStore
from view_counter.store.models import (
    Record,
    RecordPage,
    RecordUpdate,
    UpdateOutcome,
    UserError,
)


class InMemoryRecordStore(RecordStore):
    """
    Dictionary-backed record store.

    Records keep insertion order per type, which is the page order.

    Failure injection:
    - list_error / update_error: raised by the next calls to list/update
    - rejected_ids: record ids whose updates are reported as user errors
    """

    def __init__(self):
        self._records: dict[str, dict[str, dict[str, Optional[str]]]] = {}
        self._ids = itertools.count(1)

        self.list_calls = 0
        self.update_calls = 0
        self.list_error: Optional[Exception] = None
        self.update_error: Optional[Exception] = None
        self.rejected_ids: set[str] = set()

    def add_record(
        self,
        record_type: str,
        fields: dict[str, Optional[str]],
        record_id: Optional[str] = None
    ) -> Record:
        """
        Create a record.

        Args:
            record_type: Type of the record
            fields: Initial field values
            record_id: Identifier to use (generated when omitted)

        Returns:
            The stored record
        """
        if record_id is None:
            record_id = f"gid://memory/Record/{next(self._ids)}"
        self._records.setdefault(record_type, {})[record_id] = dict(fields)
        return Record(id=record_id, fields=dict(fields))

    def get_record(self, record_id: str) -> Optional[Record]:
        for records in self._records.values():
            if record_id in records:
                return Record(id=record_id, fields=dict(records[record_id]))
        return None

    async def list_records(
        self,
        record_type: str,
        page_size: int,
        cursor: Optional[str] = None
    ) -> RecordPage:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error

        if page_size < 1:
            raise BackingStoreError(f"Invalid page size: {page_size}")

        items = list(self._records.get(record_type, {}).items())
        try:
            start = int(cursor) if cursor else 0
        except ValueError:
            raise BackingStoreError(f"Invalid cursor: {cursor!r}")

        end = start + page_size
        page = [
            Record(id=record_id, fields=dict(fields))
            for record_id, fields in items[start:end]
        ]
        has_next_page = end < len(items)

        return RecordPage(
            records=page,
            has_next_page=has_next_page,
            end_cursor=str(end) if page else cursor
        )

    async def update_records(
        self,
        updates: Sequence[RecordUpdate]
    ) -> list[UpdateOutcome]:
        self.update_calls += 1
        if self.update_error is not None:
            raise self.update_error

        outcomes = []
        for index, update in enumerate(updates):
            alias = f"u{index}"
            target = None
            for records in self._records.values():
                if update.record_id in records:
                    target = records[update.record_id]
                    break

            if target is None:
                outcomes.append(UpdateOutcome(
                    record_id=update.record_id,
                    alias=alias,
                    errors=[UserError(message="Record does not exist", code="RECORD_NOT_FOUND")]
                ))
                continue

            if update.record_id in self.rejected_ids:
                outcomes.append(UpdateOutcome(
                    record_id=update.record_id,
                    alias=alias,
                    errors=[UserError(message="Update rejected", code="INVALID")]
                ))
                continue

            target.update(update.fields)
            outcomes.append(UpdateOutcome(record_id=update.record_id, alias=alias))

        return outcomes

    def get_backend_name(self) -> str:
        return "memory"
