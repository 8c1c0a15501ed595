"""
View Count Service

This service is the façade over the view counting subsystem:
- increment(): records a view in the aggregation buffer (no network)
- get_count() / get_all_counts(): read totals from the backing store
- flush(): pushes buffered views to the backing store

Design Decisions:
- Fire-and-forget increments: accepted immediately, persisted by the next flush
- Reads scan the backing store and, when enabled, add the views still
  waiting in the buffer so a reader sees its own view right away
- A post without a record is NotFound on reads; its buffered views are
  dropped at flush time
"""

import logging

from view_counter.core.exceptions import InvalidKeyError, RecordNotFoundError
from view_counter.core.validators import sanitize_post_id
from view_counter.services.aggregation_buffer import AggregationBuffer
from view_counter.services.flush_coordinator import FlushCoordinator, FlushResult, parse_count
from view_counter.services.record_resolver import RecordResolver, index_by_field

logger = logging.getLogger(__name__)


class ViewCountService:
    """
    Service for recording and reading post view counts.

    Args:
        buffer: Process-wide aggregation buffer
        resolver: Record scanner used by the read path
        coordinator: Flush coordinator draining the same buffer
        record_type: Type of the counter records
        key_field: Identifying field of the records
        counter_field: Field holding the stored total
        include_pending: Add buffered increments to reported counts
    """

    def __init__(
        self,
        buffer: AggregationBuffer,
        resolver: RecordResolver,
        coordinator: FlushCoordinator,
        record_type: str,
        key_field: str,
        counter_field: str,
        include_pending: bool = True
    ):
        self.buffer = buffer
        self.resolver = resolver
        self.coordinator = coordinator
        self.record_type = record_type
        self.key_field = key_field
        self.counter_field = counter_field
        self.include_pending = include_pending

    def _validate(self, post_id) -> str:
        key = sanitize_post_id(post_id)
        if key is None:
            if post_id is None or (isinstance(post_id, str) and not post_id.strip()):
                raise InvalidKeyError(post_id)
            raise InvalidKeyError(post_id, reason="Invalid post ID format")
        return key

    def increment(self, post_id) -> int:
        """
        Record one view of a post.

        Never touches the backing store; the view is persisted by the next
        flush, or lost if that flush fails.

        Args:
            post_id: The post that was viewed

        Returns:
            Views pending for this post since the last flush

        Raises:
            InvalidKeyError: If post_id is missing, empty or malformed
        """
        key = self._validate(post_id)
        return self.buffer.add(key, 1)

    async def get_count(self, post_id) -> int:
        """
        Get the current view count of a post.

        Args:
            post_id: The post to look up

        Returns:
            Stored count, plus pending views when include_pending is set

        Raises:
            InvalidKeyError: If post_id is missing, empty or malformed
            RecordNotFoundError: If no record exists for the post
            BackingStoreError: If the scan fails or hits the page ceiling
        """
        key = self._validate(post_id)
        record = await self.resolver.find_by_field(self.record_type, self.key_field, key)
        if record is None:
            raise RecordNotFoundError(key, record_type=self.record_type)

        count = parse_count(record.get_field(self.counter_field))
        if self.include_pending:
            count += self.buffer.peek(key)
        return count

    async def get_all_counts(self) -> dict[str, int]:
        """
        Get the view count of every post that has a record.

        Cost is one paginated scan regardless of the number of posts.

        Returns:
            Mapping of post id to count

        Raises:
            BackingStoreError: If the scan fails or hits the page ceiling
        """
        records = await self.resolver.list_all(self.record_type)
        pending = self.buffer.snapshot() if self.include_pending else {}

        return {
            key: parse_count(record.get_field(self.counter_field)) + pending.get(key, 0)
            for key, record in index_by_field(records, self.key_field).items()
        }

    async def flush(self) -> FlushResult:
        """Run one flush cycle now (skipped if one is already running)."""
        return await self.coordinator.flush()

    def stats(self) -> dict:
        return {
            "buffer": self.buffer.stats(),
            "flush": self.coordinator.stats(),
        }
