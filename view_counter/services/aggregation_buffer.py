"""
Aggregation Buffer

Coalesces view increments in memory between flushes so the request path
never contacts the backing store.

Design:
- One instance per process, passed explicitly to the increment path
  (sole writer) and the flush coordinator (sole drainer)
- drain() swaps the whole mapping for an empty one under a lock held
  only for the swap; adds never wait on a flush in progress
- Volatile: pending increments are lost if the process dies before a flush
"""

import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterator, Mapping

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FlushBatch:
    """Immutable point-in-time snapshot of pending deltas (key -> delta)."""
    deltas: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def total(self) -> int:
        """Sum of all increments in the batch."""
        return sum(self.deltas.values())

    def items(self):
        return self.deltas.items()

    def __len__(self) -> int:
        return len(self.deltas)

    def __iter__(self) -> Iterator[str]:
        return iter(self.deltas)

    def __bool__(self) -> bool:
        return bool(self.deltas)


class AggregationBuffer:
    """
    Mapping from post id to pending increment count.

    Thread-safe: the lock covers single dict operations only, never I/O,
    so it is safe to use from the event loop and from worker threads.
    """

    def __init__(self):
        self._pending: dict[str, int] = {}
        self._lock = threading.Lock()

        self._total_added = 0
        self._total_drained = 0
        self._drain_count = 0

    def add(self, key: str, n: int = 1) -> int:
        """
        Add n increments to the pending count of key.

        Args:
            key: Post id (validated by the caller)
            n: Number of increments, at least 1

        Returns:
            Pending count for key after the addition

        Raises:
            ValueError: If key is empty or n < 1
        """
        if not key:
            raise ValueError("key must be a non-empty string")
        if n < 1:
            raise ValueError(f"n must be >= 1, got {n}")

        with self._lock:
            pending = self._pending.get(key, 0) + n
            self._pending[key] = pending
            self._total_added += n
        return pending

    def drain(self) -> FlushBatch:
        """
        Atomically take every pending delta and leave the buffer empty.

        Returns:
            FlushBatch with the drained deltas (empty batch if nothing pending)
        """
        with self._lock:
            if not self._pending:
                return FlushBatch()
            drained, self._pending = self._pending, {}
            self._drain_count += 1
            self._total_drained += sum(drained.values())

        return FlushBatch(deltas=MappingProxyType(drained))

    def peek(self, key: str) -> int:
        """Pending delta for key, 0 if none."""
        with self._lock:
            return self._pending.get(key, 0)

    def snapshot(self) -> dict[str, int]:
        """Copy of the pending deltas without clearing them."""
        with self._lock:
            return dict(self._pending)

    def reset(self) -> None:
        """Discard all pending deltas and counters."""
        with self._lock:
            discarded = sum(self._pending.values())
            self._pending = {}
            self._total_added = 0
            self._total_drained = 0
            self._drain_count = 0
        if discarded:
            logger.warning(f"Buffer reset discarded {discarded} pending increments")

    def stats(self) -> dict:
        """
        Get buffer statistics for monitoring.

        Returns:
            Dictionary with buffer metrics
        """
        with self._lock:
            return {
                "pending_keys": len(self._pending),
                "pending_increments": sum(self._pending.values()),
                "total_added": self._total_added,
                "total_drained": self._total_drained,
                "drain_count": self._drain_count,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)
