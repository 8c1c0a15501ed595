"""
Flush Coordinator

Moves buffered view increments into the backing store, one cycle at a time:

    IDLE -> DRAINING -> RESOLVING -> MERGING -> SUBMITTING -> IDLE
                    (any step fails) -> FAILED -> IDLE

Design Decisions:
- One listing scan resolves the whole batch (O(pages), not O(keys x pages))
- New totals are computed from the store's current value, which other
  writers may have advanced since the last flush
- All writes go out as one combined request; sub-operations are independent
- At-most-once delivery: a failed cycle drops its batch, nothing is re-queued
- Keys without a record are dropped and logged, never created
- A trigger arriving while a cycle runs is skipped, so the buffer is never
  drained by two overlapping cycles
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Optional

from view_counter.core.exceptions import BackingStoreError, FlushInProgressError
from view_counter.services.aggregation_buffer import AggregationBuffer, FlushBatch
from view_counter.services.record_resolver import RecordResolver, index_by_field
from view_counter.store.interface import RecordStore
from view_counter.store.models import Record, RecordUpdate

logger = logging.getLogger(__name__)


class FlushState(str, Enum):
    IDLE = "idle"
    DRAINING = "draining"
    RESOLVING = "resolving"
    MERGING = "merging"
    SUBMITTING = "submitting"
    FAILED = "failed"


class FlushStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    EMPTY = "empty"
    SKIPPED = "skipped"


@dataclass
class FlushResult:
    """Outcome of one flush trigger."""
    status: FlushStatus
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    dropped_increments: int = 0
    skipped_keys: list[str] = field(default_factory=list)
    message: str = ""
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status in (FlushStatus.SUCCESS, FlushStatus.EMPTY)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass(frozen=True)
class PendingWrite:
    """A merged total waiting to be written."""
    key: str
    record_id: str
    previous: int
    delta: int

    @property
    def new_total(self) -> int:
        return self.previous + self.delta


@dataclass
class MergePlan:
    writes: list[PendingWrite] = field(default_factory=list)
    skipped_keys: list[str] = field(default_factory=list)


def parse_count(value: Optional[str]) -> int:
    """
    Parse a string-encoded counter.

    Missing, empty, non-integer and negative values count as 0.
    """
    if value is None:
        return 0
    try:
        count = int(str(value).strip())
    except ValueError:
        return 0
    return count if count >= 0 else 0


def merge_counts(
    batch: FlushBatch,
    records: list[Record],
    key_field: str,
    counter_field: str
) -> MergePlan:
    """
    Match each buffered key to its record and compute the new totals.

    Args:
        batch: Drained deltas
        records: Every record of the type, in page order
        key_field: Identifying field compared with the buffered keys
        counter_field: Field holding the current total

    Returns:
        MergePlan with one write per matched key and the unmatched keys
    """
    index = index_by_field(records, key_field)
    plan = MergePlan()

    for key, delta in batch.items():
        record = index.get(key)
        if record is None:
            plan.skipped_keys.append(key)
            continue
        plan.writes.append(PendingWrite(
            key=key,
            record_id=record.id,
            previous=parse_count(record.get_field(counter_field)),
            delta=delta,
        ))

    return plan


class FlushCoordinator:
    """
    Runs flush cycles against one buffer and one backing store.

    Args:
        buffer: Buffer drained at the start of each cycle
        resolver: Scanner used to list the records
        store: Backing store receiving the combined update
        record_type: Type of the counter records
        key_field: Identifying field of the records
        counter_field: Counter field written by the flush
        submit_timeout: Seconds allowed for the combined update
    """

    def __init__(
        self,
        buffer: AggregationBuffer,
        resolver: RecordResolver,
        store: RecordStore,
        record_type: str,
        key_field: str,
        counter_field: str,
        submit_timeout: float = 30.0
    ):
        self.buffer = buffer
        self.resolver = resolver
        self.store = store
        self.record_type = record_type
        self.key_field = key_field
        self.counter_field = counter_field
        self.submit_timeout = submit_timeout

        self._state = FlushState.IDLE
        self._cycles_total = 0
        self._cycles_failed = 0
        self._triggers_skipped = 0
        self._last_result: Optional[FlushResult] = None

        # Submit request still running, and requests the cycle stopped waiting for
        self._inflight: Optional[asyncio.Task] = None
        self._abandoned: set[asyncio.Task] = set()

    @property
    def state(self) -> FlushState:
        return self._state

    @property
    def in_progress(self) -> bool:
        return self._state != FlushState.IDLE

    @property
    def last_result(self) -> Optional[FlushResult]:
        return self._last_result

    async def flush(self) -> FlushResult:
        """
        Run one flush cycle.

        Never raises: every failure is logged and reported in the result.
        Cancellation is the exception: the dropped batch is logged and
        recorded as the last result, then CancelledError propagates.

        Returns:
            FlushResult describing what was written, skipped or lost
        """
        # Check and set happen without awaiting in between
        if self._state != FlushState.IDLE:
            self._triggers_skipped += 1
            reason = FlushInProgressError(self._state.value)
            logger.info(f"Flush trigger ignored: {reason}")
            return FlushResult(status=FlushStatus.SKIPPED, message=str(reason))

        self._state = FlushState.DRAINING
        started = time.monotonic()
        batch = FlushBatch()
        result: Optional[FlushResult] = None

        try:
            batch = self.buffer.drain()
            if not batch:
                result = FlushResult(
                    status=FlushStatus.EMPTY,
                    message="No pending views to process"
                )
                return result

            self._cycles_total += 1
            logger.info(
                f"Flushing {batch.total} increments for {len(batch)} posts"
            )
            result = await self._process(batch)
            return result

        except asyncio.CancelledError:
            self._state = FlushState.FAILED
            self._abandon_inflight()
            logger.error(
                f"Flush cancelled, dropped {batch.total} increments"
            )
            result = self._failed(batch, "Flush cancelled")
            raise

        except asyncio.TimeoutError:
            self._state = FlushState.FAILED
            self._abandon_inflight()
            logger.error(
                f"Flush submit timed out after {self.submit_timeout}s; "
                f"dropped {batch.total} increments"
            )
            result = self._failed(batch, f"Backing store timed out after {self.submit_timeout}s")
            return result

        except BackingStoreError as e:
            self._state = FlushState.FAILED
            logger.error(
                f"Flush failed, dropped {batch.total} increments: {e}",
                exc_info=True
            )
            result = self._failed(batch, str(e))
            return result

        except Exception as e:
            self._state = FlushState.FAILED
            logger.error(
                f"Unexpected flush failure, dropped {batch.total} increments: {e}",
                exc_info=True
            )
            result = self._failed(batch, f"Unexpected error: {e}")
            return result

        finally:
            if result is not None:
                result.duration_ms = round((time.monotonic() - started) * 1000, 2)
                if result.status != FlushStatus.EMPTY:
                    self._last_result = result
            self._state = FlushState.IDLE

    async def _process(self, batch: FlushBatch) -> FlushResult:
        self._state = FlushState.RESOLVING
        records = await self.resolver.list_all(self.record_type)

        self._state = FlushState.MERGING
        plan = merge_counts(batch, records, self.key_field, self.counter_field)

        dropped = 0
        for key in plan.skipped_keys:
            dropped += batch.deltas[key]
            logger.warning(
                f"No record with {self.key_field}={key!r}; "
                f"dropped {batch.deltas[key]} increments"
            )

        if not plan.writes:
            return FlushResult(
                status=FlushStatus.SUCCESS,
                skipped=len(plan.skipped_keys),
                dropped_increments=dropped,
                skipped_keys=plan.skipped_keys,
                message="No matching records to update",
            )

        self._state = FlushState.SUBMITTING
        updates = [
            RecordUpdate(
                record_id=write.record_id,
                fields={self.counter_field: str(write.new_total)}
            )
            for write in plan.writes
        ]
        # Once dispatched the request runs to completion even if we stop waiting
        inflight = asyncio.ensure_future(self.store.update_records(updates))
        inflight.add_done_callback(self._submit_done)
        self._inflight = inflight
        outcomes = await asyncio.wait_for(
            asyncio.shield(inflight),
            timeout=self.submit_timeout
        )

        processed = 0
        errors = 0
        for position, write in enumerate(plan.writes):
            outcome = outcomes[position] if position < len(outcomes) else None
            if outcome is not None and outcome.ok:
                processed += 1
                logger.debug(f"{write.key}: {write.previous} -> {write.new_total}")
                continue

            errors += 1
            dropped += write.delta
            detail = (
                "; ".join(error.message for error in outcome.errors)
                if outcome is not None else "missing result"
            )
            logger.error(
                f"Update of {write.record_id} ({self.key_field}={write.key!r}) failed: {detail}"
            )

        if errors and processed:
            status = FlushStatus.PARTIAL
        elif errors:
            status = FlushStatus.FAILED
        else:
            status = FlushStatus.SUCCESS

        logger.info(
            f"Flush finished: status={status.value}, processed={processed}, "
            f"skipped={len(plan.skipped_keys)}, errors={errors}"
        )

        return FlushResult(
            status=status,
            processed=processed,
            skipped=len(plan.skipped_keys),
            errors=errors,
            dropped_increments=dropped,
            skipped_keys=plan.skipped_keys,
            message=f"Updated {processed} of {len(plan.writes)} records",
        )

    def _abandon_inflight(self) -> None:
        if self._inflight is not None and not self._inflight.done():
            self._abandoned.add(self._inflight)

    def _submit_done(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None
        late = task in self._abandoned
        self._abandoned.discard(task)

        if task.cancelled():
            if late:
                logger.warning("Abandoned update request was cancelled")
            return

        # Always retrieve the exception so it is never reported as unhandled
        error = task.exception()
        if not late:
            return
        if error is not None:
            logger.error(f"Update request failed after the flush gave up on it: {error}")
        else:
            logger.warning(
                f"Update request completed after the flush gave up on it; "
                f"{len(task.result())} outcomes were not counted"
            )

    @property
    def inflight_submit(self) -> Optional[asyncio.Task]:
        """Update request still running, if any."""
        if self._inflight is not None and self._inflight.done():
            return None
        return self._inflight

    async def wait_for_inflight(self, timeout: float) -> bool:
        """
        Wait for a still running update request to finish.

        Args:
            timeout: Maximum seconds to wait

        Returns:
            True if nothing is left running
        """
        task = self.inflight_submit
        if task is None:
            return True
        done, _ = await asyncio.wait({task}, timeout=timeout)
        return bool(done)

    def _failed(self, batch: FlushBatch, message: str) -> FlushResult:
        self._cycles_failed += 1
        return FlushResult(
            status=FlushStatus.FAILED,
            errors=1,
            dropped_increments=batch.total,
            message=message,
        )

    def stats(self) -> dict:
        """
        Get coordinator statistics for monitoring.

        Returns:
            Dictionary with flush metrics
        """
        return {
            "state": self._state.value,
            "cycles_total": self._cycles_total,
            "cycles_failed": self._cycles_failed,
            "triggers_skipped": self._triggers_skipped,
            "last_result": self._last_result.to_dict() if self._last_result else None,
        }
