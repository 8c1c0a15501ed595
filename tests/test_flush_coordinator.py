"""
Tests for the flush coordinator: merge arithmetic, the cycle outcomes, and
the reentrancy guard.
"""

import asyncio
import logging

import pytest

from conftest import RECORD_TYPE, add_post
from view_counter.core.exceptions import BackingStoreError
from view_counter.services.aggregation_buffer import AggregationBuffer, FlushBatch
from view_counter.services.flush_coordinator import (
    FlushCoordinator,
    FlushState,
    FlushStatus,
    merge_counts,
    parse_count,
)
from view_counter.services.record_resolver import RecordResolver
from view_counter.store.memory import InMemoryRecordStore
from view_counter.store.models import Record


class BlockingStore(InMemoryRecordStore):
    """Holds update_records() until released."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def update_records(self, updates):
        await self.release.wait()
        return await super().update_records(updates)


class BlockingListStore(InMemoryRecordStore):
    """Holds list_records() until released."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def list_records(self, record_type, page_size, cursor=None):
        await self.release.wait()
        return await super().list_records(record_type, page_size, cursor)


class SlowFailingStore(InMemoryRecordStore):
    """Fails update_records() after a delay."""

    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay

    async def update_records(self, updates):
        await asyncio.sleep(self.delay)
        raise BackingStoreError("connection reset")


def make_coordinator(store, buffer=None, submit_timeout=1.0) -> FlushCoordinator:
    return FlushCoordinator(
        buffer=buffer or AggregationBuffer(),
        resolver=RecordResolver(store, page_size=2, max_pages=10),
        store=store,
        record_type=RECORD_TYPE,
        key_field="post_id",
        counter_field="view_count",
        submit_timeout=submit_timeout,
    )


async def wait_for_state(coordinator: FlushCoordinator, state: FlushState):
    for _ in range(1000):
        if coordinator.state == state:
            return
        await asyncio.sleep(0)
    pytest.fail(f"coordinator never reached {state}")


class TestParseCount:
    """Test parse_count()."""

    @pytest.mark.parametrize("value, expected", [
        ("7", 7),
        (" 12 ", 12),
        ("0", 0),
        ("", 0),
        (None, 0),
        ("abc", 0),
        ("7.5", 0),
        ("-3", 0),
    ])
    def test_parse_count(self, value, expected):
        assert parse_count(value) == expected


class TestMergeCounts:
    """Test merge_counts()."""

    def test_adds_delta_to_stored_value(self):
        batch = FlushBatch(deltas={"a": 3})
        records = [Record(id="r1", fields={"post_id": "a", "view_count": "7"})]

        plan = merge_counts(batch, records, "post_id", "view_count")

        assert len(plan.writes) == 1
        assert plan.writes[0].record_id == "r1"
        assert plan.writes[0].new_total == 10
        assert plan.skipped_keys == []

    def test_non_numeric_stored_value_counts_as_zero(self):
        batch = FlushBatch(deltas={"a": 3})
        records = [Record(id="r1", fields={"post_id": "a", "view_count": "lots"})]

        plan = merge_counts(batch, records, "post_id", "view_count")

        assert plan.writes[0].new_total == 3

    def test_missing_counter_field_counts_as_zero(self):
        batch = FlushBatch(deltas={"a": 2})
        records = [Record(id="r1", fields={"post_id": "a"})]
        assert merge_counts(batch, records, "post_id", "view_count").writes[0].new_total == 2

    def test_unmatched_keys_are_skipped(self):
        batch = FlushBatch(deltas={"a": 1, "b": 2})
        records = [Record(id="r1", fields={"post_id": "a", "view_count": "0"})]

        plan = merge_counts(batch, records, "post_id", "view_count")

        assert [w.key for w in plan.writes] == ["a"]
        assert plan.skipped_keys == ["b"]


class TestFlushCycle:
    """Test flush() outcomes."""

    @pytest.mark.asyncio
    async def test_empty_flush_makes_no_store_calls(self):
        store = InMemoryRecordStore()
        coordinator = make_coordinator(store)

        result = await coordinator.flush()

        assert result.status == FlushStatus.EMPTY
        assert result.processed == 0
        assert store.list_calls == 0
        assert store.update_calls == 0
        assert coordinator.state == FlushState.IDLE

    @pytest.mark.asyncio
    async def test_end_to_end_known_and_unknown_posts(self):
        store = InMemoryRecordStore()
        record_a = add_post(store, "a", "10")
        buffer = AggregationBuffer()
        for _ in range(5):
            buffer.add("a")
        for _ in range(2):
            buffer.add("b")
        coordinator = make_coordinator(store, buffer)

        result = await coordinator.flush()

        assert result.status == FlushStatus.SUCCESS
        assert result.processed == 1
        assert result.skipped == 1
        assert result.skipped_keys == ["b"]
        assert result.dropped_increments == 2
        assert store.get_record(record_a).get_field("view_count") == "15"
        assert store.update_calls == 1
        assert len(buffer) == 0

    @pytest.mark.asyncio
    async def test_merge_uses_value_advanced_by_other_writers(self):
        store = InMemoryRecordStore()
        record_a = add_post(store, "a", "10")
        buffer = AggregationBuffer()
        coordinator = make_coordinator(store, buffer)

        buffer.add("a", 2)
        await coordinator.flush()
        store.add_record(RECORD_TYPE, {"post_id": "a", "view_count": "100"}, record_id=record_a)
        buffer.add("a", 1)
        await coordinator.flush()

        assert store.get_record(record_a).get_field("view_count") == "101"

    @pytest.mark.asyncio
    async def test_all_keys_unmatched_submits_nothing(self):
        store = InMemoryRecordStore()
        add_post(store, "a", "1")
        buffer = AggregationBuffer()
        buffer.add("zzz", 4)
        coordinator = make_coordinator(store, buffer)

        result = await coordinator.flush()

        assert result.status == FlushStatus.SUCCESS
        assert result.processed == 0
        assert result.skipped == 1
        assert store.update_calls == 0

    @pytest.mark.asyncio
    async def test_transport_failure_on_submit_drops_batch(self):
        store = InMemoryRecordStore()
        record_a = add_post(store, "a", "10")
        store.update_error = BackingStoreError("connection refused")
        buffer = AggregationBuffer()
        buffer.add("a", 3)
        coordinator = make_coordinator(store, buffer)

        result = await coordinator.flush()

        assert result.status == FlushStatus.FAILED
        assert result.dropped_increments == 3
        assert "connection refused" in result.message
        assert len(buffer) == 0
        assert store.get_record(record_a).get_field("view_count") == "10"
        assert coordinator.state == FlushState.IDLE

        # Next cycle starts from an empty buffer: the lost batch is not retried
        store.update_error = None
        assert (await coordinator.flush()).status == FlushStatus.EMPTY

    @pytest.mark.asyncio
    async def test_listing_failure_fails_cycle(self):
        store = InMemoryRecordStore()
        store.list_error = BackingStoreError("throttled")
        buffer = AggregationBuffer()
        buffer.add("a")
        coordinator = make_coordinator(store, buffer)

        result = await coordinator.flush()

        assert result.status == FlushStatus.FAILED
        assert store.update_calls == 0
        assert coordinator.stats()["cycles_failed"] == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_is_reported_not_raised(self):
        store = InMemoryRecordStore()
        add_post(store, "a", "1")
        store.update_error = RuntimeError("boom")
        buffer = AggregationBuffer()
        buffer.add("a")

        result = await make_coordinator(store, buffer).flush()

        assert result.status == FlushStatus.FAILED
        assert "boom" in result.message

    @pytest.mark.asyncio
    async def test_partial_sub_operation_failure_keeps_other_updates(self):
        store = InMemoryRecordStore()
        record_a = add_post(store, "a", "1")
        record_b = add_post(store, "b", "1")
        store.rejected_ids.add(record_b)
        buffer = AggregationBuffer()
        buffer.add("a", 2)
        buffer.add("b", 5)

        result = await make_coordinator(store, buffer).flush()

        assert result.status == FlushStatus.PARTIAL
        assert result.processed == 1
        assert result.errors == 1
        assert result.dropped_increments == 5
        assert store.get_record(record_a).get_field("view_count") == "3"
        assert store.get_record(record_b).get_field("view_count") == "1"

    @pytest.mark.asyncio
    async def test_submit_timeout_fails_cycle(self):
        store = BlockingStore()
        add_post(store, "a", "1")
        buffer = AggregationBuffer()
        buffer.add("a")
        coordinator = make_coordinator(store, buffer, submit_timeout=0.05)

        result = await coordinator.flush()

        assert result.status == FlushStatus.FAILED
        assert "timed out" in result.message
        assert coordinator.state == FlushState.IDLE

        store.release.set()
        await asyncio.sleep(0.01)


class TestReentrancy:
    """Test the guard against overlapping cycles."""

    @pytest.mark.asyncio
    async def test_trigger_during_submit_is_skipped_without_draining(self):
        store = BlockingStore()
        record_a = add_post(store, "a", "0")
        buffer = AggregationBuffer()
        buffer.add("a", 2)
        coordinator = make_coordinator(store, buffer)

        first = asyncio.create_task(coordinator.flush())
        await wait_for_state(coordinator, FlushState.SUBMITTING)

        buffer.add("a", 7)
        second = await coordinator.flush()

        assert second.status == FlushStatus.SKIPPED
        assert buffer.peek("a") == 7
        assert buffer.stats()["drain_count"] == 1

        store.release.set()
        first_result = await first

        assert first_result.status == FlushStatus.SUCCESS
        assert store.get_record(record_a).get_field("view_count") == "2"
        assert coordinator.stats()["triggers_skipped"] == 1

        third = await coordinator.flush()
        assert third.processed == 1
        assert store.get_record(record_a).get_field("view_count") == "9"

    @pytest.mark.asyncio
    async def test_concurrent_triggers_drain_once(self):
        store = BlockingStore()
        add_post(store, "a", "0")
        buffer = AggregationBuffer()
        buffer.add("a")
        coordinator = make_coordinator(store, buffer)

        tasks = [asyncio.create_task(coordinator.flush()) for _ in range(5)]
        await wait_for_state(coordinator, FlushState.SUBMITTING)
        store.release.set()
        results = await asyncio.gather(*tasks)

        statuses = sorted(result.status.value for result in results)
        assert statuses == ["skipped"] * 4 + ["success"]
        assert store.update_calls == 1


class TestCancellationAndLateRequests:
    """Test a cycle cancelled mid-way and an update outliving its cycle."""

    @pytest.mark.asyncio
    async def test_cancel_while_resolving_reports_dropped_batch(self, caplog):
        caplog.set_level(logging.WARNING)
        store = BlockingListStore()
        record_a = add_post(store, "a", "10")
        buffer = AggregationBuffer()
        buffer.add("a", 5)
        coordinator = make_coordinator(store, buffer)

        task = asyncio.create_task(coordinator.flush())
        await wait_for_state(coordinator, FlushState.RESOLVING)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert coordinator.state == FlushState.IDLE
        assert coordinator.last_result.status == FlushStatus.FAILED
        assert coordinator.last_result.dropped_increments == 5
        assert coordinator.stats()["cycles_failed"] == 1
        assert "Flush cancelled, dropped 5 increments" in caplog.text
        assert store.get_record(record_a).get_field("view_count") == "10"

    @pytest.mark.asyncio
    async def test_cancel_while_submitting_leaves_request_running(self, caplog):
        caplog.set_level(logging.WARNING)
        store = BlockingStore()
        record_a = add_post(store, "a", "10")
        buffer = AggregationBuffer()
        buffer.add("a", 2)
        coordinator = make_coordinator(store, buffer)

        task = asyncio.create_task(coordinator.flush())
        await wait_for_state(coordinator, FlushState.SUBMITTING)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert coordinator.inflight_submit is not None

        store.release.set()
        assert await coordinator.wait_for_inflight(1.0) is True
        await asyncio.sleep(0)

        assert coordinator.inflight_submit is None
        assert store.get_record(record_a).get_field("view_count") == "12"
        assert "completed after the flush gave up on it" in caplog.text

    @pytest.mark.asyncio
    async def test_late_update_failure_is_logged(self, caplog):
        caplog.set_level(logging.WARNING)
        store = SlowFailingStore(delay=0.1)
        add_post(store, "a", "1")
        buffer = AggregationBuffer()
        buffer.add("a")
        coordinator = make_coordinator(store, buffer, submit_timeout=0.01)

        result = await coordinator.flush()

        assert result.status == FlushStatus.FAILED
        assert "timed out" in result.message
        assert coordinator.inflight_submit is not None

        assert await coordinator.wait_for_inflight(1.0) is True
        await asyncio.sleep(0)

        assert coordinator.inflight_submit is None
        assert "Update request failed after the flush gave up on it: connection reset" in caplog.text

    @pytest.mark.asyncio
    async def test_wait_for_inflight_is_bounded(self):
        store = BlockingStore()
        add_post(store, "a", "1")
        buffer = AggregationBuffer()
        buffer.add("a")
        coordinator = make_coordinator(store, buffer, submit_timeout=0.01)

        await coordinator.flush()

        assert await coordinator.wait_for_inflight(0.01) is False

        store.release.set()
        assert await coordinator.wait_for_inflight(1.0) is True


@pytest.mark.asyncio
async def test_stats_report_last_result():
    store = InMemoryRecordStore()
    add_post(store, "a", "1")
    buffer = AggregationBuffer()
    coordinator = make_coordinator(store, buffer)
    assert coordinator.stats()["last_result"] is None

    buffer.add("a")
    await coordinator.flush()
    await coordinator.flush()

    stats = coordinator.stats()
    assert stats["state"] == "idle"
    assert stats["cycles_total"] == 1
    assert stats["last_result"]["status"] == "success"
    assert stats["last_result"]["processed"] == 1
