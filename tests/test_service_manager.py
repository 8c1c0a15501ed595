"""
Tests for application lifecycle wiring and the periodic flush scheduler.
"""

import asyncio

import pytest

from conftest import add_post
from view_counter.core import service_manager
from view_counter.core.setting import settings as default_settings
from view_counter.services.flush_coordinator import FlushState, FlushStatus
from view_counter.services.flush_scheduler import FlushScheduler
from view_counter.store.memory import InMemoryRecordStore


class HeldListingStore(InMemoryRecordStore):
    """Holds list_records() until released."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def list_records(self, record_type, page_size, cursor=None):
        await self.release.wait()
        return await super().list_records(record_type, page_size, cursor)


class SlowUpdateStore(InMemoryRecordStore):
    """Answers update_records() late and records the order of events."""

    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay
        self.events: list[str] = []

    async def update_records(self, updates):
        await asyncio.sleep(self.delay)
        outcomes = await super().update_records(updates)
        self.events.append("updated")
        return outcomes

    async def close(self) -> None:
        self.events.append("closed")


async def wait_for_state(coordinator, state: FlushState):
    for _ in range(1000):
        if coordinator.state == state:
            return
        await asyncio.sleep(0.001)
    pytest.fail(f"coordinator never reached {state}")


class TestServiceManager:
    """Test initialize_services() / shutdown_services()."""

    @pytest.mark.asyncio
    async def test_buffer_is_shared_by_service_and_coordinator(self, store, test_settings):
        service = await service_manager.initialize_services(store=store, config=test_settings)
        try:
            assert service_manager.get_view_count_service() is service
            assert service.coordinator.buffer is service.buffer
            assert service.resolver.page_size == test_settings.PAGE_SIZE
        finally:
            await service_manager.shutdown_services(config=test_settings)

    @pytest.mark.asyncio
    async def test_shutdown_flushes_pending_views(self, store, test_settings):
        record_id = add_post(store, "a", "1")
        service = await service_manager.initialize_services(store=store, config=test_settings)
        service.increment("a")

        await service_manager.shutdown_services(config=test_settings)

        assert store.get_record(record_id).get_field("view_count") == "2"
        with pytest.raises(RuntimeError):
            service_manager.get_view_count_service()

    @pytest.mark.asyncio
    async def test_shutdown_without_final_flush(self, store, test_settings):
        test_settings.FLUSH_ON_SHUTDOWN = False
        record_id = add_post(store, "a", "1")
        service = await service_manager.initialize_services(store=store, config=test_settings)
        service.increment("a")

        await service_manager.shutdown_services(config=test_settings)

        assert store.get_record(record_id).get_field("view_count") == "1"

    @pytest.mark.asyncio
    async def test_scheduler_started_when_interval_set(self, store, test_settings):
        test_settings.FLUSH_INTERVAL_SECONDS = 30
        await service_manager.initialize_services(store=store, config=test_settings)
        try:
            assert service_manager._scheduler is not None
            assert service_manager._scheduler.running
        finally:
            await service_manager.shutdown_services(config=test_settings)
        assert service_manager._scheduler is None

    @pytest.mark.asyncio
    async def test_active_settings_follow_initialized_config(self, store, test_settings):
        assert service_manager.get_active_settings() is default_settings

        await service_manager.initialize_services(store=store, config=test_settings)
        try:
            assert service_manager.get_active_settings() is test_settings
        finally:
            await service_manager.shutdown_services()

        assert service_manager.get_active_settings() is default_settings

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_late_update_before_closing_store(self, test_settings):
        test_settings.FLUSH_SUBMIT_TIMEOUT_SECONDS = 0.01
        test_settings.FLUSH_ON_SHUTDOWN = False
        test_settings.SHUTDOWN_TIMEOUT_SECONDS = 1.0
        store = SlowUpdateStore(delay=0.1)
        record_id = add_post(store, "a", "1")
        service = await service_manager.initialize_services(store=store, config=test_settings)
        service.increment("a")

        result = await service.flush()
        assert result.status == FlushStatus.FAILED

        await service_manager.shutdown_services()

        assert store.events == ["updated", "closed"]
        assert store.get_record(record_id).get_field("view_count") == "2"


class TestFlushScheduler:
    """Test the periodic trigger."""

    @pytest.mark.asyncio
    async def test_flushes_on_interval(self, service, store):
        record_id = add_post(store, "a", "0")
        service.increment("a")
        scheduler = FlushScheduler(service.coordinator, interval=0.01)

        scheduler.start()
        for _ in range(100):
            if store.update_calls:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

        assert store.get_record(record_id).get_field("view_count") == "1"
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self, service):
        scheduler = FlushScheduler(service.coordinator, interval=1)
        await scheduler.stop()
        assert not scheduler.running

    def test_interval_must_be_positive(self, service):
        with pytest.raises(ValueError):
            FlushScheduler(service.coordinator, interval=0)

    @pytest.mark.asyncio
    async def test_stop_lets_running_cycle_finish(self, test_settings):
        store = HeldListingStore()
        service = service_manager.build_view_count_service(store, test_settings)
        record_id = add_post(store, "a", "10")
        for _ in range(5):
            service.increment("a")
        scheduler = FlushScheduler(service.coordinator, interval=0.01)

        scheduler.start()
        await wait_for_state(service.coordinator, FlushState.RESOLVING)
        stopping = asyncio.create_task(scheduler.stop())
        await asyncio.sleep(0.02)
        assert not stopping.done()

        store.release.set()
        await stopping

        assert not scheduler.running
        assert store.get_record(record_id).get_field("view_count") == "15"
        assert service.coordinator.last_result.status == FlushStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_stop_cancels_cycle_after_timeout(self, test_settings, caplog):
        store = HeldListingStore()
        service = service_manager.build_view_count_service(store, test_settings)
        add_post(store, "a", "10")
        for _ in range(5):
            service.increment("a")
        scheduler = FlushScheduler(service.coordinator, interval=0.01, stop_timeout=0.01)

        scheduler.start()
        await wait_for_state(service.coordinator, FlushState.RESOLVING)
        await scheduler.stop()

        assert not scheduler.running
        last = service.coordinator.last_result
        assert last.status == FlushStatus.FAILED
        assert last.dropped_increments == 5
        assert "cancelling it" in caplog.text
