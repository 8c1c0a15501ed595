"""
View Count Service Manager

This module builds and holds the view counting components of this process.
They are created once on application startup and shared across requests.

Design:
- One aggregation buffer per process, handed explicitly to the service
  (writer) and the flush coordinator (drainer)
- Each instance flushes its own buffer (enables horizontal scaling)
- Shutdown stops the scheduler and makes one best-effort final flush
"""

import logging
from typing import Optional

from view_counter.core.setting import Settings, settings as default_settings
from view_counter.services.aggregation_buffer import AggregationBuffer
from view_counter.services.flush_coordinator import FlushCoordinator
from view_counter.services.flush_scheduler import FlushScheduler
from view_counter.services.record_resolver import RecordResolver
from view_counter.services.view_count_service import ViewCountService
from view_counter.store import RecordStore, get_record_store

logger = logging.getLogger(__name__)

# Global instances (initialized on startup)
_service: Optional[ViewCountService] = None
_store: Optional[RecordStore] = None
_scheduler: Optional[FlushScheduler] = None
_config: Optional[Settings] = None


def build_view_count_service(
    store: RecordStore,
    config: Optional[Settings] = None,
    buffer: Optional[AggregationBuffer] = None
) -> ViewCountService:
    """
    Wire buffer, resolver, coordinator and service around a record store.

    Args:
        store: Backing store
        config: Settings to read layout and limits from
        buffer: Existing buffer to reuse (a fresh one when omitted)

    Returns:
        ViewCountService sharing one buffer with its flush coordinator
    """
    config = config or default_settings
    buffer = buffer or AggregationBuffer()
    resolver = RecordResolver(store, page_size=config.PAGE_SIZE, max_pages=config.MAX_PAGES)
    coordinator = FlushCoordinator(
        buffer=buffer,
        resolver=resolver,
        store=store,
        record_type=config.METAOBJECT_TYPE,
        key_field=config.KEY_FIELD,
        counter_field=config.COUNTER_FIELD,
        submit_timeout=config.FLUSH_SUBMIT_TIMEOUT_SECONDS,
    )
    return ViewCountService(
        buffer=buffer,
        resolver=resolver,
        coordinator=coordinator,
        record_type=config.METAOBJECT_TYPE,
        key_field=config.KEY_FIELD,
        counter_field=config.COUNTER_FIELD,
        include_pending=config.INCLUDE_PENDING_IN_READS,
    )


def get_view_count_service() -> ViewCountService:
    """
    Get the process-wide view count service.

    Used as a FastAPI dependency; tests override it.

    Raises:
        RuntimeError: If called before initialize_services()
    """
    if _service is None:
        raise RuntimeError("View count service is not initialized")
    return _service


def get_active_settings() -> Settings:
    """
    Get the settings the running services were built with.

    Falls back to the module settings before initialize_services().
    Used as a FastAPI dependency; tests override it.
    """
    return _config or default_settings


async def initialize_services(
    store: Optional[RecordStore] = None,
    config: Optional[Settings] = None
) -> ViewCountService:
    """
    Build the view counting components and start the flush scheduler.

    Args:
        store: Record store to use (built from settings when omitted)
        config: Settings (module settings when omitted)
    """
    global _service, _store, _scheduler, _config

    if _service is not None:
        logger.warning("View count service already initialized")
        return _service

    config = config or default_settings
    _config = config
    _store = store or get_record_store(config)
    _service = build_view_count_service(_store, config)

    if config.FLUSH_INTERVAL_SECONDS > 0:
        _scheduler = FlushScheduler(
            _service.coordinator,
            config.FLUSH_INTERVAL_SECONDS,
            stop_timeout=config.SHUTDOWN_TIMEOUT_SECONDS,
        )
        _scheduler.start()
    else:
        logger.info("Flush scheduler disabled (FLUSH_INTERVAL_SECONDS=0)")

    logger.info(
        f"View count service initialized: "
        f"backend={_store.get_backend_name()}, "
        f"type={config.METAOBJECT_TYPE}, "
        f"flush_interval={config.FLUSH_INTERVAL_SECONDS}s"
    )
    return _service


async def shutdown_services(config: Optional[Settings] = None) -> None:
    """Stop the scheduler, flush what is left and close the store."""
    global _service, _store, _scheduler, _config

    config = config or _config or default_settings

    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None

    if _service is not None and config.FLUSH_ON_SHUTDOWN:
        result = await _service.flush()
        logger.info(f"Final flush on shutdown: {result.status.value} ({result.message})")

    if _service is not None:
        # An update the flush stopped waiting for may still be using the store client
        settled = await _service.coordinator.wait_for_inflight(config.SHUTDOWN_TIMEOUT_SECONDS)
        if not settled:
            logger.warning(
                f"Update request still running after {config.SHUTDOWN_TIMEOUT_SECONDS}s; "
                f"closing the store anyway"
            )

    if _store is not None:
        try:
            await _store.close()
        except Exception as e:
            logger.warning(f"Failed to close record store: {e}")

    _service = None
    _store = None
    _config = None
