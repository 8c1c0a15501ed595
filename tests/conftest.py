"""
Shared fixtures for the view counter test suite.

Every test gets a fresh in-memory record store and a fresh buffer, wired
the same way the application wires them on startup.
"""

import pytest
from fastapi.testclient import TestClient

from view_counter.core.rate_limit import limiter
from view_counter.core.service_manager import (
    build_view_count_service,
    get_active_settings,
    get_view_count_service,
)
from view_counter.core.setting import Settings
from view_counter.main import app
from view_counter.store.memory import InMemoryRecordStore

RECORD_TYPE = "custom_post_views"


@pytest.fixture
def test_settings() -> Settings:
    """Settings with the scheduler disabled and small pages."""
    return Settings(
        STORE_BACKEND="memory",
        PAGE_SIZE=2,
        MAX_PAGES=10,
        FLUSH_INTERVAL_SECONDS=0,
        FLUSH_SUBMIT_TIMEOUT_SECONDS=1.0,
        FLUSH_SECRET=None,
        INCLUDE_PENDING_IN_READS=True,
    )


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def service(store, test_settings):
    return build_view_count_service(store, test_settings)


@pytest.fixture
def client(service, test_settings) -> TestClient:
    """
    TestClient routed to the fixture service and settings.

    Startup events are not run (no context manager), so no scheduler starts.
    """
    limiter.reset()
    app.dependency_overrides[get_view_count_service] = lambda: service
    app.dependency_overrides[get_active_settings] = lambda: test_settings
    yield TestClient(app)
    app.dependency_overrides.clear()


def add_post(store: InMemoryRecordStore, post_id: str, view_count, **extra) -> str:
    """Create a counter record and return its id."""
    fields = {"post_id": post_id, "view_count": view_count, **extra}
    return store.add_record(RECORD_TYPE, fields).id
