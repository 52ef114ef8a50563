"""
Pytest configuration and shared fixtures for the dispatch test suite.

This module provides:
- Store fixtures (in-memory SQLite with StaticPool, file-backed SQLite for races)
- API client fixture (FastAPI TestClient over an app built with that store)
- Payload builders for orders, subcontractors, slots and completions

An in-memory store is one shared connection: API tests must not hold a
session open while calling the client.
"""
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from fieldhub.config import Settings
from fieldhub.db import Store
from fieldhub.main import create_app


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: service-level tests against a session")
    config.addinivalue_line("markers", "api: HTTP tests through the FastAPI TestClient")
    config.addinivalue_line("markers", "concurrency: threaded claim races against a file-backed SQLite store")


# ============================================================================
# STORE FIXTURES
# ============================================================================

@pytest.fixture(scope="function")
def store() -> Generator[Store, None, None]:
    """In-memory SQLite store with all tables created."""
    store = Store("sqlite://")
    store.create_all()
    yield store
    store.dispose()


@pytest.fixture(scope="function")
def file_store(tmp_path) -> Generator[Store, None, None]:
    """File-backed SQLite store; each thread gets its own connection."""
    store = Store(f"sqlite:///{tmp_path / 'dispatch.db'}", busy_timeout_s=30)
    store.create_all()
    yield store
    store.dispose()


@pytest.fixture(scope="function")
def db(store) -> Generator[Session, None, None]:
    session = store.session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(scope="function")
def test_settings() -> Settings:
    return Settings(
        environment="test",
        database_url="sqlite://",
        auto_create_db=False,
        rate_limit_enabled=False,
        log_level="WARNING",
    )


@pytest.fixture(scope="function")
def client(store, test_settings) -> Generator[TestClient, None, None]:
    app = create_app(settings=test_settings, store=store)
    with TestClient(app) as test_client:
        yield test_client


# ============================================================================
# PAYLOAD BUILDERS
# ============================================================================

def _order_payload(**overrides) -> dict:
    payload = {
        "customer_name": "  Jane Doe  ",
        "customer_email": "Jane.Doe@Example.com",
        "customer_phone": "206-555-0100",
        "address": "1200 Pine St",
        "city": "Seattle",
        "location_lat": 47.6145,
        "location_lng": -122.327,
        "service_type": "Installation",
        "inventory_items": [{"name": "Router", "quantity": 1, "in_stock": True}],
        "estimated_duration": 90,
        "due_date": "2030-01-15",
    }
    payload.update(overrides)
    return payload


def _subcontractor_payload(**overrides) -> dict:
    payload = {
        "name": "QuickFix Installations",
        "email": "Info@QuickFix.com",
        "phone": "425-555-0102",
        "service_areas": [" Seattle ", "Renton"],
        "max_daily_jobs": 3,
        "rating": 4.5,
    }
    payload.update(overrides)
    return payload


# ids are positional-only so a case can override them through **overrides
def _slot_payload(order_id: int, /, **overrides) -> dict:
    payload = {
        "order_id": order_id,
        "slot_date": "2030-02-01",
        "slot_start_time": "09:00",
        "slot_end_time": "11:00",
    }
    payload.update(overrides)
    return payload


def _completion_payload(order_id: int, subcontractor_id: int, time_slot_id: int, /, **overrides) -> dict:
    payload = {
        "order_id": order_id,
        "subcontractor_id": subcontractor_id,
        "time_slot_id": time_slot_id,
        "completion_photos": ["https://cdn.fieldcrew.com/photos/1.jpg"],
        "signature_data": "data:image/png;base64,iVBORw0KGgo=",
        "gps_lat": 47.6145,
        "gps_lng": -122.327,
        "completion_notes": "Installed and tested",
        "customer_satisfaction": 5,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def order_payload():
    return _order_payload


@pytest.fixture
def subcontractor_payload():
    return _subcontractor_payload


@pytest.fixture
def slot_payload():
    return _slot_payload


@pytest.fixture
def completion_payload():
    return _completion_payload


# ============================================================================
# API HELPERS
# ============================================================================

@pytest.fixture
def make_order(client):
    def _make(**overrides) -> dict:
        resp = client.post("/orders", json=_order_payload(**overrides))
        assert resp.status_code == 201, resp.text
        return resp.json()
    return _make


@pytest.fixture
def make_subcontractor(client):
    counter = {"n": 0}

    def _make(**overrides) -> dict:
        counter["n"] += 1
        overrides.setdefault("email", f"crew{counter['n']}@fieldcrew.com")
        resp = client.post("/subcontractors", json=_subcontractor_payload(**overrides))
        assert resp.status_code == 201, resp.text
        return resp.json()
    return _make


@pytest.fixture
def make_slot(client):
    def _make(order_id: int, **overrides) -> dict:
        resp = client.post("/time-slots", json=_slot_payload(order_id, **overrides))
        assert resp.status_code == 201, resp.text
        return resp.json()
    return _make


@pytest.fixture
def claim(client):
    def _claim(slot_id: int, subcontractor_id):
        return client.post(f"/time-slots/{slot_id}/claim", json={"subcontractor_id": subcontractor_id})
    return _claim
