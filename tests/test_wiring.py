"""
Tests for backend selection, session wiring and log formatting.
"""

from __future__ import annotations

import logging

import pytest

from availability_coordinator.core.config import settings
from availability_coordinator.core.logging import ContextFormatter
from availability_coordinator.infrastructure.backend.http_backend import HttpBookingBackend
from availability_coordinator.infrastructure.backend.mock_backend import MockBookingBackend
from availability_coordinator.wiring import dependencies
from availability_coordinator.application.use_cases.booking_session import DrawerContext


@pytest.fixture(autouse=True)
def _fresh_backend():
    dependencies.get_backend.cache_clear()
    yield
    dependencies.get_backend.cache_clear()


def test_dev_env_uses_seeded_mock(monkeypatch):
    """ENV=dev always gets the in-memory backend, even with a base URL configured."""
    monkeypatch.setattr(settings, "ENV", "dev")
    monkeypatch.setattr(settings, "BOOKING_API_BASE_URL", "https://booking.test")

    backend = dependencies.get_backend()

    assert isinstance(backend, MockBookingBackend)
    assert backend.active_holds() == []


def test_missing_base_url_uses_mock(monkeypatch):
    """Without a base URL there is nothing to talk to but the mock."""
    monkeypatch.setattr(settings, "ENV", "production")
    monkeypatch.setattr(settings, "BOOKING_API_BASE_URL", None)

    assert isinstance(dependencies.get_backend(), MockBookingBackend)


def test_production_uses_http_backend(monkeypatch):
    """A configured base URL outside dev/local selects the HTTP adapter."""
    monkeypatch.setattr(settings, "ENV", "production")
    monkeypatch.setattr(settings, "BOOKING_API_BASE_URL", "https://booking.test")

    assert isinstance(dependencies.get_backend(), HttpBookingBackend)


@pytest.mark.asyncio
async def test_open_booking_session_on_demo_data(monkeypatch):
    """The wired session opens against the seeded demo professional."""
    monkeypatch.setattr(settings, "ENV", "local")
    session = dependencies.open_booking_session(
        DrawerContext(professional_id=dependencies.DEMO_PROFESSIONAL_ID, service_id="svc_demo")
    )

    view = await session.open()

    assert view.error is None
    assert len(view.summary.days) == 7
    assert view.primary_slots
    await session.close()


def test_context_formatter_appends_known_keys():
    """Known context keys are appended as key=value; empty ones are skipped."""
    formatter = ContextFormatter("%(levelname)s:%(name)s:%(message)s")
    record = logging.LogRecord("coord", logging.INFO, __file__, 1, "Hold live", None, None)
    record.hold_id = "hold_1"
    record.mode = "MOBILE"
    record.error = ""

    assert formatter.format(record) == "INFO:coord:Hold live | mode=MOBILE hold_id=hold_1"
