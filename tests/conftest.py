"""Shared test fixtures for the appointment agent test suite."""

from __future__ import annotations

import itertools
import os
from datetime import date, datetime, timedelta
from unittest.mock import MagicMock

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("GOOGLE_CALENDAR_TOKEN", "test-google-token-456")
    os.environ.setdefault("DATABASE_URL", "sqlite://")
    os.environ.setdefault("SYNC_ENABLED", "false")
    os.environ.setdefault("METRICS_ENABLED", "false")


# Monday.  Two business days later is Wednesday 2026-10-21.
NOW_ISO = "2026-10-19T10:00:00"


@pytest.fixture
def now():
    from appointment_agent.scheduling.time_grid import CLINIC_TZ

    return datetime.fromisoformat(NOW_ISO).replace(tzinfo=CLINIC_TZ)


@pytest.fixture
def clock(now):
    return lambda: now


@pytest.fixture
def database():
    """A fresh in-memory SQLite database with all tables created."""
    from appointment_agent.services.database import Database

    db = Database("sqlite://")
    db.create_all()
    yield db
    db.engine.dispose()


@pytest.fixture
def identities(database):
    from appointment_agent.services.stores import IdentityStore

    return IdentityStore(database)


@pytest.fixture
def bookings(database):
    from appointment_agent.services.stores import BookingStore

    return BookingStore(database)


@pytest.fixture
def transcript(database):
    from appointment_agent.services.stores import TranscriptStore

    return TranscriptStore(database)


class FakeCalendar:
    """In-memory stand-in for ``GoogleCalendarClient``.

    Keeps events in a dict and records every call so tests can assert which
    upstream operations happened.
    """

    def __init__(self):
        self.events = {}
        self.calls = []
        self._ids = itertools.count(1)

    # ── Arrange helpers ──────────────────────────────────────────────

    def add_timed(self, start, minutes=15, summary="Busy", description="", **kwargs):
        from appointment_agent.services.calendar_client import CalendarEvent

        event_id = kwargs.pop("id", None) or f"evt{next(self._ids):04d}"
        event = CalendarEvent(
            id=event_id,
            summary=summary,
            description=description,
            start=start,
            end=start + timedelta(minutes=minutes),
            **kwargs,
        )
        self.events[event_id] = event
        return event

    def add_all_day(self, day: date, summary="Holiday", **kwargs):
        from appointment_agent.scheduling.time_grid import start_of_day
        from appointment_agent.services.calendar_client import CalendarEvent

        event_id = kwargs.pop("id", None) or f"evt{next(self._ids):04d}"
        event = CalendarEvent(
            id=event_id,
            summary=summary,
            start=start_of_day(day),
            end=start_of_day(day + timedelta(days=1)),
            all_day=True,
            **kwargs,
        )
        self.events[event_id] = event
        return event

    def call_names(self):
        return [name for name, _ in self.calls]

    # ── Gateway API ──────────────────────────────────────────────────

    def list_events(self, start, end):
        self.calls.append(("list_events", (start, end)))
        found = [
            e for e in self.events.values()
            if not e.is_cancelled and e.start < end and start < e.end
        ]
        return sorted(found, key=lambda e: e.start)

    def get_event(self, event_id):
        self.calls.append(("get_event", event_id))
        return self.events.get(event_id)

    def create_event(self, *, summary, start, end, description=""):
        self.calls.append(("create_event", summary))
        return self.add_timed(start, int((end - start).total_seconds() // 60), summary, description)

    def patch_event_time(self, event_id, start, end):
        from appointment_agent.services.calendar_client import EventNotFoundError

        self.calls.append(("patch_event_time", event_id))
        event = self.events.get(event_id)
        if event is None or event.is_cancelled:
            raise EventNotFoundError("Event not found (404)", status_code=404)
        event.start, event.end = start, end
        return event

    def delete_event(self, event_id):
        self.calls.append(("delete_event", event_id))
        self.events.pop(event_id, None)
        return True


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def mock_google_response():
    """Factory fixture for creating mock Google Calendar API responses."""

    def _make(data: dict | None, status_code: int = 200):
        mock = MagicMock()
        mock.status_code = status_code
        mock.json.return_value = data
        mock.content = b"" if data is None else b"{...}"
        mock.text = str(data)
        return mock

    return _make
