"""Periodic resync of the local store from the calendar-of-record.

Staff create and edit appointments directly in the calendar.  Every
``SYNC_INTERVAL_SECONDS`` this job lists the next 60 days of events,
parses ``"<name> <phone>"`` out of each title, and upserts the matching
Identity and Booking rows so lookups by phone can find them.

Only one run executes at a time; a trigger that arrives while a run is in
progress is skipped, not queued.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from appointment_agent.config import SYNC_INTERVAL_SECONDS
from appointment_agent.scheduling.time_grid import now_local
from appointment_agent.services.calendar_client import CalendarEvent, GoogleCalendarClient
from appointment_agent.services.stores import BookingStore, IdentityStore

logger = logging.getLogger(__name__)

SYNC_WINDOW_DAYS = 60

# "Maria Silva 13999999999", "Maria - 5513999999999"
SUMMARY_PATTERN = re.compile(r"^\s*(.+?)[\s\-]+(\d{8,})\s*$")


def parse_summary(summary: str | None) -> tuple[str, str] | None:
    """Return ``(name, phone)`` from an appointment title, or ``None``."""
    if not summary:
        return None
    match = SUMMARY_PATTERN.match(summary)
    if not match:
        return None
    name = match.group(1).strip(" -")
    if not name:
        return None
    return name, match.group(2)


@dataclass
class SyncReport:
    fetched: int = 0
    synced: int = 0


class BackgroundReconciler:
    def __init__(
        self,
        calendar: GoogleCalendarClient,
        identities: IdentityStore,
        bookings: BookingStore,
        *,
        interval_seconds: int = SYNC_INTERVAL_SECONDS,
        window_days: int = SYNC_WINDOW_DAYS,
        clock: Callable[[], datetime] = now_local,
    ) -> None:
        self._calendar = calendar
        self._identities = identities
        self._bookings = bookings
        self._interval = interval_seconds
        self._window = timedelta(days=window_days)
        self._clock = clock

        self._running = False
        self._guard = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    def run_once(self) -> SyncReport | None:
        """Run one full resync.  Returns ``None`` if a run was already in progress.

        Raises:
            CalendarAPIError: the calendar could not be listed.
        """
        with self._guard:
            if self._running:
                logger.info("Sync already in progress, skipping.")
                return None
            self._running = True

        try:
            now = self._clock()
            events = self._calendar.list_events(now, now + self._window)
            report = SyncReport(fetched=len(events))
            for event in events:
                if self._sync_event(event):
                    report.synced += 1
            logger.info("Sync finished: %d/%d events linked", report.synced, report.fetched)
            return report
        finally:
            self._running = False

    def _sync_event(self, event: CalendarEvent) -> bool:
        if not event.id or event.is_cancelled or event.start is None:
            return False
        parsed = parse_summary(event.summary)
        if parsed is None:
            return False
        name, phone = parsed
        self._identities.upsert(phone, name)
        self._bookings.upsert(event.id, phone, event.start, event.description or event.summary)
        return True

    # ── Background loop ──────────────────────────────────────────────

    def start(self) -> None:
        """Run immediately, then every ``interval_seconds`` on a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()

        def _loop():
            while not self._stop.is_set():
                try:
                    self.run_once()
                except Exception:
                    logger.exception("Sync run failed")
                self._stop.wait(self._interval)

        self._thread = threading.Thread(target=_loop, daemon=True, name="calendar-sync")
        self._thread.start()
        logger.info("Calendar sync loop started (interval=%ds)", self._interval)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Calendar sync loop stopped")
