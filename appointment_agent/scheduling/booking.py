"""Create new appointments in the calendar and link them locally."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from appointment_agent.scheduling.availability import AvailabilityEngine
from appointment_agent.scheduling.phone import display_phone, normalize_phone
from appointment_agent.scheduling.time_grid import CLINIC_TZ, SLOT_DURATION, minimum_schedulable_date, now_local
from appointment_agent.services.calendar_client import GoogleCalendarClient
from appointment_agent.services.stores import BookingStore, IdentityStore

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_NAME = "Client"


class BookingStatus(str, Enum):
    BOOKED = "booked"
    MISSING_PHONE = "missing_phone"
    TOO_EARLY = "too_early"
    SLOT_TAKEN = "slot_taken"


@dataclass
class BookingResult:
    status: BookingStatus
    event_id: str | None = None
    start: datetime | None = None
    minimum_date: datetime | None = None


class BookingManager:
    def __init__(
        self,
        calendar: GoogleCalendarClient,
        bookings: BookingStore,
        identities: IdentityStore,
        *,
        availability: AvailabilityEngine | None = None,
        clock: Callable[[], datetime] = now_local,
    ) -> None:
        self._calendar = calendar
        self._bookings = bookings
        self._identities = identities
        self._availability = availability or AvailabilityEngine(calendar, clock=clock)
        self._clock = clock

    def schedule(self, name: str, phone: str, start: datetime, reason: str = "") -> BookingResult:
        """Book the slot at *start* for *phone*.

        The calendar event is created first; the local row is only written
        once the calendar has accepted it.

        Raises:
            CalendarAPIError: the calendar could not be read or written.
        """
        phone = normalize_phone(phone)
        if not phone:
            return BookingResult(BookingStatus.MISSING_PHONE)

        if start.tzinfo is None:
            start = start.replace(tzinfo=CLINIC_TZ)
        start = start.astimezone(CLINIC_TZ)

        floor = minimum_schedulable_date(self._clock())
        if start < floor:
            return BookingResult(BookingStatus.TOO_EARLY, minimum_date=floor)

        if not self._availability.is_slot_free(start):
            logger.info("Slot %s is not free; refusing to double-book", start.isoformat())
            return BookingResult(BookingStatus.SLOT_TAKEN, start=start)

        name = (name or "").strip() or DEFAULT_CLIENT_NAME
        self._identities.upsert(phone, name)

        event = self._calendar.create_event(
            summary=f"{name} {display_phone(phone)}",
            description=reason or "",
            start=start,
            end=start + SLOT_DURATION,
        )
        if event.id:
            self._bookings.upsert(event.id, phone, start, reason or "")
        logger.info("Booked %s for %s at %s", event.id, phone, start.isoformat())
        return BookingResult(BookingStatus.BOOKED, event_id=event.id, start=start)
