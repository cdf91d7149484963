"""Free-slot computation against the calendar-of-record.

``slots_for_day`` answers "what can we offer on this date?", and
``find_next_available`` pages forward from the compliance floor to the
first day that has an acceptable offer.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta

from appointment_agent.scheduling.time_grid import (
    CLINIC_TZ,
    classify_period,
    day_slots,
    minimum_schedulable_date,
    now_local,
    overlaps,
    start_of_day,
)
from appointment_agent.services.calendar_client import CalendarEvent, GoogleCalendarClient

logger = logging.getLogger(__name__)

SEARCH_WINDOW_DAYS = 14


@dataclass
class DayAvailability:
    """The first day that satisfied a search, with its offerable slot starts."""

    day: date
    slots: list[datetime] = field(default_factory=list)


class AvailabilityEngine:
    def __init__(
        self,
        calendar: GoogleCalendarClient,
        *,
        clock: Callable[[], datetime] = now_local,
        search_days: int = SEARCH_WINDOW_DAYS,
    ) -> None:
        self._calendar = calendar
        self._clock = clock
        self._search_days = search_days

    def minimum_date(self) -> datetime:
        return minimum_schedulable_date(self._clock())

    def slots_for_day(self, day: date, period: str | None = None) -> list[datetime]:
        """Ordered free slot starts on *day*, optionally limited to a period.

        An empty list means no availability, not an error.

        Raises:
            CalendarAPIError: the calendar could not be read.
        """
        slots = [slot for slot in day_slots(day) if classify_period(slot, period)]
        if not slots:
            return []

        day_start = start_of_day(day)
        events = self._calendar.list_events(day_start, day_start + timedelta(days=1))

        blocker = _full_day_blocker(events, day)
        if blocker is not None:
            logger.info("Day %s blocked by all-day event %r", day.isoformat(), blocker.summary)
            return []

        timed = [event for event in events if not event.all_day]
        return [slot.start for slot in slots if not any(overlaps(slot, event) for event in timed)]

    def find_next_available(
        self,
        period: str | None = None,
        after_date: date | None = None,
        preferred_time: time | None = None,
    ) -> DayAvailability | None:
        """First day (within the search window) with an acceptable offer.

        The search never starts before the minimum schedulable date.  With
        *after_date* it starts the day after it when that is later, which is
        how callers ask for "the next page".  With *preferred_time*, a day
        only qualifies when it has a slot in that hour, and those slots are
        listed first.
        """
        current = self.minimum_date().date()
        if after_date is not None:
            next_day = after_date + timedelta(days=1)
            if next_day > current:
                current = next_day

        for _ in range(self._search_days):
            slots = self.slots_for_day(current, period)
            if slots:
                if preferred_time is None:
                    return DayAvailability(day=current, slots=slots)

                if any(s.hour == preferred_time.hour for s in slots):
                    return DayAvailability(day=current, slots=prefer_hour(slots, preferred_time.hour))
                logger.debug("Day %s has no slot at %02dh, skipping", current.isoformat(), preferred_time.hour)

            current = current + timedelta(days=1)

        logger.info(
            "No availability found in %d days (period=%s, preferred=%s)",
            self._search_days, period, preferred_time,
        )
        return None

    def is_slot_free(self, start: datetime) -> bool:
        """True if *start* is exactly one of the free slots of its day."""
        local = start.astimezone(CLINIC_TZ)
        return local in self.slots_for_day(local.date())


def prefer_hour(slots: list[datetime], hour: int) -> list[datetime]:
    """Stable partition: slots in *hour* first, the rest after, order kept."""
    return [s for s in slots if s.hour == hour] + [s for s in slots if s.hour != hour]


def _full_day_blocker(events: list[CalendarEvent], day: date) -> CalendarEvent | None:
    for event in events:
        if event.covers_day(day) and not event.is_transparent:
            return event
    return None
