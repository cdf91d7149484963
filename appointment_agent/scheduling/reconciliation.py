"""Resolve, verify and self-heal "the user's appointment" before acting on it.

The local Booking Store is only a cache.  Staff move and delete events
directly in the calendar, so every cancel/reschedule/lookup runs through
an explicit state machine:

    RESOLVE_TARGET → VERIFY_UPSTREAM ─┬─ fresh ──────────────→ APPLY → DONE
                                      └─ stale → RELOCATE ──→ APPLY → DONE

* **RESOLVE_TARGET** — trust a caller-supplied event id only if it looks
  like a real id *and* is known locally; otherwise look the phone up in
  the Booking Store, then directly in the calendar.
* **VERIFY_UPSTREAM** — the event must exist upstream and not be cancelled.
* **RELOCATE** — purge the stale row and adopt the phone's active event
  from the calendar, if there is one.
* **APPLY** — the operation itself (cancel, reschedule, or plain lookup).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError

from appointment_agent.scheduling.phone import normalize_phone, phones_match, text_matches_phone
from appointment_agent.scheduling.time_grid import SLOT_DURATION, minimum_schedulable_date, now_local
from appointment_agent.services.calendar_client import CalendarEvent, EventNotFoundError, GoogleCalendarClient
from appointment_agent.services.stores import BookingStore

logger = logging.getLogger(__name__)

LOOKAHEAD_DAYS = 60
MIN_EVENT_ID_LENGTH = 5


class ReconcileState(Enum):
    RESOLVE_TARGET = "resolve_target"
    VERIFY_UPSTREAM = "verify_upstream"
    RELOCATE = "relocate"
    APPLY = "apply"
    DONE = "done"


class Outcome(str, Enum):
    FOUND = "found"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    NOT_FOUND = "not_found"
    NO_ACTIVE_BOOKING = "no_active_booking"
    TOO_EARLY = "too_early"


@dataclass(frozen=True)
class BookingRef:
    event_id: str
    phone: str
    start: datetime | None
    description: str = ""


@dataclass
class ReconcileResult:
    outcome: Outcome
    booking: BookingRef | None = None
    minimum_date: datetime | None = None
    healed: bool = False


def is_plausible_event_id(value: str | None) -> bool:
    """Reject strings that look like a date/time the model made up.

    Calendar ids are opaque alphanumerics; whitespace, commas, colons or
    several hyphens (``2026-10-20``) mean we were handed something else.
    """
    if not value:
        return False
    return not (
        any(ch.isspace() for ch in value)
        or "," in value
        or ":" in value
        or value.count("-") > 1
        or len(value) < MIN_EVENT_ID_LENGTH
    )


class ReconciliationEngine:
    def __init__(
        self,
        calendar: GoogleCalendarClient,
        bookings: BookingStore,
        *,
        clock: Callable[[], datetime] = now_local,
        lookahead_days: int = LOOKAHEAD_DAYS,
    ) -> None:
        self._calendar = calendar
        self._bookings = bookings
        self._clock = clock
        self._lookahead = timedelta(days=lookahead_days)

    # ── Operations ───────────────────────────────────────────────────

    def locate(self, phone: str, event_id: str | None = None) -> ReconcileResult:
        """The phone's next active booking, verified against the calendar."""
        return self._run(phone, event_id, lambda target: ReconcileResult(Outcome.FOUND, booking=target))

    def cancel(self, phone: str, event_id: str | None = None) -> ReconcileResult:
        """Cancel upstream first, then forget the booking locally.

        Raises:
            CalendarAPIError: the calendar could not be reached; nothing was
                deleted locally.
        """

        def apply(target: BookingRef) -> ReconcileResult:
            self._calendar.delete_event(target.event_id)
            self._bookings.delete(target.event_id)
            logger.info("Cancelled booking %s for %s", target.event_id, target.phone)
            return ReconcileResult(Outcome.CANCELLED, booking=target)

        return self._run(phone, event_id, apply)

    def reschedule(self, phone: str, new_start: datetime, event_id: str | None = None) -> ReconcileResult:
        """Move the booking to *new_start*.

        The compliance floor is checked before any calendar call.  After a
        successful upstream patch the local row is updated best-effort; the
        background reconciler repairs it if that fails.
        """
        floor = minimum_schedulable_date(self._clock())
        if new_start < floor:
            logger.info("Reschedule to %s rejected: before %s", new_start.isoformat(), floor.date())
            return ReconcileResult(Outcome.TOO_EARLY, minimum_date=floor)

        new_end = new_start + SLOT_DURATION

        def apply(target: BookingRef) -> ReconcileResult:
            try:
                self._calendar.patch_event_time(target.event_id, new_start, new_end)
            except EventNotFoundError:
                logger.warning("Event %s vanished before it could be moved", target.event_id)
                self._bookings.delete(target.event_id)
                return ReconcileResult(Outcome.NO_ACTIVE_BOOKING)

            try:
                self._bookings.update_start(target.event_id, new_start)
            except SQLAlchemyError:
                logger.exception(
                    "Event %s moved upstream but the local row could not be updated", target.event_id,
                )
            logger.info("Rescheduled booking %s to %s", target.event_id, new_start.isoformat())
            return ReconcileResult(Outcome.RESCHEDULED, booking=replace(target, start=new_start))

        return self._run(phone, event_id, apply)

    # ── State machine ────────────────────────────────────────────────

    def _run(
        self,
        phone: str,
        event_id: str | None,
        apply: Callable[[BookingRef], ReconcileResult],
    ) -> ReconcileResult:
        phone = normalize_phone(phone)
        state = ReconcileState.RESOLVE_TARGET
        target: BookingRef | None = None
        healed = False
        result = ReconcileResult(Outcome.NOT_FOUND)

        while state is not ReconcileState.DONE:
            logger.debug("Reconcile phone=%s state=%s target=%s", phone, state.value, target)

            if state is ReconcileState.RESOLVE_TARGET:
                target = self._resolve_target(phone, event_id)
                if target is None:
                    logger.info("No booking could be resolved for phone %s", phone)
                    result = ReconcileResult(Outcome.NOT_FOUND)
                    state = ReconcileState.DONE
                else:
                    state = ReconcileState.VERIFY_UPSTREAM

            elif state is ReconcileState.VERIFY_UPSTREAM:
                upstream = self._calendar.get_event(target.event_id)
                if upstream is None or upstream.is_cancelled:
                    logger.info("Booking %s is stale upstream", target.event_id)
                    state = ReconcileState.RELOCATE
                else:
                    target = replace(target, start=upstream.start or target.start)
                    state = ReconcileState.APPLY

            elif state is ReconcileState.RELOCATE:
                self._bookings.delete(target.event_id)
                replacement = self._find_upstream(phone, exclude=target.event_id)
                if replacement is None:
                    result = ReconcileResult(Outcome.NO_ACTIVE_BOOKING)
                    state = ReconcileState.DONE
                else:
                    logger.info("Switching target %s → active event %s", target.event_id, replacement.id)
                    target = self._adopt(phone, replacement)
                    healed = True
                    state = ReconcileState.APPLY

            elif state is ReconcileState.APPLY:
                result = apply(target)
                result.healed = healed
                state = ReconcileState.DONE

        return result

    # ── Resolution helpers ───────────────────────────────────────────

    def _resolve_target(self, phone: str, event_id: str | None) -> BookingRef | None:
        if event_id and not is_plausible_event_id(event_id):
            logger.info("Ignoring implausible event id %r", event_id)
            event_id = None

        if event_id:
            booking = self._bookings.find_by_event_id(event_id)
            if booking is None:
                logger.info("Event id %r is unknown locally; ignoring it", event_id)
            elif not phones_match(booking.owner_phone, phone):
                logger.warning("Event id %r belongs to another client; resolving by phone", event_id)
            else:
                return BookingRef(
                    event_id=booking.external_event_id,
                    phone=booking.owner_phone,
                    start=booking.start_time,
                    description=booking.description,
                )

        if not phone:
            return None

        booking = self._bookings.find_flexible(phone, now=self._clock())
        if booking is not None:
            return BookingRef(
                event_id=booking.external_event_id,
                phone=booking.owner_phone,
                start=booking.start_time,
                description=booking.description,
            )

        upstream = self._find_upstream(phone)
        if upstream is not None:
            return self._adopt(phone, upstream)
        return None

    def _find_upstream(self, phone: str, exclude: str | None = None) -> CalendarEvent | None:
        """Earliest future calendar event whose title or notes carry *phone*."""
        if not phone:
            return None
        now = self._clock()
        for event in self._calendar.list_events(now, now + self._lookahead):
            if event.id == exclude or event.is_cancelled:
                continue
            if event.start is not None and event.start < now:
                continue
            if text_matches_phone(event.summary, phone) or text_matches_phone(event.description, phone):
                return event
        return None

    def _adopt(self, phone: str, event: CalendarEvent) -> BookingRef:
        """Link an upstream event to *phone* in the local store."""
        description = event.description or event.summary
        self._bookings.upsert(event.id, phone, event.start, description)
        return BookingRef(event_id=event.id, phone=phone, start=event.start, description=description)
