"""LangChain tools for appointment management.

Each tool validates the model's arguments, delegates to the scheduling
engines, and returns a human-readable string that the LLM uses to write its
reply.  Tools never raise: bad input and upstream failures both come back as
sentences.

Argument names (``afterDate``, ``eventId``...) mirror the operation catalog
the model is prompted with.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, time

from langchain_core.tools import tool

from appointment_agent.scheduling.availability import AvailabilityEngine, prefer_hour
from appointment_agent.scheduling.booking import BookingManager, BookingStatus
from appointment_agent.scheduling.phone import normalize_phone
from appointment_agent.scheduling.reconciliation import Outcome, ReconciliationEngine
from appointment_agent.scheduling.time_grid import CLINIC_TZ, format_friendly, format_slot_time, now_local
from appointment_agent.services.calendar_client import CalendarAPIError, get_calendar_client
from appointment_agent.services.database import get_database
from appointment_agent.services.stores import BookingStore, IdentityStore

logger = logging.getLogger(__name__)

_PREFERRED_TIME_RE = re.compile(r"^\s*(\d{1,2})\s*(?:[:hH]\s*(\d{2})?)?\s*$")

MISSING_PHONE = "A phone number is required for this. Please ask the client for it."


# ── Engine wiring ───────────────────────────────────────────────────


def _availability() -> AvailabilityEngine:
    return AvailabilityEngine(get_calendar_client(), clock=now_local)


def _reconciliation() -> ReconciliationEngine:
    return ReconciliationEngine(get_calendar_client(), BookingStore(get_database()), clock=now_local)


def _booking_manager() -> BookingManager:
    database = get_database()
    return BookingManager(
        get_calendar_client(),
        BookingStore(database),
        IdentityStore(database),
        availability=_availability(),
        clock=now_local,
    )


# ── Argument parsing ────────────────────────────────────────────────


def _parse_date(value: str) -> date | None:
    try:
        return date.fromisoformat(value.strip()[:10])
    except (ValueError, AttributeError):
        return None


def _parse_datetime(value: str) -> datetime | None:
    """ISO 8601 → aware datetime in the clinic timezone (naive = clinic time)."""
    try:
        parsed = datetime.fromisoformat(value.strip())
    except (ValueError, AttributeError):
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=CLINIC_TZ)
    return parsed.astimezone(CLINIC_TZ)


def _parse_preferred_time(value: str) -> time | None:
    match = _PREFERRED_TIME_RE.match(value or "")
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2) or 0)
    if hour > 23 or minute > 59:
        return None
    return time(hour, minute)


def _format_day(day: date) -> str:
    return f"{day.strftime('%A %d/%m/%Y')} ({day.isoformat()})"


def _format_slots(slots: list[datetime]) -> str:
    return ", ".join(format_slot_time(s) for s in slots)


def _too_early_message(action: str, minimum: datetime) -> str:
    return (
        f"{action} not allowed for that date. Appointments need at least 2 business days "
        f"of notice (from {minimum.strftime('%A %d/%m/%Y')} onwards). Please choose another date."
    )


# ── Tool 1: Check availability ──────────────────────────────────────


@tool
def check_availability(
    period: str | None = None,
    date: str | None = None,
    afterDate: str | None = None,  # noqa: N803
    preferredTime: str | None = None,  # noqa: N803
) -> str:
    """Check free appointment times.

    With ``date`` it lists the free times of that specific day.  Without it,
    it finds the next day (at least 2 business days ahead) that has free
    times.  To offer "another day", pass the rejected day as ``afterDate``
    instead of guessing a date.

    Args:
        period: Optional part of the day: "manhã"/"morning",
                "tarde"/"afternoon" or "noite"/"evening".
        date: Optional specific day in YYYY-MM-DD format.
        afterDate: Optional YYYY-MM-DD; search starts the day after it.
        preferredTime: Optional HH:MM; only days with a free time in that
                       hour qualify, and those times are listed first.
    """
    preferred = None
    if preferredTime:
        preferred = _parse_preferred_time(preferredTime)
        if preferred is None:
            return f'"{preferredTime}" is not a valid time. Use the HH:MM format (e.g. 17:00).'

    try:
        engine = _availability()

        if date:
            day = _parse_date(date)
            if day is None:
                return f'"{date}" is not a valid date. Use the YYYY-MM-DD format.'
            minimum = engine.minimum_date()
            if day < minimum.date():
                return _too_early_message("Scheduling", minimum)

            slots = engine.slots_for_day(day, period or None)
            if not slots:
                suffix = f" ({period})" if period else ""
                return f"There are no free times on {_format_day(day)}{suffix}."

            if preferred is not None:
                if not any(s.hour == preferred.hour for s in slots):
                    return (
                        f"On {_format_day(day)} there is nothing around {preferred.strftime('%H:%M')}. "
                        f"Free times: {_format_slots(slots)}."
                    )
                slots = prefer_hour(slots, preferred.hour)

            return f"Free times on {_format_day(day)}:\n{_format_slots(slots)}"

        after = None
        if afterDate:
            after = _parse_date(afterDate)
            if after is None:
                return f'"{afterDate}" is not a valid date. Use the YYYY-MM-DD format.'

        found = engine.find_next_available(period or None, after, preferred)
        if found is None:
            around = f" (around {preferred.strftime('%H:%M')})" if preferred else ""
            return f"No free times found in the next 14 days for that period{around}."

        return f"Next day with free times: {_format_day(found.day)}:\n{_format_slots(found.slots)}"

    except CalendarAPIError as e:
        logger.error("Failed to check availability: %s", e)
        return "Sorry, I couldn't check availability right now. Please try again in a moment."


# ── Tool 2: Schedule a new appointment ──────────────────────────────


@tool
def schedule_appointment(name: str, phone: str, datetime: str, summary: str | None = None) -> str:
    """Book an appointment after the client has chosen one of the offered times.

    Args:
        name: The client's full name.
        phone: The client's phone number.
        datetime: Start time in ISO format, e.g. "2026-10-20T14:30:00".
                  Must be one of the free times returned by check_availability.
        summary: Short reason for the visit.
    """
    start = _parse_datetime(datetime)
    if start is None:
        return "Invalid date/time. Use the ISO format (e.g. YYYY-MM-DDTHH:MM:SS)."
    if not normalize_phone(phone):
        return MISSING_PHONE

    try:
        result = _booking_manager().schedule(name, phone, start, summary)
    except CalendarAPIError as e:
        logger.error("Failed to create booking: %s", e)
        return "Sorry, I couldn't complete the booking right now. Please try again in a moment."

    if result.status is BookingStatus.MISSING_PHONE:
        return MISSING_PHONE
    if result.status is BookingStatus.TOO_EARLY:
        return _too_early_message("Booking", result.minimum_date)
    if result.status is BookingStatus.SLOT_TAKEN:
        return (
            f"{format_friendly(start)} is not free. "
            "Please check availability again and offer another time."
        )
    return f"Appointment booked successfully for {format_friendly(result.start)}! ID: {result.event_id}"


# ── Tool 3: Look up the client's appointment ────────────────────────


@tool
def get_appointments(phone: str) -> str:
    """Look up the client's next appointment by phone number.

    Args:
        phone: The client's phone number (with or without country code).
    """
    if not normalize_phone(phone):
        return MISSING_PHONE

    try:
        result = _reconciliation().locate(phone)
    except CalendarAPIError as e:
        logger.error("Failed to look up appointments: %s", e)
        return "Sorry, I couldn't look up the appointment right now. Please try again in a moment."

    if result.outcome is not Outcome.FOUND:
        return "No upcoming appointment found for this number."

    booking = result.booking
    when = format_friendly(booking.start) if booking.start else "unknown time"
    return (
        f'Appointment found: "{booking.description}"\n'
        f"Date: {when}\n"
        f"Event ID: {booking.event_id}"
    )


# ── Tool 4: Cancel ──────────────────────────────────────────────────


@tool
def cancel_appointment(phone: str, eventId: str | None = None) -> str:  # noqa: N803
    """Cancel the client's appointment.

    If you do not know the real event ID, leave eventId empty and the
    appointment is found by phone.  Never invent an ID.

    Args:
        phone: The client's phone number.
        eventId: Optional event ID returned by get_appointments.
    """
    if not normalize_phone(phone) and not eventId:
        return MISSING_PHONE

    try:
        result = _reconciliation().cancel(phone, eventId or None)
    except CalendarAPIError as e:
        logger.error("Failed to cancel booking: %s", e)
        return "Sorry, I couldn't cancel the appointment right now. Please try again in a moment."

    if result.outcome is Outcome.NOT_FOUND:
        return "I couldn't find an appointment to cancel. Could you confirm the phone number used to book?"
    if result.outcome is Outcome.NO_ACTIVE_BOOKING:
        return "There is no active booking in the calendar to cancel. It may already have been cancelled."

    when = format_friendly(result.booking.start) if result.booking.start else "the scheduled time"
    return f"Appointment on {when} cancelled successfully!"


# ── Tool 5: Reschedule ──────────────────────────────────────────────


@tool
def reschedule_appointment(phone: str, newDateTime: str, eventId: str | None = None) -> str:  # noqa: N803
    """Move the client's appointment to a new time.

    If you do not know the real event ID, send only newDateTime and the
    appointment is found by phone.  Never invent an ID.

    Args:
        phone: The client's phone number.
        newDateTime: New start time in ISO format, e.g. "2026-10-22T09:15:00".
        eventId: Optional event ID returned by get_appointments.
    """
    new_start = _parse_datetime(newDateTime)
    if new_start is None:
        return "Invalid date/time for rescheduling. Use the ISO format (e.g. YYYY-MM-DDTHH:MM:SS)."
    if not normalize_phone(phone) and not eventId:
        return MISSING_PHONE

    try:
        result = _reconciliation().reschedule(phone, new_start, eventId or None)
    except CalendarAPIError as e:
        logger.error("Failed to reschedule booking: %s", e)
        return "Sorry, I couldn't reschedule the appointment right now. Please try again in a moment."

    if result.outcome is Outcome.TOO_EARLY:
        return _too_early_message("Rescheduling", result.minimum_date)
    if result.outcome is Outcome.NOT_FOUND:
        return "I couldn't find an appointment to reschedule. Could you confirm the phone number used to book?"
    if result.outcome is Outcome.NO_ACTIVE_BOOKING:
        return (
            "I couldn't find the original appointment in the calendar. "
            "It may have been cancelled or moved manually."
        )
    return f"Appointment rescheduled successfully to {format_friendly(new_start)}!"
