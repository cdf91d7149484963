"""Pure calendar arithmetic for the clinic's booking grid.

Everything here is deterministic and free of I/O: business-day offsets,
fixed-length slot generation, period classification and interval overlap.
All instants are timezone-aware and expressed in the clinic timezone.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Protocol
from zoneinfo import ZoneInfo

from appointment_agent.config import CLINIC_TIMEZONE

CLINIC_TZ = ZoneInfo(CLINIC_TIMEZONE)

# ── Operating window ────────────────────────────────────────────────
SLOT_MINUTES = 15
SLOT_DURATION = timedelta(minutes=SLOT_MINUTES)
WINDOW_START = time(8, 0)
WINDOW_END = time(18, 0)

BUSINESS_DAYS_NOTICE = 2

# ── Period boundaries (start times) ─────────────────────────────────
MORNING_END = time(12, 0)
AFTERNOON_END = time(17, 30)
EVENING_LAST_START = time(19, 30)

MORNING = "morning"
AFTERNOON = "afternoon"
EVENING = "evening"

# Checked in this order; first keyword hit wins.
_PERIOD_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    (MORNING, ("manh", "morn", "dia")),
    (AFTERNOON, ("tard", "aftern")),
    (EVENING, ("noit", "even", "night")),
)


class Interval(Protocol):
    start: datetime

    @property
    def end(self) -> datetime: ...


@dataclass(frozen=True)
class Slot:
    """A fixed-length candidate appointment start within one day."""

    start: datetime
    duration: timedelta = SLOT_DURATION

    @property
    def end(self) -> datetime:
        return self.start + self.duration


def now_local() -> datetime:
    """Current instant in the clinic timezone."""
    return datetime.now(CLINIC_TZ)


def start_of_day(value: date | datetime, tz: tzinfo | None = None) -> datetime:
    """Midnight of *value*'s calendar day, timezone-aware."""
    if isinstance(value, datetime):
        tz = value.tzinfo or tz or CLINIC_TZ
        value = value.date()
    return datetime.combine(value, time.min, tzinfo=tz or CLINIC_TZ)


def minimum_schedulable_date(now: datetime) -> datetime:
    """Return the start of the day two business days after *now*.

    Saturdays and Sundays are skipped while counting, so a Friday lands on
    the following Tuesday and a Monday lands on Wednesday.
    """
    day = now
    added = 0
    while added < BUSINESS_DAYS_NOTICE:
        day = day + timedelta(days=1)
        if day.weekday() < 5:
            added += 1
    return start_of_day(day)


def day_slots(day: date | datetime, tz: tzinfo | None = None) -> list[Slot]:
    """All slots of the operating window for *day*, in start order."""
    midnight = start_of_day(day, tz)
    current = midnight.replace(hour=WINDOW_START.hour, minute=WINDOW_START.minute)
    end = midnight.replace(hour=WINDOW_END.hour, minute=WINDOW_END.minute)

    slots: list[Slot] = []
    while current < end:
        slots.append(Slot(start=current))
        current = current + SLOT_DURATION
    return slots


def period_for_tag(tag: str | None) -> str | None:
    """Map a free-text period tag (``"tarde"``, ``"Morning"``...) to a period.

    Returns ``None`` for empty or unrecognised tags, which means no filter.
    """
    if not tag:
        return None
    lowered = tag.strip().lower()
    for period, keywords in _PERIOD_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return period
    return None


def classify_period(slot: Slot, tag: str | None) -> bool:
    """Return ``True`` if *slot* belongs to the period named by *tag*."""
    period = period_for_tag(tag)
    if period is None:
        return True

    start = slot.start.time()
    if period == MORNING:
        return start < MORNING_END
    if period == AFTERNOON:
        return MORNING_END <= start < AFTERNOON_END
    return AFTERNOON_END <= start <= EVENING_LAST_START


def overlaps(a: Interval, b: Interval) -> bool:
    """Half-open overlap test; touching endpoints do not overlap."""
    return a.start < b.end and b.start < a.end


def format_slot_time(value: datetime) -> str:
    return value.strftime("%H:%M")


def format_friendly(value: datetime) -> str:
    """``'Tue 20 Oct 2026 at 14:30'`` in the clinic timezone."""
    return value.astimezone(CLINIC_TZ).strftime("%a %d %b %Y at %H:%M")
