"""HTTP client for the Google Calendar API v3 (the calendar-of-record)
with retry logic and timeout handling.

Google Calendar API docs: https://developers.google.com/calendar/api/v3/reference
All requests carry a pre-issued OAuth bearer token; obtaining and refreshing
that token happens outside this service.

The calendar is the source of truth for whether an appointment exists and
when it happens, so nothing read here is cached.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from typing import Any
from urllib.parse import quote

import httpx

from appointment_agent.config import GOOGLE_CALENDAR_BASE_URL, GOOGLE_CALENDAR_ID, GOOGLE_CALENDAR_TOKEN
from appointment_agent.scheduling.time_grid import CLINIC_TZ, start_of_day
from appointment_agent.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Retry configuration ─────────────────────────────────────────────
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 15.0
PAGE_SIZE = 250

# Google answers 410 for events that were deleted, 404 for unknown ids.
_GONE_STATUSES = (404, 410)


class CalendarAPIError(Exception):
    """Raised when a Google Calendar call fails after all retries."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class EventNotFoundError(CalendarAPIError):
    """The referenced event does not exist (or no longer exists) upstream."""


@dataclass
class CalendarEvent:
    """An event as read from the calendar-of-record."""

    id: str
    summary: str = ""
    description: str = ""
    start: datetime | None = None
    end: datetime | None = None
    status: str = "confirmed"
    transparency: str = "opaque"
    all_day: bool = False

    @property
    def is_cancelled(self) -> bool:
        return self.status == "cancelled"

    @property
    def is_transparent(self) -> bool:
        return self.transparency == "transparent"

    def covers_day(self, day: date) -> bool:
        """True for an all-day event spanning *day* (end date is exclusive)."""
        if not self.all_day or self.start is None or self.end is None:
            return False
        return self.start.date() <= day < self.end.date()

    @classmethod
    def from_api(cls, data: dict[str, Any], tz: tzinfo = CLINIC_TZ) -> CalendarEvent:
        start, all_day = _parse_event_time(data.get("start"), tz)
        end, _ = _parse_event_time(data.get("end"), tz)
        return cls(
            id=data.get("id", ""),
            summary=data.get("summary") or "",
            description=data.get("description") or "",
            start=start,
            end=end,
            status=data.get("status") or "confirmed",
            transparency=data.get("transparency") or "opaque",
            all_day=all_day,
        )


def _parse_event_time(raw: dict[str, Any] | None, tz: tzinfo) -> tuple[datetime | None, bool]:
    """Return ``(instant, is_all_day)`` for a Google ``start``/``end`` object."""
    if not raw:
        return None, False
    if raw.get("dateTime"):
        value = datetime.fromisoformat(raw["dateTime"])
        if value.tzinfo is None:
            value = value.replace(tzinfo=tz)
        return value.astimezone(tz), False
    if raw.get("date"):
        return start_of_day(date.fromisoformat(raw["date"]), tz), True
    return None, False


class GoogleCalendarClient:
    """Thin wrapper around the Google Calendar REST API v3 with automatic
    retries for transport failures (timeouts, refused or reset connections)
    and 5xx responses.
    """

    def __init__(
        self,
        token: str | None = None,
        calendar_id: str | None = None,
        base_url: str | None = None,
        *,
        tz: tzinfo = CLINIC_TZ,
    ):
        self._token = token or GOOGLE_CALENDAR_TOKEN
        self._calendar_id = calendar_id or GOOGLE_CALENDAR_ID
        self._base_url = base_url or GOOGLE_CALENDAR_BASE_URL
        self._tz = tz
        self._client = httpx.Client(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {self._token}",
                "Content-Type": "application/json",
            },
            timeout=REQUEST_TIMEOUT_SECONDS,
        )

    # ── Internal helpers ─────────────────────────────────────────────

    @property
    def _events_path(self) -> str:
        return f"/calendars/{quote(self._calendar_id, safe='')}/events"

    def _event_path(self, event_id: str) -> str:
        return f"{self._events_path}/{quote(event_id, safe='')}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute an HTTP request with exponential-backoff retries."""
        last_error: Exception | None = None
        for attempt in range(1, MAX_RETRIES + 1):
            t0 = time.perf_counter()
            try:
                response = self._client.request(method, path, params=params, json=json_body)
                if response.status_code in _GONE_STATUSES:
                    raise EventNotFoundError(
                        f"Event not found ({response.status_code})",
                        status_code=response.status_code,
                    )
                if response.status_code >= 500:
                    raise CalendarAPIError(
                        f"Server error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                if response.status_code >= 400:
                    raise CalendarAPIError(
                        f"Client error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                data = self._parse_body(response)
                metrics.record_success(
                    "google_calendar", operation, latency_ms=(time.perf_counter() - t0) * 1000,
                )
                return data

            except httpx.RequestError as exc:
                last_error = exc
                metrics.record_failure(
                    "google_calendar", operation, error_type=type(exc).__name__,
                    latency_ms=(time.perf_counter() - t0) * 1000,
                )
                logger.warning(
                    "Google Calendar attempt %d/%d failed (%s). Retrying in %.1fs…",
                    attempt,
                    MAX_RETRIES,
                    type(exc).__name__,
                    INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)),
                )
            except CalendarAPIError as exc:
                metrics.record_failure(
                    "google_calendar", operation, error_type=f"http_{exc.status_code}",
                    latency_ms=(time.perf_counter() - t0) * 1000,
                )
                if exc.status_code and exc.status_code >= 500:
                    last_error = exc
                    logger.warning(
                        "Google Calendar server error on attempt %d/%d. Retrying…",
                        attempt,
                        MAX_RETRIES,
                    )
                else:
                    raise  # 4xx and unreadable bodies are not retried

            backoff = INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1))
            time.sleep(backoff)

        raise CalendarAPIError(
            f"Google Calendar request failed after {MAX_RETRIES} retries: {last_error}"
        )

    @staticmethod
    def _parse_body(response: httpx.Response) -> dict[str, Any]:
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise CalendarAPIError(
                f"Invalid JSON body from Google Calendar: {exc}", status_code=response.status_code,
            ) from exc

    # ── Public API methods ───────────────────────────────────────────

    def list_events(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        """All non-cancelled events overlapping ``[start, end)``, in start order.

        Recurring events are expanded into single instances.  Follows
        ``nextPageToken`` until the window is exhausted.
        """
        params: dict[str, Any] = {
            "timeMin": start.isoformat(),
            "timeMax": end.isoformat(),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": PAGE_SIZE,
        }
        events: list[CalendarEvent] = []
        while True:
            data = self._request("GET", self._events_path, operation="GET /events", params=params)
            for item in data.get("items", []):
                event = CalendarEvent.from_api(item, self._tz)
                if event.start is None or event.end is None:
                    continue
                events.append(event)
            page_token = data.get("nextPageToken")
            if not page_token:
                break
            params = {**params, "pageToken": page_token}
        logger.debug(
            "Google Calendar: %d events between %s and %s", len(events), start.isoformat(), end.isoformat(),
        )
        return events

    def get_event(self, event_id: str) -> CalendarEvent | None:
        """Fetch one event by id; ``None`` when it does not exist upstream."""
        try:
            data = self._request("GET", self._event_path(event_id), operation="GET /events/{id}")
        except EventNotFoundError:
            logger.info("Google Calendar: event %s not found", event_id)
            return None
        return CalendarEvent.from_api(data, self._tz)

    def create_event(
        self,
        *,
        summary: str,
        start: datetime,
        end: datetime,
        description: str = "",
    ) -> CalendarEvent:
        """Insert a timed event and return it as stored upstream."""
        payload = {
            "summary": summary,
            "description": description,
            "start": {"dateTime": start.isoformat()},
            "end": {"dateTime": end.isoformat()},
        }
        data = self._request("POST", self._events_path, operation="POST /events", json_body=payload)
        event = CalendarEvent.from_api(data, self._tz)
        logger.info("Google Calendar: created event %s (%s)", event.id, summary)
        return event

    def patch_event_time(self, event_id: str, start: datetime, end: datetime) -> CalendarEvent:
        """Move an event to a new time window.

        Raises:
            EventNotFoundError: the event was deleted upstream.
        """
        data = self._request(
            "PATCH",
            self._event_path(event_id),
            operation="PATCH /events/{id}",
            json_body={
                "start": {"dateTime": start.isoformat()},
                "end": {"dateTime": end.isoformat()},
            },
        )
        logger.info("Google Calendar: moved event %s to %s", event_id, start.isoformat())
        return CalendarEvent.from_api(data, self._tz)

    def delete_event(self, event_id: str) -> bool:
        """Delete an event.  An event that is already gone counts as deleted."""
        try:
            self._request("DELETE", self._event_path(event_id), operation="DELETE /events/{id}")
        except EventNotFoundError:
            logger.warning(
                "Google Calendar: event %s was already deleted or not found. Treating as success.",
                event_id,
            )
        return True


# ── Module-level singleton (thread-safe) ────────────────────────────
_client: GoogleCalendarClient | None = None
_client_lock = threading.Lock()


def get_calendar_client() -> GoogleCalendarClient:
    """Return a module-level GoogleCalendarClient singleton.

    Uses double-checked locking so that the lock is only acquired during
    the first initialisation, not on every subsequent call.
    """
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = GoogleCalendarClient()
    return _client
