"""Appointment scheduling agent — an LLM assistant that books, cancels and
reschedules appointments against Google Calendar.

Architecture Overview
=====================

The conversational front is a **LangGraph** dispatch loop:

1. **decide** — Claude, with the booking operations bound as tools, picks
   either an operation call or the final reply.
2. **execute** — runs the requested operations and feeds the results back.

The loop is bounded to 5 executed rounds; past that a fixed fallback reply
is returned.

Under the operations sits the scheduling engine:

- **Time grid** — 15-minute slots from 08:00 to 18:00 in the clinic
  timezone, and the "2 business days of notice" floor.
- **Availability** — free slots for a day and "next day with free times"
  search against the calendar.
- **Reconciliation** — resolves "the client's appointment" by phone,
  verifies it upstream, and self-heals when staff moved or deleted the
  event directly in the calendar.
- **Background sync** — every 30 minutes, links calendar events titled
  ``"<name> <phone>"`` to local identities and bookings.

Key Design Decisions
--------------------
- **Calendar-of-record**: Google Calendar is authoritative; the SQLite
  store is a cache that is verified before every cancel/reschedule.
- **Resilience**: ``GoogleCalendarClient`` retries timeouts and 5xx errors
  with exponential backoff (3 attempts).  Operations turn every failure
  into a sentence the LLM can relay.
- **Memory**: the last 15 messages per phone are persisted in SQLite and
  replayed each turn.
- **Dual Interface**: FastAPI server (production) + CLI chat loop.

Package Structure
-----------------
- ``appointment_agent/agent.py`` — LangGraph dispatch loop
- ``appointment_agent/conversation.py`` — per-phone turn processing
- ``appointment_agent/config.py`` — configuration from env vars / SSM
- ``appointment_agent/prompts.py`` — system prompt
- ``appointment_agent/server.py`` — FastAPI application
- ``appointment_agent/main.py`` — CLI chat interface
- ``appointment_agent/scheduling/`` — time grid, availability, booking,
  reconciliation, background sync
- ``appointment_agent/services/`` — Google Calendar client, SQLite stores,
  metrics, staff notifier
- ``appointment_agent/tools/`` — LangChain tools (the operation catalog)
- ``appointment_agent/api/`` — FastAPI routes and Pydantic schemas
"""
