"""FastAPI route definitions for the appointment agent API."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Request

from appointment_agent.api.schemas import ChatRequest, ChatResponse, HealthResponse, SyncResponse
from appointment_agent.scheduling.phone import normalize_phone
from appointment_agent.services.calendar_client import CalendarAPIError

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_conversations(request: Request):
    """Retrieve the ConversationService created during the lifespan."""
    conversations = getattr(request.app.state, "conversations", None)
    if conversations is None:
        raise HTTPException(
            status_code=503,
            detail="The agent is still starting up. Please try again in a moment.",
        )
    return conversations


def _get_reconciler(request: Request):
    reconciler = getattr(request.app.state, "reconciler", None)
    if reconciler is None:
        raise HTTPException(status_code=503, detail="Calendar sync is not available.")
    return reconciler


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, http_request: Request):
    """Process one inbound message and return the agent's reply.

    The phone number identifies the conversation: history, identity and
    bookings are all keyed by it.

    ``handle_turn`` blocks on the Anthropic and Google Calendar APIs, so it
    runs in a worker thread to keep the event loop free.
    """
    conversations = _get_conversations(http_request)
    request_id = getattr(http_request.state, "request_id", "?")
    phone = normalize_phone(request.phone)
    if not phone:
        raise HTTPException(status_code=422, detail="phone must contain digits.")

    try:
        reply = await asyncio.to_thread(conversations.handle_turn, phone, request.message)
    except Exception as e:
        # Full traceback server-side only.
        logger.exception("[%s] Error processing chat request", request_id)
        raise HTTPException(
            status_code=500,
            detail="An internal error occurred. Please try again.",
        ) from e

    return ChatResponse(reply=reply, phone=phone)


@router.post("/sync", response_model=SyncResponse)
async def trigger_sync(http_request: Request):
    """Run one calendar → local store sync now."""
    reconciler = _get_reconciler(http_request)
    if reconciler.is_running:
        raise HTTPException(status_code=409, detail="A sync is already in progress.")

    try:
        report = await asyncio.to_thread(reconciler.run_once)
    except CalendarAPIError as e:
        logger.error("Manual sync failed: %s", e)
        raise HTTPException(status_code=502, detail="Could not reach the calendar.") from e

    if report is None:
        raise HTTPException(status_code=409, detail="A sync is already in progress.")
    return SyncResponse(fetched=report.fetched, synced=report.synced)
