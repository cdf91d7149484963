"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    """Inbound message relayed by the messaging transport."""

    phone: str = Field(
        ...,
        min_length=4,
        max_length=40,
        description="Sender's phone number; non-digits are ignored",
    )
    message: str = Field(..., min_length=1, max_length=2000, description="The client's message")


class ChatResponse(BaseModel):
    """Reply to send back to the client."""

    reply: str = Field(..., description="The agent's response message")
    phone: str = Field(..., description="Normalised phone number of the conversation")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "appointment-agent"


class SyncResponse(BaseModel):
    """Result of a manually triggered calendar sync."""

    fetched: int = Field(..., description="Calendar events listed")
    synced: int = Field(..., description="Events linked to a phone number")
