"""FastAPI server for the appointment scheduling agent.

Run with:
    uvicorn appointment_agent.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from appointment_agent.agent import create_appointment_agent
from appointment_agent.api.routes import router
from appointment_agent.config import CORS_ORIGINS, SERVER_HOST, SERVER_PORT, SYNC_ENABLED
from appointment_agent.conversation import ConversationService
from appointment_agent.scheduling.sync import BackgroundReconciler
from appointment_agent.services.calendar_client import get_calendar_client
from appointment_agent.services.database import get_database
from appointment_agent.services.stores import BookingStore, IdentityStore, TranscriptStore

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Start-up: create tables, compile the agent, start the calendar sync.

    Everything lives in ``app.state`` so routes never touch module globals.
    """
    database = get_database()
    database.create_all()
    identities = IdentityStore(database)

    logger.info("Compiling LangGraph agent…")
    application.state.conversations = ConversationService(
        create_appointment_agent(), identities, TranscriptStore(database),
    )
    logger.info("Agent ready.")

    reconciler = BackgroundReconciler(get_calendar_client(), identities, BookingStore(database))
    application.state.reconciler = reconciler
    if SYNC_ENABLED:
        reconciler.start()

    yield

    reconciler.stop()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Appointment Scheduling Agent",
    description=(
        "AI scheduling assistant — book, reschedule and cancel appointments "
        "against Google Calendar."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a unique request ID to every request for log correlation.

    Returned as ``X-Request-ID`` so a client can quote it when reporting
    a problem.
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Appointment Scheduling Agent",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting appointment agent API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "appointment_agent.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
