"""Per-conversation turn processing.

One inbound message from one phone number is one *turn*:

  identify the client → load recent history → run the dispatch loop →
  persist the reply

Turns for the same phone run one at a time; different phones run
concurrently.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from langchain_core.messages import AIMessage, HumanMessage
from sqlalchemy.exc import SQLAlchemyError

from appointment_agent.prompts import get_system_prompt
from appointment_agent.scheduling.phone import normalize_phone
from appointment_agent.services.stores import TRANSCRIPT_HISTORY_LIMIT, IdentityStore, TranscriptStore

logger = logging.getLogger(__name__)

HANDOVER_REPLY = "Understood. I'm transferring you to our team. Please wait a moment."
APOLOGY_REPLY = "Sorry, I ran into a technical problem. Please try again later."
EMPTY_MESSAGE_REPLY = "I didn't get your message. Could you write it again?"
MISSING_PHONE_REPLY = "I couldn't identify your phone number, so I can't help with appointments here."


@dataclass
class _PhoneLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class ConversationService:
    """Runs turns through a compiled dispatch-loop graph."""

    def __init__(
        self,
        agent,
        identities: IdentityStore | None = None,
        transcript: TranscriptStore | None = None,
        history_limit: int = TRANSCRIPT_HISTORY_LIMIT,
    ) -> None:
        self._agent = agent
        self._identities = identities or IdentityStore()
        self._transcript = transcript or TranscriptStore()
        self._history_limit = history_limit
        self._locks: dict[str, _PhoneLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _turn_lock(self, phone: str) -> Iterator[None]:
        """Serialise turns per phone; the entry is dropped once nobody holds or waits on it."""
        with self._locks_guard:
            entry = self._locks.setdefault(phone, _PhoneLock())
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[phone]

    def handle_turn(self, phone: str, text: str) -> str:
        """Process one inbound message and return the reply to send."""
        phone = normalize_phone(phone)
        text = (text or "").strip()
        if not phone:
            return MISSING_PHONE_REPLY
        if not text:
            return EMPTY_MESSAGE_REPLY

        with self._turn_lock(phone):
            return self._run_turn(phone, text)

    def _run_turn(self, phone: str, text: str) -> str:
        logger.info("Processing message from %s", phone)
        try:
            identity = self._identities.ensure(phone)
            history = self._transcript.history(phone, self._history_limit)
            self._transcript.append(phone, "user", text)
        except SQLAlchemyError:
            logger.exception("Could not load conversation state for %s", phone)
            return APOLOGY_REPLY

        messages = [
            HumanMessage(content=m.content) if m.role == "user" else AIMessage(content=m.content)
            for m in history
        ]
        messages.append(HumanMessage(content=text))

        try:
            result = self._agent.invoke(
                {
                    "messages": messages,
                    "system_prompt": get_system_prompt(identity.display_name if identity else None, phone),
                    "phone": phone,
                    "executions": 0,
                    "handover": False,
                    "reply": "",
                }
            )
            if result.get("handover"):
                reply = HANDOVER_REPLY
            else:
                reply = result.get("reply") or APOLOGY_REPLY
        except Exception:
            logger.exception("Error in turn for %s", phone)
            return APOLOGY_REPLY

        try:
            self._transcript.append(phone, "assistant", reply)
        except SQLAlchemyError:
            logger.exception("Could not save the reply for %s", phone)
        return reply
