"""Hand the conversation over to a human.

The model calls this when the client asks for something outside booking
(clinical questions, complaints, urgencies) or asks for a person.  The
dispatch loop recognises the returned marker and replaces the final reply
with a fixed "transferring you" message.
"""

from __future__ import annotations

import logging

from langchain_core.tools import tool
from sqlalchemy.exc import SQLAlchemyError

from appointment_agent.services.notifier import notify_staff
from appointment_agent.services.stores import IdentityStore

logger = logging.getLogger(__name__)

HANDOVER_MARKER = "HANDOVER_REQUESTED"
NOT_PROVIDED = "Not provided"


def format_referral(name: str, phone: str, reason: str, plan: str) -> str:
    return (
        "*REFERRAL*\n\n"
        f"*Client:* {name or NOT_PROVIDED}\n"
        f"*Phone:* {phone or NOT_PROVIDED}\n"
        f"*Reason:* {reason or 'Needs human attention'}\n"
        f"*Plan:* {plan or NOT_PROVIDED}"
    )


@tool
def handover(name: str = "", phone: str = "", reason: str = "", plan: str = "") -> str:
    """Transfer the client to the clinic team.

    Use when the client asks for something outside scheduling, has an
    urgency, or wants to speak with a person.  Fill any unknown field with
    "Not provided".

    Args:
        name: The client's name.
        phone: The client's phone number.
        reason: Exactly why a human is needed.
        plan: The client's dental plan, or "private".
    """
    note = format_referral(name, phone, reason, plan)

    try:
        IdentityStore().mark_human_contact(phone)
    except SQLAlchemyError:
        logger.exception("Could not record human contact for %s", phone)

    notify_staff(note)
    logger.info("Handover requested for %s: %s", phone or "?", reason)
    return f"[SYSTEM]: {HANDOVER_MARKER}. Reason: {reason or NOT_PROVIDED}"
