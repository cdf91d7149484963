"""Staff notification for human handovers.

When ``HANDOVER_WEBHOOK_URL`` is configured the referral note is POSTed
there as JSON (``{"text": ...}``, which Slack/Teams/most chat relays
accept).  Otherwise the note is only logged.  A failed notification is
logged and reported to the caller; it never aborts the conversation turn.
"""

from __future__ import annotations

import logging

import httpx

from appointment_agent.config import HANDOVER_WEBHOOK_URL
from appointment_agent.services.metrics import metrics

logger = logging.getLogger(__name__)

NOTIFY_TIMEOUT_SECONDS = 10.0


def notify_staff(note: str, webhook_url: str | None = None) -> bool:
    """Deliver *note* to the clinic staff.  Returns ``True`` if it was sent."""
    url = HANDOVER_WEBHOOK_URL if webhook_url is None else webhook_url
    if not url:
        logger.info("Handover webhook not configured. Note:\n%s", note)
        return False

    try:
        with metrics.timed("handover_webhook", "POST"):
            response = httpx.post(url, json={"text": note}, timeout=NOTIFY_TIMEOUT_SECONDS)
            response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("Failed to notify staff of handover: %s", exc)
        return False
    logger.info("Staff notified of handover")
    return True
