"""CLI entry point for the appointment scheduling agent.

A terminal chat for development: each line you type is one inbound
message from ``--phone``.  For production, use the FastAPI server
(appointment_agent/server.py).

Usage:
    python -m appointment_agent.main --phone 5513999999999
    python -m appointment_agent.main --phone 5513999999999 --debug
    python -m appointment_agent.main --sync-once
"""

from __future__ import annotations

import argparse
import logging
import sys

from dotenv import load_dotenv

from appointment_agent.agent import create_appointment_agent
from appointment_agent.conversation import ConversationService
from appointment_agent.scheduling.phone import normalize_phone
from appointment_agent.scheduling.sync import BackgroundReconciler
from appointment_agent.services.calendar_client import CalendarAPIError, get_calendar_client
from appointment_agent.services.database import get_database
from appointment_agent.services.stores import BookingStore, IdentityStore, TranscriptStore

logger = logging.getLogger(__name__)

DEFAULT_PHONE = "5500000000000"


def _sync_once(reconciler: BackgroundReconciler) -> bool:
    """Run one resync and print the outcome.  Returns ``False`` on failure."""
    try:
        report = reconciler.run_once()
    except CalendarAPIError as exc:
        logger.error("Calendar sync failed: %s", exc)
        print("Sync failed: the calendar could not be read. Run with --debug for details.")
        return False
    if report is None:
        print("A sync is already running.")
        return False
    print(f"Synced {report.synced} of {report.fetched} calendar events.")
    return True


def _configure_logging(debug: bool = False) -> None:
    """WARNING by default, DEBUG when --debug is passed."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("appointment_agent").setLevel(logging.DEBUG if debug else logging.INFO)


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="Appointment scheduling agent CLI")
    parser.add_argument("--phone", default=DEFAULT_PHONE, help="Phone number the messages come from")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    parser.add_argument(
        "--sync-once", action="store_true",
        help="Sync the local store from the calendar once and exit",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    database = get_database()
    database.create_all()

    if args.sync_once:
        reconciler = BackgroundReconciler(get_calendar_client(), IdentityStore(database), BookingStore(database))
        if not _sync_once(reconciler):
            sys.exit(1)
        return

    phone = normalize_phone(args.phone)
    if not phone:
        parser.error("--phone must contain digits")

    print("\n" + "=" * 60)
    print("  Appointment Scheduling Agent - CLI Chat")
    print("=" * 60)
    print(f"  Chatting as {phone}. Type 'quit' to exit.")
    print("=" * 60 + "\n")

    conversations = ConversationService(
        create_appointment_agent(), IdentityStore(database), TranscriptStore(database),
    )
    logger.info("Started CLI session for %s", phone)

    while True:
        try:
            user_input = input("You: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        if not user_input:
            continue

        if user_input.lower() in ("exit", "quit", "q"):
            print("\nGoodbye!")
            break

        try:
            reply = conversations.handle_turn(phone, user_input)
        except KeyboardInterrupt:
            print("\n\nGoodbye!")
            break
        print(f"\nAssistant: {reply}\n")


if __name__ == "__main__":
    main()
