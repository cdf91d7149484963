"""Keyed stores over the local database.

Every write is a single-row statement (upsert or delete keyed by a stable
identifier), so concurrent writers (a user's turn and the background
reconciler) converge regardless of ordering.  Phones are normalised to
digits before they touch any query.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.sqlite import insert

from appointment_agent.scheduling.phone import normalize_phone, phones_match
from appointment_agent.services.database import Booking, Database, Identity, TranscriptMessage, get_database

logger = logging.getLogger(__name__)

TRANSCRIPT_HISTORY_LIMIT = 15


class IdentityStore:
    """Phone → display name."""

    def __init__(self, database: Database | None = None) -> None:
        self._db = database or get_database()

    def get(self, phone: str) -> Identity | None:
        phone = normalize_phone(phone)
        if not phone:
            return None
        with self._db.session_factory() as session:
            return session.get(Identity, phone)

    def ensure(self, phone: str) -> Identity | None:
        """Create the identity on first contact without touching an existing name."""
        phone = normalize_phone(phone)
        if not phone:
            return None
        with self._db.session_factory() as session:
            session.execute(
                insert(Identity)
                .values(phone=phone, display_name="", created_at=datetime.now(UTC))
                .on_conflict_do_nothing(index_elements=[Identity.phone])
            )
            session.commit()
        return self.get(phone)

    def upsert(self, phone: str, name: str) -> None:
        """Insert, or overwrite the name of, the identity for *phone*."""
        phone = normalize_phone(phone)
        if not phone:
            raise ValueError("phone is required")
        stmt = insert(Identity).values(phone=phone, display_name=name or "", created_at=datetime.now(UTC))
        stmt = stmt.on_conflict_do_update(
            index_elements=[Identity.phone],
            set_={"display_name": stmt.excluded.display_name},
        )
        with self._db.session_factory() as session:
            session.execute(stmt)
            session.commit()
        logger.debug("Identity upserted: %s (%s)", phone, name)

    def mark_human_contact(self, phone: str, at: datetime | None = None) -> None:
        phone = normalize_phone(phone)
        if not phone:
            return
        self.ensure(phone)
        with self._db.session_factory() as session:
            session.execute(
                update(Identity)
                .where(Identity.phone == phone)
                .values(last_human_contact_at=at or datetime.now(UTC))
            )
            session.commit()


class BookingStore:
    """Calendar event id → {owner phone, start time, description}."""

    def __init__(self, database: Database | None = None) -> None:
        self._db = database or get_database()

    def upsert(self, event_id: str, phone: str, start: datetime, description: str = "") -> None:
        """Idempotent on *event_id*: a second call overwrites the first."""
        values = {
            "external_event_id": event_id,
            "owner_phone": normalize_phone(phone),
            "start_time": start,
            "description": description or "",
            "created_at": datetime.now(UTC),
        }
        stmt = insert(Booking).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Booking.external_event_id],
            set_={
                "owner_phone": stmt.excluded.owner_phone,
                "start_time": stmt.excluded.start_time,
                "description": stmt.excluded.description,
            },
        )
        with self._db.session_factory() as session:
            session.execute(stmt)
            session.commit()
        logger.debug("Booking upserted: %s for %s at %s", event_id, values["owner_phone"], start.isoformat())

    def delete(self, event_id: str) -> bool:
        """Remove the row for *event_id*.  Returns ``True`` if a row existed."""
        with self._db.session_factory() as session:
            result = session.execute(delete(Booking).where(Booking.external_event_id == event_id))
            session.commit()
        removed = result.rowcount > 0
        if removed:
            logger.debug("Booking deleted: %s", event_id)
        return removed

    def find_by_event_id(self, event_id: str) -> Booking | None:
        with self._db.session_factory() as session:
            return session.get(Booking, event_id)

    def update_start(self, event_id: str, start: datetime) -> bool:
        with self._db.session_factory() as session:
            result = session.execute(
                update(Booking).where(Booking.external_event_id == event_id).values(start_time=start)
            )
            session.commit()
        return result.rowcount > 0

    def find_flexible(self, phone_partial: str, now: datetime | None = None) -> Booking | None:
        """Earliest future booking whose owner phone suffix-matches *phone_partial*.

        ``'999999999'`` finds a booking stored under ``'55119999999999'`` and
        vice versa; inputs shorter than 4 digits never match.
        """
        phone = normalize_phone(phone_partial)
        if not phone:
            return None
        now = now or datetime.now(UTC)
        with self._db.session_factory() as session:
            future = session.scalars(
                select(Booking).where(Booking.start_time > now).order_by(Booking.start_time.asc())
            ).all()
        for booking in future:
            if phones_match(booking.owner_phone, phone):
                return booking
        return None


class TranscriptStore:
    """Rolling conversation history per phone."""

    def __init__(self, database: Database | None = None) -> None:
        self._db = database or get_database()

    def append(self, phone: str, role: str, content: str) -> None:
        with self._db.session_factory() as session:
            session.add(
                TranscriptMessage(
                    phone=normalize_phone(phone), role=role, content=content, created_at=datetime.now(UTC),
                )
            )
            session.commit()

    def history(self, phone: str, limit: int = TRANSCRIPT_HISTORY_LIMIT) -> list[TranscriptMessage]:
        """The last *limit* messages, oldest first."""
        with self._db.session_factory() as session:
            rows = session.scalars(
                select(TranscriptMessage)
                .where(TranscriptMessage.phone == normalize_phone(phone))
                .order_by(TranscriptMessage.id.desc())
                .limit(limit)
            ).all()
        return list(reversed(rows))
