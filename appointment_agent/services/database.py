"""SQLAlchemy engine, session factory and table models for the local store.

The local store is a cache of the calendar-of-record plus the conversation
transcript.  Three tables:

* ``identities``  — one row per normalised phone number
* ``bookings``    — one row per calendar event id
* ``transcript``  — rolling per-phone conversation history
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, Integer, String, Text, TypeDecorator, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from appointment_agent.config import DATABASE_URL

logger = logging.getLogger(__name__)

Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """Store aware datetimes as naive UTC; hand them back as aware UTC.

    SQLite has no timezone support, so every instant is normalised before
    it is written and re-tagged when it is read.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Refusing to store naive datetime {value!r}")
        return value.astimezone(UTC).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=UTC)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Identity(Base):
    """A person we have talked to, keyed by digits-only phone."""

    __tablename__ = "identities"

    phone = Column(String(32), primary_key=True)
    display_name = Column(String(255), nullable=False, default="")
    last_human_contact_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)


class Booking(Base):
    """Local link between a calendar event and the phone that owns it."""

    __tablename__ = "bookings"

    external_event_id = Column(String(255), primary_key=True)
    owner_phone = Column(String(32), nullable=False, index=True)
    start_time = Column(UTCDateTime, nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)


class TranscriptMessage(Base):
    """One message of a conversation ('user' or 'assistant')."""

    __tablename__ = "transcript"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone = Column(String(32), nullable=False, index=True)
    role = Column(String(16), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)


class Database:
    """Owns the engine and session factory for one database URL."""

    def __init__(self, url: str = DATABASE_URL) -> None:
        kwargs: dict = {"future": True}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
                # One shared connection, otherwise each session sees an empty DB.
                kwargs["poolclass"] = StaticPool
        self.engine: Engine = create_engine(url, **kwargs)
        if url.startswith("sqlite"):
            event.listen(self.engine, "connect", _sqlite_pragmas)
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)
        logger.info("Database tables ready (%s)", self.engine.url.render_as_string(hide_password=True))


def _sqlite_pragmas(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


# ── Module-level singleton (thread-safe) ────────────────────────────
_database: Database | None = None
_database_lock = threading.Lock()


def get_database() -> Database:
    """Return the process-wide Database, creating tables on first use."""
    global _database
    if _database is None:
        with _database_lock:
            if _database is None:
                database = Database()
                database.create_all()
                _database = database
    return _database
