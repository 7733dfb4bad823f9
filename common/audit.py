from __future__ import annotations

"""Shared audit journal.

Monitor and treasury components append one immutable row per emitted event to
the ``audit_journal`` table, so an operator can reconstruct who paused a
treasury, which breach triggered which rebalance, and so on.
"""

import os
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, String
from sqlalchemy.engine import Engine
from sqlmodel import Field, Session, SQLModel, create_engine

from .events import Event

__all__ = [
    "AuditJournal",
    "AuditSink",
    "get_engine",
    "init_db",
    "log_event",
]


AUDIT_DB_URL = os.getenv("AUDIT_DB_URL", "sqlite:///./audit_journal.db")

_engine: Engine | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditJournal(SQLModel, table=True):
    """Immutable audit log row."""

    __tablename__ = "audit_journal"
    __table_args__ = {"extend_existing": True}

    id: Optional[int] = Field(default=None, primary_key=True)

    ts: datetime = Field(default_factory=_utcnow, index=True)

    # Emitting component e.g. "monitor" or "treasury:11155111"
    service: str = Field(sa_column=Column(String, nullable=False, index=True))

    # Principal that caused the event, when the event carries one
    actor: Optional[str] = None

    # Event name e.g. "RebalanceExecuted"
    action: str = Field(sa_column=Column(String, nullable=False))

    details: Dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=False, default={})
    )


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def get_engine() -> Engine:
    """Return the shared audit engine, creating it on first use."""
    global _engine
    if _engine is None:
        _engine = create_engine(
            AUDIT_DB_URL,
            echo=False,
            connect_args={"check_same_thread": False} if AUDIT_DB_URL.startswith("sqlite") else {},
        )
    return _engine


def init_db(engine: Engine | None = None) -> None:
    """Idempotent table creation."""
    SQLModel.metadata.create_all(engine or get_engine(), tables=[AuditJournal.__table__])


def log_event(
    *,
    session: Session,
    service: str,
    action: str,
    actor: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> AuditJournal:
    """Insert a new audit record and commit immediately."""
    entry = AuditJournal(
        service=service,
        action=action,
        actor=actor,
        details=details or {},
    )
    session.add(entry)
    session.commit()
    return entry


class AuditSink:
    """:class:`common.events.EventLog` listener persisting events."""

    def __init__(self, engine: Engine | None = None):
        self._engine = engine or get_engine()
        self._lock = threading.Lock()
        init_db(self._engine)

    def __call__(self, source: str, event: Event) -> None:
        details = event.details()
        # treasuries emit from worker threads; one writer at a time
        with self._lock, Session(self._engine) as session:
            log_event(
                session=session,
                service=source,
                action=event.name,
                actor=details.get("actor"),
                details=details,
            )
