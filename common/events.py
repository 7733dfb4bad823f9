"""Observable events emitted by the monitor and the treasuries.

Events are plain pydantic models. Each component owns an :class:`EventLog`
which keeps an in-memory trail, logs every event and fans it out to
listeners (e.g. :class:`common.audit.AuditSink`). A failing listener is
logged and skipped so that event consumers can never undo a committed state
change.
"""
from __future__ import annotations

import logging
import threading
import time
from decimal import Decimal
from typing import Callable, ClassVar, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "Event",
    "FeedSubscribed",
    "PriceThresholdBreached",
    "RebalanceTriggered",
    "TreasuryStatusChanged",
    "RebalanceExecuted",
    "EmergencyPaused",
    "EmergencyUnpaused",
    "AssetAdded",
    "AllocationUpdated",
    "RoleGranted",
    "RoleRevoked",
    "EventLog",
]

_LOG = logging.getLogger(__name__)


class Event(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: ClassVar[str] = "Event"
    emitted_at: float = Field(default_factory=time.time)

    def details(self) -> dict:
        return self.model_dump(mode="json", exclude={"emitted_at"})


# ---------------------------------------------------------------------------
# Monitor side
# ---------------------------------------------------------------------------


class FeedSubscribed(Event):
    name: ClassVar[str] = "FeedSubscribed"
    feed_id: str
    origin_scope: int
    origin_ref: str
    threshold_bps: int


class PriceThresholdBreached(Event):
    name: ClassVar[str] = "PriceThresholdBreached"
    feed_id: str
    old_price: int
    new_price: int
    change_bps: int
    timestamp: int


class RebalanceTriggered(Event):
    name: ClassVar[str] = "RebalanceTriggered"
    scope_id: int
    treasury_ref: str
    feed_id: str
    price: int


class TreasuryStatusChanged(Event):
    name: ClassVar[str] = "TreasuryStatusChanged"
    scope_id: int
    active: bool


# ---------------------------------------------------------------------------
# Treasury side
# ---------------------------------------------------------------------------


class RebalanceExecuted(Event):
    name: ClassVar[str] = "RebalanceExecuted"
    feed_id: str
    from_asset: Optional[str] = None
    to_asset: Optional[str] = None
    amount: Decimal = Decimal(0)
    trigger_price: int


class EmergencyPaused(Event):
    name: ClassVar[str] = "EmergencyPaused"
    actor: str
    timestamp: float


class EmergencyUnpaused(Event):
    name: ClassVar[str] = "EmergencyUnpaused"
    actor: str
    timestamp: float


class AssetAdded(Event):
    name: ClassVar[str] = "AssetAdded"
    asset_id: str
    token_ref: str
    target_bps: int


class AllocationUpdated(Event):
    name: ClassVar[str] = "AllocationUpdated"
    asset_id: str
    old_target_bps: int
    new_target_bps: int


class RoleGranted(Event):
    name: ClassVar[str] = "RoleGranted"
    role: str
    principal: str
    actor: str


class RoleRevoked(Event):
    name: ClassVar[str] = "RoleRevoked"
    role: str
    principal: str
    actor: str


# ---------------------------------------------------------------------------
# Event log
# ---------------------------------------------------------------------------

Listener = Callable[[str, Event], None]
E = TypeVar("E", bound=Event)


class EventLog:
    """Ordered event trail for one component (``source``)."""

    def __init__(self, source: str, listeners: Optional[List[Listener]] = None):
        self.source = source
        self._events: List[Event] = []
        self._listeners: List[Listener] = list(listeners or [])
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def emit(self, event: Event) -> Event:
        with self._lock:
            self._events.append(event)
        _LOG.info("%s %s %s", self.source, event.name, event.details())
        for listener in list(self._listeners):
            try:
                listener(self.source, event)
            except Exception:  # listener bugs must not leak into the emitter
                _LOG.exception("event listener failed for %s", event.name)
        return event

    def events(self, kind: Optional[Type[E]] = None) -> List[Event]:
        with self._lock:
            if kind is None:
                return list(self._events)
            return [e for e in self._events if isinstance(e, kind)]

    def __len__(self) -> int:
        return len(self._events)
