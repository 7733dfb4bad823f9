"""Monitor component: feed/treasury registries, detection and dispatch.

All mutations of monitor state run under one lock (single writer). Dispatch
happens after the lock is released, so the detector's update is committed
before any treasury is contacted and is never rolled back by a delivery
failure.
"""
from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Union

from common.access import AccessPolicy, Operation, Role
from common.events import (
    EventLog,
    FeedSubscribed,
    PriceThresholdBreached,
    TreasuryStatusChanged,
)
from common.errors import InvalidParameter
from treasury_observability.metrics import (
    feed_last_price,
    price_breaches_total,
    price_observations_total,
)

from .codec import decode_round_data, is_answer_updated
from .dispatcher import CrossChainDispatcher
from .models import Detection, DispatchOutcome, PriceFeed, TreasuryRef
from .registry import PriceFeedRegistry, TreasuryRegistry
from .transport import HttpTransport, Transport

__all__ = ["ObservationResult", "PriceMonitor"]

_LOG = logging.getLogger(__name__)


@dataclass
class ObservationResult:
    feed_id: str
    detection: Detection
    dispatched: List[DispatchOutcome] = field(default_factory=list)

    @property
    def breached(self) -> bool:
        return self.detection.breached


class PriceMonitor:
    """Reactive price monitor.

    ``owner`` is the deploying principal and is bootstrapped with the OWNER
    role. ``principal`` is the identity the monitor presents to treasuries
    (what they grant REACTIVE_TRIGGER to); it defaults to ``owner``.
    """

    def __init__(
        self,
        owner: str,
        *,
        transport: Optional[Transport] = None,
        events: Optional[EventLog] = None,
        principal: Optional[str] = None,
    ):
        self.owner = owner
        self.principal = principal or owner
        self.access = AccessPolicy({owner: [Role.OWNER]})
        self.events = events or EventLog("monitor")
        self._feeds = PriceFeedRegistry()
        self._treasuries = TreasuryRegistry()
        self._lock = threading.Lock()
        self.dispatcher = CrossChainDispatcher(transport or HttpTransport(), self.events)

    # ------------------------------------------------------------------
    # Registration (OWNER)
    # ------------------------------------------------------------------
    def register_feed(
        self, principal: str, feed_id: str, origin_ref: str, origin_scope: int, threshold_bps: int
    ) -> PriceFeed:
        self.access.require(principal, Operation.REGISTER_FEED)
        with self._lock:
            feed = self._feeds.register(feed_id, origin_ref, origin_scope, threshold_bps)
        self.events.emit(
            FeedSubscribed(
                feed_id=feed.feed_id,
                origin_scope=feed.origin_scope,
                origin_ref=feed.origin_ref,
                threshold_bps=feed.threshold_bps,
            )
        )
        return dataclasses.replace(feed)

    def register_treasury(
        self, principal: str, scope_id: int, address: str, resource_budget: int
    ) -> TreasuryRef:
        self.access.require(principal, Operation.REGISTER_TREASURY)
        with self._lock:
            ref = self._treasuries.register(scope_id, address, resource_budget)
        _LOG.info("treasury registered scope=%s address=%s", ref.scope_id, ref.address)
        return dataclasses.replace(ref)

    def set_treasury_active(self, principal: str, scope_id: int, active: bool) -> TreasuryRef:
        self.access.require(principal, Operation.SET_TREASURY_ACTIVE)
        with self._lock:
            ref = self._treasuries.set_active(scope_id, active)
        self.events.emit(TreasuryStatusChanged(scope_id=ref.scope_id, active=ref.active))
        return dataclasses.replace(ref)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------
    def observe(
        self, feed_id: str, price: int, observed_at: int, block: Optional[int] = None
    ) -> Detection:
        """Record one observation; emits ``PriceThresholdBreached`` on breach."""
        with self._lock:
            detection = self._feeds.observe(feed_id, price, observed_at, block)

        price_observations_total.labels(feed_id=feed_id).inc()
        feed_last_price.labels(feed_id=feed_id).set(detection.new_price)
        if detection.breached:
            price_breaches_total.labels(feed_id=feed_id).inc()
            self.events.emit(
                PriceThresholdBreached(
                    feed_id=feed_id,
                    old_price=detection.old_price,
                    new_price=detection.new_price,
                    change_bps=detection.change_bps,
                    timestamp=int(observed_at),
                )
            )
        return detection

    async def process_observation(
        self, feed_id: str, price: int, observed_at: int, block: Optional[int] = None
    ) -> ObservationResult:
        """Observe and, on breach, dispatch to every active treasury."""
        detection = self.observe(feed_id, price, observed_at, block)
        result = ObservationResult(feed_id=feed_id, detection=detection)
        if detection.breached:
            with self._lock:
                targets = [dataclasses.replace(ref) for ref in self._treasuries.active()]
            result.dispatched = await self.dispatcher.dispatch_breach(
                targets, feed_id, detection.old_price, detection.new_price, detection.change_bps
            )
        return result

    async def react(
        self,
        origin_scope: int,
        origin_ref: str,
        event_topic: Union[str, bytes],
        raw_payload: Union[str, bytes],
        observed_at_block: int,
    ) -> ObservationResult:
        """Generic inbound event ingestion (oracle ``AnswerUpdated`` logs)."""
        if not is_answer_updated(event_topic):
            raise InvalidParameter(f"unsupported event topic {event_topic!r}")
        round_data = decode_round_data(raw_payload)
        with self._lock:
            feed_id = self._feeds.resolve_origin(origin_scope, origin_ref).feed_id
        return await self.process_observation(
            feed_id, round_data.answer, round_data.updated_at, observed_at_block
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def feed_count(self) -> int:
        return len(self._feeds)

    def treasury_count(self) -> int:
        return len(self._treasuries)

    def get_feed(self, feed_id: str) -> PriceFeed:
        with self._lock:
            return dataclasses.replace(self._feeds.get(feed_id))

    def get_treasury(self, scope_id: int) -> TreasuryRef:
        with self._lock:
            return dataclasses.replace(self._treasuries.get(scope_id))

    def list_feeds(self) -> List[PriceFeed]:
        with self._lock:
            return [dataclasses.replace(f) for f in self._feeds.all()]

    def list_treasuries(self) -> List[TreasuryRef]:
        with self._lock:
            return [dataclasses.replace(t) for t in self._treasuries.all()]
