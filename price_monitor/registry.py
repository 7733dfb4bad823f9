"""Arena-style registries keyed by stable identifiers.

Inserts check existence explicitly and raise ``DuplicateEntry`` instead of
overwriting. Neither registry ever deletes an entry. Callers serialise
mutations (see :class:`price_monitor.monitor.PriceMonitor`).
"""
from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from common.errors import DuplicateEntry, InvalidParameter, NotFound

from . import detector
from .models import MAX_BPS, Detection, PriceFeed, TreasuryRef, normalise_ref

__all__ = ["PriceFeedRegistry", "TreasuryRegistry"]


def _origin_key(origin_scope: int, origin_ref: str) -> Tuple[int, str]:
    return int(origin_scope), normalise_ref(origin_ref).lower()


class PriceFeedRegistry:
    def __init__(self) -> None:
        self._feeds: Dict[str, PriceFeed] = {}
        self._by_origin: Dict[Tuple[int, str], str] = {}

    def __len__(self) -> int:
        return len(self._feeds)

    def __contains__(self, feed_id: str) -> bool:
        return feed_id in self._feeds

    def register(
        self, feed_id: str, origin_ref: str, origin_scope: int, threshold_bps: int
    ) -> PriceFeed:
        if not feed_id:
            raise InvalidParameter("feed_id must be non-empty")
        if not 0 <= threshold_bps <= MAX_BPS:
            raise InvalidParameter(f"threshold_bps must be within 0..{MAX_BPS}")
        if not (origin_ref or "").strip():
            raise InvalidParameter("origin_ref must be non-empty")
        if feed_id in self._feeds:
            raise DuplicateEntry(f"feed {feed_id} exists")
        key = _origin_key(origin_scope, origin_ref)
        if key in self._by_origin:
            raise DuplicateEntry(f"origin {key} already bound to feed {self._by_origin[key]}")

        feed = PriceFeed(
            feed_id=feed_id,
            origin_ref=normalise_ref(origin_ref),
            origin_scope=int(origin_scope),
            threshold_bps=int(threshold_bps),
        )
        self._feeds[feed_id] = feed
        self._by_origin[key] = feed_id
        return feed

    def get(self, feed_id: str) -> PriceFeed:
        try:
            return self._feeds[feed_id]
        except KeyError:
            raise NotFound(f"feed {feed_id} not registered") from None

    def resolve_origin(self, origin_scope: int, origin_ref: str) -> PriceFeed:
        feed_id = self._by_origin.get(_origin_key(origin_scope, origin_ref))
        if feed_id is None:
            raise NotFound(f"no feed bound to {origin_scope}:{origin_ref}")
        return self._feeds[feed_id]

    def all(self) -> List[PriceFeed]:
        return list(self._feeds.values())

    def observe(
        self, feed_id: str, price: int, observed_at: int, block: Optional[int] = None
    ) -> Detection:
        """Record an observation and return the detector's verdict.

        Price tracking is continuous: state is updated whether or not the
        observation breaches.
        """
        feed = self.get(feed_id)
        result = detector.evaluate(feed.last_price, int(price), feed.threshold_bps)
        feed.last_price = int(price)
        feed.last_observed_at = int(observed_at)
        feed.observation_count += 1
        if block is not None:
            feed.last_block = int(block)
        return result


class TreasuryRegistry:
    def __init__(self) -> None:
        self._treasuries: Dict[int, TreasuryRef] = {}

    def __len__(self) -> int:
        return len(self._treasuries)

    def register(self, scope_id: int, address: str, resource_budget: int) -> TreasuryRef:
        address = normalise_ref(address)
        if not address:
            raise InvalidParameter("treasury address must be non-empty")
        if int(resource_budget) <= 0:
            raise InvalidParameter("resource_budget must be positive")
        if int(scope_id) in self._treasuries:
            raise DuplicateEntry(f"treasury for scope {scope_id} exists")
        ref = TreasuryRef(scope_id=int(scope_id), address=address, resource_budget=int(resource_budget))
        self._treasuries[ref.scope_id] = ref
        return ref

    def get(self, scope_id: int) -> TreasuryRef:
        try:
            return self._treasuries[int(scope_id)]
        except KeyError:
            raise NotFound(f"treasury for scope {scope_id} not registered") from None

    def set_active(self, scope_id: int, active: bool) -> TreasuryRef:
        ref = self.get(scope_id)
        ref.active = bool(active)
        return ref

    def all(self) -> List[TreasuryRef]:
        return list(self._treasuries.values())

    def active(self) -> List[TreasuryRef]:
        return [t for t in self._treasuries.values() if t.active]
