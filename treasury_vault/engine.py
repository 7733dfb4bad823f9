"""Cooldown-gated rebalance state machine.

States: ``idle`` -> ``cooling`` (right after a successful rebalance, until
``cooldown_seconds`` elapse) -> ``idle``. A rebalance either commits fully or
raises before touching the ledger; there is no in-flight state.
"""
from __future__ import annotations

import logging
import os
import threading
import time
from typing import Callable, Dict, List, Optional

from common.access import AccessPolicy, Operation
from common.errors import StateError, TreasuryError
from common.events import EventLog, RebalanceExecuted
from common.pause import PauseController
from treasury_observability.metrics import (
    portfolio_value,
    rebalance_latency_seconds,
    rebalance_total,
)

from .ledger import AssetLedger
from .models import Holding, RebalanceRecord
from .policy import ProportionalRebalancePolicy, RebalancePolicy, check_trades

__all__ = ["REBALANCE_COOLDOWN_SECONDS", "RebalanceEngine"]

_LOG = logging.getLogger(__name__)

REBALANCE_COOLDOWN_SECONDS = float(os.getenv("REBALANCE_COOLDOWN_SECONDS", "300"))


def _outcome(exc: TreasuryError) -> str:
    return getattr(exc, "reason", None) or exc.kind


class RebalanceEngine:
    def __init__(
        self,
        name: str,
        ledger: AssetLedger,
        access: AccessPolicy,
        pause: PauseController,
        events: EventLog,
        *,
        policy: Optional[RebalancePolicy] = None,
        cooldown_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
        lock: Optional[threading.RLock] = None,
    ):
        self.name = name
        self.ledger = ledger
        self.policy: RebalancePolicy = policy or ProportionalRebalancePolicy()
        self.cooldown_seconds = REBALANCE_COOLDOWN_SECONDS if cooldown_seconds is None else float(cooldown_seconds)
        if self.cooldown_seconds <= 0:
            raise ValueError("cooldown_seconds must be > 0")
        self._access = access
        self._pause = pause
        self._events = events
        self._clock = clock
        self._lock = lock or threading.RLock()
        self._feed_assets: Dict[str, str] = {}

        self.last_rebalance_at: Optional[float] = None
        self.rebalance_count = 0
        self._history: List[RebalanceRecord] = []

    # ------------------------------------------------------------------
    @property
    def state(self) -> str:
        if self.last_rebalance_at is not None and self._in_cooldown(self._clock()):
            return "cooling"
        return "idle"

    def _in_cooldown(self, now: float) -> bool:
        return self.last_rebalance_at is not None and now - self.last_rebalance_at < self.cooldown_seconds

    def link_feed(self, feed_id: str, asset_id: str) -> None:
        """Rebalances triggered by *feed_id* first re-mark *asset_id* at the trigger price."""
        with self._lock:
            self.ledger.get(asset_id)
            self._feed_assets[feed_id] = asset_id

    def linked_asset(self, feed_id: str) -> Optional[str]:
        return self._feed_assets.get(feed_id)

    def history(self) -> List[RebalanceRecord]:
        with self._lock:
            return list(self._history)

    # ------------------------------------------------------------------
    def execute_rebalance(
        self, principal: str, feed_id: str, trigger_price: int, change_bps: int
    ) -> RebalanceRecord:
        t0 = time.perf_counter()
        try:
            record = self._execute(principal, feed_id, int(trigger_price), int(change_bps))
        except TreasuryError as exc:
            rebalance_total.labels(treasury=self.name, outcome=_outcome(exc)).inc()
            _LOG.info("rebalance refused on %s: %s", self.name, exc.detail)
            raise
        rebalance_total.labels(treasury=self.name, outcome="ok").inc()
        rebalance_latency_seconds.labels(treasury=self.name).observe(time.perf_counter() - t0)
        portfolio_value.labels(treasury=self.name).set(float(self.ledger.total_value()))
        return record

    def _execute(self, principal: str, feed_id: str, trigger_price: int, change_bps: int) -> RebalanceRecord:
        self._access.require(principal, Operation.EXECUTE_REBALANCE)
        with self._lock:
            self._pause.ensure_running()
            now = self._clock()
            if self._in_cooldown(now):
                remaining = self.cooldown_seconds - (now - self.last_rebalance_at)
                raise StateError("cooldown", f"cooldown not passed ({remaining:.0f}s left)")

            overrides = {}
            marked = self._feed_assets.get(feed_id)
            if marked is not None and trigger_price > 0:
                overrides[marked] = trigger_price
            before: List[Holding] = self.ledger.snapshot(overrides)
            trades = list(self.policy.plan(before))
            after = check_trades(before, trades)

            # commit: balances, marks, cooldown and history together
            self.ledger.commit(after)
            timestamp = int(now)
            if self._history:
                timestamp = max(timestamp, self._history[-1].timestamp)
            self.last_rebalance_at = now
            self.rebalance_count += 1
            record = RebalanceRecord(
                sequence=self.rebalance_count,
                feed_id=feed_id,
                trigger_price=trigger_price,
                change_bps=change_bps,
                timestamp=timestamp,
                trades=tuple(trades),
            )
            self._history.append(record)

        if trades:
            for trade in trades:
                self._events.emit(
                    RebalanceExecuted(
                        feed_id=feed_id,
                        from_asset=trade.from_asset,
                        to_asset=trade.to_asset,
                        amount=trade.amount,
                        trigger_price=trigger_price,
                    )
                )
        else:
            self._events.emit(RebalanceExecuted(feed_id=feed_id, trigger_price=trigger_price))
        return record
