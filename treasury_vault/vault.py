"""Destination treasury: asset ledger + rebalance engine + emergency pause.

Every mutating call is authorised through the vault's
:class:`~common.access.AccessPolicy` and serialised on one re-entrant lock
shared with the engine.
"""
from __future__ import annotations

import dataclasses
import logging
import threading
import time
from decimal import Decimal
from typing import Callable, List, Optional

from common.access import AccessPolicy, Operation, Role
from common.events import (
    AllocationUpdated,
    AssetAdded,
    EmergencyPaused,
    EmergencyUnpaused,
    EventLog,
    RoleGranted,
    RoleRevoked,
)
from common.pause import PauseController
from treasury_observability.metrics import treasury_paused

from .engine import RebalanceEngine
from .ledger import AssetLedger
from .models import Amount, Asset, AssetAllocation, PortfolioState, RebalanceRecord
from .policy import RebalancePolicy

__all__ = ["TreasuryVault"]

_LOG = logging.getLogger(__name__)


class TreasuryVault:
    """One treasury on one destination ledger (``scope_id``).

    ``governor`` is the deploying principal, bootstrapped with GOVERNANCE.
    """

    def __init__(
        self,
        governor: str,
        *,
        scope_id: int = 0,
        address: str = "",
        policy: Optional[RebalancePolicy] = None,
        cooldown_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
        events: Optional[EventLog] = None,
    ):
        self.scope_id = int(scope_id)
        self.address = address
        self.name = f"treasury:{self.scope_id}"
        self.access = AccessPolicy({governor: [Role.GOVERNANCE]})
        self.events = events or EventLog(self.name)
        self._lock = threading.RLock()
        self.pause_controller = PauseController(self.access, clock)
        self.ledger = AssetLedger()
        self.engine = RebalanceEngine(
            self.name,
            self.ledger,
            self.access,
            self.pause_controller,
            self.events,
            policy=policy,
            cooldown_seconds=cooldown_seconds,
            clock=clock,
            lock=self._lock,
        )
        treasury_paused.labels(treasury=self.name).set(0)

    # ------------------------------------------------------------------
    # Asset management (GOVERNANCE)
    # ------------------------------------------------------------------
    def add_asset(
        self,
        principal: str,
        asset_id: str,
        token_ref: str,
        target_bps: int,
        min_funding_amount: Amount = 0,
        price: Optional[int] = None,
    ) -> Asset:
        self.access.require(principal, Operation.ADD_ASSET)
        with self._lock:
            asset = dataclasses.replace(
                self.ledger.add(asset_id, token_ref, target_bps, min_funding_amount, price)
            )
        self.events.emit(AssetAdded(asset_id=asset_id, token_ref=token_ref, target_bps=asset.target_bps))
        return asset

    def update_allocation(self, principal: str, asset_id: str, new_target_bps: int) -> None:
        self.access.require(principal, Operation.UPDATE_ALLOCATION)
        with self._lock:
            old = self.ledger.update_allocation(asset_id, new_target_bps)
        self.events.emit(
            AllocationUpdated(asset_id=asset_id, old_target_bps=old, new_target_bps=int(new_target_bps))
        )

    def set_asset_price(self, principal: str, asset_id: str, price: int) -> None:
        self.access.require(principal, Operation.SET_ASSET_PRICE)
        with self._lock:
            self.ledger.set_price(asset_id, price)

    def link_feed(self, principal: str, feed_id: str, asset_id: str) -> None:
        self.access.require(principal, Operation.LINK_FEED)
        self.engine.link_feed(feed_id, asset_id)

    def deposit(self, asset_id: str, amount: Amount) -> Decimal:
        """External funding; open to anyone while the treasury is running."""
        with self._lock:
            self.pause_controller.ensure_running()
            return self.ledger.deposit(asset_id, amount)

    # ------------------------------------------------------------------
    # Rebalancing (REACTIVE_TRIGGER)
    # ------------------------------------------------------------------
    def execute_rebalance(
        self, principal: str, feed_id: str, trigger_price: int, change_bps: int
    ) -> RebalanceRecord:
        return self.engine.execute_rebalance(principal, feed_id, trigger_price, change_bps)

    # ------------------------------------------------------------------
    # Emergency controls
    # ------------------------------------------------------------------
    def pause(self, principal: str) -> None:
        with self._lock:
            state = self.pause_controller.pause(principal)
        _LOG.warning("%s paused by %s", self.name, principal, extra={"principal": principal})
        treasury_paused.labels(treasury=self.name).set(1)
        self.events.emit(EmergencyPaused(actor=principal, timestamp=state.last_changed_at))

    def unpause(self, principal: str) -> None:
        with self._lock:
            state = self.pause_controller.unpause(principal)
        _LOG.info("%s unpaused by %s", self.name, principal, extra={"principal": principal})
        treasury_paused.labels(treasury=self.name).set(0)
        self.events.emit(EmergencyUnpaused(actor=principal, timestamp=state.last_changed_at))

    def is_paused(self) -> bool:
        return self.pause_controller.paused

    # ------------------------------------------------------------------
    # Roles (GOVERNANCE)
    # ------------------------------------------------------------------
    def grant_role(self, principal: str, grantee: str, role: Role) -> None:
        if self.access.grant(principal, grantee, role):
            self.events.emit(RoleGranted(role=Role(role).value, principal=grantee, actor=principal))

    def revoke_role(self, principal: str, grantee: str, role: Role) -> None:
        if self.access.revoke(principal, grantee, role):
            self.events.emit(RoleRevoked(role=Role(role).value, principal=grantee, actor=principal))

    def grant_reactive_trigger(self, principal: str, grantee: str) -> None:
        """Authorise *grantee* (normally the monitor) to call execute_rebalance."""
        self.grant_role(principal, grantee, Role.REACTIVE_TRIGGER)

    def has_role(self, principal: str, role: Role) -> bool:
        return self.access.has_role(principal, role)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_portfolio_state(self) -> PortfolioState:
        with self._lock:
            last = self.engine.last_rebalance_at
            return PortfolioState(
                total_value=self.ledger.total_value(),
                last_rebalance_at=int(last) if last is not None else 0,
                rebalance_count=self.engine.rebalance_count,
            )

    def get_asset_allocation(self, asset_id: str) -> AssetAllocation:
        with self._lock:
            return self.ledger.allocation(asset_id)

    def current_allocation_bps(self, asset_id: str) -> int:
        with self._lock:
            return self.ledger.current_allocation_bps(asset_id)

    def asset_ids(self) -> List[str]:
        with self._lock:
            return [a.asset_id for a in self.ledger.all()]

    def history(self) -> List[RebalanceRecord]:
        return self.engine.history()
