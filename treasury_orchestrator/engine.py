import logging
import time
from typing import Callable, Dict, List, Optional

from common.access import Role
from common.audit import AuditSink
from price_monitor import LocalTransport, ObservationResult, PriceMonitor
from price_monitor.models import normalise_ref
from treasury_vault import TreasuryVault
from treasury_vault.policy import policy_from_config

from .models import SystemConfig, TreasuryConfig

_LOG = logging.getLogger(__name__)


class ReactiveSystem:
    """
    One monitor wired to in-process treasuries through ``LocalTransport``.

    Every treasury grants REACTIVE_TRIGGER to the monitor's principal, so a
    breach observed by the monitor lands on each active treasury's engine.
    """

    def __init__(
        self,
        config: SystemConfig,
        *,
        clock: Callable[[], float] = time.time,
        audit: Optional[AuditSink] = None,
    ):
        self.config = config
        self.vaults: Dict[int, TreasuryVault] = {}
        principal = config.monitor_principal or config.owner
        self.monitor = PriceMonitor(
            config.owner,
            transport=LocalTransport(self.resolve, principal),
            principal=principal,
        )
        if audit is not None:
            self.monitor.events.subscribe(audit)

        for feed in config.feeds:
            self.monitor.register_feed(
                config.owner, feed.feed_id, feed.origin_ref, feed.origin_scope, feed.threshold_bps
            )
        for treasury in config.treasuries:
            vault = self._build_vault(treasury, principal, clock)
            if audit is not None:
                vault.events.subscribe(audit)
            self.vaults[vault.scope_id] = vault
            self.monitor.register_treasury(
                config.owner, treasury.scope_id, treasury.address, treasury.resource_budget
            )
            if not treasury.active:
                self.monitor.set_treasury_active(config.owner, treasury.scope_id, False)

    @staticmethod
    def _build_vault(cfg: TreasuryConfig, principal: str, clock: Callable[[], float]) -> TreasuryVault:
        vault = TreasuryVault(
            cfg.governor,
            scope_id=cfg.scope_id,
            address=normalise_ref(cfg.address),
            policy=policy_from_config({"tolerance_bps": cfg.tolerance_bps}),
            cooldown_seconds=cfg.cooldown_seconds,
            clock=clock,
        )
        for asset in cfg.assets:
            vault.add_asset(
                cfg.governor,
                asset.asset_id,
                asset.token_ref,
                asset.target_bps,
                asset.min_funding_amount,
                asset.price,
            )
            if asset.balance > 0:
                vault.deposit(asset.asset_id, asset.balance)
            if asset.linked_feed:
                vault.link_feed(cfg.governor, asset.linked_feed, asset.asset_id)
        vault.grant_reactive_trigger(cfg.governor, principal)
        for member in cfg.emergency:
            vault.grant_role(cfg.governor, member, Role.EMERGENCY)
        return vault

    def resolve(self, scope_id: int, address: str) -> Optional[TreasuryVault]:
        vault = self.vaults.get(scope_id)
        if vault is None or vault.address != normalise_ref(address):
            return None
        return vault

    async def feed(
        self,
        feed_id: str,
        prices: List[int],
        start: int = 0,
        step: int = 60,
        tick: Optional[Callable[[int], None]] = None,
    ) -> List[ObservationResult]:
        """Replay *prices* for *feed_id*, one observation every *step* seconds.

        *tick* receives each observation time before it is processed, so a
        simulated clock can drive treasury cooldowns.
        """
        results = []
        for i, price in enumerate(prices):
            observed_at = start + i * step
            if tick is not None:
                tick(observed_at)
            res = await self.monitor.process_observation(feed_id, price, observed_at)
            if res.breached:
                _LOG.info(
                    "breach on %s: %s bps, delivered to %d/%d treasuries",
                    feed_id,
                    res.detection.change_bps,
                    sum(1 for o in res.dispatched if o.delivered),
                    len(res.dispatched),
                )
            results.append(res)
        return results

    def summary(self) -> dict:
        out = {}
        for scope_id, vault in self.vaults.items():
            state = vault.get_portfolio_state()
            out[str(scope_id)] = {
                "total_value": str(state.total_value),
                "rebalance_count": state.rebalance_count,
                "last_rebalance_at": state.last_rebalance_at,
                "paused": vault.is_paused(),
                "assets": {
                    asset_id: {
                        "balance": str(vault.get_asset_allocation(asset_id).balance),
                        "current_bps": vault.current_allocation_bps(asset_id),
                    }
                    for asset_id in vault.asset_ids()
                },
            }
        return out
