"""Rebalance policies.

A policy receives an immutable snapshot of holdings and returns the trades
that move the portfolio toward target allocations. Policies are pure; the
engine validates their output (see :func:`check_trades`) before anything is
committed.

Contract: for every asset ``|current_bps_after - target| <= |current_bps_before
- target|`` and no balance goes negative.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, localcontext
from typing import Dict, List, Mapping, Protocol, Sequence

from common.errors import InvalidParameter, StateError

from .models import MAX_BPS, PRICE_SCALE, Holding, Trade

__all__ = [
    "RebalancePolicy",
    "ProportionalRebalancePolicy",
    "allocation_bps",
    "apply_trades",
    "check_trades",
    "policy_from_config",
]

# Slack (in bps) absorbed when comparing exact Decimal shares before/after.
_CONVERGENCE_EPSILON = Decimal("1e-9")


class RebalancePolicy(Protocol):
    def plan(self, holdings: Sequence[Holding]) -> List[Trade]:
        ...


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def allocation_bps(holdings: Sequence[Holding]) -> Dict[str, Decimal]:
    """Exact (unfloored) share of total value per asset, in bps."""
    total = sum((h.value for h in holdings), Decimal(0))
    if total == 0:
        return {h.asset_id: Decimal(0) for h in holdings}
    return {h.asset_id: h.value * MAX_BPS / total for h in holdings}


def apply_trades(holdings: Sequence[Holding], trades: Sequence[Trade]) -> List[Holding]:
    """Return new holdings with *trades* applied at mark prices.

    Any malformed trade (unknown asset, self-trade, non-positive amount) or
    overdrawn balance raises ``StateError("policy")``.
    """
    by_id: Dict[str, Holding] = {h.asset_id: h for h in holdings}
    balances: Dict[str, Decimal] = {h.asset_id: h.balance for h in holdings}

    for trade in trades:
        src = by_id.get(trade.from_asset)
        dst = by_id.get(trade.to_asset)
        if src is None or dst is None:
            raise StateError("policy", f"trade references unknown asset: {trade}")
        if src.asset_id == dst.asset_id:
            raise StateError("policy", f"self trade on {src.asset_id}")
        if trade.amount <= 0:
            raise StateError("policy", f"non-positive trade amount: {trade.amount}")
        balances[src.asset_id] -= trade.amount
        balances[dst.asset_id] += trade.amount * src.price / dst.price
        if balances[src.asset_id] < 0:
            raise StateError("policy", f"trade overdraws {src.asset_id}")

    return [
        Holding(h.asset_id, balances[h.asset_id], h.target_bps, h.price, h.min_funding_amount)
        for h in holdings
    ]


def check_trades(holdings: Sequence[Holding], trades: Sequence[Trade]) -> List[Holding]:
    """Apply *trades* on a copy and enforce monotonic convergence."""
    after = apply_trades(holdings, trades)
    before_bps = allocation_bps(holdings)
    after_bps = allocation_bps(after)
    for h in holdings:
        target = Decimal(h.target_bps)
        if abs(after_bps[h.asset_id] - target) > abs(before_bps[h.asset_id] - target) + _CONVERGENCE_EPSILON:
            raise StateError(
                "policy",
                f"{h.asset_id} moves away from target "
                f"({before_bps[h.asset_id]:.2f} -> {after_bps[h.asset_id]:.2f}, target {h.target_bps})",
            )
    return after


# ---------------------------------------------------------------------------
# Default policy
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class ProportionalRebalancePolicy:
    """Move value from over-weight to under-weight assets at mark price.

    Attributes
    ----------
    tolerance_bps
        Drift (bps of total value) below which an asset is left alone.
    """

    tolerance_bps: int = 0

    def plan(self, holdings: Sequence[Holding]) -> List[Trade]:
        total = sum((h.value for h in holdings), Decimal(0))
        if total <= 0:
            return []
        tolerance = total * self.tolerance_bps / MAX_BPS

        sellers: List[List] = []  # [holding, value still to shed, balance left]
        buyers: List[List] = []  # [holding, value still to absorb]
        for h in holdings:
            drift = h.value - total * h.target_bps / MAX_BPS
            if drift > tolerance:
                # never sell below the minimum funding floor
                sellable = max(h.balance - h.min_funding_amount, Decimal(0)) * h.price / PRICE_SCALE
                excess = min(drift, sellable)
                if excess > 0:
                    sellers.append([h, excess, h.balance])
            elif -drift > tolerance:
                buyers.append([h, -drift])

        sellers.sort(key=lambda s: (-s[1], s[0].asset_id))
        buyers.sort(key=lambda b: (-b[1], b[0].asset_id))

        trades: List[Trade] = []
        i = j = 0
        while i < len(sellers) and j < len(buyers):
            seller, shed, remaining = sellers[i]
            buyer, absorb = buyers[j]
            moved = min(shed, absorb)
            with localcontext() as ctx:
                ctx.rounding = ROUND_DOWN
                amount = moved * PRICE_SCALE / seller.price
            # clamp in units; value-to-units rounding must not cross the floor
            amount = min(amount, max(remaining - seller.min_funding_amount, Decimal(0)))
            if amount > 0:
                trades.append(Trade(seller.asset_id, buyer.asset_id, amount))
                sellers[i][2] = remaining - amount
            sellers[i][1] -= moved
            buyers[j][1] -= moved
            if sellers[i][1] <= 0 or sellers[i][2] <= seller.min_funding_amount:
                i += 1
            if buyers[j][1] <= 0:
                j += 1
        return trades


def policy_from_config(config: Mapping[str, object] | None) -> RebalancePolicy:
    """Build the default policy from a config mapping (``tolerance_bps``)."""
    config = config or {}
    tolerance = int(config.get("tolerance_bps", 0))  # type: ignore[arg-type]
    if not 0 <= tolerance <= MAX_BPS:
        raise InvalidParameter("tolerance_bps must be within 0..10000")
    return ProportionalRebalancePolicy(tolerance_bps=tolerance)
