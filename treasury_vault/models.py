"""Treasury-side records."""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Tuple, Union

__all__ = [
    "MAX_BPS",
    "PRICE_SCALE",
    "Amount",
    "to_decimal",
    "Asset",
    "Holding",
    "Trade",
    "RebalanceRecord",
    "PortfolioState",
    "AssetAllocation",
]

MAX_BPS = 10_000
# Prices are 8-decimal fixed point integers (oracle convention): 2000 USD == 2000 * 10**8.
PRICE_SCALE = 10**8

Amount = Union[Decimal, int, str]


def to_decimal(value: Amount) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # go through str() so 0.1 stays 0.1
        return Decimal(str(value))
    return Decimal(value)


@dataclass(slots=True)
class Asset:
    """One ledger entry.

    ``price`` marks one unit of the asset in the common valuation unit;
    stablecoins default to ``PRICE_SCALE`` (1.0).
    """

    asset_id: str
    token_ref: str
    target_bps: int
    min_funding_amount: Decimal = Decimal(0)
    balance: Decimal = Decimal(0)
    price: int = PRICE_SCALE

    @property
    def value(self) -> Decimal:
        return self.balance * self.price / PRICE_SCALE


@dataclass(frozen=True, slots=True)
class Holding:
    """Immutable snapshot of an asset handed to a rebalance policy."""

    asset_id: str
    balance: Decimal
    target_bps: int
    price: int = PRICE_SCALE
    min_funding_amount: Decimal = Decimal(0)

    @property
    def value(self) -> Decimal:
        return self.balance * self.price / PRICE_SCALE


@dataclass(frozen=True, slots=True)
class Trade:
    """Sell ``amount`` units of ``from_asset`` into ``to_asset`` at mark."""

    from_asset: str
    to_asset: str
    amount: Decimal


@dataclass(frozen=True, slots=True)
class RebalanceRecord:
    sequence: int
    feed_id: str
    trigger_price: int
    change_bps: int
    timestamp: int
    trades: Tuple[Trade, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class PortfolioState:
    total_value: Decimal
    last_rebalance_at: int
    rebalance_count: int


@dataclass(frozen=True, slots=True)
class AssetAllocation:
    token_ref: str
    balance: Decimal
    target_bps: int
    current_bps: int
