"""Monitor-side records: price feeds, treasury back-references, commands."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Optional

from web3 import Web3

__all__ = [
    "MAX_BPS",
    "PriceFeed",
    "TreasuryRef",
    "Detection",
    "RebalanceCommand",
    "DispatchOutcome",
    "normalise_ref",
]

MAX_BPS = 10_000  # 1 bp = 0.01 %


def normalise_ref(ref: str) -> str:
    """Checksum EVM addresses; other opaque references are only stripped."""
    ref = (ref or "").strip()
    if Web3.is_address(ref):
        return Web3.to_checksum_address(ref)
    return ref


@dataclass(slots=True)
class PriceFeed:
    """A monitored oracle.

    Attributes
    ----------
    feed_id
        Stable identifier, e.g. ``"ETH_USD"``.
    origin_ref / origin_scope
        Oracle address and the chain it lives on; inbound events are routed
        to a feed by this pair.
    threshold_bps
        Minimum change (bps) that counts as a breach.
    last_price
        8-decimal fixed point; ``None`` until the first observation.
    """

    feed_id: str
    origin_ref: str
    origin_scope: int
    threshold_bps: int
    last_price: Optional[int] = None
    last_observed_at: int = 0
    last_block: Optional[int] = None
    observation_count: int = 0

    @property
    def bootstrapped(self) -> bool:
        return self.last_price is not None

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(slots=True)
class TreasuryRef:
    """Back-reference to a destination treasury (never a live handle)."""

    scope_id: int
    address: str
    resource_budget: int
    active: bool = True

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class Detection:
    breached: bool
    old_price: Optional[int]
    new_price: int
    change_bps: int


@dataclass(frozen=True, slots=True)
class RebalanceCommand:
    """Payload delivered to one treasury after a breach."""

    scope_id: int
    treasury_ref: str
    feed_id: str
    trigger_price: int
    change_bps: int
    resource_budget: int

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class DispatchOutcome:
    scope_id: int
    treasury_ref: str
    delivered: bool
    error: Optional[str] = None
