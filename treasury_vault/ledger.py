"""Per-treasury asset ledger.

Plain map from asset id to :class:`~treasury_vault.models.Asset`. Access
checks and locking belong to the owning :class:`~treasury_vault.vault.TreasuryVault`;
the ledger validates parameters and never overwrites an existing entry.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Sequence

from common.errors import DuplicateEntry, InvalidParameter, NotFound

from .models import MAX_BPS, Amount, Asset, AssetAllocation, Holding, to_decimal

__all__ = ["AssetLedger"]


def _check_bps(value: int) -> int:
    if not 0 <= int(value) <= MAX_BPS:
        raise InvalidParameter(f"allocation must be within 0..{MAX_BPS} bps, got {value}")
    return int(value)


def _check_price(value: int) -> int:
    if int(value) <= 0:
        raise InvalidParameter(f"price must be positive, got {value}")
    return int(value)


class AssetLedger:
    def __init__(self) -> None:
        self._assets: Dict[str, Asset] = {}

    def __len__(self) -> int:
        return len(self._assets)

    def __contains__(self, asset_id: str) -> bool:
        return asset_id in self._assets

    # ------------------------------------------------------------------
    def add(
        self,
        asset_id: str,
        token_ref: str,
        target_bps: int,
        min_funding_amount: Amount = 0,
        price: Optional[int] = None,
    ) -> Asset:
        if not asset_id:
            raise InvalidParameter("asset_id must be non-empty")
        target_bps = _check_bps(target_bps)
        minimum = to_decimal(min_funding_amount)
        if minimum < 0:
            raise InvalidParameter("min_funding_amount must be >= 0")
        if asset_id in self._assets:
            raise DuplicateEntry(f"asset {asset_id} exists")
        asset = Asset(asset_id=asset_id, token_ref=token_ref, target_bps=target_bps, min_funding_amount=minimum)
        if price is not None:
            asset.price = _check_price(price)
        self._assets[asset_id] = asset
        return asset

    def get(self, asset_id: str) -> Asset:
        try:
            return self._assets[asset_id]
        except KeyError:
            raise NotFound(f"asset {asset_id} not registered") from None

    def all(self) -> List[Asset]:
        return list(self._assets.values())

    def update_allocation(self, asset_id: str, new_target_bps: int) -> int:
        """Set a new target; returns the previous one."""
        asset = self.get(asset_id)
        new_target_bps = _check_bps(new_target_bps)
        old, asset.target_bps = asset.target_bps, new_target_bps
        return old

    def set_price(self, asset_id: str, price: int) -> None:
        self.get(asset_id).price = _check_price(price)

    def deposit(self, asset_id: str, amount: Amount) -> Decimal:
        asset = self.get(asset_id)
        amount = to_decimal(amount)
        if amount <= 0:
            raise InvalidParameter("deposit amount must be positive")
        asset.balance += amount
        return asset.balance

    # ------------------------------------------------------------------
    # Valuation (derived, never stored)
    # ------------------------------------------------------------------
    def total_value(self) -> Decimal:
        return sum((a.value for a in self._assets.values()), Decimal(0))

    def current_allocation_bps(self, asset_id: str) -> int:
        asset = self.get(asset_id)
        total = self.total_value()
        if total == 0:
            return 0
        return int(asset.value * MAX_BPS // total)

    def allocation(self, asset_id: str) -> AssetAllocation:
        asset = self.get(asset_id)
        return AssetAllocation(
            token_ref=asset.token_ref,
            balance=asset.balance,
            target_bps=asset.target_bps,
            current_bps=self.current_allocation_bps(asset_id),
        )

    # ------------------------------------------------------------------
    # Rebalance support
    # ------------------------------------------------------------------
    def snapshot(self, price_overrides: Mapping[str, int] | None = None) -> List[Holding]:
        overrides = price_overrides or {}
        return [
            Holding(
                asset_id=a.asset_id,
                balance=a.balance,
                target_bps=a.target_bps,
                price=_check_price(overrides.get(a.asset_id, a.price)),
                min_funding_amount=a.min_funding_amount,
            )
            for a in self._assets.values()
        ]

    def commit(self, holdings: Sequence[Holding]) -> None:
        """Write balances and prices from a validated snapshot in one step."""
        for h in holdings:
            self.get(h.asset_id)  # every id must exist before anything is written
        for h in holdings:
            asset = self._assets[h.asset_id]
            asset.balance = h.balance
            asset.price = h.price
