"""Treasury side: asset ledger, rebalance engine and emergency controls."""
from .engine import RebalanceEngine
from .ledger import AssetLedger
from .models import Asset, AssetAllocation, Holding, PortfolioState, RebalanceRecord, Trade
from .policy import ProportionalRebalancePolicy, RebalancePolicy
from .vault import TreasuryVault

__all__ = [
    "Asset",
    "AssetAllocation",
    "AssetLedger",
    "Holding",
    "PortfolioState",
    "ProportionalRebalancePolicy",
    "RebalanceEngine",
    "RebalancePolicy",
    "RebalanceRecord",
    "Trade",
    "TreasuryVault",
]
