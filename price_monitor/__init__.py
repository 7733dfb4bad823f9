"""Monitor side: price feeds, threshold detection and breach dispatch."""
from .dispatcher import CrossChainDispatcher
from .models import DispatchOutcome, PriceFeed, RebalanceCommand, TreasuryRef
from .monitor import ObservationResult, PriceMonitor
from .transport import HttpTransport, LocalTransport

__all__ = [
    "CrossChainDispatcher",
    "DispatchOutcome",
    "HttpTransport",
    "LocalTransport",
    "ObservationResult",
    "PriceFeed",
    "PriceMonitor",
    "RebalanceCommand",
    "TreasuryRef",
]
