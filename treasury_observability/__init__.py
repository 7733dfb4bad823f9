"""Prometheus metrics for Treasury services."""

from .metrics import (dispatch_total, price_breaches_total,
                      price_observations_total, rebalance_total)

__all__ = [
    "price_observations_total",
    "price_breaches_total",
    "dispatch_total",
    "rebalance_total",
]
