"""Threshold detection.

Pure and deterministic, so it can be unit-tested without side effects; the
registry applies the resulting state update.
"""
from __future__ import annotations

from typing import Optional

from .models import MAX_BPS, Detection

__all__ = ["change_bps", "evaluate"]


def change_bps(old_price: int, new_price: int) -> int:
    """``floor(10000 * |new - old| / |old|)`` in integer arithmetic.

    A zero reference price has no meaningful ratio: any move away from zero
    counts as a full 10000 bps change.
    """
    if old_price == 0:
        return 0 if new_price == 0 else MAX_BPS
    return (MAX_BPS * abs(new_price - old_price)) // abs(old_price)


def evaluate(last_price: Optional[int], price: int, threshold_bps: int) -> Detection:
    """Decide bootstrap vs. breach for a new observation."""
    if last_price is None:
        # Bootstrap: the first observation never breaches.
        return Detection(breached=False, old_price=None, new_price=price, change_bps=0)

    delta = change_bps(last_price, price)
    return Detection(
        breached=delta >= threshold_bps,
        old_price=last_price,
        new_price=price,
        change_bps=delta,
    )
