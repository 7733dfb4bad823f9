"""Error taxonomy shared by the monitor and treasury services.

Every operation raises one of these *before* mutating state, so callers (and
tests) can assert on the exact ``kind`` and rely on all-or-nothing semantics.
"""
from __future__ import annotations

__all__ = [
    "TreasuryError",
    "Unauthorized",
    "DuplicateEntry",
    "NotFound",
    "InvalidParameter",
    "StateError",
]


class TreasuryError(Exception):
    """Base class; ``kind`` is the stable, machine-readable error name."""

    kind = "treasury_error"

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.kind)
        self.detail = detail or self.kind

    def as_dict(self) -> dict:
        return {"error": self.kind, "detail": self.detail}


class Unauthorized(TreasuryError):
    kind = "unauthorized"


class DuplicateEntry(TreasuryError):
    kind = "duplicate_entry"


class NotFound(TreasuryError):
    kind = "not_found"


class InvalidParameter(TreasuryError):
    kind = "invalid_parameter"


class StateError(TreasuryError):
    """Operation refused by current state (``paused``, ``cooldown``, ``policy``)."""

    kind = "state_error"

    def __init__(self, reason: str, detail: str = ""):
        super().__init__(detail or reason)
        self.reason = reason

    def as_dict(self) -> dict:
        return {"error": self.kind, "reason": self.reason, "detail": self.detail}
