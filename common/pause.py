"""Emergency pause switch gating mutating treasury operations."""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .access import AccessPolicy, Operation
from .errors import StateError

__all__ = ["PauseState", "PauseController"]


@dataclass(frozen=True)
class PauseState:
    paused: bool = False
    last_actor: Optional[str] = None
    last_changed_at: Optional[float] = None


class PauseController:
    """Process-wide on/off switch. Pause needs EMERGENCY, unpause GOVERNANCE."""

    def __init__(self, access: AccessPolicy, clock: Callable[[], float] = time.time):
        self._access = access
        self._clock = clock
        self._state = PauseState()
        self._lock = threading.Lock()

    @property
    def state(self) -> PauseState:
        return self._state

    @property
    def paused(self) -> bool:
        return self._state.paused

    def pause(self, actor: str) -> PauseState:
        # Idempotent, but the caller is still authenticated on every call.
        self._access.require(actor, Operation.PAUSE)
        with self._lock:
            self._state = PauseState(True, actor, self._clock())
            return self._state

    def unpause(self, actor: str) -> PauseState:
        self._access.require(actor, Operation.UNPAUSE)
        with self._lock:
            self._state = PauseState(False, actor, self._clock())
            return self._state

    def ensure_running(self) -> None:
        if self._state.paused:
            raise StateError("paused", "treasury is paused")
