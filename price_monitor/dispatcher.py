"""Fire-and-forget fan-out of breach notifications.

One independent asyncio task per active treasury. A delivery failure is
logged and counted, and never aborts delivery to sibling treasuries nor
reaches back into the detector's (already committed) state.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Sequence

from common.events import EventLog, RebalanceTriggered
from treasury_observability.metrics import dispatch_latency_seconds, dispatch_total

from .models import DispatchOutcome, RebalanceCommand, TreasuryRef
from .transport import Transport

__all__ = ["CrossChainDispatcher"]

_LOG = logging.getLogger(__name__)


class CrossChainDispatcher:
    def __init__(self, transport: Transport, events: EventLog):
        self.transport = transport
        self._events = events

    async def dispatch_breach(
        self,
        targets: Sequence[TreasuryRef],
        feed_id: str,
        old_price: int,
        new_price: int,
        change_bps: int,
    ) -> List[DispatchOutcome]:
        """Notify each of *targets*, the active treasuries snapshotted at breach time."""
        commands = [
            RebalanceCommand(
                scope_id=ref.scope_id,
                treasury_ref=ref.address,
                feed_id=feed_id,
                trigger_price=new_price,
                change_bps=change_bps,
                resource_budget=ref.resource_budget,
            )
            for ref in targets
        ]
        if not commands:
            _LOG.info("breach on %s: no active treasuries", feed_id, extra={"feed_id": feed_id})
            return []

        tasks = [asyncio.create_task(self._deliver(cmd)) for cmd in commands]
        return list(await asyncio.gather(*tasks))

    async def _deliver(self, command: RebalanceCommand) -> DispatchOutcome:
        scope = str(command.scope_id)
        self._events.emit(
            RebalanceTriggered(
                scope_id=command.scope_id,
                treasury_ref=command.treasury_ref,
                feed_id=command.feed_id,
                price=command.trigger_price,
            )
        )
        t0 = time.perf_counter()
        try:
            await self.transport.send(command)
        except Exception as exc:
            # Partial-failure tolerance: the outcome stays with this treasury.
            _LOG.warning(
                "dispatch to scope %s failed: %s",
                command.scope_id,
                exc,
                exc_info=True,
                extra={"scope_id": command.scope_id, "feed_id": command.feed_id},
            )
            dispatch_total.labels(scope_id=scope, outcome="failed").inc()
            return DispatchOutcome(
                command.scope_id, command.treasury_ref, False, f"{type(exc).__name__}: {exc}"
            )
        finally:
            dispatch_latency_seconds.labels(scope_id=scope).observe(time.perf_counter() - t0)

        dispatch_total.labels(scope_id=scope, outcome="delivered").inc()
        return DispatchOutcome(command.scope_id, command.treasury_ref, True)
