"""Delivery of rebalance commands to destination treasuries.

The monitor only knows ``(scope_id, address)`` for each treasury. A transport
resolves that pair and delivers the command. Raising from :meth:`send` marks
the delivery as failed for that one treasury only.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Callable, Dict, Mapping, Optional, Protocol

import httpx

from common.secrets import secrets

from .models import RebalanceCommand

__all__ = [
    "Transport",
    "RebalanceTarget",
    "LocalTransport",
    "HttpTransport",
    "load_endpoints",
]

_LOG = logging.getLogger(__name__)

DISPATCH_TIMEOUT_SECONDS = float(os.getenv("DISPATCH_TIMEOUT_SECONDS", "10"))


class Transport(Protocol):
    async def send(self, command: RebalanceCommand) -> None:
        ...


class RebalanceTarget(Protocol):
    """Anything exposing the treasury-side rebalance entrypoint."""

    def execute_rebalance(
        self, principal: str, feed_id: str, trigger_price: int, change_bps: int
    ) -> object:
        ...


Resolver = Callable[[int, str], Optional[RebalanceTarget]]


class LocalTransport:
    """In-process delivery: resolve the back-reference to a live treasury.

    Each delivery runs in a worker thread so treasuries process commands
    independently of each other and of the monitor.
    """

    def __init__(self, resolver: Resolver, principal: str):
        self._resolve = resolver
        self.principal = principal

    async def send(self, command: RebalanceCommand) -> None:
        target = self._resolve(command.scope_id, command.treasury_ref)
        if target is None:
            raise LookupError(
                f"no treasury at {command.scope_id}:{command.treasury_ref}"
            )
        await asyncio.to_thread(
            target.execute_rebalance,
            self.principal,
            command.feed_id,
            command.trigger_price,
            command.change_bps,
        )


def load_endpoints(raw: str | None = None) -> Dict[int, str]:
    """Parse ``TREASURY_ENDPOINTS`` (JSON object scope_id -> base URL)."""
    raw = raw if raw is not None else os.getenv("TREASURY_ENDPOINTS", "{}")
    data = json.loads(raw or "{}")
    return {int(k): str(v).rstrip("/") for k, v in data.items()}


class HttpTransport:
    """Deliver commands to remote treasury services over HTTP."""

    def __init__(
        self,
        endpoints: Mapping[int, str] | None = None,
        *,
        token: str | None = None,
        timeout: float = DISPATCH_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._endpoints = dict(endpoints if endpoints is not None else load_endpoints())
        self._token = token
        self._timeout = timeout
        self._transport = transport

    def _headers(self, command: RebalanceCommand) -> dict:
        token = self._token or secrets.dispatch_token()
        headers = {"X-Resource-Budget": str(command.resource_budget)}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def send(self, command: RebalanceCommand) -> None:
        base_url = self._endpoints.get(command.scope_id)
        if not base_url:
            raise LookupError(f"no endpoint configured for scope {command.scope_id}")
        body = {
            "feed_id": command.feed_id,
            "trigger_price": command.trigger_price,
            "change_bps": command.change_bps,
        }
        async with httpx.AsyncClient(
            base_url=base_url, timeout=self._timeout, transport=self._transport
        ) as client:
            resp = await client.post(
                "/treasury/rebalance", json=body, headers=self._headers(command)
            )
            _LOG.debug("dispatch scope=%s status=%s", command.scope_id, resp.status_code)
            resp.raise_for_status()
