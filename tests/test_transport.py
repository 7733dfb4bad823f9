"""Dispatch transports: HTTP delivery and in-process resolution."""
from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from common import secrets as secrets_module
from common.errors import StateError
from price_monitor.models import RebalanceCommand
from price_monitor.transport import HttpTransport, LocalTransport, load_endpoints

CMD = RebalanceCommand(
    scope_id=11155111,
    treasury_ref="0xtreasury",
    feed_id="ETH_USD",
    trigger_price=2300 * 10**8,
    change_bps=1500,
    resource_budget=500_000,
)


def test_load_endpoints():
    assert load_endpoints('{"1": "http://a/", "10": "http://b"}') == {1: "http://a", 10: "http://b"}
    assert load_endpoints("") == {}


def test_http_transport_posts_command():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"sequence": 1})

    secrets_module.secrets.update({"DISPATCH_TOKEN": "dispatch-secret"})
    transport = HttpTransport(
        {11155111: "http://treasury.test"}, transport=httpx.MockTransport(handler)
    )
    asyncio.run(transport.send(CMD))

    (req,) = seen
    assert req.method == "POST"
    assert str(req.url) == "http://treasury.test/treasury/rebalance"
    assert json.loads(req.content) == {
        "feed_id": "ETH_USD",
        "trigger_price": 2300 * 10**8,
        "change_bps": 1500,
    }
    assert req.headers["X-Resource-Budget"] == "500000"
    assert req.headers["Authorization"] == "Bearer dispatch-secret"


def test_http_transport_raises_on_refusal():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(409, json={"error": "state_error", "reason": "cooldown"})

    transport = HttpTransport(
        {11155111: "http://treasury.test"}, token="t", transport=httpx.MockTransport(handler)
    )
    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(transport.send(CMD))


def test_http_transport_unknown_scope():
    transport = HttpTransport({}, transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    with pytest.raises(LookupError):
        asyncio.run(transport.send(CMD))


class Target:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def execute_rebalance(self, principal, feed_id, trigger_price, change_bps):
        self.calls.append((principal, feed_id, trigger_price, change_bps))
        if self.error:
            raise self.error


def test_local_transport_resolves_and_calls():
    target = Target()
    transport = LocalTransport(lambda scope, ref: target if (scope, ref) == (11155111, "0xtreasury") else None, "monitor")
    asyncio.run(transport.send(CMD))
    assert target.calls == [("monitor", "ETH_USD", 2300 * 10**8, 1500)]


def test_local_transport_propagates_refusal():
    transport = LocalTransport(lambda scope, ref: Target(StateError("cooldown")), "monitor")
    with pytest.raises(StateError):
        asyncio.run(transport.send(CMD))


def test_local_transport_unresolved():
    transport = LocalTransport(lambda scope, ref: None, "monitor")
    with pytest.raises(LookupError):
        asyncio.run(transport.send(CMD))
