"""End-to-end wiring: monitor -> local transport -> treasuries, and the replay CLI."""
from __future__ import annotations

import asyncio
import json

import pytest
from pydantic import ValidationError
from sqlmodel import Session, select

from common.audit import AuditJournal, AuditSink
from common.events import RebalanceExecuted
from treasury_orchestrator.cli import main, read_prices, parse_args
from treasury_orchestrator.engine import ReactiveSystem
from treasury_orchestrator.models import SystemConfig

E8 = 10**8

CONFIG = {
    "owner": "owner",
    "monitor_principal": "reactive-monitor",
    "feeds": [
        {
            "feed_id": "ETH_USD",
            "origin_ref": "0x5f4ec3df9cbd43714fe2740f5e3616155c5b8419",
            "origin_scope": 1,
            "threshold_bps": 1000,
        }
    ],
    "treasuries": [
        {
            "scope_id": 11155111,
            "address": "0x1111111111111111111111111111111111111111",
            "resource_budget": 500000,
            "emergency": ["guardian"],
            "cooldown_seconds": 300,
            "assets": [
                {"asset_id": "ETH", "token_ref": "0xeth", "target_bps": 5000, "balance": "2", "linked_feed": "ETH_USD"},
                {"asset_id": "USDC", "token_ref": "0xusdc", "target_bps": 5000, "balance": "4000"},
            ],
        },
        {
            "scope_id": 84532,
            "address": "0x2222222222222222222222222222222222222222",
            "resource_budget": 500000,
            "cooldown_seconds": 300,
            "assets": [
                {"asset_id": "ETH", "token_ref": "0xeth", "target_bps": 5000, "balance": "1", "linked_feed": "ETH_USD"},
                {"asset_id": "USDC", "token_ref": "0xusdc", "target_bps": 5000, "balance": "1000"},
            ],
        },
    ],
}


@pytest.fixture()
def system(clock) -> ReactiveSystem:
    return ReactiveSystem(SystemConfig.model_validate(CONFIG), clock=clock)


def test_config_rejects_unknown_feed_link():
    bad = json.loads(json.dumps(CONFIG))
    bad["treasuries"][0]["assets"][0]["linked_feed"] = "BTC_USD"
    with pytest.raises(ValidationError):
        SystemConfig.model_validate(bad)


def test_breach_rebalances_every_treasury(system):
    results = asyncio.run(system.feed("ETH_USD", [2000 * E8, 1800 * E8]))
    assert [r.breached for r in results] == [False, True]
    assert all(o.delivered for o in results[1].dispatched)

    for vault in system.vaults.values():
        assert vault.get_portfolio_state().rebalance_count == 1
        (ev, *_) = vault.events.events(RebalanceExecuted)
        assert ev.trigger_price == 1800 * E8


def test_cooldown_refusal_is_isolated_per_treasury(system, clock):
    asyncio.run(system.feed("ETH_USD", [2000 * E8, 1800 * E8]))
    # second breach inside the cooldown window: both refuse, monitor state still moves
    res = asyncio.run(system.monitor.process_observation("ETH_USD", 1500 * E8, 200))
    assert res.breached
    assert not any(o.delivered for o in res.dispatched)
    assert all("StateError" in o.error for o in res.dispatched)
    assert system.monitor.get_feed("ETH_USD").last_price == 1500 * E8

    clock.advance(300)
    res = asyncio.run(system.monitor.process_observation("ETH_USD", 1800 * E8, 500))
    assert all(o.delivered for o in res.dispatched)


def test_paused_treasury_does_not_block_siblings(system):
    system.vaults[11155111].pause("guardian")
    res = asyncio.run(system.feed("ETH_USD", [2000 * E8, 1800 * E8]))[1]
    outcomes = {o.scope_id: o for o in res.dispatched}
    assert not outcomes[11155111].delivered
    assert outcomes[84532].delivered
    assert system.vaults[11155111].get_portfolio_state().rebalance_count == 0


def test_inactive_treasury_is_skipped(clock):
    cfg = json.loads(json.dumps(CONFIG))
    cfg["treasuries"][1]["active"] = False
    system = ReactiveSystem(SystemConfig.model_validate(cfg), clock=clock)
    res = asyncio.run(system.feed("ETH_USD", [2000 * E8, 1800 * E8]))[1]
    assert [o.scope_id for o in res.dispatched] == [11155111]


def test_audit_journal_records_both_sides(clock, audit_engine):
    system = ReactiveSystem(SystemConfig.model_validate(CONFIG), clock=clock, audit=AuditSink(audit_engine))
    asyncio.run(system.feed("ETH_USD", [2000 * E8, 1800 * E8]))
    with Session(audit_engine) as session:
        actions = {(r.service, r.action) for r in session.exec(select(AuditJournal)).all()}
    assert ("monitor", "PriceThresholdBreached") in actions
    assert ("monitor", "RebalanceTriggered") in actions
    assert ("treasury:11155111", "RebalanceExecuted") in actions
    assert ("treasury:84532", "RebalanceExecuted") in actions


def test_summary_shape(system):
    asyncio.run(system.feed("ETH_USD", [2000 * E8, 1800 * E8]))
    summary = system.summary()
    assert set(summary) == {"11155111", "84532"}
    assert summary["84532"]["rebalance_count"] == 1
    assert set(summary["84532"]["assets"]) == {"ETH", "USDC"}


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def test_read_prices_scales_units(tmp_path):
    prices = tmp_path / "eth.txt"
    prices.write_text("# header\n2000\n\n2300.5\n")
    args = parse_args(["--config", "x.json", "--feed", "ETH_USD", "1999", "--prices-file", str(prices)])
    assert read_prices(args) == [1999 * E8, 2000 * E8, 230050000000]


def test_cli_replay_writes_summary(tmp_path):
    cfg = tmp_path / "system.json"
    cfg.write_text(json.dumps(CONFIG))
    out = tmp_path / "summary.json"
    code = main(["--config", str(cfg), "--feed", "ETH_USD", "2000", "1800", "--step", "600", "--out", str(out)])
    assert code == 0
    summary = json.loads(out.read_text())
    assert summary["11155111"]["rebalance_count"] == 1
    assert summary["11155111"]["last_rebalance_at"] == 600


def test_cli_requires_prices(tmp_path):
    cfg = tmp_path / "system.json"
    cfg.write_text(json.dumps(CONFIG))
    assert main(["--config", str(cfg), "--feed", "ETH_USD"]) == 1
