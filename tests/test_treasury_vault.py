"""Ledger, rebalance engine and the treasury facade."""
from __future__ import annotations

import random
from decimal import ROUND_DOWN, Decimal
from typing import List, Sequence

import pytest

from common.access import Role
from common.errors import DuplicateEntry, InvalidParameter, NotFound, StateError, Unauthorized
from common.events import (
    AllocationUpdated,
    AssetAdded,
    EmergencyPaused,
    EmergencyUnpaused,
    RebalanceExecuted,
    RoleGranted,
    RoleRevoked,
)
from treasury_vault import TreasuryVault
from treasury_vault.models import PRICE_SCALE, Holding, Trade
from treasury_vault.policy import (
    ProportionalRebalancePolicy,
    allocation_bps,
    check_trades,
    policy_from_config,
)

E8 = PRICE_SCALE


@pytest.fixture()
def vault(clock) -> TreasuryVault:
    v = TreasuryVault("governor", scope_id=11155111, address="0xtreasury", cooldown_seconds=300, clock=clock)
    v.grant_reactive_trigger("governor", "keeper")
    v.grant_role("governor", "guardian", Role.EMERGENCY)
    return v


@pytest.fixture()
def funded(vault) -> TreasuryVault:
    """ETH 2 units / USDC 4000 units, both targeting 50%."""
    vault.add_asset("governor", "ETH", "0xeth", 5000)
    vault.add_asset("governor", "USDC", "0xusdc", 5000)
    vault.deposit("ETH", 2)
    vault.deposit("USDC", 4000)
    vault.link_feed("governor", "ETH_USD", "ETH")
    return vault


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


def test_add_asset_and_query(vault):
    vault.add_asset("governor", "ETH", "0xeth", 6000, min_funding_amount="0.5")
    alloc = vault.get_asset_allocation("ETH")
    assert alloc.token_ref == "0xeth"
    assert alloc.balance == Decimal(0)
    assert alloc.target_bps == 6000
    assert alloc.current_bps == 0
    (ev,) = vault.events.events(AssetAdded)
    assert (ev.asset_id, ev.target_bps) == ("ETH", 6000)


def test_add_asset_validation(vault):
    vault.add_asset("governor", "ETH", "0xeth", 5000)
    with pytest.raises(DuplicateEntry):
        vault.add_asset("governor", "ETH", "0xeth2", 1000)
    with pytest.raises(InvalidParameter):
        vault.add_asset("governor", "BTC", "0xbtc", 10_001)
    with pytest.raises(InvalidParameter):
        vault.add_asset("governor", "BTC", "0xbtc", 100, min_funding_amount=-1)
    with pytest.raises(Unauthorized):
        vault.add_asset("keeper", "BTC", "0xbtc", 100)
    assert vault.asset_ids() == ["ETH"]


def test_targets_need_not_sum_to_full(vault):
    vault.add_asset("governor", "A", "0xa", 7000)
    vault.add_asset("governor", "B", "0xb", 7000)
    assert vault.get_asset_allocation("B").target_bps == 7000


def test_update_allocation(vault):
    vault.add_asset("governor", "ETH", "0xeth", 5000)
    vault.update_allocation("governor", "ETH", 4000)
    assert vault.get_asset_allocation("ETH").target_bps == 4000
    (ev,) = vault.events.events(AllocationUpdated)
    assert (ev.old_target_bps, ev.new_target_bps) == (5000, 4000)

    with pytest.raises(NotFound):
        vault.update_allocation("governor", "BTC", 100)
    with pytest.raises(InvalidParameter):
        vault.update_allocation("governor", "ETH", 20_000)
    with pytest.raises(Unauthorized):
        vault.update_allocation("guardian", "ETH", 100)


def test_current_allocation_uses_price_marks(funded):
    # both marked at 1.0 until a price is set
    assert funded.current_allocation_bps("ETH") == 4
    funded.set_asset_price("governor", "ETH", 2000 * E8)
    assert funded.current_allocation_bps("ETH") == 5000
    assert funded.get_portfolio_state().total_value == Decimal(8000)


def test_deposit_validation(funded):
    with pytest.raises(InvalidParameter):
        funded.deposit("ETH", 0)
    with pytest.raises(NotFound):
        funded.deposit("BTC", 1)
    assert funded.deposit("ETH", "0.25") == Decimal("2.25")


def test_portfolio_state_before_any_rebalance(funded):
    state = funded.get_portfolio_state()
    assert state.last_rebalance_at == 0
    assert state.rebalance_count == 0


# ---------------------------------------------------------------------------
# Rebalance engine
# ---------------------------------------------------------------------------


def test_scenario_rebalance_then_cooldown(funded, clock):
    rec = funded.execute_rebalance("keeper", "ETH_USD", 1800 * E8, 1200)
    assert rec.sequence == 1
    assert rec.timestamp == int(clock.now)

    executed = funded.events.events(RebalanceExecuted)
    assert executed and all(e.feed_id == "ETH_USD" for e in executed)
    assert executed[0].trigger_price == 1800 * E8

    # ETH re-marked at 1800: 3600 vs 4000 USDC, USDC sells 200 worth into ETH
    (trade,) = rec.trades
    assert (trade.from_asset, trade.to_asset) == ("USDC", "ETH")
    assert trade.amount == Decimal(200)
    # floor of exact Decimal shares may land one bp under
    assert abs(funded.current_allocation_bps("ETH") - 5000) <= 1
    assert abs(funded.current_allocation_bps("USDC") - 5000) <= 1
    assert funded.get_asset_allocation("USDC").balance == Decimal(3800)

    with pytest.raises(StateError) as err:
        funded.execute_rebalance("keeper", "ETH_USD", 1800 * E8, 1200)
    assert err.value.reason == "cooldown"
    assert funded.get_portfolio_state().rebalance_count == 1


def test_cooldown_elapses(funded, clock):
    funded.execute_rebalance("keeper", "ETH_USD", 1800 * E8, 1200)
    first_at = clock.now
    assert funded.engine.state == "cooling"

    clock.advance(299)
    with pytest.raises(StateError):
        funded.execute_rebalance("keeper", "ETH_USD", 1500 * E8, 1666)

    clock.advance(1)
    assert funded.engine.state == "idle"
    rec = funded.execute_rebalance("keeper", "ETH_USD", 1500 * E8, 1666)
    assert rec.sequence == 2
    state = funded.get_portfolio_state()
    assert state.rebalance_count == 2
    assert state.last_rebalance_at == int(first_at + 300)
    assert [r.sequence for r in funded.history()] == [1, 2]


def test_rebalance_requires_reactive_trigger(funded):
    with pytest.raises(Unauthorized):
        funded.execute_rebalance("governor", "ETH_USD", 1800 * E8, 1200)
    funded.revoke_role("governor", "keeper", Role.REACTIVE_TRIGGER)
    with pytest.raises(Unauthorized):
        funded.execute_rebalance("keeper", "ETH_USD", 1800 * E8, 1200)
    assert [e.name for e in funded.events.events(RoleRevoked)] == ["RoleRevoked"]


def test_paused_treasury_refuses_rebalance_and_deposit(funded):
    funded.pause("guardian")
    with pytest.raises(StateError) as err:
        funded.execute_rebalance("keeper", "ETH_USD", 1800 * E8, 1200)
    assert err.value.reason == "paused"
    with pytest.raises(StateError):
        funded.deposit("ETH", 1)
    # governance config stays available while paused
    funded.update_allocation("governor", "ETH", 6000)

    funded.unpause("governor")
    funded.execute_rebalance("keeper", "ETH_USD", 1800 * E8, 1200)
    # normal cooldown applies again once unpaused
    with pytest.raises(StateError) as err:
        funded.execute_rebalance("keeper", "ETH_USD", 1800 * E8, 1200)
    assert err.value.reason == "cooldown"


def test_pause_emits_on_every_call(funded):
    funded.pause("guardian")
    funded.pause("guardian")
    assert len(funded.events.events(EmergencyPaused)) == 2
    funded.unpause("governor")
    assert len(funded.events.events(EmergencyUnpaused)) == 1
    assert not funded.is_paused()


def test_pause_roles(funded):
    with pytest.raises(Unauthorized):
        funded.pause("governor")
    funded.pause("guardian")
    with pytest.raises(Unauthorized):
        funded.unpause("guardian")
    assert funded.is_paused()


def test_role_grants_emit(vault):
    names = [(e.role, e.principal) for e in vault.events.events(RoleGranted)]
    assert names == [("reactive_trigger", "keeper"), ("emergency", "guardian")]
    # regranting is a no-op
    vault.grant_reactive_trigger("governor", "keeper")
    assert len(vault.events.events(RoleGranted)) == 2
    assert vault.has_role("keeper", Role.REACTIVE_TRIGGER)


def test_balanced_portfolio_emits_single_empty_execution(vault):
    vault.add_asset("governor", "A", "0xa", 5000)
    vault.add_asset("governor", "B", "0xb", 5000)
    vault.deposit("A", 100)
    vault.deposit("B", 100)
    rec = vault.execute_rebalance("keeper", "X_USD", 1, 0)
    assert rec.trades == ()
    (ev,) = vault.events.events(RebalanceExecuted)
    assert ev.from_asset is None and ev.amount == 0


def test_min_funding_floor_limits_sales(vault):
    vault.add_asset("governor", "A", "0xa", 0, min_funding_amount=80)
    vault.add_asset("governor", "B", "0xb", 10_000)
    vault.deposit("A", 100)
    rec = vault.execute_rebalance("keeper", "X_USD", 1, 0)
    (trade,) = rec.trades
    assert trade.amount == Decimal(20)
    assert vault.get_asset_allocation("A").balance == Decimal(80)


def test_full_exit_with_token_precision(vault):
    vault.add_asset("governor", "WBTC", "0xwbtc", 0, price=492038881089)
    vault.add_asset("governor", "USDC", "0xusdc", 10_000)
    vault.deposit("WBTC", Decimal("393643.248278563997675702"))
    vault.deposit("USDC", 1)

    rec = vault.execute_rebalance("keeper", "WBTC_USD", 492038881089, 500)
    (trade,) = rec.trades
    assert trade.from_asset == "WBTC" and trade.to_asset == "USDC"
    assert trade.amount <= Decimal("393643.248278563997675702")
    wbtc = vault.get_asset_allocation("WBTC")
    assert wbtc.balance >= 0
    assert wbtc.current_bps == 0


@pytest.mark.parametrize("seed", range(40))
def test_default_policy_stays_within_balances(seed):
    rng = random.Random(seed)
    n = rng.randint(2, 4)
    cuts = sorted(rng.randint(0, 10_000) for _ in range(n - 1))
    targets = [b - a for a, b in zip([0] + cuts, cuts + [10_000])]
    holdings = []
    for idx, target in enumerate(targets):
        balance = Decimal(rng.randrange(1, 10**24)).scaleb(-18)
        floor = (balance / 4).quantize(Decimal("1e-18"), rounding=ROUND_DOWN) if rng.random() < 0.5 else Decimal(0)
        holdings.append(Holding(f"T{idx}", balance, target, rng.randrange(1, 10**13), floor))

    after = check_trades(holdings, ProportionalRebalancePolicy().plan(holdings))
    for old, new in zip(holdings, after):
        assert new.balance >= 0
        # within one wei of the funding floor
        assert new.balance >= min(old.balance, old.min_funding_amount) - Decimal("1e-18")


# ---------------------------------------------------------------------------
# Policy contract
# ---------------------------------------------------------------------------


class Backwards:
    """Trades the wrong way round."""

    def plan(self, holdings: Sequence[Holding]) -> List[Trade]:
        return [Trade("ETH", "USDC", Decimal("0.5"))]


class Overdraw:
    def plan(self, holdings: Sequence[Holding]) -> List[Trade]:
        return [Trade("USDC", "ETH", Decimal(5000))]


class UnknownAsset:
    def plan(self, holdings: Sequence[Holding]) -> List[Trade]:
        return [Trade("ETH", "NOPE", Decimal(1))]


class SelfTrade:
    def plan(self, holdings: Sequence[Holding]) -> List[Trade]:
        return [Trade("ETH", "ETH", Decimal(1))]


class ZeroAmount:
    def plan(self, holdings: Sequence[Holding]) -> List[Trade]:
        return [Trade("ETH", "USDC", Decimal(0))]


@pytest.mark.parametrize(
    "policy,kind",
    [
        (Backwards(), "state_error"),
        (Overdraw(), "state_error"),
        (UnknownAsset(), "state_error"),
        (SelfTrade(), "state_error"),
        (ZeroAmount(), "state_error"),
    ],
)
def test_bad_policy_rejected_without_mutation(clock, policy, kind):
    v = TreasuryVault("governor", cooldown_seconds=60, clock=clock, policy=policy)
    v.grant_reactive_trigger("governor", "keeper")
    v.add_asset("governor", "ETH", "0xeth", 5000, price=1800 * E8)
    v.add_asset("governor", "USDC", "0xusdc", 5000)
    v.deposit("ETH", 2)
    v.deposit("USDC", 4000)

    with pytest.raises(StateError) as err:
        v.execute_rebalance("keeper", "ETH_USD", 1800 * E8, 1200)
    assert err.value.kind == kind
    assert err.value.reason == "policy"
    assert v.get_asset_allocation("ETH").balance == Decimal(2)
    assert v.get_asset_allocation("USDC").balance == Decimal(4000)
    assert v.get_portfolio_state().rebalance_count == 0
    assert v.events.events(RebalanceExecuted) == []
    # no cooldown started by a failed attempt
    assert v.engine.state == "idle"


def test_proportional_policy_converges():
    holdings = [
        Holding("ETH", Decimal(2), 3000, 2000 * E8),
        Holding("USDC", Decimal(1000), 5000, E8),
        Holding("WBTC", Decimal("0.1"), 2000, 30_000 * E8),
    ]
    trades = ProportionalRebalancePolicy().plan(holdings)
    after = allocation_bps(check_trades(holdings, trades))
    assert after["ETH"] == pytest.approx(Decimal(3000))
    assert after["USDC"] == pytest.approx(Decimal(5000))
    assert after["WBTC"] == pytest.approx(Decimal(2000))


def test_tolerance_leaves_small_drift():
    holdings = [Holding("A", Decimal(5100), 5000), Holding("B", Decimal(4900), 5000)]
    assert ProportionalRebalancePolicy(tolerance_bps=200).plan(holdings) == []
    assert ProportionalRebalancePolicy().plan(holdings) == [Trade("A", "B", Decimal(100))]


def test_policy_from_config():
    assert policy_from_config({"tolerance_bps": 25}).tolerance_bps == 25
    assert policy_from_config(None).tolerance_bps == 0
    with pytest.raises(InvalidParameter):
        policy_from_config({"tolerance_bps": 10_001})


def test_cooldown_must_be_positive():
    with pytest.raises(ValueError):
        TreasuryVault("governor", cooldown_seconds=0)
