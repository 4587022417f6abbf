"""Liquidation walker tests"""
import numpy as np
import pytest
from vault_model.src.constants import COLD_TICK, DEBT_FACTOR_SCALE, MAX_PAYBACK, RATE_PRECISION, X48
from vault_model.src.errors import (
    AmountInsufficient,
    InputError,
    NothingToLiquidate,
    PolicyViolation,
    SlippageExceeded,
)
from vault_model.src.events import LogAbsorb, LogBranchCreated, LogLiquidate, LogLiquidateInfo
from vault_model.src.interfaces import FixedIterationBudget, FixedOracle
from vault_model.src.state.branch import BranchStatus
from vault_model.src.state.vault_config import VaultConfig
from vault_model.src.storage import dump_vault
from vault_model.src.utils.tick_math import ratio_for_tick
from vault_model.src.vault import Vault

TOKEN = 10**6
CRASHED = RATE_PRECISION * 98 // 100  # 200 bps drop


def make_vault() -> Vault:
    config = VaultConfig(collateral_factor=800, liquidation_threshold=810, liquidation_max_limit=900)
    return Vault(1, config=config, oracle=FixedOracle(RATE_PRECISION))


def open_position(vault: Vault, owner: str, collateral: int, debt: int) -> int:
    return vault.operate(None, collateral * TOKEN, debt * TOKEN, signer=owner).position_id


def test_partial_liquidation_keeps_topmost():
    """Two positions on one tick, 3000 of ~16000 debt liquidated after a crash"""
    vault = make_vault()
    alice = open_position(vault, "alice", 10_000, 7_990)
    bob = open_position(vault, "bob", 10_000, 7_990)
    tick = vault.position(alice).tick
    assert vault.position(bob).tick == tick
    record = vault.ticks.get(tick)
    debt_before, collateral_before = record.raw_debt, record.raw_collateral

    vault.oracle.set_ratio(CRASHED)
    receipt = vault.liquidate(3_000 * TOKEN, signer="keeper")
    print(f"Receipt: {receipt}")

    assert receipt.debt_raw == 3_000 * TOKEN
    assert receipt.collateral_raw == pytest.approx(3_000 * TOKEN * collateral_before / debt_before, rel=1e-4)
    assert receipt.start_tick == tick
    assert receipt.end_tick == tick
    assert receipt.completed
    assert vault.state.topmost_tick == tick
    assert vault.ticks.get(tick).raw_debt == debt_before - 3_000 * TOKEN

    # both positions shrink by the same share
    remaining_share = (debt_before - 3_000 * TOKEN) / debt_before
    for position_id in (alice, bob):
        collateral, debt = vault.position_snapshot(position_id)
        assert collateral == pytest.approx((collateral_before - receipt.collateral_raw) / 2, rel=1e-6)
        assert debt == pytest.approx(7_990 * TOKEN * remaining_share, rel=1e-6)

    assert vault.ticks.total_raw_debt() == vault.state.total_borrow
    vault.check_invariants()


def test_liquidation_events_and_transfers():
    vault = make_vault()
    open_position(vault, "alice", 10_000, 7_990)
    vault.oracle.set_ratio(CRASHED)
    receipt = vault.liquidate(1_000 * TOKEN, signer="keeper", recipient="keeper-wallet")

    liquidate_event, info_event = vault.events[-2:]
    assert isinstance(liquidate_event, LogLiquidate)
    assert liquidate_event.collateral_amount == receipt.collateral_amount
    assert liquidate_event.debt_amount == receipt.debt_amount
    assert liquidate_event.signer == "keeper"
    assert liquidate_event.recipient == "keeper-wallet"
    assert isinstance(info_event, LogLiquidateInfo)

    transfers = vault.transfer_executor.transfers[-2:]
    assert (transfers[0].source, transfers[0].amount) == ("keeper", receipt.debt_amount)
    assert (transfers[1].destination, transfers[1].amount) == ("keeper-wallet", receipt.collateral_amount)


def test_positions_repay_after_partial_liquidation():
    vault = make_vault()
    alice = open_position(vault, "alice", 10_000, 7_990)
    bob = open_position(vault, "bob", 10_000, 7_990)
    vault.oracle.set_ratio(CRASHED)
    vault.liquidate(3_000 * TOKEN)

    vault.oracle.set_ratio(RATE_PRECISION)
    vault.operate(alice, 0, MAX_PAYBACK, signer="alice")
    vault.operate(bob, 0, MAX_PAYBACK, signer="bob")
    assert vault.state.total_borrow == 0
    assert vault.state.topmost_tick == COLD_TICK
    vault.check_invariants()


def test_absorb_zeroes_positions_in_range():
    vault = make_vault()
    alice = open_position(vault, "alice", 10_000, 7_990)
    bob = open_position(vault, "bob", 10_000, 7_990)
    record = vault.ticks.get(vault.position(alice).tick)
    debt_before, collateral_before = record.raw_debt, record.raw_collateral

    vault.oracle.set_ratio(CRASHED)
    receipt = vault.liquidate(0, absorb=True)

    assert receipt.debt_raw == 0
    assert receipt.absorbed_debt == debt_before
    assert receipt.absorbed_collateral == collateral_before
    assert vault.state.total_supply == 0
    assert vault.state.total_borrow == 0
    assert vault.state.topmost_tick == COLD_TICK
    assert vault.state.absorbed_debt == debt_before
    for position_id in (alice, bob):
        assert vault.position_snapshot(position_id) == (0, 0)
    assert any(isinstance(event, LogAbsorb) for event in vault.events)
    vault.check_invariants()


def test_absorb_moves_topmost_to_next_tick():
    vault = make_vault()
    open_position(vault, "alice", 10_000, 7_990)
    safe = vault.operate(None, 10_000 * TOKEN, 2_000 * TOKEN, signer="carol")

    vault.oracle.set_ratio(CRASHED)
    vault.liquidate(0, absorb=True)
    assert vault.state.topmost_tick == safe.tick
    assert vault.state.total_supply == 10_000 * TOKEN
    assert vault.state.total_borrow == vault.ticks.get(safe.tick).raw_debt
    assert vault.position_snapshot(safe.position_id) == (10_000 * TOKEN, 2_000 * TOKEN)


def test_absorbed_pool_can_be_bought():
    vault = make_vault()
    open_position(vault, "alice", 10_000, 7_990)
    vault.oracle.set_ratio(CRASHED)
    vault.liquidate(0, absorb=True)
    pool_debt, pool_collateral = vault.state.absorbed_debt, vault.state.absorbed_collateral

    receipt = vault.liquidate(1_000 * TOKEN, absorb=True)
    assert receipt.debt_raw == 1_000 * TOKEN
    assert receipt.collateral_raw == pool_collateral * 1_000 * TOKEN // pool_debt
    assert vault.state.absorbed_debt == pool_debt - 1_000 * TOKEN


def test_wiped_position_can_be_reused():
    vault = make_vault()
    alice = open_position(vault, "alice", 10_000, 7_990)
    vault.oracle.set_ratio(CRASHED)
    vault.liquidate(0, absorb=True)

    snapshot = vault.operate(alice, 1_000 * TOKEN, 0, signer="alice")
    assert snapshot.collateral_raw == 1_000 * TOKEN
    assert snapshot.debt_raw == 0
    assert vault.state.total_supply == 1_000 * TOKEN


def test_branch_liquidated_then_forked_lazily():
    vault = make_vault()
    open_position(vault, "alice", 10_000, 7_990)
    vault.oracle.set_ratio(CRASHED)
    vault.liquidate(0, absorb=True)

    assert vault.branches.get(1).status == BranchStatus.LIQUIDATED
    assert vault.state.branch_liquidated
    assert vault.state.current_branch_id == 1

    snapshot = vault.operate(None, 10_000 * TOKEN, 5_000 * TOKEN, signer="dave")
    assert vault.state.current_branch_id == 2
    assert vault.state.total_branch_id == 2
    assert not vault.state.branch_liquidated
    assert vault.branches.get(2).connected_branch_id == 1
    assert vault.position(snapshot.position_id).branch_id == 2
    assert vault.ticks.get(snapshot.tick).branch_id == 2
    assert any(isinstance(event, LogBranchCreated) for event in vault.events)
    assert vault.branches.merge_walk(2) == [2, 1, 0]


def test_budget_makes_liquidation_resumable():
    vault = make_vault()
    ticks = [vault.operate(None, 10_000 * TOKEN, debt * TOKEN, signer=f"user-{debt}").tick
             for debt in (7_990, 7_900, 7_800)]
    assert ticks == sorted(ticks, reverse=True)
    vault.oracle.set_ratio(RATE_PRECISION * 90 // 100)

    total = vault.state.total_borrow
    first = vault.liquidate(total, budget=FixedIterationBudget(1))
    print(f"First pass: {first}")
    assert not first.completed
    assert first.end_tick == ticks[1]
    assert vault.state.topmost_tick == ticks[1]
    vault.check_invariants()

    second = vault.liquidate(vault.state.total_borrow)
    assert second.completed
    assert second.start_tick == ticks[1]
    assert second.end_tick == COLD_TICK
    assert first.debt_raw + second.debt_raw == total
    assert vault.state.total_borrow == 0
    assert vault.branches.get(1).status == BranchStatus.LIQUIDATED
    vault.check_invariants()


def test_topmost_never_increases_during_liquidation():
    vault = make_vault()
    for debt in (7_990, 7_950, 7_900, 7_850, 7_800):
        vault.operate(None, 10_000 * TOKEN, debt * TOKEN, signer="alice")
    vault.oracle.set_ratio(RATE_PRECISION * 90 // 100)

    previous = vault.state.topmost_tick
    while vault.state.total_borrow > 0:
        receipt = vault.liquidate(2_500 * TOKEN)
        assert receipt.end_tick <= previous
        previous = receipt.end_tick
        vault.check_invariants()


def test_nothing_to_liquidate():
    vault = make_vault()
    open_position(vault, "alice", 10_000, 7_990)
    before = dump_vault(vault)
    with pytest.raises(NothingToLiquidate):
        vault.liquidate(1_000 * TOKEN)
    with pytest.raises(NothingToLiquidate):
        vault.liquidate(0, absorb=True)
    with pytest.raises(AmountInsufficient):
        vault.liquidate(0)
    assert dump_vault(vault) == before


def test_slippage_aborts_without_mutation():
    vault = make_vault()
    open_position(vault, "alice", 10_000, 7_990)
    vault.oracle.set_ratio(CRASHED)
    before = dump_vault(vault)
    events_before = len(vault.events)

    with pytest.raises(SlippageExceeded):
        vault.liquidate(3_000 * TOKEN, min_collateral_per_debt=2 * RATE_PRECISION)
    assert dump_vault(vault) == before
    assert len(vault.events) == events_before

    # collateral per debt at this tick is about 1.25
    receipt = vault.liquidate(3_000 * TOKEN, min_collateral_per_debt=RATE_PRECISION * 12 // 10)
    assert receipt.collateral_amount * RATE_PRECISION // receipt.debt_amount >= RATE_PRECISION * 12 // 10


def test_absorb_bad_debt_above_max_limit():
    vault = make_vault()
    open_position(vault, "alice", 10_000, 7_990)
    safe = vault.operate(None, 10_000 * TOKEN, 2_000 * TOKEN, signer="carol")

    vault.oracle.set_ratio(RATE_PRECISION * 98 // 100)
    with pytest.raises(NothingToLiquidate):
        vault.absorb()

    # ratio 0.8 at a price of 0.85 is past the 90% max limit
    vault.oracle.set_ratio(RATE_PRECISION * 85 // 100)
    absorbed_debt, absorbed_collateral = vault.absorb()
    assert absorbed_collateral == 10_000 * TOKEN
    assert vault.state.absorbed_debt == absorbed_debt
    assert vault.state.topmost_tick == safe.tick
    vault.check_invariants()


def test_branch_factors_track_outstanding_share():
    """One tick wiped, the next one partially liquidated under the same branch"""
    vault = make_vault()
    top = vault.operate(None, 10_000 * TOKEN, 7_990 * TOKEN, signer="alice").tick
    lower = vault.operate(None, 10_000 * TOKEN, 7_900 * TOKEN, signer="bob").tick
    assert top > lower
    top_debt, top_collateral = vault.ticks.get(top).raw_debt, vault.ticks.get(top).raw_collateral
    lower_debt, lower_collateral = vault.ticks.get(lower).raw_debt, vault.ticks.get(lower).raw_collateral

    vault.oracle.set_ratio(RATE_PRECISION * 90 // 100)
    receipt = vault.liquidate(top_debt + 1_000 * TOKEN)

    # the partial tick is paid at its own ratio, rounded down
    seized_lower = 1_000 * TOKEN * X48 // ratio_for_tick(lower)
    assert receipt.collateral_raw == top_collateral + seized_lower
    assert seized_lower == pytest.approx(1_000 * TOKEN * lower_collateral / lower_debt, rel=1e-5)

    branch = vault.branches.get(1)
    print(f"Branch: {branch}")
    assert branch.debt_entered == top_debt + lower_debt
    assert branch.debt_liquidated == top_debt + 1_000 * TOKEN
    assert branch.collateral_entered == top_collateral + lower_collateral
    assert branch.base_debt_factor == (DEBT_FACTOR_SCALE * (lower_debt - 1_000 * TOKEN)
                                       // (top_debt + lower_debt))
    assert branch.base_debt_factor > 0
    assert branch.status == BranchStatus.ACTIVE

    # a second pass on the same tick doesn't count its debt again
    vault.liquidate(1_000 * TOKEN)
    branch = vault.branches.get(1)
    assert branch.debt_entered == top_debt + lower_debt
    assert branch.base_debt_factor == (DEBT_FACTOR_SCALE * (lower_debt - 2_000 * TOKEN)
                                       // (top_debt + lower_debt))


def test_wiped_position_dust_is_recorded():
    vault = make_vault()
    alice = open_position(vault, "alice", 10_000, 7_990)
    dust = vault.position(alice).dust_debt
    vault.oracle.set_ratio(CRASHED)
    vault.liquidate(0, absorb=True)
    assert vault.state.absorbed_dust_debt == 0

    vault.oracle.set_ratio(RATE_PRECISION)
    vault.operate(alice, 1_000 * TOKEN, 0, signer="alice")
    assert vault.state.absorbed_dust_debt == dust
    assert vault.position(alice).dust_debt == 0


def assert_branch_aggregates(vault: Vault):
    owned = {}
    for record in vault.ticks.records():
        if record.has_debt:
            owned[record.branch_id] = owned.get(record.branch_id, 0) + 1
    for branch in vault.branches.all():
        assert branch.owned_ticks == owned.get(branch.branch_id, 0)
        assert 0 <= branch.debt_liquidated <= branch.debt_entered
        assert 0 <= branch.collateral_liquidated <= branch.collateral_entered
        if branch.debt_entered:
            assert branch.base_debt_factor == (DEBT_FACTOR_SCALE
                                               * (branch.debt_entered - branch.debt_liquidated)
                                               // branch.debt_entered)
        else:
            assert branch.base_debt_factor == DEBT_FACTOR_SCALE
        assert 0 <= branch.base_collateral_factor <= DEBT_FACTOR_SCALE
        if branch.is_liquidated:
            assert branch.owned_ticks == 0


def assert_occupants(vault: Vault):
    """Every tick counts exactly the positions still holding a share of it"""
    counts = {}
    for position in vault.positions.all():
        if position.is_supply_only:
            continue
        record = vault.ticks.peek(position.tick)
        if record is not None and not record.is_slot_liquidated(position.tick_slot):
            counts[position.tick] = counts.get(position.tick, 0) + 1
    for record in vault.ticks.records():
        assert record.occupants == counts.get(record.tick, 0)
        if record.has_debt:
            assert record.occupants > 0


@pytest.mark.parametrize("seed", [1, 2, 3, 4, 5, 6])
def test_mixed_calls_keep_ledgers_consistent(seed):
    """Random operate, liquidate, absorb and oracle moves, checked after every call"""
    rng = np.random.default_rng(seed)
    vault = make_vault()
    price = 1.0
    owners = [f"user-{i}" for i in range(8)]
    rejected = 0

    for step in range(250):
        action = rng.choice(["open", "adjust", "close", "price", "liquidate", "absorb", "bad_debt"],
                            p=[0.25, 0.15, 0.1, 0.15, 0.2, 0.05, 0.1])
        try:
            if action == "open":
                collateral = int(rng.integers(1_000, 20_000)) * TOKEN
                debt = int(collateral * rng.uniform(0.3, 0.79) * price)
                vault.operate(None, collateral, debt, signer=str(rng.choice(owners)))
            elif action in ("adjust", "close") and len(vault.positions):
                position = vault.position(int(rng.integers(1, vault.state.next_position_id)))
                if action == "close":
                    vault.operate(position.position_id, 0, MAX_PAYBACK, signer=position.owner)
                else:
                    vault.operate(position.position_id, int(rng.integers(1, 2_000)) * TOKEN,
                                  int(rng.integers(0, 1_000)) * TOKEN, signer=position.owner)
            elif action == "price":
                price = float(np.clip(price * rng.uniform(0.93, 1.06), 0.5, 1.5))
                vault.oracle.set_ratio(int(price * RATE_PRECISION))
            elif action == "liquidate":
                requested = int(vault.state.total_borrow * rng.uniform(0.05, 1.0)) + 1
                vault.liquidate(requested, budget=FixedIterationBudget(int(rng.integers(1, 5))))
            elif action == "absorb":
                vault.liquidate(int(rng.integers(0, 500)) * TOKEN, absorb=True)
            elif action == "bad_debt":
                vault.absorb()
        except (InputError, PolicyViolation):
            rejected += 1

        vault.check_invariants()
        assert vault.ticks.total_raw_debt() == vault.state.total_borrow
        assert vault.state.topmost_tick == vault.ticks.bitmap.highest_tick()
        assert_branch_aggregates(vault)
        assert_occupants(vault)
        for position in vault.positions.all():
            collateral, debt = vault.position_snapshot(position.position_id)
            assert collateral >= 0 and debt >= 0

    print(f"Seed {seed}: {rejected} rejected, {vault.state.total_branch_id} branches")
    assert vault.state.total_positions > 0
