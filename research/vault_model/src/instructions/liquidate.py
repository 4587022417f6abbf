"""Liquidation walker

Walks ticks with debt from the topmost one down while they sit above the
liquidation tick. A normal pass fills the requested debt tick by tick, an
absorb pass force-closes every tick in range into the vault's absorbed
pool and then sells from that pool.
"""
import logging
from dataclasses import dataclass
from typing import Optional
from ..constants import COLD_TICK, MINIMUM_TICK_DEBT, RATE_PRECISION, X48
from ..errors import AmountInsufficient, NothingToLiquidate, SlippageExceeded
from ..events import LogAbsorb, LogLiquidate, LogLiquidateInfo
from ..interfaces import IterationBudget, UnlimitedBudget
from ..utils.tick_math import ratio_for_tick
from .common import (
    fork_branch,
    sanitize_oracle_rate,
    threshold_tick,
    to_amount_down,
    to_amount_up,
)

logger = logging.getLogger(__name__)


@dataclass
class LiquidationReceipt:
    """Outcome of one liquidate call"""
    collateral_raw: int  # seized by the liquidator
    debt_raw: int  # repaid by the liquidator
    collateral_amount: int  # token units, rounded down
    debt_amount: int  # token units, rounded up
    absorbed_collateral: int  # raw, moved into the absorbed pool this call
    absorbed_debt: int
    start_tick: int
    end_tick: int  # topmost tick after the call
    liquidation_tick: int
    completed: bool  # False when the iteration budget ran out first


class _Walk:
    """Cursor state of one pass"""

    def __init__(self, vault, liquidation_tick: int, budget: IterationBudget):
        self.vault = vault
        self.liquidation_tick = liquidation_tick
        self.budget = budget
        self.cursor = vault.state.topmost_tick
        self.completed = True
        self.branch_created = False

    def in_range(self) -> bool:
        return self.cursor != COLD_TICK and self.cursor > self.liquidation_tick

    def step_allowed(self) -> bool:
        if not self.budget.charge():
            self.completed = False
            return False
        return True

    def wipe_current(self):
        """Fully liquidate the cursor tick and move to the next one in range"""
        vault = self.vault
        tick = self.cursor
        owner = vault.ticks.get(tick).branch_id
        debt_entering, collateral_entering = vault.ticks.liquidation_entry(tick, owner)
        debt, collateral = vault.ticks.wipe(tick, owner)
        vault.branches.record_liquidation(owner, tick, debt_entering, debt, collateral_entering, collateral)
        self.cursor = vault.ticks.bitmap.fetch_next_tick_liquidate(tick, self.liquidation_tick)
        self._after_wipe(owner)
        return debt, collateral

    def _after_wipe(self, owner: int) -> None:
        state = self.vault.state
        branches = self.vault.branches
        if owner != state.current_branch_id or not branches.get(owner).is_liquidated:
            return

        if self.in_range():
            ancestor = branches.nearest_active_ancestor(owner)
            if ancestor is not None:
                state.current_branch_id = ancestor
                state.branch_liquidated = False
            elif not self.branch_created:
                fork_branch(self.vault)
                self.branch_created = True
            logger.debug("Branch %s liquidated mid walk, now on %s", owner, state.current_branch_id)
        else:
            # fork lazily on the next tick insert
            state.branch_liquidated = True


def _fill(walk: _Walk, requested_debt: int):
    """Liquidate up to requested_debt, returns (debt, collateral) taken"""
    vault = walk.vault
    remaining = requested_debt
    debt_taken = collateral_taken = 0

    while walk.in_range() and remaining > 0 and walk.step_allowed():
        tick = walk.cursor
        record = vault.ticks.get(tick)
        raw_debt = record.raw_debt
        take = min(remaining, raw_debt)
        if take < raw_debt and raw_debt - take < MINIMUM_TICK_DEBT:
            # leave the minimum behind rather than take more than requested
            take = raw_debt - MINIMUM_TICK_DEBT
        if take <= 0:
            break

        if take == raw_debt:
            debt, collateral = walk.wipe_current()
        else:
            # priced at the tick ratio, rounded down against the liquidator
            collateral = min(take * X48 // ratio_for_tick(tick), record.raw_collateral)
            owner = record.branch_id
            debt_entering, collateral_entering = vault.ticks.liquidation_entry(tick, owner)
            vault.branches.record_liquidation(owner, tick, debt_entering, take, collateral_entering, collateral)
            vault.ticks.reduce(tick, take, collateral, owner)
            debt = take

        logger.debug("Liquidated tick %s: debt %s collateral %s", tick, debt, collateral)
        debt_taken += debt
        collateral_taken += collateral
        remaining -= debt

    return debt_taken, collateral_taken


def _absorb_range(walk: _Walk):
    """Force close every tick in range into the absorbed pool"""
    vault = walk.vault
    state = vault.state
    absorbed_debt = absorbed_collateral = 0

    while walk.in_range() and walk.step_allowed():
        tick = walk.cursor
        debt, collateral = walk.wipe_current()
        logger.debug("Absorbed tick %s: debt %s collateral %s", tick, debt, collateral)
        absorbed_debt += debt
        absorbed_collateral += collateral

    state.absorbed_debt += absorbed_debt
    state.absorbed_collateral += absorbed_collateral
    return absorbed_debt, absorbed_collateral


def _take_from_absorbed(state, requested_debt: int):
    """Sell absorbed debt at the pool's collateral per debt"""
    debt = min(requested_debt, state.absorbed_debt)
    if debt == 0:
        return 0, 0
    collateral = state.absorbed_collateral * debt // state.absorbed_debt
    state.absorbed_debt -= debt
    state.absorbed_collateral -= collateral
    return debt, collateral


def _finish_walk(vault, start_tick: int) -> int:
    # ticks only lose debt during a walk, so the new topmost is at or below start
    state = vault.state
    if start_tick != COLD_TICK:
        state.topmost_tick = vault.ticks.bitmap.find_next_tick_with_debt(start_tick + 1)
    return state.topmost_tick


def liquidate(vault, requested_debt: int, min_collateral_per_debt: int, absorb: bool,
              signer: str, recipient: Optional[str] = None,
              budget: Optional[IterationBudget] = None) -> LiquidationReceipt:
    """Liquidate raw debt from the riskiest ticks

    min_collateral_per_debt is collateral tokens per debt token scaled by
    RATE_PRECISION. Reads the oracle once. When the budget runs out the
    receipt has completed=False and a later call resumes from the topmost
    tick.
    """
    recipient = recipient or signer
    if requested_debt < 0 or (requested_debt == 0 and not absorb):
        raise AmountInsufficient(f"Requested debt {requested_debt} must be positive")

    state = vault.state
    config = vault.config
    rate = sanitize_oracle_rate(vault.oracle.current_ratio())
    supply_ex_price, borrow_ex_price = vault.liquidity.exchange_prices()
    liquidation_tick = threshold_tick(rate, supply_ex_price, borrow_ex_price, config.liquidation_threshold)

    start_tick = state.topmost_tick
    walk = _Walk(vault, liquidation_tick, budget or UnlimitedBudget())

    absorbed_debt = absorbed_collateral = 0
    if absorb:
        absorbed_debt, absorbed_collateral = _absorb_range(walk)
        state.update_totals(-absorbed_collateral, -absorbed_debt)
        debt_raw, collateral_raw = _take_from_absorbed(state, requested_debt)
    else:
        debt_raw, collateral_raw = _fill(walk, requested_debt)
        state.update_totals(-collateral_raw, -debt_raw)

    if debt_raw == 0 and absorbed_debt == 0:
        raise NothingToLiquidate(f"No debt above liquidation tick {liquidation_tick}")

    end_tick = _finish_walk(vault, start_tick)

    # liquidator pays debt rounded up and receives collateral rounded down
    debt_amount = to_amount_up(debt_raw, borrow_ex_price)
    collateral_amount = to_amount_down(collateral_raw, supply_ex_price)
    if debt_amount > 0 and collateral_amount * RATE_PRECISION // debt_amount < min_collateral_per_debt:
        raise SlippageExceeded(
            f"Collateral per debt {collateral_amount * RATE_PRECISION // debt_amount} below {min_collateral_per_debt}")

    executor = vault.transfer_executor
    if debt_amount > 0:
        executor.transfer(signer, vault.liquidity_address, debt_amount, config.borrow_mint)
        vault.liquidity.settle_borrow(-debt_amount)
    if collateral_amount > 0:
        executor.transfer(vault.address, recipient, collateral_amount, config.supply_mint)

    if absorbed_debt:
        vault.events.append(LogAbsorb(absorbed_collateral, absorbed_debt))
    vault.events.append(LogLiquidate(signer, collateral_amount, debt_amount, recipient))
    vault.events.append(LogLiquidateInfo(state.vault_id, start_tick, end_tick))
    logger.info("Liquidated debt %s collateral %s, topmost %s -> %s%s",
                debt_raw, collateral_raw, start_tick, end_tick,
                "" if walk.completed else " (budget exhausted)")

    return LiquidationReceipt(
        collateral_raw=collateral_raw,
        debt_raw=debt_raw,
        collateral_amount=collateral_amount,
        debt_amount=debt_amount,
        absorbed_collateral=absorbed_collateral,
        absorbed_debt=absorbed_debt,
        start_tick=start_tick,
        end_tick=end_tick,
        liquidation_tick=liquidation_tick,
        completed=walk.completed,
    )


def absorb_bad_debt(vault, budget: Optional[IterationBudget] = None):
    """Move every tick above the liquidation max limit into the absorbed pool

    Positions that far underwater can't be liquidated profitably, so anyone
    may call this. Returns (absorbed_debt, absorbed_collateral).
    """
    state = vault.state
    rate = sanitize_oracle_rate(vault.oracle.current_ratio())
    supply_ex_price, borrow_ex_price = vault.liquidity.exchange_prices()
    max_tick = threshold_tick(rate, supply_ex_price, borrow_ex_price, vault.config.liquidation_max_limit)

    start_tick = state.topmost_tick
    walk = _Walk(vault, max_tick, budget or UnlimitedBudget())
    absorbed_debt, absorbed_collateral = _absorb_range(walk)
    if absorbed_debt == 0:
        raise NothingToLiquidate(f"No debt above max limit tick {max_tick}")
    state.update_totals(-absorbed_collateral, -absorbed_debt)
    end_tick = _finish_walk(vault, start_tick)

    vault.events.append(LogAbsorb(absorbed_collateral, absorbed_debt))
    vault.events.append(LogLiquidateInfo(state.vault_id, start_tick, end_tick))
    logger.info("Absorbed debt %s collateral %s above tick %s", absorbed_debt, absorbed_collateral, max_tick)
    return absorbed_debt, absorbed_collateral
