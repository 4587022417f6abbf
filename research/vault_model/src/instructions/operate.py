"""Operate: deposit, withdraw, borrow and payback on one position"""
import logging
from dataclasses import dataclass
from typing import Optional
from ..constants import (
    BPS_SCALE,
    COLD_TICK,
    DEBT_FACTOR_SCALE,
    MAX_OPERATE,
    MAX_PAYBACK,
    MAX_RATIOX48,
    MAX_WITHDRAW,
    MIN_DEBT,
    MIN_OPERATE,
    TICK_SPACING,
    X48,
)
from ..errors import (
    AmountInsufficient,
    BorrowLimitReached,
    InsufficientCollateral,
    InsufficientDebt,
    InvalidOperateAmount,
    InvalidPositionAuthority,
    PositionAboveCollateralFactor,
    PositionAboveLiquidationThreshold,
    UserDebtTooLow,
)
from ..events import LogOperate, LogUserPosition
from ..state.position import Position, resolve_position
from ..utils.safe_math import ceil_div
from ..utils.tick_math import position_tick
from .common import (
    ensure_current_branch,
    sanitize_oracle_rate,
    threshold_tick,
    to_amount_down,
    to_amount_up,
    to_raw_down,
    to_raw_up,
)

logger = logging.getLogger(__name__)

# the tick above the floor tick of this ratio would pass MAX_TICK
_MAX_POSITION_RATIOX48 = MAX_RATIOX48 * 10_000 // TICK_SPACING


@dataclass
class PositionSnapshot:
    """Position after an operate, raw and token amounts"""
    position_id: int
    owner: str
    tick: int
    tick_slot: int
    collateral_raw: int
    debt_raw: int  # net of dust
    collateral: int  # token units, rounded down
    debt: int  # token units, rounded up
    collateral_transfer: int  # signed token amount moved, + into the vault
    debt_transfer: int  # signed token amount moved, + borrowed


def _check_amount(amount: int, sentinel: int) -> None:
    if amount == 0 or amount == sentinel:
        return
    if abs(amount) < MIN_OPERATE:
        raise AmountInsufficient(f"Operate amount {amount} below minimum {MIN_OPERATE}")
    if abs(amount) > MAX_OPERATE:
        raise InvalidOperateAmount(f"Operate amount {amount} above maximum")


def _load_position(vault, position_id: Optional[int], delta_collateral: int, signer: str) -> Position:
    if position_id is not None:
        return vault.positions.get(position_id)
    if delta_collateral <= 0:
        raise InvalidOperateAmount("A new position needs a collateral deposit")
    return vault.positions.create(vault.state.next_id(), signer)


def _apply_collateral(collateral: int, delta_collateral: int, supply_ex_price: int):
    """Returns (new collateral, signed token amount)"""
    if delta_collateral > 0:
        # deposit rounds down, the position gets at most what was sent
        added = to_raw_down(delta_collateral, supply_ex_price)
        if added == 0:
            raise AmountInsufficient("Deposit rounds to zero")
        return collateral + added, delta_collateral

    if delta_collateral == MAX_WITHDRAW:
        return 0, -to_amount_down(collateral, supply_ex_price)

    if delta_collateral < 0:
        # withdraw rounds up, the position pays at least what leaves
        withdrawn = to_raw_up(-delta_collateral, supply_ex_price)
        if withdrawn > collateral:
            raise InsufficientCollateral(f"Withdrawing {withdrawn} from {collateral} raw collateral")
        return collateral - withdrawn, delta_collateral

    return collateral, 0


def _apply_debt(net_debt: int, delta_debt: int, borrow_ex_price: int, borrow_fee: int):
    """Returns (new net debt, signed token amount)"""
    if delta_debt > 0:
        borrowed = to_raw_up(delta_debt, borrow_ex_price)
        fee = ceil_div(borrowed * borrow_fee, BPS_SCALE)
        return net_debt + borrowed + fee, delta_debt

    if delta_debt == MAX_PAYBACK:
        return 0, -to_amount_up(net_debt, borrow_ex_price)

    if delta_debt < 0:
        # payback credits one raw unit less than sent
        paid = max(to_raw_down(-delta_debt, borrow_ex_price) - 1, 0)
        if paid > net_debt:
            raise InsufficientDebt(f"Paying back {paid} of {net_debt} raw debt")
        return net_debt - paid, delta_debt

    return net_debt, 0


def _remove_from_tick(vault, position: Position, collateral: int, debt: int) -> int:
    """Take the position's realized share out of its tick, returns debt removed

    The last position leaving a tick sweeps the rounding remainder with it,
    earlier ones leave at least one raw unit for the holders still there.
    """
    record = vault.ticks.peek(position.tick)
    if record is None or record.is_slot_liquidated(position.tick_slot):
        return 0

    state = vault.state
    record.occupants -= 1
    if record.occupants == 0:
        removed = record.raw_debt
        state.absorbed_dust_debt += removed - min(debt, removed)
    else:
        removed = max(min(debt, record.raw_debt - 1), 0)
    vault.ticks.remove_debt(position.tick, removed, collateral)

    if record.raw_debt == 0 and position.tick == state.topmost_tick:
        state.topmost_tick = vault.ticks.bitmap.find_next_tick_with_debt(position.tick)
    return removed


def _check_safety(vault, tick: int, risk_increased: bool, supply_ex_price: int, borrow_ex_price: int) -> None:
    config = vault.config
    rate = sanitize_oracle_rate(vault.oracle.current_ratio())
    if risk_increased:
        max_tick = threshold_tick(rate, supply_ex_price, borrow_ex_price, config.collateral_factor)
        if tick > max_tick:
            raise PositionAboveCollateralFactor(f"Position tick {tick} above collateral factor tick {max_tick}")
    else:
        max_tick = threshold_tick(rate, supply_ex_price, borrow_ex_price, config.liquidation_threshold)
        if tick > max_tick:
            raise PositionAboveLiquidationThreshold(f"Position tick {tick} above liquidation tick {max_tick}")


def operate(vault, position_id: Optional[int], delta_collateral: int, delta_debt: int,
            signer: str, recipient: Optional[str] = None) -> PositionSnapshot:
    """Apply signed collateral and debt changes (token units) to a position

    position_id None opens a new position for signer. MAX_WITHDRAW and
    MAX_PAYBACK close out the collateral or debt side entirely. Runs inside
    the caller's transaction, any error leaves the vault untouched.
    """
    recipient = recipient or signer
    if delta_collateral == 0 and delta_debt == 0:
        raise InvalidOperateAmount("Nothing to operate")
    _check_amount(delta_collateral, MAX_WITHDRAW)
    _check_amount(delta_debt, MAX_PAYBACK)

    state = vault.state
    config = vault.config
    position = _load_position(vault, position_id, delta_collateral, signer)
    if (delta_collateral < 0 or delta_debt > 0) and signer != position.owner:
        raise InvalidPositionAuthority(f"{signer} does not own position {position.position_id}")

    supply_ex_price, borrow_ex_price = vault.liquidity.exchange_prices()

    # realized state, then take the position out of its tick
    old_tick = position.tick
    record = None if position.is_supply_only else vault.ticks.peek(old_tick)
    wiped = record is not None and record.is_slot_liquidated(position.tick_slot)
    collateral, debt, dust_debt = resolve_position(position, record)
    if wiped:
        # the wiped tick debt carried this dust, the position no longer owes it
        state.absorbed_dust_debt += position.dust_debt
    removed = 0 if position.is_supply_only else _remove_from_tick(vault, position, collateral, debt)

    new_collateral, collateral_amount = _apply_collateral(collateral, delta_collateral, supply_ex_price)
    new_net_debt, debt_amount = _apply_debt(debt - dust_debt, delta_debt, borrow_ex_price, config.borrow_fee)

    tick_debt = 0
    if new_net_debt == 0:
        position.tick = COLD_TICK
        position.tick_slot = 0
        position.branch_id = 0
        position.debt_factor = DEBT_FACTOR_SCALE
        position.debt = 0
        position.dust_debt = 0
    else:
        if new_net_debt < MIN_DEBT:
            raise UserDebtTooLow(f"Position debt {new_net_debt} below minimum {MIN_DEBT}")
        if new_collateral == 0:
            raise InsufficientCollateral("Debt without collateral")
        if new_net_debt * X48 // new_collateral > _MAX_POSITION_RATIOX48:
            raise PositionAboveCollateralFactor("Position ratio above maximum tick")

        new_tick, tick_debt = position_tick(new_net_debt, new_collateral)
        branch_id = ensure_current_branch(vault)
        tick_record = vault.ticks.add_debt(new_tick, tick_debt, new_collateral, branch_id)
        tick_record.occupants += 1
        if new_tick == old_tick and not wiped and position.tick_slot > 0:
            slot = position.tick_slot
        else:
            slot = vault.ticks.allocate_slot(new_tick)

        position.tick = new_tick
        position.tick_slot = slot
        position.branch_id = branch_id
        position.debt_factor = tick_record.debt_factor
        position.debt = tick_debt
        position.dust_debt = tick_debt - new_net_debt
        if new_tick > state.topmost_tick:
            state.topmost_tick = new_tick

    position.collateral = new_collateral
    state.update_totals(new_collateral - collateral, tick_debt - removed)

    if new_net_debt > 0:
        _check_safety(vault, position.tick, delta_debt > 0 or delta_collateral < 0,
                      supply_ex_price, borrow_ex_price)

    if debt_amount > 0:
        if config.borrow_limit is not None and to_amount_up(state.total_borrow, borrow_ex_price) > config.borrow_limit:
            raise BorrowLimitReached(f"Vault borrow above limit {config.borrow_limit}")
        vault.liquidity.check_borrow(debt_amount)

    # all checks passed, hand the transfers over
    executor = vault.transfer_executor
    if collateral_amount > 0:
        executor.transfer(signer, vault.address, collateral_amount, config.supply_mint)
    elif collateral_amount < 0:
        executor.transfer(vault.address, recipient, -collateral_amount, config.supply_mint)
    if debt_amount > 0:
        executor.transfer(vault.liquidity_address, recipient, debt_amount, config.borrow_mint)
    elif debt_amount < 0:
        executor.transfer(signer, vault.liquidity_address, -debt_amount, config.borrow_mint)
    if debt_amount:
        vault.liquidity.settle_borrow(debt_amount)

    vault.events.append(LogOperate(signer, position.position_id, collateral_amount, debt_amount, recipient))
    vault.events.append(LogUserPosition(position.position_id, position.tick, position.tick_slot,
                                        position.collateral, position.net_debt))
    logger.info("Operate position %s: collateral %s debt %s tick %s",
                position.position_id, position.collateral, position.net_debt, position.tick)

    return PositionSnapshot(
        position_id=position.position_id,
        owner=position.owner,
        tick=position.tick,
        tick_slot=position.tick_slot,
        collateral_raw=position.collateral,
        debt_raw=position.net_debt,
        collateral=to_amount_down(position.collateral, supply_ex_price),
        debt=to_amount_up(position.net_debt, borrow_ex_price),
        collateral_transfer=collateral_amount,
        debt_transfer=debt_amount,
    )
