"""Helpers shared by operate and liquidate"""
from ..constants import (
    EXCHANGE_PRICES_PRECISION,
    RATE_PRECISION,
    THREE_DECIMALS,
    MIN_ORACLE_RATE,
    MAX_ORACLE_RATE,
    X48,
)
from ..errors import InvalidOraclePrice
from ..events import LogBranchCreated
from ..utils.safe_math import ceil_div
from ..utils.tick_math import clamped_tick_for_ratio


def sanitize_oracle_rate(rate: int) -> int:
    """Reject oracle rates outside the sanity bounds"""
    if rate < MIN_ORACLE_RATE or rate > MAX_ORACLE_RATE:
        raise InvalidOraclePrice(f"Oracle rate {rate} outside [{MIN_ORACLE_RATE}, {MAX_ORACLE_RATE}]")
    return rate


def threshold_tick(rate: int, supply_exchange_price: int, borrow_exchange_price: int, threshold: int) -> int:
    """Highest tick a position may sit at for a risk ratio (3 decimals)"""
    # oracle rate is per token, ticks are per raw unit
    raw_rate = rate * supply_exchange_price // borrow_exchange_price
    ratio_x48 = raw_rate * X48 // RATE_PRECISION * threshold // THREE_DECIMALS
    return clamped_tick_for_ratio(ratio_x48)


def to_raw_down(amount: int, exchange_price: int) -> int:
    return amount * EXCHANGE_PRICES_PRECISION // exchange_price


def to_raw_up(amount: int, exchange_price: int) -> int:
    return ceil_div(amount * EXCHANGE_PRICES_PRECISION, exchange_price)


def to_amount_down(raw: int, exchange_price: int) -> int:
    return raw * exchange_price // EXCHANGE_PRICES_PRECISION


def to_amount_up(raw: int, exchange_price: int) -> int:
    return ceil_div(raw * exchange_price, EXCHANGE_PRICES_PRECISION)


def fork_branch(vault) -> int:
    """Create a branch off the current one and make it current"""
    state = vault.state
    parent = state.current_branch_id
    branch_id = vault.branches.create_branch(parent)
    state.current_branch_id = branch_id
    state.total_branch_id = vault.branches.total_branch_id
    state.branch_liquidated = False
    vault.events.append(LogBranchCreated(branch_id=branch_id, connected_branch_id=parent))
    return branch_id


def ensure_current_branch(vault) -> int:
    """Current branch id, forking a fresh one if the current one is liquidated"""
    state = vault.state
    if state.branch_liquidated or vault.branches.get(state.current_branch_id).is_liquidated:
        return fork_branch(vault)
    return state.current_branch_id
