"""Read-only views of a vault as pandas DataFrames"""
from typing import Any, Dict
import pandas as pd
from .constants import COLD_TICK, RATE_PRECISION, X48
from .instructions.common import sanitize_oracle_rate, threshold_tick, to_amount_down, to_amount_up
from .state.position import resolve_position
from .utils.tick_math import get_ratio_at_tick
from .vault import Vault


def ticks_frame(vault: Vault) -> pd.DataFrame:
    """One row per tick holding debt or just wiped, highest tick first"""
    rows = []
    for record in vault.ticks.records():
        if not (record.has_debt or record.is_fully_liquidated):
            continue
        rows.append({
            "tick": record.tick,
            "raw_debt": record.raw_debt,
            "raw_collateral": record.raw_collateral,
            "ratio": get_ratio_at_tick(record.tick) / X48,
            "total_ids": record.total_ids,
            "branch_id": record.branch_id,
            "debt_factor": record.debt_factor,
            "occupants": record.occupants,
            "fully_liquidated": record.is_fully_liquidated,
        })
    return pd.DataFrame(rows, columns=["tick", "raw_debt", "raw_collateral", "ratio", "total_ids",
                                       "branch_id", "debt_factor", "occupants", "fully_liquidated"])


def positions_frame(vault: Vault) -> pd.DataFrame:
    """Stored and realized amounts of every position"""
    rows = []
    for position in vault.positions.all():
        record = None if position.is_supply_only else vault.ticks.peek(position.tick)
        collateral, debt, dust_debt = resolve_position(position, record)
        rows.append({
            "position_id": position.position_id,
            "owner": position.owner,
            "tick": None if position.is_supply_only else position.tick,
            "tick_slot": position.tick_slot,
            "branch_id": position.branch_id,
            "collateral": collateral,
            "debt": debt - dust_debt,
            "dust_debt": dust_debt,
            "liquidated": record is not None and record.is_slot_liquidated(position.tick_slot),
        })
    return pd.DataFrame(rows, columns=["position_id", "owner", "tick", "tick_slot", "branch_id",
                                       "collateral", "debt", "dust_debt", "liquidated"])


def branches_frame(vault: Vault) -> pd.DataFrame:
    rows = []
    for branch in vault.branches.all():
        rows.append({
            "branch_id": branch.branch_id,
            "connected_branch_id": branch.connected_branch_id,
            "status": branch.status.value,
            "min_tick": None if branch.min_tick == COLD_TICK else branch.min_tick,
            "max_tick": None if branch.max_tick == COLD_TICK else branch.max_tick,
            "debt_liquidated": branch.debt_liquidated,
            "collateral_liquidated": branch.collateral_liquidated,
            "debt_entered": branch.debt_entered,
            "collateral_entered": branch.collateral_entered,
            "base_debt_factor": branch.base_debt_factor,
            "base_collateral_factor": branch.base_collateral_factor,
            "owned_ticks": branch.owned_ticks,
        })
    return pd.DataFrame(rows)


def vault_summary(vault: Vault) -> Dict[str, Any]:
    """Totals in token units plus the current risk ticks"""
    state = vault.state
    config = vault.config
    supply_ex_price, borrow_ex_price = vault.liquidity.exchange_prices()
    rate = sanitize_oracle_rate(vault.oracle.current_ratio())
    total_supply = to_amount_down(state.total_supply, supply_ex_price)
    total_borrow = to_amount_up(state.total_borrow, borrow_ex_price)
    return {
        "vault_id": state.vault_id,
        "total_supply": total_supply,
        "total_borrow": total_borrow,
        "total_positions": state.total_positions,
        "topmost_tick": None if state.topmost_tick == COLD_TICK else state.topmost_tick,
        "collateral_factor_tick": threshold_tick(rate, supply_ex_price, borrow_ex_price,
                                                 config.collateral_factor),
        "liquidation_tick": threshold_tick(rate, supply_ex_price, borrow_ex_price,
                                           config.liquidation_threshold),
        "absorbed_debt": state.absorbed_debt,
        "absorbed_collateral": state.absorbed_collateral,
        "absorbed_dust_debt": state.absorbed_dust_debt,
        "current_branch_id": state.current_branch_id,
        "loan_to_value": (total_borrow / (total_supply * rate / RATE_PRECISION)) if total_supply else 0.0,
    }
