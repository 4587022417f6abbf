"""Vault state, the mutable root every operation updates"""
from dataclasses import dataclass
from ..constants import COLD_TICK
from ..utils.safe_math import checked_add, checked_sub


@dataclass
class VaultState:
    """Aggregates of one vault, one instance per vault"""
    vault_id: int
    topmost_tick: int = COLD_TICK  # i32, highest tick with debt
    current_branch_id: int = 1  # u32
    total_branch_id: int = 1  # u32
    branch_liquidated: bool = False  # current branch liquidated, fork on next tick insert
    next_position_id: int = 1  # u32
    total_positions: int = 0
    total_supply: int = 0  # u128, raw collateral
    total_borrow: int = 0  # u128, raw debt, equals the sum of tick raw debt
    absorbed_debt: int = 0  # u128, debt of absorbed ticks not yet bought back
    absorbed_collateral: int = 0  # u128
    absorbed_dust_debt: int = 0  # u128, dust of wiped positions and swept tick remainders

    def update_totals(self, supply_change: int, borrow_change: int) -> None:
        """Update vault totals by signed raw deltas"""
        if supply_change > 0:
            self.total_supply = checked_add(self.total_supply, supply_change)
        else:
            self.total_supply = checked_sub(self.total_supply, -supply_change)

        if borrow_change > 0:
            self.total_borrow = checked_add(self.total_borrow, borrow_change)
        else:
            self.total_borrow = checked_sub(self.total_borrow, -borrow_change)

    def next_id(self) -> int:
        position_id = self.next_position_id
        self.next_position_id += 1
        self.total_positions += 1
        return position_id
