"""Tick ledger, aggregate debt and collateral per tick"""
from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Tuple
from ..constants import COLD_TICK, DEBT_FACTOR_SCALE
from ..errors import BitmapDesync, Underflow
from ..utils.safe_math import checked_add, checked_sub
from .branch import BranchLedger
from .tick_has_debt import TickHasDebt


@dataclass
class Tick:
    """Aggregate of every position sitting at one tick"""
    tick: int  # i32
    raw_debt: int = 0  # u128, summed raw debt of current occupants
    raw_collateral: int = 0  # u128, summed raw collateral of current occupants
    total_ids: int = 0  # u32, slot counter, never reused
    branch_id: int = 0  # branch owning the current occupancy
    debt_factor: int = DEBT_FACTOR_SCALE  # shrinks on partial liquidation
    liquidated_slot: int = 0  # slots <= this were wiped
    occupants: int = 0  # positions currently holding a share of raw_debt
    liquidation_branch_id: int = 0  # branch the tick was last liquidated under
    liquidated_debt_left: int = 0  # raw_debt right after that liquidation
    liquidated_collateral_left: int = 0

    @property
    def has_debt(self) -> bool:
        return self.raw_debt > 0

    @property
    def is_fully_liquidated(self) -> bool:
        """Every slot handed out so far was wiped"""
        return 0 < self.liquidated_slot == self.total_ids

    def is_slot_liquidated(self, slot: int) -> bool:
        return 0 < slot <= self.liquidated_slot


class TickLedger:
    """Owns every Tick record and keeps the bitmap in sync with them"""

    def __init__(self, branches: BranchLedger, bitmap: Optional[TickHasDebt] = None):
        self.branches = branches
        self.bitmap = bitmap if bitmap is not None else TickHasDebt()
        self._ticks: Dict[int, Tick] = {}

    def get(self, tick: int) -> Tick:
        """Tick record, created empty on first access"""
        record = self._ticks.get(tick)
        if record is None:
            record = Tick(tick=tick)
            self._ticks[tick] = record
        return record

    def peek(self, tick: int) -> Optional[Tick]:
        return self._ticks.get(tick)

    def records(self) -> Iterator[Tick]:
        for tick in sorted(self._ticks, reverse=True):
            yield self._ticks[tick]

    def load(self, record: Tick) -> None:
        self._ticks[record.tick] = record

    def total_raw_debt(self) -> int:
        return sum(record.raw_debt for record in self._ticks.values())

    def allocate_slot(self, tick: int) -> int:
        record = self.get(tick)
        record.total_ids += 1
        return record.total_ids

    def add_debt(self, tick: int, amount: int, collateral: int = 0, branch_id: int = 0) -> Tick:
        """Add raw debt (and its collateral) to a tick

        On the 0 -> non-zero transition the tick bit is set and branch_id
        takes ownership of the new occupancy.
        """
        record = self.get(tick)
        was_empty = record.raw_debt == 0
        record.raw_debt = checked_add(record.raw_debt, amount)
        record.raw_collateral = checked_add(record.raw_collateral, collateral)
        if was_empty and record.raw_debt > 0:
            record.branch_id = branch_id
            self.branches.claim_tick(branch_id)
            self.bitmap.set_bit(tick)
        return record

    def remove_debt(self, tick: int, amount: int, collateral: int = 0) -> Tick:
        """Remove raw debt from a tick, raises Underflow past zero"""
        record = self.get(tick)
        if amount > record.raw_debt:
            raise Underflow(f"Removing {amount} from tick {tick} holding {record.raw_debt}")
        was_set = record.raw_debt > 0
        record.raw_debt -= amount
        record.raw_collateral -= min(collateral, record.raw_collateral)
        if was_set and record.raw_debt == 0:
            # leftover collateral is rounding residue owned by nobody
            record.raw_collateral = 0
            record.liquidated_debt_left = 0
            record.liquidated_collateral_left = 0
            self.bitmap.clear_bit(tick)
            self.branches.release_tick(record.branch_id, liquidated=False)
        return record

    def liquidation_entry(self, tick: int, branch_id: int) -> Tuple[int, int]:
        """Debt and collateral entering liquidation under branch_id

        A tick already liquidated under the same branch only brings what
        joined it since, the rest was counted on the earlier visit.
        """
        record = self.get(tick)
        if record.liquidation_branch_id != branch_id:
            return record.raw_debt, record.raw_collateral
        return (max(record.raw_debt - record.liquidated_debt_left, 0),
                max(record.raw_collateral - record.liquidated_collateral_left, 0))

    def reduce(self, tick: int, debt: int, collateral: int, branch_id: int = 0) -> Tick:
        """Partial liquidation: shrink the tick and its shared factor"""
        record = self.get(tick)
        if debt >= record.raw_debt:
            raise Underflow(f"Partial liquidation of {debt} would empty tick {tick}")
        remaining = record.raw_debt - debt
        record.debt_factor = record.debt_factor * remaining // record.raw_debt
        record.raw_debt = remaining
        record.raw_collateral = checked_sub(record.raw_collateral, collateral)
        record.liquidation_branch_id = branch_id
        record.liquidated_debt_left = record.raw_debt
        record.liquidated_collateral_left = record.raw_collateral
        return record

    def wipe(self, tick: int, branch_id: int) -> Tuple[int, int]:
        """Full liquidation of the current occupancy

        Every slot handed out so far is marked liquidated and the factor
        starts over for the next occupancy. Returns (debt, collateral).
        """
        record = self.get(tick)
        debt, collateral = record.raw_debt, record.raw_collateral
        owner = record.branch_id
        record.raw_debt = 0
        record.raw_collateral = 0
        record.liquidated_slot = record.total_ids
        record.occupants = 0
        record.liquidation_branch_id = branch_id
        record.liquidated_debt_left = 0
        record.liquidated_collateral_left = 0
        record.debt_factor = DEBT_FACTOR_SCALE
        if debt > 0:
            self.bitmap.clear_bit(tick)
            self.branches.release_tick(owner, liquidated=True)
        return debt, collateral

    def check_sync(self) -> None:
        """Raise BitmapDesync when any bit disagrees with its tick"""
        for record in self._ticks.values():
            if self.bitmap.is_set(record.tick) != record.has_debt:
                raise BitmapDesync(f"Tick {record.tick} debt {record.raw_debt} vs bit {self.bitmap.is_set(record.tick)}")
        for tick in self.bitmap.set_ticks():
            record = self._ticks.get(tick)
            if record is None or not record.has_debt:
                raise BitmapDesync(f"Bit set for tick {tick} without debt")

    def highest_tick(self) -> int:
        return self.bitmap.highest_tick() if self._ticks else COLD_TICK
