"""Position state management"""
from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Tuple
from ..constants import COLD_TICK, DEBT_FACTOR_SCALE
from ..errors import PositionNotFound
from ..utils.safe_math import ceil_div
from .tick import Tick


@dataclass
class Position:
    """A user position, all amounts raw (token amount scaled by exchange price)"""
    position_id: int  # u32
    owner: str  # Using string instead of Pubkey
    collateral: int = 0  # u128
    debt: int = 0  # u128, debt contributed to the tick, dust included
    dust_debt: int = 0  # u128, rounding from net debt up to the tick ratio
    tick: int = COLD_TICK  # i32
    tick_slot: int = 0  # u32
    branch_id: int = 0  # u32
    debt_factor: int = DEBT_FACTOR_SCALE  # tick factor at entry

    @property
    def is_supply_only(self) -> bool:
        return self.tick == COLD_TICK

    @property
    def net_debt(self) -> int:
        return self.debt - self.dust_debt


def resolve_position(position: Position, tick: Optional[Tick]) -> Tuple[int, int, int]:
    """Realized (collateral, debt, dust_debt) of a position

    Pure function of the stored amounts, the factor at entry and the tick's
    current factor. Collateral rounds down and debt rounds up so the result
    never favours the position.
    """
    if position.is_supply_only or tick is None:
        return position.collateral, 0, 0

    if tick.is_slot_liquidated(position.tick_slot):
        return 0, 0, 0

    if tick.debt_factor == position.debt_factor:
        return position.collateral, position.debt, position.dust_debt

    # formula: amount * current_factor / entry_factor
    collateral = position.collateral * tick.debt_factor // position.debt_factor
    debt = ceil_div(position.debt * tick.debt_factor, position.debt_factor)
    dust_debt = min(position.dust_debt * tick.debt_factor // position.debt_factor, debt)
    return collateral, debt, dust_debt


class PositionRegistry:
    """Every position record of one vault, never deleted"""

    def __init__(self):
        self._positions: Dict[int, Position] = {}

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, position_id: int) -> bool:
        return position_id in self._positions

    def create(self, position_id: int, owner: str) -> Position:
        if position_id in self._positions:
            raise ValueError(f"Position {position_id} already exists")
        position = Position(position_id=position_id, owner=owner)
        self._positions[position_id] = position
        return position

    def get(self, position_id: int) -> Position:
        position = self._positions.get(position_id)
        if position is None:
            raise PositionNotFound(f"Position {position_id} not found")
        return position

    def load(self, position: Position) -> None:
        self._positions[position.position_id] = position

    def all(self) -> Iterator[Position]:
        for position_id in sorted(self._positions):
            yield self._positions[position_id]

    def total_collateral(self) -> int:
        return sum(position.collateral for position in self._positions.values())
