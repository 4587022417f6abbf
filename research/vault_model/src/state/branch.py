"""Branch ledger, one record per liquidation epoch"""
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional
from ..constants import COLD_TICK, DEBT_FACTOR_SCALE
from ..errors import BranchCycle, Underflow


class BranchStatus(str, Enum):
    ACTIVE = "active"
    LIQUIDATED = "liquidated"


@dataclass
class Branch:
    """A liquidation epoch, linked to the branch it forked from by id"""
    branch_id: int  # u32
    connected_branch_id: int = 0  # u32, 0 = root
    status: BranchStatus = BranchStatus.ACTIVE
    min_tick: int = COLD_TICK  # lowest tick liquidated under this branch
    max_tick: int = COLD_TICK  # highest tick liquidated under this branch
    base_debt_factor: int = DEBT_FACTOR_SCALE  # outstanding share of debt_entered
    base_collateral_factor: int = DEBT_FACTOR_SCALE
    debt_entered: int = 0  # raw debt that entered liquidation under this branch
    debt_liquidated: int = 0
    collateral_entered: int = 0
    collateral_liquidated: int = 0
    owned_ticks: int = 0  # ticks with debt whose occupancy this branch owns

    @property
    def is_liquidated(self) -> bool:
        return self.status == BranchStatus.LIQUIDATED


class BranchLedger:
    """Append-only list of branches indexed by branch_id

    Branch 0 is the root sentinel: it never owns ticks and never liquidates.
    """

    def __init__(self, branches: Optional[List[Branch]] = None):
        self._branches: List[Branch] = branches if branches else [Branch(branch_id=0)]

    @property
    def total_branch_id(self) -> int:
        return len(self._branches) - 1

    def get(self, branch_id: int) -> Branch:
        if branch_id < 0 or branch_id >= len(self._branches):
            raise KeyError(f"Unknown branch {branch_id}")
        return self._branches[branch_id]

    def all(self) -> List[Branch]:
        return list(self._branches)

    def create_branch(self, fork_from: int) -> int:
        """Append a new active branch connected to fork_from"""
        self.get(fork_from)
        branch_id = len(self._branches)
        self._branches.append(Branch(branch_id=branch_id, connected_branch_id=fork_from))
        return branch_id

    def merge_walk(self, start_branch_id: int) -> List[int]:
        """Branch ids from start down the connected chain, ending at root

        Raises BranchCycle if the chain revisits a branch, so the walk
        always ends within total_branch_id steps.
        """
        chain = []
        visited = set()
        branch_id = start_branch_id
        while branch_id != 0:
            if branch_id in visited or len(chain) > self.total_branch_id:
                raise BranchCycle(f"Branch chain from {start_branch_id} revisits {branch_id}")
            visited.add(branch_id)
            chain.append(branch_id)
            branch_id = self.get(branch_id).connected_branch_id
        chain.append(0)
        return chain

    def nearest_active_ancestor(self, branch_id: int) -> Optional[int]:
        """First ancestor that is active and still owns ticks"""
        for ancestor_id in self.merge_walk(branch_id)[1:]:
            if ancestor_id == 0:
                break
            ancestor = self.get(ancestor_id)
            if not ancestor.is_liquidated and ancestor.owned_ticks > 0:
                return ancestor_id
        return None

    def claim_tick(self, branch_id: int) -> None:
        self.get(branch_id).owned_ticks += 1

    def release_tick(self, branch_id: int, liquidated: bool) -> bool:
        """Drop one owned tick, returns True if the branch just liquidated"""
        branch = self.get(branch_id)
        if branch.owned_ticks == 0:
            raise Underflow(f"Branch {branch_id} owns no ticks")
        branch.owned_ticks -= 1
        if liquidated and branch.owned_ticks == 0 and branch_id != 0 and not branch.is_liquidated:
            branch.status = BranchStatus.LIQUIDATED
            return True
        return False

    def record_liquidation(self, branch_id: int, tick: int, debt_entering: int, debt_taken: int,
                           collateral_entering: int, collateral_taken: int) -> None:
        """Fold one tick's liquidation into the branch aggregates

        Base factors are SCALE * (entered - liquidated) // entered.
        """
        branch = self.get(branch_id)
        if branch.debt_liquidated + debt_taken > branch.debt_entered + debt_entering:
            raise Underflow(f"Branch {branch_id} liquidated more debt than entered")
        if branch.collateral_liquidated + collateral_taken > branch.collateral_entered + collateral_entering:
            raise Underflow(f"Branch {branch_id} liquidated more collateral than entered")

        if branch.max_tick == COLD_TICK or tick > branch.max_tick:
            branch.max_tick = tick
        if branch.min_tick == COLD_TICK or tick < branch.min_tick:
            branch.min_tick = tick
        branch.debt_entered += debt_entering
        branch.collateral_entered += collateral_entering
        branch.debt_liquidated += debt_taken
        branch.collateral_liquidated += collateral_taken
        if branch.debt_entered:
            branch.base_debt_factor = (DEBT_FACTOR_SCALE * (branch.debt_entered - branch.debt_liquidated)
                                       // branch.debt_entered)
        if branch.collateral_entered:
            branch.base_collateral_factor = (DEBT_FACTOR_SCALE
                                             * (branch.collateral_entered - branch.collateral_liquidated)
                                             // branch.collateral_entered)
