"""Vault engine: owns one vault's state and serializes calls on it"""
import copy
import logging
import threading
from contextlib import contextmanager
from typing import Dict, List, Optional
from .errors import (
    BitmapDesync,
    InvariantViolation,
    ProtocolError,
    VaultNotFound,
)
from .instructions.liquidate import LiquidationReceipt, absorb_bad_debt, liquidate
from .instructions.operate import PositionSnapshot, operate
from .interfaces import (
    FixedOracle,
    InMemoryLiquidity,
    IterationBudget,
    LiquidityLayer,
    Oracle,
    RecordingTransferExecutor,
    TransferExecutor,
)
from .state.branch import BranchLedger
from .state.position import Position, PositionRegistry, resolve_position
from .state.tick import TickLedger
from .state.vault_config import VaultConfig
from .state.vault_state import VaultState

logger = logging.getLogger(__name__)


class Vault:
    """One collateral/debt vault

    operate and liquidate hold the vault lock for the whole call and run in
    a transaction: on any exception every ledger is restored to its state
    before the call.
    """

    def __init__(self, vault_id: int, config: Optional[VaultConfig] = None,
                 oracle: Optional[Oracle] = None,
                 liquidity: Optional[LiquidityLayer] = None,
                 transfer_executor: Optional[TransferExecutor] = None):
        self.config = (config or VaultConfig()).validate()
        self.oracle = oracle or FixedOracle()
        self.liquidity = liquidity or InMemoryLiquidity()
        self.transfer_executor = transfer_executor or RecordingTransferExecutor()
        self.events: List[object] = []
        self._lock = threading.RLock()

        self.state = VaultState(vault_id=vault_id)
        self.branches = BranchLedger()
        # branch 1 is the first epoch, branch 0 stays the root
        self.branches.create_branch(0)
        self.ticks = TickLedger(self.branches)
        self.positions = PositionRegistry()

    @property
    def vault_id(self) -> int:
        return self.state.vault_id

    @property
    def address(self) -> str:
        return f"vault-{self.state.vault_id}"

    @property
    def liquidity_address(self) -> str:
        return "liquidity"

    @contextmanager
    def transaction(self):
        """Roll every ledger back if the body raises"""
        snapshot = copy.deepcopy((self.state, self.branches, self.ticks, self.positions))
        events_before = len(self.events)
        try:
            yield
        except Exception as exc:
            self.state, self.branches, self.ticks, self.positions = snapshot
            del self.events[events_before:]
            if isinstance(exc, InvariantViolation):
                logger.critical("Vault %s invariant violated, rolled back: %s", self.vault_id, exc)
            elif isinstance(exc, ProtocolError):
                logger.warning("Vault %s call rejected: %s", self.vault_id, exc)
            else:
                logger.exception("Vault %s call failed, rolled back", self.vault_id)
            raise

    def open_position(self, owner: str) -> int:
        """Create an empty supply-only position"""
        with self._lock, self.transaction():
            position = self.positions.create(self.state.next_id(), owner)
            return position.position_id

    def operate(self, position_id: Optional[int], delta_collateral: int, delta_debt: int,
                signer: str, recipient: Optional[str] = None) -> PositionSnapshot:
        with self._lock, self.transaction():
            return operate(self, position_id, delta_collateral, delta_debt, signer, recipient)

    def liquidate(self, requested_debt: int, min_collateral_per_debt: int = 0, absorb: bool = False,
                  signer: str = "liquidator", recipient: Optional[str] = None,
                  budget: Optional[IterationBudget] = None) -> LiquidationReceipt:
        with self._lock, self.transaction():
            return liquidate(self, requested_debt, min_collateral_per_debt, absorb, signer, recipient, budget)

    def absorb(self, budget: Optional[IterationBudget] = None):
        with self._lock, self.transaction():
            return absorb_bad_debt(self, budget)

    def position(self, position_id: int) -> Position:
        return self.positions.get(position_id)

    def position_snapshot(self, position_id: int):
        """Realized (collateral, net debt) of a position in raw units"""
        with self._lock:
            position = self.positions.get(position_id)
            record = None if position.is_supply_only else self.ticks.peek(position.tick)
            collateral, debt, dust_debt = resolve_position(position, record)
            return collateral, debt - dust_debt

    def check_invariants(self) -> None:
        """Raise InvariantViolation if the ledgers disagree"""
        with self._lock:
            self.ticks.check_sync()
            total = self.ticks.total_raw_debt()
            if total != self.state.total_borrow:
                raise BitmapDesync(f"Tick debt {total} != total borrow {self.state.total_borrow}")
            highest = self.ticks.bitmap.highest_tick()
            if highest != self.state.topmost_tick:
                raise BitmapDesync(f"Topmost tick {self.state.topmost_tick} != highest tick with debt {highest}")
            self.branches.merge_walk(self.state.current_branch_id)


class VaultRegistry:
    """Vaults keyed by vault id, calls on different vaults don't block each other"""

    def __init__(self):
        self._vaults: Dict[int, Vault] = {}
        self._lock = threading.Lock()

    def create_vault(self, vault_id: int, **kwargs) -> Vault:
        with self._lock:
            if vault_id in self._vaults:
                raise ValueError(f"Vault {vault_id} already exists")
            vault = Vault(vault_id, **kwargs)
            self._vaults[vault_id] = vault
            return vault

    def get(self, vault_id: int) -> Vault:
        with self._lock:
            vault = self._vaults.get(vault_id)
        if vault is None:
            raise VaultNotFound(f"Vault {vault_id} not found")
        return vault

    def operate(self, vault_id: int, position_id: Optional[int], delta_collateral: int, delta_debt: int,
                signer: str, recipient: Optional[str] = None) -> PositionSnapshot:
        return self.get(vault_id).operate(position_id, delta_collateral, delta_debt, signer, recipient)

    def liquidate(self, vault_id: int, requested_debt: int, min_collateral_per_debt: int = 0,
                  absorb: bool = False, signer: str = "liquidator", recipient: Optional[str] = None,
                  budget: Optional[IterationBudget] = None) -> LiquidationReceipt:
        return self.get(vault_id).liquidate(requested_debt, min_collateral_per_debt, absorb,
                                            signer, recipient, budget)
