"""Dump a vault to plain dicts and load it back"""
from dataclasses import asdict
from typing import Any, Dict, Optional
from .interfaces import LiquidityLayer, Oracle, TransferExecutor
from .state.branch import Branch, BranchLedger, BranchStatus
from .state.position import Position
from .state.tick import Tick, TickLedger
from .state.tick_has_debt import TickHasDebt
from .state.vault_config import VaultConfig
from .state.vault_state import VaultState
from .vault import Vault

FORMAT_VERSION = 1


def dump_vault(vault: Vault) -> Dict[str, Any]:
    """JSON compatible snapshot of every ledger"""
    with vault._lock:
        branches = []
        for branch in vault.branches.all():
            record = asdict(branch)
            record["status"] = branch.status.value
            branches.append(record)

        return {
            "version": FORMAT_VERSION,
            "config": asdict(vault.config),
            "state": asdict(vault.state),
            "positions": [asdict(position) for position in vault.positions.all()],
            "ticks": [asdict(record) for record in vault.ticks.records()],
            "branches": branches,
            "bitmap": [
                {"array": array_index, "map": map_index, "bits": map_bits.hex()}
                for (array_index, map_index), map_bits in vault.ticks.bitmap.segments().items()
            ],
        }


def load_vault(data: Dict[str, Any], oracle: Optional[Oracle] = None,
               liquidity: Optional[LiquidityLayer] = None,
               transfer_executor: Optional[TransferExecutor] = None) -> Vault:
    """Rebuild a vault from dump_vault output"""
    if data.get("version") != FORMAT_VERSION:
        raise ValueError(f"Unsupported vault dump version {data.get('version')}")

    state = VaultState(**data["state"])
    vault = Vault(state.vault_id, config=VaultConfig(**data["config"]), oracle=oracle,
                  liquidity=liquidity, transfer_executor=transfer_executor)
    vault.state = state

    branches = []
    for record in data["branches"]:
        record = dict(record)
        record["status"] = BranchStatus(record["status"])
        branches.append(Branch(**record))
    vault.branches = BranchLedger(branches)

    bitmap = TickHasDebt()
    for segment in data["bitmap"]:
        bitmap.load_segment(segment["array"], segment["map"], bytes.fromhex(segment["bits"]))
    vault.ticks = TickLedger(vault.branches, bitmap)
    for record in data["ticks"]:
        vault.ticks.load(Tick(**record))

    for record in data["positions"]:
        vault.positions.load(Position(**record))

    vault.check_invariants()
    return vault
