"""Events emitted by the vault for indexers"""
from dataclasses import dataclass


@dataclass
class LogOperate:
    signer: str
    position_id: int
    collateral_amount: int  # signed, token units
    debt_amount: int  # signed, token units
    recipient: str


@dataclass
class LogUserPosition:
    position_id: int
    tick: int
    tick_slot: int
    collateral: int  # raw
    debt: int  # raw, net of dust


@dataclass
class LogLiquidate:
    signer: str
    collateral_amount: int
    debt_amount: int
    recipient: str


@dataclass
class LogAbsorb:
    collateral_amount: int  # raw
    debt_amount: int  # raw


@dataclass
class LogLiquidateInfo:
    vault_id: int
    start_tick: int
    end_tick: int


@dataclass
class LogBranchCreated:
    branch_id: int
    connected_branch_id: int
