"""Vault risk configuration"""
from dataclasses import dataclass
from typing import Optional
from ..constants import (
    BPS_SCALE,
    THREE_DECIMALS,
    DEFAULT_COLLATERAL_FACTOR,
    DEFAULT_LIQUIDATION_THRESHOLD,
    DEFAULT_LIQUIDATION_MAX_LIMIT,
    DEFAULT_BORROW_FEE,
)


@dataclass
class VaultConfig:
    """Risk parameters of one vault"""
    supply_mint: str = "collateral"  # Using string instead of Pubkey
    borrow_mint: str = "debt"
    collateral_factor: int = DEFAULT_COLLATERAL_FACTOR  # max borrow ratio, 3 decimals
    liquidation_threshold: int = DEFAULT_LIQUIDATION_THRESHOLD  # liquidatable above, 3 decimals
    liquidation_max_limit: int = DEFAULT_LIQUIDATION_MAX_LIMIT  # absorbed above, 3 decimals
    borrow_fee: int = DEFAULT_BORROW_FEE  # bps
    borrow_limit: Optional[int] = None  # token units, None = unlimited

    def validate(self) -> "VaultConfig":
        if not 0 < self.collateral_factor <= self.liquidation_threshold:
            raise ValueError("collateral_factor must be in (0, liquidation_threshold]")
        if not self.liquidation_threshold < self.liquidation_max_limit <= THREE_DECIMALS:
            raise ValueError("liquidation_max_limit must be in (liquidation_threshold, 1000]")
        if not 0 <= self.borrow_fee < BPS_SCALE:
            raise ValueError("borrow_fee must be in [0, 10000)")
        if self.borrow_limit is not None and self.borrow_limit < 0:
            raise ValueError("borrow_limit must be positive")
        return self
