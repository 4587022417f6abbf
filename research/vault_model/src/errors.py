"""Custom errors for the vault model"""

class ProtocolError(Exception):
    """Base error class for protocol errors"""
    pass


# Input errors, the caller can fix the request and retry

class InputError(ProtocolError):
    """Error for malformed or unaffordable requests"""
    pass

class InsufficientCollateral(InputError):
    """Error for withdrawing more collateral than the position holds"""
    pass

class InsufficientDebt(InputError):
    """Error for paying back more debt than the position owes"""
    pass

class SlippageExceeded(InputError):
    """Error for a liquidation paying less collateral per debt than requested"""
    pass

class AmountInsufficient(InputError):
    """Error for amounts below the dust threshold"""
    pass

class UserDebtTooLow(AmountInsufficient):
    """Error for a position left with debt below the minimum"""
    pass

class InvalidOperateAmount(InputError):
    """Error for zero or out of range operate amounts"""
    pass

class InvalidOraclePrice(InputError):
    """Error for oracle rates outside the sanity bounds"""
    pass


# Policy violations, the request is well formed but not allowed

class PolicyViolation(ProtocolError):
    """Error for requests rejected by vault policy"""
    pass

class PositionAboveCollateralFactor(PolicyViolation):
    """Error for a position ending above the collateral factor tick"""
    pass

class PositionAboveLiquidationThreshold(PositionAboveCollateralFactor):
    """Error for a position ending above the liquidation threshold tick"""
    pass

class MaxUtilizationReached(PolicyViolation):
    """Error for borrows the liquidity layer cannot fund"""
    pass

class BorrowLimitReached(PolicyViolation):
    """Error for borrows above the vault borrow limit"""
    pass

class InvalidPositionAuthority(PolicyViolation):
    """Error for withdraw or borrow by someone other than the owner"""
    pass

class NothingToLiquidate(PolicyViolation):
    """Error for a liquidation with no debt in range"""
    pass

class PositionNotFound(PolicyViolation):
    """Error for unknown position ids"""
    pass

class VaultNotFound(PolicyViolation):
    """Error for unknown vault ids"""
    pass


# Invariant violations, these indicate a bug and must never be swallowed

class InvariantViolation(ProtocolError):
    """Error for corrupted ledger state"""
    pass

class BranchCycle(InvariantViolation):
    """Error for a branch chain that revisits a branch"""
    pass

class BitmapDesync(InvariantViolation):
    """Error for a bitmap bit that disagrees with its tick debt"""
    pass

class TickOutOfRange(InvariantViolation):
    """Error for ticks or ratios outside the supported range"""
    pass

class Underflow(InvariantViolation):
    """Error for removing more than a ledger entry holds"""
    pass

class ArithmeticOverflow(InvariantViolation):
    """Error for arithmetic overflow past u128"""
    pass
