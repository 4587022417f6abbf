"""Collaborators the vault core talks to, with in-memory implementations"""
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Tuple
from .constants import EXCHANGE_PRICES_PRECISION, RATE_PRECISION
from .errors import MaxUtilizationReached


class Oracle(Protocol):
    def current_ratio(self) -> int:
        """Debt per collateral, scaled by RATE_PRECISION"""
        ...


class LiquidityLayer(Protocol):
    def exchange_prices(self) -> Tuple[int, int]:
        """(supply, borrow) exchange prices, scaled by EXCHANGE_PRICES_PRECISION"""
        ...

    def check_borrow(self, amount: int) -> None:
        """Raise MaxUtilizationReached if amount can't be borrowed"""
        ...

    def settle_borrow(self, amount: int) -> None:
        """Signed change of the vault's borrowed token amount"""
        ...


class TransferExecutor(Protocol):
    def transfer(self, source: str, destination: str, amount: int, mint: str) -> None:
        ...


class IterationBudget(Protocol):
    def charge(self) -> bool:
        """Spend one step, False when the budget is gone"""
        ...


@dataclass
class FixedOracle:
    """Oracle returning whatever rate it was last given"""
    ratio: int = RATE_PRECISION

    def current_ratio(self) -> int:
        return self.ratio

    def set_ratio(self, ratio: int) -> None:
        self.ratio = ratio


@dataclass
class InMemoryLiquidity:
    """Liquidity layer with fixed exchange prices and optional borrow capacity"""
    supply_exchange_price: int = EXCHANGE_PRICES_PRECISION
    borrow_exchange_price: int = EXCHANGE_PRICES_PRECISION
    available_borrow: Optional[int] = None  # None = unlimited
    borrowed: int = 0

    def exchange_prices(self) -> Tuple[int, int]:
        return self.supply_exchange_price, self.borrow_exchange_price

    def accrue(self, supply_exchange_price: int, borrow_exchange_price: int) -> None:
        """Move exchange prices forward, they never go down"""
        if supply_exchange_price < self.supply_exchange_price or borrow_exchange_price < self.borrow_exchange_price:
            raise ValueError("Exchange prices can't decrease")
        self.supply_exchange_price = supply_exchange_price
        self.borrow_exchange_price = borrow_exchange_price

    def check_borrow(self, amount: int) -> None:
        if self.available_borrow is not None and amount > self.available_borrow:
            raise MaxUtilizationReached(f"Borrow of {amount} above available {self.available_borrow}")

    def settle_borrow(self, amount: int) -> None:
        self.borrowed += amount
        if self.available_borrow is not None:
            self.available_borrow -= amount


@dataclass
class Transfer:
    source: str
    destination: str
    amount: int
    mint: str


@dataclass
class RecordingTransferExecutor:
    """Keeps every transfer instead of moving tokens"""
    transfers: List[Transfer] = field(default_factory=list)

    def transfer(self, source: str, destination: str, amount: int, mint: str) -> None:
        self.transfers.append(Transfer(source, destination, amount, mint))


class UnlimitedBudget:
    def charge(self) -> bool:
        return True


@dataclass
class FixedIterationBudget:
    """Allows a fixed number of ticks per liquidation call"""
    limit: int
    used: int = 0

    def charge(self) -> bool:
        if self.used >= self.limit:
            return False
        self.used += 1
        return True
