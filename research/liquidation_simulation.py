import numpy as np
import matplotlib.pyplot as plt
from dataclasses import dataclass
from typing import List, Optional
import pandas as pd
from pathlib import Path

from vault_model.src.constants import RATE_PRECISION, MAX_PAYBACK
from vault_model.src.errors import NothingToLiquidate, ProtocolError
from vault_model.src.interfaces import FixedOracle, FixedIterationBudget
from vault_model.src.resolver import ticks_frame, vault_summary
from vault_model.src.state.vault_config import VaultConfig
from vault_model.src.vault import Vault

TOKEN = 1_000_000  # 6 decimals


@dataclass
class SimulationParams:
    initial_price: float = 1.0  # debt per collateral
    price_volatility: float = 0.01
    crash_step: Optional[int] = 120  # step of a one-off price drop
    crash_size: float = 0.25
    simulation_steps: int = 240
    num_positions: int = 50
    ticks_per_liquidation: int = 25  # iteration budget per liquidate call
    random_seed: Optional[int] = None
    experiment_name: str = "default"
    collateral_factor: int = 800
    liquidation_threshold: int = 850
    liquidation_max_limit: int = 920


class LiquidationSimulation:
    def __init__(self, params: SimulationParams):
        self.params = params
        self.oracle = FixedOracle(int(params.initial_price * RATE_PRECISION))
        self.vault = Vault(
            vault_id=1,
            config=VaultConfig(
                collateral_factor=params.collateral_factor,
                liquidation_threshold=params.liquidation_threshold,
                liquidation_max_limit=params.liquidation_max_limit,
            ),
            oracle=self.oracle,
        )
        self.history: List[dict] = []

        if params.random_seed is not None:
            np.random.seed(params.random_seed)

    def open_positions(self):
        """Open positions with loan to value spread up to the collateral factor"""
        max_ltv = self.params.collateral_factor / 1000
        for i in range(self.params.num_positions):
            collateral = int(np.random.uniform(100, 10_000)) * TOKEN
            ltv = np.random.uniform(0.2, max_ltv * 0.98)
            debt = int(collateral * ltv * self.params.initial_price)
            try:
                self.vault.operate(None, collateral, debt, signer=f"user-{i}")
            except ProtocolError as e:
                print(f"Position {i} rejected: {e}")

    def step_price(self, price: float, step: int) -> float:
        # Simulate price movement with Brownian motion
        price *= (1 + np.random.normal(0, self.params.price_volatility))
        if self.params.crash_step is not None and step == self.params.crash_step:
            price *= (1 - self.params.crash_size)
        return max(price, 0.01)

    def simulate(self) -> pd.DataFrame:
        self.open_positions()
        price = self.params.initial_price

        for step in range(self.params.simulation_steps):
            price = self.step_price(price, step)
            self.oracle.set_ratio(int(price * RATE_PRECISION))

            absorbed = 0
            try:
                absorbed, _ = self.vault.absorb()
            except NothingToLiquidate:
                pass

            liquidated_debt = 0
            liquidated_collateral = 0
            if self.vault.state.total_borrow > 0:
                try:
                    receipt = self.vault.liquidate(
                        self.vault.state.total_borrow,
                        budget=FixedIterationBudget(self.params.ticks_per_liquidation),
                    )
                    liquidated_debt = receipt.debt_amount
                    liquidated_collateral = receipt.collateral_amount
                except NothingToLiquidate:
                    pass

            summary = vault_summary(self.vault)
            self.history.append({
                "step": step,
                "price": price,
                "total_supply": summary["total_supply"] / TOKEN,
                "total_borrow": summary["total_borrow"] / TOKEN,
                "topmost_tick": summary["topmost_tick"],
                "liquidation_tick": summary["liquidation_tick"],
                "liquidated_debt": liquidated_debt / TOKEN,
                "liquidated_collateral": liquidated_collateral / TOKEN,
                "absorbed_debt": absorbed / TOKEN,
            })

        return pd.DataFrame(self.history)

    def close_all(self) -> int:
        """Pay back every position still holding debt, returns how many closed"""
        closed = 0
        for position in list(self.vault.positions.all()):
            if position.is_supply_only:
                continue
            _, debt = self.vault.position_snapshot(position.position_id)
            if debt == 0:
                continue
            self.vault.operate(position.position_id, 0, MAX_PAYBACK, signer=position.owner)
            closed += 1
        return closed

    def plot_results(self, output_root: Path = Path('research/results')):
        output_dir = output_root / self.params.experiment_name
        output_dir.mkdir(parents=True, exist_ok=True)
        history = pd.DataFrame(self.history)

        fig, (ax1, ax2, ax3) = plt.subplots(3, 1, figsize=(12, 10))

        # Plot price
        ax1.plot(history["step"], history["price"], label='Collateral Price')
        ax1.set_ylabel('Price (debt per collateral)')
        ax1.set_title('Oracle Price')
        ax1.legend()
        ax1.grid(True)

        # Plot vault totals
        ax2.plot(history["step"], history["total_supply"], label='Total Supply')
        ax2.plot(history["step"], history["total_borrow"], label='Total Borrow', color='orange')
        ax2.set_ylabel('Tokens')
        ax2.set_title('Vault Totals')
        ax2.legend()
        ax2.grid(True)

        # Plot ticks
        ax3.plot(history["step"], history["topmost_tick"], label='Topmost Tick')
        ax3.plot(history["step"], history["liquidation_tick"], label='Liquidation Tick',
                 color='r', linestyle='--', alpha=0.5)
        ax3.set_ylabel('Tick')
        ax3.set_xlabel('Step')
        ax3.legend()
        ax3.grid(True)

        plt.tight_layout()

        plot_name = f"vol_{self.params.price_volatility}_crash_{self.params.crash_size}"
        if self.params.random_seed is not None:
            plot_name += f"_seed_{self.params.random_seed}"

        plt.savefig(output_dir / f"{plot_name}.png")
        plt.close()

        ticks_frame(self.vault).to_csv(output_dir / f"{plot_name}_ticks.csv", index=False)
        return output_dir / f"{plot_name}.png"


def main():
    params = SimulationParams(
        experiment_name="crash_liquidation",
        random_seed=57,
    )
    sim = LiquidationSimulation(params)
    history = sim.simulate()
    print(history[["step", "price", "total_borrow", "liquidated_debt"]].tail())
    print(f"Total liquidated debt: {history['liquidated_debt'].sum():.2f}")
    sim.plot_results()

if __name__ == "__main__":
    main()
