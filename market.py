"""
Market paths: monthly asset-class returns and yearly inflation for one run.

A path is generated up front, before the run starts, so the engine loop itself
never touches a random number generator. Each Monte Carlo run builds its own
path from its own seed.
"""

from typing import Optional, Tuple

import numpy as np

from calculators import ReturnCalculator
from config import MarketConfig
from constants import MONTHS_PER_YEAR
from models import AssetAllocation


class MarketPath:
    def __init__(
        self,
        stock_returns: np.ndarray,
        bond_returns: np.ndarray,
        cash_returns: np.ndarray,
        annual_inflation: np.ndarray,
        return_calculator: Optional[ReturnCalculator] = None,
    ):
        self.stock_returns = np.asarray(stock_returns, dtype=float)
        self.bond_returns = np.asarray(bond_returns, dtype=float)
        self.cash_returns = np.asarray(cash_returns, dtype=float)
        self.annual_inflation = np.asarray(annual_inflation, dtype=float)
        if not (len(self.stock_returns) == len(self.bond_returns) == len(self.cash_returns)):
            raise ValueError("Asset return series must have the same length")
        n_years = -(-len(self.stock_returns) // MONTHS_PER_YEAR)
        if len(self.annual_inflation) < n_years:
            raise ValueError(f"Need {n_years} years of inflation, got {len(self.annual_inflation)}")
        self.return_calculator = return_calculator or ReturnCalculator()

        # Cumulative price level at the start of each simulated year; year 0 is 1.0
        self._year_index = np.concatenate(([1.0], np.cumprod(1.0 + self.annual_inflation)))

    @property
    def n_months(self) -> int:
        return len(self.stock_returns)

    @classmethod
    def deterministic(cls, market: MarketConfig, n_months: int) -> "MarketPath":
        """Constant expected returns compounded to their annual means, constant inflation."""
        rc = ReturnCalculator()
        n_years = -(-n_months // MONTHS_PER_YEAR)
        return cls(
            np.full(n_months, rc.to_monthly_rate(market.stock_return_mean)),
            np.full(n_months, rc.to_monthly_rate(market.bond_return_mean)),
            np.full(n_months, rc.to_monthly_rate(market.cash_return_mean)),
            np.full(n_years, market.inflation_rate_mean),
            rc,
        )

    @classmethod
    def random(cls, market: MarketConfig, n_months: int, seed: int) -> "MarketPath":
        """Normally distributed monthly returns and yearly inflation from a private generator."""
        rng = np.random.default_rng(seed)
        n_years = -(-n_months // MONTHS_PER_YEAR)
        sqrt_months = np.sqrt(MONTHS_PER_YEAR)

        annual_inflation = rng.normal(market.inflation_rate_mean, market.inflation_rate_volatility, n_years)
        stock = rng.normal(
            market.stock_return_mean / MONTHS_PER_YEAR, market.stock_return_volatility / sqrt_months, n_months
        )
        bond = rng.normal(
            market.bond_return_mean / MONTHS_PER_YEAR, market.bond_return_volatility / sqrt_months, n_months
        )
        cash = rng.normal(
            market.cash_return_mean / MONTHS_PER_YEAR, market.cash_return_volatility / sqrt_months, n_months
        )
        return cls(stock, bond, cash, annual_inflation)

    def _check_index(self, month_index: int) -> None:
        if not 0 <= month_index < self.n_months:
            raise IndexError(f"Month index {month_index} outside market path of {self.n_months} months")

    def asset_returns(self, month_index: int) -> Tuple[float, float, float]:
        self._check_index(month_index)
        return (
            float(self.stock_returns[month_index]),
            float(self.bond_returns[month_index]),
            float(self.cash_returns[month_index]),
        )

    def account_return(self, allocation: AssetAllocation, month_index: int) -> float:
        stock, bond, cash = self.asset_returns(month_index)
        return self.return_calculator.calculate_blended_return(allocation, stock, bond, cash)

    def inflation_rate(self, month_index: int) -> float:
        """Annual inflation of the simulated year containing ``month_index``."""
        self._check_index(month_index)
        return float(self.annual_inflation[month_index // MONTHS_PER_YEAR])

    def inflation_index(self, month_index: int) -> float:
        """Price level relative to the start month; steps once per simulated year."""
        self._check_index(month_index)
        return float(self._year_index[month_index // MONTHS_PER_YEAR])

    def inflation_step(self, month_index: int) -> float:
        """Inflation that carried the price level into the year containing ``month_index``."""
        self._check_index(month_index)
        year = month_index // MONTHS_PER_YEAR
        return float(self.annual_inflation[max(0, year - 1)])
