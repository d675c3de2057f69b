import numpy as np
import pytest

from config import MarketConfig
from market import MarketPath
from models import AssetAllocation


def test_deterministic_path_compounds_to_annual_mean():
    path = MarketPath.deterministic(MarketConfig(), 24)
    stock, bond, cash = path.asset_returns(0)
    assert (1 + stock) ** 12 == pytest.approx(1.07)
    assert (1 + bond) ** 12 == pytest.approx(1.04)
    assert (1 + cash) ** 12 == pytest.approx(1.02)
    assert path.asset_returns(23) == path.asset_returns(0)


def test_inflation_index_steps_once_per_year():
    path = MarketPath.deterministic(MarketConfig(inflation_rate_mean=0.03), 30)
    assert path.inflation_index(0) == 1.0
    assert path.inflation_index(11) == 1.0
    assert path.inflation_index(12) == pytest.approx(1.03)
    assert path.inflation_index(29) == pytest.approx(1.03**2)
    assert path.inflation_rate(29) == pytest.approx(0.03)


def test_random_path_is_reproducible_per_seed():
    market = MarketConfig()
    first = MarketPath.random(market, 120, seed=42)
    second = MarketPath.random(market, 120, seed=42)
    other = MarketPath.random(market, 120, seed=43)

    np.testing.assert_array_equal(first.stock_returns, second.stock_returns)
    np.testing.assert_array_equal(first.annual_inflation, second.annual_inflation)
    assert not np.array_equal(first.stock_returns, other.stock_returns)
    assert len(first.annual_inflation) == 10


def test_account_return_blends_by_allocation():
    path = MarketPath([0.01], [0.005], [0.001], [0.02])
    allocation = AssetAllocation(stocks_pct=60, bonds_pct=30, cash_pct=10)
    assert path.account_return(allocation, 0) == pytest.approx(0.6 * 0.01 + 0.3 * 0.005 + 0.1 * 0.001)


def test_out_of_range_month_raises():
    path = MarketPath.deterministic(MarketConfig(), 12)
    with pytest.raises(IndexError):
        path.asset_returns(12)
    with pytest.raises(IndexError):
        path.inflation_index(-1)


def test_path_validation():
    with pytest.raises(ValueError):
        MarketPath([0.01, 0.01], [0.01], [0.01], [0.02])
    with pytest.raises(ValueError):
        MarketPath([0.01] * 13, [0.01] * 13, [0.01] * 13, [0.02])


def test_inflation_step_is_the_rate_that_moved_the_index():
    flat = [0.0] * 36
    path = MarketPath(flat, flat, flat, [0.1, 0.5, 0.2])
    assert path.inflation_step(0) == pytest.approx(0.1)
    assert path.inflation_step(12) == pytest.approx(0.1)
    assert path.inflation_step(24) == pytest.approx(0.5)
    assert path.inflation_index(24) == pytest.approx(1.1 * 1.5)
    assert path.inflation_rate(24) == pytest.approx(0.2)
    with pytest.raises(IndexError):
        path.inflation_step(36)
