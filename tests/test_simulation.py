import pandas as pd
import pytest

from config import Config
from engine import SimulationEngine
from simulation import TRAJECTORY_PERCENTILES, MonteCarloSimulator
from tests.helpers import single_person_config


@pytest.fixture
def random_config() -> Config:
    return Config(**single_person_config(market={}, num_simulations=6, seed=11, num_processes=1))


def test_seed_resolution(random_config):
    assert MonteCarloSimulator(random_config).main_seed == 11
    assert MonteCarloSimulator(random_config, main_seed_override=99).main_seed == 99
    unseeded = random_config.model_copy(update={"seed": None})
    assert isinstance(MonteCarloSimulator(unseeded).main_seed, int)


def test_same_seed_reproduces_results(random_config):
    first, first_pct, first_samples = MonteCarloSimulator(random_config, main_seed_override=5).run_monte_carlo_simulations()
    second, second_pct, second_samples = MonteCarloSimulator(random_config, main_seed_override=5).run_monte_carlo_simulations()

    pd.testing.assert_frame_equal(first, second)
    pd.testing.assert_frame_equal(first_pct, second_pct)
    assert first_samples == second_samples


def test_different_seeds_differ(random_config):
    first, _, _ = MonteCarloSimulator(random_config, main_seed_override=1).run_monte_carlo_simulations()
    second, _, _ = MonteCarloSimulator(random_config, main_seed_override=1_000).run_monte_carlo_simulations()
    assert not first["Final Balance"].equals(second["Final Balance"])


def test_output_shapes(random_config):
    summary, percentiles, samples = MonteCarloSimulator(random_config).run_monte_carlo_simulations()

    assert len(summary) == 6
    assert list(summary.columns) == [
        "Start Balance",
        "Final Balance",
        "Success",
        "Shortfall Months",
        "Total Shortfall",
        "Total Withdrawals",
        "Depletion Month",
    ]
    assert (summary["Start Balance"] == 300_000).all()
    # initial balance plus three year-ends
    assert percentiles.shape == (4, len(TRAJECTORY_PERCENTILES))
    assert len(samples) == 5
    assert all(len(s) == 4 for s in samples)


def test_parallel_matches_sequential(random_config):
    sequential, _, _ = MonteCarloSimulator(random_config).run_monte_carlo_simulations(4)
    parallel_config = random_config.model_copy(update={"num_processes": 2})
    parallel, _, _ = MonteCarloSimulator(parallel_config).run_monte_carlo_simulations(4)
    pd.testing.assert_frame_equal(sequential, parallel)


def test_deterministic_run_matches_engine(simple_config):
    simulator = MonteCarloSimulator(simple_config, main_seed_override=1)
    assert simulator.run_deterministic().final_balance == pytest.approx(SimulationEngine(simple_config).run().final_balance)


def test_summary_statistics():
    summary = pd.DataFrame(
        {
            "Final Balance": [0.0, 100.0, 200.0, 300.0],
            "Success": [False, True, True, True],
        }
    )
    assert MonteCarloSimulator.success_probability(summary) == pytest.approx(75.0)
    assert MonteCarloSimulator.solvency_probability(summary) == pytest.approx(75.0)
    assert MonteCarloSimulator.final_balance_percentiles(summary)[50] == pytest.approx(150.0)
    assert MonteCarloSimulator.success_probability(pd.DataFrame()) == 0.0
