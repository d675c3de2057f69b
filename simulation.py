import numpy as np
import pandas as pd
import multiprocessing
from typing import Dict, Union, List, Tuple, Optional
from loguru import logger

from config import Config
from constants import SMALL_EPSILON
from dates import month_range
from engine import SimulationEngine, SimulationResult
from market import MarketPath
from utils import _generate_seed_from_timestamp

TRAJECTORY_PERCENTILES = [0.05, 0.10, 0.25, 0.50, 0.75, 0.90, 0.95]


class MonteCarloSimulator:
    """
    A Monte Carlo driver for the household projection.

    Every path builds its own engine, ledger and market path from a private
    seed (``main_seed + i``), so paths share no mutable state and can run in
    separate processes. The same configuration and main seed always produce
    the same results.
    """

    def __init__(self, params_model: Config, main_seed_override: Optional[int] = None):
        self.params_model = params_model.model_copy(deep=True)

        if main_seed_override is not None:
            self.main_seed = main_seed_override
        elif self.params_model.seed is not None:
            self.main_seed = self.params_model.seed
        else:
            self.main_seed = _generate_seed_from_timestamp()
        logger.info(
            f"Simulator initialized for scenario '{self.params_model.Nickname}' with main seed: {self.main_seed}"
        )

    def _horizon_months(self) -> int:
        p = self.params_model
        end = min(p.horizon_end_month, max(person.death_month for person in p.persons))
        return sum(1 for _ in month_range(p.start_month, end))

    def run_deterministic(self) -> SimulationResult:
        """Single run at the expected market returns."""
        return SimulationEngine(self.params_model).run()

    def _run_single_simulation_path(self, path_seed: int) -> Dict[str, Union[float, bool, List[float], None]]:
        """
        Runs a single randomized path.

        Args:
            path_seed: Random seed for this path's market returns and inflation.

        Returns:
            A dictionary with 'Start Balance', 'Final Balance', 'Success',
            'Shortfall Months', 'Total Shortfall', 'Depletion Month' and 'Trajectory'.
        """
        p = self.params_model
        market_path = MarketPath.random(p.market, self._horizon_months(), path_seed)
        result = SimulationEngine(p, market_path=market_path).run()
        return {
            "Start Balance": result.initial_balance,
            "Final Balance": max(0.0, result.final_balance),
            "Success": result.success,
            "Shortfall Months": result.shortfall_months,
            "Total Shortfall": result.total_shortfall,
            "Total Withdrawals": result.total_withdrawals,
            "Depletion Month": result.depletion_month,
            "Trajectory": result.yearly_balances(),
        }

    def run_monte_carlo_simulations(
        self, num_simulations: Optional[int] = None
    ) -> Tuple[pd.DataFrame, Optional[pd.DataFrame], Optional[List[List[float]]]]:
        """
        Runs multiple simulation paths, either sequentially or in parallel.
        """
        if num_simulations is None:
            num_simulations = self.params_model.num_simulations
        path_seeds = [self.main_seed + i for i in range(num_simulations)]
        num_procs_to_use = (
            self.params_model.num_processes
            if self.params_model.num_processes is not None
            else 1
        )

        all_results_list: List[Dict[str, Union[float, bool, List[float], None]]]

        if num_procs_to_use <= 1:
            logger.debug(f"Running {num_simulations} simulations sequentially.")
            all_results_list = [self._run_single_simulation_path(seed) for seed in path_seeds]
        else:
            logger.debug(
                f"Running {num_simulations} simulations in parallel using {num_procs_to_use} processes."
            )
            args_for_starmap = [(seed,) for seed in path_seeds]
            try:
                with multiprocessing.Pool(processes=num_procs_to_use) as pool:
                    all_results_list = pool.starmap(
                        self._run_single_simulation_path, args_for_starmap
                    )
            except Exception as e:
                logger.error(
                    f"Multiprocessing pool error: {e}. Falling back to sequential execution.",
                    exc_info=True,
                )
                all_results_list = [self._run_single_simulation_path(seed) for seed in path_seeds]

        summary_columns = [
            "Start Balance",
            "Final Balance",
            "Success",
            "Shortfall Months",
            "Total Shortfall",
            "Total Withdrawals",
            "Depletion Month",
        ]
        summary_df = pd.DataFrame(
            [{k: r[k] for k in summary_columns} for r in all_results_list],
            columns=summary_columns,
        )

        trajectories_raw = [r["Trajectory"] for r in all_results_list if r["Trajectory"]]

        trajectory_percentiles_df: Optional[pd.DataFrame] = None
        sample_trajectories_list: Optional[List[List[float]]] = None

        if trajectories_raw:
            min_len = min(map(len, trajectories_raw))
            max_len = max(map(len, trajectories_raw))
            if min_len != max_len:
                logger.warning(
                    f"Trajectory lengths are inconsistent: min={min_len}, max={max_len}. Truncating to {min_len}."
                )
                trajectories_raw = [t[:min_len] for t in trajectories_raw]

            trajectory_df = pd.DataFrame(trajectories_raw).transpose()  # Rows are years, columns are simulations

            if not trajectory_df.empty:
                trajectory_percentiles_df = trajectory_df.quantile(
                    TRAJECTORY_PERCENTILES, axis=1
                ).transpose()

                num_sample_paths = min(trajectory_df.shape[1], 5)
                sample_trajectories_list = trajectory_df.sample(
                    n=num_sample_paths, axis=1, random_state=self.main_seed
                ).values.T.tolist()

        return summary_df, trajectory_percentiles_df, sample_trajectories_list

    @staticmethod
    def success_probability(summary_df: pd.DataFrame) -> float:
        """Percentage of paths that funded every withdrawal target."""
        if summary_df.empty:
            return 0.0
        return float(summary_df["Success"].astype(bool).mean() * 100.0)

    @staticmethod
    def solvency_probability(summary_df: pd.DataFrame) -> float:
        """Percentage of paths ending with money left."""
        if summary_df.empty:
            return 0.0
        return float((summary_df["Final Balance"] > SMALL_EPSILON).mean() * 100.0)

    @staticmethod
    def final_balance_percentiles(summary_df: pd.DataFrame) -> Dict[int, float]:
        if summary_df.empty:
            return {}
        values = np.percentile(summary_df["Final Balance"].to_numpy(dtype=float), [5, 25, 50, 75, 95])
        return dict(zip([5, 25, 50, 75, 95], values.tolist()))
