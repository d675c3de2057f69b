import sys
import datetime as _dt
import multiprocessing
from loguru import logger

from config import Config, ConfigurationError, load_config_from_json
from constants import DEFAULT_SNAPSHOT_FILENAME
from utils import log_input_parameters, log_simulation_results
from simulation import MonteCarloSimulator


def main():
    """
    Main execution entry point.

    Loads configuration, runs the deterministic monthly projection, writes its
    snapshot table, then runs the Monte Carlo batch when one is configured and
    logs the results.
    """
    current_timestamp_str = _dt.datetime.now().strftime("%Y%m%d_%H%M%S")
    log_filename = f"household_proj_log_{current_timestamp_str}.log"

    # Configure loguru
    logger.remove()  # Remove default handler
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level="INFO",
        colorize=True,
    )
    logger.add(
        log_filename,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}",
        level="DEBUG",
        rotation="10 MB",
    )

    logger.info(f"Logging initialized. Log file: {log_filename}")

    # --- LOAD CONFIGURATION FROM JSON ---
    if len(sys.argv) > 1:
        json_filename = sys.argv[1]
    else:
        json_filename = "config.json"
        logger.info(
            f"No config file specified via argument. Defaulting to '{json_filename}'"
        )

    logger.info(f"Loading configuration from: {json_filename}")
    try:
        config_dict = load_config_from_json(json_filename)
        config = Config(**config_dict)
        logger.info(
            f"Configuration for scenario '{config.Nickname}' loaded and validated successfully."
        )
    except ConfigurationError as e:
        logger.error(f"Configuration file error: {e}")
        return
    except Exception as e:
        logger.error(f"Configuration validation error: {e}", exc_info=True)
        return

    log_input_parameters(config)

    simulator = MonteCarloSimulator(config)

    logger.info(f"--- Running Deterministic Projection for '{config.Nickname}' ---")
    deterministic = simulator.run_deterministic()

    safe_nickname = "".join(
        c if c.isalnum() or c in ["_", "-"] else "_" for c in config.Nickname
    )
    snapshot_filename = f"{safe_nickname}_{current_timestamp_str}_{DEFAULT_SNAPSHOT_FILENAME}"
    deterministic.to_dataframe().to_csv(snapshot_filename, index=False)
    logger.info(f"Monthly snapshots written to {snapshot_filename}")

    summary_df = None
    success_prob_pct = solvency_prob_pct = None
    if config.num_simulations > 0:
        logger.info(
            f"--- Running Monte Carlo Simulation for '{config.Nickname}' ({config.num_simulations} sims) ---"
        )
        summary_df, trajectory_percentiles_df, _ = simulator.run_monte_carlo_simulations()
        if summary_df.empty:
            logger.error(f"Monte Carlo simulation for '{config.Nickname}' yielded no results.")
        else:
            success_prob_pct = simulator.success_probability(summary_df)
            solvency_prob_pct = simulator.solvency_probability(summary_df)
            if trajectory_percentiles_df is not None:
                trajectory_filename = f"{safe_nickname}_{current_timestamp_str}_trajectory_percentiles.csv"
                trajectory_percentiles_df.to_csv(trajectory_filename, index_label="Year")
                logger.info(f"Trajectory percentiles written to {trajectory_filename}")

    log_simulation_results(
        config,
        deterministic.final_balance,
        deterministic.depletion_month,
        success_prob_pct,
        solvency_prob_pct,
        summary_df,
    )

    logger.info(
        f"--- Main execution finished for scenario '{config.Nickname}'. Outputs in current directory. Log: {log_filename} ---"
    )


if __name__ == "__main__":
    multiprocessing.freeze_support()
    main()
