import datetime as _dt
import hashlib
from typing import Optional

import pandas as pd
from loguru import logger

from config import Config
from constants import MONTHS_PER_YEAR
from dates import age_in_years


def _generate_seed_from_timestamp() -> int:
    ts = _dt.datetime.now(_dt.timezone.utc).isoformat()
    return int.from_bytes(hashlib.sha256(ts.encode()).digest()[:8], "big") % (2**32 - 1)


def _title(key: str) -> str:
    return key.replace("_", " ").title()


def log_input_parameters(config: Config) -> None:
    """Logs the input parameters for the simulation."""
    logger.info(f"--- Input Parameters For Scenario: {config.Nickname} ---")
    logger.info(f"Start Month: {config.start_month:%Y-%m}")
    logger.info(f"End Month: {config.horizon_end_month:%Y-%m}")
    logger.info(f"Filing Status: {config.effective_filing_status.value}")

    logger.info("Persons:")
    for person in config.persons:
        logger.info(
            f"  - {person.name or person.id}: born {person.date_of_birth}, "
            f"age {age_in_years(person.date_of_birth, config.start_month)} at start, "
            f"retires {person.retirement_month:%Y-%m}, withdrawals from {person.withdrawal_start_month:%Y-%m}, "
            f"horizon through {person.death_month:%Y-%m}"
        )
        if person.annual_salary > 0:
            logger.info(f"    Salary: ${person.annual_salary:,.2f}/yr, growth {person.salary_growth_rate * 100:.2f}%")
        if person.social_security is not None:
            ss = person.social_security
            logger.info(
                f"    Social Security: ${ss.fra_monthly_benefit:,.2f}/mo at FRA, "
                f"claiming at {ss.claiming_age_months // MONTHS_PER_YEAR}y{ss.claiming_age_months % MONTHS_PER_YEAR}m"
            )
        for pension in person.pensions:
            logger.info(f"    Pension {pension.name}: ${pension.monthly_amount:,.2f}/mo from {pension.start_date}")
        for stream in person.other_income_streams:
            inflation_idx_str = " (Inflation Adj.)" if stream.inflation_indexed else " (Nominal)"
            logger.info(f"    {stream.name}: ${stream.monthly_amount:,.2f}/mo{inflation_idx_str}")

    logger.info("Accounts:")
    for account in config.accounts:
        a = account.allocation
        logger.info(
            f"  - {account.display_name} [{account.account_type.value}]: ${account.balance:,.2f} "
            f"({a.stocks_pct:.0f}/{a.bonds_pct:.0f}/{a.cash_pct:.0f})"
        )
    logger.info(f"Initial Portfolio Balance: ${config.initial_portfolio_balance:,.2f}")
    logger.info(f"Monthly Expenses (today's $): ${config.expenses.monthly_total:,.2f}")

    strategy = config.spending_strategy.model_dump(exclude_none=True)
    for key, value in strategy.items():
        if isinstance(value, dict):
            continue
        if isinstance(value, float) and "rate" in key:
            logger.info(f"Spending {_title(key)}: {value * 100:.2f}%")
        else:
            logger.info(f"Spending {_title(key)}: {value}")
    logger.info(f"Sequencer: {config.sequencer}")

    for key, value in config.market.model_dump().items():
        logger.info(f"{_title(key)}: {value * 100:.2f}%")
    logger.info(f"Num Simulations: {config.num_simulations}")
    logger.info("--- End of Input Parameters ---")


def log_simulation_results(
    config: Config,
    deterministic_final_balance: float,
    deterministic_depletion_month: Optional[_dt.date],
    success_prob_pct: Optional[float] = None,
    solvency_prob_pct: Optional[float] = None,
    final_summary_df: Optional[pd.DataFrame] = None,
) -> None:
    """Logs the final results of the simulation."""
    logger.info(f"--- Final Simulation Results for Scenario: '{config.Nickname}' ---")
    logger.info(f"Deterministic Final Balance: ${deterministic_final_balance:,.2f}")
    if deterministic_depletion_month is not None:
        logger.info(f"Deterministic Depletion Month: {deterministic_depletion_month:%Y-%m}")
    else:
        logger.info("Deterministic Depletion Month: never")

    if final_summary_df is None or final_summary_df.empty:
        return

    logger.info(f"Probability of Funding Every Withdrawal: {success_prob_pct:.2f}%")
    logger.info(f"Probability of Not Running Out of Money: {solvency_prob_pct:.2f}%")
    logger.info(f"Median Shortfall Months: {final_summary_df['Shortfall Months'].median():.0f}")

    percentiles_final_balance = final_summary_df["Final Balance"].quantile(
        [0.01, 0.05, 0.10, 0.25, 0.50, 0.75, 0.90, 0.95, 0.99]
    )
    logger.info("Final Balance Percentiles (All Sims, $):")
    for p_val, value in percentiles_final_balance.items():
        logger.info(f"  {p_val * 100:.0f}th: {max(0, value):,.2f}")
