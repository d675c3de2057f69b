import copy
import datetime as _dt
import json
from typing import Dict, Optional, Tuple

from models import (
    AccountMonthlyFlow,
    AccountSnapshot,
    AccountType,
    MonthlySnapshot,
    SimulationView,
    SpendingContext,
)

ZERO_MARKET = {
    "stock_return_mean": 0.0,
    "stock_return_volatility": 0.0,
    "bond_return_mean": 0.0,
    "bond_return_volatility": 0.0,
    "cash_return_mean": 0.0,
    "cash_return_volatility": 0.0,
    "inflation_rate_mean": 0.0,
    "inflation_rate_volatility": 0.0,
}


def make_snapshot(account_id: str, account_type: str, balance: float, owner: Optional[str] = None) -> AccountSnapshot:
    kind = AccountType(account_type)
    return AccountSnapshot(
        account_id=account_id,
        name=account_id,
        account_type=kind,
        balance=balance,
        tax_treatment=kind.tax_treatment,
        subject_to_rmd=kind.subject_to_rmd,
        owner=owner,
    )


def make_context(
    balance: float = 1_000_000.0,
    prior_year_spending: float = 0.0,
    initial_balance: float = 1_000_000.0,
    months_since_last_ratchet: Optional[int] = None,
    total_expenses: float = 100_000.0,
    other_income: float = 0.0,
    years_in_retirement: int = 1,
    prior_year_return: float = 0.0,
    strategy_params: Optional[dict] = None,
) -> SpendingContext:
    accounts = (make_snapshot("brokerage", "taxable_brokerage", balance),) if balance > 0 else ()
    view = SimulationView(
        account_snapshots=accounts,
        total_portfolio_balance=balance,
        initial_portfolio_balance=initial_balance,
        prior_year_spending=prior_year_spending,
        prior_year_return=prior_year_return,
    )
    return SpendingContext(
        simulation=view,
        total_expenses=total_expenses,
        other_income=other_income,
        date=_dt.date(2030, 1, 1),
        age=67,
        birth_year=1963,
        years_in_retirement=years_in_retirement,
        initial_portfolio_balance=initial_balance,
        prior_year_spending=prior_year_spending,
        prior_year_return=prior_year_return,
        months_since_last_ratchet=months_since_last_ratchet,
        strategy_params=strategy_params or {},
    )


def month_snapshot(month: _dt.date, flows: Dict[str, Tuple[float, float, float]], **kwargs) -> MonthlySnapshot:
    """Builds a history snapshot from ``{account_id: (starting, withdrawals, returns)}``."""
    account_flows = tuple(
        AccountMonthlyFlow(
            account_id=account_id,
            account_name=account_id,
            starting_balance=start,
            withdrawals=withdrawals,
            returns=returns,
            ending_balance=start - withdrawals + returns,
        )
        for account_id, (start, withdrawals, returns) in flows.items()
    )
    return MonthlySnapshot(month=month, account_flows=account_flows, **kwargs)


def single_person_config(**overrides) -> dict:
    """A one-person household retired at the start month, with flat markets."""
    data = {
        "scenario": "Test Household",
        "start_month": "2025-01-01",
        "persons": [
            {
                "id": "pat",
                "name": "Pat",
                "date_of_birth": "1960-01-01",
                "retirement_date": "2025-01-01",
                "death_date": "2027-12-01",
            }
        ],
        "accounts": [
            {"id": "brokerage", "account_type": "taxable_brokerage", "balance": 100000},
            {"id": "ira", "account_type": "traditional_ira", "balance": 200000},
        ],
        "expenses": {"items": [{"category": "housing", "monthly_amount": 3000}]},
        "spending_strategy": {"type": "fixed", "annual_amount": 36000, "inflation_indexed": False},
        "market": dict(ZERO_MARKET),
    }
    data.update(copy.deepcopy(overrides))
    return data


def write_config(tmp_path, data, name: str = "config.json") -> str:
    path = tmp_path / name
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)
