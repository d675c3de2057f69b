"""
Account ledger: the only place where money state is mutated during a run.

``SimulationState`` owns one ``AccountState`` per account, keyed by account id,
and keeps the portfolio-level aggregates (cumulative withdrawals, high-water
mark, history, last ratchet month and flags). Operations on unknown account ids
are silent no-ops; only negative magnitudes raise.
"""

import datetime as _dt
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from dates import months_between
from flags import SimulationFlags
from models import (
    AccountSnapshot,
    AccountType,
    AssetAllocation,
    InvalidAmountError,
    MonthlySnapshot,
    SimulationView,
    SpendingPlan,
)


class AccountState:
    """Mutable balance holder for one account."""

    __slots__ = ("account_id", "name", "account_type", "owner", "allocation", "_balance")

    def __init__(
        self,
        account_id: str,
        name: str,
        account_type: AccountType,
        balance: float,
        owner: Optional[str] = None,
        allocation: Optional[AssetAllocation] = None,
    ):
        if not account_id:
            raise ValueError("account_id is required")
        if balance is None or balance < 0:
            raise InvalidAmountError(f"Initial balance cannot be negative for account '{account_id}'")
        self.account_id = account_id
        self.name = name or account_id
        self.account_type = AccountType(account_type)
        self.owner = owner
        self.allocation = allocation or AssetAllocation()
        self._balance = float(balance)

    @property
    def balance(self) -> float:
        return self._balance

    @property
    def has_balance(self) -> bool:
        return self._balance > 0.0

    @property
    def is_depleted(self) -> bool:
        return self._balance <= 0.0

    def deposit(self, amount: Optional[float]) -> None:
        if amount is None:
            return
        if amount < 0:
            raise InvalidAmountError("Deposit amount cannot be negative")
        self._balance += amount

    def withdraw(self, amount: Optional[float]) -> float:
        """Withdraws up to ``amount`` and returns what was actually taken."""
        if amount is None or amount == 0:
            return 0.0
        if amount < 0:
            raise InvalidAmountError("Withdrawal amount cannot be negative")
        actual = min(amount, self._balance)
        self._balance -= actual
        if self._balance < 0.0:
            self._balance = 0.0
        return actual

    def apply_return(self, rate: Optional[float]) -> float:
        """Grows the balance by ``rate`` and returns the dollar change, never below zero."""
        if rate is None or self._balance == 0.0:
            return 0.0
        delta = self._balance * rate
        if self._balance + delta < 0.0:
            delta = -self._balance
        self._balance += delta
        return delta

    def set_balance(self, balance: Optional[float]) -> None:
        new_balance = 0.0 if balance is None else float(balance)
        if new_balance < 0:
            raise InvalidAmountError("Balance cannot be negative")
        self._balance = new_balance

    def to_snapshot(self) -> AccountSnapshot:
        return AccountSnapshot(
            account_id=self.account_id,
            name=self.name,
            account_type=self.account_type,
            balance=self._balance,
            tax_treatment=self.account_type.tax_treatment,
            subject_to_rmd=self.account_type.subject_to_rmd,
            allocation=self.allocation,
            owner=self.owner,
        )

    def __repr__(self):
        return f"AccountState(account_id={self.account_id!r}, name={self.name!r}, balance={self._balance:.2f})"


class SimulationState:
    """Portfolio-level ledger for exactly one simulation run."""

    def __init__(self, accounts: Optional[Iterable[AccountState]] = None):
        self._accounts: Dict[str, AccountState] = {}
        for account in accounts or ():
            self._accounts[account.account_id] = account
        self._history: List[MonthlySnapshot] = []
        self._cumulative_withdrawals = 0.0
        self._last_ratchet_month: Optional[_dt.date] = None
        self._flags = SimulationFlags.initial()
        self._initial_balances = {aid: a.balance for aid, a in self._accounts.items()}
        self._initial_portfolio_balance = self.calculate_total_balance()
        self._high_water_mark = self._initial_portfolio_balance

    @classmethod
    def from_config(cls, config) -> "SimulationState":
        """Builds a fresh ledger from the accounts of a ``Config``."""
        return cls(
            AccountState(
                account_id=a.id,
                name=a.display_name,
                account_type=a.account_type,
                balance=a.balance,
                owner=config.account_owner(a),
                allocation=a.allocation,
            )
            for a in config.accounts
        )

    # --- balances ---

    @property
    def account_ids(self) -> Tuple[str, ...]:
        return tuple(self._accounts)

    def has_account(self, account_id: str) -> bool:
        return account_id in self._accounts

    def get_account_balance(self, account_id: str) -> float:
        account = self._accounts.get(account_id)
        return account.balance if account is not None else 0.0

    def calculate_total_balance(self) -> float:
        return sum(a.balance for a in self._accounts.values())

    @property
    def initial_portfolio_balance(self) -> float:
        return self._initial_portfolio_balance

    @property
    def high_water_mark_balance(self) -> float:
        return self._high_water_mark

    @property
    def cumulative_withdrawals(self) -> float:
        return self._cumulative_withdrawals

    def update_account_balance(self, account_id: str, new_balance: float) -> None:
        account = self._accounts.get(account_id)
        if account is None:
            return
        account.set_balance(new_balance)
        self._update_high_water_mark()

    def withdraw(self, account_id: str, amount: Optional[float]) -> float:
        """Withdraws up to ``amount``; unknown accounts yield 0 and change nothing."""
        if amount is not None and amount < 0:
            raise InvalidAmountError("Withdrawal amount cannot be negative")
        account = self._accounts.get(account_id)
        if account is None:
            return 0.0
        actual = account.withdraw(amount)
        self._cumulative_withdrawals += actual
        return actual

    def deposit(self, account_id: str, amount: Optional[float]) -> None:
        if amount is not None and amount < 0:
            raise InvalidAmountError("Deposit amount cannot be negative")
        account = self._accounts.get(account_id)
        if account is None:
            return
        account.deposit(amount)
        self._update_high_water_mark()

    def apply_returns(self, rate: float) -> Dict[str, float]:
        """Applies one rate to every account and returns the dollar change per account."""
        returns = {aid: account.apply_return(rate) for aid, account in self._accounts.items()}
        self._update_high_water_mark()
        return returns

    def apply_account_returns(self, rates: Mapping[str, float]) -> Dict[str, float]:
        """Applies a per-account rate; accounts without a rate are left unchanged."""
        returns = {}
        for aid, account in self._accounts.items():
            returns[aid] = account.apply_return(rates.get(aid))
        self._update_high_water_mark()
        return returns

    def apply_plan(self, plan: SpendingPlan) -> Dict[str, float]:
        """Executes every withdrawal in ``plan`` and returns the amount taken per account."""
        withdrawn: Dict[str, float] = {}
        for withdrawal in plan.account_withdrawals:
            account_id = withdrawal.account_id
            if account_id not in self._accounts:
                continue
            withdrawn[account_id] = withdrawn.get(account_id, 0.0) + self.withdraw(account_id, withdrawal.amount)
        return withdrawn

    def _update_high_water_mark(self) -> None:
        current = self.calculate_total_balance()
        if current > self._high_water_mark:
            self._high_water_mark = current

    # --- history ---

    def record_history(self, snapshot: Optional[MonthlySnapshot]) -> None:
        if snapshot is None:
            return
        if self._history and snapshot.month < self._history[-1].month:
            raise ValueError(
                f"History must be chronological: {snapshot.month} recorded after {self._history[-1].month}"
            )
        self._history.append(snapshot)

    @property
    def history(self) -> Tuple[MonthlySnapshot, ...]:
        return tuple(self._history)

    def _snapshots_for_year(self, year: int, before: _dt.date) -> List[MonthlySnapshot]:
        # History is chronological, so walk back only as far as the requested year
        found = []
        for snapshot in reversed(self._history):
            if snapshot.year < year:
                break
            if snapshot.year == year and snapshot.month < before:
                found.append(snapshot)
        found.reverse()
        return found

    def get_prior_year_spending(self, as_of_month: Optional[_dt.date]) -> float:
        """Net withdrawals of the calendar year before ``as_of_month``."""
        if not self._history or as_of_month is None:
            return 0.0
        return sum(s.net_withdrawals for s in self._snapshots_for_year(as_of_month.year - 1, as_of_month))

    def get_prior_year_return(self, as_of_month: Optional[_dt.date]) -> float:
        """Returns earned in the prior calendar year divided by that year's starting balance."""
        if not self._history or as_of_month is None:
            return 0.0
        prior_year = as_of_month.year - 1
        snapshots = self._snapshots_for_year(prior_year, as_of_month)
        if not snapshots:
            return 0.0
        total_returns = sum(s.total_returns for s in snapshots)
        start_balance = self._year_end_balance(prior_year - 1)
        if start_balance is None or start_balance == 0.0:
            start_balance = snapshots[0].starting_portfolio_balance or self._initial_portfolio_balance
        if start_balance == 0.0:
            return 0.0
        return total_returns / start_balance

    def _year_end_balance(self, year: int) -> Optional[float]:
        for snapshot in reversed(self._history):
            if snapshot.year == year and snapshot.month_value == 12:
                return snapshot.total_portfolio_balance
            if snapshot.year < year:
                break
        return None

    def get_prior_year_end_balance(self, account_id: str, as_of_month: _dt.date) -> float:
        """December 31 balance of the prior year for one account (initial balance if not simulated)."""
        if account_id not in self._accounts:
            return 0.0
        for snapshot in reversed(self._history):
            if snapshot.year == as_of_month.year - 1 and snapshot.month_value == 12:
                flow = snapshot.flow_for(account_id)
                if flow is not None:
                    return flow.ending_balance
            if snapshot.year < as_of_month.year - 1:
                break
        return self._initial_balances.get(account_id, 0.0)

    # --- ratchets and flags ---

    @property
    def last_ratchet_month(self) -> Optional[_dt.date]:
        return self._last_ratchet_month

    def record_ratchet(self, month: Optional[_dt.date]) -> None:
        self._last_ratchet_month = month

    def months_since_last_ratchet(self, as_of_month: _dt.date) -> Optional[int]:
        """Whole months since the last guardrail adjustment, or None if there was none."""
        if self._last_ratchet_month is None:
            return None
        return max(0, months_between(self._last_ratchet_month, as_of_month))

    @property
    def flags(self) -> SimulationFlags:
        return self._flags

    @flags.setter
    def flags(self, flags: Optional[SimulationFlags]) -> None:
        self._flags = flags if flags is not None else SimulationFlags.initial()

    @property
    def survivor_mode(self) -> bool:
        return self._flags.survivor_mode

    def set_survivor_mode(self, survivor_mode: bool) -> None:
        self._flags = self._flags.with_survivor_mode(survivor_mode)

    # --- views ---

    def account_snapshots(self) -> Tuple[AccountSnapshot, ...]:
        return tuple(account.to_snapshot() for account in self._accounts.values())

    def snapshot(self, as_of_month: Optional[_dt.date] = None) -> SimulationView:
        return SimulationView(
            account_snapshots=self.account_snapshots(),
            total_portfolio_balance=self.calculate_total_balance(),
            initial_portfolio_balance=self._initial_portfolio_balance,
            prior_year_spending=self.get_prior_year_spending(as_of_month),
            prior_year_return=self.get_prior_year_return(as_of_month),
            last_ratchet_month=self._last_ratchet_month,
            cumulative_withdrawals=self._cumulative_withdrawals,
            high_water_mark_balance=self._high_water_mark,
        )

    def __len__(self):
        return len(self._accounts)
