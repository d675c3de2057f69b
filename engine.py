"""
Month-by-month household simulation engine.

One ``SimulationEngine`` drives exactly one run: it owns a freshly built
``SimulationState`` and a pre-generated ``MarketPath``. Each period it derives
the household phase from calendar dates, aggregates income, computes the gap,
asks the spending strategy for a withdrawal, sequences and plans it, applies
the plan, returns and contributions, and records a ``MonthlySnapshot``.
Shortfalls and depletion are recorded; neither stops the loop.
"""

import datetime as _dt
from typing import Dict, List, Optional

import pandas as pd
from loguru import logger

from calculators import FederalTaxCalculator, RmdCalculator, SocialSecurityCalculator
from config import Config, PersonProfile
from constants import MONTHS_PER_YEAR, SMALL_EPSILON
from dates import age_in_years, month_range, months_between
from income import ExpenseCalculator, GapAnalyzer, IncomeAggregator
from ledger import SimulationState
from market import MarketPath
from models import (
    AccountMonthlyFlow,
    FilingStatus,
    MonthlySnapshot,
    SimulationPhase,
    SpendingContext,
    SpendingPlan,
)
from phases import deceased_persons, determine_phase, living_persons, person_phase
from planner import RmdAwarePlanner
from sequencer import build_sequencer, select_default_sequencer
from strategies import (
    PARAM_BASE_INFLATION_INDEX,
    PARAM_INFLATION_INDEX,
    PARAM_INFLATION_RATE,
    build_spending_strategy,
)


class SimulationResult:
    """Snapshot history of one finished (or stopped) run plus derived outcome statistics."""

    def __init__(
        self,
        scenario: str,
        snapshots: List[MonthlySnapshot],
        initial_balance: float,
        depletion_month: Optional[_dt.date] = None,
    ):
        self.scenario = scenario
        self.snapshots = tuple(snapshots)
        self.initial_balance = initial_balance
        self.depletion_month = depletion_month

    @property
    def final_balance(self) -> float:
        if not self.snapshots:
            return self.initial_balance
        return self.snapshots[-1].total_portfolio_balance

    @property
    def total_shortfall(self) -> float:
        return sum(s.shortfall for s in self.snapshots)

    @property
    def shortfall_months(self) -> int:
        return sum(1 for s in self.snapshots if not s.meets_target)

    @property
    def first_shortfall_month(self) -> Optional[_dt.date]:
        for snapshot in self.snapshots:
            if not snapshot.meets_target:
                return snapshot.month
        return None

    @property
    def success(self) -> bool:
        """Every withdrawal target over the horizon was fully funded."""
        return self.total_shortfall <= SMALL_EPSILON

    @property
    def total_withdrawals(self) -> float:
        if not self.snapshots:
            return 0.0
        return self.snapshots[-1].cumulative_withdrawals

    def yearly_balances(self) -> List[float]:
        """Portfolio balance at the start, then at the end of every simulated year."""
        trajectory = [self.initial_balance]
        for i, snapshot in enumerate(self.snapshots, start=1):
            if i % MONTHS_PER_YEAR == 0 or i == len(self.snapshots):
                trajectory.append(snapshot.total_portfolio_balance)
        return trajectory

    def to_dataframe(self) -> pd.DataFrame:
        rows = []
        for s in self.snapshots:
            row = {
                "Month": s.month,
                "Phase": s.phase.value,
                "Total Balance": s.total_portfolio_balance,
                "Salary": s.salary_income,
                "Social Security": s.social_security_income,
                "Pension": s.pension_income,
                "Other Income": s.other_income,
                "Expenses": s.total_expenses,
                "Target Withdrawal": s.target_withdrawal,
                "Withdrawals": s.total_withdrawals,
                "Shortfall": s.shortfall,
                "RMD Required": s.rmd_required,
                "RMD Reinvested": s.rmd_reinvested,
                "Contributions": s.total_contributions,
                "Returns": s.total_returns,
                "Estimated Tax": s.estimated_tax,
            }
            for flow in s.account_flows:
                row[f"Balance: {flow.account_id}"] = flow.ending_balance
            row["Events"] = "; ".join(s.events)
            rows.append(row)
        return pd.DataFrame(rows)


class SimulationEngine:
    def __init__(
        self,
        config: Config,
        market_path: Optional[MarketPath] = None,
        rmd_calculator: Optional[RmdCalculator] = None,
        ss_calculator: Optional[SocialSecurityCalculator] = None,
        tax_calculator: Optional[FederalTaxCalculator] = None,
    ):
        self.config = config
        self.persons: List[PersonProfile] = list(config.persons)
        self.start_month = config.start_month

        last_death_month = max(p.death_month for p in self.persons)
        end_month = config.horizon_end_month
        if end_month > last_death_month:
            logger.warning(
                f"Horizon {end_month} extends past the last death month {last_death_month}; clamping."
            )
            end_month = last_death_month
        self.end_month = end_month
        self.months = list(month_range(self.start_month, self.end_month))
        if not self.months:
            raise ValueError(f"Empty horizon: start {self.start_month} is after end {self.end_month}")

        self.market_path = market_path or MarketPath.deterministic(config.market, len(self.months))
        if self.market_path.n_months < len(self.months):
            raise ValueError(
                f"Market path covers {self.market_path.n_months} months but the horizon needs {len(self.months)}"
            )

        self.rmd_calculator = rmd_calculator or RmdCalculator()
        self.tax_calculator = tax_calculator or FederalTaxCalculator()
        self.income_aggregator = IncomeAggregator(self.start_month, ss_calculator)
        self.expense_calculator = ExpenseCalculator(config.expenses, self.start_month)
        self.gap_analyzer = GapAnalyzer()
        self.planner = RmdAwarePlanner()
        self.strategy = build_spending_strategy(config.spending_strategy)
        self._fixed_sequencer = (
            None
            if config.sequencer == "auto"
            else build_sequencer(config.sequencer, config.custom_account_order, self.rmd_calculator)
        )

        self.state = SimulationState.from_config(config)
        self._allocations = {a.id: a.allocation for a in config.accounts}
        self._account_owners = {a.id: config.account_owner(a) for a in config.accounts}
        self._account_names = {a.id: a.display_name for a in config.accounts}

        self._month_index = 0
        self._cumulative_contributions = 0.0
        self._cumulative_net_withdrawals = 0.0
        self._cumulative_returns = 0.0
        self._withdrawal_start_month: Optional[_dt.date] = None
        self._withdrawal_base_balance = 0.0
        self._withdrawal_base_index = 1.0
        self.depletion_month: Optional[_dt.date] = None

    # --- loop control ---

    @property
    def is_finished(self) -> bool:
        return self._month_index >= len(self.months)

    @property
    def current_month(self) -> Optional[_dt.date]:
        return None if self.is_finished else self.months[self._month_index]

    def run(self) -> SimulationResult:
        while not self.is_finished:
            self.step()
        result = self.result()
        logger.debug(
            f"Run '{self.config.Nickname}' finished: {len(result.snapshots)} months, "
            f"final balance ${result.final_balance:,.2f}, shortfall ${result.total_shortfall:,.2f}"
        )
        return result

    def result(self) -> SimulationResult:
        return SimulationResult(
            self.config.Nickname,
            list(self.state.history),
            self.state.initial_portfolio_balance,
            self.depletion_month,
        )

    def step(self) -> MonthlySnapshot:
        """Simulates the next month and returns its snapshot."""
        if self.is_finished:
            raise RuntimeError(f"Simulation horizon ended at {self.end_month}")
        index = self._month_index
        month = self.months[index]
        snapshot = self._simulate_month(month, index)
        self.state.record_history(snapshot)
        self._month_index += 1
        return snapshot

    # --- helpers ---

    def _reference_person(self, living: List[PersonProfile]) -> PersonProfile:
        return living[0] if living else self.persons[0]

    def _filing_status(self) -> FilingStatus:
        if self.state.survivor_mode:
            return FilingStatus.SINGLE
        return self.config.effective_filing_status

    def _monthly_rmds(self, month: _dt.date, living: List[PersonProfile]) -> Dict[str, float]:
        """Monthly share of each account's RMD; a deceased owner's accounts pass to the survivor."""
        if not living:
            return {}
        rmds = {}
        for snapshot in self.state.account_snapshots():
            if not snapshot.subject_to_rmd or snapshot.balance <= 0.0:
                continue
            owner = self.config.get_person(self._account_owners[snapshot.account_id])
            if owner is None or owner not in living:
                owner = living[0]
            age = age_in_years(owner.date_of_birth, month)
            if not self.rmd_calculator.is_rmd_required(age, owner.birth_year):
                continue
            prior_balance = self.state.get_prior_year_end_balance(snapshot.account_id, month)
            annual = self.rmd_calculator.calculate_rmd(prior_balance, age)
            if annual > 0.0:
                rmds[snapshot.account_id] = annual / MONTHS_PER_YEAR
        return rmds

    def _rmd_eligible(self, month: _dt.date, living: List[PersonProfile]) -> bool:
        return any(
            self.rmd_calculator.is_rmd_required(age_in_years(p.date_of_birth, month), p.birth_year)
            for p in living
        )

    def _update_contingency_flags(self, categories, events: List[str]) -> None:
        flags = self.state.flags
        for category in flags.contingency_active - set(categories):
            flags = flags.with_contingency_active(category, False)
        for category in categories:
            if not flags.is_contingency_active(category):
                events.append(f"Contingency active: {category.value}")
            flags = flags.with_contingency_active(category, True)
        self.state.flags = flags

    def _contribute(self, month: _dt.date, living: List[PersonProfile]) -> Dict[str, float]:
        deposits: Dict[str, float] = {}
        for person in living:
            if person_phase(person, month) != SimulationPhase.ACCUMULATION:
                continue
            years = months_between(self.start_month, month) // MONTHS_PER_YEAR
            for contribution in person.contributions:
                amount = contribution.monthly_amount * (1.0 + contribution.annual_growth_rate) ** years
                if amount <= 0.0:
                    continue
                self.state.deposit(contribution.account_id, amount)
                deposits[contribution.account_id] = deposits.get(contribution.account_id, 0.0) + amount
        return deposits

    def _estimate_tax(self, taxable_income: float, plan: SpendingPlan, month: _dt.date, living) -> float:
        annual = (taxable_income + plan.total_taxable_amount) * MONTHS_PER_YEAR
        if annual <= 0.0:
            return 0.0
        ages = [age_in_years(p.date_of_birth, month) for p in living] or [0]
        spouse_age = ages[1] if len(ages) > 1 else None
        result = self.tax_calculator.calculate_tax(annual, self._filing_status(), ages[0], spouse_age)
        return result.federal_tax / MONTHS_PER_YEAR

    def build_context(
        self,
        month: _dt.date,
        index: int,
        total_expenses: float,
        other_income: float,
        taxable_income: float,
        living: List[PersonProfile],
    ) -> SpendingContext:
        view = self.state.snapshot(month)
        person = self._reference_person(living)
        years_in_retirement = 0
        if self._withdrawal_start_month is not None:
            years_in_retirement = max(0, months_between(self._withdrawal_start_month, month) // MONTHS_PER_YEAR)
        return SpendingContext(
            simulation=view,
            total_expenses=total_expenses,
            other_income=other_income,
            date=month,
            age=age_in_years(person.date_of_birth, month),
            birth_year=person.birth_year,
            years_in_retirement=years_in_retirement,
            initial_portfolio_balance=self._withdrawal_base_balance or view.initial_portfolio_balance,
            prior_year_spending=view.prior_year_spending,
            prior_year_return=view.prior_year_return,
            months_since_last_ratchet=self.state.months_since_last_ratchet(month),
            current_taxable_income=taxable_income,
            filing_status=self._filing_status(),
            strategy_params={
                PARAM_INFLATION_RATE: self.market_path.inflation_step(index),
                PARAM_INFLATION_INDEX: self.market_path.inflation_index(index),
                PARAM_BASE_INFLATION_INDEX: self._withdrawal_base_index,
            },
        )

    # --- one period ---

    def _simulate_month(self, month: _dt.date, index: int) -> MonthlySnapshot:
        events: List[str] = []
        phase = determine_phase(month, self.persons)
        living = living_persons(self.persons, month)

        if phase == SimulationPhase.SURVIVOR and not self.state.survivor_mode:
            self.state.set_survivor_mode(True)
            names = ", ".join(p.name or p.id for p in deceased_persons(self.persons, month))
            events.append(f"Survivor mode: {names} deceased")
            logger.debug(f"{month}: entering survivor phase ({names} deceased)")

        inflation_index = self.market_path.inflation_index(index)

        # (1) income and expenses, (2) gap
        income = self.income_aggregator.monthly_income(self.persons, month, inflation_index)
        expenses = self.expense_calculator.monthly_expenses(
            month,
            inflation_index,
            self.state.survivor_mode,
            age=age_in_years(self._reference_person(living).date_of_birth, month),
        )
        events.extend(expenses.one_time_events)
        self._update_contingency_flags(expenses.contingency_categories, events)
        gap = self.gap_analyzer.analyze_monthly(income, expenses.total, month)

        starting_balances = {aid: self.state.get_account_balance(aid) for aid in self.state.account_ids}

        if phase.withdrawals_active and self._withdrawal_start_month is None:
            self._withdrawal_start_month = month
            self._withdrawal_base_balance = self.state.calculate_total_balance()
            self._withdrawal_base_index = inflation_index
            events.append("Withdrawals begin")

        context = self.build_context(
            month, index, expenses.total, income.total, income.taxable_income, living
        )

        # (3) spending target
        spending_target = 0.0
        strategy_name = self.strategy.name
        if phase.withdrawals_active:
            reference = self._reference_person(living)
            if phase == SimulationPhase.SURVIVOR and person_phase(reference, month) != SimulationPhase.DISTRIBUTION:
                spending_target = gap.withdrawal_needed
                strategy_name = "Survivor Income Gap"
            else:
                decision = self.strategy.calculate_withdrawal(context)
                spending_target = decision.amount
                if decision.adjustment is not None:
                    self.state.record_ratchet(month)
                    events.append(f"Guardrail {decision.adjustment.value}: annual spending ${decision.annual_spending:,.2f}")
                    logger.debug(f"{month}: guardrail {decision.adjustment.value} to ${decision.annual_spending:,.2f}/yr")

        # (4) sequence, (5) plan and apply
        monthly_rmds = self._monthly_rmds(month, living)
        sequencer = self._fixed_sequencer or select_default_sequencer(
            self._rmd_eligible(month, living), self.rmd_calculator
        )
        ordered = sequencer.sequence(context)
        plan = self.planner.plan_with_rmds(spending_target, ordered, monthly_rmds, strategy_name)
        withdrawn = self.state.apply_plan(plan)

        rmd_required = plan.metadata.get("rmd_required", 0.0)
        rmd_reinvested = 0.0
        surplus = plan.metadata.get("rmd_surplus", 0.0)
        destination = self.config.rmd_destination_account
        if surplus > SMALL_EPSILON and destination is not None:
            self.state.deposit(destination, surplus)
            rmd_reinvested = surplus
            events.append(f"RMD surplus ${surplus:,.2f} reinvested into '{destination}'")

        raised = plan.adjusted_withdrawal
        shortfall = max(0.0, spending_target - raised)
        if shortfall > SMALL_EPSILON:
            events.append(f"Shortfall ${shortfall:,.2f}")

        # (6) returns
        rates = {aid: self.market_path.account_return(alloc, index) for aid, alloc in self._allocations.items()}
        returns = self.state.apply_account_returns(rates)

        # (7) contributions
        deposits = self._contribute(month, living)

        # (8) snapshot
        flows = []
        for aid in self.state.account_ids:
            inflow = deposits.get(aid, 0.0)
            if aid == destination:
                inflow += rmd_reinvested
            flows.append(
                AccountMonthlyFlow(
                    account_id=aid,
                    account_name=self._account_names[aid],
                    starting_balance=starting_balances[aid],
                    contributions=inflow,
                    withdrawals=withdrawn.get(aid, 0.0),
                    returns=returns.get(aid, 0.0),
                    ending_balance=self.state.get_account_balance(aid),
                )
            )

        self._cumulative_contributions += sum(deposits.values())
        self._cumulative_net_withdrawals += max(0.0, raised - rmd_reinvested)
        self._cumulative_returns += sum(returns.values())

        total_balance = self.state.calculate_total_balance()
        if self.depletion_month is None and total_balance <= SMALL_EPSILON and self.state.initial_portfolio_balance > 0:
            self.depletion_month = month
            events.append("Portfolio depleted")
            logger.warning(f"Scenario '{self.config.Nickname}': portfolio depleted in {month:%Y-%m}")

        return MonthlySnapshot(
            month=month,
            phase=phase,
            account_flows=tuple(flows),
            salary_income=income.salary,
            social_security_income=income.social_security,
            pension_income=income.pension,
            other_income=income.other,
            total_expenses=expenses.total,
            expenses_by_group=expenses.by_group(),
            target_withdrawal=spending_target,
            shortfall=shortfall,
            rmd_required=rmd_required,
            rmd_reinvested=rmd_reinvested,
            estimated_tax=self._estimate_tax(income.taxable_income, plan, month, living),
            cumulative_contributions=self._cumulative_contributions,
            cumulative_withdrawals=self._cumulative_net_withdrawals,
            cumulative_returns=self._cumulative_returns,
            events=tuple(events),
        )
