import datetime as _dt
from typing import Callable, Iterable, List, Optional, Sequence

from calculators import SocialSecurityCalculator, SurvivorExpenseCalculator
from config import ExpenseConfig, PersonProfile
from constants import MONTHS_PER_YEAR, TAXABLE_SOCIAL_SECURITY_SHARE
from dates import add_months, month_start, months_between
from models import (
    ExpenseBreakdown,
    ExpenseCategory,
    ExpenseCategoryGroup,
    GapAnalysis,
    IncomeBreakdown,
    InflationType,
)
from phases import is_alive


def _years_elapsed(start: _dt.date, month: _dt.date) -> int:
    return max(0, months_between(start, month) // MONTHS_PER_YEAR)


class IncomeAggregator:
    """
    Sums salary, Social Security, pension and other income for a month.

    Amounts configured in start-month dollars are grown with the supplied
    cumulative inflation index; Social Security and pensions grow with their
    own COLA.
    """

    def __init__(self, start_month: _dt.date, ss_calculator: Optional[SocialSecurityCalculator] = None):
        self.start_month = month_start(start_month)
        self.ss_calculator = ss_calculator or SocialSecurityCalculator()

    def salary(self, person: PersonProfile, month: _dt.date) -> float:
        if not is_alive(person, month) or month >= person.retirement_month or person.annual_salary <= 0:
            return 0.0
        growth = (1.0 + person.salary_growth_rate) ** _years_elapsed(self.start_month, month)
        return person.annual_salary / MONTHS_PER_YEAR * growth

    def social_security_claim_month(self, person: PersonProfile) -> Optional[_dt.date]:
        if person.social_security is None:
            return None
        return add_months(person.date_of_birth, person.social_security.claiming_age_months)

    def social_security_benefit(self, person: PersonProfile, month: _dt.date) -> float:
        """Own retirement benefit, whether or not the person is still alive."""
        ss = person.social_security
        claim_month = self.social_security_claim_month(person)
        if ss is None or claim_month is None or month < claim_month:
            return 0.0
        fra_months = self.ss_calculator.calculate_fra_months(person.birth_year)
        adjusted = self.ss_calculator.calculate_adjusted_benefit(
            ss.fra_monthly_benefit, fra_months, ss.claiming_age_months
        )
        return self.ss_calculator.apply_cola(adjusted, ss.cola_rate, _years_elapsed(self.start_month, month))

    def survivor_social_security(self, survivor: PersonProfile, deceased: PersonProfile, month: _dt.date) -> float:
        """The larger of the survivor's own benefit and the deceased spouse's benefit."""
        own = self.social_security_benefit(survivor, month)
        claim_month = self.social_security_claim_month(survivor)
        if claim_month is None or month < claim_month or deceased.social_security is None:
            return own
        ss = deceased.social_security
        deceased_claim = self.social_security_claim_month(deceased)
        if deceased_claim is not None and deceased_claim <= deceased.death_month:
            inherited = self.social_security_benefit(deceased, max(month, deceased_claim))
        else:
            inherited = self.ss_calculator.apply_cola(
                ss.fra_monthly_benefit, ss.cola_rate, _years_elapsed(self.start_month, month)
            )
        return max(own, inherited)

    def pension(self, person: PersonProfile, month: _dt.date, as_survivor: bool = False) -> float:
        total = 0.0
        for pension in person.pensions:
            start = month_start(pension.start_date)
            if month < start:
                continue
            amount = pension.monthly_amount * (1.0 + pension.cola_rate) ** _years_elapsed(start, month)
            if as_survivor:
                amount *= pension.survivor_percentage
            total += amount
        return total

    def person_income(self, person: PersonProfile, month: _dt.date, inflation_index: float = 1.0) -> IncomeBreakdown:
        """Income earned by one living person in ``month``."""
        if not is_alive(person, month):
            return IncomeBreakdown.empty(month)
        salary = self.salary(person, month)
        social_security = self.social_security_benefit(person, month)
        pension = self.pension(person, month)

        other = earned_other = taxable_other = 0.0
        for stream in person.other_income_streams:
            if stream.start_date is not None and month < month_start(stream.start_date):
                continue
            if stream.end_date is not None and month > month_start(stream.end_date):
                continue
            amount = stream.monthly_amount * (inflation_index if stream.inflation_indexed else 1.0)
            other += amount
            if stream.earned:
                earned_other += amount
            if stream.taxable:
                taxable_other += amount

        return IncomeBreakdown(
            as_of_date=month,
            salary=salary,
            social_security=social_security,
            pension=pension,
            other=other,
            earned_income=salary + earned_other,
            passive_income=social_security + pension + other - earned_other,
            taxable_income=salary + pension + taxable_other + social_security * TAXABLE_SOCIAL_SECURITY_SHARE,
        )

    def survivor_income(self, survivor: PersonProfile, deceased: PersonProfile, month: _dt.date) -> IncomeBreakdown:
        """Benefits the survivor receives on account of the deceased spouse."""
        own_ss = self.social_security_benefit(survivor, month)
        extra_ss = max(0.0, self.survivor_social_security(survivor, deceased, month) - own_ss)
        pension = self.pension(deceased, month, as_survivor=True)
        return IncomeBreakdown(
            as_of_date=month,
            social_security=extra_ss,
            pension=pension,
            passive_income=extra_ss + pension,
            taxable_income=pension + extra_ss * TAXABLE_SOCIAL_SECURITY_SHARE,
        )

    def monthly_income(
        self,
        persons: Sequence[PersonProfile],
        month: _dt.date,
        inflation_index: float = 1.0,
    ) -> IncomeBreakdown:
        """Household income for ``month`` across one or two person profiles."""
        combined = IncomeBreakdown.empty(month)
        living = [p for p in persons if is_alive(p, month)]
        deceased = [p for p in persons if not is_alive(p, month)]
        for person in living:
            combined = combined.combine(self.person_income(person, month, inflation_index))
        if living and deceased:
            survivor = living[0]
            for person in deceased:
                combined = combined.combine(self.survivor_income(survivor, person, month))
        return combined


class GapAnalyzer:
    """Compares income with expenses to find the withdrawal need or surplus."""

    def analyze_monthly(self, income: IncomeBreakdown, expenses: float, as_of_date: _dt.date) -> GapAnalysis:
        return GapAnalysis(as_of_date=as_of_date, total_income=income.total, total_expenses=expenses)

    def analyze_annual(self, income: IncomeBreakdown, expenses: float, as_of_date: _dt.date) -> GapAnalysis:
        return GapAnalysis(
            as_of_date=as_of_date,
            total_income=income.total * MONTHS_PER_YEAR,
            total_expenses=expenses * MONTHS_PER_YEAR,
        )

    def project_year(
        self,
        income_provider: Callable[[_dt.date], IncomeBreakdown],
        expense_provider: Callable[[_dt.date], float],
        start: _dt.date,
    ) -> List[GapAnalysis]:
        projections = []
        for i in range(MONTHS_PER_YEAR):
            month = add_months(start, i)
            projections.append(self.analyze_monthly(income_provider(month), expense_provider(month), month))
        return projections

    def summarize(self, analyses: Iterable[GapAnalysis]) -> Optional[GapAnalysis]:
        analyses = list(analyses)
        if not analyses:
            return None
        return GapAnalysis(
            as_of_date=analyses[0].as_of_date,
            total_income=sum(a.total_income for a in analyses),
            total_expenses=sum(a.total_expenses for a in analyses),
        )

    def calculate_gross_withdrawal(self, net_needed: float, marginal_tax_rate: float) -> float:
        if net_needed <= 0:
            return 0.0
        if marginal_tax_rate <= 0:
            return net_needed
        if marginal_tax_rate >= 1.0:
            raise ValueError("Marginal tax rate must be less than 1.0")
        return net_needed / (1.0 - marginal_tax_rate)


class ExpenseCalculator:
    """
    Inflates configured expenses and applies survivor multipliers.

    Items past their payoff date drop out. With a spending curve configured,
    discretionary items are scaled by the multiplier for the given age.
    """

    def __init__(
        self,
        expense_config: ExpenseConfig,
        start_month: _dt.date,
        survivor_calculator: Optional[SurvivorExpenseCalculator] = None,
    ):
        self.config = expense_config
        self.start_month = month_start(start_month)
        self.survivor_calculator = survivor_calculator or SurvivorExpenseCalculator(
            expense_config.survivor_multipliers, expense_config.survivor_default_multiplier
        )

    def _inflate(self, amount: float, category: ExpenseCategory, month: _dt.date, inflation_index: float) -> float:
        kind = category.inflation_type
        if kind == InflationType.NONE:
            return amount
        if kind == InflationType.HEALTHCARE:
            premium = (1.0 + self.config.healthcare_inflation_premium) ** _years_elapsed(self.start_month, month)
            return amount * inflation_index * premium
        return amount * inflation_index

    def curve_multiplier(self, category: ExpenseCategory, age: Optional[int]) -> float:
        curve = self.config.spending_curve
        if curve is None or age is None or category.group != ExpenseCategoryGroup.DISCRETIONARY:
            return 1.0
        return curve.multiplier_for_age(age)

    def monthly_expenses(
        self,
        month: _dt.date,
        inflation_index: float = 1.0,
        survivor: bool = False,
        age: Optional[int] = None,
    ) -> ExpenseBreakdown:
        by_category = {}
        for item in self.config.items:
            if item.is_paid_off(month):
                continue
            amount = self._inflate(item.monthly_amount, item.category, month, inflation_index)
            amount *= self.curve_multiplier(item.category, age)
            if survivor:
                amount = self.survivor_calculator.adjust_expense(item.category, amount)
            by_category[item.category] = by_category.get(item.category, 0.0) + amount

        events = []
        contingencies = []
        for expense in self.config.one_time:
            if month_start(expense.date) != month:
                continue
            amount = self._inflate(expense.amount, expense.category, month, inflation_index)
            by_category[expense.category] = by_category.get(expense.category, 0.0) + amount
            events.append(f"One-time expense '{expense.name}': ${amount:,.2f}")
            if expense.category.is_contingency and expense.category not in contingencies:
                contingencies.append(expense.category)

        return ExpenseBreakdown(
            as_of_date=month,
            by_category=by_category,
            one_time_events=tuple(events),
            contingency_categories=tuple(contingencies),
        )
