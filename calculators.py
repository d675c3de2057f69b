"""Stateless regulatory and market calculators consumed by the engine."""

from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel

from constants import MONTHS_PER_YEAR
from models import AccountType, AssetAllocation, ExpenseCategory, FilingStatus


# IRS Uniform Lifetime Table (2022+)
UNIFORM_LIFETIME_DIVISORS: Dict[int, float] = {
    72: 27.4, 73: 26.5, 74: 25.5, 75: 24.6, 76: 23.7, 77: 22.9, 78: 22.0, 79: 21.1,
    80: 20.2, 81: 19.4, 82: 18.5, 83: 17.7, 84: 16.8, 85: 16.0, 86: 15.2, 87: 14.4,
    88: 13.7, 89: 12.9, 90: 12.2, 91: 11.5, 92: 10.8, 93: 10.1, 94: 9.5, 95: 8.9,
    96: 8.4, 97: 7.8, 98: 7.3, 99: 6.8, 100: 6.4, 101: 6.0, 102: 5.6, 103: 5.2,
    104: 4.9, 105: 4.6, 106: 4.3, 107: 4.1, 108: 3.9, 109: 3.7, 110: 3.5, 111: 3.4,
    112: 3.3, 113: 3.1, 114: 3.0, 115: 2.9, 116: 2.8, 117: 2.7, 118: 2.5, 119: 2.3,
    120: 2.0,
}

# SECURE 2.0 start ages: (last birth year in range, start age)
RMD_START_AGES: List[Tuple[Optional[int], int]] = [
    (1950, 72),
    (1959, 73),
    (None, 75),
]


class RmdCalculator:
    def get_distribution_factor(self, age: int) -> float:
        if age > max(UNIFORM_LIFETIME_DIVISORS):
            return UNIFORM_LIFETIME_DIVISORS[max(UNIFORM_LIFETIME_DIVISORS)]
        return UNIFORM_LIFETIME_DIVISORS.get(age, 0.0)

    def calculate_rmd(self, prior_year_end_balance: float, age: int) -> float:
        factor = self.get_distribution_factor(age)
        if factor == 0.0 or prior_year_end_balance <= 0:
            return 0.0
        return prior_year_end_balance / factor

    def get_rmd_start_age(self, birth_year: int) -> int:
        for last_birth_year, start_age in RMD_START_AGES:
            if last_birth_year is None or birth_year <= last_birth_year:
                return start_age
        return RMD_START_AGES[-1][1]

    def is_subject_to_rmd(self, account_type: AccountType) -> bool:
        return AccountType(account_type).subject_to_rmd

    def is_rmd_required(self, age: int, birth_year: int) -> bool:
        return age >= self.get_rmd_start_age(birth_year)


class SocialSecurityCalculator:
    """Full retirement age, early reduction / delayed credit and COLA arithmetic."""

    FRA_66_MONTHS = 66 * MONTHS_PER_YEAR
    FRA_67_MONTHS = 67 * MONTHS_PER_YEAR
    EARLY_REDUCTION_FIRST_36 = 5.0 / 900.0
    EARLY_REDUCTION_BEYOND_36 = 5.0 / 1200.0
    EARLY_REDUCTION_THRESHOLD_MONTHS = 36
    DELAYED_CREDIT_RATE = 8.0 / 1200.0

    def calculate_fra_months(self, birth_year: int) -> int:
        if birth_year <= 1954:
            return self.FRA_66_MONTHS
        if birth_year >= 1960:
            return self.FRA_67_MONTHS
        return self.FRA_66_MONTHS + (birth_year - 1954) * 2

    def calculate_early_reduction(self, months_early: int) -> float:
        if months_early <= 0:
            return 0.0
        if months_early <= self.EARLY_REDUCTION_THRESHOLD_MONTHS:
            return self.EARLY_REDUCTION_FIRST_36 * months_early
        beyond = months_early - self.EARLY_REDUCTION_THRESHOLD_MONTHS
        return (
            self.EARLY_REDUCTION_FIRST_36 * self.EARLY_REDUCTION_THRESHOLD_MONTHS
            + self.EARLY_REDUCTION_BEYOND_36 * beyond
        )

    def calculate_delayed_credits(self, months_delayed: int) -> float:
        if months_delayed <= 0:
            return 0.0
        return self.DELAYED_CREDIT_RATE * months_delayed

    def calculate_adjusted_benefit(self, fra_benefit: float, fra_months: int, claiming_months: int) -> float:
        if fra_benefit <= 0:
            return 0.0
        if claiming_months < fra_months:
            return fra_benefit * (1.0 - self.calculate_early_reduction(fra_months - claiming_months))
        if claiming_months > fra_months:
            return fra_benefit * (1.0 + self.calculate_delayed_credits(claiming_months - fra_months))
        return fra_benefit

    def apply_cola(self, benefit: float, cola_rate: float, years: int) -> float:
        if benefit <= 0:
            return 0.0
        if years <= 0 or cola_rate == 0:
            return benefit
        return benefit * (1.0 + cola_rate) ** years


class ReturnCalculator:
    def calculate_blended_return(
        self,
        allocation: AssetAllocation,
        stock_return: float,
        bond_return: float,
        cash_return: float,
    ) -> float:
        return (
            allocation.stocks_pct / 100.0 * stock_return
            + allocation.bonds_pct / 100.0 * bond_return
            + allocation.cash_pct / 100.0 * cash_return
        )

    def to_monthly_rate(self, annual_rate: float) -> float:
        """Monthly rate that compounds to ``annual_rate`` over twelve months."""
        if annual_rate <= -1.0:
            return -1.0
        return (1.0 + annual_rate) ** (1.0 / MONTHS_PER_YEAR) - 1.0

    def calculate_account_growth(self, balance: float, annual_rate: float, months: int) -> float:
        if months < 0:
            raise ValueError(f"Months cannot be negative: {months}")
        if months == 0:
            return balance
        return balance * (1.0 + self.to_monthly_rate(annual_rate)) ** months


# 2025 federal brackets: (upper bound of bracket or None, rate)
FEDERAL_TAX_BRACKETS: Dict[FilingStatus, List[Tuple[Optional[float], float]]] = {
    FilingStatus.SINGLE: [
        (11_925, 0.10), (48_475, 0.12), (103_350, 0.22), (197_300, 0.24),
        (250_525, 0.32), (626_350, 0.35), (None, 0.37),
    ],
    FilingStatus.MARRIED_FILING_JOINTLY: [
        (23_850, 0.10), (96_950, 0.12), (206_700, 0.22), (394_600, 0.24),
        (501_050, 0.32), (751_600, 0.35), (None, 0.37),
    ],
}
STANDARD_DEDUCTION: Dict[FilingStatus, float] = {
    FilingStatus.SINGLE: 15_000.0,
    FilingStatus.MARRIED_FILING_JOINTLY: 30_000.0,
}
AGE_65_ADDITIONAL_DEDUCTION: Dict[FilingStatus, float] = {
    FilingStatus.SINGLE: 2_000.0,
    FilingStatus.MARRIED_FILING_JOINTLY: 1_600.0,
}


class TaxResult(BaseModel):
    gross_income: float
    standard_deduction: float
    taxable_income: float
    federal_tax: float
    effective_rate: float
    marginal_rate: float

    model_config = {"frozen": True}


class FederalTaxCalculator:
    """Progressive bracket tax on ordinary income after the standard deduction."""

    def get_standard_deduction(self, filing_status: FilingStatus, age: int = 0, spouse_age: Optional[int] = None) -> float:
        deduction = STANDARD_DEDUCTION[filing_status]
        count_65_plus = int(age >= 65)
        if filing_status == FilingStatus.MARRIED_FILING_JOINTLY and spouse_age is not None:
            count_65_plus += int(spouse_age >= 65)
        return deduction + AGE_65_ADDITIONAL_DEDUCTION[filing_status] * count_65_plus

    def calculate_bracket_tax(self, taxable_income: float, filing_status: FilingStatus) -> float:
        tax = 0.0
        lower = 0.0
        for upper, rate in FEDERAL_TAX_BRACKETS[filing_status]:
            if taxable_income <= lower:
                break
            top = taxable_income if upper is None else min(taxable_income, upper)
            tax += (top - lower) * rate
            if upper is None:
                break
            lower = upper
        return tax

    def get_marginal_rate(self, taxable_income: float, filing_status: FilingStatus) -> float:
        for upper, rate in FEDERAL_TAX_BRACKETS[filing_status]:
            if upper is None or taxable_income <= upper:
                return rate
        return FEDERAL_TAX_BRACKETS[filing_status][-1][1]

    def calculate_tax(
        self,
        gross_income: float,
        filing_status: FilingStatus,
        age: int = 0,
        spouse_age: Optional[int] = None,
    ) -> TaxResult:
        deduction = self.get_standard_deduction(filing_status, age, spouse_age)
        taxable = max(0.0, gross_income - deduction)
        tax = self.calculate_bracket_tax(taxable, filing_status)
        return TaxResult(
            gross_income=gross_income,
            standard_deduction=deduction,
            taxable_income=taxable,
            federal_tax=tax,
            effective_rate=tax / gross_income if gross_income > 0 else 0.0,
            marginal_rate=self.get_marginal_rate(taxable, filing_status) if taxable > 0 else 0.0,
        )


DEFAULT_SURVIVOR_MULTIPLIERS: Dict[ExpenseCategory, float] = {
    ExpenseCategory.HOUSING: 1.00,
    ExpenseCategory.DEBT_PAYMENTS: 1.00,
    ExpenseCategory.UTILITIES: 0.85,
    ExpenseCategory.FOOD: 0.60,
    ExpenseCategory.TRANSPORTATION: 0.70,
    ExpenseCategory.TRAVEL: 0.60,
    ExpenseCategory.ENTERTAINMENT: 0.65,
    ExpenseCategory.HOBBIES: 0.65,
    ExpenseCategory.INSURANCE: 0.75,
    ExpenseCategory.HEALTHCARE_OOP: 0.50,
    ExpenseCategory.MEDICARE_PREMIUMS: 0.50,
    ExpenseCategory.LTC_PREMIUMS: 0.50,
    ExpenseCategory.LTC_CARE: 0.50,
    ExpenseCategory.HOME_REPAIRS: 1.00,
    ExpenseCategory.VEHICLE_REPLACEMENT: 0.70,
    ExpenseCategory.EMERGENCY_RESERVE: 0.75,
    ExpenseCategory.GIFTS: 0.75,
    ExpenseCategory.TAXES: 0.75,
}


class SurvivorExpenseCalculator:
    """Scales couple expenses by category once one spouse has died."""

    def __init__(
        self,
        overrides: Optional[Dict[ExpenseCategory, float]] = None,
        default_multiplier: float = 0.75,
    ):
        self.multipliers = dict(DEFAULT_SURVIVOR_MULTIPLIERS)
        self.multipliers.update(overrides or {})
        self.default_multiplier = default_multiplier

    def get_multiplier(self, category: ExpenseCategory) -> float:
        return self.multipliers.get(category, self.default_multiplier)

    def adjust_expense(self, category: ExpenseCategory, couple_amount: float) -> float:
        return couple_amount * self.get_multiplier(category)

    def calculate_survivor_expenses(self, couple_expenses: Dict[ExpenseCategory, float]) -> Dict[ExpenseCategory, float]:
        return {category: self.adjust_expense(category, amount) for category, amount in couple_expenses.items()}

    def get_overall_reduction(self, couple_expenses: Dict[ExpenseCategory, float]) -> float:
        couple_total = sum(couple_expenses.values())
        if couple_total == 0:
            return 0.0
        survivor_total = sum(self.calculate_survivor_expenses(couple_expenses).values())
        return (couple_total - survivor_total) / couple_total
