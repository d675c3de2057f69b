import datetime as _dt
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator

from constants import MONTHS_PER_YEAR, SMALL_EPSILON, TAX_TREATMENT_PRIORITY


class InvalidAmountError(ValueError):
    """Raised when a monetary magnitude that must be non-negative is negative."""


class TaxTreatment(str, Enum):
    PRE_TAX = "PRE_TAX"
    ROTH = "ROTH"
    HSA = "HSA"
    TAXABLE = "TAXABLE"

    @property
    def priority(self) -> int:
        return TAX_TREATMENT_PRIORITY[self.value]


class AccountType(str, Enum):
    TRADITIONAL_401K = "traditional_401k"
    ROTH_401K = "roth_401k"
    TRADITIONAL_403B = "traditional_403b"
    ROTH_403B = "roth_403b"
    TRADITIONAL_457B = "traditional_457b"
    TRADITIONAL_IRA = "traditional_ira"
    ROTH_IRA = "roth_ira"
    HSA = "hsa"
    TAXABLE_BROKERAGE = "taxable_brokerage"
    CASH = "cash"

    @property
    def tax_treatment(self) -> TaxTreatment:
        return _ACCOUNT_TYPE_TRAITS[self][0]

    @property
    def subject_to_rmd(self) -> bool:
        return _ACCOUNT_TYPE_TRAITS[self][1]

    @property
    def display_name(self) -> str:
        return _ACCOUNT_TYPE_TRAITS[self][2]


# (tax treatment, subject to RMD, display name)
_ACCOUNT_TYPE_TRAITS = {
    AccountType.TRADITIONAL_401K: (TaxTreatment.PRE_TAX, True, "Traditional 401(k)"),
    AccountType.ROTH_401K: (TaxTreatment.ROTH, False, "Roth 401(k)"),
    AccountType.TRADITIONAL_403B: (TaxTreatment.PRE_TAX, True, "Traditional 403(b)"),
    AccountType.ROTH_403B: (TaxTreatment.ROTH, False, "Roth 403(b)"),
    AccountType.TRADITIONAL_457B: (TaxTreatment.PRE_TAX, True, "Traditional 457(b)"),
    AccountType.TRADITIONAL_IRA: (TaxTreatment.PRE_TAX, True, "Traditional IRA"),
    AccountType.ROTH_IRA: (TaxTreatment.ROTH, False, "Roth IRA"),
    AccountType.HSA: (TaxTreatment.HSA, False, "Health Savings Account"),
    AccountType.TAXABLE_BROKERAGE: (TaxTreatment.TAXABLE, False, "Taxable Brokerage"),
    AccountType.CASH: (TaxTreatment.TAXABLE, False, "Cash"),
}


class SimulationPhase(str, Enum):
    ACCUMULATION = "ACCUMULATION"
    TRANSITION = "TRANSITION"
    DISTRIBUTION = "DISTRIBUTION"
    SURVIVOR = "SURVIVOR"

    @property
    def withdrawals_active(self) -> bool:
        return self in (SimulationPhase.DISTRIBUTION, SimulationPhase.SURVIVOR)


class FilingStatus(str, Enum):
    SINGLE = "single"
    MARRIED_FILING_JOINTLY = "married_filing_jointly"


class ExpenseCategoryGroup(str, Enum):
    ESSENTIAL = "essential"
    HEALTHCARE = "healthcare"
    DISCRETIONARY = "discretionary"
    CONTINGENCY = "contingency"
    DEBT = "debt"
    OTHER = "other"


class SpendingPhase(str, Enum):
    """Retirement spending stage used by the spending curve."""

    GO_GO = "go_go"
    SLOW_GO = "slow_go"
    NO_GO = "no_go"


class InflationType(str, Enum):
    GENERAL = "general"
    HEALTHCARE = "healthcare"
    NONE = "none"


class ExpenseCategory(str, Enum):
    HOUSING = "housing"
    FOOD = "food"
    UTILITIES = "utilities"
    TRANSPORTATION = "transportation"
    INSURANCE = "insurance"
    MEDICARE_PREMIUMS = "medicare_premiums"
    HEALTHCARE_OOP = "healthcare_oop"
    LTC_PREMIUMS = "ltc_premiums"
    LTC_CARE = "ltc_care"
    TRAVEL = "travel"
    ENTERTAINMENT = "entertainment"
    HOBBIES = "hobbies"
    GIFTS = "gifts"
    HOME_REPAIRS = "home_repairs"
    VEHICLE_REPLACEMENT = "vehicle_replacement"
    EMERGENCY_RESERVE = "emergency_reserve"
    DEBT_PAYMENTS = "debt_payments"
    TAXES = "taxes"
    OTHER = "other"

    @property
    def group(self) -> ExpenseCategoryGroup:
        return _EXPENSE_CATEGORY_TRAITS[self][0]

    @property
    def inflation_type(self) -> InflationType:
        return _EXPENSE_CATEGORY_TRAITS[self][1]

    @property
    def is_contingency(self) -> bool:
        return self.group == ExpenseCategoryGroup.CONTINGENCY


_EXPENSE_CATEGORY_TRAITS = {
    ExpenseCategory.HOUSING: (ExpenseCategoryGroup.ESSENTIAL, InflationType.GENERAL),
    ExpenseCategory.FOOD: (ExpenseCategoryGroup.ESSENTIAL, InflationType.GENERAL),
    ExpenseCategory.UTILITIES: (ExpenseCategoryGroup.ESSENTIAL, InflationType.GENERAL),
    ExpenseCategory.TRANSPORTATION: (ExpenseCategoryGroup.ESSENTIAL, InflationType.GENERAL),
    ExpenseCategory.INSURANCE: (ExpenseCategoryGroup.ESSENTIAL, InflationType.GENERAL),
    ExpenseCategory.MEDICARE_PREMIUMS: (ExpenseCategoryGroup.HEALTHCARE, InflationType.HEALTHCARE),
    ExpenseCategory.HEALTHCARE_OOP: (ExpenseCategoryGroup.HEALTHCARE, InflationType.HEALTHCARE),
    ExpenseCategory.LTC_PREMIUMS: (ExpenseCategoryGroup.HEALTHCARE, InflationType.HEALTHCARE),
    ExpenseCategory.LTC_CARE: (ExpenseCategoryGroup.HEALTHCARE, InflationType.HEALTHCARE),
    ExpenseCategory.TRAVEL: (ExpenseCategoryGroup.DISCRETIONARY, InflationType.GENERAL),
    ExpenseCategory.ENTERTAINMENT: (ExpenseCategoryGroup.DISCRETIONARY, InflationType.GENERAL),
    ExpenseCategory.HOBBIES: (ExpenseCategoryGroup.DISCRETIONARY, InflationType.GENERAL),
    ExpenseCategory.GIFTS: (ExpenseCategoryGroup.DISCRETIONARY, InflationType.GENERAL),
    ExpenseCategory.HOME_REPAIRS: (ExpenseCategoryGroup.CONTINGENCY, InflationType.GENERAL),
    ExpenseCategory.VEHICLE_REPLACEMENT: (ExpenseCategoryGroup.CONTINGENCY, InflationType.GENERAL),
    ExpenseCategory.EMERGENCY_RESERVE: (ExpenseCategoryGroup.CONTINGENCY, InflationType.GENERAL),
    ExpenseCategory.DEBT_PAYMENTS: (ExpenseCategoryGroup.DEBT, InflationType.NONE),
    ExpenseCategory.TAXES: (ExpenseCategoryGroup.OTHER, InflationType.GENERAL),
    ExpenseCategory.OTHER: (ExpenseCategoryGroup.OTHER, InflationType.GENERAL),
}


class GuardrailAdjustment(str, Enum):
    INCREASE = "increase"
    DECREASE = "decrease"


class AssetAllocation(BaseModel):
    """Percentages of an account held in stocks, bonds and cash (summing to 100)."""

    stocks_pct: float = Field(60.0, ge=0.0, le=100.0)
    bonds_pct: float = Field(40.0, ge=0.0, le=100.0)
    cash_pct: float = Field(0.0, ge=0.0, le=100.0)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def check_total(self) -> "AssetAllocation":
        total = self.stocks_pct + self.bonds_pct + self.cash_pct
        if abs(total - 100.0) > 1e-4:
            raise ValueError(f"Asset allocation must sum to 100%, got {total:.2f}%")
        return self


class AccountSnapshot(BaseModel):
    """Point-in-time view of one account, produced by the ledger."""

    account_id: str = Field(..., min_length=1)
    name: str
    account_type: AccountType
    balance: float = Field(..., ge=0.0)
    tax_treatment: TaxTreatment
    subject_to_rmd: bool
    allocation: AssetAllocation = Field(default_factory=AssetAllocation)
    owner: Optional[str] = None

    model_config = {"frozen": True}

    @property
    def has_balance(self) -> bool:
        return self.balance > 0.0


class AccountWithdrawal(BaseModel):
    """One account's contribution to a spending plan."""

    account: AccountSnapshot
    amount: float = Field(..., ge=0.0)
    requested_amount: Optional[float] = Field(None, ge=0.0)
    prior_balance: float = Field(..., ge=0.0)
    new_balance: float = Field(..., ge=0.0)

    model_config = {"frozen": True}

    @property
    def account_id(self) -> str:
        return self.account.account_id

    @property
    def tax_treatment(self) -> TaxTreatment:
        return self.account.tax_treatment

    @property
    def is_taxable(self) -> bool:
        return self.tax_treatment == TaxTreatment.PRE_TAX

    @property
    def is_depleted(self) -> bool:
        return self.new_balance <= SMALL_EPSILON

    @property
    def is_partial(self) -> bool:
        requested = self.requested_amount if self.requested_amount is not None else self.amount
        return requested - self.amount > SMALL_EPSILON


class SpendingPlan(BaseModel):
    """Result of a withdrawal decision allocated across accounts."""

    target_withdrawal: float = Field(0.0, ge=0.0)
    adjusted_withdrawal: float = Field(0.0, ge=0.0)
    account_withdrawals: Tuple[AccountWithdrawal, ...] = ()
    meets_target: bool = True
    strategy_used: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @classmethod
    def no_withdrawal_needed(cls, strategy_used: str) -> "SpendingPlan":
        return cls(strategy_used=strategy_used)

    @property
    def shortfall(self) -> float:
        return max(0.0, self.target_withdrawal - self.adjusted_withdrawal)

    @property
    def total_taxable_amount(self) -> float:
        return sum(w.amount for w in self.account_withdrawals if w.is_taxable)

    @property
    def total_tax_free_amount(self) -> float:
        return sum(w.amount for w in self.account_withdrawals if not w.is_taxable)

    @property
    def depleted_account_count(self) -> int:
        return sum(1 for w in self.account_withdrawals if w.is_depleted)


class SpendingDecision(BaseModel):
    """Withdrawal amount chosen by a spending strategy for one month."""

    amount: float = Field(..., ge=0.0)
    strategy_name: str
    annual_spending: float = Field(0.0, ge=0.0)
    adjustment: Optional[GuardrailAdjustment] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class SimulationView(BaseModel):
    """Read-only portfolio view handed to strategies and sequencers."""

    account_snapshots: Tuple[AccountSnapshot, ...] = ()
    total_portfolio_balance: float = Field(0.0, ge=0.0)
    initial_portfolio_balance: float = Field(0.0, ge=0.0)
    prior_year_spending: float = Field(0.0, ge=0.0)
    prior_year_return: float = 0.0
    last_ratchet_month: Optional[_dt.date] = None
    cumulative_withdrawals: float = Field(0.0, ge=0.0)
    high_water_mark_balance: float = Field(0.0, ge=0.0)

    model_config = {"frozen": True}

    def get_account(self, account_id: str) -> Optional[AccountSnapshot]:
        for snapshot in self.account_snapshots:
            if snapshot.account_id == account_id:
                return snapshot
        return None


class SpendingContext(BaseModel):
    """Everything a spending strategy needs for one monthly decision."""

    simulation: SimulationView
    total_expenses: float = Field(..., ge=0.0)
    other_income: float = Field(0.0, ge=0.0)
    date: _dt.date
    age: int = Field(..., ge=0)
    birth_year: int
    years_in_retirement: int = Field(0, ge=0)
    initial_portfolio_balance: float = Field(0.0, ge=0.0)
    prior_year_spending: float = Field(0.0, ge=0.0)
    prior_year_return: float = 0.0
    months_since_last_ratchet: Optional[int] = Field(None, ge=0)
    current_taxable_income: float = Field(0.0, ge=0.0)
    filing_status: FilingStatus = FilingStatus.SINGLE
    strategy_params: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @property
    def current_portfolio_balance(self) -> float:
        return self.simulation.total_portfolio_balance

    @property
    def income_gap(self) -> float:
        return max(0.0, self.total_expenses - self.other_income)

    @property
    def current_withdrawal_rate(self) -> float:
        balance = self.current_portfolio_balance
        if balance <= 0.0:
            return 0.0
        return self.prior_year_spending / balance

    def get_strategy_param(self, key: str, default: Any = None) -> Any:
        return self.strategy_params.get(key, default)


class IncomeBreakdown(BaseModel):
    """Monthly income by source for one month."""

    as_of_date: _dt.date
    salary: float = Field(0.0, ge=0.0)
    social_security: float = Field(0.0, ge=0.0)
    pension: float = Field(0.0, ge=0.0)
    other: float = Field(0.0, ge=0.0)
    earned_income: float = Field(0.0, ge=0.0)
    passive_income: float = Field(0.0, ge=0.0)
    taxable_income: float = Field(0.0, ge=0.0)

    model_config = {"frozen": True}

    @classmethod
    def empty(cls, as_of_date: _dt.date) -> "IncomeBreakdown":
        return cls(as_of_date=as_of_date)

    @property
    def total(self) -> float:
        return self.salary + self.social_security + self.pension + self.other

    def combine(self, other: "IncomeBreakdown") -> "IncomeBreakdown":
        return IncomeBreakdown(
            as_of_date=self.as_of_date,
            salary=self.salary + other.salary,
            social_security=self.social_security + other.social_security,
            pension=self.pension + other.pension,
            other=self.other + other.other,
            earned_income=self.earned_income + other.earned_income,
            passive_income=self.passive_income + other.passive_income,
            taxable_income=self.taxable_income + other.taxable_income,
        )

    def to_annual(self) -> "IncomeBreakdown":
        return IncomeBreakdown(
            as_of_date=self.as_of_date,
            salary=self.salary * MONTHS_PER_YEAR,
            social_security=self.social_security * MONTHS_PER_YEAR,
            pension=self.pension * MONTHS_PER_YEAR,
            other=self.other * MONTHS_PER_YEAR,
            earned_income=self.earned_income * MONTHS_PER_YEAR,
            passive_income=self.passive_income * MONTHS_PER_YEAR,
            taxable_income=self.taxable_income * MONTHS_PER_YEAR,
        )


class GapAnalysis(BaseModel):
    """Income versus expenses for one period."""

    as_of_date: _dt.date
    total_income: float = Field(0.0, ge=0.0)
    total_expenses: float = Field(0.0, ge=0.0)

    model_config = {"frozen": True}

    @property
    def gap(self) -> float:
        return self.total_income - self.total_expenses

    @property
    def withdrawal_needed(self) -> float:
        return max(0.0, -self.gap)

    @property
    def surplus(self) -> float:
        return max(0.0, self.gap)

    @property
    def has_deficit(self) -> bool:
        return self.gap < 0.0

    @property
    def has_surplus(self) -> bool:
        return self.gap > 0.0

    @property
    def coverage_ratio(self) -> float:
        if self.total_expenses <= 0.0:
            return float("inf") if self.total_income > 0.0 else 0.0
        return self.total_income / self.total_expenses

    def gross_withdrawal_needed(self, marginal_tax_rate: float) -> float:
        """Withdrawal needed to net the deficit after tax at the marginal rate."""
        if self.withdrawal_needed <= 0.0:
            return 0.0
        if marginal_tax_rate <= 0.0:
            return self.withdrawal_needed
        if marginal_tax_rate >= 1.0:
            raise ValueError("Marginal tax rate must be less than 1.0")
        return self.withdrawal_needed / (1.0 - marginal_tax_rate)


class AccountMonthlyFlow(BaseModel):
    """Audit record of one account's money movements in one month."""

    account_id: str = Field(..., min_length=1)
    account_name: str
    starting_balance: float = Field(0.0, ge=0.0)
    contributions: float = Field(0.0, ge=0.0)
    withdrawals: float = Field(0.0, ge=0.0)
    returns: float = 0.0
    ending_balance: float = Field(0.0, ge=0.0)

    model_config = {"frozen": True}


class MonthlySnapshot(BaseModel):
    """Per-month record retained in the simulation history."""

    month: _dt.date
    phase: SimulationPhase = SimulationPhase.ACCUMULATION
    account_flows: Tuple[AccountMonthlyFlow, ...] = ()
    salary_income: float = Field(0.0, ge=0.0)
    social_security_income: float = Field(0.0, ge=0.0)
    pension_income: float = Field(0.0, ge=0.0)
    other_income: float = Field(0.0, ge=0.0)
    total_expenses: float = Field(0.0, ge=0.0)
    expenses_by_group: Dict[ExpenseCategoryGroup, float] = Field(default_factory=dict)
    target_withdrawal: float = Field(0.0, ge=0.0)
    shortfall: float = Field(0.0, ge=0.0)
    rmd_required: float = Field(0.0, ge=0.0)
    rmd_reinvested: float = Field(0.0, ge=0.0)
    estimated_tax: float = Field(0.0, ge=0.0)
    cumulative_contributions: float = Field(0.0, ge=0.0)
    cumulative_withdrawals: float = Field(0.0, ge=0.0)
    cumulative_returns: float = 0.0
    events: Tuple[str, ...] = ()

    model_config = {"frozen": True}

    @field_validator("month")
    @classmethod
    def check_first_of_month(cls, v: _dt.date) -> _dt.date:
        if v.day != 1:
            raise ValueError(f"Snapshot month must be the first day of a month, got {v}")
        return v

    @property
    def year(self) -> int:
        return self.month.year

    @property
    def month_value(self) -> int:
        return self.month.month

    @property
    def total_income(self) -> float:
        return self.salary_income + self.social_security_income + self.pension_income + self.other_income

    @property
    def total_portfolio_balance(self) -> float:
        return sum(f.ending_balance for f in self.account_flows)

    @property
    def starting_portfolio_balance(self) -> float:
        return sum(f.starting_balance for f in self.account_flows)

    @property
    def total_contributions(self) -> float:
        return sum(f.contributions for f in self.account_flows)

    @property
    def total_withdrawals(self) -> float:
        return sum(f.withdrawals for f in self.account_flows)

    @property
    def total_returns(self) -> float:
        return sum(f.returns for f in self.account_flows)

    @property
    def net_withdrawals(self) -> float:
        """Withdrawals that left the portfolio, excluding reinvested RMD surplus."""
        return max(0.0, self.total_withdrawals - self.rmd_reinvested)

    @property
    def meets_target(self) -> bool:
        return self.shortfall <= SMALL_EPSILON

    def flow_for(self, account_id: str) -> Optional[AccountMonthlyFlow]:
        for flow in self.account_flows:
            if flow.account_id == account_id:
                return flow
        return None


class ExpenseBreakdown(BaseModel):
    """Household expenses for one month by category."""

    as_of_date: _dt.date
    by_category: Dict[ExpenseCategory, float] = Field(default_factory=dict)
    one_time_events: Tuple[str, ...] = ()
    contingency_categories: Tuple[ExpenseCategory, ...] = ()

    model_config = {"frozen": True}

    @property
    def total(self) -> float:
        return sum(self.by_category.values())

    def by_group(self) -> Dict[ExpenseCategoryGroup, float]:
        groups: Dict[ExpenseCategoryGroup, float] = {}
        for category, amount in self.by_category.items():
            groups[category.group] = groups.get(category.group, 0.0) + amount
        return groups
