import os
import json
import datetime as _dt
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field, field_validator, model_validator, ValidationInfo
from loguru import logger

from constants import DEFAULT_INFLATION_RATE, MONTHS_PER_YEAR
from dates import add_months, month_start
from models import (
    AccountType,
    AssetAllocation,
    ExpenseCategory,
    FilingStatus,
    SpendingPhase,
)


class ConfigurationError(Exception):
    """Raised when the configuration file cannot be loaded or parsed."""


class AccountConfig(BaseModel):
    """Initial state of one investment account."""

    id: str = Field(..., min_length=1, description="Unique account identifier.")
    name: Optional[str] = Field(None, description="Display name. Defaults to the id.")
    account_type: AccountType = Field(..., description="Account type, which fixes tax treatment and RMD status.")
    owner: Optional[str] = Field(
        None, description="Person id owning the account. Defaults to the first person."
    )
    balance: float = Field(..., ge=0, description="Balance at the simulation start month.")
    allocation: AssetAllocation = Field(default_factory=AssetAllocation)

    @property
    def display_name(self) -> str:
        return self.name or self.id


class ContributionConfig(BaseModel):
    """Monthly contribution made while the person is still working."""

    account_id: str = Field(..., min_length=1)
    monthly_amount: float = Field(..., ge=0)
    annual_growth_rate: float = Field(
        0.0, ge=0, description="Yearly growth applied to the contribution amount."
    )


class SocialSecurityConfig(BaseModel):
    """Social Security benefit for one person, in today's (start month) dollars."""

    fra_monthly_benefit: float = Field(..., ge=0, description="Monthly benefit at full retirement age.")
    claiming_age_months: int = Field(
        67 * MONTHS_PER_YEAR,
        ge=62 * MONTHS_PER_YEAR,
        le=70 * MONTHS_PER_YEAR,
        description="Age in months at which benefits are claimed.",
    )
    cola_rate: float = Field(DEFAULT_INFLATION_RATE, ge=0, description="Annual cost-of-living adjustment.")


class PensionConfig(BaseModel):
    """Defined-benefit pension payment stream."""

    name: str = Field(..., description="Name of the pension.")
    monthly_amount: float = Field(..., ge=0, description="Nominal monthly benefit at its start date.")
    start_date: _dt.date
    cola_rate: float = Field(0.0, ge=0)
    survivor_percentage: float = Field(
        0.0, ge=0.0, le=1.0, description="Share of the benefit paid to a surviving spouse."
    )


class IncomeStreamConfig(BaseModel):
    """Configuration for an additional income stream (rental income, annuity, part-time work)."""

    name: str = Field(
        ..., description="Name of the income stream (e.g., 'Rental Income', 'Consulting')."
    )
    monthly_amount: float = Field(
        ..., ge=0, description="Monthly amount in today's (start month) terms."
    )
    start_date: Optional[_dt.date] = Field(None, description="First month paid. None means from the start.")
    end_date: Optional[_dt.date] = Field(None, description="Last month paid. None means indefinitely.")
    inflation_indexed: bool = Field(
        True, description="If True, grows with general inflation from the start month."
    )
    taxable: bool = Field(True, description="Counts towards taxable income.")
    earned: bool = Field(False, description="Earned (work) income rather than passive income.")

    @model_validator(mode="after")
    def check_dates(self) -> "IncomeStreamConfig":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError(f"Income stream '{self.name}' ends before it starts.")
        return self


class PersonProfile(BaseModel):
    """One member of the household and the dates that drive phase transitions."""

    id: str = Field(..., min_length=1)
    name: str = Field("")
    date_of_birth: _dt.date
    retirement_date: _dt.date = Field(..., description="First month without salary.")
    withdrawal_start_date: Optional[_dt.date] = Field(
        None, description="First month portfolio withdrawals may start. Defaults to the retirement date."
    )
    death_date: Optional[_dt.date] = Field(
        None, description="Month of death. Defaults to the life expectancy age."
    )
    life_expectancy_age: int = Field(95, gt=0, le=120)
    annual_salary: float = Field(0.0, ge=0)
    salary_growth_rate: float = Field(0.0, ge=0)
    social_security: Optional[SocialSecurityConfig] = None
    pensions: List[PensionConfig] = Field([])
    other_income_streams: List[IncomeStreamConfig] = Field([])
    contributions: List[ContributionConfig] = Field([])

    @field_validator("retirement_date")
    @classmethod
    def check_retirement_after_birth(cls, v: _dt.date, info: ValidationInfo) -> _dt.date:
        dob = info.data.get("date_of_birth")
        if dob is not None and v <= dob:
            raise ValueError("retirement_date must be after date_of_birth")
        return v

    @model_validator(mode="after")
    def check_dates(self) -> "PersonProfile":
        if self.withdrawal_start_date is not None and self.withdrawal_start_date < self.retirement_date:
            raise ValueError(f"withdrawal_start_date precedes retirement_date for person '{self.id}'")
        if self.death_date is not None and self.death_date <= self.date_of_birth:
            raise ValueError(f"death_date must be after date_of_birth for person '{self.id}'")
        return self

    @property
    def birth_year(self) -> int:
        return self.date_of_birth.year

    @property
    def retirement_month(self) -> _dt.date:
        return month_start(self.retirement_date)

    @property
    def withdrawal_start_month(self) -> _dt.date:
        return month_start(self.withdrawal_start_date or self.retirement_date)

    @property
    def death_month(self) -> _dt.date:
        if self.death_date is not None:
            return month_start(self.death_date)
        return add_months(self.date_of_birth, self.life_expectancy_age * MONTHS_PER_YEAR)


class ExpenseItemConfig(BaseModel):
    category: ExpenseCategory
    monthly_amount: float = Field(..., ge=0, description="Monthly amount in today's (start month) terms.")
    end_date: Optional[_dt.date] = Field(
        None, description="Payoff date. The expense is no longer paid from this month on."
    )

    def is_paid_off(self, month: _dt.date) -> bool:
        return self.end_date is not None and month >= month_start(self.end_date)


class SpendingCurveConfig(BaseModel):
    """
    Go-go / slow-go / no-go multipliers for discretionary expenses.

    The stage follows the age of the first living person: go-go before
    ``slow_go_start_age``, slow-go until ``no_go_start_age``, no-go after.
    """

    slow_go_start_age: int = Field(75, gt=0)
    no_go_start_age: int = Field(85, gt=0)
    go_go_multiplier: float = Field(1.0, ge=0)
    slow_go_multiplier: float = Field(0.8, ge=0)
    no_go_multiplier: float = Field(0.5, ge=0)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def check_ages(self) -> "SpendingCurveConfig":
        if self.no_go_start_age < self.slow_go_start_age:
            raise ValueError("no_go_start_age cannot precede slow_go_start_age")
        return self

    def phase_for_age(self, age: int) -> SpendingPhase:
        if age >= self.no_go_start_age:
            return SpendingPhase.NO_GO
        if age >= self.slow_go_start_age:
            return SpendingPhase.SLOW_GO
        return SpendingPhase.GO_GO

    def multiplier_for_age(self, age: int) -> float:
        return {
            SpendingPhase.GO_GO: self.go_go_multiplier,
            SpendingPhase.SLOW_GO: self.slow_go_multiplier,
            SpendingPhase.NO_GO: self.no_go_multiplier,
        }[self.phase_for_age(age)]


class OneTimeExpenseConfig(BaseModel):
    """A single large expense in a given month (roof, car, medical event)."""

    name: str
    date: _dt.date
    amount: float = Field(..., ge=0, description="Amount in today's (start month) terms.")
    category: ExpenseCategory = ExpenseCategory.EMERGENCY_RESERVE


class ExpenseConfig(BaseModel):
    items: List[ExpenseItemConfig] = Field([])
    one_time: List[OneTimeExpenseConfig] = Field([])
    healthcare_inflation_premium: float = Field(
        0.02, ge=0, description="Extra yearly inflation for healthcare categories."
    )
    survivor_default_multiplier: float = Field(0.75, ge=0)
    survivor_multipliers: Dict[ExpenseCategory, float] = Field(
        {}, description="Per-category overrides of the default survivor multipliers."
    )
    spending_curve: Optional[SpendingCurveConfig] = Field(
        None, description="Age-based multipliers for discretionary expenses. None disables the curve."
    )

    @field_validator("survivor_multipliers")
    @classmethod
    def check_multipliers(cls, v: Dict[ExpenseCategory, float]) -> Dict[ExpenseCategory, float]:
        for category, multiplier in v.items():
            if multiplier < 0:
                raise ValueError(f"Survivor multiplier for '{category.value}' cannot be negative")
        return v

    @property
    def monthly_total(self) -> float:
        return sum(item.monthly_amount for item in self.items)


class GuardrailsConfig(BaseModel):
    """
    Parameters of the guardrails spending rule.

    The upper guardrail cuts spending when the current withdrawal rate exceeds
    ``upper_threshold_multiplier * initial_withdrawal_rate`` (capital
    preservation). The lower guardrail raises spending when the rate falls
    below ``lower_threshold_multiplier * initial_withdrawal_rate`` (prosperity).
    """

    initial_withdrawal_rate: float = Field(0.04, gt=0.0, le=1.0)
    inflation_rate: float = Field(DEFAULT_INFLATION_RATE)
    upper_threshold_multiplier: Optional[float] = Field(None, gt=0.0)
    decrease_adjustment: float = Field(0.10, ge=0.0, lt=1.0)
    lower_threshold_multiplier: Optional[float] = Field(None, gt=0.0)
    increase_adjustment: float = Field(0.10, ge=0.0)
    absolute_floor: Optional[float] = Field(None, ge=0.0, description="Minimum annual spending.")
    absolute_ceiling: Optional[float] = Field(None, ge=0.0, description="Maximum annual spending.")
    allow_spending_cuts: bool = Field(True)
    skip_inflation_on_down_years: bool = Field(False)
    minimum_years_between_ratchets: int = Field(1, ge=0)
    years_before_cap_preservation_ends: int = Field(
        0, ge=0, description="Cuts stop after this many years in retirement. 0 means never."
    )

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def check_bounds(self) -> "GuardrailsConfig":
        if (
            self.absolute_floor is not None
            and self.absolute_ceiling is not None
            and self.absolute_floor > self.absolute_ceiling
        ):
            raise ValueError("absolute_floor cannot exceed absolute_ceiling")
        if (
            self.upper_threshold_multiplier is not None
            and self.lower_threshold_multiplier is not None
            and self.lower_threshold_multiplier > self.upper_threshold_multiplier
        ):
            raise ValueError("lower_threshold_multiplier cannot exceed upper_threshold_multiplier")
        return self

    @property
    def has_upper_guardrail(self) -> bool:
        return self.upper_threshold_multiplier is not None and self.allow_spending_cuts

    @property
    def has_lower_guardrail(self) -> bool:
        return self.lower_threshold_multiplier is not None

    @property
    def has_absolute_floor(self) -> bool:
        return self.absolute_floor is not None

    @property
    def has_absolute_ceiling(self) -> bool:
        return self.absolute_ceiling is not None

    @classmethod
    def guyton_klinger(cls) -> "GuardrailsConfig":
        return cls(
            initial_withdrawal_rate=0.052,
            upper_threshold_multiplier=1.20,
            decrease_adjustment=0.10,
            lower_threshold_multiplier=0.80,
            increase_adjustment=0.10,
            allow_spending_cuts=True,
            skip_inflation_on_down_years=True,
            minimum_years_between_ratchets=1,
            years_before_cap_preservation_ends=15,
        )

    @classmethod
    def vanguard_dynamic(cls) -> "GuardrailsConfig":
        # Ceiling +5% / floor -2.5% on the year-over-year change.
        return cls(
            initial_withdrawal_rate=0.04,
            upper_threshold_multiplier=1.0,
            decrease_adjustment=0.025,
            lower_threshold_multiplier=1.0,
            increase_adjustment=0.05,
            allow_spending_cuts=True,
            skip_inflation_on_down_years=False,
            minimum_years_between_ratchets=1,
        )

    @classmethod
    def kitces_ratchet(cls) -> "GuardrailsConfig":
        return cls(
            initial_withdrawal_rate=0.04,
            upper_threshold_multiplier=None,
            decrease_adjustment=0.0,
            lower_threshold_multiplier=0.667,
            increase_adjustment=0.10,
            allow_spending_cuts=False,
            skip_inflation_on_down_years=False,
            minimum_years_between_ratchets=3,
        )

    @classmethod
    def from_preset(cls, preset: str) -> "GuardrailsConfig":
        factories = {
            "guyton_klinger": cls.guyton_klinger,
            "vanguard_dynamic": cls.vanguard_dynamic,
            "kitces_ratchet": cls.kitces_ratchet,
        }
        if preset not in factories:
            raise ValueError(f"Unknown guardrails preset '{preset}'. Expected one of {sorted(factories)}.")
        return factories[preset]()


StrategyType = Literal["fixed", "percentage", "guardrails", "income_gap"]
GuardrailsPreset = Literal["guyton_klinger", "vanguard_dynamic", "kitces_ratchet"]


class SpendingStrategyConfig(BaseModel):
    """Selects one spending strategy and its parameters."""

    type: StrategyType = Field("guardrails")
    annual_amount: Optional[float] = Field(
        None, ge=0, description="Fixed strategy: annual spending in start-month dollars."
    )
    withdrawal_rate: float = Field(
        0.04, gt=0.0, le=1.0, description="Fixed strategy fallback rate, or the percentage-of-portfolio rate."
    )
    inflation_indexed: bool = Field(True)
    inflation_rate: float = Field(DEFAULT_INFLATION_RATE)
    preset: Optional[GuardrailsPreset] = Field(None)
    guardrails: Optional[GuardrailsConfig] = Field(None)
    marginal_tax_rate: float = Field(0.0, ge=0.0, lt=1.0)
    cap_at_income_gap: bool = Field(True)

    @model_validator(mode="after")
    def check_guardrails(self) -> "SpendingStrategyConfig":
        if self.type != "guardrails" and (self.preset is not None or self.guardrails is not None):
            logger.warning(f"Guardrails settings are ignored for a '{self.type}' spending strategy.")
        return self

    def resolved_guardrails(self) -> GuardrailsConfig:
        if self.guardrails is not None:
            return self.guardrails
        if self.preset is not None:
            return GuardrailsConfig.from_preset(self.preset)
        return GuardrailsConfig.guyton_klinger()


class MarketConfig(BaseModel):
    """Expected annual returns and volatilities per asset class, plus inflation."""

    stock_return_mean: float = Field(0.07)
    stock_return_volatility: float = Field(0.16, ge=0.0)
    bond_return_mean: float = Field(0.04)
    bond_return_volatility: float = Field(0.06, ge=0.0)
    cash_return_mean: float = Field(0.02)
    cash_return_volatility: float = Field(0.005, ge=0.0)
    inflation_rate_mean: float = Field(DEFAULT_INFLATION_RATE)
    inflation_rate_volatility: float = Field(0.01, ge=0.0)

    @field_validator("inflation_rate_volatility")
    @classmethod
    def check_inflation_volatility(cls, v: float) -> float:
        if v > 0.05:
            logger.warning(f"Inflation volatility ({v * 100:.1f}%) is relatively high.")
        return v


SequencerType = Literal["auto", "tax_efficient", "rmd_first", "custom"]


class Config(BaseModel):
    """Main configuration model for the household projection."""

    Nickname: str = Field(
        "DefaultScenario",
        alias="scenario",
        description="A nickname for this simulation scenario.",
    )
    start_month: _dt.date
    end_month: Optional[_dt.date] = Field(
        None, description="Last simulated month. Defaults to the last person's death month."
    )
    persons: List[PersonProfile] = Field(..., min_length=1, max_length=2)
    accounts: List[AccountConfig] = Field(..., min_length=1)
    expenses: ExpenseConfig = Field(default_factory=ExpenseConfig)
    spending_strategy: SpendingStrategyConfig = Field(default_factory=SpendingStrategyConfig)
    sequencer: SequencerType = Field("auto")
    custom_account_order: List[str] = Field([])
    rmd_destination_account: Optional[str] = Field(
        None, description="Account receiving RMD money beyond the spending need."
    )
    filing_status: Optional[FilingStatus] = Field(None)
    market: MarketConfig = Field(default_factory=MarketConfig)

    num_simulations: int = Field(0, ge=0)
    seed: Optional[int] = Field(None)
    num_processes: Optional[int] = Field(1, ge=1)

    model_config = {"validate_by_name": True}

    @field_validator("start_month", "end_month")
    @classmethod
    def normalize_month(cls, v: Optional[_dt.date]) -> Optional[_dt.date]:
        return month_start(v) if v is not None else v

    @model_validator(mode="after")
    def check_references(self) -> "Config":
        person_ids = [p.id for p in self.persons]
        if len(set(person_ids)) != len(person_ids):
            raise ValueError(f"Duplicate person ids: {person_ids}")
        account_ids = [a.id for a in self.accounts]
        if len(set(account_ids)) != len(account_ids):
            raise ValueError(f"Duplicate account ids: {account_ids}")

        for account in self.accounts:
            if account.owner is not None and account.owner not in person_ids:
                raise ValueError(f"Account '{account.id}' has unknown owner '{account.owner}'")
        for person in self.persons:
            for contribution in person.contributions:
                if contribution.account_id not in account_ids:
                    raise ValueError(
                        f"Contribution for '{person.id}' targets unknown account '{contribution.account_id}'"
                    )
        if self.rmd_destination_account is not None and self.rmd_destination_account not in account_ids:
            raise ValueError(f"Unknown rmd_destination_account '{self.rmd_destination_account}'")
        unknown = [a for a in self.custom_account_order if a not in account_ids]
        if unknown:
            raise ValueError(f"custom_account_order references unknown accounts: {unknown}")
        if self.sequencer == "custom" and not self.custom_account_order:
            raise ValueError("A 'custom' sequencer requires custom_account_order")
        if self.end_month is not None and self.end_month < self.start_month:
            raise ValueError("end_month precedes start_month")
        return self

    @property
    def primary_person(self) -> PersonProfile:
        return self.persons[0]

    @property
    def effective_filing_status(self) -> FilingStatus:
        if self.filing_status is not None:
            return self.filing_status
        if len(self.persons) > 1:
            return FilingStatus.MARRIED_FILING_JOINTLY
        return FilingStatus.SINGLE

    @property
    def horizon_end_month(self) -> _dt.date:
        if self.end_month is not None:
            return self.end_month
        return max(p.death_month for p in self.persons)

    @property
    def initial_portfolio_balance(self) -> float:
        return sum(a.balance for a in self.accounts)

    def account_owner(self, account: AccountConfig) -> str:
        return account.owner or self.primary_person.id

    def get_person(self, person_id: str) -> Optional[PersonProfile]:
        for person in self.persons:
            if person.id == person_id:
                return person
        return None


def load_config_from_json(file_path: str) -> Dict[str, Any]:
    """Loads and returns the configuration dictionary from a JSON file."""
    if not os.path.exists(file_path):
        raise ConfigurationError(f"Configuration file not found at: {file_path}")

    try:
        with open(file_path, "r", encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            f"Error parsing JSON file '{file_path}': {e}"
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Unexpected error reading config file '{file_path}': {e}"
        ) from e
