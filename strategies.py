"""
Spending strategies.

Each strategy turns a ``SpendingContext`` into the amount to withdraw this
month. The closed set of variants is picked once from configuration by
``build_spending_strategy``; a decision depends on nothing but the context.
"""

from typing import Any, Dict, Optional, Tuple

from config import GuardrailsConfig, SpendingStrategyConfig
from constants import DEFAULT_INFLATION_RATE, MONTHS_PER_YEAR
from models import GuardrailAdjustment, SpendingContext, SpendingDecision

PARAM_INFLATION_RATE = "inflation_rate"
PARAM_INFLATION_INDEX = "inflation_index"
PARAM_BASE_INFLATION_INDEX = "base_inflation_index"

AnnualDecision = Tuple[float, Optional[GuardrailAdjustment], Dict[str, Any]]


class SpendingStrategy:
    name = "Spending Strategy"
    dynamic = False

    def __init__(self, cap_at_income_gap: bool = True):
        self.cap_at_income_gap = cap_at_income_gap

    def annual_spending(self, context: SpendingContext) -> AnnualDecision:
        raise NotImplementedError

    def calculate_withdrawal(self, context: SpendingContext) -> SpendingDecision:
        annual, adjustment, metadata = self.annual_spending(context)
        annual = max(0.0, annual)
        monthly = annual / MONTHS_PER_YEAR
        if self.cap_at_income_gap:
            metadata["rule_based_monthly"] = monthly
            monthly = min(monthly, context.income_gap)
        return SpendingDecision(
            amount=monthly,
            strategy_name=self.name,
            annual_spending=annual,
            adjustment=adjustment,
            metadata=metadata,
        )


class FixedSpendingStrategy(SpendingStrategy):
    """
    Constant real annual amount.

    ``annual_amount`` is in start-month dollars and is scaled by the cumulative
    ``inflation_index`` parameter. The rate-based amount is in dollars of the
    first withdrawal month, so it is scaled relative to ``base_inflation_index``.
    Without an index the amount compounds ``inflation_rate`` per year in retirement.
    """

    name = "Fixed"

    def __init__(
        self,
        annual_amount: Optional[float] = None,
        withdrawal_rate: float = 0.04,
        inflation_indexed: bool = True,
        inflation_rate: float = DEFAULT_INFLATION_RATE,
        cap_at_income_gap: bool = True,
    ):
        super().__init__(cap_at_income_gap)
        if annual_amount is not None and annual_amount < 0:
            raise ValueError("annual_amount cannot be negative")
        if withdrawal_rate <= 0:
            raise ValueError("withdrawal_rate must be positive")
        self.annual_amount = annual_amount
        self.withdrawal_rate = withdrawal_rate
        self.inflation_indexed = inflation_indexed
        self.inflation_rate = inflation_rate

    def annual_spending(self, context: SpendingContext) -> AnnualDecision:
        if self.annual_amount is not None:
            year_one = self.annual_amount
        else:
            year_one = context.initial_portfolio_balance * self.withdrawal_rate
        annual = year_one
        if not self.inflation_indexed:
            return annual, None, {"year_one_amount": year_one}

        index = context.get_strategy_param(PARAM_INFLATION_INDEX)
        if index is not None:
            if self.annual_amount is None:
                index /= context.get_strategy_param(PARAM_BASE_INFLATION_INDEX, 1.0)
            annual = year_one * index
        elif context.years_in_retirement > 0:
            inflation = context.get_strategy_param(PARAM_INFLATION_RATE, self.inflation_rate)
            annual = year_one * (1.0 + inflation) ** context.years_in_retirement
        return annual, None, {"year_one_amount": year_one}


class PercentageSpendingStrategy(SpendingStrategy):
    """A fixed share of the current portfolio, recomputed every period."""

    name = "Percentage of Portfolio"
    dynamic = True

    def __init__(self, withdrawal_rate: float = 0.04, cap_at_income_gap: bool = True):
        super().__init__(cap_at_income_gap)
        if not 0 < withdrawal_rate <= 1:
            raise ValueError("withdrawal_rate must be in (0, 1]")
        self.withdrawal_rate = withdrawal_rate

    def annual_spending(self, context: SpendingContext) -> AnnualDecision:
        return context.current_portfolio_balance * self.withdrawal_rate, None, {}


class GuardrailsSpendingStrategy(SpendingStrategy):
    """
    Dynamic spending around an initial withdrawal rate.

    The current rate is prior-year spending over the current balance. Above the
    upper guardrail spending is cut to ``prior * (1 - decrease_adjustment)``;
    below the lower guardrail it is raised to ``base * (1 + increase_adjustment)``
    where ``base`` is prior-year spending grown by one year of inflation.
    Both moves share the ``minimum_years_between_ratchets`` cooldown, counted in
    whole months since the last adjustment; a cooldown of one year or less never
    blocks. During the first twelve months of withdrawals the prior calendar
    year is at best partial, so spending stays at the initial-rate amount.
    """

    name = "Guardrails"
    dynamic = True

    def __init__(self, config: Optional[GuardrailsConfig] = None, cap_at_income_gap: bool = True):
        super().__init__(cap_at_income_gap)
        self.config = config or GuardrailsConfig.guyton_klinger()

    def can_ratchet(self, months_since_last_ratchet: Optional[int]) -> bool:
        min_years = self.config.minimum_years_between_ratchets
        if min_years <= 1 or months_since_last_ratchet is None:
            return True
        return months_since_last_ratchet >= min_years * MONTHS_PER_YEAR

    def cap_preservation_active(self, years_in_retirement: int) -> bool:
        ends = self.config.years_before_cap_preservation_ends
        return ends == 0 or years_in_retirement < ends

    def _base_spending(self, prior: float, inflation: float, context: SpendingContext) -> float:
        cfg = self.config
        if (
            cfg.skip_inflation_on_down_years
            and context.prior_year_return < 0
            and context.current_withdrawal_rate > cfg.initial_withdrawal_rate
        ):
            return prior
        return prior * (1.0 + inflation)

    def _clamp(self, annual: float, metadata: Dict[str, Any]) -> float:
        cfg = self.config
        if cfg.has_absolute_floor and annual < cfg.absolute_floor:
            metadata["constraint"] = "floor applied"
            annual = cfg.absolute_floor
        if cfg.has_absolute_ceiling and annual > cfg.absolute_ceiling:
            metadata["constraint"] = "ceiling applied"
            annual = cfg.absolute_ceiling
        return annual

    def annual_spending(self, context: SpendingContext) -> AnnualDecision:
        cfg = self.config
        inflation = context.get_strategy_param(PARAM_INFLATION_RATE, cfg.inflation_rate)
        prior = context.prior_year_spending
        metadata: Dict[str, Any] = {"initial_rate": cfg.initial_withdrawal_rate}

        if prior <= 0.0 or context.years_in_retirement == 0:
            metadata["first_year"] = True
            annual = context.initial_portfolio_balance * cfg.initial_withdrawal_rate
            return self._clamp(annual, metadata), None, metadata

        current_rate = context.current_withdrawal_rate
        base = self._base_spending(prior, inflation, context)
        metadata.update(prior_year_spending=prior, base_after_inflation=base, current_rate=current_rate)

        annual = base
        adjustment = None
        cooldown_ok = self.can_ratchet(context.months_since_last_ratchet)
        if (
            cfg.has_upper_guardrail
            and current_rate > cfg.upper_threshold_multiplier * cfg.initial_withdrawal_rate
            and self.cap_preservation_active(context.years_in_retirement)
            and cooldown_ok
        ):
            annual = prior * (1.0 - cfg.decrease_adjustment)
            adjustment = GuardrailAdjustment.DECREASE
            metadata["reason"] = "capital preservation rule triggered"
        elif (
            cfg.has_lower_guardrail
            and context.current_portfolio_balance > 0.0
            and current_rate < cfg.lower_threshold_multiplier * cfg.initial_withdrawal_rate
            and cooldown_ok
        ):
            annual = base * (1.0 + cfg.increase_adjustment)
            adjustment = GuardrailAdjustment.INCREASE
            metadata["reason"] = "prosperity rule triggered"

        return self._clamp(annual, metadata), adjustment, metadata


class IncomeGapSpendingStrategy(SpendingStrategy):
    """Withdraws exactly the income gap, optionally grossed up for taxes."""

    name = "Income Gap"

    def __init__(self, marginal_tax_rate: float = 0.0):
        super().__init__(cap_at_income_gap=False)
        if not 0.0 <= marginal_tax_rate < 1.0:
            raise ValueError("marginal_tax_rate must be in [0, 1)")
        self.marginal_tax_rate = marginal_tax_rate

    def annual_spending(self, context: SpendingContext) -> AnnualDecision:
        monthly = context.income_gap / (1.0 - self.marginal_tax_rate)
        return monthly * MONTHS_PER_YEAR, None, {"income_gap": context.income_gap}


def build_spending_strategy(config: SpendingStrategyConfig) -> SpendingStrategy:
    if config.type == "fixed":
        return FixedSpendingStrategy(
            annual_amount=config.annual_amount,
            withdrawal_rate=config.withdrawal_rate,
            inflation_indexed=config.inflation_indexed,
            inflation_rate=config.inflation_rate,
            cap_at_income_gap=config.cap_at_income_gap,
        )
    if config.type == "percentage":
        return PercentageSpendingStrategy(config.withdrawal_rate, config.cap_at_income_gap)
    if config.type == "guardrails":
        return GuardrailsSpendingStrategy(config.resolved_guardrails(), config.cap_at_income_gap)
    if config.type == "income_gap":
        return IncomeGapSpendingStrategy(config.marginal_tax_rate)
    raise ValueError(f"Unknown spending strategy type '{config.type}'")
