"""Tests for the spending strategies, with emphasis on the guardrails rules."""

import pytest

from config import GuardrailsConfig, SpendingStrategyConfig
from models import GuardrailAdjustment
from strategies import (
    FixedSpendingStrategy,
    GuardrailsSpendingStrategy,
    IncomeGapSpendingStrategy,
    PercentageSpendingStrategy,
    build_spending_strategy,
)
from tests.helpers import make_context


def _guardrails(**overrides) -> GuardrailsSpendingStrategy:
    params = dict(
        initial_withdrawal_rate=0.04,
        inflation_rate=0.025,
        upper_threshold_multiplier=1.2,
        decrease_adjustment=0.10,
        lower_threshold_multiplier=0.8,
        increase_adjustment=0.10,
        minimum_years_between_ratchets=1,
    )
    params.update(overrides)
    return GuardrailsSpendingStrategy(GuardrailsConfig(**params))


def test_first_year_uses_initial_rate():
    strategy = GuardrailsSpendingStrategy(GuardrailsConfig.guyton_klinger())
    decision = strategy.calculate_withdrawal(make_context(prior_year_spending=0.0))
    assert decision.annual_spending == pytest.approx(52_000)
    assert decision.amount == pytest.approx(52_000 / 12)
    assert decision.adjustment is None


def test_capital_preservation_cuts_prior_spending():
    decision = _guardrails().calculate_withdrawal(make_context(prior_year_spending=60_000))
    assert decision.adjustment == GuardrailAdjustment.DECREASE
    assert decision.annual_spending == pytest.approx(54_000)


def test_capital_preservation_respects_cooldown():
    strategy = _guardrails(minimum_years_between_ratchets=2)
    blocked = strategy.calculate_withdrawal(make_context(prior_year_spending=60_000, months_since_last_ratchet=23))
    assert blocked.adjustment is None
    assert blocked.annual_spending == pytest.approx(61_500)

    just_ratcheted = strategy.calculate_withdrawal(make_context(prior_year_spending=60_000, months_since_last_ratchet=0))
    assert just_ratcheted.adjustment is None

    allowed = strategy.calculate_withdrawal(make_context(prior_year_spending=60_000, months_since_last_ratchet=24))
    assert allowed.adjustment == GuardrailAdjustment.DECREASE
    assert allowed.annual_spending == pytest.approx(54_000)


def test_one_year_cooldown_never_blocks():
    strategy = _guardrails(minimum_years_between_ratchets=1)
    assert strategy.can_ratchet(0)
    assert strategy.can_ratchet(None)
    decision = strategy.calculate_withdrawal(make_context(prior_year_spending=60_000, months_since_last_ratchet=0))
    assert decision.adjustment == GuardrailAdjustment.DECREASE


def test_first_withdrawal_year_keeps_initial_rate_amount():
    decision = _guardrails().calculate_withdrawal(make_context(prior_year_spending=60_000, years_in_retirement=0))
    assert decision.adjustment is None
    assert decision.annual_spending == pytest.approx(40_000)


def test_prosperity_rule_raises_inflated_spending():
    decision = _guardrails().calculate_withdrawal(make_context(prior_year_spending=30_000))
    assert decision.adjustment == GuardrailAdjustment.INCREASE
    assert decision.annual_spending == pytest.approx(30_000 * 1.025 * 1.10)


def test_within_guardrails_only_inflates():
    decision = _guardrails().calculate_withdrawal(
        make_context(prior_year_spending=40_000, strategy_params={"inflation_rate": 0.03})
    )
    assert decision.adjustment is None
    assert decision.annual_spending == pytest.approx(41_200)


def test_cuts_disabled_never_decrease():
    strategy = GuardrailsSpendingStrategy(GuardrailsConfig.kitces_ratchet())
    decision = strategy.calculate_withdrawal(make_context(prior_year_spending=80_000))
    assert decision.adjustment is None
    assert decision.annual_spending == pytest.approx(82_000)


def test_kitces_raise_respects_three_year_cooldown():
    strategy = GuardrailsSpendingStrategy(GuardrailsConfig.kitces_ratchet())
    context = make_context(prior_year_spending=20_000, months_since_last_ratchet=35)
    assert strategy.calculate_withdrawal(context).adjustment is None
    context = make_context(prior_year_spending=20_000, months_since_last_ratchet=36)
    assert strategy.calculate_withdrawal(context).adjustment == GuardrailAdjustment.INCREASE


def test_zero_balance_does_not_divide_by_zero():
    decision = _guardrails().calculate_withdrawal(make_context(balance=0.0, prior_year_spending=40_000))
    assert decision.adjustment is None
    assert decision.annual_spending == pytest.approx(41_000)


def test_skip_inflation_after_down_year():
    strategy = GuardrailsSpendingStrategy(GuardrailsConfig.guyton_klinger())
    decision = strategy.calculate_withdrawal(make_context(prior_year_spending=60_000, prior_year_return=-0.10))
    assert decision.adjustment is None
    assert decision.annual_spending == pytest.approx(60_000)


def test_capital_preservation_stops_late_in_retirement():
    strategy = GuardrailsSpendingStrategy(GuardrailsConfig.guyton_klinger())
    decision = strategy.calculate_withdrawal(
        make_context(prior_year_spending=90_000, years_in_retirement=15)
    )
    assert decision.adjustment is None


def test_floor_and_ceiling_clamp():
    low = _guardrails(absolute_floor=50_000).calculate_withdrawal(make_context(prior_year_spending=40_000))
    assert low.annual_spending == pytest.approx(50_000)
    high = _guardrails(absolute_ceiling=35_000).calculate_withdrawal(make_context(prior_year_spending=40_000))
    assert high.annual_spending == pytest.approx(35_000)


def test_monthly_amount_capped_at_income_gap():
    context = make_context(total_expenses=3_000, other_income=1_000, years_in_retirement=0)
    decision = FixedSpendingStrategy(annual_amount=120_000).calculate_withdrawal(context)
    assert decision.amount == pytest.approx(2_000)

    uncapped = FixedSpendingStrategy(annual_amount=120_000, cap_at_income_gap=False).calculate_withdrawal(context)
    assert uncapped.amount == pytest.approx(10_000)


def test_fixed_strategy_inflation_indexing():
    strategy = FixedSpendingStrategy(annual_amount=36_000)
    context = make_context(years_in_retirement=2, strategy_params={"inflation_rate": 0.03})
    assert strategy.calculate_withdrawal(context).annual_spending == pytest.approx(36_000 * 1.03**2)

    flat = FixedSpendingStrategy(annual_amount=36_000, inflation_indexed=False)
    assert flat.calculate_withdrawal(context).annual_spending == pytest.approx(36_000)

    by_rate = FixedSpendingStrategy(withdrawal_rate=0.04, inflation_indexed=False)
    assert by_rate.calculate_withdrawal(context).annual_spending == pytest.approx(40_000)


def test_fixed_strategy_follows_cumulative_inflation_index():
    params = {"inflation_rate": 0.0, "inflation_index": 1.5, "base_inflation_index": 1.2}
    context = make_context(years_in_retirement=2, strategy_params=params)

    by_amount = FixedSpendingStrategy(annual_amount=36_000)
    assert by_amount.calculate_withdrawal(context).annual_spending == pytest.approx(54_000)

    by_rate = FixedSpendingStrategy(withdrawal_rate=0.04)
    assert by_rate.calculate_withdrawal(context).annual_spending == pytest.approx(40_000 * 1.5 / 1.2)


def test_percentage_strategy_tracks_current_balance():
    strategy = PercentageSpendingStrategy(0.04)
    assert strategy.calculate_withdrawal(make_context(balance=500_000)).amount == pytest.approx(20_000 / 12)
    assert strategy.calculate_withdrawal(make_context(balance=0.0)).amount == 0.0


def test_income_gap_strategy_grosses_up():
    strategy = IncomeGapSpendingStrategy(marginal_tax_rate=0.2)
    decision = strategy.calculate_withdrawal(make_context(total_expenses=5_000, other_income=2_000))
    assert decision.amount == pytest.approx(3_750)


def test_strategy_validation():
    with pytest.raises(ValueError):
        FixedSpendingStrategy(annual_amount=-1)
    with pytest.raises(ValueError):
        PercentageSpendingStrategy(0.0)
    with pytest.raises(ValueError):
        IncomeGapSpendingStrategy(marginal_tax_rate=1.0)


def test_build_spending_strategy_from_config():
    assert isinstance(build_spending_strategy(SpendingStrategyConfig(type="fixed")), FixedSpendingStrategy)
    assert isinstance(build_spending_strategy(SpendingStrategyConfig(type="percentage")), PercentageSpendingStrategy)
    assert isinstance(build_spending_strategy(SpendingStrategyConfig(type="income_gap")), IncomeGapSpendingStrategy)
    kitces = build_spending_strategy(SpendingStrategyConfig(type="guardrails", preset="kitces_ratchet"))
    assert isinstance(kitces, GuardrailsSpendingStrategy)
    assert not kitces.config.has_upper_guardrail


def test_identical_inputs_build_equal_contexts():
    assert make_context(prior_year_spending=1_000) == make_context(prior_year_spending=1_000)
