import datetime as _dt

import pytest
from pydantic import ValidationError

from config import (
    Config,
    ConfigurationError,
    GuardrailsConfig,
    SpendingCurveConfig,
    SpendingStrategyConfig,
    load_config_from_json,
)
from models import FilingStatus, SpendingPhase
from tests.helpers import single_person_config, write_config


def test_sample_config_validates(sample_config_dict):
    config = Config(**sample_config_dict)
    assert config.Nickname == sample_config_dict["scenario"]
    assert config.effective_filing_status == FilingStatus.MARRIED_FILING_JOINTLY
    assert config.initial_portfolio_balance == pytest.approx(1_360_000)
    assert config.horizon_end_month == _dt.date(2059, 9, 1)
    assert config.spending_strategy.resolved_guardrails() == GuardrailsConfig.guyton_klinger()
    assert config.expenses.spending_curve.no_go_start_age == 85
    assert config.expenses.items[-1].end_date == _dt.date(2031, 8, 1)


def test_defaults_for_single_person(simple_config):
    assert simple_config.effective_filing_status == FilingStatus.SINGLE
    assert simple_config.account_owner(simple_config.accounts[0]) == "pat"
    assert simple_config.get_person("nobody") is None
    assert Config(**single_person_config(start_month="2025-01-17")).start_month == _dt.date(2025, 1, 1)


def test_guardrails_presets():
    assert GuardrailsConfig.from_preset("vanguard_dynamic").increase_adjustment == 0.05
    kitces = GuardrailsConfig.from_preset("kitces_ratchet")
    assert not kitces.has_upper_guardrail
    assert kitces.minimum_years_between_ratchets == 3
    with pytest.raises(ValueError):
        GuardrailsConfig.from_preset("bogus")

    assert SpendingStrategyConfig().resolved_guardrails() == GuardrailsConfig.guyton_klinger()
    explicit = SpendingStrategyConfig(preset="kitces_ratchet", guardrails={"initial_withdrawal_rate": 0.05})
    assert explicit.resolved_guardrails().initial_withdrawal_rate == 0.05


@pytest.mark.parametrize(
    "overrides",
    [
        {"accounts": [{"id": "a", "account_type": "roth_ira", "balance": 1, "owner": "ghost"}]},
        {
            "accounts": [
                {"id": "a", "account_type": "roth_ira", "balance": 1},
                {"id": "a", "account_type": "hsa", "balance": 1},
            ]
        },
        {"accounts": [{"id": "a", "account_type": "roth_ira", "balance": -1}]},
        {"accounts": [{"id": "a", "account_type": "roth_ira", "balance": 1, "allocation": {"stocks_pct": 90}}]},
        {"rmd_destination_account": "missing"},
        {"sequencer": "custom"},
        {"custom_account_order": ["missing"]},
        {"end_month": "2024-01-01"},
        {"persons": []},
        {
            "persons": [
                {
                    "id": "pat",
                    "date_of_birth": "1960-01-01",
                    "retirement_date": "2025-01-01",
                    "withdrawal_start_date": "2024-01-01",
                }
            ]
        },
    ],
)
def test_invalid_configs_are_rejected(overrides):
    with pytest.raises(ValidationError):
        Config(**single_person_config(**overrides))


def test_guardrails_bounds_are_validated():
    with pytest.raises(ValidationError):
        GuardrailsConfig(absolute_floor=60_000, absolute_ceiling=50_000)
    with pytest.raises(ValidationError):
        GuardrailsConfig(upper_threshold_multiplier=0.8, lower_threshold_multiplier=1.2)


def test_load_config_from_json(tmp_path):
    path = write_config(tmp_path, single_person_config())
    config = Config(**load_config_from_json(path))
    assert config.Nickname == "Test Household"


def test_load_config_errors(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config_from_json(str(tmp_path / "missing.json"))

    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config_from_json(str(bad))


def test_spending_curve_phases():
    curve = SpendingCurveConfig()
    assert curve.phase_for_age(74) == SpendingPhase.GO_GO
    assert curve.phase_for_age(75) == SpendingPhase.SLOW_GO
    assert curve.phase_for_age(84) == SpendingPhase.SLOW_GO
    assert curve.phase_for_age(85) == SpendingPhase.NO_GO
    assert curve.multiplier_for_age(80) == pytest.approx(0.8)
    assert curve.multiplier_for_age(95) == pytest.approx(0.5)

    custom = SpendingCurveConfig(slow_go_start_age=70, no_go_start_age=70, no_go_multiplier=0.3)
    assert custom.phase_for_age(70) == SpendingPhase.NO_GO
    assert custom.multiplier_for_age(69) == pytest.approx(1.0)

    with pytest.raises(ValidationError):
        SpendingCurveConfig(slow_go_start_age=85, no_go_start_age=75)
